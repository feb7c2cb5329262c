"""nixmaint — generation retention and locked maintenance runs for NixOS profiles."""

__version__ = "0.1.0"
