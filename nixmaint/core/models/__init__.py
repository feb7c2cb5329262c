"""
Domain models for nixmaint.

All models are re-exported here for convenient access:

    from nixmaint.core.models import Generation, RetentionPolicy, TaskResult
"""

from nixmaint.core.models.generation import (
    DecisionAction,
    DecisionReason,
    Generation,
    RetentionDecision,
    RetentionPolicy,
)
from nixmaint.core.models.task import MaintenanceTask, TaskOutcome, TaskResult

__all__ = [
    # generation.py
    "DecisionAction",
    "DecisionReason",
    "Generation",
    "RetentionDecision",
    "RetentionPolicy",
    # task.py
    "MaintenanceTask",
    "TaskOutcome",
    "TaskResult",
]
