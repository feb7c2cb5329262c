"""
Generation models — the retention contract.

Generations are read-only snapshots listed by the profile adapter.
A RetentionPolicy says how many of them must survive, and the engine
answers with one RetentionDecision per generation.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, field_validator


class DecisionAction(str, Enum):
    """What should happen to a generation."""

    KEEP = "keep"
    DELETE = "delete"


class DecisionReason(str, Enum):
    """Why a generation was kept or deleted."""

    IS_CURRENT = "is_current"
    WITHIN_MIN_AGE = "within_min_age"
    PROTECTED_BY_MIN_KEEP_COUNT = "protected_by_min_keep_count"
    EXPIRED = "expired"


class Generation(BaseModel):
    """A single profile generation.

    Ids grow with creation order, so ordering by id equals ordering
    by ``created_at``. Exactly one generation of a listing is current.
    """

    model_config = ConfigDict(frozen=True)

    id: int
    created_at: datetime
    is_current: bool = False

    @field_validator("created_at")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value


class RetentionPolicy(BaseModel):
    """Retention parameters for one cleanup run.

    Ranges are checked by the engine, not here, so that a bad policy
    surfaces as ``InvalidPolicy`` rather than a validation error.
    """

    model_config = ConfigDict(frozen=True)

    min_age_days: int = 7        # younger generations always survive
    min_keep_count: int = 3      # non-current survivors, at least


class RetentionDecision(BaseModel):
    """The engine's verdict for one generation."""

    model_config = ConfigDict(frozen=True)

    generation_id: int
    action: DecisionAction
    reason: DecisionReason

    @property
    def keep(self) -> bool:
        return self.action == DecisionAction.KEEP

    @property
    def delete(self) -> bool:
        return self.action == DecisionAction.DELETE

    @classmethod
    def kept(cls, generation_id: int, reason: DecisionReason) -> RetentionDecision:
        return cls(generation_id=generation_id, action=DecisionAction.KEEP, reason=reason)

    @classmethod
    def expired(cls, generation_id: int) -> RetentionDecision:
        return cls(
            generation_id=generation_id,
            action=DecisionAction.DELETE,
            reason=DecisionReason.EXPIRED,
        )
