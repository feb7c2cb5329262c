"""
Retention engine — decide which generations may be deleted.

Pure computation: takes a generation listing, a policy and the
wall-clock time, returns one decision per generation in input order.
Nothing is deleted here; the cleanup workflow acts on the result.

Decision order:
    current → within min age → protected by min keep count → expired
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

from nixmaint.core.models.generation import (
    DecisionReason,
    Generation,
    RetentionDecision,
    RetentionPolicy,
)

logger = logging.getLogger(__name__)

_ONE_DAY = timedelta(days=1)


class RetentionError(Exception):
    """Base class for retention input errors."""


class InvalidInput(RetentionError):
    """The generation listing is not usable (current marker, duplicate ids)."""


class InvalidPolicy(RetentionError):
    """The retention parameters are out of range."""


@dataclass
class RetentionPlan:
    """Decisions for a whole listing, plus convenience views."""

    policy: RetentionPolicy
    evaluated_at: datetime
    decisions: list[RetentionDecision] = field(default_factory=list)

    @property
    def kept(self) -> list[RetentionDecision]:
        return [d for d in self.decisions if d.keep]

    @property
    def deleted(self) -> list[RetentionDecision]:
        return [d for d in self.decisions if d.delete]

    @property
    def to_delete_ids(self) -> list[int]:
        return [d.generation_id for d in self.deleted]

    def to_dict(self) -> dict:
        return {
            "evaluated_at": self.evaluated_at.isoformat(),
            "policy": self.policy.model_dump(mode="json"),
            "kept": len(self.kept),
            "deleted": len(self.deleted),
            "decisions": [d.model_dump(mode="json") for d in self.decisions],
        }


def validate_policy(policy: RetentionPolicy) -> None:
    """Raise InvalidPolicy unless the policy parameters are in range."""
    if policy.min_age_days < 0:
        raise InvalidPolicy(f"min_age_days must be >= 0, got {policy.min_age_days}")
    if policy.min_keep_count < 1:
        raise InvalidPolicy(f"min_keep_count must be >= 1, got {policy.min_keep_count}")


def validate_generations(generations: Sequence[Generation]) -> Generation:
    """Check the listing and return its current generation.

    Raises:
        InvalidInput: zero or several current markers, or duplicate ids.
    """
    current = [g for g in generations if g.is_current]
    if len(current) != 1:
        ids = ", ".join(str(g.id) for g in current) or "none"
        raise InvalidInput(
            f"Expected exactly one current generation, found {len(current)} ({ids})"
        )

    seen: set[int] = set()
    for generation in generations:
        if generation.id in seen:
            raise InvalidInput(f"Duplicate generation id {generation.id}")
        seen.add(generation.id)

    return current[0]


def age_in_days(generation: Generation, now: datetime) -> int:
    """Whole days since the generation was created (floor)."""
    return (now - generation.created_at) // _ONE_DAY


def evaluate_retention(
    generations: Sequence[Generation],
    policy: RetentionPolicy,
    now: datetime,
) -> list[RetentionDecision]:
    """Compute a keep/delete decision for every generation.

    Args:
        generations: The profile listing, in any order.
        policy: Retention parameters.
        now: Reference time for ages. Naive values are taken as UTC.

    Returns:
        One decision per generation, in input order.

    Raises:
        InvalidPolicy: min_age_days < 0 or min_keep_count < 1.
        InvalidInput: not exactly one current generation, or duplicate ids.
    """
    validate_policy(policy)
    if not generations:
        return []

    current = validate_generations(generations)
    if now.tzinfo is None:
        now = now.replace(tzinfo=UTC)

    decided: dict[int, RetentionDecision] = {
        current.id: RetentionDecision.kept(current.id, DecisionReason.IS_CURRENT),
    }

    candidates: list[Generation] = []
    survivors = 0
    for generation in generations:
        if generation.is_current:
            continue
        if age_in_days(generation, now) < policy.min_age_days:
            decided[generation.id] = RetentionDecision.kept(
                generation.id, DecisionReason.WITHIN_MIN_AGE
            )
            survivors += 1
        else:
            candidates.append(generation)

    # Newest first: higher id wins, created_at only breaks exact id ties
    candidates.sort(key=lambda g: (g.id, g.created_at), reverse=True)
    for generation in candidates:
        if survivors >= policy.min_keep_count:
            break
        decided[generation.id] = RetentionDecision.kept(
            generation.id, DecisionReason.PROTECTED_BY_MIN_KEEP_COUNT
        )
        survivors += 1

    decisions = [
        decided.get(g.id) or RetentionDecision.expired(g.id) for g in generations
    ]

    logger.debug(
        "Retention evaluated: %d generations, %d keep, %d delete (policy %s)",
        len(decisions),
        sum(1 for d in decisions if d.keep),
        sum(1 for d in decisions if d.delete),
        policy.model_dump(),
    )
    return decisions


def plan_retention(
    generations: Sequence[Generation],
    policy: RetentionPolicy,
    now: datetime | None = None,
) -> RetentionPlan:
    """Evaluate retention and wrap the decisions in a RetentionPlan."""
    evaluated_at = now or datetime.now(UTC)
    if evaluated_at.tzinfo is None:
        evaluated_at = evaluated_at.replace(tzinfo=UTC)
    decisions = evaluate_retention(generations, policy, evaluated_at)
    return RetentionPlan(policy=policy, evaluated_at=evaluated_at, decisions=decisions)
