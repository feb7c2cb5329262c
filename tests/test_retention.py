"""
Tests for the retention engine — keep/delete decisions per generation.
"""

import random
from datetime import datetime, timedelta

import pytest

from nixmaint.core.engine.retention import (
    InvalidInput,
    InvalidPolicy,
    age_in_days,
    evaluate_retention,
    plan_retention,
)
from nixmaint.core.models.generation import (
    DecisionAction,
    DecisionReason,
    Generation,
    RetentionPolicy,
)


def _by_id(decisions):
    return {d.generation_id: d for d in decisions}


def _random_listing(rng: random.Random, now: datetime) -> list[Generation]:
    count = rng.randint(1, 12)
    ages = sorted((rng.uniform(0, 60) for _ in range(count)), reverse=True)
    current = rng.randrange(count)
    listing = [
        Generation(id=i + 1, created_at=now - timedelta(days=age), is_current=(i == current))
        for i, age in enumerate(ages)
    ]
    rng.shuffle(listing)
    return listing


# ── Scenarios ────────────────────────────────────────────────────────


class TestScenarios:
    def test_old_generations_expire_beyond_min_keep(self, make_generations, now):
        listing = make_generations([(1, 200, False), (2, 100, False), (3, 0, True)])
        decisions = evaluate_retention(listing, RetentionPolicy(min_age_days=7, min_keep_count=1), now)

        assert [d.generation_id for d in decisions] == [1, 2, 3]
        assert decisions[0].action == DecisionAction.DELETE
        assert decisions[0].reason == DecisionReason.EXPIRED
        assert decisions[1].action == DecisionAction.KEEP
        assert decisions[1].reason == DecisionReason.PROTECTED_BY_MIN_KEEP_COUNT
        assert decisions[2].action == DecisionAction.KEEP
        assert decisions[2].reason == DecisionReason.IS_CURRENT

    def test_young_generations_are_all_kept(self, make_generations, now):
        listing = make_generations([(4, 3, False), (5, 2, False), (6, 1, False), (7, 0, True)])
        decisions = evaluate_retention(listing, RetentionPolicy(min_age_days=7, min_keep_count=1), now)

        assert all(d.keep for d in decisions)
        reasons = _by_id(decisions)
        assert reasons[4].reason == DecisionReason.WITHIN_MIN_AGE
        assert reasons[6].reason == DecisionReason.WITHIN_MIN_AGE
        assert reasons[7].reason == DecisionReason.IS_CURRENT

    def test_no_current_generation_is_rejected(self, make_generations, now):
        listing = make_generations([(1, 30, False), (2, 20, False)])
        with pytest.raises(InvalidInput):
            evaluate_retention(listing, RetentionPolicy(), now)

    def test_several_current_generations_are_rejected(self, make_generations, now):
        listing = make_generations([(1, 30, True), (2, 20, True)])
        with pytest.raises(InvalidInput):
            evaluate_retention(listing, RetentionPolicy(), now)

    def test_duplicate_ids_are_rejected(self, make_generations, now):
        listing = make_generations([(1, 30, False), (1, 20, False), (2, 0, True)])
        with pytest.raises(InvalidInput, match="Duplicate"):
            evaluate_retention(listing, RetentionPolicy(), now)


# ── Policy validation ────────────────────────────────────────────────


class TestPolicyValidation:
    def test_zero_min_keep_count(self, make_generations, now):
        listing = make_generations([(1, 30, False), (2, 0, True)])
        with pytest.raises(InvalidPolicy):
            evaluate_retention(listing, RetentionPolicy(min_age_days=7, min_keep_count=0), now)

    def test_negative_min_age(self, make_generations, now):
        listing = make_generations([(1, 30, False), (2, 0, True)])
        with pytest.raises(InvalidPolicy):
            evaluate_retention(listing, RetentionPolicy(min_age_days=-1, min_keep_count=1), now)

    def test_policy_checked_before_listing(self, now):
        with pytest.raises(InvalidPolicy):
            evaluate_retention([], RetentionPolicy(min_age_days=7, min_keep_count=0), now)

    def test_zero_min_age_is_valid(self, make_generations, now):
        listing = make_generations([(1, 0.1, False), (2, 0, True)])
        decisions = evaluate_retention(listing, RetentionPolicy(min_age_days=0, min_keep_count=1), now)
        assert _by_id(decisions)[1].reason == DecisionReason.PROTECTED_BY_MIN_KEEP_COUNT

    def test_empty_listing(self, now):
        assert evaluate_retention([], RetentionPolicy(), now) == []


# ── Age boundaries ───────────────────────────────────────────────────


class TestAgeBoundaries:
    def test_age_is_floored(self, now):
        g = Generation(id=1, created_at=now - timedelta(days=6, hours=23, minutes=59))
        assert age_in_days(g, now) == 6

    def test_exactly_min_age_is_not_protected_by_age(self, make_generations, now):
        listing = make_generations([(1, 8, False), (2, 7, False), (3, 1, False), (4, 0, True)])
        decisions = _by_id(
            evaluate_retention(listing, RetentionPolicy(min_age_days=7, min_keep_count=1), now)
        )

        assert decisions[3].reason == DecisionReason.WITHIN_MIN_AGE
        assert decisions[2].reason == DecisionReason.EXPIRED
        assert decisions[1].reason == DecisionReason.EXPIRED

    def test_just_under_min_age_is_protected(self, make_generations, now):
        listing = make_generations([(1, 6.5, False), (2, 0, True)])
        decisions = _by_id(
            evaluate_retention(listing, RetentionPolicy(min_age_days=7, min_keep_count=1), now)
        )
        assert decisions[1].reason == DecisionReason.WITHIN_MIN_AGE

    def test_future_timestamp_counts_as_young(self, make_generations, now):
        listing = make_generations([(1, -2, False), (2, 0, True)])
        decisions = _by_id(
            evaluate_retention(listing, RetentionPolicy(min_age_days=7, min_keep_count=1), now)
        )
        assert decisions[1].reason == DecisionReason.WITHIN_MIN_AGE

    def test_naive_now_is_treated_as_utc(self, make_generations, now):
        listing = make_generations([(1, 10, False), (2, 0, True)])
        naive = now.replace(tzinfo=None)
        policy = RetentionPolicy(min_age_days=7, min_keep_count=1)
        assert evaluate_retention(listing, policy, naive) == evaluate_retention(listing, policy, now)


# ── Keep count ───────────────────────────────────────────────────────


class TestMinKeepCount:
    def test_age_kept_generations_count_towards_minimum(self, make_generations, now):
        listing = make_generations([(1, 40, False), (2, 30, False), (3, 2, False), (4, 0, True)])
        decisions = _by_id(
            evaluate_retention(listing, RetentionPolicy(min_age_days=7, min_keep_count=2), now)
        )

        assert decisions[3].reason == DecisionReason.WITHIN_MIN_AGE
        assert decisions[2].reason == DecisionReason.PROTECTED_BY_MIN_KEEP_COUNT
        assert decisions[1].reason == DecisionReason.EXPIRED

    def test_current_does_not_count_towards_minimum(self, make_generations, now):
        listing = make_generations([(1, 40, False), (2, 30, False), (3, 0, True)])
        decisions = _by_id(
            evaluate_retention(listing, RetentionPolicy(min_age_days=7, min_keep_count=2), now)
        )
        assert decisions[1].keep
        assert decisions[2].keep

    def test_newest_by_id_is_protected_first(self, now):
        stamp = now - timedelta(days=30)
        listing = [
            Generation(id=1, created_at=stamp),
            Generation(id=2, created_at=stamp),
            Generation(id=3, created_at=now, is_current=True),
        ]
        decisions = _by_id(
            evaluate_retention(listing, RetentionPolicy(min_age_days=7, min_keep_count=1), now)
        )
        assert decisions[2].reason == DecisionReason.PROTECTED_BY_MIN_KEEP_COUNT
        assert decisions[1].reason == DecisionReason.EXPIRED

    def test_fewer_generations_than_minimum(self, make_generations, now):
        listing = make_generations([(1, 90, False), (2, 0, True)])
        decisions = evaluate_retention(listing, RetentionPolicy(min_age_days=7, min_keep_count=5), now)
        assert all(d.keep for d in decisions)

    def test_only_current_generation(self, make_generations, now):
        listing = make_generations([(9, 100, True)])
        decisions = evaluate_retention(listing, RetentionPolicy(), now)
        assert len(decisions) == 1
        assert decisions[0].reason == DecisionReason.IS_CURRENT

    def test_current_may_be_oldest(self, make_generations, now):
        listing = make_generations([(1, 90, True), (2, 60, False), (3, 50, False)])
        decisions = _by_id(
            evaluate_retention(listing, RetentionPolicy(min_age_days=7, min_keep_count=1), now)
        )
        assert decisions[1].reason == DecisionReason.IS_CURRENT
        assert decisions[3].reason == DecisionReason.PROTECTED_BY_MIN_KEEP_COUNT
        assert decisions[2].reason == DecisionReason.EXPIRED


# ── Properties ───────────────────────────────────────────────────────


class TestProperties:
    SEEDS = range(50)

    def test_input_order_is_preserved(self, make_generations, now):
        listing = make_generations([(5, 1, False), (2, 40, False), (7, 0, True), (1, 50, False)])
        decisions = evaluate_retention(listing, RetentionPolicy(), now)
        assert [d.generation_id for d in decisions] == [5, 2, 7, 1]

    @pytest.mark.parametrize("seed", SEEDS)
    def test_invariants_hold(self, seed, now):
        rng = random.Random(seed)
        listing = _random_listing(rng, now)
        policy = RetentionPolicy(min_age_days=rng.randint(0, 30), min_keep_count=rng.randint(1, 6))

        decisions = evaluate_retention(listing, policy, now)

        # one decision per generation, in input order
        assert [d.generation_id for d in decisions] == [g.id for g in listing]

        # current always kept
        current = next(g for g in listing if g.is_current)
        assert _by_id(decisions)[current.id].reason == DecisionReason.IS_CURRENT

        # keep-count floor
        non_current = len(listing) - 1
        kept_non_current = sum(1 for d in decisions if d.keep and d.generation_id != current.id)
        assert kept_non_current >= min(policy.min_keep_count, non_current)

        # young generations are never deleted
        for g, d in zip(listing, decisions):
            if not g.is_current and age_in_days(g, now) < policy.min_age_days:
                assert d.reason == DecisionReason.WITHIN_MIN_AGE

        # deterministic
        assert evaluate_retention(listing, policy, now) == decisions

    @pytest.mark.parametrize("seed", SEEDS)
    def test_cleanup_is_idempotent(self, seed, now):
        rng = random.Random(seed)
        listing = _random_listing(rng, now)
        policy = RetentionPolicy(min_age_days=rng.randint(0, 30), min_keep_count=rng.randint(1, 6))

        first = evaluate_retention(listing, policy, now)
        deleted = {d.generation_id for d in first if d.delete}
        survivors = [g for g in listing if g.id not in deleted]

        second = evaluate_retention(survivors, policy, now)
        assert not any(d.delete for d in second)

    @pytest.mark.parametrize("seed", SEEDS)
    def test_larger_min_age_never_deletes_more(self, seed, now):
        rng = random.Random(seed)
        listing = _random_listing(rng, now)
        keep = rng.randint(1, 6)

        previous = None
        for days in range(0, 61, 3):
            deleted = {
                d.generation_id
                for d in evaluate_retention(listing, RetentionPolicy(min_age_days=days, min_keep_count=keep), now)
                if d.delete
            }
            if previous is not None:
                assert deleted <= previous
            previous = deleted


# ── Plan ─────────────────────────────────────────────────────────────


class TestRetentionPlan:
    def test_views(self, make_generations, now):
        listing = make_generations([(1, 200, False), (2, 100, False), (3, 0, True)])
        plan = plan_retention(listing, RetentionPolicy(min_age_days=7, min_keep_count=1), now)

        assert plan.to_delete_ids == [1]
        assert [d.generation_id for d in plan.kept] == [2, 3]
        assert plan.deleted[0].reason == DecisionReason.EXPIRED
        assert plan.evaluated_at == now

    def test_to_dict(self, make_generations, now):
        listing = make_generations([(1, 200, False), (2, 0, True)])
        data = plan_retention(listing, RetentionPolicy(min_age_days=7, min_keep_count=1), now).to_dict()

        assert data["kept"] == 2
        assert data["deleted"] == 0
        assert data["policy"] == {"min_age_days": 7, "min_keep_count": 1}
        assert data["decisions"][1] == {
            "generation_id": 2,
            "action": "keep",
            "reason": "is_current",
        }

    def test_defaults_to_current_time(self, make_generations):
        listing = make_generations([(1, 0, True)])
        plan = plan_retention(listing, RetentionPolicy())
        assert plan.evaluated_at.tzinfo is not None

    def test_naive_now_is_stored_as_utc(self, make_generations, now):
        listing = make_generations([(1, 0, True)])
        plan = plan_retention(listing, RetentionPolicy(), now.replace(tzinfo=None))
        assert plan.evaluated_at == now
        assert plan.to_dict()["evaluated_at"].endswith("+00:00")
