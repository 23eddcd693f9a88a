"""
Stage Drop-off Tests (Unit)
===========================

WHAT: Unit tests for canonical stage ordering and adjacent-stage drop-off.
WHY: Drop-off must follow funnel order, never count order, and the overall
     conversion string is compared for equality by consumers.

REFERENCES:
- backend/funnel_analytics/services/stage_flow.py
"""

from datetime import datetime, timedelta
from types import SimpleNamespace

from funnel_analytics.services.stage_flow import (
    StageCounts,
    canonical_order,
    count_stages,
    stage_flow,
)


def _session(stage, converted=False, abandoned=False, seconds=None):
    started = datetime(2025, 12, 30, 10, 0)
    return SimpleNamespace(
        current_stage=stage,
        converted=converted,
        is_abandoned=abandoned,
        started_at=started,
        ended_at=started + timedelta(seconds=seconds) if seconds is not None else None,
    )


def test_drop_off_between_adjacent_canonical_stages() -> None:
    counts = {
        "purchase": StageCounts(sessions=20, conversions=20),
        "awareness": StageCounts(sessions=100),
        "desire": StageCounts(sessions=60),
        "interest": StageCounts(sessions=60),
    }

    flow = stage_flow(counts)

    assert [s.stage for s in flow.stages] == ["awareness", "interest", "desire", "purchase"]
    assert [s.drop_off_rate for s in flow.stages] == [0, 40.0, 0, 66.67]
    assert flow.overall_conversion_rate == "20.00"
    assert flow.total_sessions == 100
    assert flow.final_conversions == 20


def test_drop_off_guards_zero_previous_stage() -> None:
    flow = stage_flow({
        "awareness": StageCounts(sessions=0),
        "interest": StageCounts(sessions=5),
    })

    assert flow.stages[1].drop_off_rate == 0
    assert flow.overall_conversion_rate == "0.00"


def test_negative_drop_off_is_reported_unclamped() -> None:
    flow = stage_flow({
        "awareness": StageCounts(sessions=10),
        "interest": StageCounts(sessions=15),
    })

    assert flow.stages[1].drop_off_rate == -50.0


def test_unrecognized_stages_follow_canonical_ones_in_first_seen_order() -> None:
    order = canonical_order(["upsell", "interest", "zzz", "awareness", "upsell"])

    assert order == ["awareness", "interest", "upsell", "zzz"]


def test_empty_counts_yield_empty_flow() -> None:
    flow = stage_flow({})

    assert flow.stages == []
    assert flow.total_sessions == 0
    assert flow.overall_conversion_rate == "0.00"
    assert flow.unrecognized_stages == []


def test_count_stages_aggregates_time_and_flags() -> None:
    sessions = [
        _session("checkout", seconds=60),
        _session("checkout", abandoned=True, seconds=120),
        _session("checkout"),
        _session("purchase", converted=True, seconds=30),
        _session(None),
    ]

    counts = count_stages(sessions)
    flow = stage_flow(counts)
    checkout = flow.stages[0]

    assert set(counts) == {"checkout", "purchase"}
    assert checkout.sessions == 3
    assert checkout.abandonments == 1
    assert checkout.avg_time_in_stage == 90
    assert flow.stages[1].conversion_rate == 100.0
