"""
Stage Drop-off Calculator
=========================

WHAT:
    Orders per-stage session counts into the canonical funnel order and
    computes the drop-off between adjacent stages.

WHY:
    Adjacency comes from the canonical order, never from counts or names,
    otherwise drop-off between e.g. interest and desire would shift whenever
    traffic changes.

RULES:
    - Order: awareness, interest, desire, checkout, purchase, abandoned,
      then unrecognized stages in first-seen order.
    - First snapshot has drop_off_rate 0.
    - drop_off_rate = (prev - cur) / prev * 100; 0 when prev is 0.
      Negative values are kept; they flag re-entrant or misreported stages.
    - overall_conversion_rate = purchase / first * 100 as "%.2f", "0.00"
      when the first stage has no sessions.
"""

from dataclasses import dataclass, asdict
from typing import Any, Dict, Iterable, List, Optional

from funnel_analytics.models import FunnelStageEnum
from funnel_analytics.services.rollup import fixed2, pct, round2, safe_div

CANONICAL_STAGES = [stage.value for stage in FunnelStageEnum]
FINAL_STAGE = FunnelStageEnum.purchase.value


@dataclass
class StageCounts:
    """Raw per-stage aggregates fed into stage_flow."""
    sessions: int = 0
    conversions: int = 0
    abandonments: int = 0
    time_in_stage_total: float = 0.0
    time_in_stage_samples: int = 0


@dataclass
class StageSnapshot:
    stage: str
    sessions: int
    conversions: int
    conversion_rate: float
    drop_off_rate: float
    abandonments: int
    avg_time_in_stage: Optional[int]

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class StageFlow:
    stages: List[StageSnapshot]
    total_sessions: int
    final_conversions: int
    overall_conversion_rate: str
    unrecognized_stages: List[str]


def canonical_order(stages: Iterable[str]) -> List[str]:
    """Canonical stages first (in funnel order), unknown ones after."""
    present = list(dict.fromkeys(stages))
    known = [s for s in CANONICAL_STAGES if s in present]
    unknown = [s for s in present if s not in CANONICAL_STAGES]
    return known + unknown


def count_stages(sessions: Iterable[Any]) -> Dict[str, StageCounts]:
    """Aggregate sessions by current_stage (sessions without one are skipped)."""
    counts: Dict[str, StageCounts] = {}
    for session in sessions:
        if not session.current_stage:
            continue
        entry = counts.setdefault(session.current_stage, StageCounts())
        entry.sessions += 1
        if session.converted:
            entry.conversions += 1
        if session.is_abandoned:
            entry.abandonments += 1
        if session.ended_at is not None and session.started_at is not None:
            entry.time_in_stage_total += (session.ended_at - session.started_at).total_seconds()
            entry.time_in_stage_samples += 1
    return counts


def stage_flow(counts: Dict[str, StageCounts]) -> StageFlow:
    """Build ordered StageSnapshots with drop-off from per-stage counts."""
    snapshots: List[StageSnapshot] = []
    previous: Optional[StageCounts] = None

    for stage in canonical_order(counts):
        current = counts[stage]
        if previous is None:
            drop_off = 0.0
        else:
            drop_off = pct(previous.sessions - current.sessions, previous.sessions)

        avg_time = None
        if current.time_in_stage_samples:
            avg_time = round(safe_div(current.time_in_stage_total, current.time_in_stage_samples))

        snapshots.append(StageSnapshot(
            stage=stage,
            sessions=current.sessions,
            conversions=current.conversions,
            conversion_rate=round2(pct(current.conversions, current.sessions)),
            drop_off_rate=round2(drop_off),
            abandonments=current.abandonments,
            avg_time_in_stage=avg_time,
        ))
        previous = current

    total_sessions = snapshots[0].sessions if snapshots else 0
    final = counts.get(FINAL_STAGE)
    final_conversions = final.sessions if final else 0
    overall = fixed2(pct(final_conversions, total_sessions)) if total_sessions else "0.00"

    return StageFlow(
        stages=snapshots,
        total_sessions=total_sessions,
        final_conversions=final_conversions,
        overall_conversion_rate=overall,
        unrecognized_stages=[s.stage for s in snapshots if s.stage not in CANONICAL_STAGES],
    )
