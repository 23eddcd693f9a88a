"""
Visitor Lifecycle Classifier
============================

WHAT:
    Labels visitor profiles NEW / RETURNING / LOYAL / CHURNED and lazily
    persists the label for profiles that have none yet.

RULE (evaluated in order):
    1. last_seen known and now - last_seen >= churn days (30) -> CHURNED
    2. total_sessions >= 5 -> LOYAL
    3. total_sessions >= 2 -> RETURNING
    4. otherwise -> NEW

CONCURRENCY:
    Two requests may backfill the same profile at once. The rule is a pure
    function of the profile's row, so both compute the same value, and the
    write is a conditional UPDATE ... WHERE lifecycle_stage IS NULL. The second
    writer updates zero rows. No lock, no retry; do not add one.
"""

import logging
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from funnel_analytics.models import FunnelSession, LifecycleStageEnum, VisitorProfile

logger = logging.getLogger(__name__)

CHURN_AFTER_DAYS = 30
LOYAL_MIN_SESSIONS = 5
RETURNING_MIN_SESSIONS = 2


def classify(
    total_sessions: int,
    last_seen: Optional[datetime],
    now: datetime,
    churn_days: int = CHURN_AFTER_DAYS,
) -> LifecycleStageEnum:
    """Lifecycle stage for a profile; recency beats frequency."""
    if last_seen is not None and now - last_seen >= timedelta(days=churn_days):
        return LifecycleStageEnum.churned
    if (total_sessions or 0) >= LOYAL_MIN_SESSIONS:
        return LifecycleStageEnum.loyal
    if (total_sessions or 0) >= RETURNING_MIN_SESSIONS:
        return LifecycleStageEnum.returning
    return LifecycleStageEnum.new


def backfill_lifecycle_stages(
    db: Session,
    funnel_id: str,
    now: datetime,
    churn_days: int = CHURN_AFTER_DAYS,
) -> int:
    """
    Compute and persist the stage for unlabelled profiles seen in a funnel.

    Returns:
        Number of rows this call actually updated (0 when another writer
        got there first).
    """
    in_funnel = (
        select(FunnelSession.anonymous_id)
        .where(FunnelSession.funnel_id == funnel_id)
        .where(FunnelSession.anonymous_id.isnot(None))
    )
    rows = (
        db.query(VisitorProfile.id, VisitorProfile.total_sessions, VisitorProfile.last_seen)
        .filter(VisitorProfile.lifecycle_stage.is_(None))
        .filter(VisitorProfile.id.in_(in_funnel))
        .all()
    )

    if not rows:
        return 0

    by_stage: Dict[LifecycleStageEnum, List[str]] = {}
    for profile_id, total_sessions, last_seen in rows:
        stage = classify(total_sessions, last_seen, now, churn_days)
        by_stage.setdefault(stage, []).append(profile_id)

    updated = 0
    for stage, ids in by_stage.items():
        updated += (
            db.query(VisitorProfile)
            .filter(VisitorProfile.id.in_(ids))
            .filter(VisitorProfile.lifecycle_stage.is_(None))
            .update({VisitorProfile.lifecycle_stage: stage}, synchronize_session=False)
        )
    db.commit()

    logger.info(
        f"[LIFECYCLE] Backfilled funnel={funnel_id} candidates={len(rows)} updated={updated}"
    )
    return updated
