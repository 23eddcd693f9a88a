"""
Visitor-level Analyses
======================

WHAT:
    Visitor profile listing (with lazy lifecycle backfill), single profile
    drill-down, visitor/session journeys and the per-visitor data export.

WHY:
    Profiles are cross-funnel identities; a profile belongs to a funnel's
    view only when it has at least one session in that funnel.

REFERENCES:
    - funnel_analytics/services/lifecycle.py: classify, backfill_lifecycle_stages
    - funnel_analytics/routers/visitors.py
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import and_, func, or_, select
from sqlalchemy.orm import Session

from funnel_analytics.errors import SessionNotFoundError, VisitorNotFoundError
from funnel_analytics.models import FunnelEvent, FunnelSession, LifecycleStageEnum, VisitorProfile
from funnel_analytics.services.attribution import UNKNOWN
from funnel_analytics.services.lifecycle import CHURN_AFTER_DAYS, backfill_lifecycle_stages, classify
from funnel_analytics.services.rollup import round2, safe_div, to_float
from funnel_analytics.services.time_range import utcnow

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 200


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _stage_value(stage) -> Optional[str]:
    if stage is None:
        return None
    return stage.value if isinstance(stage, LifecycleStageEnum) else str(stage)


def _profiles_in_funnel(funnel_id: str):
    return (
        select(FunnelSession.anonymous_id)
        .where(FunnelSession.funnel_id == funnel_id)
        .where(FunnelSession.anonymous_id.isnot(None))
    )


# =============================================================================
# PROFILE LIST
# =============================================================================

def visitor_profiles(
    db: Session,
    funnel_id: str,
    lifecycle_stage: Optional[str] = None,
    has_identified: Optional[bool] = None,
    search: Optional[str] = None,
    cursor: Optional[str] = None,
    limit: int = DEFAULT_PAGE_SIZE,
    now: Optional[datetime] = None,
    churn_days: int = CHURN_AFTER_DAYS,
) -> Dict[str, Any]:
    """
    Profiles seen in the funnel, most recently seen first.

    Runs the lifecycle backfill first so every returned profile has a stage.
    Pagination is keyset-based: `cursor` is the id of the last profile of
    the previous page, `next_cursor` is None on the last page.
    """
    now = now or utcnow()
    limit = max(1, min(limit, MAX_PAGE_SIZE))
    backfill_lifecycle_stages(db, funnel_id, now, churn_days)

    query = db.query(VisitorProfile).filter(VisitorProfile.id.in_(_profiles_in_funnel(funnel_id)))
    if lifecycle_stage:
        query = query.filter(VisitorProfile.lifecycle_stage == LifecycleStageEnum(lifecycle_stage.upper()))
    if has_identified is True:
        query = query.filter(VisitorProfile.identified_user_id.isnot(None))
    elif has_identified is False:
        query = query.filter(VisitorProfile.identified_user_id.is_(None))
    if search:
        pattern = f"%{search.lower()}%"
        query = query.filter(or_(
            func.lower(VisitorProfile.display_name).like(pattern),
            func.lower(VisitorProfile.identified_user_id).like(pattern),
        ))

    if cursor:
        anchor = db.query(VisitorProfile.last_seen, VisitorProfile.id).filter(VisitorProfile.id == cursor).first()
        if anchor is not None:
            query = query.filter(or_(
                VisitorProfile.last_seen < anchor.last_seen,
                and_(VisitorProfile.last_seen == anchor.last_seen, VisitorProfile.id < anchor.id),
            ))

    profiles = (
        query.order_by(VisitorProfile.last_seen.desc(), VisitorProfile.id.desc())
        .limit(limit + 1)
        .all()
    )
    has_more = len(profiles) > limit
    profiles = profiles[:limit]

    latest = _latest_sessions(db, funnel_id, [p.id for p in profiles])
    return {
        "profiles": [_profile_row(p, latest.get(p.id)) for p in profiles],
        "next_cursor": profiles[-1].id if has_more else None,
    }


def _latest_sessions(db: Session, funnel_id: str, profile_ids: List[str]) -> Dict[str, Any]:
    """Most recent funnel session per profile, in one query."""
    if not profile_ids:
        return {}
    rows = (
        db.query(
            FunnelSession.anonymous_id, FunnelSession.country_code, FunnelSession.country_name,
            FunnelSession.city, FunnelSession.device_type, FunnelSession.browser_name,
            FunnelSession.started_at,
        )
        .filter(FunnelSession.funnel_id == funnel_id)
        .filter(FunnelSession.anonymous_id.in_(profile_ids))
        .order_by(FunnelSession.started_at.desc())
        .all()
    )
    latest: Dict[str, Any] = {}
    for row in rows:
        latest.setdefault(row.anonymous_id, row)
    return latest


def _profile_row(profile: VisitorProfile, last_session) -> Dict[str, Any]:
    return {
        "id": profile.id,
        "display_name": profile.display_name,
        "identified_user_id": profile.identified_user_id,
        "first_seen": _iso(profile.first_seen),
        "last_seen": _iso(profile.last_seen),
        "total_sessions": profile.total_sessions,
        "total_events": profile.total_events,
        "lifecycle_stage": _stage_value(profile.lifecycle_stage),
        "country_code": (last_session.country_code if last_session else None) or UNKNOWN,
        "country_name": (last_session.country_name if last_session else None) or UNKNOWN,
        "city": (last_session.city if last_session else None) or UNKNOWN,
        "device_type": (last_session.device_type if last_session else None) or UNKNOWN,
        "browser_name": (last_session.browser_name if last_session else None) or UNKNOWN,
    }


# =============================================================================
# PROFILE DETAIL
# =============================================================================

def _session_summary(s: FunnelSession) -> Dict[str, Any]:
    return {
        "session_id": s.session_id,
        "started_at": _iso(s.started_at),
        "ended_at": _iso(s.ended_at),
        "duration_seconds": s.duration_seconds,
        "page_views": s.page_views,
        "events_count": s.events_count,
        "current_stage": s.current_stage,
        "converted": bool(s.converted),
        "conversion_value": round2(to_float(s.conversion_value)),
        "first_source": s.first_source,
        "last_source": s.last_source,
        "device_type": s.device_type,
        "browser_name": s.browser_name,
        "country_code": s.country_code,
        "city": s.city,
        "engagement_rate": s.engagement_rate,
        "experience_score": s.experience_score,
    }


def visitor_profile(
    db: Session,
    funnel_id: str,
    anonymous_id: str,
    now: Optional[datetime] = None,
    churn_days: int = CHURN_AFTER_DAYS,
) -> Dict[str, Any]:
    """
    Profile with its funnel sessions and totals.

    Raises:
        VisitorNotFoundError: no profile, or no session in this funnel
    """
    profile = db.query(VisitorProfile).filter(VisitorProfile.id == anonymous_id).first()
    sessions = []
    if profile is not None:
        sessions = (
            db.query(FunnelSession)
            .filter(FunnelSession.funnel_id == funnel_id)
            .filter(FunnelSession.anonymous_id == anonymous_id)
            .order_by(FunnelSession.started_at.desc())
            .all()
        )
    if profile is None or not sessions:
        raise VisitorNotFoundError(anonymous_id, funnel_id=funnel_id)

    stage = profile.lifecycle_stage
    if stage is None:
        # Not persisted here; the list endpoint owns the backfill
        stage = classify(profile.total_sessions, profile.last_seen, now or utcnow(), churn_days)

    count = len(sessions)
    converted = [s for s in sessions if s.converted]
    return {
        "profile": {
            **_profile_row(profile, sessions[0]),
            "lifecycle_stage": _stage_value(stage),
            "user_properties": profile.user_properties or {},
        },
        "sessions": [_session_summary(s) for s in sessions],
        "totals": {
            "sessions": count,
            "page_views": sum(s.page_views or 0 for s in sessions),
            "events": sum(s.events_count or 0 for s in sessions),
            "conversions": len(converted),
            "revenue": round2(sum(to_float(s.conversion_value) for s in converted)),
            "avg_engagement_rate": round2(safe_div(sum(to_float(s.engagement_rate) for s in sessions), count)),
            "avg_experience_score": round2(safe_div(sum(to_float(s.experience_score) for s in sessions), count)),
        },
    }


# =============================================================================
# JOURNEYS
# =============================================================================

def _event_row(e: FunnelEvent) -> Dict[str, Any]:
    return {
        "id": e.id,
        "session_id": e.session_id,
        "event_name": e.event_name,
        "event_category": e.event_category,
        "page_path": e.page_path,
        "page_title": e.page_title,
        "funnel_stage": e.funnel_stage,
        "is_micro_conversion": bool(e.is_micro_conversion),
        "is_conversion": bool(e.is_conversion),
        "revenue": round2(to_float(e.revenue)) if e.revenue is not None else None,
        "timestamp": _iso(e.timestamp),
        "web_vitals": {
            "lcp": e.lcp,
            "inp": e.inp,
            "cls": e.cls,
            "fcp": e.fcp,
            "ttfb": e.ttfb,
            "rating": e.vital_rating.value if e.vital_rating is not None else None,
        },
    }


def visitor_journey(db: Session, funnel_id: str, anonymous_id: str) -> Dict[str, Any]:
    """Every event of a visitor in this funnel, oldest first."""
    session_ids = [
        row.session_id
        for row in db.query(FunnelSession.session_id)
        .filter(FunnelSession.funnel_id == funnel_id)
        .filter(FunnelSession.anonymous_id == anonymous_id)
        .all()
    ]
    if not session_ids:
        raise VisitorNotFoundError(anonymous_id, funnel_id=funnel_id)

    events = (
        db.query(FunnelEvent)
        .filter(FunnelEvent.funnel_id == funnel_id)
        .filter(FunnelEvent.session_id.in_(session_ids))
        .order_by(FunnelEvent.timestamp.asc())
        .all()
    )
    return {
        "anonymous_id": anonymous_id,
        "session_count": len(session_ids),
        "events": [_event_row(e) for e in events],
    }


def session_journey(db: Session, funnel_id: str, session_id: str) -> Dict[str, Any]:
    """
    One session's summary, ordered events and stage history.

    Raises:
        SessionNotFoundError: no such session in this funnel
    """
    session = (
        db.query(FunnelSession)
        .filter(FunnelSession.funnel_id == funnel_id)
        .filter(FunnelSession.session_id == session_id)
        .first()
    )
    if session is None:
        raise SessionNotFoundError(session_id, funnel_id=funnel_id)

    events = (
        db.query(FunnelEvent)
        .filter(FunnelEvent.funnel_id == funnel_id)
        .filter(FunnelEvent.session_id == session_id)
        .order_by(FunnelEvent.timestamp.asc())
        .all()
    )
    return {
        "session": {
            **_session_summary(session),
            "anonymous_id": session.anonymous_id,
            "web_vitals": {
                "lcp": session.avg_lcp,
                "inp": session.avg_inp,
                "cls": session.avg_cls,
                "fcp": session.avg_fcp,
                "ttfb": session.avg_ttfb,
            },
        },
        "stage_history": list(session.stage_history or []),
        "events": [_event_row(e) for e in events],
    }


# =============================================================================
# DATA EXPORT
# =============================================================================

def export_visitor_data(
    db: Session,
    funnel_id: str,
    anonymous_id: Optional[str] = None,
    email: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Everything stored about one visitor in this funnel, for a data access request.

    The visitor is looked up by anonymous id, else by identified user id
    (the email the visitor identified with). Read-only; nothing is deleted.

    Raises:
        ValueError: neither anonymous_id nor email given
        VisitorNotFoundError: no such profile, or no session in this funnel
    """
    if anonymous_id:
        profile = db.query(VisitorProfile).filter(VisitorProfile.id == anonymous_id).first()
    elif email:
        profile = db.query(VisitorProfile).filter(VisitorProfile.identified_user_id == email).first()
    else:
        raise ValueError("anonymous_id or email is required")

    sessions = []
    if profile is not None:
        sessions = (
            db.query(FunnelSession)
            .filter(FunnelSession.funnel_id == funnel_id)
            .filter(FunnelSession.anonymous_id == profile.id)
            .order_by(FunnelSession.started_at.desc())
            .all()
        )
    if profile is None or not sessions:
        raise VisitorNotFoundError(anonymous_id or email, funnel_id=funnel_id)

    events = (
        db.query(FunnelEvent)
        .filter(FunnelEvent.funnel_id == funnel_id)
        .filter(FunnelEvent.anonymous_id == profile.id)
        .order_by(FunnelEvent.timestamp.desc())
        .all()
    )
    logger.info(
        f"[VISITOR_EXPORT] funnel={funnel_id} visitor={profile.id} "
        f"sessions={len(sessions)} events={len(events)}"
    )
    return {
        "profile": {
            "anonymous_id": profile.id,
            "display_name": profile.display_name,
            "identified_user_id": profile.identified_user_id,
            "user_properties": profile.user_properties or {},
            "first_seen": _iso(profile.first_seen),
            "last_seen": _iso(profile.last_seen),
            "total_sessions": profile.total_sessions,
            "total_events": profile.total_events,
        },
        "sessions": [
            {
                "session_id": s.session_id,
                "started_at": _iso(s.started_at),
                "ended_at": _iso(s.ended_at),
                "duration_seconds": s.duration_seconds,
                "page_views": s.page_views,
                "device_type": s.device_type,
                "browser_name": s.browser_name,
                "country_code": s.country_code,
                "city": s.city,
                "converted": bool(s.converted),
                "conversion_value": round2(to_float(s.conversion_value)) if s.conversion_value is not None else None,
            }
            for s in sessions
        ],
        "events": [
            {
                "event_id": e.event_id,
                "event_name": e.event_name,
                "timestamp": _iso(e.timestamp),
                "page_url": e.page_url,
                "page_title": e.page_title,
                "device_type": e.device_type,
                "country_code": e.country_code,
                "city": e.city,
            }
            for e in events
        ],
    }
