"""
Event/Session Store Reader
==========================

WHAT:
    Query primitives over the funnel tables: tenant-scoped funnel lookup,
    windowed session/event reads with column projection, and the batched
    geography fallback read.

WHY:
    Handlers load the rows they need ONCE and hand them to the pure
    aggregators. Keeping every filter here means all analyses agree on what
    "in the window" means (sessions by started_at, events by timestamp).

USAGE:
    store = FunnelStore(db)
    funnel = store.get_funnel(funnel_id, scope)
    rows = store.sessions(funnel.id, window, FunnelSession.session_id, FunnelSession.converted)

REFERENCES:
    - funnel_analytics/models.py
    - funnel_analytics/services/attribution.py: resolve_geographies
"""

import logging
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from funnel_analytics.errors import FunnelNotFoundError
from funnel_analytics.models import Funnel, FunnelEvent, FunnelSession
from funnel_analytics.services.time_range import TimeWindow

logger = logging.getLogger(__name__)

PAGE_VIEW = "page_view"


class FunnelStore:
    """Read-only access to one database session's funnel data."""

    def __init__(self, db: Session):
        self.db = db

    # -------------------------------------------------------------------------
    # Funnel
    # -------------------------------------------------------------------------

    def get_funnel(self, funnel_id: str, scope) -> Funnel:
        """
        Fetch a funnel inside the caller's tenant scope.

        Raises:
            FunnelNotFoundError: missing, or owned by another org/subaccount
        """
        query = (
            self.db.query(Funnel)
            .filter(Funnel.id == funnel_id)
            .filter(Funnel.organization_id == scope.organization_id)
        )
        if scope.subaccount_id:
            query = query.filter(Funnel.subaccount_id == scope.subaccount_id)
        else:
            query = query.filter(Funnel.subaccount_id.is_(None))

        funnel = query.first()
        if funnel is None:
            logger.info(f"[STORE] Funnel {funnel_id} not found for org {scope.organization_id}")
            raise FunnelNotFoundError(funnel_id)
        return funnel

    # -------------------------------------------------------------------------
    # Sessions
    # -------------------------------------------------------------------------

    def sessions_query(self, funnel_id: str, window: Optional[TimeWindow], *columns):
        query = self.db.query(*columns) if columns else self.db.query(FunnelSession)
        query = query.filter(FunnelSession.funnel_id == funnel_id)
        if window is not None and window.start is not None:
            query = query.filter(FunnelSession.started_at >= window.start)
        if window is not None and window.end is not None:
            query = query.filter(FunnelSession.started_at <= window.end)
        return query

    def sessions(
        self,
        funnel_id: str,
        window: Optional[TimeWindow],
        *columns,
        converted: Optional[bool] = None,
        with_engagement: bool = False,
        with_stage: bool = False,
    ) -> List[Any]:
        """
        Sessions that started inside the window, oldest first.

        With columns given, returns rows exposing only those attributes.
        """
        query = self.sessions_query(funnel_id, window, *columns)
        if converted is not None:
            query = query.filter(FunnelSession.converted.is_(converted))
        if with_engagement:
            query = query.filter(FunnelSession.engagement_rate.isnot(None))
        if with_stage:
            query = query.filter(FunnelSession.current_stage.isnot(None))
        return query.order_by(FunnelSession.started_at.asc()).all()

    def sessions_by_client_id(self, session_ids: Iterable[str]) -> Dict[str, bool]:
        """Converted flag per client session id, in one query."""
        ids = list(dict.fromkeys(session_ids))
        if not ids:
            return {}
        rows = (
            self.db.query(FunnelSession.session_id, FunnelSession.converted)
            .filter(FunnelSession.session_id.in_(ids))
            .all()
        )
        return {row.session_id: bool(row.converted) for row in rows}

    # -------------------------------------------------------------------------
    # Events
    # -------------------------------------------------------------------------

    def events(
        self,
        funnel_id: str,
        window: Optional[TimeWindow],
        *columns,
        event_name: Optional[str] = None,
        page_views_only: bool = False,
        micro_conversions_only: bool = False,
        conversions_only: bool = False,
        with_vitals: bool = False,
        session_ids: Optional[Iterable[str]] = None,
        order: str = "asc",
    ) -> List[Any]:
        """Events with a timestamp inside the window, ordered by timestamp."""
        query = self.db.query(*columns) if columns else self.db.query(FunnelEvent)
        query = query.filter(FunnelEvent.funnel_id == funnel_id)
        if window is not None and window.start is not None:
            query = query.filter(FunnelEvent.timestamp >= window.start)
        if window is not None and window.end is not None:
            query = query.filter(FunnelEvent.timestamp <= window.end)
        if event_name:
            query = query.filter(FunnelEvent.event_name == event_name)
        if page_views_only:
            query = query.filter(FunnelEvent.event_name == PAGE_VIEW)
        if micro_conversions_only:
            query = query.filter(FunnelEvent.is_micro_conversion.is_(True))
        if conversions_only:
            query = query.filter(FunnelEvent.is_conversion.is_(True))
        if with_vitals:
            query = query.filter(or_(
                FunnelEvent.lcp.isnot(None),
                FunnelEvent.inp.isnot(None),
                FunnelEvent.cls.isnot(None),
                FunnelEvent.fcp.isnot(None),
                FunnelEvent.ttfb.isnot(None),
            ))
        if session_ids is not None:
            ids = list(session_ids)
            if not ids:
                return []
            query = query.filter(FunnelEvent.session_id.in_(ids))

        ordering = FunnelEvent.timestamp.desc() if order == "desc" else FunnelEvent.timestamp.asc()
        return query.order_by(ordering).all()

    def geo_fallback_events(
        self,
        funnel_id: str,
        session_ids: Iterable[str],
        window: Optional[TimeWindow] = None,
    ) -> List[Any]:
        """
        Geography-bearing events for many sessions, newest first.

        One query for the whole batch; callers keep the first row per
        session.
        """
        ids = list(dict.fromkeys(session_ids))
        if not ids:
            return []
        query = (
            self.db.query(
                FunnelEvent.session_id,
                FunnelEvent.country_code,
                FunnelEvent.country_name,
                FunnelEvent.region,
                FunnelEvent.city,
                FunnelEvent.timestamp,
            )
            .filter(FunnelEvent.funnel_id == funnel_id)
            .filter(FunnelEvent.session_id.in_(ids))
            .filter(or_(
                FunnelEvent.country_code.isnot(None),
                FunnelEvent.country_name.isnot(None),
                FunnelEvent.region.isnot(None),
                FunnelEvent.city.isnot(None),
            ))
        )
        if window is not None and window.start is not None:
            query = query.filter(FunnelEvent.timestamp >= window.start)
        return query.order_by(FunnelEvent.timestamp.desc()).all()
