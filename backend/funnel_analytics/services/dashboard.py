"""
Parallel Dashboard
==================

WHAT:
    Computes several independent analyses for one funnel and window
    concurrently and fans the results in, keyed by analysis name.

WHY:
    - Each analysis is read-only and shares nothing with its siblings,
      so the wall time is bounded by the slowest one, not their sum
    - A SQLAlchemy Session is not thread-safe: every worker opens its own
      from the session factory and closes it when done
    - One failing analysis must not fail the dashboard; it is logged,
      reported to Sentry and returned as an error entry

REFERENCES:
    - funnel_analytics/services/session_analytics.py
    - funnel_analytics/services/event_analytics.py
    - funnel_analytics/routers/funnel_analytics.py: /dashboard endpoint
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Any, Callable, Dict, Iterable, Optional, Tuple

from sqlalchemy.orm import Session, sessionmaker

from funnel_analytics.services import event_analytics, session_analytics
from funnel_analytics.services.store_reader import FunnelStore
from funnel_analytics.services.time_range import TimeWindow
from funnel_analytics.telemetry import capture_exception

logger = logging.getLogger(__name__)

DEFAULT_MAX_WORKERS = 6

Handler = Callable[[Session, str, TimeWindow], Dict[str, Any]]

# Analyses addressable by name; all share the (db, funnel_id, window) signature
ANALYSES: Dict[str, Handler] = {
    "overview": session_analytics.overview,
    "traffic_sources": session_analytics.traffic_sources,
    "utm": session_analytics.utm_analytics,
    "sessions_trend": session_analytics.sessions_trend,
    "devices": session_analytics.device_analytics,
    "geography": session_analytics.geography_analytics,
    "performance": session_analytics.performance_analytics,
    "funnel_flow": session_analytics.funnel_flow,
    "stage_flow": session_analytics.stage_flow_analysis,
    "conversions_by_platform": session_analytics.conversions_by_platform,
    "ad_performance": session_analytics.ad_performance,
    "events_trend": event_analytics.events_trend,
    "category_breakdown": event_analytics.category_breakdown,
    "top_micro_conversions": event_analytics.top_micro_conversions,
    "event_engagement": event_analytics.event_engagement,
    "purchase_heatmap": event_analytics.purchase_heatmap,
    "web_vitals": event_analytics.web_vitals_stats,
}

DEFAULT_ANALYSES = ("overview", "traffic_sources", "devices", "geography", "stage_flow", "events_trend")


def build_dashboard(
    funnel_id: str,
    scope,
    window: TimeWindow,
    analyses: Optional[Iterable[str]],
    session_factory: sessionmaker,
    max_workers: int = DEFAULT_MAX_WORKERS,
) -> Dict[str, Any]:
    """
    Run the requested analyses in parallel, one DB session per thread.

    Args:
        funnel_id: Funnel to analyse
        scope: TenantScope used for the single funnel check
        window: Resolved time window shared by every analysis
        analyses: Names from ANALYSES (defaults to DEFAULT_ANALYSES)
        session_factory: Factory for per-thread sessions
        max_workers: Thread pool size

    Returns:
        {"results": {name: data}, "errors": {name: message}}

    Raises:
        FunnelNotFoundError: checked once before any thread starts
        ValueError: unknown analysis name
    """
    names = list(dict.fromkeys(analyses or DEFAULT_ANALYSES))
    unknown = [n for n in names if n not in ANALYSES]
    if unknown:
        raise ValueError(f"Unknown analyses: {', '.join(unknown)}")

    # Not-found fails the whole request before any work is scheduled
    db = session_factory()
    try:
        FunnelStore(db).get_funnel(funnel_id, scope)
    finally:
        db.close()

    started = time.monotonic()
    results: Dict[str, Any] = {}
    errors: Dict[str, str] = {}

    def run_single(name: str) -> Tuple[str, Any, Optional[str]]:
        """Run one analysis with its own session."""
        local_db = session_factory()
        try:
            return name, ANALYSES[name](local_db, funnel_id, window), None
        except Exception as e:
            logger.error("[DASHBOARD] Analysis %s failed for funnel %s: %s", name, funnel_id, e)
            capture_exception(e, extra={
                "operation": "dashboard_analysis",
                "analysis": name,
                "funnel_id": funnel_id,
            })
            return name, None, str(e)
        finally:
            local_db.close()

    with ThreadPoolExecutor(max_workers=max(1, min(max_workers, len(names)))) as executor:
        futures = {executor.submit(run_single, name): name for name in names}

        for future in as_completed(futures):
            name = futures[future]
            try:
                _, data, error = future.result()
            except Exception as e:
                logger.error("[DASHBOARD] Future failed for %s: %s", name, e)
                data, error = None, str(e)
            if error is None:
                results[name] = data
            else:
                errors[name] = error

    logger.info(
        "[DASHBOARD] funnel=%s analyses=%d success=%d errors=%d elapsed=%.2fs",
        funnel_id,
        len(names),
        len(results),
        len(errors),
        time.monotonic() - started,
    )

    # Keep the caller's requested order
    return {
        "results": {n: results[n] for n in names if n in results},
        "errors": {n: errors[n] for n in names if n in errors},
    }
