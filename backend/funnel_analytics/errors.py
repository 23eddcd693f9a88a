"""
Analytics Exceptions
====================

Custom exception types raised by the analytics services.

WHY THIS FILE EXISTS
--------------------
Only a handful of conditions ever fail an analytics request:
- The funnel does not exist or is outside the caller's tenant scope
- A visitor or session referenced by a drill-down does not exist
- The requested time range is malformed

Everything else (empty windows, unknown stages, zero denominators) degrades
to zero-valued results, so it never reaches this module.

Routers translate these into HTTP errors; services never import FastAPI.

RELATED FILES
-------------
- funnel_analytics/services/store_reader.py: Raises FunnelNotFoundError
- funnel_analytics/services/time_range.py: Raises InvalidTimeRangeError
- funnel_analytics/routers/*.py: Map these to 404/400 responses
"""

from typing import Optional


class AnalyticsError(Exception):
    """
    Base exception for all analytics errors.

    USAGE:
        try:
            result = stage_flow_analysis(db, funnel_id, window)
        except AnalyticsError as e:
            raise HTTPException(status_code=e.status_code, detail=e.message)
    """

    status_code = 400

    def __init__(self, message: str, funnel_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.funnel_id = funnel_id


class FunnelNotFoundError(AnalyticsError):
    """Funnel missing, or not owned by the caller's organization/subaccount.

    Both cases deliberately look identical to the caller.
    """

    status_code = 404

    def __init__(self, funnel_id: str):
        super().__init__("Funnel not found", funnel_id=funnel_id)


class VisitorNotFoundError(AnalyticsError):
    status_code = 404

    def __init__(self, anonymous_id: str, funnel_id: Optional[str] = None):
        super().__init__("Visitor not found", funnel_id=funnel_id)
        self.anonymous_id = anonymous_id


class SessionNotFoundError(AnalyticsError):
    status_code = 404

    def __init__(self, session_id: str, funnel_id: Optional[str] = None):
        super().__init__("Session not found", funnel_id=funnel_id)
        self.session_id = session_id


class InvalidTimeRangeError(AnalyticsError, ValueError):
    """Raised for an unknown preset or a start date after the end date."""

    status_code = 400
