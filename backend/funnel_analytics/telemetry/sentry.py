"""
Sentry Reporting
================

Error and anomaly reporting for the analytics API.

Two kinds of things are sent:
- Exceptions swallowed on purpose (a dashboard sub-analysis that failed while
  its siblings succeeded), through capture_exception
- Data anomalies that are not errors (stages outside the canonical funnel),
  through capture_message

Without SENTRY_DSN both helpers fall back to the module logger, so callers
never need to check whether reporting is configured.

Related files:
- funnel_analytics/main.py: init_sentry at app creation
- funnel_analytics/services/dashboard.py: capture_exception
- funnel_analytics/services/session_analytics.py: capture_message
"""

from __future__ import annotations

import os
import logging
from typing import Any, Dict, Optional
from functools import lru_cache

import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration
from sentry_sdk.integrations.logging import LoggingIntegration

logger = logging.getLogger(__name__)

# Analytics endpoints are cheap and frequent; trace a small share
TRACES_SAMPLE_RATE = 0.05


@lru_cache()
def get_sentry_dsn() -> Optional[str]:
    return os.environ.get("SENTRY_DSN")


def init_sentry(dsn: Optional[str] = None, environment: Optional[str] = None) -> bool:
    """
    Configure the Sentry client once, before the FastAPI app is built.

    Args:
        dsn: Project DSN; falls back to SENTRY_DSN
        environment: Environment tag; falls back to ENVIRONMENT, then "development"

    Returns:
        Whether a client was configured.
    """
    dsn = dsn or get_sentry_dsn()
    if not dsn:
        logger.debug("[SENTRY] No DSN configured, reporting goes to logs only")
        return False

    environment = environment or os.environ.get("ENVIRONMENT", "development")

    try:
        sentry_sdk.init(
            dsn=dsn,
            environment=environment,
            integrations=[
                FastApiIntegration(transaction_style="endpoint"),
                SqlalchemyIntegration(),
                # Breadcrumbs from INFO, events from ERROR
                LoggingIntegration(level=logging.INFO, event_level=logging.ERROR),
            ],
            traces_sample_rate=TRACES_SAMPLE_RATE,
            send_default_pii=False,
            release=os.environ.get("RELEASE_VERSION"),
        )
    except Exception as e:
        logger.error(f"[SENTRY] Client setup failed: {e}")
        return False

    logger.info(f"[SENTRY] Reporting enabled ({environment})")
    return True


def is_enabled() -> bool:
    client = sentry_sdk.get_client()
    return client.is_active() and bool(client.dsn)


def _with_extras(extra: Optional[Dict[str, Any]], send) -> None:
    with sentry_sdk.new_scope() as scope:
        for key, value in (extra or {}).items():
            scope.set_extra(key, value)
        send()


def capture_exception(exception: Exception, extra: Optional[Dict[str, Any]] = None) -> None:
    """
    Report an exception that the caller handled and did not re-raise.

    Example:
        except Exception as e:
            capture_exception(e, extra={"analysis": name, "funnel_id": funnel_id})
    """
    if not is_enabled():
        logger.error(f"[SENTRY] (disabled) {type(exception).__name__}: {exception} extra={extra}")
        return

    try:
        _with_extras(extra, lambda: sentry_sdk.capture_exception(exception))
    except Exception as e:
        logger.error(f"[SENTRY] Could not report exception: {e}")


def capture_message(message: str, level: str = "info", extra: Optional[Dict[str, Any]] = None) -> None:
    """Report a non-exception anomaly at the given level."""
    if not is_enabled():
        logger.log(logging.getLevelName(level.upper()), f"[SENTRY] (disabled) {message} extra={extra}")
        return

    try:
        _with_extras(extra, lambda: sentry_sdk.capture_message(message, level=level))
    except Exception as e:
        logger.error(f"[SENTRY] Could not report message: {e}")
