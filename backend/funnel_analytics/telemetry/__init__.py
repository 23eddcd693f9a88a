"""
Telemetry Module
================

Observability for the funnel analytics API.

Components:
- sentry.py: Error tracking and performance monitoring

Environment Variables:
- SENTRY_DSN: Sentry project DSN

Usage:
    from funnel_analytics.telemetry import init_sentry, capture_exception
"""

from funnel_analytics.telemetry.sentry import (
    init_sentry,
    capture_exception,
    capture_message,
)

__all__ = [
    "init_sentry",
    "capture_exception",
    "capture_message",
]
