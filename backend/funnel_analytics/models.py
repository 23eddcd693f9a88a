"""SQLAlchemy ORM models and enums.

This module defines the funnel tracking schema read by the analytics engine.
Sessions, events and visitor profiles are written by the ingestion path; the
engine only reads them, except for the lazily computed
`VisitorProfile.lifecycle_stage`.

String primary keys are used throughout because session and visitor ids are
generated client-side by the tracking snippet.
"""

import uuid
from datetime import datetime
import enum

from sqlalchemy import (
    Column, String, DateTime, Enum, Integer, ForeignKey, Numeric, JSON, Text,
    Boolean, Float, Index,
)
from sqlalchemy.orm import relationship, declarative_base


# Single Base used by the entire application
Base = declarative_base()


def _new_id() -> str:
    return str(uuid.uuid4())


# Enums ---------------------------------------------------------

class LifecycleStageEnum(str, enum.Enum):
    """Visitor lifecycle label, computed lazily by services/lifecycle.py."""
    new = "NEW"
    returning = "RETURNING"
    loyal = "LOYAL"
    churned = "CHURNED"


class FunnelStageEnum(str, enum.Enum):
    """Canonical funnel stages, in funnel order.

    Sessions store the stage as a plain string so that unrecognized stages
    sent by a misconfigured snippet are preserved (and surfaced as anomalies)
    rather than rejected.
    """
    awareness = "awareness"
    interest = "interest"
    desire = "desire"
    checkout = "checkout"
    purchase = "purchase"
    abandoned = "abandoned"


class VitalRatingEnum(str, enum.Enum):
    good = "GOOD"
    needs_improvement = "NEEDS_IMPROVEMENT"
    poor = "POOR"


# Core models ----------------------------------------------------

class Funnel(Base):
    """A tenant's trackable visitor journey.

    The scoping unit for every analytics query. Identity is immutable once
    created; organization/subaccount define the tenant scope.
    """
    __tablename__ = "funnels"

    id = Column(String, primary_key=True, default=_new_id)
    organization_id = Column(String, nullable=False, index=True)
    subaccount_id = Column(String, nullable=True)
    name = Column(String, nullable=False)
    domain = Column(String, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    sessions = relationship("FunnelSession", back_populates="funnel")

    def __str__(self):
        return self.name


class VisitorProfile(Base):
    """Cross-session identity for an anonymous or identified visitor.

    `id` is the anonymous id generated by the tracking snippet.
    `lifecycle_stage` starts unset and is filled in by the lifecycle backfill.
    """
    __tablename__ = "visitor_profiles"

    id = Column(String, primary_key=True, default=_new_id)
    display_name = Column(String, nullable=True)
    identified_user_id = Column(String, nullable=True, index=True)
    user_properties = Column(JSON, default=dict)

    first_seen = Column(DateTime, nullable=False, default=datetime.utcnow)
    last_seen = Column(DateTime, nullable=False, default=datetime.utcnow)
    total_sessions = Column(Integer, default=0, nullable=False)
    total_events = Column(Integer, default=0, nullable=False)

    lifecycle_stage = Column(
        Enum(LifecycleStageEnum, values_callable=lambda obj: [e.value for e in obj]),
        nullable=True,
    )

    sessions = relationship("FunnelSession", back_populates="profile")

    def __str__(self):
        return self.display_name or self.id


class FunnelSession(Base):
    """One visitor's bounded interaction window on a funnel.

    First/last touch attribution fields are captured by the snippet on the
    landing page (first) and on every subsequent marketing touch (last).
    """
    __tablename__ = "funnel_sessions"
    __table_args__ = (
        Index("ix_funnel_sessions_funnel_started", "funnel_id", "started_at"),
    )

    id = Column(String, primary_key=True, default=_new_id)
    # Client-generated session id; events reference this, not `id`
    session_id = Column(String, unique=True, nullable=False)
    funnel_id = Column(String, ForeignKey("funnels.id"), nullable=False)
    anonymous_id = Column(String, ForeignKey("visitor_profiles.id"), nullable=True)
    user_id = Column(String, nullable=True)

    started_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    ended_at = Column(DateTime, nullable=True)
    page_views = Column(Integer, default=0, nullable=False)
    events_count = Column(Integer, default=0, nullable=False)
    duration_seconds = Column(Integer, nullable=True)
    active_time_seconds = Column(Integer, nullable=True)
    # Non-null means the snippet measured engagement for this session
    engagement_rate = Column(Float, nullable=True)

    # Funnel stage tracking
    current_stage = Column(String, nullable=True)
    stage_history = Column(JSON, default=list)  # [{"stage": str, "entered_at": epoch ms}]
    is_abandoned = Column(Boolean, default=False, nullable=False)

    # Conversion
    converted = Column(Boolean, default=False, nullable=False)
    conversion_value = Column(Numeric(12, 2), nullable=True)
    conversion_platform = Column(String, nullable=True)

    # First touch
    first_source = Column(String, nullable=True)
    first_medium = Column(String, nullable=True)
    first_campaign = Column(String, nullable=True)
    first_fbclid = Column(String, nullable=True)
    first_gclid = Column(String, nullable=True)
    first_ttclid = Column(String, nullable=True)

    # Last touch
    last_source = Column(String, nullable=True)
    last_medium = Column(String, nullable=True)
    last_campaign = Column(String, nullable=True)
    last_fbclid = Column(String, nullable=True)
    last_gclid = Column(String, nullable=True)
    last_ttclid = Column(String, nullable=True)

    # Device
    device_type = Column(String, nullable=True)
    browser_name = Column(String, nullable=True)
    browser_version = Column(String, nullable=True)
    os_name = Column(String, nullable=True)
    os_version = Column(String, nullable=True)

    # Geography
    country_code = Column(String, nullable=True)
    country_name = Column(String, nullable=True)
    region = Column(String, nullable=True)
    city = Column(String, nullable=True)

    # Core Web Vitals averages
    avg_lcp = Column(Float, nullable=True)
    avg_inp = Column(Float, nullable=True)
    avg_cls = Column(Float, nullable=True)
    avg_fcp = Column(Float, nullable=True)
    avg_ttfb = Column(Float, nullable=True)
    experience_score = Column(Float, nullable=True)

    funnel = relationship("Funnel", back_populates="sessions")
    profile = relationship("VisitorProfile", back_populates="sessions")

    def __str__(self):
        return f"{self.session_id} ({self.current_stage or 'no stage'})"


class FunnelEvent(Base):
    """Immutable timestamped occurrence within a session.

    Events carry their own device and geography fields; these may be set even
    when the owning session's geography is unknown (used as a fallback).
    """
    __tablename__ = "funnel_events"
    __table_args__ = (
        Index("ix_funnel_events_funnel_timestamp", "funnel_id", "timestamp"),
        Index("ix_funnel_events_session", "session_id"),
    )

    id = Column(String, primary_key=True, default=_new_id)
    event_id = Column(String, nullable=True)
    funnel_id = Column(String, ForeignKey("funnels.id"), nullable=False)
    session_id = Column(String, nullable=False)
    anonymous_id = Column(String, nullable=True)
    user_id = Column(String, nullable=True)

    event_name = Column(String, nullable=False)
    event_category = Column(String, nullable=True)
    event_description = Column(Text, nullable=True)
    event_properties = Column(JSON, default=dict)

    is_micro_conversion = Column(Boolean, default=False, nullable=False)
    micro_conversion_type = Column(String, nullable=True)
    micro_conversion_value = Column(Float, nullable=True)
    funnel_stage = Column(String, nullable=True)

    is_conversion = Column(Boolean, default=False, nullable=False)
    revenue = Column(Numeric(12, 2), nullable=True)

    page_url = Column(String, nullable=True)
    page_title = Column(String, nullable=True)
    page_path = Column(String, nullable=True)

    utm_source = Column(String, nullable=True)
    utm_medium = Column(String, nullable=True)
    utm_campaign = Column(String, nullable=True)

    device_type = Column(String, nullable=True)
    browser_name = Column(String, nullable=True)
    browser_version = Column(String, nullable=True)
    os_name = Column(String, nullable=True)

    country_code = Column(String, nullable=True)
    country_name = Column(String, nullable=True)
    region = Column(String, nullable=True)
    city = Column(String, nullable=True)

    # Core Web Vitals snapshot
    lcp = Column(Float, nullable=True)
    inp = Column(Float, nullable=True)
    cls = Column(Float, nullable=True)
    fcp = Column(Float, nullable=True)
    ttfb = Column(Float, nullable=True)
    vital_rating = Column(
        Enum(VitalRatingEnum, values_callable=lambda obj: [e.value for e in obj]),
        nullable=True,
    )

    timestamp = Column(DateTime, nullable=False, default=datetime.utcnow)
    created_at = Column(DateTime, default=datetime.utcnow)

    def __str__(self):
        return f"{self.event_name} - {self.session_id} - {self.timestamp}"
