"""
Attribution Resolver
====================

WHAT:
    - First/last touch platform from click identifiers
    - Session geography with event-level fallback
    - First/last touch conversion and revenue split per platform

WHY:
    Click identifiers are the only reliable paid-channel signal; UTM fields
    are free text. Geography is captured per session by the snippet but is
    often missing on the landing hit, while later events carry it.

PRECEDENCE (identical for both touch sides, first match wins):
    fbclid -> facebook, gclid -> google, ttclid -> tiktok, else direct.

REFERENCES:
    - funnel_analytics/services/store_reader.py: geo_fallback_events
    - funnel_analytics/services/session_analytics.py: consumers
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence

from funnel_analytics.services.rollup import first_seen, to_float

logger = logging.getLogger(__name__)

UNKNOWN = "Unknown"
DIRECT = "direct"
PLATFORMS = ("facebook", "google", "tiktok", DIRECT)

# (click id field suffix, platform), checked in order
CLICK_ID_PRECEDENCE = (
    ("fbclid", "facebook"),
    ("gclid", "google"),
    ("ttclid", "tiktok"),
)
TOUCH_SIDES = ("first", "last")


@dataclass(frozen=True)
class Touch:
    platform: str
    is_attributed: bool


@dataclass(frozen=True)
class Geography:
    country_code: str
    country_name: str
    city: str
    region: str

    def to_dict(self) -> Dict[str, str]:
        return {
            "country_code": self.country_code,
            "country_name": self.country_name,
            "city": self.city,
            "region": self.region,
        }


def resolve_touch(session: Any, side: str) -> Touch:
    """Platform of the first or last touch of a session."""
    if side not in TOUCH_SIDES:
        raise ValueError(f"touch side must be one of {TOUCH_SIDES}, got '{side}'")
    for click_id, platform in CLICK_ID_PRECEDENCE:
        if getattr(session, f"{side}_{click_id}", None):
            return Touch(platform=platform, is_attributed=True)
    return Touch(platform=DIRECT, is_attributed=False)


def has_known_geo(value: Optional[str]) -> bool:
    return bool(value) and value != UNKNOWN


def display_country_name(code: str, names: Iterable[Optional[str]]) -> str:
    """
    Display name for a country row grouped by code.

    Fallback geography often carries only the code, which resolve_geography
    echoes as the name; the first real name in the group wins, else the code.
    """
    return first_seen((n for n in names if has_known_geo(n) and n != code), code)


def needs_geo_fallback(session: Any) -> bool:
    return not has_known_geo(session.country_code) and not has_known_geo(session.country_name)


def resolve_geography(session: Any, fallback_events: Sequence[Any] = ()) -> Geography:
    """
    Geography of a session, falling back to its most recent geo-bearing event.

    `fallback_events` are this session's events carrying any geography,
    ordered by timestamp descending. Only consulted when the session's own
    country code and name are both unknown.
    """
    country_code = session.country_code if has_known_geo(session.country_code) else None
    country_name = session.country_name if has_known_geo(session.country_name) else None
    city = session.city if has_known_geo(session.city) else None
    region = session.region if has_known_geo(session.region) else None

    if needs_geo_fallback(session) and fallback_events:
        event = fallback_events[0]
        country_code = event.country_code if has_known_geo(event.country_code) else None
        country_name = event.country_name if has_known_geo(event.country_name) else None
        city = city or (event.city if has_known_geo(event.city) else None)
        region = region or (event.region if has_known_geo(event.region) else None)

    country_code = country_code or UNKNOWN
    return Geography(
        country_code=country_code,
        country_name=country_name or country_code,
        city=city or UNKNOWN,
        region=region or UNKNOWN,
    )


def resolve_geographies(store, funnel_id: str, sessions: Sequence[Any], window=None) -> Dict[str, Geography]:
    """
    Resolve geography for many sessions with a single fallback query.

    Phase 1 finds sessions without known country; phase 2 fetches geo-bearing
    events for all of them at once (newest first) and keeps the first per
    session.

    Returns:
        {client session id: Geography}
    """
    missing = [s.session_id for s in sessions if needs_geo_fallback(s)]
    fallback: Dict[str, List[Any]] = {}
    if missing:
        for event in store.geo_fallback_events(funnel_id, missing, window):
            # Newest first; only the first event per session is used
            fallback.setdefault(event.session_id, []).append(event)
        logger.debug(
            f"[GEOGRAPHY] Fallback for {len(missing)} sessions, "
            f"resolved {len(fallback)} from events"
        )
    return {s.session_id: resolve_geography(s, fallback.get(s.session_id, ())) for s in sessions}


# =============================================================================
# ATTRIBUTION SPLIT
# =============================================================================

def attribution_split(sessions: Iterable[Any]) -> Dict[str, Dict[str, Dict[str, float]]]:
    """
    Conversions and revenue per platform, from both touch sides.

    Only converted sessions count. Every platform is present (zero-valued
    when unseen) so consumers can chart a fixed set of series.

    Returns:
        {"first_touch": {"conversions": {...}, "revenue": {...}},
         "last_touch":  {"conversions": {...}, "revenue": {...}}}
    """
    result = {
        f"{side}_touch": {
            "conversions": {p: 0 for p in PLATFORMS},
            "revenue": {p: 0.0 for p in PLATFORMS},
        }
        for side in TOUCH_SIDES
    }
    for session in sessions:
        if not session.converted:
            continue
        value = to_float(session.conversion_value)
        for side in TOUCH_SIDES:
            platform = resolve_touch(session, side).platform
            bucket = result[f"{side}_touch"]
            bucket["conversions"][platform] += 1
            bucket["revenue"][platform] += value
    return result
