"""
Attribution Resolver Tests (Unit)
=================================

WHAT: Unit tests for click-id precedence, geography fallback and the
      first/last touch split.
WHY: Precedence must be identical on both touch sides, and geography
     fallback must only kick in when the session's own country is unknown.

REFERENCES:
- backend/funnel_analytics/services/attribution.py
"""

from datetime import datetime
from types import SimpleNamespace

import pytest

from funnel_analytics.services.attribution import (
    attribution_split,
    display_country_name,
    resolve_geographies,
    resolve_geography,
    resolve_touch,
)


def _session(session_id="s1", converted=True, value=None, **fields):
    base = dict(
        session_id=session_id,
        converted=converted,
        conversion_value=value,
        first_fbclid=None, first_gclid=None, first_ttclid=None,
        last_fbclid=None, last_gclid=None, last_ttclid=None,
        country_code=None, country_name=None, city=None, region=None,
    )
    base.update(fields)
    return SimpleNamespace(**base)


def _geo_event(session_id, **fields):
    base = dict(session_id=session_id, country_code=None, country_name=None, city=None, region=None,
                timestamp=datetime(2025, 12, 30))
    base.update(fields)
    return SimpleNamespace(**base)


def test_click_id_precedence_is_fixed() -> None:
    session = _session(first_gclid="g", first_fbclid="f", last_ttclid="t", last_gclid="g")

    assert resolve_touch(session, "first").platform == "facebook"
    assert resolve_touch(session, "last").platform == "google"


def test_no_click_id_is_direct_and_unattributed() -> None:
    touch = resolve_touch(_session(), "first")

    assert touch.platform == "direct"
    assert touch.is_attributed is False


def test_bad_touch_side_raises() -> None:
    with pytest.raises(ValueError):
        resolve_touch(_session(), "middle")


def test_geography_uses_session_values_when_known() -> None:
    geo = resolve_geography(
        _session(country_code="NL", country_name="Netherlands", city="Amsterdam"),
        [_geo_event("s1", country_code="US")],
    )

    assert geo.country_code == "NL"
    assert geo.country_name == "Netherlands"
    assert geo.city == "Amsterdam"
    assert geo.region == "Unknown"


def test_geography_falls_back_to_newest_event() -> None:
    geo = resolve_geography(
        _session(country_code="Unknown"),
        [
            _geo_event("s1", country_code="US", city="Austin", region="TX"),
            _geo_event("s1", country_code="CA", country_name="Canada"),
        ],
    )

    # country_name falls back to the code when the name is missing
    assert geo.to_dict() == {"country_code": "US", "country_name": "US", "city": "Austin", "region": "TX"}


def test_geography_unknown_without_fallback() -> None:
    geo = resolve_geography(_session())

    assert geo.country_code == "Unknown"
    assert geo.country_name == "Unknown"


def test_resolve_geographies_queries_fallback_once() -> None:
    calls = []

    class FakeStore:
        def geo_fallback_events(self, funnel_id, session_ids, window=None):
            calls.append(list(session_ids))
            return [_geo_event("s2", country_code="US", country_name="United States")]

    sessions = [
        _session("s1", country_code="NL", country_name="Netherlands"),
        _session("s2"),
        _session("s3"),
    ]

    geos = resolve_geographies(FakeStore(), "f1", sessions)

    assert calls == [["s2", "s3"]]
    assert geos["s1"].country_code == "NL"
    assert geos["s2"].country_name == "United States"
    assert geos["s3"].country_code == "Unknown"


def test_code_only_fallback_names_country_by_code() -> None:
    geo = resolve_geography(_session(), [_geo_event("s1", country_code="US")])

    assert (geo.country_code, geo.country_name) == ("US", "US")


def test_country_row_takes_first_real_name() -> None:
    assert display_country_name("US", ["US", None, "United States", "USA"]) == "United States"
    assert display_country_name("US", ["US", "Unknown"]) == "US"
    assert display_country_name("Unknown", ["Unknown"]) == "Unknown"


def test_attribution_split_counts_converted_sessions_only() -> None:
    sessions = [
        _session("a", value=100, first_fbclid="f", last_gclid="g"),
        _session("b", value=None, first_fbclid="f"),
        _session("c", converted=False, value=50, first_ttclid="t"),
    ]

    split = attribution_split(sessions)

    assert split["first_touch"]["conversions"] == {"facebook": 2, "google": 0, "tiktok": 0, "direct": 0}
    assert split["first_touch"]["revenue"]["facebook"] == 100
    assert split["last_touch"]["conversions"]["google"] == 1
    assert split["last_touch"]["conversions"]["direct"] == 1
    assert split["last_touch"]["revenue"]["tiktok"] == 0
