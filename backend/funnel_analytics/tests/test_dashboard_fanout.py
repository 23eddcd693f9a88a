"""Tests for the parallel dashboard.

WHAT: Tests build_dashboard and the /dashboard endpoint
WHY: Each analysis runs on its own thread with its own session; one failing
     analysis must not take down the others

REFERENCES:
  - funnel_analytics/services/dashboard.py
  - funnel_analytics/routers/funnel_analytics.py: get_dashboard
"""

import pytest

from funnel_analytics.deps import TenantScope
from funnel_analytics.errors import FunnelNotFoundError
from funnel_analytics.services import dashboard
from funnel_analytics.services.time_range import resolve_time_range


SCOPE = TenantScope(organization_id="org-1")


@pytest.fixture
def seeded(funnel, add_session, add_event):
    add_session("s1", current_stage="awareness", device_type="mobile", country_code="NL", country_name="Netherlands")
    add_session("s2", current_stage="purchase", converted=True, conversion_value=30, device_type="desktop")
    add_event("s1", page_path="/")
    add_event("s2", event_name="purchase", is_conversion=True, revenue=30)
    return funnel


class TestBuildDashboard:

    def test_results_match_individual_analyses(self, seeded, session_factory, test_db_session):
        window = resolve_time_range("7d")
        names = ["stage_flow", "devices", "overview"]

        result = dashboard.build_dashboard(seeded.id, SCOPE, window, names, session_factory, max_workers=3)

        assert result["errors"] == {}
        assert list(result["results"]) == names
        for name in names:
            assert result["results"][name] == dashboard.ANALYSES[name](test_db_session, seeded.id, window)

        results = result["results"]
        assert (results["overview"]["total_sessions"], results["overview"]["revenue"]) == (2, 30)
        assert {d["device"] for d in results["devices"]["devices"]} == {"mobile", "desktop"}
        assert [s["stage"] for s in results["stage_flow"]["stages"]] == ["awareness", "purchase"]

    def test_default_analyses(self, seeded, session_factory):
        result = dashboard.build_dashboard(seeded.id, SCOPE, resolve_time_range("7d"), None, session_factory)

        assert list(result["results"]) == list(dashboard.DEFAULT_ANALYSES)

    def test_failed_analysis_is_isolated(self, seeded, session_factory, monkeypatch):
        def broken(db, funnel_id, window):
            raise RuntimeError("boom")

        monkeypatch.setitem(dashboard.ANALYSES, "devices", broken)

        result = dashboard.build_dashboard(
            seeded.id, SCOPE, resolve_time_range("7d"), ["overview", "devices"], session_factory
        )

        assert list(result["results"]) == ["overview"]
        assert result["errors"] == {"devices": "boom"}

    def test_unknown_analysis_raises(self, seeded, session_factory):
        with pytest.raises(ValueError):
            dashboard.build_dashboard(seeded.id, SCOPE, resolve_time_range("7d"), ["nope"], session_factory)

    def test_funnel_checked_before_fan_out(self, session_factory, monkeypatch):
        calls = []
        monkeypatch.setitem(dashboard.ANALYSES, "overview", lambda *args: calls.append(args))

        with pytest.raises(FunnelNotFoundError):
            dashboard.build_dashboard("missing", SCOPE, resolve_time_range("7d"), ["overview"], session_factory)
        assert calls == []


class TestDashboardEndpoint:

    def test_dashboard_endpoint(self, client, seeded, headers):
        response = client.get(
            f"/funnels/{seeded.id}/dashboard",
            params={"analyses": "overview, geography,purchase_heatmap"},
            headers=headers,
        )

        assert response.status_code == 200
        data = response.json()
        assert list(data["results"]) == ["overview", "geography", "purchase_heatmap"]
        assert data["results"]["overview"]["conversions"] == 1
        assert data["results"]["purchase_heatmap"]["total_purchases"] == 1

    def test_dashboard_unknown_analysis_is_400(self, client, seeded, headers):
        response = client.get(f"/funnels/{seeded.id}/dashboard?analyses=overview,nope", headers=headers)
        assert response.status_code == 400

    def test_dashboard_unknown_funnel_is_404(self, client, seeded, headers):
        response = client.get("/funnels/missing/dashboard", headers=headers)
        assert response.status_code == 404
