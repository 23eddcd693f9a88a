"""Tests for the funnel analytics endpoints.

WHAT: Exercises the session/event analysis endpoints end to end against a
      seeded SQLite database
WHY: Tenant scoping, time range validation and the geography fallback all
     live at the seams between router, store and aggregators

REFERENCES:
  - funnel_analytics/routers/funnel_analytics.py
  - funnel_analytics/routers/event_analytics.py
  - funnel_analytics/services/session_analytics.py
"""

from sqlalchemy import text

from funnel_analytics.database import get_sync_session
from funnel_analytics.models import Funnel, FunnelSession, VitalRatingEnum
from funnel_analytics.services.attribution import resolve_geographies
from funnel_analytics.services.store_reader import FunnelStore


def test_sync_session_context_manager():
    """Scripts outside FastAPI get a working session from the configured engine."""
    with get_sync_session() as db:
        assert db.execute(text("SELECT 1")).scalar() == 1


class TestScopeAndValidation:
    """Requests outside the caller's scope or with a bad range fail early."""

    def test_health_needs_no_scope(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}

    def test_missing_organization_header_is_rejected(self, client, funnel):
        response = client.get(f"/funnels/{funnel.id}/overview")
        assert response.status_code == 401

    def test_unknown_funnel_is_404(self, client, funnel, headers):
        response = client.get("/funnels/does-not-exist/overview", headers=headers)
        assert response.status_code == 404
        assert response.json()["detail"] == "Funnel not found"

    def test_funnel_of_other_org_looks_missing(self, client, test_db_session, headers):
        test_db_session.add(Funnel(id="foreign", organization_id="org-2", name="Theirs"))
        test_db_session.commit()

        response = client.get("/funnels/foreign/stage-flow", headers=headers)
        assert response.status_code == 404

    def test_subaccount_scope_must_match(self, client, test_db_session, headers):
        test_db_session.add(Funnel(id="sub", organization_id="org-1", subaccount_id="acct-9", name="Sub"))
        test_db_session.commit()

        assert client.get("/funnels/sub/overview", headers=headers).status_code == 404
        scoped = {**headers, "X-Subaccount-Id": "acct-9"}
        assert client.get("/funnels/sub/overview", headers=scoped).status_code == 200

    def test_unknown_preset_is_400(self, client, funnel, headers):
        response = client.get(f"/funnels/{funnel.id}/overview?time_range=2w", headers=headers)
        assert response.status_code == 400

    def test_start_after_end_is_400(self, client, funnel, headers):
        response = client.get(
            f"/funnels/{funnel.id}/overview",
            params={"start_date": "2025-12-31T00:00:00", "end_date": "2025-12-01T00:00:00"},
            headers=headers,
        )
        assert response.status_code == 400


class TestSessionAnalyses:

    def test_empty_window_returns_zeroes(self, client, funnel, headers):
        response = client.get(f"/funnels/{funnel.id}/overview", headers=headers)

        assert response.status_code == 200
        data = response.json()
        assert data["total_sessions"] == 0
        assert data["revenue"] == 0
        assert data["top_utm"] == []

    def test_geography_falls_back_to_event_geo(self, client, funnel, headers, add_session, add_event):
        add_session("s-nl", minutes_ago=90, country_code="NL", country_name="Netherlands", city="Amsterdam")
        add_session("s-geo", minutes_ago=80)
        add_session("s-none", minutes_ago=70)
        add_event("s-geo", minutes_ago=79, country_code="US", country_name="United States", city="Austin")
        add_event("s-none", minutes_ago=69)

        response = client.get(f"/funnels/{funnel.id}/geography?time_range=24h", headers=headers)

        assert response.status_code == 200
        data = response.json()
        countries = {(c["country_code"], c["country_name"]): c["sessions"] for c in data["countries"]}
        assert countries == {
            ("NL", "Netherlands"): 1,
            ("US", "United States"): 1,
            ("Unknown", "Unknown"): 1,
        }
        assert {c["city"] for c in data["cities"]} == {"Amsterdam", "Austin"}
        assert data["total_sessions"] == 3

    def test_code_only_fallback_joins_the_named_country(self, client, funnel, headers, add_session, add_event):
        add_session("s-a", minutes_ago=90, country_code="US", country_name="United States")
        add_session("s-b", minutes_ago=80, converted=True, conversion_value=40)
        add_event("s-b", minutes_ago=79, country_code="US")

        response = client.get(f"/funnels/{funnel.id}/geography", headers=headers)

        assert response.status_code == 200
        countries = response.json()["countries"]
        assert len(countries) == 1
        us = countries[0]
        assert (us["country_code"], us["country_name"], us["sessions"]) == ("US", "United States", 2)
        assert us["conversions"] == 1
        assert us["conversion_rate"] == 50.0
        assert us["percentage"] == 100.0

    def test_region_only_event_is_a_fallback_source(self, test_db_session, funnel, add_session, add_event):
        add_session("s-region", minutes_ago=50)
        add_event("s-region", minutes_ago=49, region="Bavaria")
        add_event("s-region", minutes_ago=48)

        store = FunnelStore(test_db_session)
        fallback = store.geo_fallback_events(funnel.id, ["s-region"])
        sessions = store.sessions(
            funnel.id, None,
            FunnelSession.session_id, FunnelSession.country_code, FunnelSession.country_name,
            FunnelSession.region, FunnelSession.city,
        )

        assert [e.region for e in fallback] == ["Bavaria"]
        assert resolve_geographies(store, funnel.id, sessions)["s-region"].region == "Bavaria"

    def test_stage_flow_orders_canonically(self, client, funnel, headers, add_session):
        for i in range(4):
            add_session(f"a{i}", current_stage="awareness")
        for i in range(2):
            add_session(f"i{i}", current_stage="interest")
        add_session("p0", current_stage="purchase", converted=True)
        add_session("u0", current_stage="upsell")
        add_session("n0")

        response = client.get(f"/funnels/{funnel.id}/stage-flow", headers=headers)

        assert response.status_code == 200
        data = response.json()
        assert [s["stage"] for s in data["stages"]] == ["awareness", "interest", "purchase", "upsell"]
        assert [s["drop_off_rate"] for s in data["stages"]] == [0, 50.0, 50.0, 0]
        assert data["overall_conversion_rate"] == "25.00"
        assert data["unrecognized_stages"] == ["upsell"]

    def test_conversions_by_platform_splits_touches(self, client, funnel, headers, add_session):
        add_session("c1", converted=True, conversion_value=50, first_fbclid="fb.1", last_gclid="g.1",
                     last_campaign="spring")
        add_session("c2", converted=True, conversion_value=20)
        add_session("c3", converted=False, first_ttclid="tt.1")

        response = client.get(f"/funnels/{funnel.id}/conversions-by-platform", headers=headers)

        assert response.status_code == 200
        data = response.json()
        assert data["total_conversions"] == 2
        assert data["total_revenue"] == 70
        assert data["first_touch"]["conversions"] == {"facebook": 1, "google": 0, "tiktok": 0, "direct": 1}
        assert data["last_touch"]["revenue"]["google"] == 50
        assert data["top_campaigns"][0]["key"] == "google-spring"

    def test_flow_counts_distinct_sessions(self, client, funnel, headers, add_session, add_event):
        add_session("s1", converted=True)
        add_session("s2")
        add_event("s1", minutes_ago=50, page_path="/")
        add_event("s1", minutes_ago=49, page_path="/pricing")
        add_event("s1", minutes_ago=48, page_path="/")
        add_event("s2", minutes_ago=40, page_path="/")
        add_event("s2", minutes_ago=39, event_name="scroll", page_path="/")

        response = client.get(f"/funnels/{funnel.id}/flow", headers=headers)

        assert response.status_code == 200
        data = response.json()
        assert {n["id"]: n["count"] for n in data["nodes"]} == {"/": 2, "/pricing": 1}
        assert data["metrics"]["conversion_rate"] == 50.0

    def test_sessions_trend_hourly_for_24h(self, client, funnel, headers, add_session):
        add_session("s1", minutes_ago=30, duration_seconds=45, page_views=3)
        add_session("s2", minutes_ago=300, duration_seconds=700, page_views=1)

        response = client.get(f"/funnels/{funnel.id}/sessions-trend?time_range=24h", headers=headers)

        assert response.status_code == 200
        data = response.json()
        assert data["interval"] == "hour"
        assert sum(p["sessions"] for p in data["trend"]) == 2
        distribution = {d["range"]: d["sessions"] for d in data["duration_distribution"]}
        assert distribution["30s-1m"] == 1
        assert distribution["10m+"] == 1
        assert data["totals"]["page_views"] == 4


class TestEventAnalyses:

    def test_event_frequency_buckets(self, client, funnel, headers, add_session, add_event):
        add_session("s1")
        for _ in range(3):
            add_event("s1", event_name="add_to_cart", anonymous_id="v1")
        add_event("s1", event_name="add_to_cart", anonymous_id="v2")

        response = client.get(
            f"/funnels/{funnel.id}/events/frequency?event_name=add_to_cart", headers=headers
        )

        assert response.status_code == 200
        data = response.json()
        assert data["total_users"] == 2
        assert [(d["bucket"], d["user_count"]) for d in data["distribution"]] == [("1", 1), ("3", 1)]

    def test_event_frequency_requires_event_name(self, client, funnel, headers, add_session, add_event):
        add_session("s1")
        add_event("s1", event_name="add_to_cart", anonymous_id="v1")
        add_event("s1", anonymous_id="v1")

        response = client.get(f"/funnels/{funnel.id}/events/frequency", headers=headers)

        assert response.status_code == 422

    def test_event_geography_groups_by_country_code(self, client, funnel, headers, add_session, add_event):
        add_session("s1")
        add_event("s1", minutes_ago=40, country_code="US")
        add_event("s1", minutes_ago=39, country_code="US", country_name="United States", city="Austin")
        add_event("s1", minutes_ago=38, country_code="DE", country_name="Germany")

        response = client.get(f"/funnels/{funnel.id}/events/geography", headers=headers)

        assert response.status_code == 200
        countries = [(c["country_code"], c["country_name"], c["count"]) for c in response.json()["countries"]]
        assert countries == [("US", "United States", 2), ("DE", "Germany", 1)]

    def test_purchase_heatmap_without_purchases_has_no_peak(self, client, funnel, headers):
        response = client.get(f"/funnels/{funnel.id}/events/purchase-heatmap", headers=headers)

        assert response.status_code == 200
        data = response.json()
        assert len(data["cells"]) == 7 * 24
        assert data["peak"] is None
        assert data["total_purchases"] == 0


class TestSessionBreakdowns:
    """Traffic, UTM, device, Web Vitals and ad breakdowns over seeded sessions."""

    def test_utm_by_source_derives_per_group_ratios(self, client, funnel, headers, add_session):
        add_session("u1", first_source="google", converted=True, conversion_value=100, page_views=4)
        add_session("u2", first_source="google", page_views=2)
        add_session("u3", first_source="google", converted=True, conversion_value=50, page_views=3)
        add_session("u4", page_views=1)

        response = client.get(f"/funnels/{funnel.id}/utm?group_by=source", headers=headers)

        assert response.status_code == 200
        data = response.json()
        google, direct = data["data"]
        assert (google["key"], google["sessions"], google["conversions"]) == ("google", 3, 2)
        assert google["conversion_rate"] == 66.67
        assert google["revenue"] == 150
        assert google["avg_page_views"] == 3.0
        assert google["avg_revenue"] == 50.0
        assert google["revenue_per_conversion"] == 75.0
        assert google["medium"] is None
        assert (direct["key"], direct["revenue_per_conversion"]) == ("Direct", 0)
        assert data["totals"] == {"sessions": 4, "conversions": 2, "revenue": 150, "conversion_rate": 50.0}

    def test_traffic_sources_default_missing_fields(self, client, funnel, headers, add_session):
        add_session("t1", minutes_ago=120)
        add_session("t2", minutes_ago=60, first_source="newsletter", first_medium="email")

        response = client.get(f"/funnels/{funnel.id}/traffic-sources", headers=headers)

        assert response.status_code == 200
        sources = response.json()["sources"]
        assert [(s["source"], s["medium"], s["campaign"]) for s in sources] == [
            ("Direct", "None", "None"),
            ("newsletter", "email", "None"),
        ]
        assert [s["percentage"] for s in sources] == [50.0, 50.0]

    def test_device_browser_and_os_rollups(self, client, funnel, headers, add_session):
        add_session("d1", device_type="mobile", browser_name="Chrome", os_name="iOS",
                    converted=True, conversion_value=10)
        add_session("d2", device_type="mobile", browser_name="Safari")
        add_session("d3", device_type="desktop")

        response = client.get(f"/funnels/{funnel.id}/devices", headers=headers)

        assert response.status_code == 200
        data = response.json()
        assert [(d["device"], d["sessions"]) for d in data["devices"]] == [("mobile", 2), ("desktop", 1)]
        assert data["devices"][0]["conversion_rate"] == 50.0
        assert data["devices"][0]["percentage"] == 66.7
        assert {b["browser"]: b["sessions"] for b in data["browsers"]} == {"Chrome": 1, "Safari": 1, "Unknown": 1}
        assert [(o["os"], o["sessions"]) for o in data["operating_systems"]] == [("Unknown", 2), ("iOS", 1)]

    def test_performance_without_samples_is_null(self, client, funnel, headers, add_session):
        add_session("p1")

        response = client.get(f"/funnels/{funnel.id}/performance", headers=headers)

        assert response.status_code == 200
        data = response.json()
        assert data["avg_lcp"] is None
        assert data["avg_experience_score"] is None
        assert data["sessions_with_vitals"] == 0
        assert data["by_device"] == [{
            "device": "Unknown", "avg_lcp": None, "avg_inp": None, "avg_cls": None,
            "avg_experience_score": None, "sessions": 0,
        }]

    def test_performance_means_per_device(self, client, funnel, headers, add_session):
        add_session("p1", device_type="mobile", avg_lcp=2000.0, avg_cls=0.1234, experience_score=80.0)
        add_session("p2", device_type="mobile", avg_lcp=3000.0)
        add_session("p3", device_type="desktop")

        response = client.get(f"/funnels/{funnel.id}/performance", headers=headers)

        assert response.status_code == 200
        data = response.json()
        assert data["avg_lcp"] == 2500
        assert data["avg_cls"] == 0.123
        assert data["avg_inp"] is None
        assert data["avg_experience_score"] == 80
        assert data["sessions_with_vitals"] == 1
        mobile, desktop = data["by_device"]
        assert (mobile["device"], mobile["avg_lcp"], mobile["sessions"]) == ("mobile", 2500, 1)
        assert (desktop["device"], desktop["avg_lcp"], desktop["sessions"]) == ("desktop", None, 0)

    def test_ad_performance_per_platform(self, client, funnel, headers, add_session):
        add_session("a1", converted=True, conversion_platform="facebook", conversion_value=100,
                    last_campaign="spring", first_fbclid="f.1", last_fbclid="f.1")
        add_session("a2", converted=True, conversion_platform="facebook", conversion_value=50,
                    last_campaign="spring")
        add_session("a3", converted=True, conversion_platform="facebook", conversion_value=30,
                    first_campaign="winter")
        add_session("a4", converted=True, conversion_platform="google", conversion_value=20,
                    last_gclid="g.1", last_campaign="brand")
        add_session("a5", conversion_platform="facebook", conversion_value=999)
        for i in range(1, 7):
            add_session(f"tt{i}", converted=True, conversion_platform="tiktok", conversion_value=i,
                        last_campaign=f"t{i}")

        response = client.get(f"/funnels/{funnel.id}/ad-performance", headers=headers)

        assert response.status_code == 200
        data = response.json()
        assert [p["platform"] for p in data["platforms"]] == ["tiktok", "facebook", "google"]
        tiktok, facebook, _ = data["platforms"]
        assert [c["campaign"] for c in tiktok["top_campaigns"]] == ["t6", "t5", "t4", "t3", "t2"]
        assert (facebook["conversions"], facebook["revenue"], facebook["aov"]) == (3, 180, 60.0)
        assert (facebook["first_touch_attributed"], facebook["last_touch_attributed"]) == (1, 1)
        assert [(c["campaign"], c["conversions"], c["revenue"]) for c in facebook["top_campaigns"]] == [
            ("spring", 2, 150),
            ("winter", 1, 30),
        ]
        assert sum(point["total"] for point in data["timeline"]) == 10
        assert sum(point["platforms"]["facebook"] for point in data["timeline"]) == 3
        assert data["summary"] == {"total_conversions": 10, "total_revenue": 221, "aov": 22.1, "platform_count": 3}


class TestEventBreakdowns:
    """Micro-conversion, property, browser, engagement and trend analyses."""

    def test_category_breakdown(self, client, funnel, headers, add_session, add_event):
        add_session("s1", converted=True)
        add_session("s2")
        add_event("s1", event_name="add_to_cart", is_micro_conversion=True, event_category="commerce",
                  micro_conversion_value=10)
        add_event("s1", event_name="add_to_cart", is_micro_conversion=True, event_category="commerce",
                  micro_conversion_value=20)
        add_event("s2", event_name="add_to_cart", is_micro_conversion=True, event_category="commerce")
        add_event("s2", event_name="newsletter", is_micro_conversion=True)
        add_event("s1")

        response = client.get(f"/funnels/{funnel.id}/events/categories", headers=headers)

        assert response.status_code == 200
        data = response.json()
        assert data["total_events"] == 4
        commerce, uncategorized = data["categories"]
        assert commerce == {
            "category": "commerce", "count": 3, "avg_value": 15.0, "sessions": 2,
            "converted_sessions": 1, "conversion_rate": 50.0, "percentage": 75.0,
        }
        assert (uncategorized["category"], uncategorized["count"], uncategorized["avg_value"]) == (
            "uncategorized", 1, 0.0,
        )

    def test_top_micro_conversions_cutoff_and_order(self, client, funnel, headers, add_session, add_event):
        add_session("x1", converted=True)
        add_session("x2", converted=True)
        add_session("x3")
        add_session("x4")
        reached = {
            ("signup", "lead"): ["x1", "x2", "x3"],
            ("video_play", "engagement"): ["x1", "x4"],
            ("chat", "support"): ["x2"],
            ("download", "lead"): ["x3", "x4"],
            ("share", "social"): ["x1", "x2", "x3", "x4"],
        }
        for (name, category), session_ids in reached.items():
            for sid in session_ids:
                add_event(sid, event_name=name, event_category=category, is_micro_conversion=True)

        response = client.get(
            f"/funnels/{funnel.id}/events/micro-conversions", params={"min_sessions": 2}, headers=headers
        )

        assert response.status_code == 200
        rows = response.json()["micro_conversions"]
        assert [(r["micro_conversion_type"], r["conversion_rate"], r["unique_sessions"]) for r in rows] == [
            ("signup", 66.67, 3),
            ("share", 50.0, 4),
            ("video_play", 50.0, 2),
            ("download", 0.0, 2),
        ]

    def test_property_breakdown_discovers_keys_and_fills_unknown(
        self, client, funnel, headers, add_session, add_event
    ):
        add_session("s1")
        add_event("s1", event_name="add_to_cart", minutes_ago=30,
                  event_properties={"color": "red", "size": "M"}, revenue=10)
        add_event("s1", event_name="add_to_cart", minutes_ago=29, event_properties={"color": "red"})
        add_event("s1", event_name="add_to_cart", minutes_ago=28, event_properties={"color": "blue"})
        add_event("s1", minutes_ago=27, event_properties={"path": "/"})

        response = client.get(
            f"/funnels/{funnel.id}/events/properties", params={"event_name": "add_to_cart"}, headers=headers
        )

        assert response.status_code == 200
        data = response.json()
        assert data["total_events"] == 3
        properties = {p["property"]: p for p in data["properties"]}
        assert set(properties) == {"color", "size"}
        assert [(v["value"], v["count"]) for v in properties["color"]["values"]] == [("red", 2), ("blue", 1)]
        assert properties["color"]["values"][0]["revenue"] == 10
        assert [(v["value"], v["count"]) for v in properties["size"]["values"]] == [("Unknown", 2), ("M", 1)]
        assert properties["size"]["distinct_values"] == 2

    def test_browsers_report_most_common_version(self, client, funnel, headers, add_session, add_event):
        add_session("s1")
        for version in ("120", "119", "120"):
            add_event("s1", browser_name="Chrome", browser_version=version)
        add_event("s1", browser_name="Firefox")

        response = client.get(f"/funnels/{funnel.id}/events/browsers", headers=headers)

        assert response.status_code == 200
        browsers = response.json()["browsers"]
        assert [(b["browser"], b["count"], b["top_version"], b["total_versions"]) for b in browsers] == [
            ("Chrome", 3, "120", 2),
            ("Firefox", 1, None, 0),
        ]

    def test_event_engagement_over_measured_sessions(self, client, funnel, headers, add_session, add_event):
        add_session("g1", engagement_rate=80.0, active_time_seconds=40, duration_seconds=50,
                    converted=True, conversion_value=25)
        add_session("g2", engagement_rate=40.0, active_time_seconds=30, duration_seconds=100)
        add_session("g3", active_time_seconds=10, duration_seconds=10)
        add_event("g1")
        add_event("g1")
        add_event("g1", event_name="purchase")
        add_event("g2")
        add_event("g3")

        response = client.get(f"/funnels/{funnel.id}/events/engagement", headers=headers)

        assert response.status_code == 200
        data = response.json()
        assert data["sessions_with_engagement"] == 2
        assert data["avg_engagement"] == 60.0
        purchase, page_view = data["events"]
        assert (purchase["event_name"], purchase["avg_engagement"]) == ("purchase", 80.0)
        assert page_view == {
            "event_name": "page_view", "occurrences": 3, "sessions": 2, "avg_engagement": 55.0,
            "avg_duration": 75, "avg_active_time": 35, "conversions": 1, "conversion_rate": 50.0,
            "revenue": 25,
        }

    def test_category_trend_counts_conversions_as_conversion(
        self, client, funnel, headers, add_session, add_event
    ):
        add_session("s1")
        add_event("s1", event_category="commerce")
        add_event("s1", event_category="commerce", is_conversion=True, revenue=5)
        add_event("s1")

        response = client.get(f"/funnels/{funnel.id}/events/category-trend", headers=headers)

        assert response.status_code == 200
        data = response.json()
        assert data["categories"] == ["commerce", "conversion", "uncategorized"]
        totals = {c: sum(point["counts"][c] for point in data["data"]) for c in data["categories"]}
        assert totals == {"commerce": 1, "conversion": 1, "uncategorized": 1}

    def test_events_over_time_filters_by_event_name(self, client, funnel, headers, add_session, add_event):
        add_session("s1")
        add_event("s1", event_name="add_to_cart")
        add_event("s1", event_name="add_to_cart", is_conversion=True)
        add_event("s1")

        response = client.get(
            f"/funnels/{funnel.id}/events/over-time",
            params={"event_name": "add_to_cart", "interval": "hour"},
            headers=headers,
        )

        assert response.status_code == 200
        data = response.json()
        assert data["interval"] == "hour"
        assert sum(point["events"] for point in data["data"]) == 2
        assert sum(point["conversions"] for point in data["data"]) == 1

    def test_web_vitals_percentiles_and_passing_rate(self, client, funnel, headers, add_session, add_event):
        add_session("s1")
        add_event("s1", lcp=1000.0, cls=0.05, vital_rating=VitalRatingEnum.good)
        add_event("s1", lcp=2000.0, vital_rating=VitalRatingEnum.good)
        add_event("s1", lcp=3000.0, vital_rating=VitalRatingEnum.needs_improvement)
        add_event("s1", lcp=5000.0, vital_rating=VitalRatingEnum.poor)
        add_event("s1")

        response = client.get(f"/funnels/{funnel.id}/events/web-vitals", headers=headers)

        assert response.status_code == 200
        data = response.json()
        assert data["total_vitals"] == 5
        assert data["passing_rate"] == 60.0
        lcp, cls = data["stats"]
        assert (lcp["metric"], lcp["total"], lcp["avg"]) == ("lcp", 4, 2750.0)
        assert (lcp["p50"], lcp["p75"], lcp["p95"]) == (3000.0, 5000.0, 5000.0)
        assert (lcp["min"], lcp["max"]) == (1000.0, 5000.0)
        assert (lcp["good_count"], lcp["needs_improvement_count"], lcp["poor_count"]) == (2, 1, 1)
        assert lcp["good_percent"] == 50.0
        assert (cls["metric"], cls["total"], cls["p75"], cls["good_percent"]) == ("cls", 1, 0.05, 100.0)

    def test_web_vitals_without_samples(self, client, funnel, headers):
        response = client.get(f"/funnels/{funnel.id}/events/web-vitals", headers=headers)

        assert response.status_code == 200
        assert response.json() == {"stats": [], "passing_rate": 0.0, "total_vitals": 0}
