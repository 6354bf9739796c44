import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from fastapi import FastAPI
from fastapi.testclient import TestClient

from main import RateLimitMiddleware, app

ITEMS = [
    {"product_id": "p1", "unit_price": 500, "quantity": 2},
    {"product_id": "p2", "unit_price": 300, "quantity": 1},
]

COUPONS = [
    {"code": "SAVE10", "discount_type": "Percent", "discount_value": 10, "max_discount": 100},
    {"code": "FLAT150", "discount_type": "Flat", "discount_value": 150},
    {"code": "BIG", "discount_type": "Flat", "discount_value": 500, "min_order_value": 2500},
    {"code": "B1G1", "coupon_type": "bogo", "discount_type": "Percent", "discount_value": 100,
     "eligible_product_ids": ["p1"], "bogo_buy_quantity": 1, "bogo_get_quantity": 1},
]


@pytest.fixture(scope="module")
def client():
    # One client for the module: startup creates the in-memory tables once
    with TestClient(app) as test_client:
        yield test_client


class TestHealth:
    def test_root_and_healthz(self, client):
        assert client.get("/").json()["ok"] is True
        assert client.get("/healthz").json() == {"ok": True}

    def test_api_health_checks_database(self, client):
        body = client.get("/api/health").json()
        assert body["status"] == "healthy"
        assert body["database"]["status"] == "healthy"

    def test_request_id_is_echoed(self, client):
        response = client.get("/healthz", headers={"X-Request-Id": "rid-123"})
        assert response.headers["X-Request-Id"] == "rid-123"


class TestBundleRoutes:
    def test_pricing_discount(self, client):
        response = client.post("/api/bundles/pricing", json={"title": "Set", "price": 1000, "items": ITEMS})

        assert response.status_code == 200
        body = response.json()
        assert body["pricing"]["mode"] == "discount"
        assert body["pricing"]["original_price"] == 1300.0
        assert body["pricing"]["discount_percent"] == 23
        assert body["pricing"]["markup_percent"] == 0
        assert body["display"]["badge"] == "23% OFF"
        assert body["display"]["savings"] == "Save ₹300"

    def test_pricing_markup(self, client):
        body = client.post("/api/bundles/pricing", json={"price": "1625", "items": ITEMS}).json()
        assert body["pricing"]["mode"] == "markup"
        assert body["pricing"]["markup_percent"] == 25
        assert body["pricing"]["signed_percent"] == -25

    def test_pricing_form_shape_items(self, client):
        items = [
            {"product_id": "p1", "variant_id": "v1", "quantity": 1,
             "product": {"price": 400, "has_variants": True}, "variant": {"price": 500}},
            {"product_id": 42, "quantity": 1, "product": {"price": 500}},
        ]
        body = client.post("/api/bundles/pricing", json={"price": 750, "items": items}).json()
        assert body["pricing"]["original_price"] == 1000.0
        assert body["pricing"]["discount_percent"] == 25

    def test_pricing_without_price(self, client):
        response = client.post("/api/bundles/pricing", json={"items": ITEMS})
        assert response.status_code == 400
        assert response.json() == {"error": "Bundle price is required"}

    def test_validate_reports_errors(self, client):
        body = client.post(
            "/api/bundles/validate",
            json={"title": "Set", "price": 500, "items": ITEMS[:1]},
        ).json()
        assert body == {"valid": False, "errors": ["Bundle must have at least 2 products"]}

    def test_validate_missing_variant(self, client):
        items = [
            {"product_id": "p1", "product_title": "Gold Ring", "has_variants": True, "unit_price": 500},
            ITEMS[1],
        ]
        body = client.post("/api/bundles/validate", json={"title": "Set", "price": 700, "items": items}).json()
        assert body["errors"] == ['Please select a variant for "Gold Ring"']

    def test_create_rejects_invalid_draft(self, client):
        response = client.post("/api/bundles", json={"title": "", "price": 1000, "items": ITEMS})
        assert response.status_code == 400
        assert response.json() == {"error": "Bundle title is required", "errors": ["Bundle title is required"]}

    def test_create_rejects_negative_item_price(self, client):
        items = [
            {"product_id": "p1", "unit_price": -500, "quantity": 1},
            {"product_id": "p2", "unit_price": 100, "quantity": 1},
        ]
        response = client.post("/api/bundles", json={"title": "Set", "price": 100, "items": items})
        assert response.status_code == 400
        assert response.json()["errors"] == ["Item 1: price cannot be negative"]

    def test_create_and_fetch_bundle(self, client):
        response = client.post(
            "/api/bundles",
            json={"title": "Festive Set", "price": 1000, "items": ITEMS, "tags": "gift,festive"},
        )
        assert response.status_code == 201
        bundle = response.json()["bundle"]
        assert bundle["discount_percent"] == 23
        assert bundle["markup_percent"] == 0
        assert bundle["original_price"] == 1300.0
        assert bundle["tags"] == ["gift", "festive"]

        fetched = client.get(f"/api/bundles/{bundle['id']}").json()
        assert [i["product_id"] for i in fetched["items"]] == ["p1", "p2"]

        listed = client.get("/api/bundles").json()
        assert bundle["id"] in [b["id"] for b in listed]

    def test_unknown_bundle(self, client):
        response = client.get("/api/bundles/does-not-exist")
        assert response.status_code == 404
        assert response.json() == {"error": "Bundle not found"}


class TestCouponRoutes:
    def test_rank(self, client):
        body = client.post(
            "/api/coupons/rank",
            json={"cart_total": 2000, "cart_items": [], "coupons": COUPONS},
        ).json()

        assert [c["code"] for c in body["eligible"]] == ["FLAT150", "SAVE10"]
        assert [c["code"] for c in body["ineligible"]] == ["B1G1", "BIG"]
        assert body["ineligible"][0]["result"]["message"] == "Add 2 items more"
        assert body["eligible"][1]["display_value"] == "10% OFF (up to ₹100)"

    def test_evaluate(self, client):
        cart_items = [{"product_id": "p1", "quantity": 2, "title": "Gold Ring", "price": 500}]
        body = client.post(
            "/api/coupons/evaluate",
            json={"cart_total": 1000, "cart_items": cart_items, "coupons": COUPONS},
        ).json()

        results = {r["code"]: r for r in body["results"]}
        assert results["SAVE10"]["eligible"] is True
        assert results["SAVE10"]["estimated_discount"] == 100
        assert results["BIG"]["reason_code"] == "min_order"
        assert results["BIG"]["shortfall"] == 1500.0
        assert results["BIG"]["unlock_message"] == "Add ₹1500 more to unlock"
        assert results["B1G1"]["message"] == "Offer available"
        assert results["B1G1"]["display_value"] == "Buy 1 Get 1"
        assert results["B1G1"]["estimated_discount"] == 500

    @pytest.mark.parametrize(
        "code, valid, formatted",
        [("save-10", True, "SAVE-10"), ("x", False, None), ("bad code", False, None)],
    )
    def test_format_check(self, client, code, valid, formatted):
        body = client.post("/api/coupons/format-check", json={"code": code}).json()
        assert body["valid"] is valid
        assert body["code"] == formatted


class TestRateLimit:
    def _limited_app(self, requests_per_minute: int) -> FastAPI:
        limited = FastAPI()
        limited.add_middleware(RateLimitMiddleware, requests_per_minute=requests_per_minute)

        @limited.get("/ping")
        async def ping():
            return {"ok": True}

        return limited

    def test_requests_over_the_limit_get_429(self):
        with TestClient(self._limited_app(2)) as limited_client:
            assert limited_client.get("/ping").status_code == 200
            second = limited_client.get("/ping")
            assert second.headers["X-RateLimit-Remaining"] == "0"
            third = limited_client.get("/ping")
        assert third.status_code == 429
        assert third.json()["error"] == "Rate limit exceeded"

    def test_sweep_forgets_idle_clients(self):
        limiter = RateLimitMiddleware(FastAPI(), requests_per_minute=10)
        now = 10_000.0
        limiter._requests["10.0.0.1"] = [now - 120, now - 90]
        limiter._requests["10.0.0.2"] = []
        limiter._requests["10.0.0.3"] = [now - 5]

        limiter._sweep(now)

        assert dict(limiter._requests) == {"10.0.0.3": [now - 5]}
        assert limiter._last_sweep == now
