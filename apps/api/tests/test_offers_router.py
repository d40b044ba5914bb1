"""
Integration tests for offers API router.
"""
from datetime import datetime
from decimal import Decimal
from uuid import uuid4

from orderdesk.models.offer import OfferUsage


def order_items(items, **quantities):
    return [{"item_id": str(items[name].id), "quantity": qty} for name, qty in quantities.items()]


class TestOfferManagement:

    def test_list_offers_empty(self, client, auth_headers_with_restaurant):
        response = client.get("/api/offers", headers=auth_headers_with_restaurant)

        assert response.status_code == 200
        assert response.json() == {"offers": [], "total": 0}

    def test_create_offer(self, client, auth_headers_with_restaurant, items):
        response = client.post(
            "/api/offers",
            headers=auth_headers_with_restaurant,
            json={
                "name": "Fries 2x1",
                "type": "buy_x_get_y",
                "code": " FRIES2X1 ",
                "target_item_ids": [str(items["fries"].id)],
                "conditions": {"buy_quantity": 1, "get_quantity": 1},
                "valid_days": ["friday", "saturday"],
                "valid_time_start": "17:00",
                "valid_time_end": "23:30",
            }
        )

        assert response.status_code == 201
        data = response.json()
        assert data["code"] == "FRIES2X1"
        assert data["usage_count"] == 0
        assert data["is_active"] is True
        assert data["target_item_ids"] == [str(items["fries"].id)]

    def test_create_rejects_invalid_rules(self, client, auth_headers_with_restaurant):
        too_much = client.post(
            "/api/offers",
            headers=auth_headers_with_restaurant,
            json={"name": "Too much", "type": "percentage", "value": "150"}
        )
        no_sets = client.post(
            "/api/offers",
            headers=auth_headers_with_restaurant,
            json={"name": "Broken", "type": "buy_x_get_y", "conditions": {}}
        )
        bad_time = client.post(
            "/api/offers",
            headers=auth_headers_with_restaurant,
            json={"name": "Late", "type": "fixed", "value": "2", "valid_time_start": "25:00"}
        )

        assert too_much.status_code == 422
        assert no_sets.status_code == 422
        assert bad_time.status_code == 422

    def test_create_offer_window_with_offsets(self, client, auth_headers_with_restaurant):
        response = client.post(
            "/api/offers",
            headers=auth_headers_with_restaurant,
            json={
                "name": "Weekend",
                "type": "fixed",
                "value": "2",
                "starts_at": "2026-03-04T10:00:00+05:00",
                "ends_at": "2026-03-05T10:00:00",
            }
        )
        backwards = client.post(
            "/api/offers",
            headers=auth_headers_with_restaurant,
            json={
                "name": "Backwards",
                "type": "fixed",
                "value": "2",
                "starts_at": "2026-03-04T02:00:00",
                "ends_at": "2026-03-04T06:00:00+05:00",
            }
        )

        assert response.status_code == 201
        assert response.json()["starts_at"] == "2026-03-04T05:00:00"
        assert response.json()["ends_at"] == "2026-03-05T10:00:00"
        assert backwards.status_code == 422

    def test_duplicate_code_rejected(self, client, auth_headers_with_restaurant, make_offer):
        make_offer(code="SAVE10")

        response = client.post(
            "/api/offers",
            headers=auth_headers_with_restaurant,
            json={"name": "Again", "type": "fixed", "value": "1", "code": "save10"}
        )

        assert response.status_code == 400

    def test_update_offer(self, client, auth_headers_with_restaurant, make_offer):
        offer = make_offer(value=Decimal("10"))

        ok = client.patch(f"/api/offers/{offer.id}", headers=auth_headers_with_restaurant, json={"priority": 5})
        invalid = client.patch(f"/api/offers/{offer.id}", headers=auth_headers_with_restaurant, json={"value": "101"})

        assert ok.status_code == 200
        assert ok.json()["priority"] == 5
        assert invalid.status_code == 422

    def test_update_rejects_null_required_field(self, client, auth_headers_with_restaurant, make_offer):
        offer = make_offer(name="Keep me")

        response = client.patch(f"/api/offers/{offer.id}", headers=auth_headers_with_restaurant, json={"name": None})

        assert response.status_code == 422
        assert client.get(f"/api/offers/{offer.id}", headers=auth_headers_with_restaurant).json()["name"] == "Keep me"

    def test_soft_delete(self, client, auth_headers_with_restaurant, make_offer):
        offer = make_offer(code="BYE")

        assert client.delete(f"/api/offers/{offer.id}", headers=auth_headers_with_restaurant).status_code == 204
        assert client.get(f"/api/offers/{offer.id}", headers=auth_headers_with_restaurant).status_code == 404

        reuse = client.post(
            "/api/offers",
            headers=auth_headers_with_restaurant,
            json={"name": "Reuse", "type": "fixed", "value": "1", "code": "BYE"}
        )
        assert reuse.status_code == 400

    def test_activate_deactivate(self, client, auth_headers_with_restaurant, make_offer):
        offer = make_offer()

        off = client.post(f"/api/offers/{offer.id}/deactivate", headers=auth_headers_with_restaurant)
        on = client.post(f"/api/offers/{offer.id}/activate", headers=auth_headers_with_restaurant)

        assert off.json()["is_active"] is False
        assert on.json()["is_active"] is True

    def test_duplicate_offer(self, client, auth_headers_with_restaurant, make_offer):
        offer = make_offer(code="SUMMER", usage_count=3, usage_limit=50, minimum_amount=Decimal("20.00"))

        response = client.post(f"/api/offers/{offer.id}/duplicate", headers=auth_headers_with_restaurant)

        assert response.status_code == 201
        copy = response.json()
        original = client.get(f"/api/offers/{offer.id}", headers=auth_headers_with_restaurant).json()
        assert copy["id"] != original["id"]
        assert copy["code"] == "SUMMER_copy_1"
        assert copy["is_active"] is False
        assert copy["usage_count"] == 0
        for field in ("name", "type", "value", "usage_limit", "minimum_amount", "priority", "is_stackable"):
            assert copy[field] == original[field]

    def test_duplicate_with_overrides(self, client, auth_headers_with_restaurant, make_offer):
        offer = make_offer(code="SUMMER", value=Decimal("10"))
        make_offer(code="TAKEN")
        url = f"/api/offers/{offer.id}/duplicate"

        response = client.post(url, headers=auth_headers_with_restaurant, json={"name": "Autumn", "code": "AUTUMN", "is_active": True})
        taken = client.post(url, headers=auth_headers_with_restaurant, json={"code": "taken"})
        too_much = client.post(url, headers=auth_headers_with_restaurant, json={"value": "150"})

        assert response.status_code == 201
        copy = response.json()
        assert copy["name"] == "Autumn"
        assert copy["code"] == "AUTUMN"
        assert copy["is_active"] is True
        assert Decimal(copy["value"]) == Decimal("10")
        assert taken.status_code == 400
        assert too_much.status_code == 422

    def test_bulk_action(self, client, auth_headers_with_restaurant, make_offer):
        a = make_offer(name="A")
        b = make_offer(name="B")

        response = client.post(
            "/api/offers/bulk",
            headers=auth_headers_with_restaurant,
            json={"action": "deactivate", "offer_ids": [str(a.id), str(b.id)]}
        )

        assert response.json() == {"action": "deactivate", "affected": 2}
        active = client.get("/api/offers?is_active=true", headers=auth_headers_with_restaurant).json()
        assert active["total"] == 0

    def test_unknown_offer(self, client, auth_headers_with_restaurant):
        assert client.get(f"/api/offers/{uuid4()}", headers=auth_headers_with_restaurant).status_code == 404


class TestOfferEvaluation:

    def test_validate_reports_min_amount(self, client, auth_headers_with_restaurant, make_offer, items):
        offer = make_offer(minimum_amount=Decimal("50"))

        response = client.post(
            f"/api/offers/{offer.id}/validate",
            headers=auth_headers_with_restaurant,
            json={"items": order_items(items, burger=1)}
        )

        assert response.status_code == 200
        data = response.json()
        assert data["is_valid"] is False
        assert data["issues"][0]["code"] == "MIN_AMOUNT"
        assert data["issues"][0]["context"] == {"required": "50.00", "actual": "15.00"}
        assert data["suggestions"] == ["Add more items to meet the minimum amount requirement"]

    def test_apply_offer(self, client, auth_headers_with_restaurant, make_offer, items):
        offer = make_offer(value=Decimal("20"), max_discount=Decimal("5"))

        response = client.post(
            f"/api/offers/{offer.id}/apply",
            headers=auth_headers_with_restaurant,
            json={"items": order_items(items, burger=2)}
        )

        assert response.status_code == 200
        data = response.json()
        assert Decimal(data["discount_amount"]) == Decimal("5.00")
        assert Decimal(data["final_amount"]) == Decimal("25.00")
        assert data["was_limited"] is True

    def test_apply_invalid_offer_returns_issues(self, client, auth_headers_with_restaurant, make_offer, items):
        offer = make_offer(excluded_item_ids=[str(items["soda"].id)])

        response = client.post(
            f"/api/offers/{offer.id}/apply",
            headers=auth_headers_with_restaurant,
            json={"items": order_items(items, burger=1, soda=1)}
        )

        assert response.status_code == 422
        data = response.json()
        assert data["code"] == "OFFER_NOT_APPLICABLE"
        assert data["issues"][0]["code"] == "EXCLUDED_ITEMS"
        assert data["suggestions"] == ["Remove excluded items to use this offer"]

    def test_available_and_apply_best(self, client, auth_headers_with_restaurant, make_offer, items):
        make_offer(name="10%", value=Decimal("10"), is_stackable=True, priority=1)
        make_offer(name="3 off", type="fixed", value=Decimal("3"), is_stackable=True)
        make_offer(name="Hidden", type="fixed", value=Decimal("20"), code="VIP")
        body = {"items": order_items(items, burger=2)}

        available = client.post("/api/offers/available", headers=auth_headers_with_restaurant, json=body).json()
        best = client.post("/api/offers/apply-best", headers=auth_headers_with_restaurant, json=body).json()
        with_code = client.post(
            "/api/offers/apply-best", headers=auth_headers_with_restaurant, json={**body, "code": "vip"}
        ).json()

        assert available["total"] == 2
        assert best["strategy"] == "stacked"
        assert Decimal(best["total_discount"]) == Decimal("6.00")
        assert with_code["strategy"] == "single"
        assert Decimal(with_code["total_discount"]) == Decimal("20.00")

    def test_check_code(self, client, auth_headers_with_restaurant, make_offer, items):
        make_offer(name="Welcome", type="fixed", value=Decimal("5"), code="WELCOME5")
        body = {"items": order_items(items, fries=1)}

        valid = client.post("/api/offers/check-code", headers=auth_headers_with_restaurant, json={**body, "code": "welcome5"})
        unknown = client.post("/api/offers/check-code", headers=auth_headers_with_restaurant, json={**body, "code": "NOPE"})

        assert valid.json()["is_valid"] is True
        assert valid.json()["offer"]["name"] == "Welcome"
        assert Decimal(valid.json()["calculation"]["discount_amount"]) == Decimal("4.00")
        assert unknown.json()["is_valid"] is False
        assert unknown.json()["issues"][0]["code"] == "INVALID_CODE"

    def test_evaluation_requires_order_or_items(self, client, auth_headers_with_restaurant, make_offer):
        offer = make_offer()

        response = client.post(f"/api/offers/{offer.id}/validate", headers=auth_headers_with_restaurant, json={})

        assert response.status_code == 422

    def test_unknown_catalog_item(self, client, auth_headers_with_restaurant, make_offer):
        offer = make_offer()

        response = client.post(
            f"/api/offers/{offer.id}/apply",
            headers=auth_headers_with_restaurant,
            json={"items": [{"item_id": str(uuid4()), "quantity": 1}]}
        )

        assert response.status_code == 404
        assert response.json()["code"] == "NOT_FOUND"

    def test_analytics(self, client, auth_headers_with_restaurant, make_offer, db):
        offer = make_offer(usage_limit=5, usage_count=2)
        db.add_all([
            OfferUsage(offer_id=offer.id, customer_ref="ada@example.com", discount_amount=Decimal("2.00"),
                       order_amount=Decimal("20.00"), used_at=offer.created_at),
            OfferUsage(offer_id=offer.id, customer_ref="bob@example.com", discount_amount=Decimal("4.00"),
                       order_amount=Decimal("40.00"), used_at=offer.created_at),
        ])
        db.commit()

        response = client.get(f"/api/offers/{offer.id}/analytics", headers=auth_headers_with_restaurant)

        assert response.status_code == 200
        data = response.json()
        assert data["total_uses"] == 2
        assert data["unique_customers"] == 2
        assert Decimal(data["average_discount"]) == Decimal("3.00")
        assert data["remaining_uses"] == 3
        assert data["daily_usage"][0]["uses"] == 2
        assert Decimal(data["roi"]) == Decimal("900.00")

    def test_analytics_date_range(self, client, auth_headers_with_restaurant, make_offer, db):
        offer = make_offer()
        for day in (4, 6):
            db.add(OfferUsage(offer_id=offer.id, customer_ref="ada@example.com", discount_amount=Decimal("1.00"),
                              order_amount=Decimal("10.00"), used_at=datetime(2026, 3, day, 12, 0)))
        db.commit()
        url = f"/api/offers/{offer.id}/analytics"

        ranged = client.get(url, headers=auth_headers_with_restaurant,
                            params={"start_date": "2026-03-05", "end_date": "2026-03-31"}).json()
        reversed_range = client.get(url, headers=auth_headers_with_restaurant,
                                    params={"start_date": "2026-03-31", "end_date": "2026-03-05"})

        assert ranged["total_uses"] == 2
        assert [d["day"] for d in ranged["daily_usage"]] == ["2026-03-06"]
        assert reversed_range.status_code == 400
