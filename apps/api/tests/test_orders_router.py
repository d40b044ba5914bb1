"""
Integration tests for orders API router.
"""
from decimal import Decimal
from uuid import uuid4

import pytest


def create_order(client, headers, **fields):
    response = client.post("/api/orders", headers=headers, json=fields)
    assert response.status_code == 201
    return response.json()


@pytest.fixture
def priced(client, auth_headers_with_restaurant, items):
    """Order with 2 burgers and 1 soda at price_calculated (tax rate 0)."""
    headers = auth_headers_with_restaurant
    order = create_order(client, headers, customer_email="ada@example.com", table_number="3")
    client.post(f"/api/orders/{order['id']}/items", headers=headers, json={"items": [
        {"item_id": str(items["burger"].id), "quantity": 2},
        {"item_id": str(items["soda"].id), "quantity": 1},
    ]})
    client.post(f"/api/orders/{order['id']}/validate", headers=headers)
    return client.post(f"/api/orders/{order['id']}/calculate-price", headers=headers).json()


class TestOrderCommands:

    def test_create_order(self, client, auth_headers_with_restaurant):
        order = create_order(client, auth_headers_with_restaurant, order_type="takeout", customer_name="Ada")

        assert order["status"] == "started"
        assert order["order_type"] == "takeout"
        assert order["version"] == 1
        assert order["items"] == []

    def test_create_order_requires_restaurant(self, client, auth_headers):
        response = client.post("/api/orders", headers=auth_headers, json={})

        assert response.status_code == 404

    def test_priced_order(self, priced):
        assert priced["status"] == "price_calculated"
        assert priced["version"] == 4
        assert Decimal(priced["subtotal"]) == Decimal("33.00")
        assert Decimal(priced["total"]) == Decimal("33.00")
        assert {line["name"] for line in priced["items"]} == {"Burger", "Soda"}

    def test_full_flow_with_offer(self, client, auth_headers_with_restaurant, priced, make_offer, db):
        headers = auth_headers_with_restaurant
        offer = make_offer(name="Happy 10", value=Decimal("10"), auto_apply=True, usage_limit=10)
        order_id = priced["id"]

        promoted = client.post(f"/api/orders/{order_id}/promotions/calculate", headers=headers, json={}).json()
        assert Decimal(promoted["discount"]) == Decimal("3.30")
        assert promoted["applied_offers"][0]["name"] == "Happy 10"

        client.post(f"/api/orders/{order_id}/tip", headers=headers, json={"amount": "2.00"})
        client.post(f"/api/orders/{order_id}/payment-method", headers=headers, json={"payment_method": "card"})
        confirmed = client.post(f"/api/orders/{order_id}/confirm", headers=headers)

        assert confirmed.status_code == 200
        data = confirmed.json()
        assert data["status"] == "confirmed"
        assert data["order_number"].endswith("-0001")
        assert Decimal(data["total"]) == Decimal("31.70")

        db.refresh(offer)
        assert offer.usage_count == 1

        for status in ("preparing", "ready", "completed"):
            response = client.post(f"/api/orders/{order_id}/status", headers=headers, json={"status": status})
            assert response.status_code == 200

        paid = client.post(f"/api/orders/{order_id}/payments", headers=headers, json={}).json()
        assert paid["payment_status"] == "paid"

        refunded = client.post(f"/api/orders/{order_id}/refund", headers=headers, json={"amount": "10.00"})
        assert refunded.json()["status"] == "refunded"

    def test_invalid_transition_is_409(self, client, auth_headers_with_restaurant, priced):
        response = client.post(f"/api/orders/{priced['id']}/confirm", headers=auth_headers_with_restaurant)

        assert response.status_code == 409
        body = response.json()
        assert body["code"] == "INVALID_ORDER_STATE"
        assert body["context"]["status"] == "price_calculated"

    def test_confirm_over_limit_is_409(self, client, auth_headers_with_restaurant, priced, make_offer, db):
        headers = auth_headers_with_restaurant
        offer = make_offer(value=Decimal("10"), auto_apply=True, usage_limit=1)
        order_id = priced["id"]
        client.post(f"/api/orders/{order_id}/promotions/calculate", headers=headers, json={})
        client.post(f"/api/orders/{order_id}/payment-method", headers=headers, json={"payment_method": "cash"})
        offer.usage_count = 1
        db.commit()

        response = client.post(f"/api/orders/{order_id}/confirm", headers=headers)

        assert response.status_code == 409
        assert response.json()["code"] == "LIMIT_EXCEEDED"
        order = client.get(f"/api/orders/{order_id}", headers=headers).json()
        assert order["status"] == "promotions_calculated"
        assert order["order_number"] is None

    def test_apply_and_remove_promotion(self, client, auth_headers_with_restaurant, priced, make_offer):
        headers = auth_headers_with_restaurant
        offer = make_offer(name="5 off", type="fixed", value=Decimal("5"), code="FIVE")
        order_id = priced["id"]

        applied = client.post(f"/api/orders/{order_id}/promotions", headers=headers, json={"code": "FIVE"})
        assert applied.status_code == 200
        assert Decimal(applied.json()["total"]) == Decimal("28.00")

        again = client.post(f"/api/orders/{order_id}/promotions", headers=headers, json={"offer_id": str(offer.id)})
        assert again.status_code == 409

        removed = client.delete(f"/api/orders/{order_id}/promotions/{offer.id}", headers=headers)
        assert Decimal(removed.json()["total"]) == Decimal("33.00")

    def test_apply_promotion_not_applicable_is_422(self, client, auth_headers_with_restaurant, priced, make_offer):
        offer = make_offer(minimum_amount=Decimal("100"))

        response = client.post(
            f"/api/orders/{priced['id']}/promotions",
            headers=auth_headers_with_restaurant,
            json={"offer_id": str(offer.id)}
        )

        assert response.status_code == 422
        assert response.json()["issues"][0]["code"] == "MIN_AMOUNT"

    def test_modify_items_and_customer_info(self, client, auth_headers_with_restaurant, items):
        headers = auth_headers_with_restaurant
        order = create_order(client, headers)
        client.post(f"/api/orders/{order['id']}/items", headers=headers, json={"items": [
            {"item_id": str(items["burger"].id), "quantity": 3},
        ]})

        modified = client.patch(
            f"/api/orders/{order['id']}/items",
            headers=headers,
            json={"quantities": {str(items["burger"].id): 1}}
        ).json()
        updated = client.patch(
            f"/api/orders/{order['id']}/customer",
            headers=headers,
            json={"customer_phone": "+34 600 000 000"}
        ).json()

        assert Decimal(modified["subtotal"]) == Decimal("15.00")
        assert updated["customer_phone"] == "+34 600 000 000"

    def test_adjustments_and_cancel(self, client, auth_headers_with_restaurant, priced):
        headers = auth_headers_with_restaurant
        order_id = priced["id"]

        adjusted = client.post(
            f"/api/orders/{order_id}/adjustments",
            headers=headers,
            json={"type": "surcharge", "amount": "1.50", "reason": "terrace"}
        ).json()
        assert Decimal(adjusted["surcharge"]) == Decimal("1.50")
        assert Decimal(adjusted["total"]) == Decimal("34.50")

        cancelled = client.post(f"/api/orders/{order_id}/cancel", headers=headers, json={"reason": "walked out"}).json()
        assert cancelled["status"] == "cancelled"
        assert cancelled["cancellation_reason"] == "walked out"

    def test_payment_failure(self, client, auth_headers_with_restaurant, priced):
        response = client.post(
            f"/api/orders/{priced['id']}/payments/failed",
            headers=auth_headers_with_restaurant,
            json={"reason": "card declined", "error_code": "05"}
        )

        assert response.json()["payment_status"] == "failed"

    def test_list_and_get(self, client, auth_headers_with_restaurant, priced):
        headers = auth_headers_with_restaurant
        create_order(client, headers)

        everything = client.get("/api/orders", headers=headers).json()
        started = client.get("/api/orders?status=started", headers=headers).json()

        assert everything["total"] == 2
        assert started["total"] == 1
        assert client.get(f"/api/orders/{uuid4()}", headers=headers).status_code == 404


class TestOrderEvents:

    def test_event_stream(self, client, auth_headers_with_restaurant, priced):
        response = client.get(f"/api/orders/{priced['id']}/events", headers=auth_headers_with_restaurant)

        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 4
        assert [e["event_type"] for e in data["events"]] == [
            "PriceCalculated", "ItemsValidated", "ItemsAddedToOrder", "OrderStarted",
        ]
        assert data["events"][-1]["actor_name"] == "testuser@example.com"

    def test_add_event_ignores_client_prices(self, client, auth_headers_with_restaurant, items):
        headers = auth_headers_with_restaurant
        order = create_order(client, headers)

        response = client.post(f"/api/orders/{order['id']}/events/add", headers=headers, json={
            "type": "ItemsAddedToOrder",
            "properties": {
                "items": [{"item_id": str(items["burger"].id), "quantity": 2, "unit_price": "0.01"}],
                "total": "0.02",
            },
        })

        assert response.status_code == 200
        assert Decimal(response.json()["subtotal"]) == Decimal("30.00")
        assert response.json()["items"][0]["unit_price"] == "15.00"

    def test_add_event_errors(self, client, auth_headers_with_restaurant):
        headers = auth_headers_with_restaurant
        order = create_order(client, headers)
        url = f"/api/orders/{order['id']}/events/add"

        unsupported = client.post(url, headers=headers, json={"type": "OrderStarted", "properties": {}})
        invalid = client.post(url, headers=headers, json={"type": "TipAdded", "properties": {}})
        out_of_order = client.post(url, headers=headers, json={"type": "OrderConfirmed", "properties": {}})

        assert unsupported.status_code == 422
        assert unsupported.json()["code"] == "UNSUPPORTED_EVENT"
        assert invalid.status_code == 422
        assert out_of_order.status_code == 409

    def test_state_at(self, client, auth_headers_with_restaurant, priced):
        headers = auth_headers_with_restaurant
        events = client.get(f"/api/orders/{priced['id']}/events", headers=headers).json()["events"]
        latest = events[0]["created_at"]

        now = client.get(f"/api/orders/{priced['id']}/state-at", headers=headers, params={"timestamp": latest}).json()
        before = client.get(
            f"/api/orders/{priced['id']}/state-at",
            headers=headers,
            params={"timestamp": "2000-01-01T00:00:00"},
        ).json()

        assert now["event_count"] == 4
        assert now["state"]["status"] == "price_calculated"
        assert now["state"]["version"] == 4
        assert before["state"] is None
        assert before["event_count"] == 0

    def test_events_between_and_statistics(self, client, auth_headers_with_restaurant, priced):
        headers = auth_headers_with_restaurant
        events = client.get(f"/api/orders/{priced['id']}/events", headers=headers).json()["events"]
        start, end = events[-1]["created_at"], events[0]["created_at"]

        window = client.get(
            f"/api/orders/{priced['id']}/events/between",
            headers=headers,
            params={"start": start, "end": end},
        ).json()
        stats = client.get(f"/api/orders/{priced['id']}/statistics", headers=headers).json()

        assert window["total"] == 4
        assert [e["version"] for e in window["events"]] == [1, 2, 3, 4]
        assert stats["total_events"] == 4
        assert stats["by_type"]["OrderStarted"] == 1

    def test_events_between_mixed_offsets(self, client, auth_headers_with_restaurant, priced):
        url = f"/api/orders/{priced['id']}/events/between"

        window = client.get(
            url,
            headers=auth_headers_with_restaurant,
            params={"start": "2000-01-01T00:00:00Z", "end": "2100-01-01T00:00:00"},
        )
        reversed_window = client.get(
            url,
            headers=auth_headers_with_restaurant,
            params={"start": "2100-01-01T00:00:00", "end": "2000-01-01T00:00:00+01:00"},
        )

        assert window.status_code == 200
        assert window.json()["total"] == 4
        assert reversed_window.status_code == 400
