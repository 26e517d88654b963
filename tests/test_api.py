import uuid

import httpx
import pytest

from dinenow.main import create_app


@pytest.fixture
async def client(settings, database, service):
    app = create_app(settings)
    # ASGITransport does not run the lifespan hook
    app.state.database = database
    app.state.ordering_service = service

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


def _order_payload(menu, customer, **overrides):
    payload = {
        "table_id": str(menu.table_id),
        "customer": customer,
        "items": [
            {"menu_item_id": str(menu.amok_id), "variant_id": str(menu.amok_small_id), "quantity": 2},
            {"menu_item_id": str(menu.coffee_id), "variant_id": str(menu.coffee_medium_id), "quantity": 1},
        ],
        "notes": "near the river",
    }
    payload.update(overrides)
    return payload


async def test_place_and_fetch_order(client, menu, customer):
    response = await client.post("/api/orders", json=_order_payload(menu, customer))
    assert response.status_code == 201
    body = response.json()
    assert body["success"] is True
    order = body["data"]
    assert order["total_amount"] == "15.00"
    assert order["status"] == "pending"
    assert [item["quantity"] for item in order["items"]] == [2, 1]

    fetched = await client.get(f"/api/orders/{order['id']}")
    assert fetched.status_code == 200
    assert fetched.json()["order_number"] == order["order_number"]


async def test_status_flow(client, menu, customer):
    order = (await client.post("/api/orders", json=_order_payload(menu, customer))).json()["data"]

    response = await client.patch(f"/api/orders/{order['id']}/status", json={"status": "confirmed"})
    assert response.status_code == 200
    assert response.json()["confirmed_at"] is not None

    response = await client.patch(f"/api/orders/{order['id']}/status", json={"status": "served"})
    assert response.status_code == 400
    assert response.json()["error"] == "invalid_transition"


async def test_error_mapping(client, menu, customer):
    missing_table = _order_payload(menu, customer, table_id=str(uuid.uuid4()))
    response = await client.post("/api/orders", json=missing_table)
    assert response.status_code == 404
    assert response.json()["error"] == "not_found"

    unavailable = _order_payload(
        menu,
        customer,
        items=[{"menu_item_id": str(menu.coffee_id), "variant_id": str(menu.coffee_large_id), "quantity": 1}],
    )
    response = await client.post("/api/orders", json=unavailable)
    assert response.status_code == 409
    assert response.json()["error"] == "unavailable"

    response = await client.post("/api/orders", json=_order_payload(menu, customer, items=[]))
    assert response.status_code == 400
    assert response.json()["error"] == "validation_error"

    response = await client.get(f"/api/orders/{uuid.uuid4()}")
    assert response.status_code == 404


async def test_restaurant_order_list(client, menu, customer):
    for _ in range(3):
        await client.post("/api/orders", json=_order_payload(menu, customer))

    response = await client.get(
        f"/api/restaurants/{menu.restaurant_id}/orders", params={"limit": 500, "status": "pending"}
    )
    assert response.status_code == 200
    body = response.json()
    assert body["limit"] == 100
    assert len(body["orders"]) == 3

    response = await client.get(f"/api/restaurants/{menu.restaurant_id}/orders", params={"page": 0})
    assert response.status_code == 400

    active = await client.get(f"/api/restaurants/{menu.restaurant_id}/orders/active")
    assert len(active.json()) == 3

    history = await client.get("/api/orders/history", params={"telegram_id": customer["telegram_id"]})
    assert len(history.json()["orders"]) == 3


async def test_menu_endpoints(client, menu):
    response = await client.get(f"/api/restaurants/{menu.restaurant_id}/menu")
    assert response.status_code == 200
    assert response.json()["categories"][0]["name"] == "Mains"

    response = await client.get(
        "/api/menu/search", params={"restaurant_id": str(menu.restaurant_id), "search": "coffee"}
    )
    assert [item["name"] for item in response.json()] == ["Iced Coffee"]

    response = await client.get(f"/api/menu/items/{menu.amok_id}/variants/{menu.amok_large_id}/price")
    assert response.json()["price"] == "10.50"

    response = await client.put(f"/api/menu/items/{menu.amok_id}/variants/{menu.amok_large_id}/default")
    assert response.json()["is_default"] is True

    response = await client.patch(f"/api/menu/items/{menu.amok_id}/toggle")
    assert response.json()["is_available"] is False

    response = await client.patch(f"/api/menu/items/{menu.amok_id}/active")
    assert response.json()["is_active"] is False

    response = await client.post(
        "/api/menu/items",
        json={
            "category_id": str(menu.category_id),
            "name": "Sugarcane Juice",
            "preparation_time_minutes": 5,
            "variants": [{"size": "medium", "price": "1.75", "is_default": True}],
        },
    )
    assert response.status_code == 201
    assert response.json()["variants"][0]["price"] == "1.75"


async def test_kitchen_endpoints(client, menu, customer):
    response = await client.get(f"/api/kitchen/load/{menu.restaurant_id}")
    assert response.status_code == 200
    assert response.json()["average_preparation_time"] == 15
    assert response.json()["current_orders"] == 0

    await client.post("/api/orders", json=_order_payload(menu, customer))
    response = await client.post(f"/api/kitchen/calculate/{menu.restaurant_id}")
    assert response.json()["current_orders"] == 1
    assert response.json()["load_level"] == "normal"

    response = await client.get(f"/api/kitchen/load/{uuid.uuid4()}")
    assert response.status_code == 404


async def test_health_reports_database(client):
    response = await client.get("/health")
    assert response.status_code == 200
    body = response.json()
    assert body["database"] == "healthy"
    assert body["kitchen_recompute_mode"] == "sync"


async def test_kitchen_status_endpoint(client, menu, customer):
    await client.post("/api/orders", json=_order_payload(menu, customer))

    response = await client.get(f"/api/restaurants/{menu.restaurant_id}/kitchen-status")
    assert response.status_code == 200
    body = response.json()
    assert body["orders_by_status"] == {"pending": 1, "confirmed": 0, "preparing": 0}
    # ceil(1 * 15 * 0.1) + 15
    assert body["estimated_wait_minutes"] == 17

    response = await client.get(f"/api/restaurants/{uuid.uuid4()}/kitchen-status")
    assert response.status_code == 404


async def test_analytics_endpoint(client, menu, customer):
    order = (await client.post("/api/orders", json=_order_payload(menu, customer))).json()["data"]
    await client.patch(f"/api/orders/{order['id']}/status", json={"status": "confirmed"})

    url = f"/api/restaurants/{menu.restaurant_id}/analytics"
    response = await client.get(url, params={"date_from": "2026-03-14", "date_to": "2026-03-14"})
    assert response.status_code == 200
    body = response.json()
    assert body["stats"]["total_orders"] == 1
    assert body["stats"]["total_revenue"] == "15.00"
    assert [(p["name"], p["size"], p["total_quantity"]) for p in body["popular_variants"]] == [
        ("Fish Amok", "small", 2),
        ("Iced Coffee", "medium", 1),
    ]

    response = await client.get(url, params={"date_from": "2026-03-14", "date_to": "2026-03-13"})
    assert response.status_code == 400
