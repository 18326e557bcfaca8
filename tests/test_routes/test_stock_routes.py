# tests/test_routes/test_stock_routes.py
import pytest

from stockledger.models.product import Product


# --- POST /adjust-stock ---

@pytest.mark.asyncio
async def test_manual_adjustment(client, make_product, get_stock):
    product_id = await make_product(stock=10)

    response = await client.post("/adjust-stock", json={
        "product_id": product_id,
        "delta": -3,
        "reason": "manual_adjustment",
        "note": "stocktake",
    })

    assert response.status_code == 200
    body = response.json()
    assert body["ok"] is True
    assert body["already_applied"] is False
    assert body["product"]["stock"] == 7
    assert body["movement"]["delta"] == -3
    assert body["movement"]["reason"] == "manual_adjustment"
    assert body["movement"]["actor"] == "admin"
    assert body["movement"]["clamped"] is False
    assert await get_stock(product_id) == 7


@pytest.mark.asyncio
@pytest.mark.parametrize("payload, fragment", [
    ({"delta": 0, "reason": "manual_adjustment"}, "non-zero"),
    ({"delta": -1, "reason": "restock"}, "positive"),
    ({"delta": -1, "reason": "order_fulfillment"}, "order_id"),
    ({"delta": 2, "reason": "order_fulfillment", "order_id": 1}, "negative"),
    ({"delta": -2, "reason": "order_reversal", "order_id": 1}, "positive"),
    ({"delta": 1, "reason": "shrinkage"}, "reason"),
    ({"delta": 1}, "reason"),
])
async def test_invalid_adjustments_are_400(client, make_product, payload, fragment):
    product_id = await make_product(stock=10)

    response = await client.post("/adjust-stock", json={"product_id": product_id, **payload})

    assert response.status_code == 400
    body = response.json()
    assert body["ok"] is False
    assert fragment in body["error"]


@pytest.mark.asyncio
async def test_unknown_product_is_404(client):
    response = await client.post("/adjust-stock", json={
        "product_id": 999,
        "delta": 1,
        "reason": "manual_adjustment",
    })

    assert response.status_code == 404
    assert response.json() == {"ok": False, "error": "Product with ID 999 not found"}


@pytest.mark.asyncio
async def test_order_adjustment_is_idempotent(client, make_product, make_order, get_stock):
    product_id = await make_product(stock=10)
    order_id = await make_order()
    payload = {"product_id": product_id, "delta": -2, "reason": "order_fulfillment", "order_id": order_id}

    first = await client.post("/adjust-stock", json=payload)
    second = await client.post("/adjust-stock", json=payload)

    assert first.json()["already_applied"] is False
    assert second.json()["already_applied"] is True
    assert second.json()["movement"]["id"] == first.json()["movement"]["id"]
    assert await get_stock(product_id) == 8


# --- POST /restock ---

@pytest.mark.asyncio
async def test_restock(client, make_product, get_stock):
    first = await make_product(name="First")
    second = await make_product(name="Second", stock=2)

    response = await client.post("/restock", json={
        "items": [{"product_id": first, "quantity": 5}, {"product_id": second, "quantity": 1}],
        "note": "supplier delivery",
    })

    assert response.status_code == 200
    results = response.json()["results"]
    assert [r["product"]["stock"] for r in results] == [5, 3]
    assert {r["movement"]["reason"] for r in results} == {"restock"}
    assert await get_stock(first) == 5


@pytest.mark.asyncio
async def test_restock_rejects_empty_batch(client):
    response = await client.post("/restock", json={"items": []})

    assert response.status_code == 400
    assert response.json()["ok"] is False


# --- GET /stock-movements ---

@pytest.mark.asyncio
async def test_stock_movements_newest_first(client, make_product, make_order):
    product_id = await make_product(stock=10)
    order_id = await make_order()
    await client.post("/adjust-stock", json={"product_id": product_id, "delta": -1, "reason": "manual_adjustment"})
    await client.post("/adjust-stock", json={
        "product_id": product_id, "delta": -2, "reason": "order_fulfillment", "order_id": order_id,
    })

    response = await client.get("/stock-movements")

    assert response.status_code == 200
    body = response.json()
    assert body["filter"] == "all"
    assert body["count"] == 3
    assert [m["delta"] for m in body["data"]] == [-2, -1, 10]


@pytest.mark.asyncio
async def test_stock_movements_filters(client, make_product, make_order):
    product_id = await make_product(stock=10)
    other_id = await make_product(name="Other", stock=1)
    order_id = await make_order()
    await client.post("/adjust-stock", json={
        "product_id": product_id, "delta": -2, "reason": "order_fulfillment", "order_id": order_id,
    })

    orders = (await client.get("/stock-movements", params={"filter": "order"})).json()
    assert [m["order_id"] for m in orders["data"]] == [order_id]

    manual = (await client.get("/stock-movements", params={"filter": "manual", "product_id": other_id})).json()
    assert [m["product_id"] for m in manual["data"]] == [other_id]

    limited = (await client.get("/stock-movements", params={"limit": 1})).json()
    assert limited["count"] == 1


@pytest.mark.asyncio
async def test_stock_movements_rejects_unknown_filter(client):
    response = await client.get("/stock-movements", params={"filter": "everything"})

    assert response.status_code == 400
    assert response.json()["ok"] is False


# --- GET /stock-audit ---

@pytest.mark.asyncio
async def test_stock_audit(client, make_product, session_factory):
    clean = await make_product(name="Clean", stock=4)
    dirty = await make_product(name="Dirty", stock=4)

    async with session_factory() as session:
        product = await session.get(Product, dirty)
        product.stock = 9
        await session.commit()

    response = await client.get("/stock-audit")

    assert response.status_code == 200
    body = response.json()
    assert body["checked"] == 2
    assert [d["product_id"] for d in body["discrepancies"]] == [dirty]
    assert body["discrepancies"][0]["expected_stock"] == 4
    assert body["discrepancies"][0]["explained"] is False

    single = (await client.get("/stock-audit", params={"product_id": clean})).json()
    assert (single["checked"], single["discrepancies"]) == (1, [])
