import pytest

from .helpers import future_date


@pytest.fixture
def make_lot(client):
    async def _make(headers, portfolio_id, shares=200, avg_cost=50.0, ticker="aapl"):
        resp = await client.post("/api/stocks", json={
            "portfolioId": portfolio_id,
            "ticker": ticker,
            "shares": shares,
            "avgCost": avg_cost,
        }, headers=headers)
        assert resp.status_code == 201, resp.text
        return resp.json()["stockLot"]

    return _make


async def test_create_and_list_lots(client, auth_headers, portfolio, make_lot):
    lot = await make_lot(auth_headers, portfolio["id"])
    assert lot["ticker"] == "AAPL"
    assert lot["status"] == "OPEN"

    resp = await client.get("/api/stocks", params={"portfolioId": portfolio["id"]}, headers=auth_headers)
    assert resp.status_code == 200
    assert [l["id"] for l in resp.json()["stockLots"]] == [lot["id"]]

    resp = await client.get(
        "/api/stocks", params={"portfolioId": portfolio["id"], "status": "closed"}, headers=auth_headers
    )
    assert resp.json()["stockLots"] == []


async def test_list_lots_requires_portfolio_id(client, auth_headers):
    resp = await client.get("/api/stocks", headers=auth_headers)
    assert resp.status_code == 400


async def test_lot_detail_includes_linked_trades(client, auth_headers, portfolio, make_lot, make_trade):
    lot = await make_lot(auth_headers, portfolio["id"])
    cc = await make_trade(
        auth_headers, portfolio["id"], type="CoveredCall", contracts=1, strikePrice=55,
        stockLotId=lot["id"], expirationDate=future_date(),
    )

    resp = await client.get(f"/api/stocks/{lot['id']}", headers=auth_headers)
    assert resp.status_code == 200
    assert [t["id"] for t in resp.json()["stockLot"]["trades"]] == [cc["id"]]


async def test_trade_against_foreign_lot_is_400(client, make_user, make_portfolio, make_lot):
    alice = await make_user("alice")
    first = await make_portfolio(alice, name="First")
    second = await make_portfolio(alice, name="Second")
    lot = await make_lot(alice, first["id"])

    resp = await client.post("/api/trades", json={
        "portfolioId": second["id"],
        "ticker": "AAPL",
        "strikePrice": 55,
        "expirationDate": future_date(),
        "type": "CoveredCall",
        "contracts": 1,
        "contractPrice": 1.0,
        "stockLotId": lot["id"],
    }, headers=alice)
    assert resp.status_code == 400


async def test_sell_respects_shares_reserved_by_covered_calls(
    client, auth_headers, portfolio, make_lot, make_trade
):
    lot = await make_lot(auth_headers, portfolio["id"], shares=200, avg_cost=50.0)
    await make_trade(
        auth_headers, portfolio["id"], type="CoveredCall", contracts=1, strikePrice=55,
        stockLotId=lot["id"],
    )

    resp = await client.post(
        f"/api/stocks/{lot['id']}/sell",
        json={"sharesSold": 150, "salePrice": 55.0},
        headers=auth_headers,
    )
    assert resp.status_code == 400
    assert "reserved" in resp.json()["detail"]

    resp = await client.post(
        f"/api/stocks/{lot['id']}/sell",
        json={"sharesSold": 100, "salePrice": 55.0, "fees": 1.0},
        headers=auth_headers,
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["reservedShares"] == 100
    assert body["availableToSell"] == 200 - 100
    assert body["newShares"] == 100
    assert body["cumulativeRealized"] == "499.00"
    assert body["sale"]["realizedPnl"] == pytest.approx(499.0)

    resp = await client.get(f"/api/portfolios/{portfolio['id']}", headers=auth_headers)
    assert resp.json()["currentCapital"] == pytest.approx(10499.0)


async def test_selling_last_shares_closes_lot(client, auth_headers, portfolio, make_lot):
    lot = await make_lot(auth_headers, portfolio["id"], shares=100, avg_cost=40.0)

    resp = await client.post(
        f"/api/stocks/{lot['id']}/sell",
        json={"sharesSold": 100, "salePrice": 38.0},
        headers=auth_headers,
    )
    assert resp.status_code == 200
    assert resp.json()["cumulativeRealized"] == "-200.00"

    resp = await client.get(f"/api/stocks/{lot['id']}", headers=auth_headers)
    closed = resp.json()["stockLot"]
    assert closed["status"] == "CLOSED"
    assert closed["closePrice"] == 38.0
    assert closed["shares"] == 0

    resp = await client.post(
        f"/api/stocks/{lot['id']}/sell",
        json={"sharesSold": 1, "salePrice": 38.0},
        headers=auth_headers,
    )
    assert resp.status_code == 400


async def test_other_users_lot_is_404(client, make_user, make_portfolio, make_lot):
    alice = await make_user("alice")
    bob = await make_user("bob")
    portfolio = await make_portfolio(alice)
    lot = await make_lot(alice, portfolio["id"])

    resp = await client.get(f"/api/stocks/{lot['id']}", headers=bob)
    assert resp.status_code == 404

    resp = await client.post(
        f"/api/stocks/{lot['id']}/sell", json={"sharesSold": 1, "salePrice": 1.0}, headers=bob
    )
    assert resp.status_code == 404
