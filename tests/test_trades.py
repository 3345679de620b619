import uuid

import pytest
from sqlmodel import select

from wheel_tracker.models.portfolio import Portfolio, PortfolioUpdate
from wheel_tracker.models.trade import Trade, TradeAdjustment
from wheel_tracker.services.trade_executor import TradeExecutor, TradeNotOpenError

from .helpers import future_date


async def get_portfolio(client, headers, portfolio_id):
    resp = await client.get(f"/api/portfolios/{portfolio_id}", headers=headers)
    assert resp.status_code == 200
    return resp.json()


# ============================================================================
# CREATE / READ / EDIT
# ============================================================================

async def test_create_trade_normalizes_input(client, auth_headers, portfolio, make_trade):
    trade = await make_trade(auth_headers, portfolio["id"], ticker=" tsla ", type="csp")

    assert trade["ticker"] == "TSLA"
    assert trade["type"] == "CashSecuredPut"
    assert trade["status"] == "open"
    assert trade["portfolioId"] == portfolio["id"]


async def test_create_trade_does_not_touch_capital(client, auth_headers, portfolio, make_trade):
    await make_trade(auth_headers, portfolio["id"])
    assert (await get_portfolio(client, auth_headers, portfolio["id"]))["currentCapital"] == 10000


async def test_create_trade_rejects_invalid_numbers(client, auth_headers, portfolio):
    resp = await client.post("/api/trades", json={
        "portfolioId": portfolio["id"],
        "ticker": "AAPL",
        "strikePrice": -5,
        "expirationDate": future_date(),
        "type": "CashSecuredPut",
        "contracts": 1,
        "contractPrice": 1.0,
    }, headers=auth_headers)
    assert resp.status_code == 400


async def test_create_trade_in_foreign_portfolio_is_404(client, make_user, make_portfolio):
    alice = await make_user("alice")
    bob = await make_user("bob")
    portfolio = await make_portfolio(alice)

    resp = await client.post("/api/trades", json={
        "portfolioId": portfolio["id"],
        "ticker": "AAPL",
        "strikePrice": 100,
        "expirationDate": future_date(),
        "type": "CashSecuredPut",
        "contracts": 1,
        "contractPrice": 1.0,
    }, headers=bob)
    assert resp.status_code == 404


async def test_get_unknown_trade_is_404(client, auth_headers):
    resp = await client.get(f"/api/trades/{uuid.uuid4()}", headers=auth_headers)
    assert resp.status_code == 404


async def test_trade_detail_includes_position(client, auth_headers, portfolio, make_trade):
    trade = await make_trade(auth_headers, portfolio["id"], contracts=10, contractPrice=2.0)
    await client.post(
        f"/api/trades/{trade['id']}/adjustments",
        json={"contracts": 10, "price": 4.0},
        headers=auth_headers,
    )

    resp = await client.get(f"/api/trades/{trade['id']}", headers=auth_headers)
    assert resp.status_code == 200
    body = resp.json()
    assert body["adjustedContracts"] == 20
    assert body["averageContractPrice"] == pytest.approx(3.0)
    assert len(body["adjustments"]) == 1


async def test_list_trades_requires_params(client, auth_headers, portfolio):
    resp = await client.get("/api/trades", params={"status": "open"}, headers=auth_headers)
    assert resp.status_code == 400

    resp = await client.get("/api/trades", params={"portfolioId": portfolio["id"]}, headers=auth_headers)
    assert resp.status_code == 400


async def test_list_trades_by_status(client, auth_headers, portfolio, make_trade):
    first = await make_trade(auth_headers, portfolio["id"], ticker="AAPL")
    second = await make_trade(auth_headers, portfolio["id"], ticker="MSFT")
    await client.post(
        f"/api/trades/{second['id']}/close",
        json={"contractsToClose": 2, "closingPrice": 0.1},
        headers=auth_headers,
    )

    resp = await client.get(
        "/api/trades", params={"status": "open", "portfolioId": portfolio["id"]}, headers=auth_headers
    )
    assert [t["id"] for t in resp.json()] == [first["id"]]

    resp = await client.get(
        "/api/trades", params={"status": "closed", "portfolioId": portfolio["id"]}, headers=auth_headers
    )
    assert [t["id"] for t in resp.json()] == [second["id"]]


async def test_update_trade_requires_expiration_date(client, auth_headers, portfolio, make_trade):
    trade = await make_trade(auth_headers, portfolio["id"])

    resp = await client.patch(f"/api/trades/{trade['id']}", json={"notes": "x"}, headers=auth_headers)
    assert resp.status_code == 400

    resp = await client.patch(
        f"/api/trades/{trade['id']}",
        json={"expirationDate": "2031-01-17T00:00:00Z", "notes": "rolled", "entryPrice": 151.2},
        headers=auth_headers,
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["expirationDate"].startswith("2031-01-17")
    assert body["notes"] == "rolled"
    assert body["entryPrice"] == 151.2


# ============================================================================
# ADJUSTMENTS
# ============================================================================

@pytest.mark.parametrize("payload", [
    {"contracts": 1, "price": "abc"},
    {"contracts": "abc", "price": 1.0},
    {"contracts": 0, "price": 1.0},
    {"contracts": 1, "price": 0},
    {"contracts": 1},
])
async def test_invalid_adjustment_is_400_and_writes_nothing(
    client, auth_headers, portfolio, make_trade, db_session, payload
):
    trade = await make_trade(auth_headers, portfolio["id"])

    resp = await client.post(f"/api/trades/{trade['id']}/adjustments", json=payload, headers=auth_headers)
    assert resp.status_code == 400

    result = await db_session.execute(select(TradeAdjustment))
    assert result.scalars().all() == []


async def test_adjustment_on_unknown_trade_is_404(client, auth_headers):
    resp = await client.post(
        f"/api/trades/{uuid.uuid4()}/adjustments",
        json={"contracts": 1, "price": 1.0},
        headers=auth_headers,
    )
    assert resp.status_code == 404


async def test_adjustments_require_auth(client, auth_headers, portfolio, make_trade):
    trade = await make_trade(auth_headers, portfolio["id"])

    resp = await client.get(f"/api/trades/{trade['id']}/adjustments")
    assert resp.status_code == 401

    resp = await client.post(f"/api/trades/{trade['id']}/adjustments", json={"contracts": 1, "price": 1.0})
    assert resp.status_code == 401


async def test_adjustments_are_listed(client, auth_headers, portfolio, make_trade):
    trade = await make_trade(auth_headers, portfolio["id"])
    resp = await client.post(
        f"/api/trades/{trade['id']}/adjustments",
        json={"contracts": -1, "price": 1.25, "notes": "trim"},
        headers=auth_headers,
    )
    assert resp.status_code == 201
    assert resp.json()["contracts"] == -1

    resp = await client.get(f"/api/trades/{trade['id']}/adjustments", headers=auth_headers)
    assert resp.status_code == 200
    assert [a["notes"] for a in resp.json()] == ["trim"]


async def test_adjustment_on_closed_trade_is_400(client, auth_headers, portfolio, make_trade):
    trade = await make_trade(auth_headers, portfolio["id"])
    await client.post(
        f"/api/trades/{trade['id']}/close",
        json={"contractsToClose": 2, "closingPrice": 0.1},
        headers=auth_headers,
    )

    resp = await client.post(
        f"/api/trades/{trade['id']}/adjustments",
        json={"contracts": 1, "price": 1.0},
        headers=auth_headers,
    )
    assert resp.status_code == 400


async def test_add_to_trade_reweights_average(client, auth_headers, portfolio, make_trade):
    trade = await make_trade(auth_headers, portfolio["id"], contracts=2, contractPrice=1.5)

    resp = await client.patch(
        f"/api/trades/{trade['id']}/add",
        json={"addedContracts": 2, "addedContractPrice": 2.5},
        headers=auth_headers,
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["adjustedContracts"] == 4
    assert body["averageContractPrice"] == pytest.approx(2.0)
    assert (await get_portfolio(client, auth_headers, portfolio["id"]))["currentCapital"] == 10000


async def test_add_to_trade_rejects_non_positive(client, auth_headers, portfolio, make_trade):
    trade = await make_trade(auth_headers, portfolio["id"])
    resp = await client.patch(
        f"/api/trades/{trade['id']}/add",
        json={"addedContracts": 0, "addedContractPrice": 2.5},
        headers=auth_headers,
    )
    assert resp.status_code == 400


# ============================================================================
# CLOSING
# ============================================================================

async def test_full_close_books_realized_premium(client, auth_headers, portfolio, make_trade):
    trade = await make_trade(auth_headers, portfolio["id"], contracts=2, contractPrice=1.5)

    resp = await client.post(
        f"/api/trades/{trade['id']}/close",
        json={"contractsToClose": 2, "closingPrice": 0.5},
        headers=auth_headers,
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["realizedNow"] == pytest.approx(200.0)
    assert body["feesTotal"] == 0
    assert "remaining" not in body

    resp = await client.get(f"/api/trades/{trade['id']}", headers=auth_headers)
    closed = resp.json()
    assert closed["status"] == "closed"
    assert closed["contractsClosed"] == 2
    assert closed["closingPrice"] == 0.5
    assert closed["premiumCaptured"] == pytest.approx(200.0)
    assert closed["percentPL"] == pytest.approx(66.6667, rel=1e-4)
    assert closed["closedAt"] is not None

    assert (await get_portfolio(client, auth_headers, portfolio["id"]))["currentCapital"] == 10200


async def test_partial_close_keeps_average_and_books_leg(client, auth_headers, portfolio, make_trade):
    trade = await make_trade(auth_headers, portfolio["id"], contracts=3, contractPrice=2.0)

    resp = await client.post(
        f"/api/trades/{trade['id']}/close",
        json={"contractsToClose": 1, "closingPrice": 0.5, "feesPerContract": 1.0, "flatFees": 0.5},
        headers=auth_headers,
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["remaining"] == 2
    assert body["feesTotal"] == pytest.approx(1.5)
    assert body["realizedNow"] == pytest.approx(150.0 - 1.5)

    resp = await client.get(f"/api/trades/{trade['id']}", headers=auth_headers)
    detail = resp.json()
    assert detail["status"] == "open"
    assert detail["adjustedContracts"] == 2
    assert detail["averageContractPrice"] == pytest.approx(2.0)

    resp = await client.get(
        "/api/trades", params={"status": "closed", "portfolioId": portfolio["id"]}, headers=auth_headers
    )
    legs = resp.json()
    assert len(legs) == 1
    assert legs[0]["contracts"] == 1
    assert legs[0]["createdAt"] == trade["createdAt"]

    portfolio_now = await get_portfolio(client, auth_headers, portfolio["id"])
    assert portfolio_now["currentCapital"] == pytest.approx(10000 + 148.5)


async def test_close_more_than_open_is_400(client, auth_headers, portfolio, make_trade):
    trade = await make_trade(auth_headers, portfolio["id"], contracts=2)
    resp = await client.post(
        f"/api/trades/{trade['id']}/close",
        json={"contractsToClose": 3, "closingPrice": 0.5},
        headers=auth_headers,
    )
    assert resp.status_code == 400
    assert (await get_portfolio(client, auth_headers, portfolio["id"]))["currentCapital"] == 10000


async def test_closing_twice_is_400(client, auth_headers, portfolio, make_trade):
    trade = await make_trade(auth_headers, portfolio["id"], contracts=1)
    url = f"/api/trades/{trade['id']}/close"
    body = {"contractsToClose": 1, "closingPrice": 0.1}

    assert (await client.post(url, json=body, headers=auth_headers)).status_code == 200
    assert (await client.post(url, json=body, headers=auth_headers)).status_code == 400


async def test_close_rechecks_status_of_already_loaded_trade(
    client, db_session, auth_headers, portfolio, make_trade
):
    trade = await make_trade(auth_headers, portfolio["id"], contracts=2, contractPrice=1.5)
    loaded = await db_session.get(Trade, uuid.UUID(trade["id"]))
    # End the read so the API request can write; the object stays in the session
    await db_session.commit()
    assert loaded.status == "open"

    resp = await client.post(
        f"/api/trades/{trade['id']}/close",
        json={"contractsToClose": 2, "closingPrice": 0.5},
        headers=auth_headers,
    )
    assert resp.status_code == 200

    with pytest.raises(TradeNotOpenError):
        await TradeExecutor(db_session).close_trade(loaded, 1, 0.0)
    await db_session.rollback()

    assert (await get_portfolio(client, auth_headers, portfolio["id"]))["currentCapital"] == 10200


async def test_capital_edit_keeps_credit_booked_by_another_session(
    client, db_session, auth_headers, portfolio, make_trade
):
    trade = await make_trade(auth_headers, portfolio["id"], contracts=2, contractPrice=1.5)
    loaded = await db_session.get(Portfolio, uuid.UUID(portfolio["id"]))
    await db_session.commit()

    await client.post(
        f"/api/trades/{trade['id']}/close",
        json={"contractsToClose": 2, "closingPrice": 0.5},
        headers=auth_headers,
    )

    updated = await TradeExecutor(db_session).update_portfolio(
        loaded, PortfolioUpdate(additional_capital=1000)
    )
    assert updated.current_capital == pytest.approx(11200)
