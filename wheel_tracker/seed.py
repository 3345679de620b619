"""
Database seeding

    python -m wheel_tracker.seed            # admin user from ADMIN_EMAIL / ADMIN_PASSWORD
    python -m wheel_tracker.seed --reset    # drop and recreate all tables first
    python -m wheel_tracker.seed --demo     # plus a demo portfolio with sample trades

The helpers are shared with GET /api/seed-user.
"""

from datetime import timedelta
from typing import Optional, Tuple
import argparse
import asyncio
import logging
import sys

from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from wheel_tracker.core.config import settings
from wheel_tracker.core.database import close_db, drop_db, get_session_factory, init_db
from wheel_tracker.core.security import hash_password
from wheel_tracker.models.common import utcnow
from wheel_tracker.models.portfolio import Portfolio
from wheel_tracker.models.trade import Trade, TradeStatus, TradeType
from wheel_tracker.models.user import User
from wheel_tracker.services.trade_executor import TradeExecutor

logger = logging.getLogger(__name__)

DEMO_STARTING_CAPITAL = 500_000


class SeedError(Exception):
    """Raised when the seed cannot run with the current configuration"""
    pass


async def get_or_create_user(
    session: AsyncSession,
    username: str,
    password: str,
    *,
    email: Optional[str] = None,
    first_name: Optional[str] = None,
    last_name: Optional[str] = None,
    is_admin: bool = True,
) -> Tuple[User, bool]:
    """Return (user, created). An existing username is left untouched."""
    result = await session.execute(select(User).where(User.username == username))
    user = result.scalar_one_or_none()
    if user:
        return user, False

    user = User(
        username=username,
        email=email,
        password_hash=hash_password(password),
        first_name=first_name,
        last_name=last_name,
        is_admin=is_admin,
    )
    session.add(user)
    await session.commit()
    await session.refresh(user)
    logger.info(f"Seeded user {username}")
    return user, True


async def create_portfolio(
    session: AsyncSession,
    user: User,
    name: str = "Default Portfolio",
    starting_capital: float = 0,
) -> Portfolio:
    portfolio = Portfolio(
        user_id=user.id,
        name=name,
        starting_capital=starting_capital,
        current_capital=starting_capital,
    )
    session.add(portfolio)
    await session.commit()
    await session.refresh(portfolio)
    return portfolio


def _demo_trades(portfolio: Portfolio) -> list[Trade]:
    now = utcnow()
    day = timedelta(days=1)

    def open_trade(ticker, strike, days_out, trade_type, contracts, price, entry):
        return Trade(
            portfolio_id=portfolio.id,
            ticker=ticker,
            strike_price=strike,
            expiration_date=now + days_out * day,
            type=trade_type.value,
            contracts=contracts,
            contract_price=price,
            entry_price=entry,
            status=TradeStatus.OPEN.value,
        )

    def closed_trade(ticker, strike, days_out, trade_type, contracts, price, entry,
                     captured, closing, closed_days_ago, percent_pl):
        trade = open_trade(ticker, strike, days_out, trade_type, contracts, price, entry)
        trade.status = TradeStatus.CLOSED.value
        trade.contracts_closed = contracts
        trade.premium_captured = captured
        trade.closing_price = closing
        trade.closed_at = now - closed_days_ago * day
        trade.percent_pl = percent_pl
        return trade

    return [
        open_trade("AAPL", 180, 7, TradeType.CASH_SECURED_PUT, 1, 2.6, 182.5),
        closed_trade("TSLA", 250, 14, TradeType.COVERED_CALL, 2, 3.15, 255, 630, 0.05, 1, 34.23),
        open_trade("NVDA", 400, 21, TradeType.CASH_SECURED_PUT, 3, 6.1, 410),
        closed_trade("META", 300, -7, TradeType.CASH_SECURED_PUT, 1, 2.0, 303, 200, 0, 6, 45.87),
        open_trade("MSFT", 350, 28, TradeType.COVERED_CALL, 1, 4.5, 352),
        closed_trade("AMZN", 140, -14, TradeType.COVERED_CALL, 2, 2.8, 142, 560, 0, 13, -15.67),
    ]


async def seed_demo_portfolio(session: AsyncSession, user: User) -> Optional[Portfolio]:
    """Demo portfolio with open and closed trades. Skipped if the user has any portfolio."""
    result = await session.execute(select(Portfolio).where(Portfolio.user_id == user.id))
    if result.scalars().first():
        logger.info("Portfolio already exists. Skipping demo data.")
        return None

    portfolio = await create_portfolio(
        session, user, name="Test Portfolio", starting_capital=DEMO_STARTING_CAPITAL
    )
    session.add_all(_demo_trades(portfolio))
    await session.commit()

    # Closed demo trades carry realized P/L
    portfolio = await TradeExecutor(session).recalculate_current_capital(portfolio)
    logger.info(f"Created demo portfolio {portfolio.id}")
    return portfolio


async def run(reset: bool = False, demo: bool = False) -> None:
    if not settings.ADMIN_EMAIL or not settings.ADMIN_PASSWORD:
        raise SeedError("Missing ADMIN_EMAIL or ADMIN_PASSWORD in environment")

    try:
        if reset:
            await drop_db()
            logger.info("Dropped all tables")
        await init_db()

        async with get_session_factory()() as session:
            user, created = await get_or_create_user(
                session,
                settings.ADMIN_USERNAME,
                settings.ADMIN_PASSWORD,
                email=settings.ADMIN_EMAIL.strip().lower(),
                first_name=settings.ADMIN_FIRSTNAME,
                last_name=settings.ADMIN_LASTNAME,
            )
            logger.info("Admin user created" if created else "Admin user already exists")

            if demo:
                await seed_demo_portfolio(session, user)
    finally:
        await close_db()


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Seed the wheel tracker database")
    parser.add_argument("--reset", action="store_true", help="drop and recreate all tables first")
    parser.add_argument("--demo", action="store_true", help="create a demo portfolio with sample trades")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    try:
        asyncio.run(run(reset=args.reset, demo=args.demo))
    except SeedError as e:
        logger.error(f"Seed failed: {e}")
        return 1

    logger.info("Seed completed")
    return 0


if __name__ == "__main__":
    sys.exit(main())
