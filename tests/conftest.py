"""
Shared fixtures: an in-memory database and a transaction factory.
"""

from datetime import date, datetime
from typing import Optional

import pytest
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, create_engine

import db_engine
from models import Transaction


@pytest.fixture
def engine():
    """Fresh in-memory SQLite database installed as the application engine."""
    test_engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(test_engine)
    db_engine.set_engine(test_engine)
    yield test_engine
    db_engine.reset_engine()


@pytest.fixture
def make_tx():
    """Build unsaved Transaction objects with sensible defaults."""
    counter = {"n": 0}

    def _make(type: str,
              symbol: str = "AAPL",
              broker: Optional[str] = "IBKR",
              quantity: Optional[float] = None,
              price: Optional[float] = None,
              commission: float = 0.0,
              dividend_amount: Optional[float] = None,
              trade_date: Optional[date] = None,
              current_price: Optional[float] = None,
              category: str = "Stocks",
              currency: str = "USD",
              created_at: Optional[datetime] = None,
              id: Optional[str] = None) -> Transaction:
        counter["n"] += 1
        fields = dict(
            id=id or f"tx{counter['n']:04d}",
            user_id="test-user",
            symbol=symbol,
            product_name=f"{symbol} product",
            category=category,
            broker=broker,
            currency=currency,
            type=type,
            quantity=quantity,
            price=price,
            commission=commission,
            dividend_amount=dividend_amount,
            trade_date=trade_date,
            current_price=current_price,
        )
        if created_at is not None:
            fields["created_at"] = created_at
        return Transaction(**fields)

    return _make
