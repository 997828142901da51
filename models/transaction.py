"""
Transaction model - a buy, sell or dividend record for an instrument.
"""

import uuid
from enum import Enum
from typing import Optional
from datetime import date, datetime
from sqlmodel import SQLModel, Field


class TransactionType(str, Enum):
    """Kinds of transaction the ledger understands."""
    BUY = "BUY"
    SELL = "SELL"
    DIVIDEND = "DIVIDEND"

    @classmethod
    def parse(cls, value) -> Optional["TransactionType"]:
        """Map a raw value to a TransactionType, or None if unrecognised."""
        if isinstance(value, cls):
            return value
        if value is None:
            return None
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            return None


def _new_id() -> str:
    return uuid.uuid4().hex


class Transaction(SQLModel, table=True):
    """Represents a single transaction owned by a user."""
    id: str = Field(default_factory=_new_id, primary_key=True)
    user_id: str = Field(index=True)
    symbol: str = Field(index=True)  # e.g. "D05.SI", "AAPL", "LU0320765646:SGD"
    product_name: str = ""
    category: str = ""  # "Stocks", "ETF", "Unit Trusts", ...
    broker: str = ""
    currency: str = ""
    type: str  # "BUY", "SELL" or "DIVIDEND"
    quantity: Optional[float] = Field(default=None)  # positive magnitude
    price: Optional[float] = Field(default=None)  # per unit
    commission: float = 0.0
    dividend_amount: Optional[float] = Field(default=None)
    trade_date: Optional[date] = Field(default=None, index=True)
    notes: Optional[str] = Field(default=None)
    current_price: Optional[float] = Field(default=None)  # manually recorded valuation
    created_at: datetime = Field(default_factory=datetime.now)

    @property
    def kind(self) -> Optional[TransactionType]:
        return TransactionType.parse(self.type)

    @property
    def effective_timestamp(self) -> datetime:
        """Trade date when known, otherwise the time the record was created."""
        if self.trade_date is not None:
            return datetime.combine(self.trade_date, datetime.min.time())
        return self.created_at
