"""
Validation and normalisation of incoming transaction payloads.
"""

import logging
import math
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Dict, Optional

from models import TransactionType

logger = logging.getLogger(__name__)


def parse_number(value: Any) -> Optional[float]:
    """
    Convert a raw payload value to a finite float.

    Returns None for missing, blank, non-numeric, NaN or infinite values.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.strip().replace(",", "")
        if not value:
            return None
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return None
    return parsed if math.isfinite(parsed) else None


def parse_date(value: Any) -> Optional[date]:
    """Parse an ISO date (or datetime) string; returns None when absent or invalid."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    if not text:
        return None
    try:
        return date.fromisoformat(text[:10])
    except ValueError:
        logger.debug(f"Ignoring unparseable trade date: {value!r}")
        return None


def _text(value: Any) -> Optional[str]:
    if value is None:
        return None
    return str(value).strip()


def _pick(payload: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in payload:
            return payload[key]
    return None


@dataclass
class TransactionInput:
    """A cleaned transaction payload, ready for validation and storage."""
    type: Optional[str] = None
    symbol: Optional[str] = None
    product_name: Optional[str] = None
    category: Optional[str] = None
    broker: Optional[str] = None
    currency: Optional[str] = None
    quantity: Optional[float] = None
    price: Optional[float] = None
    commission: float = 0.0
    dividend_amount: Optional[float] = None
    trade_date: Optional[date] = None
    notes: Optional[str] = None
    current_price: Optional[float] = None

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "TransactionInput":
        """
        Build an input from a request-style dict.

        Accepts camelCase keys (productName, dividendAmount, tradeDate,
        currentPrice) as well as their snake_case equivalents.
        """
        raw_type = _text(payload.get("type"))
        commission = parse_number(payload.get("commission"))
        return cls(
            type=raw_type.upper() if raw_type else None,
            symbol=_text(payload.get("symbol")),
            product_name=_text(_pick(payload, "productName", "product_name")),
            category=_text(payload.get("category")),
            broker=_text(payload.get("broker")),
            currency=_text(payload.get("currency")),
            quantity=parse_number(payload.get("quantity")),
            price=parse_number(payload.get("price")),
            commission=commission if commission is not None else 0.0,
            dividend_amount=parse_number(_pick(payload, "dividendAmount", "dividend_amount")),
            trade_date=parse_date(_pick(payload, "tradeDate", "trade_date")),
            notes=_text(payload.get("notes")) or None,
            current_price=parse_number(_pick(payload, "currentPrice", "current_price")),
        )

    @property
    def kind(self) -> Optional[TransactionType]:
        return TransactionType.parse(self.type)


def validate_transaction(data: TransactionInput) -> Optional[str]:
    """
    Check a transaction input.

    Returns:
        The first error message found, or None if the input is valid
    """
    if not data.type:
        return "type is required"

    kind = data.kind
    if kind is None:
        return "type must be one of BUY, SELL, DIVIDEND"

    if not data.symbol:
        return "symbol is required"
    if not data.currency:
        return "currency is required"
    if kind != TransactionType.DIVIDEND and not data.broker:
        return "broker is required"

    if kind in (TransactionType.BUY, TransactionType.SELL):
        if data.quantity is None:
            return "quantity is required for BUY/SELL"
        if data.price is None:
            return "price is required for BUY/SELL"
        if data.commission < 0:
            return "commission must not be negative"

    if kind == TransactionType.DIVIDEND:
        if data.dividend_amount is None:
            return "dividendAmount is required for DIVIDEND"
        if data.dividend_amount < 0:
            return "dividendAmount must not be negative"

    return None
