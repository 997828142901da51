"""
Common utilities and shared types.
Grouping-key normalisation, safe arithmetic and the Quote record
exchanged between market data and valuation.
"""

import math
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional, Tuple

# Bucket for transactions recorded without a broker
UNKNOWN_BROKER = "Unknown"

HoldingKey = Tuple[str, str]


@dataclass(frozen=True)
class Quote:
    """
    A current market price for an instrument.
    price is None when the source answered but no price could be read.
    """
    symbol: str
    price: Optional[float]
    as_of: Optional[datetime] = None
    currency: Optional[str] = None
    source: str = "yahoo"
    cached: bool = False

    @property
    def has_price(self) -> bool:
        return is_finite_number(self.price)


def is_finite_number(value: Any) -> bool:
    """True for int/float values that are neither NaN nor infinite."""
    if value is None or isinstance(value, bool):
        return False
    try:
        return math.isfinite(value)
    except TypeError:
        return False


def safe_divide(numerator: Optional[float], denominator: Optional[float]) -> Optional[float]:
    """
    Divide, returning None instead of raising or producing NaN/inf.

    Examples:
        >>> safe_divide(10.0, 4.0)
        2.5
        >>> safe_divide(1.0, 0.0) is None
        True
    """
    if not is_finite_number(numerator) or not is_finite_number(denominator):
        return None
    if denominator == 0:
        return None
    result = numerator / denominator
    return result if math.isfinite(result) else None


def timestamp_key(value: datetime) -> float:
    """
    Seconds since the epoch, for ordering a mix of naive and aware datetimes.
    Naive values are read as UTC.

    Examples:
        >>> timestamp_key(datetime(1970, 1, 2))
        86400.0
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.timestamp()


def normalize_symbol(symbol: Optional[str]) -> str:
    """
    Canonical form of an instrument symbol used for grouping and quote lookup.

    Examples:
        >>> normalize_symbol(" d05.si ")
        'D05.SI'
    """
    return (symbol or "").strip().upper()


def broker_label(broker: Optional[str]) -> str:
    """Display form of a broker: trimmed, inner whitespace collapsed, 'Unknown' if empty."""
    label = " ".join((broker or "").split())
    return label or UNKNOWN_BROKER


def normalize_broker(broker: Optional[str]) -> str:
    """
    Canonical form of a broker used for grouping.

    Examples:
        >>> normalize_broker("  Moo   moo ")
        'moo moo'
        >>> normalize_broker(None)
        'Unknown'
    """
    label = " ".join((broker or "").split())
    if not label:
        return UNKNOWN_BROKER
    return label.casefold()


def holding_key(symbol: Optional[str], broker: Optional[str]) -> HoldingKey:
    """Grouping key shared by the aggregator and the realized-P/L analyzer."""
    return normalize_symbol(symbol), normalize_broker(broker)
