"""
Holdings: folds a transaction list into per-(symbol, broker) positions and
values them against a current price.

Both steps are pure functions of their inputs. Nothing here is cached or
persisted; callers recompute from the full transaction list every time.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from models import TransactionType
from services.common import (
    HoldingKey,
    Quote,
    broker_label,
    holding_key,
    is_finite_number,
    safe_divide,
    timestamp_key,
)

logger = logging.getLogger(__name__)


@dataclass
class Position:
    """Aggregated holding of one instrument at one broker."""
    key: HoldingKey
    symbol: str
    broker: str
    product_name: str = ""
    category: str = ""
    currency: str = ""
    net_quantity: float = 0.0
    total_cost: float = 0.0
    total_commission: float = 0.0
    total_dividends: float = 0.0
    latest_hinted_price: Optional[float] = None
    hint_timestamp: Optional[datetime] = None
    transaction_count: int = 0
    # (epoch seconds, id) of the transaction that supplied latest_hinted_price
    _hint_rank: Optional[Tuple[float, str]] = field(default=None, repr=False, compare=False)

    @property
    def average_cost(self) -> Optional[float]:
        """Cost basis per unit held; None when nothing is held or there is no cost basis."""
        if self.total_cost == 0:
            return None
        return safe_divide(self.total_cost, self.net_quantity)


@dataclass
class ValuedPosition:
    """A Position combined with a current price. Unknown values are None."""
    position: Position
    current_price: Optional[float] = None
    price_source: Optional[str] = None  # "quote", "hint" or None
    last_price_timestamp: Optional[datetime] = None
    current_value: Optional[float] = None
    unrealized_pl: Optional[float] = None
    unrealized_pl_pct: Optional[float] = None
    # Filled in by PortfolioService for a chosen calendar year
    year_dividends: Optional[float] = None
    dividend_yield: Optional[float] = None

    # Shortcuts so presentation code can treat this like a row
    @property
    def key(self) -> HoldingKey:
        return self.position.key

    @property
    def symbol(self) -> str:
        return self.position.symbol

    @property
    def broker(self) -> str:
        return self.position.broker

    @property
    def category(self) -> str:
        return self.position.category

    @property
    def currency(self) -> str:
        return self.position.currency

    @property
    def product_name(self) -> str:
        return self.position.product_name

    @property
    def net_quantity(self) -> float:
        return self.position.net_quantity

    @property
    def total_cost(self) -> float:
        return self.position.total_cost

    @property
    def total_dividends(self) -> float:
        return self.position.total_dividends

    @property
    def average_cost(self) -> Optional[float]:
        return self.position.average_cost

    @property
    def is_valued(self) -> bool:
        return self.current_value is not None


def _number(value) -> float:
    """Missing or non-finite numeric fields count as zero in sums."""
    return float(value) if is_finite_number(value) else 0.0


def _new_position(key: HoldingKey, tx) -> Position:
    return Position(
        key=key,
        symbol=key[0],
        broker=broker_label(tx.broker),
        product_name=tx.product_name or "",
        category=tx.category or "",
        currency=tx.currency or "",
    )


def _apply_hint(position: Position, tx) -> None:
    """Keep the hinted price of the latest transaction, id breaking timestamp ties."""
    if not is_finite_number(tx.current_price):
        return
    timestamp = tx.effective_timestamp
    rank = (timestamp_key(timestamp), str(tx.id or ""))
    if position._hint_rank is None or rank >= position._hint_rank:
        position._hint_rank = rank
        position.latest_hinted_price = float(tx.current_price)
        position.hint_timestamp = timestamp


def aggregate(transactions: Iterable) -> List[Position]:
    """
    Group transactions into one Position per (symbol, broker).

    BUY adds quantity and quantity*price + commission to cost.
    SELL removes quantity and removes its net proceeds,
    quantity*price - commission, from cost.
    DIVIDEND only adds to total_dividends.
    Rows of an unknown type are ignored; missing numbers count as zero.

    Args:
        transactions: Transaction records in any order

    Returns:
        List of Position objects, in no particular order
    """
    positions: Dict[HoldingKey, Position] = {}

    for tx in transactions:
        kind = tx.kind
        if kind is None:
            logger.debug(f"Ignoring transaction {tx.id} with unknown type {tx.type!r}")
            continue

        key = holding_key(tx.symbol, tx.broker)
        position = positions.get(key)
        if position is None:
            position = _new_position(key, tx)
            positions[key] = position
        position.transaction_count += 1

        if kind in (TransactionType.BUY, TransactionType.SELL):
            if tx.quantity is None or tx.price is None:
                logger.debug(f"Transaction {tx.id} is missing quantity or price; counted as zero")
            quantity = abs(_number(tx.quantity))
            price = _number(tx.price)
            commission = _number(tx.commission)
            if kind == TransactionType.BUY:
                position.net_quantity += quantity
                position.total_cost += quantity * price + commission
            else:
                position.net_quantity -= quantity
                position.total_cost -= quantity * price - commission
            position.total_commission += commission
        else:
            position.total_dividends += _number(tx.dividend_amount)

        _apply_hint(position, tx)

    return list(positions.values())


def value(position: Position, quote: Optional[Quote] = None) -> ValuedPosition:
    """
    Value a position at the quoted price, falling back to its hinted price.

    A quote without a usable price counts as no quote. When neither price is
    known every valuation field stays None.
    """
    valued = ValuedPosition(position=position)

    if quote is not None and quote.has_price:
        valued.current_price = float(quote.price)
        valued.price_source = "quote"
        valued.last_price_timestamp = quote.as_of or position.hint_timestamp
    elif position.latest_hinted_price is not None:
        valued.current_price = position.latest_hinted_price
        valued.price_source = "hint"
        valued.last_price_timestamp = position.hint_timestamp
    else:
        return valued

    valued.current_value = valued.current_price * position.net_quantity
    valued.unrealized_pl = valued.current_value - position.total_cost
    pct = safe_divide(valued.unrealized_pl, position.total_cost)
    valued.unrealized_pl_pct = pct * 100 if pct is not None else None
    return valued


def value_all(positions: Iterable[Position],
              quotes: Optional[Mapping[str, Quote]] = None) -> List[ValuedPosition]:
    """
    Value every position with whatever quotes are available.

    Args:
        positions: Output of aggregate()
        quotes: Mapping from normalised symbol to Quote; may be partial or None
    """
    quotes = quotes or {}
    return [value(position, quotes.get(position.symbol)) for position in positions]
