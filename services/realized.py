"""
Realized profit/loss using average-cost-basis accounting.

Walks the transaction list per (symbol, broker), averaging buy fills
(commission added) and sell fills (commission subtracted), and values the
sold quantity at the average buy price. No lot matching is done.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from models import TransactionType
from services.common import HoldingKey, broker_label, holding_key, is_finite_number, safe_divide

logger = logging.getLogger(__name__)

# Bought and sold quantities closer than this are treated as equal
CLOSED_POSITION_EPSILON = 0.0001


@dataclass
class RealizedTradeAnalysis:
    """Buy/sell statistics and realized P/L for one (symbol, broker)."""
    key: HoldingKey
    symbol: str
    broker: str
    product_name: str = ""
    category: str = ""
    currency: str = ""
    buy_transaction_ids: List[str] = field(default_factory=list)
    sell_transaction_ids: List[str] = field(default_factory=list)
    total_bought: float = 0.0
    total_sold: float = 0.0
    total_buy_cost: float = 0.0
    total_sell_value: float = 0.0
    avg_buy_price: Optional[float] = None
    avg_sell_price: Optional[float] = None
    realized_pl: Optional[float] = 0.0
    realized_pl_pct: Optional[float] = None
    is_closed: bool = False

    @property
    def sold_cost_basis(self) -> Optional[float]:
        """Buy-side cost of the quantity sold so far."""
        if self.avg_buy_price is None:
            return None
        return self.total_sold * self.avg_buy_price


@dataclass
class RealizedSummary:
    """Totals over closed positions."""
    closed_count: int
    total_realized_pl: float
    total_realized_pl_pct: float


def _finish(analysis: RealizedTradeAnalysis) -> None:
    analysis.avg_buy_price = safe_divide(analysis.total_buy_cost, analysis.total_bought)
    analysis.avg_sell_price = safe_divide(analysis.total_sell_value, analysis.total_sold)

    if analysis.total_sold > 0:
        sold_cost = analysis.sold_cost_basis
        if sold_cost is None:
            # Sold without any recorded buy: no basis to measure against
            analysis.realized_pl = None
        else:
            analysis.realized_pl = (analysis.total_sold * analysis.avg_sell_price) - sold_cost
            pct = safe_divide(analysis.realized_pl, sold_cost)
            analysis.realized_pl_pct = pct * 100 if pct is not None else None

    analysis.is_closed = (
        analysis.total_bought > 0
        and abs(analysis.total_bought - analysis.total_sold) < CLOSED_POSITION_EPSILON
    )


def analyze(transactions: Iterable) -> List[RealizedTradeAnalysis]:
    """
    Compute realized P/L per (symbol, broker).

    Only BUY and SELL rows take part. A BUY/SELL row missing its quantity
    or price registers the key but adds nothing to the totals.

    Args:
        transactions: Transaction records in any order

    Returns:
        List of RealizedTradeAnalysis objects, in no particular order
    """
    grouped: Dict[HoldingKey, RealizedTradeAnalysis] = {}

    for tx in transactions:
        kind = tx.kind
        if kind not in (TransactionType.BUY, TransactionType.SELL):
            continue

        key = holding_key(tx.symbol, tx.broker)
        analysis = grouped.get(key)
        if analysis is None:
            analysis = RealizedTradeAnalysis(
                key=key,
                symbol=key[0],
                broker=broker_label(tx.broker),
                product_name=tx.product_name or "",
                category=tx.category or "",
                currency=tx.currency or "",
            )
            grouped[key] = analysis

        if not is_finite_number(tx.quantity) or tx.quantity == 0 or not is_finite_number(tx.price):
            logger.debug(f"Transaction {tx.id} has no usable quantity/price; skipped")
            continue

        quantity = abs(float(tx.quantity))
        price = float(tx.price)
        commission = float(tx.commission) if is_finite_number(tx.commission) else 0.0

        if kind == TransactionType.BUY:
            analysis.buy_transaction_ids.append(tx.id)
            analysis.total_bought += quantity
            analysis.total_buy_cost += quantity * price + commission
        else:
            analysis.sell_transaction_ids.append(tx.id)
            analysis.total_sold += quantity
            analysis.total_sell_value += quantity * price - commission

    for analysis in grouped.values():
        _finish(analysis)

    return list(grouped.values())


def closed_positions(analyses: Iterable[RealizedTradeAnalysis]) -> List[RealizedTradeAnalysis]:
    """Analyses whose bought quantity has been fully sold."""
    return [a for a in analyses if a.is_closed]


def summarize_closed(analyses: Iterable[RealizedTradeAnalysis]) -> RealizedSummary:
    """Total realized P/L of closed positions and its percent of their sold cost."""
    closed = closed_positions(analyses)
    total_pl = sum((a.realized_pl for a in closed if a.realized_pl is not None), 0.0)
    total_cost = sum((a.sold_cost_basis for a in closed if a.sold_cost_basis is not None), 0.0)
    pct = safe_divide(total_pl, total_cost)
    return RealizedSummary(
        closed_count=len(closed),
        total_realized_pl=total_pl,
        total_realized_pl_pct=pct * 100 if pct is not None else 0.0,
    )
