"""
Portfolio service for dashboard figures: holdings, allocations, per-currency
totals, dividends and performance highlights.

Everything is derived from a snapshot of the transaction list plus an
optional quote mapping; nothing is stored between calls.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import pandas as pd

from models import TransactionType
from services.common import HoldingKey, Quote, holding_key, safe_divide, timestamp_key
from services.holdings import ValuedPosition, aggregate, value_all
from services.realized import (
    RealizedSummary,
    RealizedTradeAnalysis,
    analyze,
    closed_positions,
    summarize_closed,
)

logger = logging.getLogger(__name__)

MONTH_NAMES = ['Jan', 'Feb', 'Mar', 'Apr', 'May', 'Jun',
               'Jul', 'Aug', 'Sep', 'Oct', 'Nov', 'Dec']

# Filter value meaning "no filter"
ALL = "All"


@dataclass
class AllocationSlice:
    """Share of total capital held in one category, currency or symbol."""
    name: str
    value: float
    currency: str
    pct: float


@dataclass
class Allocations:
    by_category: List[AllocationSlice]
    by_currency: List[AllocationSlice]
    by_holding: List[AllocationSlice]


@dataclass
class CurrencyTotals:
    """Capital, value, P/L and dividends for holdings in one currency."""
    currency: str
    capital: float = 0.0
    current_value: float = 0.0
    unrealized_pl: float = 0.0
    dividends: float = 0.0


@dataclass
class CategoryBreakdown:
    category: str
    holdings_count: int
    capital: float
    current_value: float
    unrealized_pl: float
    unrealized_pl_pct: Optional[float]
    total_dividends: float
    year_dividends: float
    dividend_yield: Optional[float]
    top_gainer: Optional[ValuedPosition] = None
    top_loser: Optional[ValuedPosition] = None


@dataclass
class PortfolioSummary:
    """Everything the dashboard shows, computed from one transaction snapshot."""
    year: int
    holdings: List[ValuedPosition]
    allocations: Allocations
    totals: Dict[str, CurrencyTotals]
    category_breakdowns: Dict[str, CategoryBreakdown]
    monthly_dividends: List[Tuple[str, float]]
    year_dividends: float
    year_dividend_yield: Optional[float]
    top_gainer: Optional[ValuedPosition]
    top_loser: Optional[ValuedPosition]
    realized: List[RealizedTradeAnalysis] = field(default_factory=list)
    realized_summary: Optional[RealizedSummary] = None

    @property
    def total_capital(self) -> float:
        return sum(t.capital for t in self.totals.values())

    @property
    def total_current_value(self) -> float:
        return sum(t.current_value for t in self.totals.values())

    @property
    def total_unrealized_pl(self) -> float:
        return sum(t.unrealized_pl for t in self.totals.values())

    @property
    def total_unrealized_pl_pct(self) -> Optional[float]:
        pct = safe_divide(self.total_unrealized_pl, self.total_capital)
        return pct * 100 if pct is not None else None

    @property
    def total_dividends(self) -> float:
        return sum(t.dividends for t in self.totals.values())


class PortfolioService:
    """
    Service for portfolio-level calculations.
    Amounts in different currencies are never converted; totals are kept
    per currency and only summed where the dashboard does so.
    """

    @staticmethod
    def build_holdings(transactions: Iterable,
                       quotes: Optional[Mapping[str, Quote]] = None,
                       year: Optional[int] = None) -> List[ValuedPosition]:
        """
        Aggregate transactions and value each position.
        When a year is given, each holding also gets its dividends for that
        year and their yield on cost.
        """
        transactions = list(transactions)
        holdings = value_all(aggregate(transactions), quotes)
        if year is not None:
            PortfolioService.apply_year_dividends(holdings, transactions, year)
        return holdings

    @staticmethod
    def apply_year_dividends(holdings: Iterable[ValuedPosition], transactions: Iterable,
                             year: int) -> None:
        """Set year_dividends and dividend_yield on every holding."""
        by_key: Dict[HoldingKey, float] = {}
        for tx in PortfolioService._dividend_rows(transactions, year):
            key = holding_key(tx.symbol, tx.broker)
            by_key[key] = by_key.get(key, 0.0) + (tx.dividend_amount or 0.0)

        for h in holdings:
            h.year_dividends = by_key.get(h.key, 0.0)
            h.dividend_yield = PortfolioService.dividend_yield(h.year_dividends, h.total_cost)

    @staticmethod
    def filter_holdings(holdings: Iterable[ValuedPosition],
                        broker: Optional[str] = None,
                        currency: Optional[str] = None,
                        category: Optional[str] = None) -> List[ValuedPosition]:
        """Keep holdings matching every given filter; None or 'All' disables a filter."""
        def matches(actual: str, wanted: Optional[str]) -> bool:
            return wanted is None or wanted == ALL or actual == wanted

        return [
            h for h in holdings
            if matches(h.broker, broker) and matches(h.currency, currency) and matches(h.category, category)
        ]

    @staticmethod
    def sort_holdings(holdings: Iterable[ValuedPosition], attribute: str,
                      descending: bool = False) -> List[ValuedPosition]:
        """Sort by any holding attribute; holdings where it is unknown go last."""
        def sort_key(h: ValuedPosition):
            value = getattr(h, attribute)
            # quote times are aware, hint times naive
            return timestamp_key(value) if isinstance(value, datetime) else value

        holdings = list(holdings)
        known = [h for h in holdings if getattr(h, attribute, None) is not None]
        unknown = [h for h in holdings if getattr(h, attribute, None) is None]
        known.sort(key=sort_key, reverse=descending)
        return known + unknown

    @staticmethod
    def allocations(holdings: Sequence[ValuedPosition]) -> Allocations:
        """
        Capital allocation by category, currency and symbol.
        Capital is measured at cost; percentages are of total capital.
        """
        by_category: Dict[str, List] = {}
        by_currency: Dict[str, float] = {}
        by_holding: Dict[str, List] = {}

        for h in holdings:
            entry = by_category.setdefault(h.category, [0.0, h.currency])
            entry[0] += h.total_cost
            by_currency[h.currency] = by_currency.get(h.currency, 0.0) + h.total_cost
            entry = by_holding.setdefault(h.symbol, [0.0, h.currency])
            entry[0] += h.total_cost

        total_capital = sum(by_currency.values())

        def pct(amount: float) -> float:
            ratio = safe_divide(amount, total_capital)
            return ratio * 100 if ratio is not None else 0.0

        return Allocations(
            by_category=[AllocationSlice(name, v, ccy, pct(v)) for name, (v, ccy) in by_category.items()],
            by_currency=[AllocationSlice(name, v, name, pct(v)) for name, v in by_currency.items()],
            by_holding=sorted(
                (AllocationSlice(name, v, ccy, pct(v)) for name, (v, ccy) in by_holding.items()),
                key=lambda s: s.value,
                reverse=True,
            ),
        )

    @staticmethod
    def totals_by_currency(holdings: Iterable[ValuedPosition]) -> Dict[str, CurrencyTotals]:
        """
        Per-currency capital and dividends over all holdings; value and
        P/L only over holdings whose current value is known.
        """
        totals: Dict[str, CurrencyTotals] = {}
        for h in holdings:
            row = totals.setdefault(h.currency, CurrencyTotals(currency=h.currency))
            row.capital += h.total_cost
            row.dividends += h.total_dividends
            if h.is_valued:
                row.current_value += h.current_value
                row.unrealized_pl += h.unrealized_pl
        return totals

    @staticmethod
    def _dividend_rows(transactions: Iterable, year: int,
                       key: Optional[HoldingKey] = None,
                       category: Optional[str] = None) -> List:
        rows = []
        for tx in transactions:
            if tx.kind != TransactionType.DIVIDEND:
                continue
            if tx.trade_date is None or tx.trade_date.year != year:
                continue
            if key is not None and holding_key(tx.symbol, tx.broker) != key:
                continue
            if category is not None and tx.category != category:
                continue
            rows.append(tx)
        return rows

    @staticmethod
    def dividends_for_year(transactions: Iterable, year: int,
                           key: Optional[HoldingKey] = None,
                           category: Optional[str] = None) -> float:
        """Dividends with a trade date in the given year, optionally for one holding or category."""
        rows = PortfolioService._dividend_rows(transactions, year, key, category)
        return sum((tx.dividend_amount or 0.0 for tx in rows), 0.0)

    @staticmethod
    def dividend_yield(dividends: float, total_cost: float) -> Optional[float]:
        """Dividends as a percentage of cost; None when cost is zero."""
        ratio = safe_divide(dividends, total_cost)
        return ratio * 100 if ratio is not None else None

    @staticmethod
    def monthly_dividends(transactions: Iterable, year: int) -> List[Tuple[str, float]]:
        """Dividend income per calendar month of the given year (always 12 entries)."""
        rows = PortfolioService._dividend_rows(transactions, year)
        frame = pd.DataFrame(
            {
                'month': [tx.trade_date.month for tx in rows],
                'amount': [tx.dividend_amount or 0.0 for tx in rows],
            },
            columns=['month', 'amount'],
        )
        by_month = frame.groupby('month')['amount'].sum().reindex(range(1, 13), fill_value=0.0)
        return [(MONTH_NAMES[month - 1], float(amount)) for month, amount in by_month.items()]

    @staticmethod
    def top_movers(holdings: Iterable[ValuedPosition]) -> Tuple[Optional[ValuedPosition], Optional[ValuedPosition]]:
        """Holdings with the highest and lowest unrealized P/L percentage."""
        ranked = [h for h in holdings if h.unrealized_pl_pct is not None]
        if not ranked:
            return None, None
        gainer = max(ranked, key=lambda h: h.unrealized_pl_pct)
        loser = min(ranked, key=lambda h: h.unrealized_pl_pct)
        return gainer, loser

    @staticmethod
    def top_holdings(holdings: Iterable[ValuedPosition], limit: int = 5,
                     category: Optional[str] = "Stocks") -> List[ValuedPosition]:
        """Largest holdings by capital, optionally within one category."""
        selected = [h for h in holdings if category is None or h.category == category]
        selected.sort(key=lambda h: h.total_cost, reverse=True)
        return selected[:limit]

    @staticmethod
    def category_breakdowns(holdings: Sequence[ValuedPosition], transactions: Sequence,
                            year: int) -> Dict[str, CategoryBreakdown]:
        """Per-category capital, performance and dividend figures."""
        grouped: Dict[str, List[ValuedPosition]] = {}
        for h in holdings:
            grouped.setdefault(h.category, []).append(h)

        breakdowns = {}
        for category, members in grouped.items():
            capital = sum(h.total_cost for h in members)
            valued = [h for h in members if h.is_valued]
            valued_capital = sum(h.total_cost for h in valued)
            pl = sum(h.unrealized_pl for h in valued)
            pl_ratio = safe_divide(pl, valued_capital) if valued else None
            year_dividends = PortfolioService.dividends_for_year(transactions, year, category=category)
            gainer, loser = PortfolioService.top_movers(members)
            breakdowns[category] = CategoryBreakdown(
                category=category,
                holdings_count=len(members),
                capital=capital,
                current_value=sum(h.current_value for h in valued),
                unrealized_pl=pl,
                unrealized_pl_pct=pl_ratio * 100 if pl_ratio is not None else None,
                total_dividends=sum(h.total_dividends for h in members),
                year_dividends=year_dividends,
                dividend_yield=PortfolioService.dividend_yield(year_dividends, capital),
                top_gainer=gainer,
                top_loser=loser,
            )
        return breakdowns

    @staticmethod
    def build_summary(transactions: Sequence,
                      quotes: Optional[Mapping[str, Quote]] = None,
                      year: Optional[int] = None) -> PortfolioSummary:
        """
        Compute every dashboard figure from one transaction snapshot.

        Args:
            transactions: The user's full transaction list
            quotes: Mapping from symbol to Quote; may be partial
            year: Calendar year for dividend figures (default: current year)

        Returns:
            PortfolioSummary
        """
        transactions = list(transactions)
        year = year or date.today().year

        holdings = PortfolioService.build_holdings(transactions, quotes, year)
        totals = PortfolioService.totals_by_currency(holdings)
        gainer, loser = PortfolioService.top_movers(holdings)
        year_dividends = PortfolioService.dividends_for_year(transactions, year)
        capital = sum(t.capital for t in totals.values())
        realized = analyze(transactions)

        logger.debug(f"Summary built from {len(transactions)} transactions, {len(holdings)} holdings")

        return PortfolioSummary(
            year=year,
            holdings=holdings,
            allocations=PortfolioService.allocations(holdings),
            totals=totals,
            category_breakdowns=PortfolioService.category_breakdowns(holdings, transactions, year),
            monthly_dividends=PortfolioService.monthly_dividends(transactions, year),
            year_dividends=year_dividends,
            year_dividend_yield=PortfolioService.dividend_yield(year_dividends, capital),
            top_gainer=gainer,
            top_loser=loser,
            realized=realized,
            realized_summary=summarize_closed(realized),
        )

    @staticmethod
    def holdings_frame(holdings: Iterable[ValuedPosition]) -> pd.DataFrame:
        """Holdings as a DataFrame, one row per (symbol, broker)."""
        columns = [
            'symbol', 'broker', 'product_name', 'category', 'currency', 'quantity',
            'average_cost', 'total_cost', 'dividends', 'current_price', 'price_source',
            'current_value', 'unrealized_pl', 'unrealized_pl_pct', 'year_dividends', 'dividend_yield',
        ]
        rows = [
            {
                'symbol': h.symbol,
                'broker': h.broker,
                'product_name': h.product_name,
                'category': h.category,
                'currency': h.currency,
                'quantity': h.net_quantity,
                'average_cost': h.average_cost,
                'total_cost': h.total_cost,
                'dividends': h.total_dividends,
                'current_price': h.current_price,
                'price_source': h.price_source,
                'current_value': h.current_value,
                'unrealized_pl': h.unrealized_pl,
                'unrealized_pl_pct': h.unrealized_pl_pct,
                'year_dividends': h.year_dividends,
                'dividend_yield': h.dividend_yield,
            }
            for h in holdings
        ]
        return pd.DataFrame(rows, columns=columns)

    @staticmethod
    def format_summary_report(summary: PortfolioSummary) -> str:
        """
        Format a portfolio summary for display.

        Args:
            summary: PortfolioSummary object

        Returns:
            Formatted report string
        """
        def money(amount: Optional[float]) -> str:
            return "-" if amount is None else f"{amount:,.2f}"

        def percent(amount: Optional[float]) -> str:
            return "-" if amount is None else f"{amount:+.2f}%"

        lines = [
            "=" * 60,
            "PORTFOLIO SUMMARY",
            "=" * 60,
            "",
            "TOTALS BY CURRENCY",
            "-" * 40,
        ]

        if not summary.totals:
            lines.append("  No holdings recorded")
        for currency, totals in sorted(summary.totals.items()):
            ratio = safe_divide(totals.unrealized_pl, totals.capital)
            pl_pct = ratio * 100 if ratio is not None else None
            lines.append(
                f"{currency or '?':<5} capital {money(totals.capital):>14}  "
                f"value {money(totals.current_value):>14}  "
                f"P/L {money(totals.unrealized_pl):>12} ({percent(pl_pct)})"
            )

        lines += ["", "HOLDINGS", "-" * 40]
        for h in PortfolioService.sort_holdings(summary.holdings, 'total_cost', descending=True):
            lines.append(
                f"{h.symbol:<12} {h.broker:<12} qty {h.net_quantity:>12,.4f}  "
                f"cost {money(h.total_cost):>12}  price {money(h.current_price):>10}  "
                f"P/L {money(h.unrealized_pl):>12} ({percent(h.unrealized_pl_pct)})"
            )
            if h.year_dividends:
                yield_text = "-" if h.dividend_yield is None else f"{h.dividend_yield:.2f}%"
                lines.append(f"{'':<12} dividends {summary.year}: {money(h.year_dividends)} "
                             f"(yield {yield_text})")

        lines += ["", "ALLOCATION BY CATEGORY", "-" * 40]
        for item in sorted(summary.allocations.by_category, key=lambda s: s.value, reverse=True):
            lines.append(f"{item.name or '?':<15} {money(item.value):>14}  {item.pct:6.2f}%")

        lines += ["", f"DIVIDENDS ({summary.year})", "-" * 40]
        lines.append(f"Year to date:              {money(summary.year_dividends)}")
        lines.append(f"Yield on capital:          {percent(summary.year_dividend_yield)}")
        lines.append(f"All time:                  {money(summary.total_dividends)}")

        if summary.top_gainer is not None and (summary.top_gainer.unrealized_pl_pct or 0) > 0:
            lines.append("")
            lines.append(f"Top performer:   {summary.top_gainer.symbol} "
                         f"{percent(summary.top_gainer.unrealized_pl_pct)}")
        if summary.top_loser is not None and (summary.top_loser.unrealized_pl_pct or 0) < 0:
            lines.append(f"Worst performer: {summary.top_loser.symbol} "
                         f"{percent(summary.top_loser.unrealized_pl_pct)}")

        closed = closed_positions(summary.realized)
        lines += ["", "CLOSED POSITIONS", "-" * 40]
        if not closed:
            lines.append("  No exits recorded")
        for a in closed:
            lines.append(
                f"{a.symbol:<12} {a.broker:<12} bought {money(a.avg_buy_price):>10}  "
                f"sold {money(a.avg_sell_price):>10}  P/L {money(a.realized_pl):>12} "
                f"({percent(a.realized_pl_pct)})"
            )
        if summary.realized_summary is not None and closed:
            lines.append(
                f"Total realized P/L:        {money(summary.realized_summary.total_realized_pl)} "
                f"({percent(summary.realized_summary.total_realized_pl_pct)})"
            )

        lines.append("")
        lines.append("=" * 60)

        return "\n".join(lines)
