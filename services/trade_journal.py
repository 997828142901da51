"""
Trade journal: broker trades valued in a single base currency.

Each trade may carry its own FX multiplier to the base currency; otherwise
the journal's current rates are used. Metrics come from a running
average-cost ledger per ticker, so every sell books realized P/L against
the average cost at that moment. Trades can be read from broker CSV
exports through column templates.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

import pandas as pd

from config import get_settings
from models import TransactionType
from services.common import normalize_symbol, safe_divide
from services.errors import TransactionValidationError
from services.validation import parse_date, parse_number

logger = logging.getLogger(__name__)

MONTH_NAMES = ['Jan', 'Feb', 'Mar', 'Apr', 'May', 'Jun',
               'Jul', 'Aug', 'Sep', 'Oct', 'Nov', 'Dec']

# Trade fields a broker template can map a CSV column to
TRADE_FIELDS = ('ticker', 'type', 'quantity', 'price', 'fees', 'date', 'currency', 'fx_rate')
REQUIRED_CSV_FIELDS = ('ticker', 'type', 'quantity', 'price', 'date')


@dataclass
class TradeEntry:
    """One journal trade. quantity*price is the dividend amount for DIVIDEND rows."""
    type: TransactionType
    ticker: str
    quantity: float
    price: float
    trade_date: date
    broker: str
    currency: str
    fees: float = 0.0
    fx_rate: Optional[float] = None
    notes: Optional[str] = None
    id: str = field(default_factory=lambda: uuid.uuid4().hex)

    @property
    def gross(self) -> float:
        return self.quantity * self.price

    @classmethod
    def from_transaction(cls, tx) -> Optional["TradeEntry"]:
        """Journal view of a stored ledger transaction; None for rows of unknown type."""
        kind = tx.kind
        if kind is None:
            return None
        if kind == TransactionType.DIVIDEND:
            quantity, price = 1.0, parse_number(tx.dividend_amount) or 0.0
        else:
            quantity, price = abs(parse_number(tx.quantity) or 0.0), parse_number(tx.price) or 0.0
        return cls(
            type=kind,
            ticker=normalize_symbol(tx.symbol),
            quantity=quantity,
            price=price,
            fees=parse_number(tx.commission) or 0.0,
            trade_date=tx.effective_timestamp.date(),
            broker=tx.broker or "",
            currency=(tx.currency or "").upper(),
            notes=tx.notes,
            id=tx.id,
        )

    def to_transaction_payload(self) -> Dict[str, Any]:
        """Payload accepted by TransactionService.record()."""
        payload = {
            'type': self.type.value,
            'symbol': self.ticker,
            'broker': self.broker,
            'currency': self.currency,
            'tradeDate': self.trade_date.isoformat(),
            'notes': self.notes,
        }
        if self.type == TransactionType.DIVIDEND:
            payload['dividendAmount'] = self.gross
        else:
            payload.update(quantity=self.quantity, price=self.price, commission=self.fees)
        return payload


@dataclass(frozen=True)
class BrokerTemplate:
    """Maps journal trade fields to the column names of one broker's CSV export."""
    id: str
    name: str
    default_currency: str
    description: str
    mapping: Dict[str, str]


BROKER_TEMPLATES: Dict[str, BrokerTemplate] = {
    t.id: t for t in (
        BrokerTemplate(
            id="moomoo",
            name="MooMoo SG",
            default_currency="SGD",
            description="CSV export from MooMoo with contract FX hints and commission columns.",
            mapping={
                'ticker': "Symbol", 'type': "Side", 'quantity': "Qty", 'price': "Price",
                'fees': "Commission", 'date': "Trade Date", 'currency': "Currency",
                'fx_rate': "FX Rate",
            },
        ),
        BrokerTemplate(
            id="tiger",
            name="Tiger Brokers",
            default_currency="USD",
            description="Tiger Brokers trade export with base currency and FX multiplier.",
            mapping={
                'ticker': "Symbol", 'type': "Transaction Type", 'quantity': "Quantity",
                'price': "Trade Price", 'fees': "Commissions", 'date': "Trade Date",
                'currency': "Currency", 'fx_rate': "FX Rate to Base",
            },
        ),
        BrokerTemplate(
            id="ibkr",
            name="IBKR",
            default_currency="USD",
            description="Interactive Brokers default format with FX multiplier to base currency.",
            mapping={
                'ticker': "Ticker", 'type': "Action", 'quantity': "Quantity", 'price': "Price",
                'fees': "Commissions", 'date': "Date/Time", 'currency': "Currency",
                'fx_rate': "FX Rate to Base",
            },
        ),
        BrokerTemplate(
            id="poems",
            name="POEMS / FSMOne / CMC / LongBridge",
            default_currency="SGD",
            description="Generic SG broker export with mappable columns.",
            mapping={
                'ticker': "Security", 'type': "Type", 'quantity': "Units", 'price': "Price",
                'fees': "Fee", 'date': "Date", 'currency': "CCY", 'fx_rate': "FX",
            },
        ),
    )
}


@dataclass
class JournalHolding:
    """An open journal position, amounts in the base currency."""
    ticker: str
    quantity: float
    average_cost: float
    last_price: float
    market_value: float
    pl: float
    fx_rate: float
    currency: str
    dividend_yield: Optional[float]


@dataclass
class JournalMetrics:
    base_currency: str
    year: int
    total_fees: float = 0.0
    dividends_ytd: float = 0.0
    holdings: List[JournalHolding] = field(default_factory=list)
    realized: Dict[str, float] = field(default_factory=dict)
    dividends_by_ticker: Dict[str, float] = field(default_factory=dict)

    @property
    def total_realized(self) -> float:
        return sum(self.realized.values(), 0.0)

    @property
    def total_unrealized(self) -> float:
        return sum((h.pl for h in self.holdings), 0.0)

    @property
    def total_market_value(self) -> float:
        return sum((h.market_value for h in self.holdings), 0.0)


@dataclass
class CsvImportResult:
    trades: List[TradeEntry]
    errors: List[Tuple[int, str]]  # (1-based data row, message)


@dataclass
class _Lot:
    quantity: float
    cost_basis: float
    latest_price: float
    currency: str
    fx: float


def get_fx_rate(currency: str, fx_rates: Mapping[str, float],
                provided: Optional[float] = None,
                base_currency: Optional[str] = None) -> float:
    """
    Multiplier from currency to the base currency.
    A trade's own rate wins; unknown currencies fall back to 1.
    """
    base = base_currency or get_settings().journal_base_currency
    if currency == base:
        return 1.0
    if provided:
        return provided
    return fx_rates.get(currency, 1.0)


def parse_trade(raw: Mapping[str, Any],
                currencies: Optional[Iterable[str]] = None) -> TradeEntry:
    """
    Validate a raw trade (form or CSV row) and build a TradeEntry.

    Raises:
        TransactionValidationError: with the first problem found
    """
    supported = list(currencies) if currencies is not None else get_settings().journal_currencies

    kind = TransactionType.parse(raw.get('type'))
    if kind is None:
        raise TransactionValidationError("Type must be one of buy, sell, dividend")

    ticker = normalize_symbol(raw.get('ticker'))
    if not ticker:
        raise TransactionValidationError("Ticker is required")

    quantity = parse_number(raw.get('quantity'))
    if quantity is None or quantity <= 0:
        raise TransactionValidationError("Quantity must be greater than 0")

    price = parse_number(raw.get('price'))
    if price is None:
        raise TransactionValidationError("Price is required")
    if price < 0:
        raise TransactionValidationError("Price cannot be negative")

    fees = parse_number(raw.get('fees'))
    if fees is None:
        fees = 0.0
    if fees < 0:
        raise TransactionValidationError("Fees cannot be negative")

    trade_date = parse_date(raw.get('date'))
    if trade_date is None:
        raise TransactionValidationError("Trade date is required")

    broker = str(raw.get('broker') or "").strip()
    if not broker:
        raise TransactionValidationError("Broker is required")

    currency = str(raw.get('currency') or "").strip().upper()
    if not currency:
        raise TransactionValidationError("Currency is required")
    if currency not in supported:
        raise TransactionValidationError("Currency not supported")

    fx_rate = parse_number(raw.get('fx_rate'))
    if fx_rate is not None and fx_rate <= 0:
        raise TransactionValidationError("FX rate must be greater than 0")

    notes = str(raw.get('notes') or "").strip() or None

    return TradeEntry(
        type=kind,
        ticker=ticker,
        quantity=quantity,
        price=price,
        fees=fees,
        trade_date=trade_date,
        broker=broker,
        currency=currency,
        fx_rate=fx_rate,
        notes=notes,
    )


def derive_metrics(trades: Iterable[TradeEntry],
                   fx_rates: Optional[Mapping[str, float]] = None,
                   year: Optional[int] = None,
                   base_currency: Optional[str] = None) -> JournalMetrics:
    """
    Run the average-cost ledger over the trades in trade-date order.

    BUY adds (gross + fees) in base currency to the ticker's cost basis.
    SELL books (gross - fees) minus average cost times quantity as realized
    P/L and removes that average cost from the basis. DIVIDEND adds gross
    to the ticker's dividends. Fees of every trade count towards total_fees.

    Args:
        trades: Journal trades in any order
        fx_rates: Currency to base-currency multipliers for trades without their own
        year: Year for dividends_ytd (default: current year)
        base_currency: Currency all amounts are expressed in

    Returns:
        JournalMetrics
    """
    fx_rates = fx_rates or {}
    base = base_currency or get_settings().journal_base_currency
    metrics = JournalMetrics(base_currency=base, year=year or date.today().year)
    lots: Dict[str, _Lot] = {}

    for trade in sorted(trades, key=lambda t: t.trade_date):
        fx = get_fx_rate(trade.currency, fx_rates, trade.fx_rate, base)
        metrics.total_fees += trade.fees * fx

        if trade.type == TransactionType.DIVIDEND:
            amount = trade.gross * fx
            metrics.dividends_by_ticker[trade.ticker] = metrics.dividends_by_ticker.get(trade.ticker, 0.0) + amount
            if trade.trade_date.year == metrics.year:
                metrics.dividends_ytd += amount
            continue

        lot = lots.get(trade.ticker)
        if lot is None:
            lot = _Lot(quantity=0.0, cost_basis=0.0, latest_price=trade.price,
                       currency=trade.currency, fx=fx)
            lots[trade.ticker] = lot

        if trade.type == TransactionType.BUY:
            lot.quantity += trade.quantity
            lot.cost_basis += (trade.gross + trade.fees) * fx
        else:
            average_cost = lot.cost_basis / lot.quantity if lot.quantity else 0.0
            proceeds = (trade.gross - trade.fees) * fx
            realized = proceeds - average_cost * trade.quantity
            metrics.realized[trade.ticker] = metrics.realized.get(trade.ticker, 0.0) + realized
            lot.quantity = max(lot.quantity - trade.quantity, 0.0)
            lot.cost_basis = max(lot.cost_basis - average_cost * trade.quantity, 0.0)

        lot.latest_price = trade.price
        lot.currency = trade.currency
        lot.fx = fx

    for ticker, lot in lots.items():
        if lot.quantity <= 0:
            continue
        market_value = lot.quantity * lot.latest_price * lot.fx
        ratio = safe_divide(metrics.dividends_by_ticker.get(ticker, 0.0), market_value)
        metrics.holdings.append(JournalHolding(
            ticker=ticker,
            quantity=lot.quantity,
            average_cost=lot.cost_basis / lot.quantity,
            last_price=lot.latest_price,
            market_value=market_value,
            pl=market_value - lot.cost_basis,
            fx_rate=lot.fx,
            currency=lot.currency,
            dividend_yield=ratio * 100 if ratio is not None and market_value > 0 else None,
        ))

    logger.debug(f"Journal metrics: {len(metrics.holdings)} open holdings, "
                 f"{len(metrics.realized)} tickers with realized P/L")
    return metrics


def filter_trades(trades: Iterable[TradeEntry],
                  broker: Optional[str] = None,
                  ticker: Optional[str] = None,
                  trade_type: Optional[str] = None,
                  date_from: Optional[date] = None,
                  date_to: Optional[date] = None) -> List[TradeEntry]:
    """Trades matching every given filter; ticker matches as a case-insensitive substring."""
    kind = TransactionType.parse(trade_type) if trade_type else None
    needle = (ticker or "").strip().lower()
    return [
        t for t in trades
        if (not broker or t.broker == broker)
        and (kind is None or t.type == kind)
        and needle in t.ticker.lower()
        and (date_from is None or t.trade_date >= date_from)
        and (date_to is None or t.trade_date <= date_to)
    ]


def allocation_by_currency(metrics: JournalMetrics) -> Dict[str, float]:
    """Market value of open holdings per trading currency, in base currency."""
    allocation: Dict[str, float] = {}
    for h in metrics.holdings:
        allocation[h.currency] = allocation.get(h.currency, 0.0) + h.market_value
    return allocation


def top_contributors(metrics: JournalMetrics, limit: int = 5) -> List[Tuple[str, float]]:
    """Holdings with the largest P/L in absolute terms."""
    ranked = sorted(metrics.holdings, key=lambda h: abs(h.pl), reverse=True)
    return [(h.ticker, h.pl) for h in ranked[:limit]]


def dividend_timeline(trades: Iterable[TradeEntry],
                      fx_rates: Optional[Mapping[str, float]] = None,
                      base_currency: Optional[str] = None) -> List[Tuple[str, float]]:
    """Dividends in base currency per calendar month, for months that have any."""
    fx_rates = fx_rates or {}
    rows = [
        (t.trade_date.month, t.gross * get_fx_rate(t.currency, fx_rates, t.fx_rate, base_currency))
        for t in trades if t.type == TransactionType.DIVIDEND
    ]
    if not rows:
        return []
    frame = pd.DataFrame(rows, columns=['month', 'amount'])
    by_month = frame.groupby('month')['amount'].sum().sort_index()
    return [(MONTH_NAMES[month - 1], float(amount)) for month, amount in by_month.items()]


def read_broker_csv(source, template: BrokerTemplate,
                    mapping: Optional[Mapping[str, str]] = None,
                    broker: Optional[str] = None,
                    currencies: Optional[Iterable[str]] = None) -> CsvImportResult:
    """
    Read a broker CSV export into journal trades.

    Rows that fail validation are reported in errors and skipped; the
    rest are still imported.

    Args:
        source: Path or file-like object accepted by pandas.read_csv
        template: Column template of the broker
        mapping: Overrides of the template's field -> column mapping
        broker: Broker label for the trades (default: template name)
        currencies: Accepted currency codes (default: configured journal currencies)

    Raises:
        TransactionValidationError: if a required column is missing
    """
    columns = {**template.mapping, **(mapping or {})}
    frame = pd.read_csv(source, dtype=str, keep_default_na=False, skipinitialspace=True)
    frame.columns = [str(c).strip() for c in frame.columns]

    missing = [columns[f] for f in REQUIRED_CSV_FIELDS if columns.get(f) not in frame.columns]
    if missing:
        raise TransactionValidationError(f"CSV is missing columns: {', '.join(missing)}")

    trades: List[TradeEntry] = []
    errors: List[Tuple[int, str]] = []
    for row_number, row in enumerate(frame.to_dict('records'), start=1):
        raw = {f: row[c] for f, c in columns.items() if f in TRADE_FIELDS and c in row}
        raw['currency'] = raw.get('currency') or template.default_currency
        raw['broker'] = broker or template.name
        try:
            trades.append(parse_trade(raw, currencies))
        except TransactionValidationError as e:
            logger.warning(f"Skipping {template.name} CSV row {row_number}: {e.message}")
            errors.append((row_number, e.message))

    logger.info(f"Read {len(trades)} trades from {template.name} CSV ({len(errors)} rejected)")
    return CsvImportResult(trades=trades, errors=errors)


class TradeJournal:
    """
    An in-memory list of trades plus the FX rates used to value them.
    """

    def __init__(self, trades: Optional[Iterable[TradeEntry]] = None,
                 base_currency: Optional[str] = None,
                 currencies: Optional[Iterable[str]] = None):
        settings = get_settings()
        self.base_currency = base_currency or settings.journal_base_currency
        self.currencies = list(currencies) if currencies is not None else list(settings.journal_currencies)
        self.trades: List[TradeEntry] = list(trades or [])
        self.fx_rates: Dict[str, float] = {self.base_currency: 1.0}

    def add(self, raw: Mapping[str, Any]) -> TradeEntry:
        """Validate and append a trade."""
        trade = parse_trade(raw, self.currencies)
        self.trades.append(trade)
        return trade

    def import_csv(self, source, template_id: str,
                   mapping: Optional[Mapping[str, str]] = None,
                   broker: Optional[str] = None) -> CsvImportResult:
        """
        Append the valid rows of a broker CSV export.

        Raises:
            TransactionValidationError: for an unknown template or missing columns
        """
        template = BROKER_TEMPLATES.get(template_id)
        if template is None:
            raise TransactionValidationError(f"Unknown broker template: {template_id}")
        result = read_broker_csv(source, template, mapping, broker, self.currencies)
        self.trades.extend(result.trades)
        return result

    def refresh_fx_rates(self, market_data=None) -> Dict[str, float]:
        """Fetch current rates for every non-base currency; unavailable rates keep their old value."""
        if market_data is None:
            from services.market_data import get_market_data_service
            market_data = get_market_data_service()

        for currency in self.currencies:
            if currency == self.base_currency:
                continue
            rate = market_data.get_exchange_rate(currency, self.base_currency)
            if rate:
                self.fx_rates[currency] = rate
        return self.fx_rates

    def metrics(self, year: Optional[int] = None) -> JournalMetrics:
        return derive_metrics(self.trades, self.fx_rates, year, self.base_currency)


def format_journal_report(metrics: JournalMetrics) -> str:
    """Format journal metrics for display."""
    def money(amount: Optional[float]) -> str:
        return "-" if amount is None else f"{amount:,.2f}"

    lines = [
        "=" * 60,
        f"TRADE JOURNAL ({metrics.base_currency})",
        "=" * 60,
        f"Market value:              {money(metrics.total_market_value)}",
        f"Unrealized P/L:            {money(metrics.total_unrealized)}",
        f"Realized P/L:              {money(metrics.total_realized)}",
        f"Dividends {metrics.year}:            {money(metrics.dividends_ytd)}",
        f"Total fees:                {money(metrics.total_fees)}",
        "",
        "OPEN HOLDINGS",
        "-" * 40,
    ]
    if not metrics.holdings:
        lines.append("  No open holdings")
    for h in sorted(metrics.holdings, key=lambda h: h.market_value, reverse=True):
        yield_text = "-" if h.dividend_yield is None else f"{h.dividend_yield:.2f}%"
        lines.append(
            f"{h.ticker:<10} {h.currency:<4} qty {h.quantity:>10,.4f}  avg {money(h.average_cost):>10}  "
            f"value {money(h.market_value):>12}  P/L {money(h.pl):>12}  yield {yield_text}"
        )

    if metrics.realized:
        lines += ["", "REALIZED BY TICKER", "-" * 40]
        for ticker, amount in sorted(metrics.realized.items()):
            lines.append(f"{ticker:<10} {money(amount):>12}")

    lines.append("")
    lines.append("=" * 60)
    return "\n".join(lines)
