"""
Services package for Portfolio Ledger.
Provides core business logic separated from presentation and data layers.
"""

from services.common import (
    UNKNOWN_BROKER,
    Quote,
    holding_key,
    normalize_broker,
    normalize_symbol,
    safe_divide,
)
from services.errors import (
    PortfolioLedgerError,
    TransactionNotFoundError,
    TransactionValidationError,
)
from services.holdings import Position, ValuedPosition, aggregate, value, value_all
from services.realized import (
    CLOSED_POSITION_EPSILON,
    RealizedSummary,
    RealizedTradeAnalysis,
    analyze,
    closed_positions,
    summarize_closed,
)
from services.portfolio import PortfolioService, PortfolioSummary
from services.trade_journal import (
    BROKER_TEMPLATES,
    JournalMetrics,
    TradeEntry,
    TradeJournal,
    derive_metrics,
    read_broker_csv,
)
from services.transactions import TransactionService
from services.validation import TransactionInput, parse_number, validate_transaction

__all__ = [
    # Common utilities
    'UNKNOWN_BROKER',
    'Quote',
    'holding_key',
    'normalize_broker',
    'normalize_symbol',
    'safe_divide',
    # Errors
    'PortfolioLedgerError',
    'TransactionNotFoundError',
    'TransactionValidationError',
    # Holdings and valuation
    'Position',
    'ValuedPosition',
    'aggregate',
    'value',
    'value_all',
    # Realized P/L
    'CLOSED_POSITION_EPSILON',
    'RealizedSummary',
    'RealizedTradeAnalysis',
    'analyze',
    'closed_positions',
    'summarize_closed',
    # Services
    'PortfolioService',
    'PortfolioSummary',
    # Trade journal
    'BROKER_TEMPLATES',
    'JournalMetrics',
    'TradeEntry',
    'TradeJournal',
    'derive_metrics',
    'read_broker_csv',
    'TransactionService',
    'TransactionInput',
    'parse_number',
    'validate_transaction',
]
