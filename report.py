"""
Portfolio report runner using APScheduler.
Prints the portfolio summary once, or keeps refreshing quotes and
reprinting it on a fixed interval.
"""

import argparse
import logging
import time
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from dotenv import load_dotenv

from config import get_settings
from db_engine import init_db
from services.market_data import get_market_data_service
from services.portfolio import PortfolioService
from services.trade_journal import TradeEntry, TradeJournal, format_journal_report
from services.transactions import TransactionService

# Load environment variables
load_dotenv()

logger = logging.getLogger(__name__)


def configure_logging(level: Optional[str] = None) -> None:
    """Configure root logging for command-line use."""
    logging.basicConfig(
        level=(level or get_settings().log_level).upper(),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )


def build_report(user_id: Optional[str] = None, year: Optional[int] = None,
                 fetch_quotes: bool = True) -> str:
    """
    Load a user's transactions, price them and format the summary.

    Args:
        user_id: Owner of the transactions (default: configured local user)
        year: Year for dividend figures (default: current year)
        fetch_quotes: If False, value holdings from recorded prices only

    Returns:
        Formatted report string
    """
    transactions = TransactionService(user_id).list()
    logger.info(f"Loaded {len(transactions)} transactions")

    quotes = {}
    if fetch_quotes and transactions:
        symbols = {tx.symbol for tx in transactions}
        quotes = get_market_data_service().get_quotes(symbols)

    summary = PortfolioService.build_summary(transactions, quotes, year)
    return PortfolioService.format_summary_report(summary)


def build_journal_report(user_id: Optional[str] = None, year: Optional[int] = None,
                         fetch_fx: bool = True) -> str:
    """
    Format the user's transactions as a trade journal in the base currency.

    Args:
        user_id: Owner of the transactions (default: configured local user)
        year: Year for dividend figures (default: current year)
        fetch_fx: If False, amounts in other currencies are taken at a rate of 1
    """
    transactions = TransactionService(user_id).list()
    trades = [t for t in (TradeEntry.from_transaction(tx) for tx in transactions) if t is not None]
    journal = TradeJournal(trades)
    if fetch_fx and trades:
        journal.refresh_fx_rates(get_market_data_service())
    return format_journal_report(journal.metrics(year))


def import_trades(path: str, template_id: Optional[str] = None,
                  user_id: Optional[str] = None, broker: Optional[str] = None) -> int:
    """
    Record the valid rows of a broker CSV export as transactions.

    Returns:
        Number of transactions recorded
    """
    template_id = template_id or get_settings().journal_default_template
    journal = TradeJournal()
    result = journal.import_csv(path, template_id, broker=broker)
    for row, message in result.errors:
        print(f"Row {row}: {message}")

    service = TransactionService(user_id)
    for trade in result.trades:
        service.record(trade.to_transaction_payload())
    logger.info(f"Imported {len(result.trades)} trades from {path}")
    return len(result.trades)


def print_report(user_id: Optional[str] = None, year: Optional[int] = None,
                 fetch_quotes: bool = True) -> None:
    """Scheduler job: build and print the report, logging any failure."""
    try:
        print(build_report(user_id, year, fetch_quotes))
    except Exception as e:
        logger.error(f"Failed to build portfolio report: {e}")


def start_report_scheduler(user_id: Optional[str] = None, year: Optional[int] = None,
                           fetch_quotes: bool = True) -> BackgroundScheduler:
    """
    Start the background scheduler that refreshes the report.
    Runs every quote_refresh_minutes, matching the quote cache lifetime.
    """
    minutes = get_settings().quote_refresh_minutes
    scheduler = BackgroundScheduler()
    scheduler.add_job(
        print_report,
        trigger=IntervalTrigger(minutes=minutes),
        kwargs={'user_id': user_id, 'year': year, 'fetch_quotes': fetch_quotes},
        id='portfolio_report',
        name='Portfolio Report',
        replace_existing=True
    )

    print_report(user_id, year, fetch_quotes)

    scheduler.start()
    logger.info(f"Report scheduler started. Refreshing every {minutes} minutes.")
    return scheduler


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Print the portfolio summary report.")
    parser.add_argument('--once', action='store_true', help="print one report and exit")
    parser.add_argument('--user', default=None, help="user id (default: configured local user)")
    parser.add_argument('--year', type=int, default=None, help="year for dividend figures")
    parser.add_argument('--offline', action='store_true',
                        help="do not fetch quotes; use recorded prices only")
    parser.add_argument('--import-csv', metavar='PATH', default=None,
                        help="record the trades of a broker CSV export, then exit")
    parser.add_argument('--template', default=None,
                        help="broker CSV template: moomoo, tiger, ibkr or poems")
    parser.add_argument('--broker', default=None, help="broker label for imported trades")
    parser.add_argument('--journal', action='store_true',
                        help="print the trade journal in the base currency and exit")
    return parser.parse_args(argv)


def main(argv=None) -> None:
    args = parse_args(argv)
    configure_logging()
    init_db()

    if args.import_csv:
        count = import_trades(args.import_csv, args.template, args.user, args.broker)
        print(f"Imported {count} trades")
        return

    if args.journal:
        print(build_journal_report(args.user, args.year, not args.offline))
        return

    if args.once:
        print(build_report(args.user, args.year, not args.offline))
        return

    scheduler = start_report_scheduler(args.user, args.year, not args.offline)
    try:
        while True:
            time.sleep(1)
    except (KeyboardInterrupt, SystemExit):
        logger.info("Shutting down report scheduler...")
        scheduler.shutdown()


if __name__ == "__main__":
    main()
