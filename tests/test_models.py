"""
Unit tests for the Transaction model helpers.
"""

from datetime import date, datetime

import pytest

from models import TransactionType
from services.portfolio import PortfolioService


class TestTransactionKind:

    @pytest.mark.parametrize("raw, expected", [
        ("BUY", TransactionType.BUY),
        (" sell ", TransactionType.SELL),
        ("Dividend", TransactionType.DIVIDEND),
        ("SPLIT", None),
        ("", None),
    ])
    def test_kind_parses_stored_type(self, make_tx, raw, expected) -> None:
        assert make_tx(raw).kind == expected

    def test_kind_drives_dividend_rows(self, make_tx) -> None:
        txs = [
            make_tx("dividend", dividend_amount=4.0, trade_date=date(2024, 2, 1)),
            make_tx("BUY", quantity=1, price=5.0, trade_date=date(2024, 2, 1)),
        ]

        assert PortfolioService.dividends_for_year(txs, 2024) == pytest.approx(4.0)


class TestEffectiveTimestamp:

    def test_trade_date_wins(self, make_tx) -> None:
        tx = make_tx("BUY", trade_date=date(2024, 3, 6), created_at=datetime(2024, 5, 1, 9, 30))

        assert tx.effective_timestamp == datetime(2024, 3, 6)

    def test_falls_back_to_created_at(self, make_tx) -> None:
        tx = make_tx("BUY", created_at=datetime(2024, 5, 1, 9, 30))

        assert tx.effective_timestamp == datetime(2024, 5, 1, 9, 30)
