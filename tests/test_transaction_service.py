"""
Integration tests for TransactionService against an in-memory database.
"""

import pytest

from services.errors import TransactionNotFoundError, TransactionValidationError
from services.portfolio import PortfolioService
from services.transactions import TransactionService


BUY = {"type": "BUY", "symbol": "aapl", "currency": "USD", "broker": "IBKR",
       "quantity": 10, "price": 100, "commission": 1, "tradeDate": "2024-01-10"}


@pytest.fixture
def service(engine):
    return TransactionService(user_id="alice")


class TestTransactionService:
    """Tests for recording, editing and removing transactions."""

    def test_record_and_list(self, service) -> None:
        stored = service.record(BUY)

        listed = service.list()

        assert stored.id
        assert [tx.id for tx in listed] == [stored.id]
        assert listed[0].type == "BUY"
        assert listed[0].user_id == "alice"
        assert listed[0].dividend_amount == 0.0

    def test_sell_quantity_stored_as_magnitude(self, service) -> None:
        stored = service.record({**BUY, "type": "SELL", "quantity": -4})

        assert stored.quantity == 4

    def test_invalid_payload_is_rejected(self, service) -> None:
        with pytest.raises(TransactionValidationError) as excinfo:
            service.record({**BUY, "price": None})

        assert excinfo.value.message == "price is required for BUY/SELL"
        assert service.list() == []

    def test_list_is_most_recent_first(self, service) -> None:
        service.record({**BUY, "tradeDate": "2024-01-01"})
        service.record({**BUY, "tradeDate": "2024-06-01"})
        service.record({**BUY, "tradeDate": "2024-03-01"})

        dates = [tx.trade_date.isoformat() for tx in service.list()]

        assert dates == ["2024-06-01", "2024-03-01", "2024-01-01"]

    def test_users_are_isolated(self, service) -> None:
        service.record(BUY)
        other = TransactionService(user_id="bob")

        assert other.list() == []
        with pytest.raises(TransactionNotFoundError):
            other.delete(service.list()[0].id)

    def test_update(self, service) -> None:
        stored = service.record(BUY)

        updated = service.update(stored.id, {**BUY, "price": 120, "currentPrice": 130})

        assert updated.price == 120
        assert updated.current_price == 130
        assert service.list()[0].price == 120

    def test_update_requires_id(self, service) -> None:
        with pytest.raises(TransactionValidationError, match="id is required"):
            service.update("", BUY)

    def test_update_missing_transaction(self, service) -> None:
        with pytest.raises(TransactionNotFoundError):
            service.update("does-not-exist", BUY)

    def test_delete(self, service) -> None:
        stored = service.record(BUY)

        service.delete(stored.id)

        assert service.list() == []
        with pytest.raises(TransactionNotFoundError):
            service.delete(stored.id)

    def test_clear(self, service) -> None:
        service.record(BUY)
        service.record({**BUY, "symbol": "MSFT"})

        assert service.clear() == 2
        assert service.list() == []

    def test_stored_ledger_feeds_holdings(self, service) -> None:
        service.record(BUY)
        service.record({**BUY, "type": "SELL", "quantity": 4, "price": 110, "commission": 1})
        service.record({"type": "DIVIDEND", "symbol": "AAPL", "currency": "USD",
                        "broker": "IBKR", "dividendAmount": 3.5, "tradeDate": "2024-02-01"})

        holdings = PortfolioService.build_holdings(service.list())

        assert len(holdings) == 1
        assert holdings[0].symbol == "AAPL"
        assert holdings[0].net_quantity == 6
        assert holdings[0].total_cost == pytest.approx(1001.0 - 439.0)
        assert holdings[0].total_dividends == pytest.approx(3.5)
