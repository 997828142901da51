"""
Unit tests for position aggregation and valuation.
"""

import math
from datetime import date, datetime, timezone

import pytest

from services.common import UNKNOWN_BROKER, Quote
from services.holdings import aggregate, value, value_all


def _by_symbol(positions):
    return {p.symbol: p for p in positions}


class TestAggregate:
    """Tests for folding transactions into positions."""

    def test_empty_list_gives_no_positions(self) -> None:
        assert aggregate([]) == []

    def test_one_position_per_symbol_and_broker(self, make_tx) -> None:
        txs = [
            make_tx("BUY", "AAPL", "IBKR", 1, 100),
            make_tx("BUY", "AAPL", "IBKR", 2, 110),
            make_tx("BUY", "AAPL", "DBS", 1, 105),
            make_tx("BUY", "MSFT", "IBKR", 3, 300),
            make_tx("DIVIDEND", "MSFT", None, dividend_amount=5),
        ]

        positions = aggregate(txs)

        assert len(positions) == 4
        assert {p.key for p in positions} == {
            ("AAPL", "ibkr"), ("AAPL", "dbs"), ("MSFT", "ibkr"), ("MSFT", UNKNOWN_BROKER),
        }

    def test_missing_broker_goes_to_unknown_bucket(self, make_tx) -> None:
        positions = aggregate([
            make_tx("BUY", "AAPL", None, 1, 10),
            make_tx("BUY", "AAPL", "   ", 1, 10),
            make_tx("BUY", "AAPL", "Unknown", 1, 10),
        ])

        unknown = [p for p in positions if p.key[1] == UNKNOWN_BROKER]
        assert len(positions) == 2
        assert len(unknown) == 1
        assert unknown[0].broker == UNKNOWN_BROKER
        assert unknown[0].net_quantity == 2

    def test_broker_and_symbol_are_normalised(self, make_tx) -> None:
        positions = aggregate([
            make_tx("BUY", "aapl", "Moo Moo", 1, 10),
            make_tx("BUY", " AAPL ", "  moo   MOO ", 1, 12),
        ])

        assert len(positions) == 1
        assert positions[0].symbol == "AAPL"
        assert positions[0].broker == "Moo Moo"
        assert positions[0].net_quantity == 2

    def test_buy_only_cost_is_sum_of_fills_and_commissions(self, make_tx) -> None:
        position = aggregate([
            make_tx("BUY", quantity=3, price=10.5, commission=1.0),
            make_tx("BUY", quantity=2, price=20.0, commission=0.5),
        ])[0]

        assert position.total_cost == pytest.approx(3 * 10.5 + 2 * 20.0 + 1.0 + 0.5)
        assert position.total_commission == pytest.approx(1.5)
        assert position.net_quantity == 5

    def test_sell_reduces_quantity(self, make_tx) -> None:
        position = aggregate([
            make_tx("BUY", quantity=10, price=5),
            make_tx("SELL", quantity=4, price=6),
        ])[0]

        assert position.net_quantity == 6

    def test_negative_stored_sell_quantity_is_treated_as_magnitude(self, make_tx) -> None:
        position = aggregate([
            make_tx("BUY", quantity=10, price=5),
            make_tx("SELL", quantity=-4, price=6),
        ])[0]

        assert position.net_quantity == 6

    def test_sell_removes_net_proceeds_from_cost(self, make_tx) -> None:
        position = aggregate([
            make_tx("BUY", quantity=10, price=5, commission=2),
            make_tx("SELL", quantity=4, price=6, commission=1),
        ])[0]

        # 10*5 + 2 - (4*6 - 1)
        assert position.total_cost == pytest.approx(29.0)
        assert position.total_commission == pytest.approx(3.0)
        assert position.average_cost == pytest.approx(29.0 / 6)

    def test_dividend_only_touches_dividends(self, make_tx) -> None:
        position = aggregate([
            make_tx("DIVIDEND", quantity=100, price=9, commission=3, dividend_amount=50),
        ])[0]

        assert position.net_quantity == 0
        assert position.total_cost == 0
        assert position.total_commission == 0
        assert position.total_dividends == 50
        assert position.average_cost is None

    def test_malformed_rows_count_as_zero(self, make_tx) -> None:
        position = aggregate([
            make_tx("BUY", quantity=10, price=5),
            make_tx("BUY", quantity=None, price=7, commission=1),
            make_tx("SELL", quantity=2, price=None),
        ])[0]

        assert position.net_quantity == 8
        assert position.total_cost == pytest.approx(51.0)
        assert position.transaction_count == 3

    def test_unknown_type_is_ignored(self, make_tx) -> None:
        positions = aggregate([
            make_tx("BUY", quantity=1, price=10),
            make_tx("SPLIT", quantity=100, price=1),
            make_tx("TRANSFER", symbol="MSFT", quantity=5, price=1),
        ])

        assert len(positions) == 1
        assert positions[0].net_quantity == 1

    def test_lowercase_type_is_accepted(self, make_tx) -> None:
        position = aggregate([make_tx("buy", quantity=2, price=3)])[0]
        assert position.net_quantity == 2

    def test_average_cost_undefined_when_flat(self, make_tx) -> None:
        position = aggregate([
            make_tx("BUY", quantity=5, price=10),
            make_tx("SELL", quantity=5, price=12),
        ])[0]

        assert position.net_quantity == 0
        assert position.average_cost is None

    def test_latest_hint_uses_most_recent_date(self, make_tx) -> None:
        position = aggregate([
            make_tx("BUY", quantity=1, price=8, trade_date=date(2024, 6, 1), current_price=9.5),
            make_tx("BUY", quantity=1, price=8, trade_date=date(2024, 1, 1), current_price=8.0),
            make_tx("BUY", quantity=1, price=8, trade_date=date(2024, 7, 1)),
        ])[0]

        assert position.latest_hinted_price == 9.5
        assert position.hint_timestamp == datetime(2024, 6, 1)

    def test_hint_falls_back_to_created_at(self, make_tx) -> None:
        position = aggregate([
            make_tx("BUY", quantity=1, price=8, created_at=datetime(2024, 3, 5, 12), current_price=11.0),
            make_tx("BUY", quantity=1, price=8, trade_date=date(2024, 3, 5), current_price=10.0),
        ])[0]

        assert position.latest_hinted_price == 11.0

    def test_hint_compares_aware_and_naive_timestamps(self, make_tx) -> None:
        position = aggregate([
            make_tx("BUY", quantity=1, price=8, created_at=datetime(2024, 3, 5, tzinfo=timezone.utc),
                    current_price=11.0),
            make_tx("BUY", quantity=1, price=8, trade_date=date(2024, 3, 6), current_price=10.0),
        ])[0]

        assert position.latest_hinted_price == 10.0
        assert position.hint_timestamp == datetime(2024, 3, 6)

    @pytest.mark.parametrize("reverse", [False, True])
    def test_hint_tie_broken_by_id(self, make_tx, reverse) -> None:
        txs = [
            make_tx("BUY", quantity=1, price=8, trade_date=date(2024, 5, 1), current_price=9.0, id="a"),
            make_tx("BUY", quantity=1, price=8, trade_date=date(2024, 5, 1), current_price=10.0, id="b"),
        ]
        if reverse:
            txs.reverse()

        assert aggregate(txs)[0].latest_hinted_price == 10.0

    def test_nan_hint_is_ignored(self, make_tx) -> None:
        position = aggregate([
            make_tx("BUY", quantity=1, price=8, trade_date=date(2024, 1, 1), current_price=7.0),
            make_tx("BUY", quantity=1, price=8, trade_date=date(2024, 2, 1), current_price=float("nan")),
        ])[0]

        assert position.latest_hinted_price == 7.0

    def test_result_does_not_depend_on_order(self, make_tx) -> None:
        txs = [
            make_tx("BUY", "AAPL", quantity=10, price=5, commission=1),
            make_tx("SELL", "AAPL", quantity=3, price=7, commission=1),
            make_tx("DIVIDEND", "AAPL", dividend_amount=4),
            make_tx("BUY", "MSFT", quantity=2, price=300),
        ]

        forward = _by_symbol(aggregate(txs))
        backward = _by_symbol(aggregate(list(reversed(txs))))

        for symbol in ("AAPL", "MSFT"):
            assert forward[symbol].net_quantity == backward[symbol].net_quantity
            assert forward[symbol].total_cost == pytest.approx(backward[symbol].total_cost)
            assert forward[symbol].total_dividends == backward[symbol].total_dividends


class TestValue:
    """Tests for valuing positions against quotes and hints."""

    def test_hint_used_without_quote(self, make_tx) -> None:
        position = aggregate([
            make_tx("BUY", quantity=10, price=9, trade_date=date(2024, 1, 1), current_price=8.0),
            make_tx("BUY", quantity=10, price=9, trade_date=date(2024, 2, 1), current_price=9.5),
        ])[0]

        valued = value(position)

        assert valued.current_price == 9.5
        assert valued.price_source == "hint"
        assert valued.current_value == pytest.approx(190.0)
        assert valued.unrealized_pl == pytest.approx(10.0)
        assert valued.unrealized_pl_pct == pytest.approx(10.0 / 180.0 * 100)

    def test_quote_wins_over_hint(self, make_tx) -> None:
        position = aggregate([
            make_tx("BUY", quantity=10, price=9, current_price=9.5),
        ])[0]
        as_of = datetime(2024, 6, 3, 16, 0)

        valued = value(position, Quote(symbol="AAPL", price=10.0, as_of=as_of))

        assert valued.current_price == 10.0
        assert valued.price_source == "quote"
        assert valued.last_price_timestamp == as_of
        assert valued.unrealized_pl == pytest.approx(10.0)

    def test_quote_without_price_falls_back_to_hint(self, make_tx) -> None:
        position = aggregate([make_tx("BUY", quantity=1, price=9, current_price=9.5)])[0]

        valued = value(position, Quote(symbol="AAPL", price=None))

        assert valued.current_price == 9.5
        assert valued.price_source == "hint"

    def test_unknown_price_leaves_everything_undefined(self, make_tx) -> None:
        position = aggregate([make_tx("BUY", quantity=10, price=9)])[0]

        valued = value(position)

        assert valued.current_price is None
        assert valued.price_source is None
        assert valued.current_value is None
        assert valued.unrealized_pl is None
        assert valued.unrealized_pl_pct is None
        assert not valued.is_valued

    def test_zero_cost_gives_undefined_percentages(self, make_tx) -> None:
        position = aggregate([
            make_tx("DIVIDEND", dividend_amount=50, current_price=12.0),
        ])[0]

        valued = value(position)

        assert position.total_cost == 0
        assert position.average_cost is None
        assert valued.current_value == 0
        assert valued.unrealized_pl == 0
        assert valued.unrealized_pl_pct is None

    def test_value_never_returns_nan_or_inf(self, make_tx) -> None:
        position = aggregate([
            make_tx("BUY", quantity=5, price=10),
            make_tx("SELL", quantity=5, price=10),
        ])[0]

        valued = value(position, Quote(symbol="AAPL", price=11.0))

        for amount in (valued.current_value, valued.unrealized_pl):
            assert amount is not None and math.isfinite(amount)
        assert valued.unrealized_pl_pct is None

    def test_partial_quote_mapping(self, make_tx) -> None:
        positions = aggregate([
            make_tx("BUY", "AAPL", quantity=1, price=100),
            make_tx("BUY", "MSFT", quantity=1, price=300, current_price=310),
            make_tx("BUY", "TSLA", quantity=1, price=200),
        ])

        valued = {v.symbol: v for v in value_all(positions, {"AAPL": Quote(symbol="AAPL", price=120.0)})}

        assert valued["AAPL"].current_price == 120.0
        assert valued["MSFT"].current_price == 310
        assert valued["TSLA"].current_price is None

    def test_value_all_without_quotes(self, make_tx) -> None:
        positions = aggregate([make_tx("BUY", quantity=1, price=1)])
        assert len(value_all(positions, None)) == 1
