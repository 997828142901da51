"""
Trade calculators: breakeven, averaging down, trade P/L, risk-based
position sizing and dividend income. All functions are pure and return
None for inputs that would divide by zero.
"""

import math
from dataclasses import dataclass
from typing import Optional

from services.common import safe_divide


@dataclass
class AveragePriceResult:
    new_average_price: float
    total_quantity: float
    total_cost: float


@dataclass
class TradeProfitLoss:
    total_buy_cost: float
    total_sell_value: float
    profit_loss: float
    profit_loss_pct: Optional[float]


@dataclass
class PositionSizeResult:
    shares: int
    position_size: float
    risk_amount: float
    risk_per_share: float


@dataclass
class DividendIncome:
    dividend_yield: float
    annual_income: float
    monthly_income: float


def breakeven_price(buy_price: float, buy_commission: float = 0.0,
                    sell_commission: float = 0.0) -> float:
    """Per-unit sell price needed to recover the buy price and both commissions."""
    return buy_price + (buy_commission or 0.0) + (sell_commission or 0.0)


def average_price_after_purchase(current_quantity: float, current_average_price: float,
                                 add_quantity: float, add_price: float) -> Optional[AveragePriceResult]:
    """
    New average price after adding to a holding.

    Returns:
        AveragePriceResult, or None if the combined quantity is zero
    """
    total_cost = current_quantity * current_average_price + add_quantity * add_price
    total_quantity = current_quantity + add_quantity
    new_average = safe_divide(total_cost, total_quantity)
    if new_average is None:
        return None
    return AveragePriceResult(
        new_average_price=new_average,
        total_quantity=total_quantity,
        total_cost=total_cost,
    )


def trade_profit_loss(quantity: float, buy_price: float, sell_price: float,
                      buy_commission: float = 0.0, sell_commission: float = 0.0) -> TradeProfitLoss:
    """
    Profit or loss of a round trip. Commissions are quoted per unit.
    """
    total_buy_cost = quantity * buy_price + (buy_commission or 0.0) * quantity
    total_sell_value = quantity * sell_price - (sell_commission or 0.0) * quantity
    profit_loss = total_sell_value - total_buy_cost
    pct = safe_divide(profit_loss, total_buy_cost)
    return TradeProfitLoss(
        total_buy_cost=total_buy_cost,
        total_sell_value=total_sell_value,
        profit_loss=profit_loss,
        profit_loss_pct=pct * 100 if pct is not None else None,
    )


def position_size(account_size: float, risk_percent: float,
                  entry_price: float, stop_loss: float) -> Optional[PositionSizeResult]:
    """
    Number of shares to buy so that hitting the stop loses risk_percent of the account.

    Returns:
        PositionSizeResult, or None when entry and stop are equal
    """
    risk_amount = account_size * (risk_percent / 100)
    risk_per_share = abs(entry_price - stop_loss)
    raw_shares = safe_divide(risk_amount, risk_per_share)
    if raw_shares is None:
        return None
    shares = int(math.floor(raw_shares))
    return PositionSizeResult(
        shares=shares,
        position_size=shares * entry_price,
        risk_amount=risk_amount,
        risk_per_share=risk_per_share,
    )


def dividend_yield_income(share_price: float, annual_dividend: float,
                          shares: Optional[float] = None) -> Optional[DividendIncome]:
    """
    Dividend yield and income for a holding; shares defaults to one.

    Returns:
        DividendIncome, or None when the share price is zero
    """
    ratio = safe_divide(annual_dividend, share_price)
    if ratio is None:
        return None
    annual_income = annual_dividend * (shares or 1)
    return DividendIncome(
        dividend_yield=ratio * 100,
        annual_income=annual_income,
        monthly_income=annual_income / 12,
    )
