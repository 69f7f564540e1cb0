"""Portfolio-level totals over a user's holdings."""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Mapping

from app.models.domain import Holding
from app.services.profit import CENT


@dataclass(frozen=True)
class PortfolioSummary:
    total_amount: Decimal
    total_initial_amount: Decimal
    total_profit: Decimal
    total_return_rate: Decimal  # percent, 0 when nothing was invested
    total_day_profit: Decimal


def summarize_portfolio(
    holdings: Iterable[Holding], day_profits: Mapping[str, Decimal]
) -> PortfolioSummary:
    """Aggregate holdings.

    ``day_profits`` maps fund code -> profit from this cycle's valuation.
    Holdings missing from it add nothing to the day profit but still count
    towards every other total.
    """
    total_amount = Decimal("0")
    total_initial = Decimal("0")
    total_day_profit = Decimal("0")

    for h in holdings:
        total_amount += h.current_amount
        total_initial += h.initial_cost
        total_day_profit += day_profits.get(h.code, Decimal("0"))

    total_profit = total_amount - total_initial
    if total_initial == 0:
        rate = Decimal("0")
    else:
        rate = (total_profit / total_initial * 100).quantize(CENT, rounding=ROUND_HALF_UP)

    return PortfolioSummary(
        total_amount=total_amount,
        total_initial_amount=total_initial,
        total_profit=total_profit,
        total_return_rate=rate,
        total_day_profit=total_day_profit,
    )
