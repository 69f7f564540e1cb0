"""Daily settlement rules.

A holding is SETTLED for a day once its ``last_settlement_date`` equals that
day; any other value (including never settled) means UNSETTLED. There is no
stored per-day flag, so a new calendar day starts UNSETTLED by itself.

Settlement fires on a successful poll at or after the cutoff hour and folds
the day profit into ``current_amount``. Days on which no poll ran after the
cutoff are not settled later.
"""

import enum
from dataclasses import dataclass
from decimal import Decimal

from app.config import SETTLEMENT_CUTOFF_HOUR
from app.models.domain import Holding


class SettlementState(str, enum.Enum):
    UNSETTLED = "unsettled"
    SETTLED = "settled"


@dataclass(frozen=True)
class SettlementDecision:
    day_profit: Decimal
    new_amount: Decimal
    settlement_date: str


def settlement_state(holding: Holding, today: str) -> SettlementState:
    if holding.last_settlement_date == today:
        return SettlementState.SETTLED
    return SettlementState.UNSETTLED


def settlement_status(
    holding: Holding, today: str, hour: int, cutoff_hour: int = SETTLEMENT_CUTOFF_HOUR
) -> str:
    """Display status: ``settled``, ``pending`` (past cutoff) or ``before_cutoff``."""
    if settlement_state(holding, today) is SettlementState.SETTLED:
        return "settled"
    if hour >= cutoff_hour:
        return "pending"
    return "before_cutoff"


def evaluate_settlement(
    holding: Holding,
    today: str,
    hour: int,
    day_profit: Decimal | None,
    cutoff_hour: int = SETTLEMENT_CUTOFF_HOUR,
) -> SettlementDecision | None:
    """Decide whether this poll settles the holding.

    ``day_profit`` is None when no fresh estimate was obtained this cycle, in
    which case nothing is settled.
    """
    if day_profit is None:
        return None
    if hour < cutoff_hour:
        return None
    if settlement_state(holding, today) is SettlementState.SETTLED:
        return None
    return SettlementDecision(
        day_profit=day_profit,
        new_amount=holding.current_amount + day_profit,
        settlement_date=today,
    )
