"""Backend-independent value objects handed out by storage."""

from dataclasses import dataclass
from decimal import Decimal


@dataclass(frozen=True)
class User:
    id: str
    name: str
    created_at: str


@dataclass(frozen=True)
class Holding:
    user_id: str
    code: str
    initial_cost: Decimal
    current_amount: Decimal
    last_settlement_date: str | None = None

    @property
    def total_profit(self) -> Decimal:
        return self.current_amount - self.initial_cost


@dataclass(frozen=True)
class HistoryPoint:
    time: str  # "HH:MM"
    value: str  # estimated NAV, 4 decimals
    change: str  # percent change, 2 decimals

    @classmethod
    def from_numbers(cls, time: str, value: Decimal, change: Decimal) -> "HistoryPoint":
        return cls(
            time=time,
            value=f"{Decimal(value):.4f}",
            change=f"{Decimal(change):.2f}",
        )
