"""User, Holding and intraday History tables."""

from datetime import datetime
from decimal import Decimal

from sqlalchemy import Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from app.models.database import Base


class UserRecord(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(40), primary_key=True)
    name: Mapped[str] = mapped_column(String(100))
    created_at: Mapped[str] = mapped_column(
        String(30), default=lambda: datetime.now().isoformat()
    )


class HoldingRecord(Base):
    __tablename__ = "funds"
    __table_args__ = (UniqueConstraint("user_id", "code", name="uq_funds_user_code"),)

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(40), index=True)
    code: Mapped[str] = mapped_column(String(10))
    initial_cost: Mapped[Decimal] = mapped_column(Numeric(18, 2))
    current_amount: Mapped[Decimal] = mapped_column(Numeric(18, 2))
    last_settlement_date: Mapped[str | None] = mapped_column(
        String(10), nullable=True
    )  # "YYYY-MM-DD"
    created_at: Mapped[str] = mapped_column(
        String(30), default=lambda: datetime.now().isoformat()
    )


class HistoryRecord(Base):
    __tablename__ = "history"
    __table_args__ = (
        UniqueConstraint(
            "user_id", "fund_code", "date", "time", name="uq_history_point"
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(40), index=True)
    fund_code: Mapped[str] = mapped_column(String(10))
    date: Mapped[str] = mapped_column(String(10))  # "YYYY-MM-DD"
    time: Mapped[str] = mapped_column(String(5))  # "HH:MM"
    value: Mapped[Decimal] = mapped_column(Numeric(12, 4))
    change: Mapped[Decimal] = mapped_column(Numeric(8, 2))
    created_at: Mapped[str] = mapped_column(
        String(30), default=lambda: datetime.now().isoformat()
    )
