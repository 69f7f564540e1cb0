"""Pydantic schemas for API request/response."""

from decimal import Decimal

from pydantic import BaseModel, field_validator

from app.services.storage import validate_iso_date


class UserCreateRequest(BaseModel):
    name: str

    @field_validator("name")
    @classmethod
    def _not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("name cannot be empty")
        return v


class UserResponse(BaseModel):
    id: str
    name: str
    created_at: str


class HoldingCreateRequest(BaseModel):
    code: str
    initial_cost: Decimal
    current_amount: Decimal
    last_settlement_date: str | None = None

    @field_validator("code")
    @classmethod
    def _code_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("code cannot be empty")
        return v

    @field_validator("initial_cost", "current_amount")
    @classmethod
    def _finite(cls, v: Decimal) -> Decimal:
        if not v.is_finite():
            raise ValueError("amount must be a finite number")
        return v

    @field_validator("last_settlement_date")
    @classmethod
    def _iso_date(cls, v: str | None) -> str | None:
        return None if v is None else validate_iso_date(v)


class HoldingResponse(BaseModel):
    code: str
    initial_cost: float
    current_amount: float
    last_settlement_date: str | None = None
    total_profit: float
    settlement_status: str
    # Latest valuation, absent until the holding was polled successfully
    fund_name: str | None = None
    last_nav: float | None = None
    est_nav: float | None = None
    est_change_pct: float | None = None
    est_time: str | None = None
    day_profit: float | None = None


class PortfolioResponse(BaseModel):
    user_id: str
    holdings: list[HoldingResponse]
    total_amount: float
    total_initial_amount: float
    total_profit: float
    total_return_rate: float
    total_day_profit: float


class HistoryPointResponse(BaseModel):
    time: str
    value: str
    change: str


class HistoryResponse(BaseModel):
    date: str
    data: dict[str, list[HistoryPointResponse]]


class EstimateResponse(BaseModel):
    fund_code: str
    fund_name: str
    nav_date: str
    last_nav: float
    est_nav: float
    est_change_pct: float
    est_time: str
    holding_amount: float
    profit: float
