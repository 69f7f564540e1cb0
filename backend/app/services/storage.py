"""Persistence for users, holdings and intraday history.

Two interchangeable backends implement :class:`Storage`:

- :class:`SqlStorage` on SQLAlchemy's async engine (SQLite via aiosqlite by
  default, PostgreSQL via asyncpg when ``DATABASE_URL`` points there)
- :class:`MemoryStorage` keeping everything in process

The backend is chosen once, in :func:`create_storage`.
"""

import abc
import asyncio
import logging
import random
import re
import string
import time
from datetime import date as date_cls
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal

from pydantic import BaseModel, ConfigDict, field_validator, model_validator
from sqlalchemy import delete, or_, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from app.config import HISTORY_LIMIT
from app.models.database import create_session_factory, init_db
from app.models.domain import HistoryPoint, Holding, User
from app.models.holding import HistoryRecord, HoldingRecord, UserRecord
from app.services.history import merge_history_point
from app.services.profit import CENT, to_decimal

logger = logging.getLogger(__name__)

_DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def validate_iso_date(value: str) -> str:
    if not _DATE_PATTERN.match(value):
        raise ValueError("date must be YYYY-MM-DD")
    date_cls.fromisoformat(value)
    return value


def new_user_id() -> str:
    """``<epoch-ms>_<6 base36 chars>``."""
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=6))
    return f"{int(time.time() * 1000)}_{suffix}"


def _money(value: Decimal | int | float | str) -> Decimal:
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


class HoldingPatch(BaseModel):
    """Fields of a holding that may be changed after creation.

    Only fields explicitly set are written.
    """

    model_config = ConfigDict(extra="forbid")

    initial_cost: Decimal | None = None
    current_amount: Decimal | None = None
    last_settlement_date: str | None = None

    @field_validator("initial_cost", "current_amount")
    @classmethod
    def _finite(cls, v: Decimal | None) -> Decimal | None:
        if v is not None and not v.is_finite():
            raise ValueError("amount must be a finite number")
        return v

    @field_validator("last_settlement_date")
    @classmethod
    def _iso_date(cls, v: str | None) -> str | None:
        return None if v is None else validate_iso_date(v)

    @model_validator(mode="after")
    def _has_changes(self) -> "HoldingPatch":
        if not self.model_fields_set:
            raise ValueError("no fields to update")
        for name in ("initial_cost", "current_amount"):
            if name in self.model_fields_set and getattr(self, name) is None:
                raise ValueError(f"{name} cannot be null")
        return self

    def changes(self) -> dict[str, Decimal | str | None]:
        values: dict[str, Decimal | str | None] = {}
        for name in sorted(self.model_fields_set):
            value = getattr(self, name)
            values[name] = _money(value) if isinstance(value, Decimal) else value
        return values


class Storage(abc.ABC):
    """Storage capability used by the monitor and the API."""

    async def init(self) -> None:
        pass

    async def close(self) -> None:
        pass

    # Users
    @abc.abstractmethod
    async def create_user(self, name: str) -> User: ...

    @abc.abstractmethod
    async def list_users(self) -> list[User]: ...

    @abc.abstractmethod
    async def get_user(self, user_id: str) -> User | None: ...

    @abc.abstractmethod
    async def delete_user(self, user_id: str) -> bool:
        """Delete the user with all of its holdings and history, atomically."""

    # Holdings
    @abc.abstractmethod
    async def upsert_holding(
        self,
        user_id: str,
        code: str,
        initial_cost: Decimal,
        current_amount: Decimal,
        last_settlement_date: str | None = None,
    ) -> Holding: ...

    @abc.abstractmethod
    async def get_holdings(self, user_id: str) -> list[Holding]: ...

    @abc.abstractmethod
    async def get_holding(self, user_id: str, code: str) -> Holding | None: ...

    @abc.abstractmethod
    async def update_holding(
        self, user_id: str, code: str, patch: HoldingPatch
    ) -> Holding | None: ...

    @abc.abstractmethod
    async def delete_holding(self, user_id: str, code: str) -> bool:
        """Delete the holding and its history, atomically."""

    @abc.abstractmethod
    async def settle_holding(
        self, user_id: str, code: str, day_profit: Decimal, today: str
    ) -> bool:
        """Add ``day_profit`` to current_amount and stamp ``today``.

        Applied only if the holding is not already settled for ``today``;
        returns whether it was applied.
        """

    # History
    @abc.abstractmethod
    async def append_history(
        self, user_id: str, code: str, date: str, point: HistoryPoint
    ) -> tuple[HistoryPoint, ...]:
        """Merge ``point`` into the day's sequence and return the sequence.

        Nothing is written, and ``()`` is returned, when the holding no
        longer exists.
        """

    @abc.abstractmethod
    async def get_history_sequence(
        self, user_id: str, code: str, date: str
    ) -> tuple[HistoryPoint, ...]: ...

    @abc.abstractmethod
    async def get_history(self, user_id: str, date: str) -> dict[str, list[HistoryPoint]]: ...

    @abc.abstractmethod
    async def clear_history(self, user_id: str, date: str | None = None) -> int: ...


def _to_user(rec: UserRecord) -> User:
    return User(id=rec.id, name=rec.name, created_at=rec.created_at)


def _to_holding(rec: HoldingRecord) -> Holding:
    return Holding(
        user_id=rec.user_id,
        code=rec.code,
        initial_cost=_money(rec.initial_cost),
        current_amount=_money(rec.current_amount),
        last_settlement_date=rec.last_settlement_date,
    )


def _to_point(rec: HistoryRecord) -> HistoryPoint:
    return HistoryPoint.from_numbers(rec.time, rec.value, rec.change)


class SqlStorage(Storage):
    """Relational backend. Multi-statement operations run in one transaction."""

    def __init__(self, database_url: str, history_limit: int = HISTORY_LIMIT):
        self._engine, self._session_factory = create_session_factory(database_url)
        self._history_limit = history_limit

    async def init(self) -> None:
        await init_db(self._engine)

    async def close(self) -> None:
        await self._engine.dispose()

    def _insert(self, model):
        if self._engine.dialect.name == "postgresql":
            return pg_insert(model)
        return sqlite_insert(model)

    async def create_user(self, name: str) -> User:
        async with self._session_factory() as session:
            rec = UserRecord(
                id=new_user_id(), name=name, created_at=datetime.now().isoformat()
            )
            session.add(rec)
            await session.commit()
            return _to_user(rec)

    async def list_users(self) -> list[User]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(UserRecord).order_by(UserRecord.created_at)
            )
            return [_to_user(r) for r in result.scalars().all()]

    async def get_user(self, user_id: str) -> User | None:
        async with self._session_factory() as session:
            rec = await session.get(UserRecord, user_id)
            return _to_user(rec) if rec else None

    async def delete_user(self, user_id: str) -> bool:
        async with self._session_factory() as session, session.begin():
            await session.execute(
                delete(HistoryRecord).where(HistoryRecord.user_id == user_id)
            )
            await session.execute(
                delete(HoldingRecord).where(HoldingRecord.user_id == user_id)
            )
            result = await session.execute(
                delete(UserRecord).where(UserRecord.id == user_id)
            )
            return result.rowcount > 0

    async def upsert_holding(
        self,
        user_id: str,
        code: str,
        initial_cost: Decimal,
        current_amount: Decimal,
        last_settlement_date: str | None = None,
    ) -> Holding:
        stmt = self._insert(HoldingRecord).values(
            user_id=user_id,
            code=code,
            initial_cost=_money(initial_cost),
            current_amount=_money(current_amount),
            last_settlement_date=last_settlement_date,
            created_at=datetime.now().isoformat(),
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["user_id", "code"],
            set_={
                "initial_cost": stmt.excluded.initial_cost,
                "current_amount": stmt.excluded.current_amount,
                "last_settlement_date": stmt.excluded.last_settlement_date,
            },
        )
        async with self._session_factory() as session, session.begin():
            await session.execute(stmt)
        # Every field is overwritten on conflict, so the stored row is exactly this
        return Holding(
            user_id=user_id,
            code=code,
            initial_cost=_money(initial_cost),
            current_amount=_money(current_amount),
            last_settlement_date=last_settlement_date,
        )

    async def get_holdings(self, user_id: str) -> list[Holding]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(HoldingRecord)
                .where(HoldingRecord.user_id == user_id)
                .order_by(HoldingRecord.id)
            )
            return [_to_holding(r) for r in result.scalars().all()]

    async def get_holding(self, user_id: str, code: str) -> Holding | None:
        async with self._session_factory() as session:
            result = await session.execute(
                select(HoldingRecord).where(
                    HoldingRecord.user_id == user_id, HoldingRecord.code == code
                )
            )
            rec = result.scalar_one_or_none()
            return _to_holding(rec) if rec else None

    async def update_holding(
        self, user_id: str, code: str, patch: HoldingPatch
    ) -> Holding | None:
        async with self._session_factory() as session, session.begin():
            result = await session.execute(
                update(HoldingRecord)
                .where(HoldingRecord.user_id == user_id, HoldingRecord.code == code)
                .values(**patch.changes())
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                return None
        return await self.get_holding(user_id, code)

    async def delete_holding(self, user_id: str, code: str) -> bool:
        async with self._session_factory() as session, session.begin():
            await session.execute(
                delete(HistoryRecord).where(
                    HistoryRecord.user_id == user_id, HistoryRecord.fund_code == code
                )
            )
            result = await session.execute(
                delete(HoldingRecord).where(
                    HoldingRecord.user_id == user_id, HoldingRecord.code == code
                )
            )
            return result.rowcount > 0

    async def settle_holding(
        self, user_id: str, code: str, day_profit: Decimal, today: str
    ) -> bool:
        async with self._session_factory() as session, session.begin():
            result = await session.execute(
                update(HoldingRecord)
                .where(
                    HoldingRecord.user_id == user_id,
                    HoldingRecord.code == code,
                    or_(
                        HoldingRecord.last_settlement_date.is_(None),
                        HoldingRecord.last_settlement_date != today,
                    ),
                )
                .values(
                    current_amount=HoldingRecord.current_amount + _money(day_profit),
                    last_settlement_date=today,
                )
                .execution_options(synchronize_session=False)
            )
            return result.rowcount == 1

    def _history_scope(self, user_id: str, code: str, date: str):
        return (
            HistoryRecord.user_id == user_id,
            HistoryRecord.fund_code == code,
            HistoryRecord.date == date,
        )

    async def append_history(
        self, user_id: str, code: str, date: str, point: HistoryPoint
    ) -> tuple[HistoryPoint, ...]:
        scope = self._history_scope(user_id, code, date)
        stmt = self._insert(HistoryRecord).values(
            user_id=user_id,
            fund_code=code,
            date=date,
            time=point.time,
            value=Decimal(point.value),
            change=Decimal(point.change),
            created_at=datetime.now().isoformat(),
        )
        # Same minute keeps its row id, so it keeps its position
        stmt = stmt.on_conflict_do_update(
            index_elements=["user_id", "fund_code", "date", "time"],
            set_={"value": stmt.excluded.value, "change": stmt.excluded.change},
        )
        stale_ids = (
            select(HistoryRecord.id)
            .where(*scope)
            .order_by(HistoryRecord.id.desc())
            .offset(self._history_limit)
            .correlate(None)
        )
        async with self._session_factory() as session, session.begin():
            holding_id = await session.scalar(
                select(HoldingRecord.id).where(
                    HoldingRecord.user_id == user_id, HoldingRecord.code == code
                )
            )
            if holding_id is None:
                return ()
            await session.execute(stmt)
            await session.execute(
                delete(HistoryRecord)
                .where(HistoryRecord.id.in_(stale_ids))
                .execution_options(synchronize_session=False)
            )
            result = await session.execute(
                select(HistoryRecord).where(*scope).order_by(HistoryRecord.id)
            )
            return tuple(_to_point(r) for r in result.scalars().all())

    async def get_history_sequence(
        self, user_id: str, code: str, date: str
    ) -> tuple[HistoryPoint, ...]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(HistoryRecord)
                .where(*self._history_scope(user_id, code, date))
                .order_by(HistoryRecord.id)
            )
            return tuple(_to_point(r) for r in result.scalars().all())

    async def get_history(self, user_id: str, date: str) -> dict[str, list[HistoryPoint]]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(HistoryRecord)
                .where(HistoryRecord.user_id == user_id, HistoryRecord.date == date)
                .order_by(HistoryRecord.id)
            )
            data: dict[str, list[HistoryPoint]] = {}
            for rec in result.scalars().all():
                data.setdefault(rec.fund_code, []).append(_to_point(rec))
            return data

    async def clear_history(self, user_id: str, date: str | None = None) -> int:
        stmt = delete(HistoryRecord).where(HistoryRecord.user_id == user_id)
        if date is not None:
            stmt = stmt.where(HistoryRecord.date == date)
        async with self._session_factory() as session, session.begin():
            result = await session.execute(stmt)
            return result.rowcount


class MemoryStorage(Storage):
    """Process-local backend. All state is lost on restart."""

    def __init__(self, history_limit: int = HISTORY_LIMIT):
        self._history_limit = history_limit
        self._users: dict[str, User] = {}
        self._holdings: dict[tuple[str, str], Holding] = {}
        self._history: dict[tuple[str, str, str], tuple[HistoryPoint, ...]] = {}
        self._lock = asyncio.Lock()

    async def create_user(self, name: str) -> User:
        user = User(id=new_user_id(), name=name, created_at=datetime.now().isoformat())
        async with self._lock:
            self._users[user.id] = user
        return user

    async def list_users(self) -> list[User]:
        return sorted(self._users.values(), key=lambda u: u.created_at)

    async def get_user(self, user_id: str) -> User | None:
        return self._users.get(user_id)

    async def delete_user(self, user_id: str) -> bool:
        async with self._lock:
            existed = self._users.pop(user_id, None) is not None
            for key in [k for k in self._holdings if k[0] == user_id]:
                del self._holdings[key]
            for key in [k for k in self._history if k[0] == user_id]:
                del self._history[key]
            return existed

    async def upsert_holding(
        self,
        user_id: str,
        code: str,
        initial_cost: Decimal,
        current_amount: Decimal,
        last_settlement_date: str | None = None,
    ) -> Holding:
        holding = Holding(
            user_id=user_id,
            code=code,
            initial_cost=_money(initial_cost),
            current_amount=_money(current_amount),
            last_settlement_date=last_settlement_date,
        )
        async with self._lock:
            self._holdings[(user_id, code)] = holding
        return holding

    async def get_holdings(self, user_id: str) -> list[Holding]:
        return [h for (uid, _), h in self._holdings.items() if uid == user_id]

    async def get_holding(self, user_id: str, code: str) -> Holding | None:
        return self._holdings.get((user_id, code))

    async def update_holding(
        self, user_id: str, code: str, patch: HoldingPatch
    ) -> Holding | None:
        async with self._lock:
            holding = self._holdings.get((user_id, code))
            if holding is None:
                return None
            fields = {
                "initial_cost": holding.initial_cost,
                "current_amount": holding.current_amount,
                "last_settlement_date": holding.last_settlement_date,
            }
            fields.update(patch.changes())
            updated = Holding(user_id=user_id, code=code, **fields)
            self._holdings[(user_id, code)] = updated
            return updated

    async def delete_holding(self, user_id: str, code: str) -> bool:
        async with self._lock:
            existed = self._holdings.pop((user_id, code), None) is not None
            for key in [k for k in self._history if k[:2] == (user_id, code)]:
                del self._history[key]
            return existed

    async def settle_holding(
        self, user_id: str, code: str, day_profit: Decimal, today: str
    ) -> bool:
        async with self._lock:
            holding = self._holdings.get((user_id, code))
            if holding is None or holding.last_settlement_date == today:
                return False
            self._holdings[(user_id, code)] = Holding(
                user_id=user_id,
                code=code,
                initial_cost=holding.initial_cost,
                current_amount=holding.current_amount + _money(day_profit),
                last_settlement_date=today,
            )
            return True

    async def append_history(
        self, user_id: str, code: str, date: str, point: HistoryPoint
    ) -> tuple[HistoryPoint, ...]:
        key = (user_id, code, date)
        async with self._lock:
            if (user_id, code) not in self._holdings:
                return ()
            merged = merge_history_point(
                self._history.get(key, ()), point, self._history_limit
            )
            self._history[key] = merged
            return merged

    async def get_history_sequence(
        self, user_id: str, code: str, date: str
    ) -> tuple[HistoryPoint, ...]:
        return self._history.get((user_id, code, date), ())

    async def get_history(self, user_id: str, date: str) -> dict[str, list[HistoryPoint]]:
        return {
            code: list(points)
            for (uid, code, d), points in self._history.items()
            if uid == user_id and d == date
        }

    async def clear_history(self, user_id: str, date: str | None = None) -> int:
        async with self._lock:
            keys = [
                k for k in self._history
                if k[0] == user_id and (date is None or k[2] == date)
            ]
            removed = 0
            for key in keys:
                removed += len(self._history.pop(key))
            return removed


def create_storage(backend: str, database_url: str | None = None) -> Storage:
    """Build the configured storage backend (not yet initialised)."""
    if backend == "memory":
        logger.info("Using in-memory storage")
        return MemoryStorage()
    if backend == "sql":
        if not database_url:
            raise ValueError("database_url is required for the sql backend")
        logger.info(f"Using SQL storage: {database_url.split('://', 1)[0]}")
        return SqlStorage(database_url)
    raise ValueError(f"Unknown storage backend: {backend!r}")
