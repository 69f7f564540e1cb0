"""Poll cycle: fetch -> profit -> history -> settlement, per holding."""

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Callable

from app.config import SETTLEMENT_CUTOFF_HOUR
from app.models.domain import HistoryPoint, Holding
from app.services.cache import ValuationCache
from app.services.profit import calculate_profit
from app.services.settlement import evaluate_settlement
from app.services.storage import HoldingPatch, Storage
from app.services.valuation import ValuationEstimate, ValuationFetcher

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PollResult:
    user_id: str
    code: str
    estimate: ValuationEstimate
    day_profit: Decimal
    point: HistoryPoint
    history_size: int
    settled: bool
    polled_at: datetime


class HoldingMonitor:
    """Runs poll cycles for holdings.

    Cycles of different holdings run concurrently; cycles of the same holding
    are serialized by a per-holding lock. Edits and deletes made through the
    monitor take the same lock, so they never interleave with a running
    cycle. Settlement itself is a conditional write in storage, so it cannot
    be applied twice for one day.
    """

    def __init__(
        self,
        storage: Storage,
        fetcher: ValuationFetcher,
        cache: ValuationCache,
        cutoff_hour: int = SETTLEMENT_CUTOFF_HOUR,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.storage = storage
        self.fetcher = fetcher
        self.cache = cache
        self.cutoff_hour = cutoff_hour
        self._clock = clock
        self._locks: dict[tuple[str, str], asyncio.Lock] = {}

    def now(self) -> datetime:
        return self._clock()

    def _lock_for(self, user_id: str, code: str) -> asyncio.Lock:
        return self._locks.setdefault((user_id, code), asyncio.Lock())

    async def poll_holding(
        self, user_id: str, code: str, now: datetime | None = None
    ) -> PollResult | None:
        """Run one cycle. Returns None when the holding is gone or the oracle gave nothing."""
        now = now or self._clock()
        today = now.strftime("%Y-%m-%d")

        async with self._lock_for(user_id, code):
            holding = await self.storage.get_holding(user_id, code)
            if holding is None:
                return None

            estimate = await self.fetcher.fetch(code)
            if estimate is None:
                return None

            day_profit = calculate_profit(holding.current_amount, estimate.est_change_pct)
            point = HistoryPoint.from_numbers(
                now.strftime("%H:%M"), estimate.est_nav, estimate.est_change_pct
            )
            history = await self.storage.append_history(user_id, code, today, point)
            if not history:
                # Holding removed while the fetch was in flight
                return None

            settled = False
            decision = evaluate_settlement(
                holding, today, now.hour, day_profit, self.cutoff_hour
            )
            if decision is not None:
                settled = await self.storage.settle_holding(
                    user_id, code, decision.day_profit, today
                )
                if settled:
                    logger.info(
                        f"Settled {code} for user {user_id} on {today}: "
                        f"{holding.current_amount} -> {decision.new_amount}"
                    )

            result = PollResult(
                user_id=user_id,
                code=code,
                estimate=estimate,
                day_profit=day_profit,
                point=point,
                history_size=len(history),
                settled=settled,
                polled_at=now,
            )
            self.cache.put(user_id, code, result)
            return result

    async def _poll_many(
        self, targets: list[tuple[str, str]], now: datetime | None
    ) -> list[PollResult]:
        outcomes = await asyncio.gather(
            *(self.poll_holding(uid, code, now) for uid, code in targets),
            return_exceptions=True,
        )
        results = []
        for (uid, code), outcome in zip(targets, outcomes):
            if isinstance(outcome, BaseException):
                logger.error(f"Poll cycle for {code} (user {uid}) failed: {outcome!r}")
            elif outcome is not None:
                results.append(outcome)
        return results

    async def poll_user(self, user_id: str, now: datetime | None = None) -> list[PollResult]:
        holdings = await self.storage.get_holdings(user_id)
        return await self._poll_many([(user_id, h.code) for h in holdings], now)

    async def poll_all(self, now: datetime | None = None) -> list[PollResult]:
        targets = []
        for user in await self.storage.list_users():
            for h in await self.storage.get_holdings(user.id):
                targets.append((user.id, h.code))
        if not targets:
            return []
        results = await self._poll_many(targets, now)
        settled = sum(1 for r in results if r.settled)
        logger.info(
            f"Polled {len(results)}/{len(targets)} holdings, {settled} settled"
        )
        return results

    async def upsert_holding(
        self,
        user_id: str,
        code: str,
        initial_cost: Decimal,
        current_amount: Decimal,
        last_settlement_date: str | None = None,
    ) -> Holding:
        async with self._lock_for(user_id, code):
            return await self.storage.upsert_holding(
                user_id, code, initial_cost, current_amount, last_settlement_date
            )

    async def update_holding(
        self, user_id: str, code: str, patch: HoldingPatch
    ) -> Holding | None:
        async with self._lock_for(user_id, code):
            return await self.storage.update_holding(user_id, code, patch)

    async def delete_holding(self, user_id: str, code: str) -> bool:
        """Delete a holding once any cycle running on it has finished."""
        async with self._lock_for(user_id, code):
            deleted = await self.storage.delete_holding(user_id, code)
        if deleted:
            self.forget(user_id, code)
        return deleted

    async def delete_user(self, user_id: str) -> bool:
        """Delete a user while holding the lock of every one of its holdings."""
        codes = {h.code for h in await self.storage.get_holdings(user_id)}
        codes.update(code for uid, code in self._locks if uid == user_id)
        async with contextlib.AsyncExitStack() as stack:
            # Fixed order, so two deletes of one user cannot deadlock
            for code in sorted(codes):
                await stack.enter_async_context(self._lock_for(user_id, code))
            deleted = await self.storage.delete_user(user_id)
        if deleted:
            self.forget(user_id)
        return deleted

    def forget(self, user_id: str, code: str | None = None) -> None:
        """Drop cached results and locks of a removed holding (or user)."""
        self.cache.drop(user_id, code)
        for key in list(self._locks):
            if key[0] == user_id and (code is None or key[1] == code):
                lock = self._locks[key]
                if not lock.locked():
                    del self._locks[key]
