from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Callable, Iterable, Optional

from config import local_now
from live import LiveValue, Subscription, combine_latest
from money import format_currency
from periods import current_month_to_date
from store import LiveQuery, StorageFailure, TransactionStore

logger = logging.getLogger(__name__)


class DashboardStatus(str, Enum):
    loading = "loading"
    ready = "ready"
    empty = "empty"
    error = "error"


@dataclass(frozen=True)
class CategorySpending:
    category: str
    amount: float
    percentage: float


@dataclass(frozen=True)
class DashboardState:
    category_spending: tuple[CategorySpending, ...] = ()
    total_spending: float = 0.0
    is_loading: bool = True
    error: Optional[str] = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    currency_symbol: str = "€"

    @property
    def has_date_filter(self) -> bool:
        return self.start is not None and self.end is not None

    @property
    def status(self) -> DashboardStatus:
        if self.error is not None:
            return DashboardStatus.error
        if self.is_loading:
            return DashboardStatus.loading
        if not self.category_spending:
            return DashboardStatus.empty
        return DashboardStatus.ready

    @property
    def formatted_total(self) -> str:
        return format_currency(self.total_spending, self.currency_symbol)


def rank_category_spending(
    amounts: Iterable[tuple[str, float]], total: float
) -> list[CategorySpending]:
    if total <= 0:
        return []
    rows = [
        CategorySpending(
            category=category, amount=amount, percentage=amount / total * 100
        )
        for category, amount in amounts
        if amount > 0
    ]
    # sorted() is stable: equal amounts keep category order
    return sorted(rows, key=lambda row: row.amount, reverse=True)


class SpendingDashboard:
    """Category breakdown of spending, optionally scoped to a date range."""

    def __init__(
        self,
        store: TransactionStore,
        *,
        clock: Callable[[], datetime] = local_now,
        currency_symbol: str = "€",
    ) -> None:
        self.store = store
        period = current_month_to_date(clock())
        self.state: LiveValue[DashboardState] = LiveValue(
            DashboardState(
                start=period.start, end=period.end, currency_symbol=currency_symbol
            )
        )
        self._subscription: Optional[Subscription] = None
        self._generation = 0

    async def start(self) -> None:
        await self._load()

    async def refresh(self) -> None:
        logger.info("dashboard_refresh")
        self.state.update(lambda s: replace(s, is_loading=True, error=None))
        await self._load()

    async def set_date_range(
        self, start: Optional[datetime], end: Optional[datetime]
    ) -> None:
        logger.info(f"dashboard_date_range: start={start} end={end}")
        self.state.update(
            lambda s: replace(s, start=start, end=end, is_loading=True)
        )
        await self._load()

    async def clear_date_filter(self) -> None:
        await self.set_date_range(None, None)

    def close(self) -> None:
        self._generation += 1
        if self._subscription is not None:
            self._subscription.cancel()
            self._subscription = None

    def _scope(self) -> tuple[Optional[datetime], Optional[datetime]]:
        current = self.state.value
        if current.has_date_filter:
            return current.start, current.end
        return None, None

    def _total_query(self) -> LiveQuery[float]:
        start, end = self._scope()
        if start is not None and end is not None:
            return self.store.total_amount_by_date_range(start, end)
        return self.store.total_amount()

    def _category_total_query(self, category: str) -> LiveQuery[float]:
        start, end = self._scope()
        if start is not None and end is not None:
            return self.store.total_amount_by_category_and_date_range(
                category, start, end
            )
        return self.store.total_amount_by_category(category)

    async def _load(self) -> None:
        self.close()
        generation = self._generation

        async def _on_data(categories: list[str], total: float) -> None:
            await self._rebuild(generation, categories, total)

        def _on_error(exc: Exception) -> None:
            if generation == self._generation:
                self._fail(exc)

        try:
            subscription = await combine_latest(
                self.store.distinct_categories(),
                self._total_query(),
                _on_data,
                _on_error,
            )
        except StorageFailure as exc:
            logger.error(f"dashboard_load_failed: error={exc}")
            if generation == self._generation:
                self._fail(exc)
            return

        if generation != self._generation:
            subscription.cancel()
            return
        self._subscription = subscription

    async def _rebuild(
        self, generation: int, categories: list[str], total: float
    ) -> None:
        # the emitted total may predate the categories; read it in this pass
        try:
            total = await self._total_query().first()
        except StorageFailure as exc:
            logger.error(f"dashboard_total_failed: error={exc}")
            if generation == self._generation:
                self._fail(exc)
            return

        if not categories or total <= 0:
            logger.debug(f"dashboard_empty: categories={len(categories)} total={total}")
            rows: list[CategorySpending] = []
        else:
            amounts: list[tuple[str, float]] = []
            for category in categories:
                try:
                    amount = await self._category_total_query(category).first()
                except StorageFailure as exc:
                    logger.warning(
                        f"dashboard_category_failed: category={category} error={exc}"
                    )
                    continue
                amounts.append((category, amount))
            rows = rank_category_spending(amounts, total)

        if generation != self._generation:
            return
        self.state.update(
            lambda s: replace(
                s,
                category_spending=tuple(rows),
                total_spending=total,
                is_loading=False,
                error=None,
            )
        )

    def _fail(self, exc: Exception) -> None:
        self.state.update(
            lambda s: replace(
                s, is_loading=False, error=f"Failed to load spending data: {exc}"
            )
        )
