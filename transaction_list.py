from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Callable, Optional

from config import local_now
from live import LiveValue, Subscription
from periods import current_month_to_date
from schemas import TransactionRecord
from store import LiveQuery, StorageFailure, TransactionStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TransactionListState:
    transactions: tuple[TransactionRecord, ...] = ()
    is_loading: bool = True
    error: Optional[str] = None
    category: Optional[str] = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    categories: tuple[str, ...] = ()

    @property
    def has_date_range(self) -> bool:
        return self.start is not None and self.end is not None

    @property
    def has_filters(self) -> bool:
        return self.category is not None or self.has_date_range


class TransactionList:
    """Transaction history filtered by category and date range.

    When a reload fails the previously loaded transactions stay in the state
    alongside the error message.
    """

    def __init__(
        self,
        store: TransactionStore,
        *,
        clock: Callable[[], datetime] = local_now,
    ) -> None:
        self.store = store
        period = current_month_to_date(clock())
        self.state: LiveValue[TransactionListState] = LiveValue(
            TransactionListState(start=period.start, end=period.end)
        )
        self._subscription: Optional[Subscription] = None
        self._categories_subscription: Optional[Subscription] = None
        self._generation = 0

    async def start(self) -> None:
        await self._watch_categories()
        await self._load()

    async def set_category(self, category: Optional[str]) -> None:
        logger.info(f"transactions_filter: category={category}")
        self.state.update(lambda s: replace(s, category=category, is_loading=True))
        await self._load()

    async def set_date_range(
        self, start: Optional[datetime], end: Optional[datetime]
    ) -> None:
        logger.info(f"transactions_filter: start={start} end={end}")
        self.state.update(
            lambda s: replace(s, start=start, end=end, is_loading=True)
        )
        await self._load()

    async def clear_filters(self) -> None:
        logger.info("transactions_filter: cleared")
        self.state.update(
            lambda s: replace(s, category=None, start=None, end=None, is_loading=True)
        )
        await self._load()

    async def refresh(self) -> None:
        self.state.update(lambda s: replace(s, is_loading=True, error=None))
        await self._load()

    def close(self) -> None:
        self._cancel_query()
        if self._categories_subscription is not None:
            self._categories_subscription.cancel()
            self._categories_subscription = None

    def _cancel_query(self) -> None:
        self._generation += 1
        if self._subscription is not None:
            self._subscription.cancel()
            self._subscription = None

    def _query(self) -> LiveQuery[list[TransactionRecord]]:
        current = self.state.value
        category = current.category
        if current.has_date_range:
            if category is not None:
                return self.store.query_by_category_and_date_range(
                    category, current.start, current.end
                )
            return self.store.query_by_date_range(current.start, current.end)
        if category is not None:
            return self.store.query_by_category(category)
        return self.store.query_all()

    async def _load(self) -> None:
        self._cancel_query()
        generation = self._generation

        def _on_result(transactions: list[TransactionRecord]) -> None:
            if generation != self._generation:
                return
            logger.debug(f"transactions_loaded: count={len(transactions)}")
            self.state.update(
                lambda s: replace(
                    s, transactions=tuple(transactions), is_loading=False, error=None
                )
            )

        def _on_error(exc: Exception) -> None:
            if generation == self._generation:
                self._fail(exc)

        try:
            subscription = await self._query().subscribe(_on_result, _on_error)
        except StorageFailure as exc:
            logger.error(f"transactions_load_failed: error={exc}")
            if generation == self._generation:
                self._fail(exc)
            return

        if generation != self._generation:
            subscription.cancel()
            return
        self._subscription = subscription

    async def _watch_categories(self) -> None:
        def _on_categories(categories: list[str]) -> None:
            self.state.update(lambda s: replace(s, categories=tuple(categories)))

        try:
            self._categories_subscription = (
                await self.store.distinct_categories().subscribe(_on_categories)
            )
        except StorageFailure as exc:
            logger.warning(f"transactions_categories_failed: error={exc}")

    def _fail(self, exc: Exception) -> None:
        self.state.update(
            lambda s: replace(
                s, is_loading=False, error=f"Failed to load transactions: {exc}"
            )
        )
