from __future__ import annotations

import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from typing import Callable, Generic, Optional, TypeVar

from sqlalchemy import delete, func, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from database import make_session_factory, session_scope
from live import ErrorHandler, Handler, Subscription, deliver
from models import Transaction
from schemas import TransactionIn, TransactionRecord

logger = logging.getLogger(__name__)

T = TypeVar("T")


class StorageFailure(RuntimeError):
    pass


class TransactionNotFound(ValueError):
    pass


class _Observer:
    def __init__(
        self,
        query: "LiveQuery",
        handler: Handler,
        on_error: Optional[ErrorHandler],
    ) -> None:
        self.query = query
        self.handler = handler
        self.on_error = on_error
        self.subscription = Subscription()


class LiveQuery(Generic[T]):
    """A store query that re-emits after every committed mutation."""

    def __init__(
        self, store: "TransactionStore", name: str, loader: Callable[[Session], T]
    ) -> None:
        self._store = store
        self.name = name
        self.loader = loader

    async def first(self) -> T:
        return await self._store._run(self.loader)

    async def subscribe(
        self, handler: Handler, on_error: Optional[ErrorHandler] = None
    ) -> Subscription:
        return await self._store._observe(self, handler, on_error)

    def __repr__(self) -> str:
        return f"LiveQuery({self.name})"


def _ordered(stmt):
    return stmt.order_by(Transaction.occurred_at.desc(), Transaction.id.desc())


def _sum(*criteria):
    stmt = select(func.coalesce(func.sum(Transaction.amount), 0.0))
    if criteria:
        stmt = stmt.where(*criteria)
    return stmt


def _in_range(start: datetime, end: datetime):
    return Transaction.occurred_at.between(start, end)


class TransactionStore:
    """Single-table transaction storage with a live query surface.

    All SQL runs on one worker thread owned by the store, so callers only ever
    await. Mutations hold ``_write_lock`` through commit and subscriber
    dispatch, which keeps each subscription's emissions in mutation order.
    Handlers run while that lock is held and must not mutate or subscribe.
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        self._session_factory = make_session_factory(engine)
        self._executor = ThreadPoolExecutor(
            max_workers=1, thread_name_prefix="transaction-store"
        )
        self._write_lock = asyncio.Lock()
        self._observers: list[_Observer] = []
        self._closed = False

    @property
    def observer_count(self) -> int:
        return len(self._observers)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        for observer in list(self._observers):
            observer.subscription.cancel()
        self._observers.clear()
        self._executor.shutdown(wait=True)
        logger.info("store_closed")

    def _call(self, fn: Callable[[Session], T]) -> T:
        try:
            with session_scope(self._session_factory) as session:
                return fn(session)
        except SQLAlchemyError as exc:
            raise StorageFailure(str(exc)) from exc

    async def _run(self, fn: Callable[[Session], T]) -> T:
        if self._closed:
            raise StorageFailure("Transaction store is closed")
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, self._call, fn)

    async def _observe(
        self, query: LiveQuery, handler: Handler, on_error: Optional[ErrorHandler]
    ) -> Subscription:
        observer = _Observer(query, handler, on_error)
        async with self._write_lock:
            value = await self._run(query.loader)

            def _remove() -> None:
                if observer in self._observers:
                    self._observers.remove(observer)

            observer.subscription._on_cancel = _remove
            self._observers.append(observer)
            try:
                await deliver(handler, value)
            except Exception:
                observer.subscription.cancel()
                raise
        logger.debug(f"store_subscribe: query={query.name}")
        return observer.subscription

    async def _dispatch(self) -> None:
        for observer in list(self._observers):
            if not observer.subscription.active:
                continue
            try:
                value = await self._run(observer.query.loader)
            except StorageFailure as exc:
                logger.warning(
                    f"store_dispatch_failed: query={observer.query.name} error={exc}"
                )
                if observer.on_error is not None:
                    observer.on_error(exc)
                continue
            if not observer.subscription.active:
                continue
            try:
                await deliver(observer.handler, value)
            except Exception:
                logger.exception(
                    f"store_handler_failed: query={observer.query.name}"
                )

    async def _mutate(self, fn: Callable[[Session], T]) -> T:
        async with self._write_lock:
            result = await self._run(fn)
            await self._dispatch()
            return result

    # mutations

    async def insert(self, data: TransactionIn) -> TransactionRecord:
        def _insert(session: Session) -> TransactionRecord:
            txn = Transaction(
                amount=data.amount,
                occurred_at=data.occurred_at,
                category=data.category,
                location=data.location,
                description=data.description,
            )
            session.add(txn)
            session.flush()
            return TransactionRecord.model_validate(txn)

        record = await self._mutate(_insert)
        logger.info(
            f"store_insert: id={record.id} category={record.category} amount={record.amount}"
        )
        return record

    async def update(self, record: TransactionRecord) -> TransactionRecord:
        def _update(session: Session) -> TransactionRecord:
            txn = session.get(Transaction, record.id)
            if txn is None:
                raise TransactionNotFound(f"Transaction {record.id} not found")
            txn.amount = record.amount
            txn.occurred_at = record.occurred_at
            txn.category = record.category
            txn.location = record.location
            txn.description = record.description
            session.flush()
            return TransactionRecord.model_validate(txn)

        updated = await self._mutate(_update)
        logger.info(f"store_update: id={updated.id} category={updated.category}")
        return updated

    async def delete_one(self, transaction_id: int) -> bool:
        def _delete(session: Session) -> bool:
            txn = session.get(Transaction, transaction_id)
            if txn is None:
                return False
            session.delete(txn)
            return True

        async with self._write_lock:
            removed = await self._run(_delete)
            if removed:
                await self._dispatch()
        logger.info(f"store_delete: id={transaction_id} removed={removed}")
        return removed

    async def delete_all(self) -> int:
        def _delete_all(session: Session) -> int:
            result = session.execute(delete(Transaction))
            return int(result.rowcount or 0)

        count = await self._mutate(_delete_all)
        logger.info(f"store_delete_all: removed={count}")
        return count

    # live queries

    def _records(self, name: str, *criteria) -> LiveQuery[list[TransactionRecord]]:
        stmt = select(Transaction)
        if criteria:
            stmt = stmt.where(*criteria)
        stmt = _ordered(stmt)

        def _load(session: Session) -> list[TransactionRecord]:
            return [
                TransactionRecord.model_validate(txn)
                for txn in session.scalars(stmt).all()
            ]

        return LiveQuery(self, name, _load)

    def _total(self, name: str, *criteria) -> LiveQuery[float]:
        stmt = _sum(*criteria)

        def _load(session: Session) -> float:
            return float(session.execute(stmt).scalar_one() or 0)

        return LiveQuery(self, name, _load)

    def query_all(self) -> LiveQuery[list[TransactionRecord]]:
        return self._records("all")

    def query_by_category(self, category: str) -> LiveQuery[list[TransactionRecord]]:
        return self._records(f"category={category}", Transaction.category == category)

    def query_by_date_range(
        self, start: datetime, end: datetime
    ) -> LiveQuery[list[TransactionRecord]]:
        return self._records(
            f"range={start.isoformat()}..{end.isoformat()}", _in_range(start, end)
        )

    def query_by_category_and_date_range(
        self, category: str, start: datetime, end: datetime
    ) -> LiveQuery[list[TransactionRecord]]:
        return self._records(
            f"category={category} range={start.isoformat()}..{end.isoformat()}",
            Transaction.category == category,
            _in_range(start, end),
        )

    def transaction(self, transaction_id: int) -> LiveQuery[Optional[TransactionRecord]]:
        def _load(session: Session) -> Optional[TransactionRecord]:
            txn = session.get(Transaction, transaction_id)
            return TransactionRecord.model_validate(txn) if txn else None

        return LiveQuery(self, f"id={transaction_id}", _load)

    def distinct_categories(self) -> LiveQuery[list[str]]:
        stmt = select(Transaction.category).distinct().order_by(Transaction.category)

        def _load(session: Session) -> list[str]:
            return list(session.scalars(stmt).all())

        return LiveQuery(self, "categories", _load)

    def total_amount(self) -> LiveQuery[float]:
        return self._total("total")

    def total_amount_by_category(self, category: str) -> LiveQuery[float]:
        return self._total(
            f"total category={category}", Transaction.category == category
        )

    def total_amount_by_date_range(
        self, start: datetime, end: datetime
    ) -> LiveQuery[float]:
        return self._total(
            f"total range={start.isoformat()}..{end.isoformat()}",
            _in_range(start, end),
        )

    def total_amount_by_category_and_date_range(
        self, category: str, start: datetime, end: datetime
    ) -> LiveQuery[float]:
        return self._total(
            f"total category={category} range={start.isoformat()}..{end.isoformat()}",
            Transaction.category == category,
            _in_range(start, end),
        )
