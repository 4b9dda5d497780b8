from __future__ import annotations

import logging
from typing import Optional, Union

from config import Settings, configure_logging, get_settings, local_now
from dashboard import SpendingDashboard
from database import create_store_engine, init_schema
from forms import TransactionForm
from store import TransactionStore
from transaction_list import TransactionList

logger = logging.getLogger(__name__)

Holder = Union[SpendingDashboard, TransactionList, TransactionForm]


class SpendingApp:
    """Wires one store to the state holders a UI asks for.

    Each screen gets its own holder, already started; ``release`` tears one
    down when its screen goes away and ``close`` tears everything down.
    """

    def __init__(self, settings: Settings, store: TransactionStore) -> None:
        self.settings = settings
        self.store = store
        self._holders: list[Holder] = []

    @classmethod
    def open(cls, settings: Optional[Settings] = None) -> "SpendingApp":
        settings = settings or get_settings()
        configure_logging(settings.log_level)
        engine = create_store_engine(settings.database_url)
        init_schema(engine)
        logger.info(f"app_open: database_url={settings.database_url}")
        return cls(settings, TransactionStore(engine))

    def _track(self, holder: Holder) -> Holder:
        self._holders.append(holder)
        return holder

    async def dashboard(self) -> SpendingDashboard:
        holder = SpendingDashboard(
            self.store,
            clock=local_now,
            currency_symbol=self.settings.currency_symbol,
        )
        await holder.start()
        return self._track(holder)

    async def transactions(self) -> TransactionList:
        holder = TransactionList(self.store, clock=local_now)
        await holder.start()
        return self._track(holder)

    async def new_transaction(self) -> TransactionForm:
        holder = TransactionForm(
            self.store,
            clock=local_now,
            default_categories=self.settings.default_categories,
        )
        await holder.start()
        return self._track(holder)

    async def transaction_detail(self, transaction_id: int) -> TransactionForm:
        holder = TransactionForm(
            self.store,
            transaction_id,
            clock=local_now,
            default_categories=self.settings.default_categories,
        )
        await holder.start()
        return self._track(holder)

    def release(self, holder: Holder) -> None:
        holder.close()
        if holder in self._holders:
            self._holders.remove(holder)

    def close(self) -> None:
        for holder in list(self._holders):
            self.release(holder)
        self.store.close()
        self.store.engine.dispose()
        logger.info("app_closed")
