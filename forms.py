from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Callable, Optional, Sequence

from config import DEFAULT_CATEGORIES, local_now
from live import LiveValue, Subscription
from money import amount_to_cents, cents_to_amount, digits_to_cents, format_cents
from schemas import TransactionIn, TransactionRecord
from store import StorageFailure, TransactionNotFound, TransactionStore

logger = logging.getLogger(__name__)

DATE_FORMAT = "%d/%m/%Y"
TIME_FORMAT = "%H:%M"
DATETIME_FORMAT = f"{DATE_FORMAT} {TIME_FORMAT}"


@dataclass(frozen=True)
class DraftState:
    amount_cents: int = 0
    category_query: str = ""
    location: str = ""
    description: str = ""
    date: str = ""
    time: str = ""
    is_dropdown_expanded: bool = False
    show_confirmation_dialog: bool = False
    show_date_picker: bool = False
    show_time_picker: bool = False
    show_delete_confirmation: bool = False
    is_edit_mode: bool = False
    has_amount_error: bool = False
    has_category_error: bool = False
    has_location_error: bool = False
    has_datetime_error: bool = False
    all_categories: tuple[str, ...] = DEFAULT_CATEGORIES
    transaction: Optional[TransactionRecord] = None
    is_loading: bool = False
    error: Optional[str] = None

    @property
    def formatted_amount(self) -> str:
        return format_cents(self.amount_cents)

    @property
    def filtered_categories(self) -> tuple[str, ...]:
        query = self.category_query.strip().lower()
        if not query:
            return self.all_categories
        return tuple(c for c in self.all_categories if query in c.lower())

    @property
    def show_create_new_option(self) -> bool:
        query = self.category_query.strip()
        if not query:
            return False
        return not any(c.lower() == query.lower() for c in self.filtered_categories)

    @property
    def is_valid(self) -> bool:
        return not (
            self.has_amount_error
            or self.has_category_error
            or self.has_location_error
            or self.has_datetime_error
        )


def draft_from_record(state: DraftState, record: TransactionRecord) -> DraftState:
    return replace(
        state,
        amount_cents=amount_to_cents(record.amount),
        category_query=record.category,
        location=record.location,
        description=record.description,
        date=record.occurred_at.strftime(DATE_FORMAT),
        time=record.occurred_at.strftime(TIME_FORMAT),
    )


def parse_draft_datetime(
    date_text: str, time_text: str, fallback: Callable[[], datetime]
) -> datetime:
    raw = f"{date_text.strip()} {time_text.strip()}"
    try:
        return datetime.strptime(raw, DATETIME_FORMAT)
    except ValueError:
        moment = fallback()
        logger.warning(f"draft_datetime_unparsed: value={raw!r} using={moment}")
        return moment


class TransactionForm:
    """Draft of a single transaction.

    Without ``transaction_id`` the form creates new transactions and resets
    after each save. With one, it shows that record, and ``set_edit_mode``
    turns the draft into an editor that writes back with ``update``.
    """

    def __init__(
        self,
        store: TransactionStore,
        transaction_id: Optional[int] = None,
        *,
        clock: Callable[[], datetime] = local_now,
        default_categories: Sequence[str] = DEFAULT_CATEGORIES,
    ) -> None:
        self.store = store
        self.transaction_id = transaction_id
        self.clock = clock
        self.default_categories = tuple(default_categories)
        self.state: LiveValue[DraftState] = LiveValue(
            DraftState(
                all_categories=self.default_categories,
                is_loading=transaction_id is not None,
            )
        )
        self._categories_subscription: Optional[Subscription] = None
        self._record_subscription: Optional[Subscription] = None

    @property
    def is_create_mode(self) -> bool:
        return self.transaction_id is None

    async def start(self) -> None:
        await self._watch_categories()
        if not self.is_create_mode:
            await self.load_transaction()

    def close(self) -> None:
        self._cancel_record()
        if self._categories_subscription is not None:
            self._categories_subscription.cancel()
            self._categories_subscription = None

    # field updates

    def update_amount(self, text: str) -> None:
        def _apply(s: DraftState) -> DraftState:
            cents = digits_to_cents(text, s.amount_cents)
            logger.debug(f"draft_amount: input={text!r} cents={cents}")
            return replace(s, amount_cents=cents, has_amount_error=False)

        self.state.update(_apply)

    def update_category(self, text: str) -> None:
        self.state.update(
            lambda s: replace(
                s,
                category_query=text,
                is_dropdown_expanded=bool(text.strip()),
                has_category_error=False,
            )
        )

    def select_category(self, category: str) -> None:
        self.state.update(
            lambda s: replace(
                s,
                category_query=category,
                is_dropdown_expanded=False,
                has_category_error=False,
            )
        )

    def set_dropdown_expanded(self, expanded: bool) -> None:
        self.state.update(lambda s: replace(s, is_dropdown_expanded=expanded))

    def update_location(self, text: str) -> None:
        self.state.update(
            lambda s: replace(s, location=text, has_location_error=False)
        )

    def update_description(self, text: str) -> None:
        self.state.update(lambda s: replace(s, description=text))

    def set_date(self, text: str) -> None:
        self.state.update(
            lambda s: replace(
                s, date=text, show_date_picker=False, has_datetime_error=False
            )
        )

    def set_time(self, text: str) -> None:
        self.state.update(
            lambda s: replace(
                s, time=text, show_time_picker=False, has_datetime_error=False
            )
        )

    def set_show_date_picker(self, show: bool) -> None:
        self.state.update(lambda s: replace(s, show_date_picker=show))

    def set_show_time_picker(self, show: bool) -> None:
        self.state.update(lambda s: replace(s, show_time_picker=show))

    def set_current_date_time(self) -> None:
        now = self.clock()
        self.state.update(
            lambda s: replace(
                s,
                date=now.strftime(DATE_FORMAT),
                time=now.strftime(TIME_FORMAT),
                has_datetime_error=False,
            )
        )

    # validation

    def validate(self) -> bool:
        def _apply(s: DraftState) -> DraftState:
            return replace(
                s,
                has_amount_error=s.amount_cents <= 0,
                has_category_error=not s.category_query.strip(),
                has_location_error=not s.location.strip(),
                has_datetime_error=not s.date.strip() or not s.time.strip(),
            )

        return self.state.update(_apply).is_valid

    def request_confirmation(self) -> bool:
        if not self.validate():
            logger.info("draft_validation_failed")
            return False
        self.state.update(lambda s: replace(s, show_confirmation_dialog=True))
        return True

    def hide_confirmation(self) -> None:
        self.state.update(lambda s: replace(s, show_confirmation_dialog=False))

    # commit

    async def save(self) -> bool:
        if not self.validate():
            logger.info("draft_save_rejected: invalid draft")
            return False

        draft = self.state.value
        occurred_at = parse_draft_datetime(draft.date, draft.time, self.clock)
        data = TransactionIn(
            amount=cents_to_amount(draft.amount_cents),
            occurred_at=occurred_at,
            category=draft.category_query.strip(),
            location=draft.location.strip(),
            description=draft.description,
        )

        try:
            if self.is_create_mode:
                await self.store.insert(data)
            else:
                await self.store.update(
                    TransactionRecord(id=self.transaction_id, **data.model_dump())
                )
        except (StorageFailure, TransactionNotFound) as exc:
            logger.error(f"draft_save_failed: id={self.transaction_id} error={exc}")
            self.state.update(
                lambda s: replace(
                    s,
                    show_confirmation_dialog=False,
                    error=f"Failed to save transaction: {exc}",
                )
            )
            return False

        if self.is_create_mode:
            self._reset()
        else:
            self.state.update(
                lambda s: replace(s, is_edit_mode=False, show_confirmation_dialog=False)
            )
            await self.load_transaction()
        return True

    def cancel(self) -> None:
        if self.is_create_mode:
            self._reset()
            return

        def _restore(s: DraftState) -> DraftState:
            restored = replace(
                s,
                is_edit_mode=False,
                has_amount_error=False,
                has_category_error=False,
                has_location_error=False,
                has_datetime_error=False,
                is_dropdown_expanded=False,
                show_date_picker=False,
                show_time_picker=False,
                show_confirmation_dialog=False,
            )
            if s.transaction is None:
                return restored
            return draft_from_record(restored, s.transaction)

        self.state.update(_restore)

    def _reset(self) -> None:
        self.state.update(lambda s: DraftState(all_categories=s.all_categories))

    # detail / edit

    async def load_transaction(self) -> None:
        if self.transaction_id is None:
            return
        self._cancel_record()
        self.state.update(lambda s: replace(s, is_loading=True, error=None))

        def _on_record(record: Optional[TransactionRecord]) -> None:
            if record is None:
                logger.warning(f"transaction_missing: id={self.transaction_id}")
                self.state.update(
                    lambda s: replace(
                        s,
                        transaction=None,
                        is_loading=False,
                        error="Transaction not found",
                    )
                )
                return

            def _apply(s: DraftState) -> DraftState:
                loaded = replace(s, transaction=record, is_loading=False, error=None)
                if s.is_edit_mode:
                    return loaded
                return draft_from_record(loaded, record)

            self.state.update(_apply)

        try:
            self._record_subscription = await self.store.transaction(
                self.transaction_id
            ).subscribe(_on_record)
        except StorageFailure as exc:
            logger.error(f"transaction_load_failed: id={self.transaction_id} error={exc}")
            self.state.update(
                lambda s: replace(
                    s, is_loading=False, error=f"Failed to load transaction: {exc}"
                )
            )

    def set_edit_mode(self, enabled: bool) -> None:
        if self.is_create_mode:
            return
        self.state.update(lambda s: replace(s, is_edit_mode=enabled))

    def request_delete(self) -> None:
        self.state.update(lambda s: replace(s, show_delete_confirmation=True))

    def dismiss_delete(self) -> None:
        self.state.update(lambda s: replace(s, show_delete_confirmation=False))

    async def confirm_delete(self, on_complete: Callable[[], None]) -> bool:
        if self.is_create_mode or self.state.value.transaction is None:
            logger.warning("draft_delete_ignored: no loaded transaction")
            return False
        if not self.state.value.show_delete_confirmation:
            logger.warning("draft_delete_ignored: deletion was not confirmed")
            return False

        # stop watching first so the removal is not reported as a missing record
        self._cancel_record()
        try:
            await self.store.delete_one(self.transaction_id)
        except StorageFailure as exc:
            logger.error(f"draft_delete_failed: id={self.transaction_id} error={exc}")
            await self.load_transaction()
            self.state.update(
                lambda s: replace(
                    s,
                    show_delete_confirmation=False,
                    error=f"Failed to delete transaction: {exc}",
                )
            )
            return False

        self.state.update(lambda s: replace(s, show_delete_confirmation=False))
        on_complete()
        return True

    def _cancel_record(self) -> None:
        if self._record_subscription is not None:
            self._record_subscription.cancel()
            self._record_subscription = None

    async def _watch_categories(self) -> None:
        def _on_categories(categories: list[str]) -> None:
            names = tuple(categories) or self.default_categories
            self.state.update(lambda s: replace(s, all_categories=names))

        try:
            self._categories_subscription = (
                await self.store.distinct_categories().subscribe(_on_categories)
            )
        except StorageFailure as exc:
            logger.warning(f"draft_categories_failed: error={exc}")
