"""Shared fixtures.

Every test gets its own in-memory store. ``SPENDING_DATA_DIR`` is pointed at
the test's temporary directory so nothing is written under ``./data``.
"""

from __future__ import annotations

import os
from datetime import datetime
from pathlib import Path
from typing import Iterator, Optional

import pytest

from config import get_settings
from database import create_store_engine, init_schema
from schemas import TransactionIn
from store import TransactionStore

NOW = datetime(2025, 3, 15, 14, 30)


@pytest.fixture(autouse=True)
def _isolate_data_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    monkeypatch.setenv("SPENDING_DATA_DIR", os.fspath(tmp_path / "data"))
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def clock():
    return lambda: NOW


@pytest.fixture
def engine():
    eng = create_store_engine("sqlite://")
    init_schema(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def store(engine):
    transaction_store = TransactionStore(engine)
    yield transaction_store
    transaction_store.close()


def make_transaction(
    amount: float,
    category: str,
    occurred_at: datetime,
    location: str = "Somewhere",
    description: Optional[str] = None,
) -> TransactionIn:
    data = {
        "amount": amount,
        "occurred_at": occurred_at,
        "category": category,
        "location": location,
    }
    if description is not None:
        data["description"] = description
    return TransactionIn(**data)
