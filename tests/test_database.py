from datetime import datetime

from sqlalchemy import text
from sqlalchemy.orm import Session

from database import SCHEMA_VERSION, create_store_engine, init_schema
from models import Transaction


def test_init_schema_stamps_version(tmp_path) -> None:
    engine = create_store_engine(f"sqlite:///{tmp_path / 'spending.db'}")
    init_schema(engine)

    with engine.connect() as conn:
        assert conn.execute(text("PRAGMA user_version")).scalar() == SCHEMA_VERSION
    engine.dispose()


def test_matching_version_keeps_rows(tmp_path) -> None:
    url = f"sqlite:///{tmp_path / 'spending.db'}"
    engine = create_store_engine(url)
    init_schema(engine)
    with Session(engine) as session:
        session.add(
            Transaction(
                amount=3.5,
                occurred_at=datetime(2025, 3, 1, 12, 0),
                category="Food",
                location="Cafe",
            )
        )
        session.commit()
    engine.dispose()

    reopened = create_store_engine(url)
    init_schema(reopened)
    with Session(reopened) as session:
        assert session.query(Transaction).count() == 1
    reopened.dispose()


def test_version_mismatch_discards_data(tmp_path) -> None:
    url = f"sqlite:///{tmp_path / 'spending.db'}"
    engine = create_store_engine(url)
    init_schema(engine)
    with Session(engine) as session:
        session.add(
            Transaction(
                amount=3.5,
                occurred_at=datetime(2025, 3, 1, 12, 0),
                category="Food",
                location="Cafe",
            )
        )
        session.commit()
    with engine.begin() as conn:
        conn.execute(text("PRAGMA user_version = 1"))
    engine.dispose()

    reopened = create_store_engine(url)
    init_schema(reopened)
    with Session(reopened) as session:
        assert session.query(Transaction).count() == 0
    with reopened.connect() as conn:
        assert conn.execute(text("PRAGMA user_version")).scalar() == SCHEMA_VERSION
    reopened.dispose()
