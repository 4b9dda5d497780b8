from datetime import datetime

import pytest

from conftest import make_transaction
from dashboard import (
    CategorySpending,
    DashboardStatus,
    SpendingDashboard,
    rank_category_spending,
)
from database import Base
from store import StorageFailure


def test_rank_drops_non_positive_and_sorts_stably() -> None:
    rows = rank_category_spending(
        [("Bills", 20.0), ("Food", 50.0), ("Gifts", 0.0), ("Travel", 20.0)], 90.0
    )

    assert [r.category for r in rows] == ["Food", "Bills", "Travel"]
    assert rows[0] == CategorySpending("Food", 50.0, pytest.approx(55.555, rel=1e-3))


def test_rank_with_zero_total_is_empty() -> None:
    assert rank_category_spending([("Food", 5.0)], 0.0) == []


@pytest.mark.asyncio
async def test_breakdown_percentages_cover_total(store, clock) -> None:
    await store.insert(make_transaction(30.0, "Food", datetime(2025, 3, 2)))
    await store.insert(make_transaction(15.0, "Food", datetime(2025, 3, 9)))
    await store.insert(make_transaction(45.0, "Transport", datetime(2025, 3, 4)))
    await store.insert(make_transaction(10.0, "Bills", datetime(2025, 3, 12)))

    dashboard = SpendingDashboard(store, clock=clock)
    await dashboard.start()
    state = dashboard.state.value

    assert state.status == DashboardStatus.ready
    assert state.total_spending == pytest.approx(100.0)
    assert [row.category for row in state.category_spending] == [
        "Food",
        "Transport",
        "Bills",
    ]
    assert sum(row.percentage for row in state.category_spending) == pytest.approx(100)
    assert sum(row.amount for row in state.category_spending) == pytest.approx(
        state.total_spending
    )
    dashboard.close()


@pytest.mark.asyncio
async def test_default_scope_is_current_month(store, clock) -> None:
    await store.insert(make_transaction(20.0, "Food", datetime(2025, 3, 2)))
    await store.insert(make_transaction(80.0, "Travel", datetime(2025, 2, 20)))

    dashboard = SpendingDashboard(store, clock=clock)
    await dashboard.start()
    state = dashboard.state.value

    assert state.start == datetime(2025, 3, 1)
    assert state.total_spending == pytest.approx(20.0)
    assert [row.category for row in state.category_spending] == ["Food"]

    await dashboard.clear_date_filter()
    state = dashboard.state.value
    assert not state.has_date_filter
    assert state.total_spending == pytest.approx(100.0)
    assert [row.category for row in state.category_spending] == ["Travel", "Food"]
    dashboard.close()


@pytest.mark.asyncio
async def test_set_date_range_rescopes(store, clock) -> None:
    await store.insert(make_transaction(20.0, "Food", datetime(2025, 3, 2)))
    await store.insert(make_transaction(80.0, "Travel", datetime(2025, 2, 20)))

    dashboard = SpendingDashboard(store, clock=clock)
    await dashboard.start()
    await dashboard.set_date_range(datetime(2025, 2, 1), datetime(2025, 2, 28, 23, 59))
    state = dashboard.state.value

    assert state.is_loading is False
    assert state.total_spending == pytest.approx(80.0)
    assert [row.category for row in state.category_spending] == ["Travel"]
    assert state.category_spending[0].percentage == pytest.approx(100.0)
    dashboard.close()


@pytest.mark.asyncio
async def test_empty_store_is_empty_not_error(store, clock) -> None:
    dashboard = SpendingDashboard(store, clock=clock)
    assert dashboard.state.value.status == DashboardStatus.loading

    await dashboard.start()
    state = dashboard.state.value

    assert state.status == DashboardStatus.empty
    assert state.error is None
    assert state.total_spending == 0
    dashboard.close()


@pytest.mark.asyncio
async def test_breakdown_follows_mutations(store, clock) -> None:
    dashboard = SpendingDashboard(store, clock=clock)
    await dashboard.start()
    seen = []
    dashboard.state.subscribe(seen.append)

    food = await store.insert(make_transaction(25.0, "Food", datetime(2025, 3, 3)))
    await store.insert(make_transaction(75.0, "Bills", datetime(2025, 3, 4)))

    state = dashboard.state.value
    assert [(r.category, r.percentage) for r in state.category_spending] == [
        ("Bills", pytest.approx(75.0)),
        ("Food", pytest.approx(25.0)),
    ]

    await store.delete_one(food.id)
    state = dashboard.state.value
    assert [r.category for r in state.category_spending] == ["Bills"]
    assert len(seen) > 1

    await store.delete_all()
    assert dashboard.state.value.status == DashboardStatus.empty
    dashboard.close()


@pytest.mark.asyncio
async def test_every_emission_keeps_amounts_within_total(store, clock) -> None:
    await store.insert(make_transaction(10.0, "Food", datetime(2025, 3, 2)))
    dashboard = SpendingDashboard(store, clock=clock)
    await dashboard.start()
    seen = []
    dashboard.state.subscribe(seen.append)

    await store.insert(make_transaction(30.0, "Zed", datetime(2025, 3, 3)))

    ready = [s for s in seen if s.status == DashboardStatus.ready]
    assert ready
    for state in ready:
        amounts = sum(r.amount for r in state.category_spending)
        percentages = sum(r.percentage for r in state.category_spending)
        assert amounts == pytest.approx(state.total_spending)
        assert percentages == pytest.approx(100.0)
    assert ready[-1].total_spending == pytest.approx(40.0)
    dashboard.close()


@pytest.mark.asyncio
async def test_failing_category_is_omitted(store, clock, monkeypatch) -> None:
    await store.insert(make_transaction(30.0, "Food", datetime(2025, 3, 2)))
    await store.insert(make_transaction(70.0, "Bills", datetime(2025, 3, 3)))

    original = store.total_amount_by_category_and_date_range

    def flaky(category, start, end):
        query = original(category, start, end)
        if category == "Bills":

            async def broken_first():
                raise StorageFailure("database is locked")

            query.first = broken_first
        return query

    monkeypatch.setattr(store, "total_amount_by_category_and_date_range", flaky)

    dashboard = SpendingDashboard(store, clock=clock)
    await dashboard.start()
    state = dashboard.state.value

    assert state.error is None
    assert [row.category for row in state.category_spending] == ["Food"]
    assert state.total_spending == pytest.approx(100.0)
    dashboard.close()


@pytest.mark.asyncio
async def test_store_failure_is_error_state_and_refresh_recovers(
    store, engine, clock
) -> None:
    Base.metadata.drop_all(engine)

    dashboard = SpendingDashboard(store, clock=clock)
    await dashboard.start()
    state = dashboard.state.value

    assert state.status == DashboardStatus.error
    assert state.error.startswith("Failed to load spending data:")
    assert state.is_loading is False

    Base.metadata.create_all(engine)
    await store.insert(make_transaction(12.0, "Food", datetime(2025, 3, 10)))
    await dashboard.refresh()
    state = dashboard.state.value

    assert state.status == DashboardStatus.ready
    assert state.error is None
    assert state.category_spending[0].amount == pytest.approx(12.0)
    dashboard.close()


@pytest.mark.asyncio
async def test_close_stops_updates(store, clock) -> None:
    dashboard = SpendingDashboard(store, clock=clock)
    await dashboard.start()
    dashboard.close()

    await store.insert(make_transaction(12.0, "Food", datetime(2025, 3, 10)))

    assert dashboard.state.value.status == DashboardStatus.empty
    assert store.observer_count == 0


def test_formatted_total_uses_symbol(store, clock) -> None:
    dashboard = SpendingDashboard(store, clock=clock, currency_symbol="$")
    assert dashboard.state.value.formatted_total == "$0,00"
