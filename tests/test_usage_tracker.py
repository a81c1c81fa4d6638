"""CloudUsageTracker against a throwaway SQLite database."""
from __future__ import annotations

from datetime import datetime, timezone

import pytest
import pytest_asyncio

from menu_ocr.db.init_db import init_db
from menu_ocr.db.session import create_engine, create_sessionmaker
from menu_ocr.usage.tracker import CloudUsageTracker


class FakeClock:
    def __init__(self, when: datetime) -> None:
        self.now = when

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock(datetime(2024, 3, 10, 12, 0, tzinfo=timezone.utc))


@pytest_asyncio.fixture()
async def session_factory(tmp_path):
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'usage.db'}")
    await init_db(engine)
    yield create_sessionmaker(engine)
    await engine.dispose()


def _tracker(session_factory, clock, **kwargs) -> CloudUsageTracker:
    kwargs.setdefault("monthly_limit", 10)
    return CloudUsageTracker(session_factory, clock=clock, **kwargs)


# ---------------------------------------------------------------------------
# Recording
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_fresh_month_has_no_usage(session_factory, clock) -> None:
    usage = await _tracker(session_factory, clock).get_current_usage()

    assert (usage.year, usage.month) == (2024, 3)
    assert usage.api_calls == 0
    assert usage.remaining == 10
    assert usage.success_rate == 100
    assert usage.average_processing_ms == 0


@pytest.mark.asyncio
async def test_record_call_counts_success_and_failure(session_factory, clock) -> None:
    tracker = _tracker(session_factory, clock, cost_per_call=0.0015)

    await tracker.record_call(success=True, processing_ms=1000)
    await tracker.record_call(success=True, processing_ms=2000)
    snap = await tracker.record_call(success=False, processing_ms=600)

    assert snap.api_calls == 3
    assert snap.successful_calls == 2
    assert snap.failed_calls == 1
    assert snap.total_processing_ms == 3600
    assert snap.average_processing_ms == 1200
    assert snap.success_rate == 67
    assert snap.percentage == 30
    assert snap.remaining == 7
    assert snap.estimated_cost == pytest.approx(0.0)

    assert (await tracker.get_current_usage()).api_calls == 3


@pytest.mark.asyncio
async def test_estimated_cost(session_factory, clock) -> None:
    tracker = _tracker(session_factory, clock, monthly_limit=1000, cost_per_call=0.5)
    for _ in range(3):
        snap = await tracker.record_call(success=True)
    assert snap.estimated_cost == pytest.approx(1.5)


# ---------------------------------------------------------------------------
# Warnings and limit
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_each_threshold_warns_once(session_factory, clock) -> None:
    warnings = []
    tracker = _tracker(session_factory, clock, on_warning=warnings.append)

    for _ in range(9):
        await tracker.record_call(success=True)

    assert [w.threshold for w in warnings] == [50, 80, 90]
    assert warnings[0].current_usage == 5
    assert warnings[0].limit == 10


@pytest.mark.asyncio
async def test_limit_blocks_usage(session_factory, clock) -> None:
    reached = []
    tracker = _tracker(session_factory, clock, monthly_limit=2, on_limit_reached=reached.append)

    await tracker.record_call(success=True)
    assert await tracker.is_usage_allowed()

    await tracker.record_call(success=True)
    assert not await tracker.is_usage_allowed()
    assert len(reached) == 1
    assert reached[0].threshold == 100
    assert reached[0].percentage == 100


@pytest.mark.asyncio
async def test_disabled_tracker_always_allows(session_factory, clock) -> None:
    warnings = []
    tracker = _tracker(session_factory, clock, monthly_limit=1, enabled=False, on_warning=warnings.append)

    await tracker.record_call(success=True)
    await tracker.record_call(success=True)

    assert await tracker.is_usage_allowed()
    assert warnings == []


# ---------------------------------------------------------------------------
# Month rollover, history, projections
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_new_month_starts_fresh_and_archives_old(session_factory, clock) -> None:
    tracker = _tracker(session_factory, clock, monthly_limit=2)
    await tracker.record_call(success=True)
    await tracker.record_call(success=True)
    assert not await tracker.is_usage_allowed()

    clock.now = datetime(2024, 4, 1, 0, 5, tzinfo=timezone.utc)

    assert await tracker.is_usage_allowed()
    assert (await tracker.get_current_usage()).api_calls == 0
    history = await tracker.get_history()
    assert [(h.year, h.month, h.api_calls) for h in history] == [(2024, 3, 2)]


@pytest.mark.asyncio
async def test_history_is_newest_first_and_pruned(session_factory, clock) -> None:
    tracker = _tracker(session_factory, clock)
    for month in range(1, 13):
        clock.now = datetime(2023, month, 15, tzinfo=timezone.utc)
        await tracker.record_call(success=True)
    for month in (1, 2):
        clock.now = datetime(2024, month, 15, tzinfo=timezone.utc)
        await tracker.record_call(success=True)

    history = await tracker.get_history()

    assert len(history) == 12
    assert (history[0].year, history[0].month) == (2024, 1)
    assert (history[-1].year, history[-1].month) == (2023, 2)


def test_days_remaining_and_projection(clock) -> None:
    tracker = CloudUsageTracker(None, clock=clock)  # type: ignore[arg-type]
    assert tracker.days_remaining_in_month() == 21
    assert tracker.projected_monthly_calls(10) == 31


@pytest.mark.asyncio
async def test_reset_clears_everything(session_factory, clock) -> None:
    tracker = _tracker(session_factory, clock)
    await tracker.record_call(success=True)
    clock.now = datetime(2024, 4, 2, tzinfo=timezone.utc)
    await tracker.record_call(success=True)

    await tracker.reset()

    assert await tracker.get_history() == []
    assert (await tracker.get_current_usage()).api_calls == 0
