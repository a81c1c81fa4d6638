"""Monthly cloud vision usage: call counts, quota enforcement and cost estimate.

Each calendar month (UTC) is one ``CloudUsageMonth`` row. Rolling over into a
new month simply starts a new row; rows older than ``ARCHIVE_MONTHS`` are
pruned.
"""
from __future__ import annotations

import calendar
import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from menu_ocr.confidence.confidence import round_half_up
from menu_ocr.db.models import CloudUsageMonth

logger = logging.getLogger(__name__)

ARCHIVE_MONTHS = 12


@dataclass(frozen=True)
class UsageSnapshot:
    year: int
    month: int
    api_calls: int
    successful_calls: int
    failed_calls: int
    total_processing_ms: int
    monthly_limit: int
    percentage: int
    remaining: int
    estimated_cost: float
    average_processing_ms: int
    success_rate: int


@dataclass(frozen=True)
class UsageWarning:
    threshold: int          # percent
    current_usage: int
    limit: int
    percentage: int
    estimated_cost: float


UsageCallback = Callable[[UsageWarning], None]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CloudUsageTracker:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        monthly_limit: int = 500,
        warning_thresholds: Sequence[float] = (0.5, 0.8, 0.9),
        cost_per_call: float = 0.0015,
        enabled: bool = True,
        on_warning: UsageCallback | None = None,
        on_limit_reached: UsageCallback | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._sessions = session_factory
        self.monthly_limit = monthly_limit
        self.warning_thresholds = sorted(warning_thresholds, reverse=True)
        self.cost_per_call = cost_per_call
        self.enabled = enabled
        self.on_warning = on_warning
        self.on_limit_reached = on_limit_reached
        self._clock = clock

    # ------------------------------------------------------------------ #
    #  Recording                                                          #
    # ------------------------------------------------------------------ #

    async def record_call(self, *, success: bool, processing_ms: int = 0) -> UsageSnapshot:
        async with self._sessions() as session:
            row = await self._current_row(session)
            row.api_calls += 1
            row.total_processing_ms += int(processing_ms)
            if success:
                row.successful_calls += 1
            else:
                row.failed_calls += 1

            notice = self._check_thresholds(row)
            await session.commit()
            snapshot = self._snapshot(row)

        logger.info(
            "cloud_usage_recorded",
            extra={"api_calls": snapshot.api_calls, "limit": self.monthly_limit, "success": success},
        )
        if notice is not None:
            kind, warning = notice
            callback = self.on_limit_reached if kind == "limit" else self.on_warning
            if callback:
                callback(warning)
        return snapshot

    def _check_thresholds(self, row: CloudUsageMonth) -> tuple[str, UsageWarning] | None:
        if not self.enabled:
            return None

        percentage = self._percentage(row.api_calls)
        if row.api_calls >= self.monthly_limit:
            logger.warning(
                "cloud_usage_limit_reached",
                extra={"api_calls": row.api_calls, "limit": self.monthly_limit},
            )
            return "limit", self._warning(row, threshold=100, percentage=percentage)

        # Only the highest crossed threshold is announced, once per month.
        for threshold in self.warning_thresholds:
            pct = round_half_up(threshold * 100)
            if percentage >= pct:
                shown = list(row.warnings_shown or [])
                if pct in shown:
                    return None
                row.warnings_shown = shown + [pct]
                logger.warning(
                    "cloud_usage_warning",
                    extra={"threshold": pct, "api_calls": row.api_calls, "limit": self.monthly_limit},
                )
                return "warning", self._warning(row, threshold=pct, percentage=percentage)
        return None

    def _warning(self, row: CloudUsageMonth, *, threshold: int, percentage: int) -> UsageWarning:
        return UsageWarning(
            threshold=threshold,
            current_usage=row.api_calls,
            limit=self.monthly_limit,
            percentage=percentage,
            estimated_cost=self._cost(row.api_calls),
        )

    # ------------------------------------------------------------------ #
    #  Queries                                                            #
    # ------------------------------------------------------------------ #

    async def is_usage_allowed(self) -> bool:
        if not self.enabled:
            return True
        usage = await self.get_current_usage()
        return usage.api_calls < self.monthly_limit

    async def get_current_usage(self) -> UsageSnapshot:
        async with self._sessions() as session:
            row = await self._current_row(session)
            await session.commit()
            return self._snapshot(row)

    async def get_history(self) -> list[UsageSnapshot]:
        """Archived months, newest first (the current month is excluded)."""
        now = self._clock()
        async with self._sessions() as session:
            rows = (
                await session.execute(
                    select(CloudUsageMonth).order_by(
                        CloudUsageMonth.year.desc(), CloudUsageMonth.month.desc()
                    )
                )
            ).scalars().all()
        return [
            self._snapshot(r) for r in rows if (r.year, r.month) != (now.year, now.month)
        ]

    def days_remaining_in_month(self) -> int:
        now = self._clock()
        return calendar.monthrange(now.year, now.month)[1] - now.day

    def projected_monthly_calls(self, current_calls: int) -> int:
        now = self._clock()
        days_in_month = calendar.monthrange(now.year, now.month)[1]
        return round_half_up(current_calls / now.day * days_in_month)

    async def reset(self) -> None:
        async with self._sessions() as session:
            await session.execute(delete(CloudUsageMonth))
            await session.commit()
        logger.info("cloud_usage_reset")

    # ------------------------------------------------------------------ #
    #  Helpers                                                            #
    # ------------------------------------------------------------------ #

    async def _current_row(self, session: AsyncSession) -> CloudUsageMonth:
        now = self._clock()
        row = (
            await session.execute(
                select(CloudUsageMonth).where(
                    CloudUsageMonth.year == now.year, CloudUsageMonth.month == now.month
                )
            )
        ).scalar_one_or_none()
        if row is not None:
            return row

        row = CloudUsageMonth(
            year=now.year,
            month=now.month,
            api_calls=0,
            successful_calls=0,
            failed_calls=0,
            total_processing_ms=0,
            warnings_shown=[],
        )
        session.add(row)
        await session.flush()
        await self._prune(session)
        logger.info("cloud_usage_month_started", extra={"year": now.year, "month": now.month})
        return row

    async def _prune(self, session: AsyncSession) -> None:
        keep = (
            await session.execute(
                select(CloudUsageMonth.id)
                .order_by(CloudUsageMonth.year.desc(), CloudUsageMonth.month.desc())
                .limit(ARCHIVE_MONTHS + 1)
            )
        ).scalars().all()
        await session.execute(delete(CloudUsageMonth).where(CloudUsageMonth.id.not_in(keep)))

    def _percentage(self, calls: int) -> int:
        if self.monthly_limit <= 0:
            return 0
        return round_half_up(calls / self.monthly_limit * 100)

    def _cost(self, calls: int) -> float:
        return round(calls * self.cost_per_call, 2)

    def _snapshot(self, row: CloudUsageMonth) -> UsageSnapshot:
        calls = row.api_calls
        return UsageSnapshot(
            year=row.year,
            month=row.month,
            api_calls=calls,
            successful_calls=row.successful_calls,
            failed_calls=row.failed_calls,
            total_processing_ms=row.total_processing_ms,
            monthly_limit=self.monthly_limit,
            percentage=self._percentage(calls),
            remaining=max(0, self.monthly_limit - calls),
            estimated_cost=self._cost(calls),
            average_processing_ms=round_half_up(row.total_processing_ms / calls) if calls else 0,
            success_rate=round_half_up(row.successful_calls / calls * 100) if calls else 100,
        )
