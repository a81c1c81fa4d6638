from __future__ import annotations

from dataclasses import asdict, dataclass

# Weight of the newest sample in the moving average.
EMA_WEIGHT = 0.2


@dataclass
class UsageStatistics:
    """Running counters for the hybrid coordinator.

    Mutated only by ``HybridOCRCoordinator``, once per completed request. Updates
    are not atomic: concurrent requests can race on the counters and the moving
    average. Acceptable for a single-user service.
    """

    total_processed: int = 0
    cloud_used_count: int = 0
    local_used_count: int = 0
    fallback_count: int = 0
    last_processing_time_ms: int = 0
    average_processing_time_ms: float = 0.0

    def record(
        self,
        elapsed_ms: int,
        *,
        cloud_used: bool,
        local_used: bool,
        fallback: bool,
    ) -> None:
        self.total_processed += 1
        self.cloud_used_count += int(cloud_used)
        self.local_used_count += int(local_used)
        self.fallback_count += int(fallback)
        self.last_processing_time_ms = elapsed_ms

        if self.total_processed == 1:
            self.average_processing_time_ms = float(elapsed_ms)
        else:
            self.average_processing_time_ms = (
                self.average_processing_time_ms * (1 - EMA_WEIGHT) + elapsed_ms * EMA_WEIGHT
            )

    def snapshot(self) -> dict[str, float | int]:
        return asdict(self)
