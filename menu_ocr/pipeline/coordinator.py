"""Hybrid OCR coordinator: cloud first, local backup and fallback.

Per-request state machine:

    START
     ├─ cloud unavailable or force_local ──────────► LOCAL_ONLY ─► local_only
     └─ CLOUD_ATTEMPT (raced against max_time)
          ├─ ok, confidence >= floor ──────────────────────────► cloud
          ├─ ok, confidence <  floor ─► LOCAL_BACKUP ─► cloud_primary | local_backup
          └─ raises ─► LOCAL_FALLBACK ─────────────────────────► local_fallback

Statistics are recorded once per completed request; failed requests leave
them untouched. Concurrent ``process_image`` calls are not serialized.
"""
from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any

from menu_ocr.confidence.confidence import EngineComparison, compare_engines
from menu_ocr.core.errors import (
    ConfigurationError,
    DeadlineExceededError,
    ProcessingError,
    RecognitionError,
    StateError,
)
from menu_ocr.core.progress import ProgressEvent, ProgressListener, ProgressReporter
from menu_ocr.ocr.base_ocr import (
    ImageInput,
    OCREngine,
    ProcessingMetadata,
    RecognitionResult,
    RecognitionSource,
)
from menu_ocr.ocr.cloud_ocr import CloudOCREngine
from menu_ocr.pipeline.statistics import UsageStatistics
from menu_ocr.usage.tracker import CloudUsageTracker

logger = logging.getLogger(__name__)

DEFAULT_CONFIDENCE_FLOOR = 20
DEFAULT_MAX_TIME_MS = 45000
LOW_BATTERY_LEVEL = 0.2

# Options passed to the cloud engine on the primary path.
CLOUD_OPTIONS: dict[str, Any] = {
    "preprocess_image": True,
    "max_image_size": 4 * 1024 * 1024,
    "quality": 0.9,
    "image_format": "jpeg",
}


@dataclass(frozen=True)
class ProcessingConditions:
    is_online: bool = True
    battery_level: float = 1.0      # 0.0..1.0
    is_low_power_mode: bool = False


@dataclass(frozen=True)
class Recommendation:
    method: str                     # "cloud" | "local"
    reason: str


@dataclass(frozen=True)
class ComparisonReport:
    cloud: RecognitionResult | None
    local: RecognitionResult
    cloud_time_ms: int | None
    local_time_ms: int
    comparison: EngineComparison | None
    timestamp: str


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _elapsed_ms(t0: float) -> int:
    return int((time.monotonic() - t0) * 1000)


class HybridOCRCoordinator:
    def __init__(
        self,
        local_engine: OCREngine,
        *,
        cloud_factory: Callable[[], CloudOCREngine] = CloudOCREngine,
        usage_tracker: CloudUsageTracker | None = None,
        enforce_usage_limit: bool = True,
    ) -> None:
        self._local = local_engine
        self._cloud_factory = cloud_factory
        self._cloud: CloudOCREngine | None = None
        self._usage_tracker = usage_tracker
        self._enforce_usage_limit = enforce_usage_limit
        self._initialized = False
        self._local_ready = False
        self.statistics = UsageStatistics()
        self.progress = ProgressReporter()

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    @property
    def has_cloud(self) -> bool:
        return self._cloud is not None and self._cloud.is_initialized

    @property
    def cloud_engine(self) -> CloudOCREngine | None:
        return self._cloud

    @property
    def local_engine(self) -> OCREngine:
        return self._local

    # ------------------------------------------------------------------ #
    #  Lifecycle                                                          #
    # ------------------------------------------------------------------ #

    async def initialize(
        self,
        cloud_credential: str | None = None,
        progress_callback: ProgressListener | None = None,
    ) -> None:
        if progress_callback is not None:
            self.progress.subscribe(progress_callback)

        self.progress.emit("Initializing OCR processors...", 0, status="loading")
        try:
            await self._local.initialize(progress=self._forward_local_progress)
        except Exception as exc:
            logger.exception("hybrid_ocr_init_failed")
            raise ConfigurationError(f"Failed to initialize hybrid OCR: {exc}") from exc
        self._local_ready = True
        self.progress.emit("Local OCR initialized", 30, status="loading")

        if cloud_credential and cloud_credential.strip():
            try:
                await self._configure_cloud(cloud_credential)
                self.progress.emit("Cloud OCR initialized", 60, status="loading")
            except ConfigurationError as exc:
                logger.warning("cloud_ocr_init_failed_local_only", extra={"error": str(exc)})
                self._cloud = None

        self._initialized = True
        self.progress.emit("Hybrid OCR ready", 100, status="complete")
        logger.info("hybrid_ocr_initialized", extra={"has_cloud": self.has_cloud})

    async def _configure_cloud(self, credential: str) -> None:
        if self._cloud is None:
            self._cloud = self._cloud_factory()
        await self._cloud.initialize(credential)

    async def update_credential(self, value: str | None) -> None:
        """Replace or clear the cloud credential at runtime.

        Not synchronized with in-flight ``process_image`` calls.
        """
        if not value or not value.strip():
            await self._drop_cloud()
            logger.info("cloud_ocr_disabled")
            return
        try:
            await self._configure_cloud(value)
        except RecognitionError:
            logger.exception("cloud_credential_update_failed")
            await self._drop_cloud()
            raise
        logger.info("cloud_credential_updated")

    async def _drop_cloud(self) -> None:
        if self._cloud is not None:
            await self._cloud.cleanup()
            self._cloud = None

    async def cleanup(self) -> None:
        await self._drop_cloud()
        if self._local_ready:
            await self._local.cleanup()
            self._local_ready = False
        self._initialized = False
        self.progress.clear()
        logger.info("hybrid_ocr_cleaned_up")

    # ------------------------------------------------------------------ #
    #  Public entry point                                                 #
    # ------------------------------------------------------------------ #

    async def process_image(
        self,
        image: ImageInput,
        *,
        force_local: bool = False,
        confidence_floor: int = DEFAULT_CONFIDENCE_FLOOR,
        max_time: int = DEFAULT_MAX_TIME_MS,
    ) -> RecognitionResult:
        if not self._initialized:
            raise StateError("Hybrid OCR processor not initialized. Call initialize() first.")

        t0 = time.monotonic()
        cloud = self._cloud if self.has_cloud else None
        cloud_available = cloud is not None
        cloud_used = local_used = fallback = False
        fallback_reason: str | None = None

        self.progress.emit("Starting OCR processing...", 0, status="starting")
        try:
            if cloud is not None and not force_local and await self._cloud_allowed():
                cloud_used = True
                try:
                    result = await self._attempt_cloud(cloud, image, max_time)
                except Exception as exc:
                    fallback = True
                    fallback_reason = str(exc)
                    logger.warning(
                        "cloud_ocr_fallback",
                        extra={"error_type": type(exc).__name__, "error": fallback_reason},
                    )
                    local_used = True
                    try:
                        result = await self._run_local(image, confidence_floor)
                    except Exception as local_exc:
                        raise ProcessingError(f"OCR processing failed: {local_exc}") from local_exc
                    source = RecognitionSource.LOCAL_FALLBACK
                else:
                    if result.confidence >= confidence_floor:
                        source = RecognitionSource.CLOUD
                    else:
                        local_used = True
                        result, source = await self._arbitrate(image, result, confidence_floor)
            else:
                reason = "forced local processing" if force_local else "cloud OCR unavailable"
                logger.info("local_ocr_only", extra={"reason": reason})
                local_used = True
                result = await self._run_local(image, confidence_floor)
                source = RecognitionSource.LOCAL_ONLY
        except Exception:
            self.progress.emit("OCR processing failed", 0, status="failed")
            logger.exception("hybrid_ocr_failed")
            raise

        elapsed = _elapsed_ms(t0)
        result = replace(
            result,
            source=source,
            processing=ProcessingMetadata(
                source=source,
                fallback_reason=fallback_reason,
                elapsed_ms=elapsed,
                cloud_available=cloud_available,
                timestamp=_now_iso(),
            ),
        )
        self.statistics.record(elapsed, cloud_used=cloud_used, local_used=local_used, fallback=fallback)
        self.progress.emit("OCR processing complete", 100, status="complete")

        logger.info(
            "hybrid_ocr_complete",
            extra={
                "source": source.value,
                "confidence": result.confidence,
                "duration_ms": elapsed,
                "fallback_reason": fallback_reason,
            },
        )
        return result

    # ------------------------------------------------------------------ #
    #  Paths                                                              #
    # ------------------------------------------------------------------ #

    async def _cloud_allowed(self) -> bool:
        if self._usage_tracker is None or not self._enforce_usage_limit:
            return True
        allowed = await self._usage_tracker.is_usage_allowed()
        if not allowed:
            logger.warning("cloud_ocr_skipped_usage_limit")
        return allowed

    async def _attempt_cloud(
        self, cloud: CloudOCREngine, image: ImageInput, max_time: int
    ) -> RecognitionResult:
        self.progress.emit("Processing with cloud OCR...", 20)
        t0 = time.monotonic()
        try:
            result = await asyncio.wait_for(
                cloud.process_image(image, **CLOUD_OPTIONS), timeout=max_time / 1000
            )
        except asyncio.TimeoutError as exc:
            await self._record_usage(False, _elapsed_ms(t0))
            raise DeadlineExceededError(f"Cloud OCR timed out after {max_time}ms") from exc
        except Exception:
            await self._record_usage(False, _elapsed_ms(t0))
            raise

        await self._record_usage(True, _elapsed_ms(t0))
        self.progress.emit("Cloud OCR processing complete", 80)
        logger.info("cloud_ocr_attempt_complete", extra={"confidence": result.confidence})
        return result

    async def _record_usage(self, success: bool, processing_ms: int) -> None:
        if self._usage_tracker is None:
            return
        try:
            await self._usage_tracker.record_call(success=success, processing_ms=processing_ms)
        except Exception:
            # bookkeeping must not change the recognition outcome
            logger.exception("cloud_usage_record_failed")

    async def _arbitrate(
        self,
        image: ImageInput,
        cloud_result: RecognitionResult,
        confidence_floor: int,
    ) -> tuple[RecognitionResult, RecognitionSource]:
        logger.info(
            "cloud_ocr_low_confidence",
            extra={"confidence": cloud_result.confidence, "floor": confidence_floor},
        )
        try:
            local_result = await self._run_local(image, confidence_floor)
        except Exception as exc:
            logger.warning("local_ocr_backup_failed", extra={"error": str(exc)})
            return cloud_result, RecognitionSource.CLOUD_PRIMARY

        if local_result.confidence > cloud_result.confidence:
            return local_result, RecognitionSource.LOCAL_BACKUP
        return cloud_result, RecognitionSource.CLOUD_PRIMARY

    async def _run_local(self, image: ImageInput, confidence_floor: int) -> RecognitionResult:
        self.progress.emit("Processing with local OCR...", 40)
        result = await self._local.process_image(image, min_confidence=confidence_floor)
        self.progress.emit("Local OCR processing complete", 80)
        return result

    def _forward_local_progress(self, event: ProgressEvent) -> None:
        if event.status == "recognizing text":
            pct = round(event.progress * 100)
            self.progress.emit(f"Processing with local OCR... {pct}%", 40 + event.progress * 40)
        else:
            self.progress.emit(event.message, 0, status="loading")

    # ------------------------------------------------------------------ #
    #  Advisory and diagnostics                                           #
    # ------------------------------------------------------------------ #

    def get_processing_recommendation(
        self, conditions: ProcessingConditions | None = None
    ) -> Recommendation:
        conditions = conditions or ProcessingConditions()
        if not self.has_cloud:
            return Recommendation("local", "No cloud vision API key configured")
        if not conditions.is_online:
            return Recommendation("local", "Device is offline")
        if conditions.is_low_power_mode or conditions.battery_level < LOW_BATTERY_LEVEL:
            return Recommendation("local", "Low power mode or battery")
        return Recommendation("cloud", "Optimal conditions for cloud processing")

    async def compare_engines(self, image: ImageInput) -> ComparisonReport:
        """Run both engines on ``image`` side by side; statistics are not touched."""
        if not self._initialized:
            raise StateError("Hybrid OCR processor not initialized")

        async def timed(coro) -> tuple[RecognitionResult, int]:
            t0 = time.monotonic()
            res = await coro
            return res, _elapsed_ms(t0)

        cloud_engine = self._cloud if self.has_cloud else None
        try:
            if cloud_engine is not None:
                outcomes = await asyncio.gather(
                    timed(cloud_engine.process_image(image)),
                    timed(self._local.process_image(image)),
                    return_exceptions=True,
                )
                for outcome in outcomes:
                    if isinstance(outcome, BaseException):
                        raise outcome
                (cloud, cloud_ms), (local, local_ms) = outcomes
            else:
                cloud, cloud_ms = None, None
                local, local_ms = await timed(self._local.process_image(image))
        except Exception as exc:
            logger.exception("engine_comparison_failed")
            raise ProcessingError(f"Engine comparison failed: {exc}") from exc

        comparison = None
        if cloud is not None:
            comparison = compare_engines(
                cloud_confidence=cloud.confidence,
                local_confidence=local.confidence,
                cloud_time_ms=cloud_ms,
                local_time_ms=local_ms,
                cloud_word_count=cloud.word_count,
                local_word_count=local.word_count,
            )
        return ComparisonReport(
            cloud=cloud,
            local=local,
            cloud_time_ms=cloud_ms,
            local_time_ms=local_ms,
            comparison=comparison,
            timestamp=_now_iso(),
        )

    def get_status(self) -> dict[str, Any]:
        return {
            "initialized": self._initialized,
            "has_cloud": self.has_cloud,
            "has_local": self._local_ready and self._local.get_status().initialized,
            "statistics": self.statistics.snapshot(),
            "engines": {
                "cloud": self._cloud.get_status() if self._cloud is not None else None,
                "local": self._local.get_status() if self._local_ready else None,
            },
        }
