from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, File, Form, HTTPException, Request, UploadFile

from menu_ocr.core.config import settings
from menu_ocr.core.errors import (
    ConfigurationError,
    RecognitionError,
    StateError,
    ValidationError,
)
from menu_ocr.pipeline.coordinator import HybridOCRCoordinator, ProcessingConditions
from menu_ocr.schemas import (
    ComparisonOut,
    ConditionsIn,
    CredentialIn,
    EngineComparisonOut,
    EngineStatusOut,
    RecognitionOut,
    RecommendationOut,
    StatisticsOut,
    StatusOut,
    UsageOut,
)
from menu_ocr.usage.tracker import CloudUsageTracker

logger = logging.getLogger(__name__)
router = APIRouter()

ALLOWED_CONTENT_TYPES = {"image/jpeg", "image/png", "image/webp"}


def get_coordinator(request: Request) -> HybridOCRCoordinator:
    return request.app.state.coordinator


def get_usage_tracker(request: Request) -> CloudUsageTracker:
    tracker = getattr(request.app.state, "usage_tracker", None)
    if tracker is None:
        raise HTTPException(status_code=404, detail="Cloud usage tracking is disabled")
    return tracker


def _to_http(exc: RecognitionError) -> HTTPException:
    if isinstance(exc, StateError):
        return HTTPException(status_code=503, detail=str(exc))
    if isinstance(exc, (ValidationError, ConfigurationError)):
        return HTTPException(status_code=400, detail=str(exc))
    return HTTPException(status_code=502, detail=str(exc))


async def _read_image(file: UploadFile) -> bytes:
    content_type = file.content_type or "application/octet-stream"
    if content_type not in ALLOWED_CONTENT_TYPES:
        raise HTTPException(status_code=415, detail=f"Unsupported content_type={content_type!r}")
    data = await file.read()
    if not data:
        raise HTTPException(status_code=400, detail="Empty image upload")
    return data


@router.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}


@router.post("/ocr/recognize", response_model=RecognitionOut)
async def recognize(
    file: UploadFile = File(...),
    force_local: bool = Form(False),
    confidence_floor: int | None = Form(None, ge=0, le=100),
    max_time: int | None = Form(None, gt=0),
    coordinator: HybridOCRCoordinator = Depends(get_coordinator),
) -> RecognitionOut:
    image = await _read_image(file)
    try:
        result = await coordinator.process_image(
            image,
            force_local=force_local,
            confidence_floor=settings.confidence_floor if confidence_floor is None else confidence_floor,
            max_time=settings.max_time_ms if max_time is None else max_time,
        )
    except RecognitionError as exc:
        raise _to_http(exc) from exc

    logger.info(
        "image_recognized",
        extra={"upload_filename": file.filename, "source": result.source.value},
    )
    return RecognitionOut.from_result(result)


@router.post("/ocr/compare", response_model=ComparisonOut)
async def compare(
    file: UploadFile = File(...),
    coordinator: HybridOCRCoordinator = Depends(get_coordinator),
) -> ComparisonOut:
    image = await _read_image(file)
    try:
        report = await coordinator.compare_engines(image)
    except RecognitionError as exc:
        raise _to_http(exc) from exc

    comparison = None
    if report.comparison is not None:
        c = report.comparison
        comparison = EngineComparisonOut(
            confidence_difference=c.confidence_difference,
            time_difference=c.time_difference,
            word_count_difference=c.word_count_difference,
            recommended=c.recommended,
        )
    return ComparisonOut(
        cloud=RecognitionOut.from_result(report.cloud) if report.cloud else None,
        local=RecognitionOut.from_result(report.local),
        cloud_time_ms=report.cloud_time_ms,
        local_time_ms=report.local_time_ms,
        comparison=comparison,
        timestamp=report.timestamp,
    )


@router.post("/ocr/recommendation", response_model=RecommendationOut)
async def recommendation(
    conditions: ConditionsIn,
    coordinator: HybridOCRCoordinator = Depends(get_coordinator),
) -> RecommendationOut:
    rec = coordinator.get_processing_recommendation(
        ProcessingConditions(
            is_online=conditions.is_online,
            battery_level=conditions.battery_level,
            is_low_power_mode=conditions.is_low_power_mode,
        )
    )
    return RecommendationOut(method=rec.method, reason=rec.reason)


@router.get("/ocr/status", response_model=StatusOut)
async def status(coordinator: HybridOCRCoordinator = Depends(get_coordinator)) -> StatusOut:
    raw = coordinator.get_status()
    return StatusOut(
        initialized=raw["initialized"],
        has_cloud=raw["has_cloud"],
        has_local=raw["has_local"],
        statistics=StatisticsOut(**raw["statistics"]),
        engines={name: EngineStatusOut.from_status(s) for name, s in raw["engines"].items()},
    )


@router.put("/ocr/credential", response_model=StatusOut)
async def update_credential(
    body: CredentialIn,
    coordinator: HybridOCRCoordinator = Depends(get_coordinator),
) -> StatusOut:
    try:
        await coordinator.update_credential(body.api_key)
    except RecognitionError as exc:
        raise _to_http(exc) from exc
    return await status(coordinator)


@router.get("/usage", response_model=UsageOut)
async def usage(tracker: CloudUsageTracker = Depends(get_usage_tracker)) -> UsageOut:
    snap = await tracker.get_current_usage()
    return UsageOut.from_snapshot(
        snap,
        days_remaining=tracker.days_remaining_in_month(),
        projected_calls=tracker.projected_monthly_calls(snap.api_calls),
    )


@router.get("/usage/history", response_model=list[UsageOut])
async def usage_history(tracker: CloudUsageTracker = Depends(get_usage_tracker)) -> list[UsageOut]:
    return [UsageOut.from_snapshot(s) for s in await tracker.get_history()]
