from __future__ import annotations

from pydantic import BaseModel, Field

from menu_ocr.ocr.base_ocr import EngineStatus, RecognitionResult
from menu_ocr.usage.tracker import UsageSnapshot


class BoundingBoxOut(BaseModel):
    x0: float
    y0: float
    x1: float
    y1: float


class WordOut(BaseModel):
    text: str
    confidence: int | None
    bbox: BoundingBoxOut | None = None


class LineOut(BaseModel):
    text: str
    confidence: int
    words: int


class ProcessingOut(BaseModel):
    """How the result was produced (hybrid processing metadata)."""
    source: str
    fallback_reason: str | None
    elapsed_ms: int
    cloud_available: bool
    timestamp: str


class RecognitionOut(BaseModel):
    full_text: str
    confidence: int
    word_count: int
    source: str
    words: list[WordOut] = Field(default_factory=list)
    lines: list[LineOut] = Field(default_factory=list)
    processing: ProcessingOut | None = None

    @classmethod
    def from_result(cls, result: RecognitionResult) -> RecognitionOut:
        processing = None
        if result.processing is not None:
            p = result.processing
            processing = ProcessingOut(
                source=p.source.value,
                fallback_reason=p.fallback_reason,
                elapsed_ms=p.elapsed_ms,
                cloud_available=p.cloud_available,
                timestamp=p.timestamp,
            )
        return cls(
            full_text=result.full_text,
            confidence=result.confidence,
            word_count=result.word_count,
            source=result.source.value,
            words=[
                WordOut(
                    text=w.text,
                    confidence=w.confidence,
                    bbox=BoundingBoxOut(x0=w.bbox.x0, y0=w.bbox.y0, x1=w.bbox.x1, y1=w.bbox.y1)
                    if w.bbox
                    else None,
                )
                for w in result.words
            ],
            lines=[LineOut(text=l.text, confidence=l.confidence, words=l.word_count) for l in result.lines],
            processing=processing,
        )


class EngineComparisonOut(BaseModel):
    confidence_difference: int
    time_difference: int
    word_count_difference: int
    recommended: str


class ComparisonOut(BaseModel):
    cloud: RecognitionOut | None
    local: RecognitionOut
    cloud_time_ms: int | None
    local_time_ms: int
    comparison: EngineComparisonOut | None
    timestamp: str


class ConditionsIn(BaseModel):
    is_online: bool = True
    battery_level: float = Field(default=1.0, ge=0.0, le=1.0)
    is_low_power_mode: bool = False


class RecommendationOut(BaseModel):
    method: str
    reason: str


class CredentialIn(BaseModel):
    api_key: str | None = None


class EngineStatusOut(BaseModel):
    initialized: bool
    has_credential: bool
    credential_valid: bool
    last_processing_time_ms: int

    @classmethod
    def from_status(cls, status: EngineStatus | None) -> EngineStatusOut | None:
        if status is None:
            return None
        return cls(
            initialized=status.initialized,
            has_credential=status.has_credential,
            credential_valid=status.credential_valid,
            last_processing_time_ms=status.last_processing_time_ms,
        )


class StatisticsOut(BaseModel):
    total_processed: int
    cloud_used_count: int
    local_used_count: int
    fallback_count: int
    last_processing_time_ms: int
    average_processing_time_ms: float


class StatusOut(BaseModel):
    initialized: bool
    has_cloud: bool
    has_local: bool
    statistics: StatisticsOut
    engines: dict[str, EngineStatusOut | None]


class UsageOut(BaseModel):
    year: int
    month: int
    api_calls: int
    successful_calls: int
    failed_calls: int
    monthly_limit: int
    percentage: int
    remaining: int
    estimated_cost: float
    average_processing_ms: int
    success_rate: int
    days_remaining: int | None = None
    projected_calls: int | None = None

    @classmethod
    def from_snapshot(cls, snap: UsageSnapshot, **extra: int) -> UsageOut:
        return cls(
            year=snap.year,
            month=snap.month,
            api_calls=snap.api_calls,
            successful_calls=snap.successful_calls,
            failed_calls=snap.failed_calls,
            monthly_limit=snap.monthly_limit,
            percentage=snap.percentage,
            remaining=snap.remaining,
            estimated_cost=snap.estimated_cost,
            average_processing_ms=snap.average_processing_ms,
            success_rate=snap.success_rate,
            **extra,
        )
