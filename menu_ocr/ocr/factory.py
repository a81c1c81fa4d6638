from __future__ import annotations

from functools import partial

from menu_ocr.core.config import Settings, settings as default_settings
from menu_ocr.db.session import SessionLocal
from menu_ocr.ocr.base_ocr import OCREngine
from menu_ocr.ocr.cloud_ocr import CloudOCREngine
from menu_ocr.ocr.mock_ocr import MockOCREngine
from menu_ocr.pipeline.coordinator import HybridOCRCoordinator
from menu_ocr.usage.tracker import CloudUsageTracker


def get_local_engine(settings: Settings = default_settings) -> OCREngine:
    """Return the configured local OCR engine instance.

    LOCAL_OCR_PROVIDER options:
        mock      : synthetic menu text (dev/test, no deps required)
        paddleocr : LocalOCREngine (pip install paddlepaddle paddleocr)
    """
    provider = settings.local_ocr_provider.lower().strip()

    if provider == "mock":
        return MockOCREngine()

    if provider == "paddleocr":
        from menu_ocr.ocr.engines import LocalOCREngine
        return LocalOCREngine(lang=settings.paddle_lang, use_gpu=settings.paddle_use_gpu)

    raise ValueError(f"Unknown LOCAL_OCR_PROVIDER={settings.local_ocr_provider!r}")


def get_usage_tracker(settings: Settings = default_settings, session_factory=None) -> CloudUsageTracker:
    return CloudUsageTracker(
        session_factory or SessionLocal,
        monthly_limit=settings.cloud_monthly_limit,
        warning_thresholds=settings.cloud_usage_warning_thresholds,
        cost_per_call=settings.cloud_cost_per_call,
    )


def build_coordinator(
    settings: Settings = default_settings,
    *,
    local_engine: OCREngine | None = None,
    usage_tracker: CloudUsageTracker | None = None,
) -> HybridOCRCoordinator:
    """Wire a coordinator from settings. Call ``initialize()`` on the result."""
    cloud_factory = partial(
        CloudOCREngine,
        settings.cloud_vision_endpoint,
        timeout_s=settings.cloud_request_timeout_s,
        language_hints=settings.cloud_language_hints,
    )
    return HybridOCRCoordinator(
        local_engine or get_local_engine(settings),
        cloud_factory=cloud_factory,
        usage_tracker=usage_tracker,
        enforce_usage_limit=settings.cloud_usage_enforce_limit,
    )
