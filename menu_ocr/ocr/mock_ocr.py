from __future__ import annotations

import asyncio
from typing import Any

from menu_ocr.core.errors import StateError
from menu_ocr.core.progress import ProgressEvent, ProgressListener
from menu_ocr.ocr.base_ocr import (
    BoundingBox,
    EngineStatus,
    ImageInput,
    OCREngine,
    RecognitionResult,
    RecognitionSource,
    RecognizedWord,
)

# Two menu lines: "Paella valenciana 14,50" / "Gazpacho andaluz 6,00"
_MOCK_WORDS = (
    RecognizedWord("Paella", 91, BoundingBox(10, 10, 80, 30)),
    RecognizedWord("valenciana", 88, BoundingBox(88, 11, 190, 31)),
    RecognizedWord("14,50", 84, BoundingBox(240, 10, 290, 30)),
    RecognizedWord("Gazpacho", 90, BoundingBox(10, 50, 100, 70)),
    RecognizedWord("andaluz", 86, BoundingBox(108, 51, 180, 71)),
    RecognizedWord("6,00", 82, BoundingBox(240, 50, 280, 70)),
)


class MockOCREngine(OCREngine):
    """Local engine stand-in for development and testing; no model required."""

    def __init__(self) -> None:
        self._initialized = False
        self._progress: ProgressListener | None = None

    async def initialize(self, progress: ProgressListener | None = None) -> None:
        self._progress = progress
        self._initialized = True

    async def process_image(self, image: ImageInput, **options: Any) -> RecognitionResult:
        if not self._initialized:
            raise StateError("Mock OCR engine not initialized. Call initialize() first.")

        min_confidence = options.get("min_confidence", 0)
        if self._progress:
            self._progress(ProgressEvent("recognizing text", "Recognizing text...", 0.0))
        await asyncio.sleep(0)
        words = [w for w in _MOCK_WORDS if (w.confidence or 0) >= min_confidence]
        if self._progress:
            self._progress(ProgressEvent("recognizing text", "Recognizing text...", 1.0))

        return RecognitionResult.from_words(
            "Paella valenciana 14,50\nGazpacho andaluz 6,00",
            words,
            source=RecognitionSource.LOCAL,
        )

    def get_status(self) -> EngineStatus:
        return EngineStatus(initialized=self._initialized, details={"provider": "mock"})

    async def cleanup(self) -> None:
        self._initialized = False
        self._progress = None
