"""LocalOCREngine using PaddleOCR: the always-available, offline engine."""
from __future__ import annotations

import asyncio
import logging
import time
from typing import Any

from menu_ocr.confidence.confidence import score_to_confidence
from menu_ocr.core.errors import ConfigurationError, RecognitionError, StateError
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
from menu_ocr.ocr.image_optimizer import load_image
from menu_ocr.ocr.lines import group_words_into_lines

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# LocalOCREngine: PaddleOCR
# ---------------------------------------------------------------------------

class LocalOCREngine(OCREngine):
    """OCR engine backed by PaddleOCR (runs 100% locally, no cloud calls).

    Install dependency:
        pip install paddlepaddle paddleocr

    Config (via .env):
        LOCAL_OCR_PROVIDER=paddleocr
        PADDLE_LANG=es      # language code: es | en | fr | etc.
        PADDLE_USE_GPU=false

    PaddleOCR yields one entry per detected text box (usually a word or a short
    phrase); each entry becomes one ``RecognizedWord``.
    """

    def __init__(self, lang: str = "es", use_gpu: bool = False) -> None:
        self._lang = lang
        self._use_gpu = use_gpu
        self._ocr = None
        self._progress: ProgressListener | None = None
        self._last_processing_time_ms = 0

    async def initialize(self, progress: ProgressListener | None = None) -> None:
        if self._ocr is not None:
            return
        self._progress = progress
        self._report("loading", "Loading OCR engine...", 0.0)
        loop = asyncio.get_running_loop()
        self._ocr = await loop.run_in_executor(None, self._load_model)
        logger.info("paddleocr_initialized", extra={"lang": self._lang, "use_gpu": self._use_gpu})

    def _load_model(self):
        try:
            from paddleocr import PaddleOCR  # type: ignore[import]
        except ModuleNotFoundError as exc:
            raise ConfigurationError(
                "PaddleOCR is not installed. Run: pip install paddlepaddle paddleocr"
            ) from exc
        return PaddleOCR(
            use_angle_cls=True,
            lang=self._lang,
            use_gpu=self._use_gpu,
            show_log=False,
        )

    def _report(self, status: str, message: str, fraction: float) -> None:
        if self._progress:
            self._progress(ProgressEvent(status=status, message=message, progress=fraction))

    async def process_image(self, image: ImageInput, **options: Any) -> RecognitionResult:
        """Run PaddleOCR on *image* and return words, lines and confidence."""
        if self._ocr is None:
            raise StateError("Local OCR engine not initialized. Call initialize() first.")

        min_confidence = int(options.get("min_confidence", 0))
        t0 = time.monotonic()
        self._report("recognizing text", "Recognizing text...", 0.0)

        loop = asyncio.get_running_loop()
        try:
            raw = await loop.run_in_executor(None, self._recognize, image)
        except RecognitionError:
            raise
        except Exception as exc:
            raise RecognitionError(f"Text recognition failed: {exc}") from exc

        lines = group_words_into_lines(
            w for w in _to_words(raw) if (w.confidence or 0) >= min_confidence
        )
        words = [w for line in lines for w in line.words]
        full_text = "\n".join(line.text for line in lines)

        self._report("recognizing text", "Recognizing text...", 1.0)
        elapsed = int((time.monotonic() - t0) * 1000)
        self._last_processing_time_ms = elapsed
        result = RecognitionResult.from_words(
            full_text, words, source=RecognitionSource.LOCAL, processing_time_ms=elapsed
        )

        logger.info(
            "paddleocr_complete",
            extra={"words": result.word_count, "confidence": result.confidence, "duration_ms": elapsed},
        )
        return result

    def _recognize(self, image: ImageInput):
        import numpy as np  # type: ignore[import]

        img_array = np.array(load_image(image).convert("RGB"))
        return self._ocr.ocr(img_array, cls=True)

    def get_status(self) -> EngineStatus:
        return EngineStatus(
            initialized=self._ocr is not None,
            last_processing_time_ms=self._last_processing_time_ms,
            details={"provider": "paddleocr", "lang": self._lang, "has_worker": self._ocr is not None},
        )

    async def cleanup(self) -> None:
        if self._ocr is not None:
            self._ocr = None
            logger.info("paddleocr_released")
        self._progress = None
        self._last_processing_time_ms = 0


def _to_words(raw: Any) -> list[RecognizedWord]:
    # raw: [[ [box, (text, score)], ... ]] with one inner list per page
    words: list[RecognizedWord] = []
    if not raw or not raw[0]:
        return words
    for box, (text, score) in raw[0]:
        text = (text or "").strip()
        if not text:
            continue
        words.append(
            RecognizedWord(
                text=text,
                confidence=score_to_confidence(score),
                bbox=BoundingBox.from_vertices(box),
            )
        )
    return words
