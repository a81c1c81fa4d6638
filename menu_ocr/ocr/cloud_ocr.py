"""CloudOCREngine: Google Cloud Vision ``images:annotate`` TEXT_DETECTION.

One ``process_image`` call issues exactly one HTTP request. Transport and
status failures are mapped onto ``menu_ocr.core.errors``; nothing is retried
here, the coordinator decides what happens next.

Config (via .env):
    CLOUD_VISION_API_KEY=...
    CLOUD_VISION_ENDPOINT=https://vision.googleapis.com/v1/images:annotate
    CLOUD_REQUEST_TIMEOUT_S=30
"""
from __future__ import annotations

import logging
import time
from typing import Any

import httpx

from menu_ocr.confidence.confidence import score_to_confidence
from menu_ocr.core.errors import (
    NETWORK_ERROR_MESSAGE,
    ConfigurationError,
    NetworkError,
    RecognitionError,
    StateError,
    error_for_status,
)
from menu_ocr.core.progress import ProgressListener
from menu_ocr.ocr.base_ocr import (
    BoundingBox,
    EngineStatus,
    ImageInput,
    OCREngine,
    RecognitionResult,
    RecognitionSource,
    RecognizedLine,
    RecognizedWord,
)
from menu_ocr.ocr.image_optimizer import (
    DEFAULT_MAX_IMAGE_SIZE,
    convert_to_base64,
    optimize_image_for_api,
)
from menu_ocr.ocr.lines import group_words_into_lines

logger = logging.getLogger(__name__)

DEFAULT_ENDPOINT = "https://vision.googleapis.com/v1/images:annotate"
MIN_CREDENTIAL_LENGTH = 20

# 1x1 white PNG used to probe a credential.
_PROBE_IMAGE = (
    "data:image/png;base64,iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mP8"
    "/5+hHgAHggJ/PchI7wAAAABJRU5ErkJggg=="
)


class CloudOCREngine(OCREngine):
    """OCR engine backed by a remote text-detection endpoint.

    Built lazily by the coordinator, only once a credential is known; the
    credential can be replaced or cleared at runtime.
    """

    def __init__(
        self,
        endpoint: str = DEFAULT_ENDPOINT,
        *,
        timeout_s: float = 30.0,
        language_hints: list[str] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._endpoint = endpoint
        self._timeout_s = timeout_s
        self._language_hints = list(language_hints) if language_hints is not None else ["es", "en"]
        self._transport = transport
        self._api_key: str | None = None
        self._initialized = False
        self._last_processing_time_ms = 0

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    @property
    def api_key(self) -> str | None:
        return self._api_key

    async def initialize(self, credential: str | None, progress: ProgressListener | None = None) -> None:
        if not credential or not isinstance(credential, str) or not credential.strip():
            raise ConfigurationError("Valid API key required for cloud vision OCR")

        key = credential.strip()
        if len(key) < MIN_CREDENTIAL_LENGTH:
            raise ConfigurationError("API key appears to be invalid (too short)")

        self._api_key = key
        self._initialized = True
        logger.info("cloud_ocr_initialized", extra={"endpoint": self._endpoint})

    async def process_image(
        self,
        image: ImageInput,
        *,
        preprocess_image: bool = True,
        quality: float = 0.9,
        image_format: str = "jpeg",
        max_image_size: int = DEFAULT_MAX_IMAGE_SIZE,
        **_: Any,
    ) -> RecognitionResult:
        if not self._initialized:
            raise StateError("Cloud vision OCR not initialized. Call initialize() first.")

        t0 = time.monotonic()
        try:
            if preprocess_image:
                image = await optimize_image_for_api(
                    image, quality=quality, image_format=image_format, max_image_size=max_image_size
                )
            body = self.build_request(convert_to_base64(image))
            response = await self._post(body)
            elapsed = int((time.monotonic() - t0) * 1000)
            result = self.parse_response(response, processing_time_ms=elapsed)
        except RecognitionError as exc:
            self._last_processing_time_ms = int((time.monotonic() - t0) * 1000)
            logger.warning(
                "cloud_ocr_failed",
                extra={"error_type": type(exc).__name__, "error": str(exc)},
            )
            raise

        self._last_processing_time_ms = result.processing_time_ms
        logger.info(
            "cloud_ocr_complete",
            extra={
                "words": result.word_count,
                "confidence": result.confidence,
                "duration_ms": result.processing_time_ms,
            },
        )
        return result

    def build_request(self, content: str) -> dict[str, Any]:
        return {
            "requests": [
                {
                    "image": {"content": content},
                    "features": [{"type": "TEXT_DETECTION", "maxResults": 1}],
                    "imageContext": {"languageHints": self._language_hints},
                }
            ]
        }

    async def _post(self, body: dict[str, Any]) -> Any:
        try:
            async with httpx.AsyncClient(timeout=self._timeout_s, transport=self._transport) as client:
                resp = await client.post(self._endpoint, params={"key": self._api_key}, json=body)
        except httpx.TransportError as exc:
            raise NetworkError(NETWORK_ERROR_MESSAGE) from exc

        if not resp.is_success:
            raise error_for_status(resp.status_code, _error_detail(resp))
        try:
            return resp.json()
        except ValueError as exc:
            raise error_for_status(502, "Malformed JSON in response") from exc

    def parse_response(self, payload: Any, *, processing_time_ms: int = 0) -> RecognitionResult:
        annotations = _annotations(payload)
        if not annotations:
            return RecognitionResult.from_words(
                "", (), source=RecognitionSource.CLOUD, processing_time_ms=processing_time_ms
            )

        full_text = str(annotations[0].get("description") or "").strip()
        words: list[RecognizedWord] = []
        try:
            for ann in annotations[1:]:
                text = str(ann.get("description") or "").strip()
                if not text:
                    continue
                poly = ann.get("boundingPoly") or {}
                vertices = poly.get("vertices") if isinstance(poly, dict) else None
                words.append(
                    RecognizedWord(
                        text=text,
                        confidence=score_to_confidence(ann.get("score")),
                        bbox=BoundingBox.from_vertices(vertices if isinstance(vertices, list) else []),
                    )
                )
        except (TypeError, ValueError, AttributeError, IndexError, KeyError) as exc:
            raise error_for_status(502, "Malformed response") from exc

        return RecognitionResult.from_words(
            full_text, words, source=RecognitionSource.CLOUD, processing_time_ms=processing_time_ms
        )

    def group_words_into_lines(self, words: list[RecognizedWord]) -> list[RecognizedLine]:
        return group_words_into_lines(words)

    async def test_credential(self) -> bool:
        if not self._initialized:
            raise StateError("Cloud vision OCR not initialized")
        try:
            await self.process_image(_PROBE_IMAGE, preprocess_image=False)
        except Exception as exc:
            logger.warning("cloud_credential_test_failed", extra={"error": str(exc)})
            return False
        return True

    def get_status(self) -> EngineStatus:
        return EngineStatus(
            initialized=self._initialized,
            has_credential=self._api_key is not None,
            credential_valid=self._initialized and self._api_key is not None,
            last_processing_time_ms=self._last_processing_time_ms,
        )

    async def cleanup(self) -> None:
        self._api_key = None
        self._initialized = False
        self._last_processing_time_ms = 0
        logger.info("cloud_ocr_cleaned_up")


def _error_detail(resp: httpx.Response) -> str:
    try:
        data = resp.json()
    except ValueError:
        return resp.reason_phrase
    if isinstance(data, dict):
        err = data.get("error")
        if isinstance(err, dict) and err.get("message"):
            return str(err["message"])
    return resp.reason_phrase


def _annotations(payload: Any) -> list[dict[str, Any]]:
    """``responses[0].textAnnotations``; a body of any other shape is a 502."""
    if not isinstance(payload, dict):
        raise error_for_status(502, "Malformed response")
    responses = payload.get("responses") or [{}]
    if not isinstance(responses, list) or not isinstance(responses[0] or {}, dict):
        raise error_for_status(502, "Malformed response")
    annotations = (responses[0] or {}).get("textAnnotations") or []
    if not isinstance(annotations, list) or not all(isinstance(a, dict) for a in annotations):
        raise error_for_status(502, "Malformed response")
    return annotations
