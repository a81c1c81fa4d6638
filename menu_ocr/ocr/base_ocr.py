from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from functools import cached_property
from typing import Any, Union

from menu_ocr.confidence.confidence import mean_confidence
from menu_ocr.core.progress import ProgressListener

# Raw encoded image bytes, or a ``data:image/...;base64,`` URL.
ImageInput = Union[bytes, bytearray, str]


class RecognitionSource(str, Enum):
    CLOUD = "cloud"
    LOCAL = "local"
    CLOUD_PRIMARY = "cloud_primary"
    LOCAL_BACKUP = "local_backup"
    LOCAL_FALLBACK = "local_fallback"
    LOCAL_ONLY = "local_only"


@dataclass(frozen=True)
class BoundingBox:
    x0: float
    y0: float
    x1: float
    y1: float

    @classmethod
    def from_vertices(cls, vertices: list[dict[str, Any]] | list[list[float]]) -> BoundingBox | None:
        """Box around a polygon given as ``[{"x":..,"y":..}]`` or ``[[x, y], ...]``."""
        if not vertices:
            return None
        xs: list[float] = []
        ys: list[float] = []
        for v in vertices:
            if isinstance(v, dict):
                # the cloud API omits zero coordinates
                xs.append(float(v.get("x", 0) or 0))
                ys.append(float(v.get("y", 0) or 0))
            else:
                xs.append(float(v[0]))
                ys.append(float(v[1]))
        return cls(x0=min(xs), y0=min(ys), x1=max(xs), y1=max(ys))


@dataclass(frozen=True)
class RecognizedWord:
    text: str
    confidence: int | None = None   # 0..100, None when the engine gave no score
    bbox: BoundingBox | None = None


@dataclass(frozen=True)
class RecognizedLine:
    words: tuple[RecognizedWord, ...]

    @property
    def text(self) -> str:
        return " ".join(w.text for w in self.words)

    @property
    def confidence(self) -> int:
        return mean_confidence(w.confidence for w in self.words)

    @property
    def word_count(self) -> int:
        return len(self.words)


@dataclass(frozen=True)
class ProcessingMetadata:
    source: RecognitionSource
    fallback_reason: str | None
    elapsed_ms: int
    cloud_available: bool
    timestamp: str  # ISO-8601, UTC


@dataclass(frozen=True)
class RecognitionResult:
    full_text: str
    words: tuple[RecognizedWord, ...] = ()
    confidence: int = 0
    source: RecognitionSource = RecognitionSource.LOCAL
    processing_time_ms: int = 0
    processing: ProcessingMetadata | None = None

    @classmethod
    def from_words(
        cls,
        full_text: str,
        words: list[RecognizedWord] | tuple[RecognizedWord, ...],
        *,
        source: RecognitionSource,
        processing_time_ms: int = 0,
    ) -> RecognitionResult:
        words = tuple(words)
        return cls(
            full_text=full_text,
            words=words,
            confidence=mean_confidence(w.confidence for w in words),
            source=source,
            processing_time_ms=processing_time_ms,
        )

    @property
    def word_count(self) -> int:
        return len(self.words)

    @cached_property
    def lines(self) -> list[RecognizedLine]:
        from menu_ocr.ocr.lines import group_words_into_lines

        return group_words_into_lines(self.words)


@dataclass(frozen=True)
class EngineStatus:
    initialized: bool = False
    has_credential: bool = False
    credential_valid: bool = False
    last_processing_time_ms: int = 0
    details: dict[str, Any] = field(default_factory=dict)


class OCREngine:
    """Capability shared by the cloud and local engines."""

    async def initialize(self, progress: ProgressListener | None = None) -> None:
        raise NotImplementedError

    async def process_image(self, image: ImageInput, **options: Any) -> RecognitionResult:
        raise NotImplementedError

    def get_status(self) -> EngineStatus:
        raise NotImplementedError

    async def cleanup(self) -> None:
        raise NotImplementedError
