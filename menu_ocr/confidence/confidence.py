"""Confidence arithmetic shared by the engines and the coordinator.

Confidences are integers in 0..100. Averages round half up (92.5 -> 93),
matching how scores are shown to users; Python's ``round`` would give 92.
"""
from __future__ import annotations

import math
from collections.abc import Iterable
from dataclasses import dataclass


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def clamp_confidence(value: float) -> int:
    return max(0, min(100, round_half_up(value)))


def score_to_confidence(score: float | None) -> int | None:
    """Scale an engine score in 0.0..1.0 to an integer 0..100."""
    if score is None:
        return None
    return clamp_confidence(float(score) * 100)


def mean_confidence(confidences: Iterable[int | None]) -> int:
    """Rounded mean of the scored values; unscored (``None``) entries are skipped."""
    scored = [c for c in confidences if c is not None]
    if not scored:
        return 0
    return clamp_confidence(sum(scored) / len(scored))


@dataclass(frozen=True)
class EngineComparison:
    confidence_difference: int      # cloud - local
    time_difference: int            # ms, cloud - local
    word_count_difference: int      # cloud - local
    recommended: str                # "cloud" | "local"


def compare_engines(
    *,
    cloud_confidence: int,
    local_confidence: int,
    cloud_time_ms: int,
    local_time_ms: int,
    cloud_word_count: int,
    local_word_count: int,
) -> EngineComparison:
    """Diff two engine runs on the same image. Ties favour the cloud engine."""
    return EngineComparison(
        confidence_difference=cloud_confidence - local_confidence,
        time_difference=cloud_time_ms - local_time_ms,
        word_count_difference=cloud_word_count - local_word_count,
        recommended="cloud" if cloud_confidence >= local_confidence else "local",
    )
