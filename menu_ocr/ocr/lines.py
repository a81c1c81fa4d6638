from __future__ import annotations

from collections.abc import Iterable

from menu_ocr.ocr.base_ocr import RecognizedLine, RecognizedWord


def group_words_into_lines(words: Iterable[RecognizedWord]) -> list[RecognizedLine]:
    """Cluster boxed words into reading-order lines.

    Words are visited top to bottom. A word joins the current line while its top
    edge does not go below the line's lowest bottom edge (the y-ranges overlap or
    touch); otherwise it opens a new line. Each line is then ordered left to
    right. Words without a bounding box never take part.
    """
    boxed = sorted(
        (w for w in words if w.bbox is not None),
        key=lambda w: (w.bbox.y0, w.bbox.x0),
    )

    groups: list[list[RecognizedWord]] = []
    bottom = 0.0
    for word in boxed:
        if groups and word.bbox.y0 <= bottom:
            groups[-1].append(word)
            bottom = max(bottom, word.bbox.y1)
        else:
            groups.append([word])
            bottom = word.bbox.y1

    return [
        RecognizedLine(words=tuple(sorted(group, key=lambda w: w.bbox.x0)))
        for group in groups
    ]
