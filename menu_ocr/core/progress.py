"""Progress events and the observer that fans them out to listeners."""
from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProgressEvent:
    status: str          # starting | loading | processing | recognizing text | complete | failed
    message: str
    progress: float      # 0..100 at the coordinator level, 0..1 from the local engine


ProgressListener = Callable[[ProgressEvent], None]


class ProgressReporter:
    """Delivers each event to every subscribed listener, in subscription order.

    A listener that raises is logged and skipped; recognition carries on.
    """

    def __init__(self) -> None:
        self._listeners: list[ProgressListener] = []

    def subscribe(self, listener: ProgressListener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def unsubscribe(self, listener: ProgressListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def clear(self) -> None:
        self._listeners.clear()

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def emit(self, message: str, progress: float, *, status: str = "processing") -> None:
        event = ProgressEvent(status=status, message=message, progress=round(progress))
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("progress_listener_failed", extra={"progress_status": status})
