"""Stage reporting and cooperative cancellation for pipeline runs."""

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from .errors import PipelineCancelled

logger = logging.getLogger(__name__)


class Stage(str, Enum):
    """Pipeline stage."""

    LOADING = "loading"
    DIARIZING = "diarizing"
    TRANSCRIBING = "transcribing"
    DONE = "done"
    ERROR = "error"


@dataclass(frozen=True)
class ProgressEvent:
    """Stage transition or per-region progress tick."""

    stage: Stage
    current: int | None = None
    total: int | None = None
    message: str | None = None

    def to_dict(self) -> dict:
        data: dict = {"stage": self.stage.value}
        if self.current is not None:
            data["current"] = self.current
        if self.total is not None:
            data["total"] = self.total
        if self.message is not None:
            data["message"] = self.message
        return data


ProgressCallback = Callable[[ProgressEvent], None]


def notify(callback: ProgressCallback | None, event: ProgressEvent) -> None:
    """Deliver ``event`` to ``callback``; observer failures never abort a run."""
    if callback is None:
        return
    try:
        callback(event)
    except Exception:
        logger.exception("Progress callback failed for %s", event.stage.value)


class CancellationToken:
    """Thread-safe flag checked between units of work."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def check(self) -> None:
        """Raise PipelineCancelled if cancellation was requested."""
        if self._event.is_set():
            raise PipelineCancelled("Run cancelled")
