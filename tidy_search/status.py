"""Indexing status values and the channel that carries them.

The channel keeps only the latest value. Subscribers are called
synchronously, in emission order, on the publishing thread.
"""

import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Callable

logger = logging.getLogger(__name__)


class RunState(str, Enum):
    IDLE = "idle"
    INITIALIZING = "initializing"
    SCANNING = "scanning"
    PROCESSING = "processing"
    FINALIZING = "finalizing"
    COMPLETE = "complete"
    ERROR = "error"


class StatusMessage(str, Enum):
    IDLE = "index_status_idle"
    INITIALIZING = "index_status_initializing"
    LOADING_DB = "index_status_loading_db"
    READY = "index_status_ready"
    STARTING = "index_status_starting"
    FINDING_FILES = "index_status_finding_files"
    PROCESSING = "index_status_processing"
    FINALIZING = "index_status_finalizing"
    COMPLETE = "index_status_complete"
    ERROR = "index_status_error"
    MODEL_NOT_READY = "error_model_not_ready"
    MODEL_LOAD_FAILED = "error_loading_model"
    INVALID_FOLDER = "error_invalid_folder"


_BUSY = {RunState.INITIALIZING, RunState.SCANNING, RunState.PROCESSING, RunState.FINALIZING}


@dataclass(frozen=True)
class IndexStatus:
    state: RunState = RunState.IDLE
    message: StatusMessage = StatusMessage.IDLE
    processed: int = 0
    total: int = 0

    @property
    def is_processing(self) -> bool:
        return self.state in _BUSY

    def to_dict(self) -> dict:
        return {
            "state": self.state.value,
            "message": self.message.value,
            "processed": self.processed,
            "total": self.total,
            "is_processing": self.is_processing,
        }


StatusCallback = Callable[[IndexStatus], None]


class StatusChannel:
    """Single-writer, multi-subscriber holder of the latest IndexStatus."""

    def __init__(self, initial: IndexStatus | None = None):
        self._latest = initial or IndexStatus()
        self._subscribers: list[StatusCallback] = []
        self._lock = threading.Lock()

    @property
    def latest(self) -> IndexStatus:
        return self._latest

    def publish(self, status: IndexStatus) -> None:
        with self._lock:
            self._latest = status
            subscribers = list(self._subscribers)
        for callback in subscribers:
            try:
                callback(status)
            except Exception:
                logger.warning("Status subscriber failed", exc_info=True)

    def subscribe(self, callback: StatusCallback) -> Callable[[], None]:
        """Register a callback; returns a function that removes it."""
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe
