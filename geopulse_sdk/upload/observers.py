"""
geopulse_sdk.upload.observers - Upload progress observers
==========================================================

Observers receive overall progress in percent (0-100), a notification per
acknowledged chunk, and the error that ended a failed upload.
"""

from __future__ import annotations

import logging
from typing import Callable, List, Optional, Protocol, Tuple

logger = logging.getLogger("geopulse_sdk.upload")


class UploadObserver(Protocol):
    def on_progress(self, percent: float) -> None: ...

    def on_chunk_complete(self, index: int, total: int) -> None: ...

    def on_error(self, error: BaseException) -> None: ...


class BaseUploadObserver:
    """No-op observer; override what you need."""

    def on_progress(self, percent: float) -> None:
        pass

    def on_chunk_complete(self, index: int, total: int) -> None:
        pass

    def on_error(self, error: BaseException) -> None:
        pass


class CallbackObserver(BaseUploadObserver):
    """Adapts plain callables to the observer interface."""

    def __init__(
        self,
        on_progress: Optional[Callable[[float], None]] = None,
        on_chunk_complete: Optional[Callable[[int, int], None]] = None,
        on_error: Optional[Callable[[BaseException], None]] = None,
    ) -> None:
        self._progress = on_progress
        self._chunk = on_chunk_complete
        self._error = on_error

    def on_progress(self, percent: float) -> None:
        if self._progress:
            self._progress(percent)

    def on_chunk_complete(self, index: int, total: int) -> None:
        if self._chunk:
            self._chunk(index, total)

    def on_error(self, error: BaseException) -> None:
        if self._error:
            self._error(error)


class RecordingObserver(BaseUploadObserver):
    """Keeps every notification; handy in tests and for post-mortems."""

    def __init__(self) -> None:
        self.progress: List[float] = []
        self.chunks: List[Tuple[int, int]] = []
        self.errors: List[BaseException] = []

    def on_progress(self, percent: float) -> None:
        self.progress.append(percent)

    def on_chunk_complete(self, index: int, total: int) -> None:
        self.chunks.append((index, total))

    def on_error(self, error: BaseException) -> None:
        self.errors.append(error)


class ObserverGroup(BaseUploadObserver):
    """
    Fans notifications out to several observers.

    A failing observer is logged and skipped so it cannot break the upload
    or starve the others.
    """

    def __init__(self, *observers: UploadObserver) -> None:
        self._observers: List[UploadObserver] = [o for o in observers if o is not None]

    def add(self, observer: UploadObserver) -> None:
        self._observers.append(observer)

    def __len__(self) -> int:
        return len(self._observers)

    def _each(self, name: str, *args) -> None:
        for observer in self._observers:
            try:
                getattr(observer, name)(*args)
            except Exception:
                logger.exception("Upload observer %r failed in %s", observer, name)

    def on_progress(self, percent: float) -> None:
        self._each("on_progress", percent)

    def on_chunk_complete(self, index: int, total: int) -> None:
        self._each("on_chunk_complete", index, total)

    def on_error(self, error: BaseException) -> None:
        self._each("on_error", error)
