"""
geopulse_sdk.upload.progress - Byte-level progress reporting
=============================================================
"""

from __future__ import annotations

import io
import os
from typing import IO, Callable, Optional

from geopulse_sdk.upload.observers import UploadObserver

# Share of the bar available to chunk transmission; the rest is finalize.
TRANSFER_SHARE = 99.0


class ProgressReader:
    """
    Read-only binary stream wrapper reporting bytes consumed.

    ``httpx`` renders multipart file fields by seeking to the start and then
    calling ``read`` in blocks, so each block read is a good proxy for bytes
    handed to the network. ``fileno`` is deliberately not exposed so the
    length is measured through ``seek``/``tell`` on the wrapped stream.

    Parameters
    ----------
    raw : binary file object
        Seekable stream to wrap
    on_read : callable, optional
        Called as ``on_read(bytes_read, total_bytes)`` after every read
    """

    def __init__(self, raw: IO[bytes], on_read: Optional[Callable[[int, int], None]] = None) -> None:
        self._raw = raw
        self._on_read = on_read
        self._origin = raw.tell()
        self._total = raw.seek(0, os.SEEK_END) - self._origin
        raw.seek(self._origin)
        self.name = getattr(raw, "name", None)

    @classmethod
    def from_bytes(cls, data: bytes, on_read: Optional[Callable[[int, int], None]] = None) -> "ProgressReader":
        return cls(io.BytesIO(data), on_read)

    @property
    def total(self) -> int:
        return self._total

    def read(self, size: int = -1) -> bytes:
        chunk = self._raw.read(size)
        if chunk and self._on_read is not None:
            self._on_read(self._raw.tell() - self._origin, self._total)
        return chunk

    def seek(self, offset: int, whence: int = os.SEEK_SET) -> int:
        if whence == os.SEEK_SET:
            offset += self._origin
        return self._raw.seek(offset, whence) - self._origin

    def tell(self) -> int:
        return self._raw.tell() - self._origin


class ProgressTracker:
    """
    Turns chunk/byte counts into a monotonic overall percentage.

    ``overall = sent/total * 99 + current_bytes/current_size * 99/total``; the
    final percent is reserved for server-side reassembly and reported by
    ``finish``. Values never decrease, so a retried chunk that re-reads its
    bytes from zero does not move the bar backwards.
    """

    def __init__(self, total_chunks: int, observer: Optional[UploadObserver] = None) -> None:
        self.total_chunks = max(1, total_chunks)
        self.observer = observer
        self.last = 0.0

    def _emit(self, value: float) -> None:
        value = round(min(value, TRANSFER_SHARE), 2)
        if value > self.last:
            self.last = value
            if self.observer is not None:
                self.observer.on_progress(value)

    def chunk_bytes(self, index: int, sent: int, size: int) -> None:
        per_chunk = TRANSFER_SHARE / self.total_chunks
        fraction = sent / size if size else 1.0
        self._emit(index * per_chunk + fraction * per_chunk)

    def chunk_done(self, index: int) -> None:
        self._emit((index + 1) * TRANSFER_SHARE / self.total_chunks)

    def finish(self) -> None:
        self.last = 100.0
        if self.observer is not None:
            self.observer.on_progress(100.0)
