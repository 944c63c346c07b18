"""
geopulse_sdk.upload.chunked - Chunked upload orchestration
===========================================================

Uploads a file too large for one request as a sequence of server-sized
chunks:

    IDLE -> INITIALIZING -> UPLOADING -> COMPLETING -> DONE
                 \\              |             /
                  +-----> ABORTED / FAILED <--+

Chunks are sent strictly one after another, each retried with bounded
exponential backoff on transient failures. Any unrecoverable failure or an
explicit ``cancel()`` triggers a best-effort server-side abort; the local
session is dropped whatever the abort call returns.
"""

from __future__ import annotations

import asyncio
import logging
import os
from contextlib import contextmanager
from enum import Enum
from pathlib import Path
from typing import IO, Any, Awaitable, Callable, Dict, Iterator, Optional, Tuple, Union

from geopulse_sdk.core.client import GeoPulseClient
from geopulse_sdk.core.errors import ProtocolViolationError, UploadCancelledError
from geopulse_sdk.core.retry import RetryPolicy
from geopulse_sdk.upload.api import UploadEndpoints
from geopulse_sdk.upload.models import ChunkAck, UploadSession
from geopulse_sdk.upload.observers import BaseUploadObserver, UploadObserver
from geopulse_sdk.upload.progress import ProgressTracker

logger = logging.getLogger("geopulse_sdk.upload")

Source = Union[str, Path, IO[bytes]]


class UploadState(str, Enum):
    IDLE = "idle"
    INITIALIZING = "initializing"
    UPLOADING = "uploading"
    COMPLETING = "completing"
    DONE = "done"
    ABORTED = "aborted"
    FAILED = "failed"


_TRANSITIONS = {
    UploadState.IDLE: {UploadState.INITIALIZING},
    UploadState.INITIALIZING: {UploadState.UPLOADING, UploadState.ABORTED, UploadState.FAILED},
    UploadState.UPLOADING: {UploadState.COMPLETING, UploadState.ABORTED, UploadState.FAILED},
    UploadState.COMPLETING: {UploadState.DONE, UploadState.ABORTED, UploadState.FAILED},
    UploadState.DONE: set(),
    UploadState.ABORTED: set(),
    UploadState.FAILED: set(),
}


@contextmanager
def open_source(source: Source, file_name: Optional[str] = None) -> Iterator[Tuple[IO[bytes], str, int, int]]:
    """
    Yield ``(stream, name, size, origin)`` for a path or a seekable binary stream.

    ``origin`` is the stream position the upload starts from; ``size`` counts
    the bytes after it. Paths are opened (and closed) here; caller-owned
    streams are left open.
    """
    if isinstance(source, (str, Path)):
        path = Path(source)
        with path.open("rb") as fh:
            yield fh, file_name or path.name, path.stat().st_size, 0
        return
    start = source.tell()
    size = source.seek(0, os.SEEK_END) - start
    source.seek(start)
    name = file_name or Path(str(getattr(source, "name", "upload"))).name
    yield source, name, size, start


class ChunkedUploadOrchestrator:
    """
    Drives one chunked upload from init to finalize.

    Instances are single-use: each owns exactly one upload session.

    Parameters
    ----------
    client : GeoPulseClient
        Authenticated API client
    policy : RetryPolicy, optional
        Per-chunk retry policy; defaults to the client's configuration
        (3 attempts, 1s base delay, doubling)
    observer : UploadObserver, optional
        Receives progress, chunk completion and error notifications
    sleep : callable
        Awaitable sleep used between chunk attempts

    Examples
    --------
    >>> orchestrator = ChunkedUploadOrchestrator(client, observer=RecordingObserver())
    >>> job = await orchestrator.upload("big-export.json", "google-timeline")
    """

    def __init__(
        self,
        client: GeoPulseClient,
        *,
        policy: Optional[RetryPolicy] = None,
        observer: Optional[UploadObserver] = None,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
    ) -> None:
        cfg = client.cfg
        self.endpoints = UploadEndpoints(client)
        self.policy = policy or RetryPolicy(
            max_attempts=cfg.chunk_max_attempts,
            base_delay=cfg.chunk_base_delay,
            multiplier=cfg.chunk_backoff,
        )
        self.observer: UploadObserver = observer or BaseUploadObserver()
        self._sleep = sleep or asyncio.sleep
        self.state = UploadState.IDLE
        self.session: Optional[UploadSession] = None
        self.last_error: Optional[BaseException] = None
        self._cancelled = False
        self._last_ack: Optional[ChunkAck] = None

    # ---------------- state ----------------

    def _transition(self, new: UploadState) -> None:
        if new not in _TRANSITIONS[self.state]:
            raise RuntimeError(f"Illegal upload transition {self.state.value} -> {new.value}")
        logger.debug("Upload state %s -> %s", self.state.value, new.value)
        self.state = new

    def cancel(self) -> None:
        """
        Request cancellation.

        Takes effect before the next chunk attempt; the in-flight request is
        not interrupted.
        """
        if self.state not in (UploadState.DONE, UploadState.ABORTED, UploadState.FAILED):
            self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def _check_cancelled(self) -> None:
        if self._cancelled:
            raise UploadCancelledError("Upload cancelled by caller")

    # ---------------- orchestration ----------------

    async def upload(
        self,
        source: Source,
        import_format: str,
        options: Optional[Dict[str, Any]] = None,
        *,
        file_name: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Upload ``source`` and return the server's job descriptor.

        Raises
        ------
        UploadCancelledError
            If ``cancel()`` was called before the upload finished.
        ApiError
            The last underlying error of a failed step, after the session was
            aborted server-side.
        """
        if self.state is not UploadState.IDLE:
            raise RuntimeError("ChunkedUploadOrchestrator instances are single-use")

        with open_source(source, file_name) as (stream, name, size, origin):
            try:
                self._transition(UploadState.INITIALIZING)
                self._check_cancelled()
                self.session = await self.endpoints.init_session(name, size, import_format, options)
                logger.info(
                    "Upload %s opened for %s: %d bytes in %d chunk(s) of %d",
                    self.session.upload_id, name, size,
                    self.session.total_chunks, self.session.chunk_size_bytes,
                )

                self._transition(UploadState.UPLOADING)
                tracker = ProgressTracker(self.session.total_chunks, self.observer)
                for index in range(self.session.total_chunks):
                    self._check_cancelled()
                    await self._upload_chunk(stream, origin, size, index, tracker)

                self._transition(UploadState.COMPLETING)
                self._check_cancelled()
                await self._confirm_all_received()
                result = await self.endpoints.complete(self.session.upload_id)
                tracker.finish()
                logger.info("Upload %s completed", self.session.upload_id)
                self.session = None
                self._transition(UploadState.DONE)
                return result

            except UploadCancelledError as e:
                self.last_error = e
                await self._abort(UploadState.ABORTED)
                self.observer.on_error(e)
                raise
            except asyncio.CancelledError:
                await self._abort(UploadState.ABORTED)
                raise
            except Exception as e:
                self.last_error = e
                await self._abort(UploadState.FAILED)
                self.observer.on_error(e)
                raise

    async def _upload_chunk(
        self, stream: IO[bytes], origin: int, size: int, index: int, tracker: ProgressTracker,
    ) -> None:
        session = self.session
        start, end = session.byte_range(index, size)
        stream.seek(origin + start)
        data = stream.read(end - start)
        total = session.total_chunks

        def on_bytes(sent: int, length: int) -> None:
            tracker.chunk_bytes(index, sent, length)

        async def attempt() -> ChunkAck:
            self._check_cancelled()
            return await self.endpoints.send_chunk(session.upload_id, index, data, on_bytes)

        def on_retry(n: int, delay: float, error: BaseException) -> None:
            logger.warning(
                "Chunk %d/%d of upload %s failed (attempt %d/%d): %s; retrying in %.1fs",
                index + 1, total, session.upload_id, n, self.policy.max_attempts, error, delay,
            )

        ack = await self.policy.run(attempt, sleep=self._sleep, on_retry=on_retry)
        session.record(ack.chunk_index)
        self._last_ack = ack
        tracker.chunk_done(index)
        self.observer.on_chunk_complete(index, total)

    async def _confirm_all_received(self) -> None:
        session = self.session
        ack = self._last_ack
        if session.complete_eligible and ack is not None and ack.received_chunks == session.total_chunks:
            return
        status = await self.endpoints.status(session.upload_id)
        if status.received_chunks != session.total_chunks:
            raise ProtocolViolationError(
                f"Upload {session.upload_id}: server holds {status.received_chunks} "
                f"of {session.total_chunks} chunks after transmission",
            )

    async def _abort(self, final: UploadState) -> None:
        session, self.session = self.session, None
        self._transition(final)
        if session is None:
            return
        logger.warning("Aborting upload %s (%s)", session.upload_id, final.value)
        await self.endpoints.abort(session.upload_id)
