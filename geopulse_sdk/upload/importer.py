"""
geopulse_sdk.upload.importer - Import file upload
==================================================

Chooses between a single multipart request and the chunked protocol based
on file size alone.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional

from geopulse_sdk.core.client import GeoPulseClient
from geopulse_sdk.core.retry import RetryPolicy
from geopulse_sdk.core.session import MIB
from geopulse_sdk.upload.chunked import ChunkedUploadOrchestrator, Source, open_source
from geopulse_sdk.upload.observers import BaseUploadObserver, UploadObserver
from geopulse_sdk.upload.progress import ProgressReader, ProgressTracker

logger = logging.getLogger("geopulse_sdk.upload")

CHUNK_THRESHOLD = 80 * MIB


def should_use_chunked_upload(file_size: int, threshold: int = CHUNK_THRESHOLD) -> bool:
    """
    True when a file is too large for a single request.

    Examples
    --------
    >>> should_use_chunked_upload(85 * 1024 * 1024)
    True
    >>> should_use_chunked_upload(50 * 1024 * 1024)
    False
    """
    return file_size > threshold


class ImportUploader:
    """
    Uploads location-history files for import.

    Parameters
    ----------
    client : GeoPulseClient
        Authenticated API client
    threshold : int, optional
        Size above which the chunked protocol is used; defaults to
        ``client.cfg.chunk_threshold_bytes``
    policy : RetryPolicy, optional
        Chunk retry policy forwarded to the orchestrator
    """

    def __init__(
        self,
        client: GeoPulseClient,
        *,
        threshold: Optional[int] = None,
        policy: Optional[RetryPolicy] = None,
    ) -> None:
        self.client = client
        self.threshold = threshold if threshold is not None else client.cfg.chunk_threshold_bytes
        self.policy = policy
        self.current: Optional[ChunkedUploadOrchestrator] = None

    def should_use_chunked_upload(self, file_size: int) -> bool:
        return should_use_chunked_upload(file_size, self.threshold)

    def cancel(self) -> None:
        """Cancel the chunked upload in progress, if any."""
        if self.current is not None:
            self.current.cancel()

    async def upload(
        self,
        source: Source,
        import_format: str,
        options: Optional[Dict[str, Any]] = None,
        *,
        observer: Optional[UploadObserver] = None,
        file_name: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Upload an import file and return the server's job descriptor.

        Parameters
        ----------
        source : str, Path or binary file object
            File to upload
        import_format : str
            Import format, e.g. "gpx", "owntracks", "google-timeline"
        options : dict, optional
            Import options passed through to the server
        observer : UploadObserver, optional
            Progress observer
        """
        observer = observer or BaseUploadObserver()
        with open_source(source, file_name) as (stream, name, size, _):
            if self.should_use_chunked_upload(size):
                logger.info("Uploading %s (%d bytes) in chunks", name, size)
                self.current = ChunkedUploadOrchestrator(
                    self.client, policy=self.policy, observer=observer, sleep=self.client.sleep,
                )
                try:
                    return await self.current.upload(stream, import_format, options, file_name=name)
                finally:
                    self.current = None
            logger.info("Uploading %s (%d bytes) in a single request", name, size)
            return await self._upload_single(stream, name, import_format, options, observer)

    async def _upload_single(
        self,
        stream,
        name: str,
        import_format: str,
        options: Optional[Dict[str, Any]],
        observer: UploadObserver,
    ) -> Dict[str, Any]:
        tracker = ProgressTracker(1, observer)

        def on_read(sent: int, total: int) -> None:
            tracker.chunk_bytes(0, sent, total)

        reader = ProgressReader(stream, on_read)
        try:
            result = await self.client.upload_file(
                f"/import/{import_format}/upload",
                reader,
                filename=name,
                form={"options": json.dumps(options or {})},
            )
        except Exception as e:
            observer.on_error(e)
            raise
        tracker.finish()
        return result
