"""
geopulse_sdk.upload.api - Chunked upload endpoints
===================================================

Thin, typed wrappers over the ``/upload`` endpoints. Retry, ordering and
abort policy live in ``geopulse_sdk.upload.chunked``.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Callable, Dict, Optional

from geopulse_sdk.core.client import GeoPulseClient
from geopulse_sdk.core.envelope import parse_model
from geopulse_sdk.core.errors import ApiError, ProtocolViolationError
from geopulse_sdk.upload.models import ChunkAck, UploadSession, UploadStatus
from geopulse_sdk.upload.progress import ProgressReader

logger = logging.getLogger("geopulse_sdk.upload")


class UploadEndpoints:
    """
    Typed access to the chunked upload protocol.

    Parameters
    ----------
    client : GeoPulseClient
        Authenticated API client; every call goes through its retry wrapper
    """

    def __init__(self, client: GeoPulseClient) -> None:
        self.client = client

    async def init_session(
        self,
        file_name: str,
        file_size: int,
        import_format: str,
        options: Optional[Dict[str, Any]] = None,
    ) -> UploadSession:
        """
        Open an upload session.

        The client never sends its own chunk count; the server decides
        ``totalChunks`` and ``chunkSizeBytes`` from its configuration.
        """
        payload = await self.client.post(
            "/upload/init",
            {
                "fileName": file_name,
                "fileSize": file_size,
                "format": import_format,
                "options": json.dumps(options or {}),
            },
        )
        session = parse_model(UploadSession, payload, url="/upload/init")
        if session.total_chunks * session.chunk_size_bytes < file_size:
            raise ProtocolViolationError(
                f"Upload session {session.upload_id} covers "
                f"{session.total_chunks} x {session.chunk_size_bytes} bytes, "
                f"file has {file_size}",
                url="/upload/init",
            )
        return session

    async def send_chunk(
        self,
        upload_id: str,
        index: int,
        data: bytes,
        on_bytes: Optional[Callable[[int, int], None]] = None,
    ) -> ChunkAck:
        endpoint = f"/upload/{upload_id}/chunk"
        reader = ProgressReader.from_bytes(data, on_bytes)
        payload = await self.client.post(
            endpoint,
            form={"chunkIndex": str(index)},
            files={"chunk": (f"chunk_{index}", reader, "application/octet-stream")},
        )
        ack = parse_model(ChunkAck, payload, url=endpoint)
        if ack.chunk_index != index:
            raise ProtocolViolationError(
                f"Sent chunk {index} but server acknowledged {ack.chunk_index}",
                url=endpoint,
            )
        return ack

    async def complete(self, upload_id: str) -> Dict[str, Any]:
        """Finalize the upload; returns the opaque job descriptor."""
        payload = await self.client.post(f"/upload/{upload_id}/complete")
        if not isinstance(payload, dict):
            raise ProtocolViolationError(
                f"Expected a JSON object from /upload/{upload_id}/complete",
                url=f"/upload/{upload_id}/complete",
            )
        job = payload.get("jobDescriptor")
        return job if isinstance(job, dict) else payload

    async def status(self, upload_id: str) -> UploadStatus:
        endpoint = f"/upload/{upload_id}/status"
        payload = await self.client.get(endpoint)
        return parse_model(UploadStatus, payload, url=endpoint)

    async def abort(self, upload_id: str) -> bool:
        """Best-effort abort; failures are logged and reported as False."""
        try:
            payload = await self.client.delete(f"/upload/{upload_id}")
        except ApiError as e:
            logger.warning("Failed to abort upload %s: %s", upload_id, e)
            return False
        ok = bool(payload.get("success", True)) if isinstance(payload, dict) else True
        logger.info("Upload %s aborted (server ack: %s)", upload_id, ok)
        return ok
