"""
geopulse_sdk.upload.models - Pydantic models for the chunked upload protocol
=============================================================================
"""

from typing import Any, Optional, Set, Tuple

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from geopulse_sdk.core.errors import ProtocolViolationError


class _WireModel(BaseModel):
    """camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class UploadSession(_WireModel):
    """
    Server-side upload session as returned by ``/upload/init``.

    ``total_chunks`` and ``chunk_size_bytes`` are authoritative; the client
    only tracks which chunk indices the server has acknowledged.
    """

    upload_id: str = Field(min_length=1)
    total_chunks: int = Field(gt=0)
    chunk_size_bytes: int = Field(gt=0)
    expires_at: Optional[Any] = None
    received_chunk_indices: Set[int] = Field(default_factory=set)

    def byte_range(self, index: int, file_size: int) -> Tuple[int, int]:
        """Half-open ``[start, end)`` byte range of chunk ``index``."""
        start = index * self.chunk_size_bytes
        end = min(file_size, start + self.chunk_size_bytes)
        return start, end

    def record(self, index: int) -> None:
        """Mark chunk ``index`` as acknowledged by the server."""
        if not 0 <= index < self.total_chunks:
            raise ProtocolViolationError(
                f"Server acknowledged chunk {index} outside [0, {self.total_chunks})"
            )
        self.received_chunk_indices.add(index)

    @property
    def complete_eligible(self) -> bool:
        return len(self.received_chunk_indices) == self.total_chunks


class ChunkAck(_WireModel):
    """Response to ``POST /upload/{id}/chunk``."""

    chunk_index: int
    received_chunks: int
    total_chunks: int
    progress: Optional[float] = None
    is_complete: bool = False


class UploadStatus(_WireModel):
    """Response to ``GET /upload/{id}/status``."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    received_chunks: int
    total_chunks: int
