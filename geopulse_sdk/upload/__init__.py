"""
geopulse_sdk.upload - Import file uploads
==========================================

- ImportUploader: picks single-request or chunked upload by file size
- ChunkedUploadOrchestrator: init / sequential chunks / finalize / abort
- UploadEndpoints: typed wrappers over the /upload endpoints
- Observers: progress reporting interface and helpers

"""

from geopulse_sdk.upload.models import ChunkAck, UploadSession, UploadStatus
from geopulse_sdk.upload.observers import (
    BaseUploadObserver,
    CallbackObserver,
    ObserverGroup,
    RecordingObserver,
    UploadObserver,
)
from geopulse_sdk.upload.progress import ProgressReader, ProgressTracker
from geopulse_sdk.upload.api import UploadEndpoints
from geopulse_sdk.upload.chunked import ChunkedUploadOrchestrator, UploadState
from geopulse_sdk.upload.importer import (
    CHUNK_THRESHOLD,
    ImportUploader,
    should_use_chunked_upload,
)

__all__ = [
    "ChunkAck",
    "UploadSession",
    "UploadStatus",
    "BaseUploadObserver",
    "CallbackObserver",
    "ObserverGroup",
    "RecordingObserver",
    "UploadObserver",
    "ProgressReader",
    "ProgressTracker",
    "UploadEndpoints",
    "ChunkedUploadOrchestrator",
    "UploadState",
    "CHUNK_THRESHOLD",
    "ImportUploader",
    "should_use_chunked_upload",
]
