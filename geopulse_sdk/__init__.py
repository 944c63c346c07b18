"""
GeoPulse Python SDK (geopulse_sdk)
==================================

An asynchronous client for the GeoPulse location-tracking API that keeps
callers clear of authentication staleness and uploads large import files
in resumable chunks.

Usage
-----
>>> from geopulse_sdk import ConnectionContext
>>> from geopulse_sdk.upload import RecordingObserver
>>>
>>> async with ConnectionContext() as conn:
...     # Plain API calls
...     tags = await conn.client.get("/period-tags")
...
...     # Import upload (chunked above 80 MiB)
...     job = await conn.uploader.upload("Records.json", "google-timeline")

Subpackages
-----------
- geopulse_sdk.core: Session, authentication, retry and HTTP execution
- geopulse_sdk.upload: Single-request and chunked import uploads

"""

__version__ = "0.1.0"

# Core exports - available at package root
from geopulse_sdk.core.session import (
    ClientConfig,
    Session,
    SessionStore,
    TransportMode,
)
from geopulse_sdk.core.errors import (
    ApiError,
    AuthExpiredError,
    ErrorKind,
    ProtocolViolationError,
    ServerRejectedError,
    TransientNetworkError,
    UploadCancelledError,
    classify,
)
from geopulse_sdk.core.client import GeoPulseClient
from geopulse_sdk.core.connection import ConnectionContext

# Convenience re-exports
from geopulse_sdk.upload import ChunkedUploadOrchestrator, ImportUploader

__all__ = [
    # Version
    "__version__",
    # Core
    "ClientConfig",
    "Session",
    "SessionStore",
    "TransportMode",
    "ApiError",
    "AuthExpiredError",
    "ErrorKind",
    "ProtocolViolationError",
    "ServerRejectedError",
    "TransientNetworkError",
    "UploadCancelledError",
    "classify",
    "GeoPulseClient",
    "ConnectionContext",
    # Upload
    "ChunkedUploadOrchestrator",
    "ImportUploader",
]
