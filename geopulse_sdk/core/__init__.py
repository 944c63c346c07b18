"""
geopulse_sdk.core - Core connectivity and authentication
=========================================================

This module provides the foundational classes for talking to GeoPulse:

- ClientConfig: Connection and retry configuration
- SessionStore / AuthModeDetector: Shared auth state and transport mode
- RequestExecutor: One HTTP call with header, CSRF and expiry handling
- TokenRefreshCoordinator: Single-flight credential refresh
- RetryingRequestWrapper / RetryPolicy: Retry behaviours
- GeoPulseClient: The get/post/put/delete/download/upload_file surface
- ConnectionContext: High-level connection manager

"""

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
from geopulse_sdk.core.session import (
    AuthModeDetector,
    ClientConfig,
    LoginResult,
    Session,
    SessionStore,
    TransportMode,
)
from geopulse_sdk.core.executor import RequestExecutor
from geopulse_sdk.core.refresh import TokenRefreshCoordinator
from geopulse_sdk.core.retry import RetryingRequestWrapper, RetryPolicy
from geopulse_sdk.core.client import DownloadResult, GeoPulseClient
from geopulse_sdk.core.connection import ConnectionContext

__all__ = [
    "ApiError",
    "AuthExpiredError",
    "ErrorKind",
    "ProtocolViolationError",
    "ServerRejectedError",
    "TransientNetworkError",
    "UploadCancelledError",
    "classify",
    "AuthModeDetector",
    "ClientConfig",
    "LoginResult",
    "Session",
    "SessionStore",
    "TransportMode",
    "RequestExecutor",
    "TokenRefreshCoordinator",
    "RetryingRequestWrapper",
    "RetryPolicy",
    "DownloadResult",
    "GeoPulseClient",
    "ConnectionContext",
]
