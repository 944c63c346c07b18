"""
geopulse_sdk.core.connection - High-level connection management
================================================================

Provides a ConnectionContext that builds a fully wired client from explicit
arguments or ``GEOPULSE_*`` environment variables.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Optional, Union

from geopulse_sdk.core.client import GeoPulseClient
from geopulse_sdk.core.session import ClientConfig


class ConnectionContext:
    """
    High-level connection manager for the GeoPulse API.

    Resolves configuration from parameters or the environment, builds one
    ``GeoPulseClient`` (and with it the single session, refresh coordinator
    and retry wrapper for the process), and optionally signs in on entry.

    Parameters
    ----------
    base_url : str, optional
        API root. Falls back to GEOPULSE_BASE_URL env var.
    email : str, optional
        Login email. Falls back to GEOPULSE_EMAIL env var.
    password : str, optional
        Login password. Falls back to GEOPULSE_PASSWORD env var.
    session_file : str or Path, optional
        Session persistence file. Falls back to GEOPULSE_SESSION_FILE.
    verify : bool, optional
        SSL verification. Falls back to GEOPULSE_VERIFY_TLS env var.
    timeout : float, optional
        Request timeout in seconds. Falls back to GEOPULSE_TIMEOUT (60).

    Examples
    --------
    >>> async with ConnectionContext() as conn:   # reads GEOPULSE_* env vars
    ...     job = await conn.uploader.upload("export.json", "geopulse")
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        email: Optional[str] = None,
        password: Optional[str] = None,
        session_file: Optional[Union[str, Path]] = None,
        verify: Optional[bool] = None,
        timeout: Optional[float] = None,
    ) -> None:
        self._base_url = (base_url or os.environ.get("GEOPULSE_BASE_URL", "")).rstrip("/")
        self._email = email or os.environ.get("GEOPULSE_EMAIL", "")
        self._password = password or os.environ.get("GEOPULSE_PASSWORD", "")
        self._session_file = session_file or os.environ.get("GEOPULSE_SESSION_FILE") or None

        if verify is not None:
            self._verify = verify
        else:
            self._verify = os.environ.get("GEOPULSE_VERIFY_TLS", "true").lower() != "false"

        if timeout is not None:
            self._timeout = float(timeout)
        else:
            self._timeout = float(os.environ.get("GEOPULSE_TIMEOUT", "60"))

        if not self._base_url:
            raise ValueError(
                "Missing base_url. Set GEOPULSE_BASE_URL environment variable "
                "or pass base_url parameter."
            )

        self._client: Optional[GeoPulseClient] = None
        self._uploader = None

    @property
    def config(self) -> ClientConfig:
        return ClientConfig(
            base_url=self._base_url,
            timeout=self._timeout,
            verify=self._verify,
            session_file=self._session_file,
        )

    @property
    def client(self) -> GeoPulseClient:
        """Get or create the underlying API client."""
        if self._client is None:
            self._client = GeoPulseClient(self.config)
        return self._client

    @property
    def uploader(self):
        """Get or create the import uploader bound to this connection."""
        # Import here to avoid circular imports
        from geopulse_sdk.upload.importer import ImportUploader

        if self._uploader is None:
            self._uploader = ImportUploader(self.client)
        return self._uploader

    @property
    def has_credentials(self) -> bool:
        return bool(self._email and self._password)

    async def connect(self) -> GeoPulseClient:
        """Sign in with the configured credentials unless a session already exists."""
        client = self.client
        if self.has_credentials and not client.session.has_identity:
            await client.login(self._email, self._password)
        return client

    async def close(self) -> None:
        """Close the connection."""
        if self._client is not None:
            await self._client.close()
            self._client = None
            self._uploader = None

    async def __aenter__(self) -> "ConnectionContext":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    @property
    def base_url(self) -> str:
        """The configured base URL."""
        return self._base_url
