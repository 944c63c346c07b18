"""
geopulse_sdk.core.session - Session state and configuration
============================================================

Holds everything the SDK knows about the signed-in user:

- ClientConfig: connection and retry tuning
- TransportMode: cookie-based or bearer-token-based auth proof
- Session: the mutable auth state shared by all requests
- SessionStore: owner of the Session, optionally persisted to a JSON file
- AuthModeDetector: memoized inference of the transport mode
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, fields
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional, Union
import json
import logging

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator

logger = logging.getLogger("geopulse_sdk.auth")

MIB = 1024 * 1024


class TransportMode(str, Enum):
    """How the client proves its identity to the server."""

    COOKIE = "cookie"
    TOKEN = "token"


@dataclass
class ClientConfig:
    """
    Connection configuration for the GeoPulse API.

    Parameters
    ----------
    base_url : str
        API root, e.g. "https://geopulse.example.com/api"
    timeout : float
        Request timeout in seconds (default: 60.0)
    verify : bool or str
        SSL verification (True, False, or path to CA bundle)
    user_agent : str
        User-Agent header value
    expiry_buffer_ms : int
        Credentials expiring within this window are refreshed before use
    refresh_settle_delay : float
        Seconds to wait after a cookie refresh before retrying a request
    chunk_threshold_bytes : int
        Files strictly larger than this use the chunked upload protocol
    chunk_max_attempts : int
        Attempts per chunk before the upload is aborted
    chunk_base_delay : float
        Delay in seconds before the first chunk retry
    chunk_backoff : float
        Multiplier applied to the delay after each failed attempt
    session_file : str or Path, optional
        Where to persist session evidence between runs

    Examples
    --------
    >>> cfg = ClientConfig(base_url="https://geopulse.example.com/api")
    >>> cfg.chunk_threshold_bytes == 80 * 1024 * 1024
    True
    """
    base_url: str
    timeout: float = 60.0
    verify: Union[bool, str] = True
    user_agent: str = "geopulse-sdk/0.1"
    expiry_buffer_ms: int = 10_000
    refresh_settle_delay: float = 0.5
    chunk_threshold_bytes: int = 80 * MIB
    chunk_max_attempts: int = 3
    chunk_base_delay: float = 1.0
    chunk_backoff: float = 2.0
    session_file: Optional[Union[str, Path]] = None


@dataclass
class Session:
    """
    Mutable authentication state.

    In TOKEN mode ``access_token`` and ``expires_at_epoch_ms`` are set after
    login; in COOKIE mode the credentials live in the HTTP cookie jar and only
    the identity is kept here.
    """
    transport_mode: TransportMode = TransportMode.COOKIE
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    expires_at_epoch_ms: Optional[int] = None
    user_id: Optional[str] = None
    email: Optional[str] = None
    full_name: Optional[str] = None

    @property
    def has_identity(self) -> bool:
        return bool(self.user_id)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["transport_mode"] = self.transport_mode.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Session":
        known = {k: data.get(k) for k in cls.__dataclass_fields__ if k in data}
        mode = known.pop("transport_mode", None)
        session = cls(**known)
        if mode:
            session.transport_mode = TransportMode(mode)
        return session


class LoginResult(BaseModel):
    """Normalized ``/auth/login`` response."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    user_id: str = Field(validation_alias=AliasChoices("userId", "id"))
    email: Optional[str] = None
    full_name: Optional[str] = Field(default=None, validation_alias=AliasChoices("fullName", "full_name"))
    access_token: Optional[str] = Field(default=None, validation_alias=AliasChoices("accessToken", "access_token"))
    refresh_token: Optional[str] = Field(default=None, validation_alias=AliasChoices("refreshToken", "refresh_token"))
    expires_in: Optional[float] = Field(default=None, validation_alias=AliasChoices("expiresIn", "expires_in"))

    @field_validator("user_id", mode="before")
    @classmethod
    def _stringify_id(cls, v: Any) -> Any:
        return str(v) if isinstance(v, int) else v

    @model_validator(mode="after")
    def _token_needs_expiry(self) -> "LoginResult":
        if self.access_token and self.expires_in is None:
            raise ValueError("expiresIn is required alongside accessToken")
        return self

    @property
    def transport_mode(self) -> TransportMode:
        return TransportMode.TOKEN if self.access_token else TransportMode.COOKIE


class TokenGrant(BaseModel):
    """Normalized ``/auth/refresh`` response."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    access_token: str = Field(validation_alias=AliasChoices("accessToken", "access_token"))
    refresh_token: Optional[str] = Field(default=None, validation_alias=AliasChoices("refreshToken", "refresh_token"))
    expires_in: float = Field(validation_alias=AliasChoices("expiresIn", "expires_in"))


class SessionStore:
    """
    Owner of the process's single ``Session``.

    Parameters
    ----------
    path : str or Path, optional
        JSON file used to persist session evidence. When omitted the store is
        memory-only.

    Attributes
    ----------
    cookies : dict
        Cookie-mode credentials carried over between processes, keyed by
        cookie name
    """

    def __init__(self, path: Optional[Union[str, Path]] = None) -> None:
        self.path = Path(path).expanduser() if path else None
        self.session = Session()
        self.cookies: Dict[str, str] = {}
        self.load()

    def load(self) -> Session:
        """Read persisted evidence, if any, into the current session."""
        if self.path is None or not self.path.exists():
            return self.session
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning("Ignoring unreadable session file %s: %s", self.path, e)
            return self.session
        if isinstance(data, dict):
            self.session = Session.from_dict(data)
            cookies = data.get("cookies")
            self.cookies = dict(cookies) if isinstance(cookies, dict) else {}
        return self.session

    def save(self) -> None:
        if self.path is None:
            return
        data = self.session.to_dict()
        if self.cookies:
            data["cookies"] = self.cookies
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(data, indent=2), encoding="utf-8")

    def clear(self) -> None:
        """Forget credentials and identity; the transport mode is kept."""
        s = self.session
        for f in fields(s):
            if f.name != "transport_mode":
                setattr(s, f.name, None)
        self.cookies = {}
        logger.info("Session cleared")
        if self.path is not None and self.path.exists():
            self.path.unlink()

    def apply_login(self, result: LoginResult, now_ms: int) -> None:
        """Populate the session from a successful login."""
        s = self.session
        s.transport_mode = result.transport_mode
        s.user_id = result.user_id
        s.email = result.email
        s.full_name = result.full_name
        if s.transport_mode is TransportMode.TOKEN:
            s.access_token = result.access_token
            s.refresh_token = result.refresh_token
            s.expires_at_epoch_ms = _expiry(now_ms, result.expires_in)
        else:
            s.access_token = None
            s.refresh_token = None
            s.expires_at_epoch_ms = None
        self.save()

    def apply_grant(self, grant: TokenGrant, now_ms: int) -> None:
        """Mutate the session in place with refreshed bearer credentials."""
        s = self.session
        s.access_token = grant.access_token
        if grant.refresh_token:
            s.refresh_token = grant.refresh_token
        s.expires_at_epoch_ms = _expiry(now_ms, grant.expires_in)
        self.save()


def _expiry(now_ms: int, expires_in: Optional[float]) -> Optional[int]:
    if expires_in is None:
        return None
    return int(now_ms + expires_in * 1000)


class AuthModeDetector:
    """
    Infers the transport mode from persisted session evidence.

    The first ``detect()`` result is memoized for the lifetime of the detector:
    a persisted access token means TOKEN, a persisted identity without a token
    means COOKIE, and no evidence at all defaults to COOKIE.
    """

    def __init__(self, store: SessionStore) -> None:
        self._store = store
        self._mode: Optional[TransportMode] = None

    def detect(self) -> TransportMode:
        if self._mode is None:
            s = self._store.session
            if s.access_token:
                self._mode = TransportMode.TOKEN
            elif s.user_id:
                self._mode = TransportMode.COOKIE
            else:
                self._mode = TransportMode.COOKIE
            logger.debug("Detected auth transport mode: %s", self._mode.value)
        return self._mode

    def remember(self, mode: TransportMode) -> None:
        """Pin the mode decided by a login response."""
        self._mode = mode

    def reset(self) -> None:
        self._mode = None
