"""
Tests for geopulse_sdk.core session, error and envelope handling.
"""

import json

import httpx
import pytest
from unittest.mock import AsyncMock, patch
from pydantic import ValidationError

from geopulse_sdk.core.connection import ConnectionContext
from geopulse_sdk.core.envelope import parse_model, unwrap
from geopulse_sdk.core.errors import (
    ApiError,
    AuthExpiredError,
    ErrorKind,
    ProtocolViolationError,
    ServerRejectedError,
    TransientNetworkError,
    classify,
    error_for_response,
    extract_server_message,
)
from geopulse_sdk.core.session import (
    AuthModeDetector,
    ClientConfig,
    LoginResult,
    Session,
    SessionStore,
    TokenGrant,
    TransportMode,
)


class TestClientConfig:
    """Tests for ClientConfig dataclass."""

    def test_default_values(self):
        cfg = ClientConfig(base_url="https://geo.test/api")
        assert cfg.timeout == 60.0
        assert cfg.verify is True
        assert cfg.expiry_buffer_ms == 10_000
        assert cfg.refresh_settle_delay == 0.5
        assert cfg.chunk_threshold_bytes == 80 * 1024 * 1024
        assert cfg.chunk_max_attempts == 3
        assert cfg.chunk_base_delay == 1.0
        assert cfg.chunk_backoff == 2.0
        assert cfg.session_file is None

    def test_custom_values(self):
        cfg = ClientConfig(base_url="https://geo.test/api", timeout=5.0, verify=False)
        assert cfg.timeout == 5.0
        assert cfg.verify is False


class TestApiError:
    """Tests for the error taxonomy."""

    def test_error_attributes(self):
        err = ServerRejectedError(
            "HTTP 404",
            status=404,
            body="Not found",
            url="https://geo.test/api/x",
            headers={"x-request-id": "123"},
        )
        assert err.status == 404
        assert err.body == "Not found"
        assert err.url == "https://geo.test/api/x"
        assert err.headers == {"x-request-id": "123"}
        assert err.kind is ErrorKind.SERVER_REJECTED

    def test_body_truncation(self):
        err = ApiError("boom", body="x" * 2000)
        assert len(err.body) == 1200

    def test_retry_and_login_hints(self):
        assert TransientNetworkError("t").can_retry
        assert not ServerRejectedError("s").can_retry
        assert AuthExpiredError("a").requires_login
        assert not TransientNetworkError("t").requires_login

    def test_classify(self):
        assert classify(AuthExpiredError("a")) is ErrorKind.AUTH_EXPIRED
        assert classify(httpx.ConnectError("down")) is ErrorKind.TRANSIENT_NETWORK
        assert classify(KeyError("x")) is ErrorKind.PROTOCOL_VIOLATION

    def test_extract_server_message(self):
        assert extract_server_message({"userMessage": "friendly", "message": "raw"}) == "friendly"
        assert extract_server_message({"message": "raw"}) == "raw"
        assert extract_server_message({"detail": "fastapi"}) == "fastapi"
        assert extract_server_message({"error": {"message": "nested"}}) == "nested"
        assert extract_server_message({"error": "flat"}) == "flat"
        assert extract_server_message([1, 2], fallback="fb") == "fb"


class TestErrorForResponse:
    """Tests for HTTP status classification."""

    @staticmethod
    def _response(status, body=None):
        return httpx.Response(
            status,
            json=body or {},
            request=httpx.Request("GET", "http://geo.test/api/thing"),
        )

    def test_401_is_auth_expired(self):
        err = error_for_response(self._response(401))
        assert isinstance(err, AuthExpiredError)
        assert err.status == 401

    @pytest.mark.parametrize("status", [408, 429, 502, 503, 504])
    def test_transient_statuses(self, status):
        assert isinstance(error_for_response(self._response(status)), TransientNetworkError)

    @pytest.mark.parametrize("status", [400, 403, 404, 409, 500])
    def test_other_statuses_are_rejections(self, status):
        assert isinstance(error_for_response(self._response(status)), ServerRejectedError)

    def test_message_and_url(self):
        err = error_for_response(self._response(400, {"message": "Invalid format"}))
        assert err.body == "Invalid format"
        assert err.url == "http://geo.test/api/thing"
        assert "Invalid format" in str(err)


class TestEnvelope:
    """Tests for response envelope normalization."""

    def test_flat_payload_passes_through(self):
        assert unwrap({"success": True, "uploadId": "u1"}) == {"success": True, "uploadId": "u1"}

    def test_nested_data_is_flattened(self):
        flat = unwrap({"success": True, "data": {"uploadId": "u1", "totalChunks": 2}})
        assert flat == {"success": True, "uploadId": "u1", "totalChunks": 2}

    def test_nested_data_wins_on_conflict(self):
        assert unwrap({"id": 1, "data": {"id": 2}})["id"] == 2

    def test_non_dict_data_is_kept(self):
        assert unwrap({"data": [1, 2]}) == {"data": [1, 2]}

    def test_non_object_payloads_pass_through(self):
        assert unwrap([1, 2, 3]) == [1, 2, 3]
        assert unwrap("text") == "text"

    def test_success_false_raises(self):
        with pytest.raises(ServerRejectedError, match="Quota exceeded"):
            unwrap({"success": False, "message": "Quota exceeded"}, url="/upload/init")

    def test_parse_model_rejects_non_objects(self):
        with pytest.raises(ProtocolViolationError):
            parse_model(TokenGrant, [1])

    def test_parse_model_rejects_missing_fields(self):
        with pytest.raises(ProtocolViolationError, match="TokenGrant"):
            parse_model(TokenGrant, {"refreshToken": "r"})


class TestSession:
    """Tests for Session and LoginResult."""

    def test_round_trip_through_dict(self):
        s = Session(transport_mode=TransportMode.TOKEN, access_token="a", user_id="1")
        restored = Session.from_dict(s.to_dict())
        assert restored == s

    def test_from_dict_ignores_unknown_keys(self):
        s = Session.from_dict({"user_id": "1", "favourite_colour": "red"})
        assert s.user_id == "1"
        assert s.transport_mode is TransportMode.COOKIE

    def test_login_result_cookie_mode(self):
        result = LoginResult.model_validate({"id": 7, "email": "a@geo.test", "fullName": "A"})
        assert result.user_id == "7"
        assert result.full_name == "A"
        assert result.transport_mode is TransportMode.COOKIE

    def test_login_result_token_mode(self):
        result = LoginResult.model_validate(
            {"userId": "7", "accessToken": "at", "refreshToken": "rt", "expiresIn": 3600}
        )
        assert result.transport_mode is TransportMode.TOKEN
        assert result.expires_in == 3600

    def test_login_result_token_requires_expiry(self):
        with pytest.raises(ValidationError, match="expiresIn"):
            LoginResult.model_validate({"userId": "7", "accessToken": "at"})


class TestSessionStore:
    """Tests for SessionStore persistence and mutation."""

    def test_memory_only_store(self):
        store = SessionStore()
        store.session.user_id = "1"
        store.save()
        assert store.path is None

    def test_save_and_load(self, tmp_path):
        path = tmp_path / "session.json"
        store = SessionStore(path)
        store.apply_login(
            LoginResult.model_validate({"userId": "9", "accessToken": "at", "expiresIn": 60}),
            now_ms=1_000,
        )
        assert json.loads(path.read_text())["access_token"] == "at"

        reloaded = SessionStore(path)
        assert reloaded.session.user_id == "9"
        assert reloaded.session.transport_mode is TransportMode.TOKEN
        assert reloaded.session.expires_at_epoch_ms == 61_000

    def test_corrupt_file_is_ignored(self, tmp_path):
        path = tmp_path / "session.json"
        path.write_text("{not json")
        store = SessionStore(path)
        assert store.session.user_id is None

    def test_clear_keeps_mode_and_deletes_file(self, tmp_path):
        path = tmp_path / "session.json"
        store = SessionStore(path)
        store.apply_login(
            LoginResult.model_validate({"userId": "9", "accessToken": "at", "refreshToken": "rt", "expiresIn": 60}),
            now_ms=0,
        )
        session = store.session
        store.clear()
        assert store.session is session
        assert session.transport_mode is TransportMode.TOKEN
        assert session.access_token is None
        assert session.refresh_token is None
        assert session.user_id is None
        assert not path.exists()

    def test_cookie_login_drops_tokens(self):
        store = SessionStore()
        store.session.access_token = "stale"
        store.apply_login(LoginResult.model_validate({"userId": "1"}), now_ms=0)
        assert store.session.transport_mode is TransportMode.COOKIE
        assert store.session.access_token is None
        assert store.session.expires_at_epoch_ms is None

    def test_apply_grant_mutates_in_place(self):
        store = SessionStore()
        session = store.session
        session.refresh_token = "old-refresh"
        store.apply_grant(TokenGrant.model_validate({"accessToken": "new", "expiresIn": 10}), now_ms=5_000)
        assert store.session is session
        assert session.access_token == "new"
        assert session.refresh_token == "old-refresh"
        assert session.expires_at_epoch_ms == 15_000


class TestAuthModeDetector:
    """Tests for transport mode inference."""

    def test_defaults_to_cookie(self):
        assert AuthModeDetector(SessionStore()).detect() is TransportMode.COOKIE

    def test_persisted_token_means_token_mode(self):
        store = SessionStore()
        store.session.access_token = "at"
        assert AuthModeDetector(store).detect() is TransportMode.TOKEN

    def test_identity_without_token_means_cookie_mode(self):
        store = SessionStore()
        store.session.user_id = "1"
        assert AuthModeDetector(store).detect() is TransportMode.COOKIE

    def test_result_is_memoized(self):
        store = SessionStore()
        detector = AuthModeDetector(store)
        assert detector.detect() is TransportMode.COOKIE
        store.session.access_token = "at"
        assert detector.detect() is TransportMode.COOKIE
        detector.reset()
        assert detector.detect() is TransportMode.TOKEN

    def test_remember_pins_mode(self):
        detector = AuthModeDetector(SessionStore())
        detector.remember(TransportMode.TOKEN)
        assert detector.detect() is TransportMode.TOKEN


class TestConnectionContext:
    """Tests for ConnectionContext."""

    @patch.dict("os.environ", {}, clear=True)
    def test_missing_base_url_raises(self):
        with pytest.raises(ValueError, match="Missing base_url"):
            ConnectionContext(base_url="")

    @patch.dict("os.environ", {
        "GEOPULSE_BASE_URL": "https://env.geo.test/api/",
        "GEOPULSE_EMAIL": "env@geo.test",
        "GEOPULSE_PASSWORD": "envpass",
        "GEOPULSE_VERIFY_TLS": "false",
        "GEOPULSE_TIMEOUT": "15",
    }, clear=True)
    def test_reads_from_environment(self):
        conn = ConnectionContext()
        assert conn.base_url == "https://env.geo.test/api"
        assert conn.has_credentials
        cfg = conn.config
        assert cfg.verify is False
        assert cfg.timeout == 15.0

    @patch.dict("os.environ", {"GEOPULSE_BASE_URL": "https://env.geo.test/api"}, clear=True)
    def test_explicit_params_override_env(self):
        conn = ConnectionContext(base_url="https://explicit.geo.test/api", timeout=3)
        assert conn.base_url == "https://explicit.geo.test/api"
        assert conn.config.timeout == 3.0
        assert not conn.has_credentials

    @patch.dict("os.environ", {}, clear=True)
    async def test_client_and_uploader_are_shared(self):
        conn = ConnectionContext(base_url="https://geo.test/api")
        try:
            assert conn.client is conn.client
            assert conn.uploader.client is conn.client
        finally:
            await conn.close()

    @patch.dict("os.environ", {}, clear=True)
    async def test_connect_logs_in_with_credentials(self):
        conn = ConnectionContext(base_url="https://geo.test/api", email="a@geo.test", password="pw")
        with patch.object(type(conn.client), "login", new_callable=AsyncMock) as login:
            async with conn:
                login.assert_awaited_once_with("a@geo.test", "pw")
