"""
geopulse_sdk.core.envelope - Response envelope normalization
=============================================================

The backend answers either flat (``{"success": true, "uploadId": ...}``) or
wrapped (``{"success": true, "data": {...}}``). ``unwrap`` folds both into a
single flat dict at the HTTP boundary so nothing downstream branches on shape.
"""

from __future__ import annotations

from typing import Any, Dict, Type, TypeVar

from pydantic import BaseModel, ValidationError

from geopulse_sdk.core.errors import (
    ProtocolViolationError,
    ServerRejectedError,
    extract_server_message,
)

M = TypeVar("M", bound=BaseModel)


def unwrap(payload: Any, *, url: str = "") -> Any:
    """
    Normalize a decoded JSON payload.

    Parameters
    ----------
    payload : Any
        Decoded response body
    url : str
        URL the payload came from, used in error messages

    Returns
    -------
    Any
        A flat dict for object payloads; other JSON values pass through.

    Raises
    ------
    ServerRejectedError
        If the envelope reports ``success: false``.
    """
    if not isinstance(payload, dict):
        return payload

    if payload.get("success") is False:
        message = extract_server_message(payload, fallback="request was not successful")
        raise ServerRejectedError(
            f"Server rejected request to {url}: {message}",
            body=message,
            url=url,
        )

    data = payload.get("data")
    if not isinstance(data, dict):
        return dict(payload)

    # Envelope fields first, nested data wins on conflicts.
    flat: Dict[str, Any] = {k: v for k, v in payload.items() if k != "data"}
    flat.update(data)
    return flat


def parse_model(model: Type[M], payload: Any, *, url: str = "") -> M:
    """Validate a normalized payload into ``model`` or raise a protocol error."""
    if not isinstance(payload, dict):
        raise ProtocolViolationError(
            f"Expected a JSON object from {url}, got {type(payload).__name__}",
            url=url,
        )
    try:
        return model.model_validate(payload)
    except ValidationError as e:
        raise ProtocolViolationError(
            f"Malformed {model.__name__} from {url}: {e.error_count()} invalid field(s)",
            body=str(e),
            url=url,
        ) from e


__all__ = ["unwrap", "parse_model"]
