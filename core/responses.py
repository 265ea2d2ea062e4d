"""
Response Shaping

Builds the uniform response envelope:

    {success, code, message, retryable, data?, requestId}
"""

import secrets
import time
from typing import Any, Dict, Optional

from fastapi.responses import JSONResponse

from core.errors import ErrorCode, is_retryable
from models.envelope import ApiResponse

_UNSET = object()


def generate_request_id() -> str:
    """
    Generate a correlation identifier for one request.

    Used for log correlation only, never for authorization.

    Returns:
        str: e.g. "req_l5x2k3m0_9f8e7d6c5b"
    """
    timestamp = _base36(int(time.time() * 1000))
    return f"req_{timestamp}_{secrets.token_hex(5)}"


def _base36(number: int) -> str:
    digits = "0123456789abcdefghijklmnopqrstuvwxyz"
    result = ""
    while number:
        number, remainder = divmod(number, 36)
        result = digits[remainder] + result
    return result or "0"


def create_api_response(
    success: bool,
    code: str,
    message: str,
    data: Any = _UNSET,
    status_code: int = 200,
    request_id: Optional[str] = None
) -> ApiResponse:
    """
    Create the response envelope.

    Args:
        success: Whether the request succeeded
        code: Error code (SUCCESS on success)
        message: Client-facing message (already sanitized on failure)
        data: Optional payload, omitted from the body when not given
        status_code: HTTP status used to compute `retryable`
        request_id: Correlation id (generated when omitted)

    Returns:
        ApiResponse: Envelope
    """
    fields: Dict[str, Any] = {
        "success": success,
        "code": code,
        "message": message,
        "retryable": False if success else is_retryable(status_code, code),
        "request_id": request_id or generate_request_id(),
    }
    if data is not _UNSET:
        fields["data"] = data
    return ApiResponse(**fields)


def envelope_response(
    envelope: ApiResponse,
    status_code: int,
    headers: Optional[Dict[str, str]] = None
) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=envelope.to_body(), headers=headers)


def success_response(
    data: Any = _UNSET,
    message: str = "Success",
    status_code: int = 200,
    request_id: Optional[str] = None,
    headers: Optional[Dict[str, str]] = None
) -> JSONResponse:
    envelope = create_api_response(
        True, ErrorCode.SUCCESS.value, message, data, status_code, request_id
    )
    return envelope_response(envelope, status_code, headers)


def error_response(
    status_code: int,
    code: str,
    message: str,
    request_id: Optional[str] = None,
    headers: Optional[Dict[str, str]] = None
) -> JSONResponse:
    envelope = create_api_response(
        False, code, message, status_code=status_code, request_id=request_id
    )
    return envelope_response(envelope, status_code, headers)
