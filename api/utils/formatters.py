"""
Standard API response formatters.

Every endpoint answers with the same envelope:

    {"ok": true, "data": ..., "meta": {...}, "timestamp": "..."}

On-chain amounts are 18-decimal integers, far beyond what a JSON number
keeps exactly in most clients, so ``jsonable()`` turns every int into a
string before the payload leaves the API.
"""
from typing import Any, Dict, Optional
from datetime import datetime, timezone
from fastapi.responses import JSONResponse


def jsonable(value: Any) -> Any:
    """Recursively convert ints (not bools) to strings."""
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return str(value)
    if isinstance(value, dict):
        return {k: jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [jsonable(v) for v in value]
    return value


def success_response(
    data: Any,
    meta: Optional[Dict[str, Any]] = None,
    status_code: int = 200
) -> JSONResponse:
    """
    Create a standard success response.

    Args:
        data: Response data (ints are stringified)
        meta: Optional metadata dict (e.g., {"count": 10})
        status_code: HTTP status code (default: 200)
    """
    response_data = {
        "ok": True,
        "data": jsonable(data),
        "meta": meta or {},
        "timestamp": datetime.now(timezone.utc).isoformat()
    }
    return JSONResponse(status_code=status_code, content=response_data)


def error_response(
    message: str,
    code: int = 500,
    details: Optional[Dict[str, Any]] = None,
    error: Optional[str] = None,
    retryable: bool = False
) -> JSONResponse:
    """
    Create a standard error response.

    Example:
        >>> error_response("Minting disabled", code=409, error="PolicyViolationError")
        {
            "ok": false,
            "error": "PolicyViolationError",
            "message": "Minting disabled",
            "details": {},
            "retryable": false,
            "timestamp": "2026-10-18T10:30:00.123456+00:00"
        }
    """
    response_data = {
        "ok": False,
        "error": error or "Error",
        "message": message,
        "details": jsonable(details or {}),
        "retryable": retryable,
        "timestamp": datetime.now(timezone.utc).isoformat()
    }
    return JSONResponse(status_code=code, content=response_data)
