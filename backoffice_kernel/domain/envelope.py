"""
{success, data|error} response envelopes.

The REST surface in front of the kernel answers every call with one of
these dicts; error_envelope() also returns the HTTP status to use.
"""

from dataclasses import asdict, is_dataclass
from typing import Any

from backoffice_kernel.exceptions import BackofficeError


def success_envelope(data: Any = None, message: str | None = None) -> dict[str, Any]:
    if is_dataclass(data) and not isinstance(data, type):
        data = asdict(data)
    elif isinstance(data, list):
        data = [asdict(d) if is_dataclass(d) and not isinstance(d, type) else d for d in data]
    envelope: dict[str, Any] = {"success": True, "data": data}
    if message:
        envelope["message"] = message
    return envelope


def error_envelope(exc: Exception) -> tuple[dict[str, Any], int]:
    """
    Render an exception as (envelope, http_status).

    BackofficeError subclasses keep their message and code.  Anything else
    is a 500 whose message is the exception text.
    """
    if isinstance(exc, BackofficeError):
        return (
            {"success": False, "error": str(exc), "code": exc.code},
            exc.status_code,
        )
    return ({"success": False, "error": str(exc), "code": "INTERNAL_ERROR"}, 500)
