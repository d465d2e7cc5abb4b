from __future__ import annotations

from typing import Any

from .errors import RequestValidationError
from .time_utils import parse_iso_date


# Maximum amount: 9,999,999,999.99 (999,999,999,999 cents)
MAX_AMOUNT_CENTS = 999_999_999_999


def coerce_int(value: Any, field: str) -> int:
    """
    Strict integer coercion for request payloads.

    Rejects bools, floats, decimals and scientific notation so that amounts
    and quantities never silently round.
    """
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise RequestValidationError(f"{field} must be an integer")
        if "e" in stripped.lower():
            raise RequestValidationError(f"{field} must be a plain integer (scientific notation not allowed)")
        if "." in stripped:
            raise RequestValidationError(f"{field} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise RequestValidationError(f"{field} must be an integer")
    if isinstance(value, float):
        raise RequestValidationError(f"{field} must be an integer, not a decimal")
    raise RequestValidationError(f"{field} must be an integer")


def require_field(data: dict, field: str) -> Any:
    if field not in data or data[field] is None:
        raise RequestValidationError(f"Missing required field: {field}")
    return data[field]


def require_int(data: dict, field: str) -> int:
    return coerce_int(require_field(data, field), field)


def optional_int(data: dict, field: str) -> int | None:
    value = data.get(field)
    if value is None:
        return None
    return coerce_int(value, field)


def require_str(data: dict, field: str) -> str:
    value = require_field(data, field)
    if not isinstance(value, str) or not value.strip():
        raise RequestValidationError(f"{field} must be a non-empty string")
    return value.strip()


def optional_bool(data: dict, field: str, default: bool = False) -> bool:
    """Accept only JSON true/false; strings such as "false" are rejected."""
    value = data.get(field)
    if value is None:
        return default
    if not isinstance(value, bool):
        raise RequestValidationError(f"{field} must be true or false")
    return value


def amount_cents(data: dict, field: str = "amount_cents") -> int:
    value = require_int(data, field)
    if value < 0:
        raise RequestValidationError(f"{field} cannot be negative")
    if value > MAX_AMOUNT_CENTS:
        raise RequestValidationError(f"{field} exceeds maximum of {MAX_AMOUNT_CENTS}")
    return value


def optional_date(data: dict, field: str):
    try:
        return parse_iso_date(data.get(field))
    except ValueError:
        raise RequestValidationError(f"{field} must be an ISO date (YYYY-MM-DD)")


def json_body(request) -> dict:
    """Return the JSON object body or raise a 400-level error."""
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise RequestValidationError("Request body must be a JSON object")
    return data
