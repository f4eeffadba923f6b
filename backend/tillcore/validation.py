# Overview: Input coercion shared by the sale, refund and import services.

from __future__ import annotations

from typing import Any, Iterable


# Maximum money amount: $9,999,999.99 (999,999,999 cents)
# Keeps line arithmetic well inside a 32-bit column
MAX_PRICE_CENTS = 999_999_999

# Longest free-text note accepted on sales and refunds
MAX_NOTES_LENGTH = 500


class ValidationError(ValueError):
    """400-level input problem."""

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message)
        self.field = field


def coerce_int(value: Any, field: str) -> int:
    """
    Strict integer coercion.

    Rejects booleans, floats, decimals and scientific notation so that a
    client sending 12.5 units or "1e3" cents gets an error instead of a
    silently truncated number.
    """
    if value is None:
        raise ValidationError(f"{field} is required", field)
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer", field)
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        raise ValidationError(f"{field} must be an integer, not a decimal", field)
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be an integer", field)
        if "e" in stripped.lower():
            raise ValidationError(f"{field} must be a plain integer (scientific notation not allowed)", field)
        if "." in stripped:
            raise ValidationError(f"{field} must be an integer (no decimals)", field)
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer", field)
    raise ValidationError(f"{field} must be an integer", field)


def coerce_cents(value: Any, field: str, *, required: bool = True, default: int = 0) -> int:
    """Non-negative integer amount in cents, capped at MAX_PRICE_CENTS."""
    if value is None or value == "":
        if required:
            raise ValidationError(f"{field} is required", field)
        return default
    cents = coerce_int(value, field)
    if cents < 0:
        raise ValidationError(f"{field} cannot be negative", field)
    if cents > MAX_PRICE_CENTS:
        raise ValidationError(f"{field} exceeds maximum of {MAX_PRICE_CENTS} cents", field)
    return cents


def coerce_positive_int(value: Any, field: str) -> int:
    number = coerce_int(value, field)
    if number <= 0:
        raise ValidationError(f"{field} must be positive", field)
    return number


def coerce_text(
    value: Any,
    field: str,
    *,
    required: bool = False,
    min_length: int | None = None,
    max_length: int | None = None,
) -> str | None:
    if value is None:
        text = ""
    elif isinstance(value, str):
        text = value.strip()
    else:
        raise ValidationError(f"{field} must be a string", field)

    if not text:
        if required:
            raise ValidationError(f"{field} is required", field)
        return None
    if min_length is not None and len(text) < min_length:
        raise ValidationError(f"{field} must be at least {min_length} characters", field)
    if max_length is not None and len(text) > max_length:
        raise ValidationError(f"{field} must be at most {max_length} characters", field)
    return text


def coerce_choice(value: Any, field: str, choices: Iterable[str]) -> str:
    allowed = tuple(choices)
    text = coerce_text(value, field, required=True)
    normalized = text.upper()
    if normalized not in allowed:
        raise ValidationError(f"{field} must be one of: {', '.join(allowed)}", field)
    return normalized


def coerce_bool(value: Any, field: str, *, default: bool) -> bool:
    """JSON boolean only; strings such as "false" are rejected, not truth-tested."""
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    raise ValidationError(f"{field} must be true or false", field)
