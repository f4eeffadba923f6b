from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any

from ..models.inventory import DEFAULT_LOW_STOCK_THRESHOLD
from ..validation import MAX_PRICE_CENTS


# Column -> accepted spellings in an incoming row, first match wins
FIELD_ALIASES: dict[str, tuple[str, ...]] = {
    "sku": ("sku", "SKU"),
    "name": ("name", "product_name"),
    "selling_price": ("price", "selling_price", "sellingPrice"),
    "cost_price": ("cost_price", "cost", "costPrice"),
    "stock": ("stock", "quantity", "stockLevel"),
    "low_stock_threshold": ("min_stock", "low_stock_threshold", "minStock", "lowStockThreshold"),
    "barcode": ("barcode",),
    "category": ("category",),
    "description": ("description",),
    "taxable": ("taxable",),
    "image_url": ("image_url", "imageUrl", "image"),
}

MAX_LENGTHS = {
    "sku": 64,
    "name": 255,
    "barcode": 64,
    "category": 100,
    "description": 1000,
    "image_url": 1024,
}

_CURRENCY_CHARS = "$€£¥₦, "

_TRUE_WORDS = {"1", "true", "yes", "y", "t"}
_FALSE_WORDS = {"0", "false", "no", "n", "f"}


def _to_text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text if text else None


def _pick(raw_row: dict[str, Any], aliases: tuple[str, ...]) -> Any:
    for key in aliases:
        value = raw_row.get(key)
        if value is not None and value != "":
            return value
    return None


def _to_decimal(value: Any, field: str) -> Decimal | None:
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValueError(f"{field} must be a number")
    text = str(value).strip()
    for ch in _CURRENCY_CHARS:
        text = text.replace(ch, "")
    if not text:
        return None
    try:
        number = Decimal(text)
    except InvalidOperation:
        raise ValueError(f"{field} must be a number")
    if not number.is_finite():
        raise ValueError(f"{field} must be a number")
    if number < 0:
        raise ValueError(f"{field} cannot be negative")
    return number


def _to_cents(value: Any, field: str) -> int | None:
    number = _to_decimal(value, field)
    if number is None:
        return None
    cents = int((number * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    if cents > MAX_PRICE_CENTS:
        raise ValueError(f"{field} is too large")
    return cents


def _to_whole(value: Any, field: str) -> int | None:
    number = _to_decimal(value, field)
    if number is None:
        return None
    if number != number.to_integral_value():
        raise ValueError(f"{field} must be a whole number")
    return int(number)


def _to_bool(value: Any, field: str) -> bool | None:
    if value is None:
        return None
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value != 0
    text = str(value).strip().lower()
    if not text:
        return None
    if text in _TRUE_WORDS:
        return True
    if text in _FALSE_WORDS:
        return False
    raise ValueError(f"{field} must be true or false")


def is_fetchable_url(value: str | None) -> bool:
    return bool(value) and value.lower().startswith(("http://", "https://"))


def sku_key(value: str | None) -> str | None:
    """Trimmed, lower-cased SKU; "ABC " and "abc" share a key."""
    return value.strip().lower() if value else None


def name_key(value: str | None) -> str | None:
    return value.strip().lower() if value else None


class ProductImportSchema:
    """
    Turns one externally authored product row into column values.

    normalize_row only resolves aliases and trims; coerce_row validates and
    parses, returning every problem with the row rather than the first.
    """

    def normalize_row(self, raw_row: Any) -> dict[str, Any]:
        if not isinstance(raw_row, dict):
            raw_row = {}
        normalized = {field: _pick(raw_row, aliases) for field, aliases in FIELD_ALIASES.items()}
        for field in MAX_LENGTHS:
            normalized[field] = _to_text(normalized[field])
        normalized["sku_key"] = sku_key(normalized["sku"])
        normalized["name_key"] = name_key(normalized["name"])
        return normalized

    def coerce_row(self, normalized: dict[str, Any]) -> tuple[dict[str, Any], list[str]]:
        errors: list[str] = []

        if not normalized.get("sku"):
            errors.append("sku is required")
        if not normalized.get("name"):
            errors.append("name is required")
        for field, limit in MAX_LENGTHS.items():
            value = normalized.get(field)
            if value is not None and len(value) > limit:
                errors.append(f"{field} must be at most {limit} characters")

        # Non-http(s) image URLs are kept as given; only http(s) ones are re-hosted
        image_url = normalized.get("image_url")

        values: dict[str, Any] = {
            "sku": normalized.get("sku"),
            "sku_key": normalized.get("sku_key"),
            "name": normalized.get("name"),
            "name_key": normalized.get("name_key"),
            "barcode": normalized.get("barcode"),
            "category": normalized.get("category"),
            "description": normalized.get("description"),
            "image_url": image_url,
        }

        def parse(field, func, raw):
            try:
                return func(raw, field)
            except ValueError as exc:
                errors.append(str(exc))
                return None

        reported = len(errors)
        values["selling_price_cents"] = parse("price", _to_cents, normalized.get("selling_price"))
        if values["selling_price_cents"] is None and len(errors) == reported:
            errors.append("price is required")
        values["cost_price_cents"] = parse("cost_price", _to_cents, normalized.get("cost_price"))
        values["stock"] = parse("stock", _to_whole, normalized.get("stock")) or 0
        values["low_stock_threshold"] = parse(
            "low_stock_threshold", _to_whole, normalized.get("low_stock_threshold")
        )
        values["taxable"] = parse("taxable", _to_bool, normalized.get("taxable"))

        return values, errors

    def creation_defaults(self, values: dict[str, Any]) -> dict[str, Any]:
        """Values for a brand new product, with sentinels for missing fields."""
        return {
            "low_stock_threshold": (
                values["low_stock_threshold"]
                if values["low_stock_threshold"] is not None
                else DEFAULT_LOW_STOCK_THRESHOLD
            ),
            "taxable": values["taxable"] if values["taxable"] is not None else True,
        }
