# Overview: Unit tests for product import row parsing.

import pytest

from tillcore.services.import_schemas import ProductImportSchema


@pytest.fixture
def schema():
    return ProductImportSchema()


def _coerce(schema, raw):
    return schema.coerce_row(schema.normalize_row(raw))


def test_aliases_and_trimming(schema):
    row = schema.normalize_row({
        "SKU": "  Abc-1 ",
        "product_name": " Oat Milk ",
        "sellingPrice": "2.10",
        "costPrice": "1.05",
        "quantity": "8",
        "minStock": 3,
        "imageUrl": "https://img.test/a.png",
    })

    assert row["sku"] == "Abc-1"
    assert row["sku_key"] == "abc-1"
    assert row["name"] == "Oat Milk"
    assert row["name_key"] == "oat milk"
    assert row["selling_price"] == "2.10"
    assert row["cost_price"] == "1.05"
    assert row["stock"] == "8"
    assert row["low_stock_threshold"] == 3
    assert row["image_url"] == "https://img.test/a.png"


def test_first_alias_wins(schema):
    row = schema.normalize_row({"price": "1.00", "selling_price": "9.00"})
    assert row["selling_price"] == "1.00"


def test_blank_values_fall_through_to_next_alias(schema):
    row = schema.normalize_row({"price": "", "selling_price": "9.00"})
    assert row["selling_price"] == "9.00"


def test_non_object_row_normalizes_to_empty(schema):
    row = schema.normalize_row(["sku", "name"])
    assert row["sku"] is None
    assert row["sku_key"] is None


@pytest.mark.parametrize("raw, cents", [
    ("12.5", 1250),
    ("$1,234.50", 123450),
    ("£0.005", 1),
    (" ₦ 900 ", 90000),
    (3, 300),
    (2.675, 268),
])
def test_price_parsing(schema, raw, cents):
    values, errors = _coerce(schema, {"sku": "A", "name": "A", "price": raw})
    assert errors == []
    assert values["selling_price_cents"] == cents


@pytest.mark.parametrize("raw, message", [
    ("abc", "price must be a number"),
    ("-4", "price cannot be negative"),
    (True, "price must be a number"),
    ("NaN", "price must be a number"),
])
def test_bad_prices(schema, raw, message):
    _, errors = _coerce(schema, {"sku": "A", "name": "A", "price": raw})
    assert errors == [message]


def test_missing_price_reported_once(schema):
    _, errors = _coerce(schema, {"sku": "A", "name": "A", "cost_price": "oops"})
    assert errors == ["price is required", "cost_price must be a number"]


def test_all_problems_reported_together(schema):
    _, errors = _coerce(schema, {"sku": "S" * 65, "stock": "1.5", "image_url": "ftp://x"})

    assert "name is required" in errors
    assert "sku must be at most 64 characters" in errors
    assert "price is required" in errors
    assert "stock must be a whole number" in errors


@pytest.mark.parametrize("raw, expected", [
    ("yes", True),
    ("N", False),
    (0, False),
    (True, True),
    ("", None),
])
def test_taxable_flag(schema, raw, expected):
    values, errors = _coerce(schema, {"sku": "A", "name": "A", "price": 1, "taxable": raw})
    assert errors == []
    assert values["taxable"] is expected


def test_missing_optionals_stay_unset_until_creation(schema):
    values, errors = _coerce(schema, {"sku": "A", "name": "A", "price": 1})

    assert errors == []
    assert values["stock"] == 0
    assert values["low_stock_threshold"] is None
    assert values["taxable"] is None
    assert values["cost_price_cents"] is None
    assert schema.creation_defaults(values) == {"low_stock_threshold": 10, "taxable": True}


def test_explicit_values_survive_creation_defaults(schema):
    values, _ = _coerce(schema, {"sku": "A", "name": "A", "price": 1, "min_stock": "0", "taxable": "false"})
    assert schema.creation_defaults(values) == {"low_stock_threshold": 0, "taxable": False}


def test_non_http_image_url_does_not_fail_the_row(schema):
    values, errors = _coerce(schema, {"sku": "A", "name": "A", "price": 1, "image_url": "ftp://files.test/a.png"})
    assert errors == []
    assert values["image_url"] == "ftp://files.test/a.png"
