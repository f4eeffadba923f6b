# Overview: Pytest coverage for committing sales.

import pytest

from tillcore.models import Product, Sale, SaleItem, StockMovement
from tillcore.services import sales_service
from tillcore.services.sales_service import SaleError


def _commit(tenant, items, **header):
    header.setdefault("payment_method", "CASH")
    return sales_service.commit_sale(tenant_id=tenant.id, operator_id=5, header=header, items=items)


class TestCommitSale:
    def test_records_sale_items_and_sale_movements(self, db_session, tenant_a, make_product):
        bread = make_product(tenant_a, sku="BREAD", stock=10)
        milk = make_product(tenant_a, sku="MILK", stock=4)

        sale = _commit(
            tenant_a,
            [
                {"product_id": bread.id, "quantity": 2, "unit_price_cents": 250, "tax_cents": 40},
                {"product_id": milk.id, "quantity": 1, "unit_price_cents": 199},
            ],
            cash_received_cents=1000,
        )

        assert sale.id is not None
        assert sale.subtotal_cents == 699
        assert sale.tax_cents == 40
        assert sale.total_cents == 739
        assert sale.cash_change_cents == 261
        assert sale.refund_status == "NONE"
        assert sale.total_refunded_cents == 0
        assert [(i.quantity, i.subtotal_cents, i.total_cents) for i in sale.items] == [(2, 500, 540), (1, 199, 199)]

        db_session.expire_all()
        assert db_session.get(Product, bread.id).stock_level == 8
        assert db_session.get(Product, milk.id).stock_level == 3

        movements = db_session.query(StockMovement).filter_by(type="SALE").order_by(StockMovement.id).all()
        assert [(m.product_id, m.quantity_delta, m.reference, m.operator_id) for m in movements] == [
            (bread.id, -2, sale.sale_number, 5),
            (milk.id, -1, sale.sale_number, 5),
        ]

    def test_card_amount_defaults_to_total(self, db_session, tenant_a, make_product):
        product = make_product(tenant_a)
        sale = _commit(
            tenant_a,
            [{"product_id": product.id, "quantity": 1, "unit_price_cents": 1000, "tax_cents": 150}],
            payment_method="card",
        )
        assert sale.payment_method == "CARD"
        assert sale.card_amount_cents == 1150

    def test_discount_reduces_total(self, db_session, tenant_a, make_product):
        product = make_product(tenant_a)
        sale = _commit(
            tenant_a,
            [{"product_id": product.id, "quantity": 2, "unit_price_cents": 5000}],
            discount_cents=1000,
            total_cents=9000,
        )
        assert sale.total_cents == 9000

    @pytest.mark.parametrize("header,item", [
        ({"total_cents": 999}, {}),
        ({"subtotal_cents": 1}, {}),
        ({"tax_cents": 7}, {}),
        ({"payment_method": "CHEQUE"}, {}),
        ({"notes": "x" * 501}, {}),
        ({}, {"quantity": 0}),
        ({}, {"quantity": 1.5}),
        ({}, {"unit_price_cents": -1}),
        ({}, {"subtotal_cents": 1}),
        ({}, {"total_cents": 1}),
        ({"discount_cents": 999999}, {}),
    ])
    def test_invalid_requests_write_nothing(self, db_session, tenant_a, make_product, header, item):
        product = make_product(tenant_a, stock=10)
        line = {"product_id": product.id, "quantity": 2, "unit_price_cents": 5000, **item}

        with pytest.raises(SaleError) as exc_info:
            _commit(tenant_a, [line], **header)

        assert exc_info.value.code == "VALIDATION"
        assert db_session.query(Sale).count() == 0
        assert db_session.get(Product, product.id).stock_level == 10

    def test_requires_items(self, db_session, tenant_a):
        with pytest.raises(SaleError):
            _commit(tenant_a, [])

    def test_cash_received_must_cover_total(self, db_session, tenant_a, make_product):
        product = make_product(tenant_a)
        with pytest.raises(SaleError):
            _commit(
                tenant_a,
                [{"product_id": product.id, "quantity": 1, "unit_price_cents": 1000}],
                cash_received_cents=500,
            )


    @pytest.mark.parametrize("items, field", [
        ([{"quantity": 10**12, "unit_price_cents": 999_999_999}], "items[0].quantity"),
        ([{"quantity": 3, "unit_price_cents": 999_999_999}], "items[0].subtotal_cents"),
        ([{"quantity": 1, "unit_price_cents": 999_999_999, "tax_cents": 1}], "items[0].total_cents"),
        (
            [{"quantity": 1, "unit_price_cents": 600_000_000}, {"quantity": 1, "unit_price_cents": 600_000_000}],
            "subtotal_cents",
        ),
    ])
    def test_oversized_amounts_are_rejected_before_writing(self, db_session, tenant_a, make_product, items, field):
        product = make_product(tenant_a, stock=10)
        for item in items:
            item["product_id"] = product.id

        with pytest.raises(SaleError) as exc_info:
            _commit(tenant_a, items)

        assert exc_info.value.code == "VALIDATION"
        assert exc_info.value.details["field"] == field
        assert db_session.query(Sale).count() == 0


class TestStockRules:
    def test_insufficient_stock_rolls_back_everything(self, db_session, tenant_a, make_product):
        plenty = make_product(tenant_a, sku="PLENTY", stock=10)
        scarce = make_product(tenant_a, sku="SCARCE", stock=1)
        movements_before = db_session.query(StockMovement).count()

        with pytest.raises(SaleError) as exc_info:
            _commit(tenant_a, [
                {"product_id": plenty.id, "quantity": 3, "unit_price_cents": 100},
                {"product_id": scarce.id, "quantity": 2, "unit_price_cents": 100},
            ])

        err = exc_info.value
        assert err.code == "INSUFFICIENT_STOCK"
        assert err.details["items"] == [{"product_id": scarce.id, "requested_quantity": 2, "resulting_stock": -1}]

        # No sale, no items, no movements, no decrement
        assert db_session.query(Sale).count() == 0
        assert db_session.query(SaleItem).count() == 0
        assert db_session.query(StockMovement).count() == movements_before
        assert db_session.get(Product, plenty.id).stock_level == 10
        assert db_session.get(Product, scarce.id).stock_level == 1

    def test_repeated_product_lines_are_checked_cumulatively(self, db_session, tenant_a, make_product):
        product = make_product(tenant_a, stock=3)
        with pytest.raises(SaleError) as exc_info:
            _commit(tenant_a, [
                {"product_id": product.id, "quantity": 2, "unit_price_cents": 100},
                {"product_id": product.id, "quantity": 2, "unit_price_cents": 100},
            ])
        assert exc_info.value.code == "INSUFFICIENT_STOCK"

    def test_negative_stock_when_allowed(self, app, db_session, tenant_a, make_product, monkeypatch):
        monkeypatch.setitem(app.config, "ALLOW_NEGATIVE_STOCK", True)
        product = make_product(tenant_a, stock=1)

        _commit(tenant_a, [{"product_id": product.id, "quantity": 3, "unit_price_cents": 100}])

        db_session.expire_all()
        assert db_session.get(Product, product.id).stock_level == -2

    def test_other_tenants_product_is_not_found(self, db_session, tenant_a, tenant_b, make_product):
        product_b = make_product(tenant_b)
        with pytest.raises(SaleError) as exc_info:
            _commit(tenant_a, [{"product_id": product_b.id, "quantity": 1, "unit_price_cents": 100}])
        assert exc_info.value.code == "PRODUCT_NOT_FOUND"
        assert exc_info.value.details["product_ids"] == [product_b.id]

    def test_inactive_product_cannot_be_sold(self, db_session, tenant_a, make_product):
        product = make_product(tenant_a, is_active=False)
        with pytest.raises(SaleError) as exc_info:
            _commit(tenant_a, [{"product_id": product.id, "quantity": 1, "unit_price_cents": 100}])
        assert exc_info.value.code == "PRODUCT_INACTIVE"


def test_get_sale_is_tenant_scoped(db_session, tenant_a, tenant_b, make_product, make_sale):
    product = make_product(tenant_a)
    sale = make_sale(tenant_a, [(product, 1, 5000, 0)])

    assert sales_service.get_sale(tenant_a.id, sale.id).sale_number == sale.sale_number
    with pytest.raises(SaleError) as exc_info:
        sales_service.get_sale(tenant_b.id, sale.id)
    assert exc_info.value.code == "NOT_FOUND"
