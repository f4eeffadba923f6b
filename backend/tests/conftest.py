"""
Pytest fixtures for tillcore backend tests.

Provides test database setup, two-tenant fixtures, product and sale
factories, and a test client.
"""

import pytest

from tillcore import create_app
from tillcore.extensions import db
from tillcore.models import Product, Tenant
from tillcore.services import inventory_service, sales_service


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'S3_ENDPOINT_URL': None,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def tenant_a(db_session):
    """Create Tenant A (first tenant)."""
    tenant = Tenant(name="Tenant A - Corner Shop", code="CORNER", is_active=True)
    db_session.add(tenant)
    db_session.commit()
    return tenant


@pytest.fixture(scope='function')
def tenant_b(db_session):
    """Create Tenant B (second tenant)."""
    tenant = Tenant(name="Tenant B - Beta Market", code="BETA", is_active=True)
    db_session.add(tenant)
    db_session.commit()
    return tenant


@pytest.fixture(scope='function')
def make_product(db_session):
    """
    Factory for products whose opening stock is booked through the ledger,
    so movement replay always matches stock_level.
    """
    def _make(tenant, sku="SKU-1", name=None, price_cents=5000, stock=10, is_active=True, barcode=None):
        product = Product(
            tenant_id=tenant.id,
            sku=sku,
            sku_normalized=sku.strip().lower(),
            barcode=barcode,
            name=name or f"Product {sku}",
            selling_price_cents=price_cents,
            stock_level=0,
            is_active=is_active,
        )
        db_session.add(product)
        db_session.commit()
        if stock:
            inventory_service.record_stock_movement(
                tenant_id=tenant.id,
                product_id=product.id,
                delta=stock,
                movement_type="REFILL",
                reference="OPENING",
            )
        db_session.refresh(product)
        return product

    return _make


@pytest.fixture(scope='function')
def make_sale(db_session):
    """Factory for committed sales: lines are (product, quantity, unit_price_cents, tax_cents)."""
    def _make(tenant, lines, payment_method="CASH", discount_cents=0, operator_id=1):
        items = [
            {
                "product_id": product.id,
                "quantity": quantity,
                "unit_price_cents": unit_price,
                "tax_cents": tax,
            }
            for product, quantity, unit_price, tax in lines
        ]
        return sales_service.commit_sale(
            tenant_id=tenant.id,
            operator_id=operator_id,
            header={"payment_method": payment_method, "discount_cents": discount_cents},
            items=items,
        )

    return _make


@pytest.fixture(scope='function')
def headers_for():
    """Headers the upstream gateway forwards for an authenticated request."""
    def _headers(tenant, operator_id=7) -> dict:
        return {"X-Tenant-Id": str(tenant.id), "X-Operator-Id": str(operator_id)}

    return _headers
