# Overview: Tests for the flask CLI command groups.

import json

import pytest

from tillcore.models import Product, Tenant


@pytest.fixture
def runner(app):
    return app.test_cli_runner()


def test_tenants_create_and_list(runner, db_session):
    result = runner.invoke(args=["tenants", "create", "--name", "Kiosk", "--code", "KIOSK", "--refund-day-limit", "14"])
    assert result.exit_code == 0
    assert "PASS Created tenant: Kiosk" in result.output

    tenant = db_session.query(Tenant).filter_by(code="KIOSK").one()
    assert tenant.refund_day_limit == 14

    listing = runner.invoke(args=["tenants", "list"])
    assert "KIOSK" in listing.output


def test_tenants_create_rejects_duplicate_code(runner, db_session, tenant_a):
    result = runner.invoke(args=["tenants", "create", "--name", "Again", "--code", tenant_a.code])
    assert "FAIL" in result.output
    assert db_session.query(Tenant).count() == 1


def test_stock_verify(runner, db_session, tenant_a, make_product):
    product = make_product(tenant_a, stock=4)

    clean = runner.invoke(args=["stock", "verify"])
    assert clean.exit_code == 0
    assert "PASS" in clean.output

    db_session.query(Product).filter_by(id=product.id).update({"stock_level": 40})
    db_session.commit()

    drifted = runner.invoke(args=["stock", "verify", "--tenant-id", str(tenant_a.id)])
    assert drifted.exit_code == 1
    assert "stock_level=40 replayed=4" in drifted.output


def test_imports_run(runner, db_session, tenant_a, tmp_path):
    path = tmp_path / "products.json"
    path.write_text(json.dumps({"products": [
        {"sku": "JAM", "name": "Jam", "price": "3.20", "stock": 6},
        {"sku": "BAD", "name": "Bad"},
    ]}), encoding="utf-8")

    result = runner.invoke(args=["imports", "run", "--tenant-id", str(tenant_a.id), str(path)])

    assert result.exit_code == 0
    assert "PASS Imported 1 row(s): 1 created" in result.output
    assert "row 2 (BAD): price is required" in result.output


def test_imports_run_rejected_batch(runner, db_session, tenant_a, tmp_path):
    path = tmp_path / "products.json"
    path.write_text(json.dumps([
        {"sku": "ABC", "name": "One", "price": 1},
        {"sku": "abc", "name": "Two", "price": 1},
    ]), encoding="utf-8")

    result = runner.invoke(args=["imports", "run", "--tenant-id", str(tenant_a.id), str(path)])

    assert result.exit_code == 1
    assert "DUPLICATE_SKU" in result.output
