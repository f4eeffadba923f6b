#!/usr/bin/env python3
# Overview: Standalone concurrency test runner for ledger and numbering safeguards.

"""
Scripted concurrency tests for tillcore.

Uses a file-backed SQLite database so every thread gets its own connection
and the database write lock is actually contended.

Run with:
    python ConcurrencyTests.py
"""
import os
import sys
import tempfile
import threading
import unittest

sys.path.insert(0, os.path.dirname(__file__))

from tillcore import create_app
from tillcore.extensions import db
from tillcore.models import Product, Sale, Tenant
from tillcore.services import inventory_service, refund_service, sales_service
from tillcore.services.refund_service import RefundError
from tillcore.services.sales_service import SaleError


SALE_THREADS = 50


class ConcurrencyTests(unittest.TestCase):
    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        db_path = os.path.join(self.tmpdir.name, "concurrency.db")
        self.app = create_app({
            "TESTING": True,
            "SQLALCHEMY_DATABASE_URI": f"sqlite:///{db_path}",
            "SQLALCHEMY_ENGINE_OPTIONS": {"connect_args": {"timeout": 30}},
        })

        with self.app.app_context():
            db.drop_all()
            db.create_all()

            tenant = Tenant(name="Concurrency Shop", code="CONCUR", is_active=True)
            db.session.add(tenant)
            db.session.commit()
            self.tenant_id = tenant.id

    def tearDown(self):
        with self.app.app_context():
            db.session.remove()
            db.drop_all()
            db.session.remove()
            db.engine.dispose()
        self.tmpdir.cleanup()

    def _make_product(self, sku, stock):
        with self.app.app_context():
            product = Product(
                tenant_id=self.tenant_id,
                sku=sku,
                sku_normalized=sku.lower(),
                name=f"Product {sku}",
                selling_price_cents=1000,
                stock_level=0,
                is_active=True,
            )
            db.session.add(product)
            db.session.commit()
            inventory_service.record_stock_movement(
                tenant_id=self.tenant_id,
                product_id=product.id,
                delta=stock,
                movement_type="REFILL",
                reference="Seed inventory",
            )
            return product.id

    def _sell(self, product_id, quantity=1):
        return sales_service.commit_sale(
            tenant_id=self.tenant_id,
            operator_id=1,
            header={"payment_method": "CASH"},
            items=[{"product_id": product_id, "quantity": quantity, "unit_price_cents": 1000}],
        )

    def _run_threads(self, target, count):
        results = []
        lock = threading.Lock()

        def worker():
            with self.app.app_context():
                try:
                    outcome = target()
                    with lock:
                        results.append(outcome)
                except Exception as exc:
                    with lock:
                        results.append(exc)
                finally:
                    db.session.remove()

        threads = [threading.Thread(target=worker) for _ in range(count)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        return results

    def test_sale_numbers_unique_under_concurrency(self):
        product_id = self._make_product("CONCUR-1", SALE_THREADS * 2)

        results = self._run_threads(lambda: self._sell(product_id).sale_number, SALE_THREADS)

        errors = [r for r in results if isinstance(r, Exception)]
        self.assertFalse(errors, errors[:3])
        self.assertEqual(len(results), SALE_THREADS)
        self.assertEqual(len(results), len(set(results)))

        with self.app.app_context():
            product = db.session.get(Product, product_id)
            self.assertEqual(product.stock_level, SALE_THREADS)
            self.assertEqual(db.session.query(Sale).count(), SALE_THREADS)
            self.assertEqual(inventory_service.find_stock_drift(self.tenant_id), [])

    def test_concurrent_sales_never_oversell(self):
        product_id = self._make_product("SCARCE", 10)

        results = self._run_threads(lambda: self._sell(product_id).sale_number, 20)

        sold = [r for r in results if isinstance(r, str)]
        refused = [r for r in results if isinstance(r, SaleError)]
        self.assertEqual(len(sold), 10)
        self.assertEqual(len(refused), 10)
        self.assertTrue(all(r.code == "INSUFFICIENT_STOCK" for r in refused))

        with self.app.app_context():
            self.assertEqual(db.session.get(Product, product_id).stock_level, 0)
            self.assertEqual(inventory_service.find_stock_drift(self.tenant_id), [])

    def test_concurrent_refunds_respect_quantity(self):
        product_id = self._make_product("RETURNS", 10)
        with self.app.app_context():
            sale = self._sell(product_id, quantity=5)
            sale_id = sale.id
            sale_item_id = sale.items[0].id

        def refund_one():
            return refund_service.adjudicate_refund(
                tenant_id=self.tenant_id,
                operator_id=1,
                sale_id=sale_id,
                items=[{"sale_item_id": sale_item_id, "quantity": 1}],
                payment_method="CASH",
                reason="Concurrent return test",
            ).refund_number

        results = self._run_threads(refund_one, 10)

        refunded = [r for r in results if isinstance(r, str)]
        refused = [r for r in results if isinstance(r, RefundError)]
        self.assertEqual(len(refunded), 5)
        self.assertEqual(len(set(refunded)), 5)
        self.assertEqual(len(refused), 5)

        with self.app.app_context():
            sale = db.session.get(Sale, sale_id)
            self.assertEqual(sale.total_refunded_cents, 5000)
            self.assertEqual(sale.refund_status, "FULL")
            self.assertEqual(db.session.get(Product, product_id).stock_level, 10)
            self.assertEqual(inventory_service.find_stock_drift(self.tenant_id), [])


if __name__ == "__main__":
    unittest.main(verbosity=2)
