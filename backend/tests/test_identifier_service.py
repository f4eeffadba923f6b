# Overview: Pytest coverage for date-scoped document numbers.

import re
from datetime import datetime

import pytest

from tillcore.models import Sale
from tillcore.services import identifier_service
from tillcore.services.identifier_service import IdentifierError, next_refund_number, next_sale_number
from tillcore.time_utils import date_stamp


def _insert_sale(db_session, tenant, number):
    db_session.add(Sale(
        tenant_id=tenant.id,
        sale_number=number,
        subtotal_cents=100,
        total_cents=100,
        payment_method="CASH",
    ))
    db_session.commit()


@pytest.fixture
def sleeps(monkeypatch):
    recorded = []
    monkeypatch.setattr(identifier_service, "_sleep", recorded.append)
    return recorded


def test_first_number_of_the_day(db_session):
    assert next_sale_number(on=datetime(2026, 10, 19, 15, 30)) == "SALE-20261019-0001"
    assert next_refund_number(on=datetime(2026, 10, 19)) == "REF-20261019-0001"


def test_sequence_counts_numbers_already_issued_today(db_session, tenant_a, tenant_b):
    _insert_sale(db_session, tenant_a, "SALE-20261019-0001")
    _insert_sale(db_session, tenant_b, "SALE-20261019-0002")
    _insert_sale(db_session, tenant_a, "SALE-20261018-0001")

    # Count spans all tenants but only the requested day
    assert next_sale_number(on=datetime(2026, 10, 19)) == "SALE-20261019-0003"
    assert next_sale_number(on=datetime(2026, 10, 20)) == "SALE-20261020-0001"


def test_collision_retries_with_random_suffix_and_linear_backoff(db_session, tenant_a, sleeps):
    # 0002 is taken while only one number exists for the day: count+1 collides
    _insert_sale(db_session, tenant_a, "SALE-20261019-0002")

    number = next_sale_number(on=datetime(2026, 10, 19))

    assert re.fullmatch(r"SALE-20261019-0002-\d{4}", number)
    assert sleeps == [pytest.approx(0.05)]


def test_exhaustion_raises_without_fabricating_a_number(db_session, monkeypatch, sleeps):
    monkeypatch.setattr(identifier_service, "_identifier_exists", lambda column, candidate: True)

    with pytest.raises(IdentifierError) as exc_info:
        next_sale_number(on=datetime(2026, 10, 19))

    err = exc_info.value
    assert err.code == "IDENTIFIER_EXHAUSTED"
    assert len(err.details["tried"]) == identifier_service.MAX_ATTEMPTS
    assert err.details["tried"][0] == "SALE-20261019-0001"
    # 50ms x retry count, no wait after the final probe
    assert sleeps == [pytest.approx(v) for v in (0.05, 0.10, 0.15, 0.20)]


def test_committed_sales_get_todays_prefix(db_session, tenant_a, make_product, make_sale):
    product = make_product(tenant_a)
    first = make_sale(tenant_a, [(product, 1, 5000, 0)])
    second = make_sale(tenant_a, [(product, 1, 5000, 0)])

    today = date_stamp()
    assert first.sale_number == f"SALE-{today}-0001"
    assert second.sale_number == f"SALE-{today}-0002"
