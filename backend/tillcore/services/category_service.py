# Overview: Product categories; lazily created labels that products reference by name.

from __future__ import annotations

from typing import Iterable

from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import ProductCategory
from ..time_utils import utcnow


CATEGORY_NAME_MAX_LENGTH = 100


def ensure_categories(tenant_id: int, names: Iterable[str | None]) -> int:
    """
    Make sure a ProductCategory exists for every non-empty name.

    Idempotent: a name inserted concurrently by another request is treated
    as already present. Returns how many categories this call created.
    """
    wanted = {
        n.strip() for n in names
        if n and n.strip() and len(n.strip()) <= CATEGORY_NAME_MAX_LENGTH
    }
    if not wanted:
        return 0

    existing = {
        row.name
        for row in db.session.query(ProductCategory.name)
        .filter(ProductCategory.tenant_id == tenant_id, ProductCategory.name.in_(wanted))
        .all()
    }

    created = 0
    for name in sorted(wanted - existing):
        db.session.add(ProductCategory(tenant_id=tenant_id, name=name, is_active=True, created_at=utcnow()))
        try:
            db.session.commit()
            created += 1
        except IntegrityError:
            # Another writer got there first
            db.session.rollback()
    return created


def list_categories(tenant_id: int, include_inactive: bool = False) -> list[ProductCategory]:
    q = db.session.query(ProductCategory).filter(ProductCategory.tenant_id == tenant_id)
    if not include_inactive:
        q = q.filter(ProductCategory.is_active.is_(True))
    return q.order_by(ProductCategory.name).all()
