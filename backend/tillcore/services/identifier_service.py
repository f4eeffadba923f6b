# Overview: Date-scoped, human-readable document numbers for sales and refunds.

"""
Identifier Service

Numbers look like PREFIX-YYYYMMDD-NNNN, e.g. SALE-20261019-0007.

ALLOCATION:
1. Count numbers already issued under today's PREFIX-YYYYMMDD- prefix.
2. Candidate = count + 1, zero-padded to four digits.
3. Probe the store for the candidate. On a hit, the next candidate carries
   a random numeric suffix, the caller waits 50ms x retry count, and the
   count is taken again.
4. After MAX_ATTEMPTS probes the allocation fails; no number is invented.

The unique constraint on the number column stays the final backstop for a
race between the probe and the commit; callers retry their unit of work on
IntegrityError.
"""

from __future__ import annotations

import random
import time
from datetime import datetime

from sqlalchemy import func

from ..extensions import db
from ..models import Refund, Sale
from ..time_utils import date_stamp, utcnow


SALE_PREFIX = "SALE"
REFUND_PREFIX = "REF"

MAX_ATTEMPTS = 5
BACKOFF_STEP_SECONDS = 0.05

# Swapped out in tests to observe the backoff schedule
_sleep = time.sleep


class IdentifierError(Exception):
    """Raised when no free identifier could be allocated."""

    def __init__(self, message: str, code: str = "IDENTIFIER_EXHAUSTED", details: dict | None = None):
        super().__init__(message)
        self.code = code
        self.details = details or {}


def _count_with_prefix(column, prefix: str) -> int:
    return int(
        db.session.query(func.count())
        .filter(column.like(f"{prefix}%"))
        .scalar() or 0
    )


def _identifier_exists(column, candidate: str) -> bool:
    return db.session.query(column).filter(column == candidate).first() is not None


def next_identifier(column, prefix: str, *, on: datetime | None = None) -> str:
    """
    Allocate the next free PREFIX-YYYYMMDD-NNNN value for column.

    column is the mapped attribute holding the numbers (Sale.sale_number,
    Refund.refund_number). Raises IdentifierError after MAX_ATTEMPTS
    colliding probes.
    """
    day_prefix = f"{prefix}-{date_stamp(on or utcnow())}-"
    tried: list[str] = []

    for attempt in range(MAX_ATTEMPTS):
        sequence = _count_with_prefix(column, day_prefix) + 1
        candidate = f"{day_prefix}{sequence:04d}"
        if attempt:
            candidate = f"{candidate}-{random.randint(0, 9999):04d}"

        if not _identifier_exists(column, candidate):
            return candidate

        tried.append(candidate)
        if attempt < MAX_ATTEMPTS - 1:
            _sleep(BACKOFF_STEP_SECONDS * (attempt + 1))

    raise IdentifierError(
        f"Could not allocate a unique {prefix} number after {MAX_ATTEMPTS} attempts",
        details={"prefix": prefix, "tried": tried},
    )


def next_sale_number(on: datetime | None = None) -> str:
    return next_identifier(Sale.sale_number, SALE_PREFIX, on=on)


def next_refund_number(on: datetime | None = None) -> str:
    return next_identifier(Refund.refund_number, REFUND_PREFIX, on=on)
