"""Loan lifecycle rules.

Stored statuses move along::

    PENDING -> APPROVED -> RETURNED -> VERIFIED_RETURNED
    PENDING -> REJECTED
    PENDING -> CANCELLED

``LATE`` is never written by this service. It is derived when an approved
loan is still out after its due date. Older records may carry a stored
``LATE``; those are read as approved-and-overdue.
"""
from datetime import date, datetime, timedelta
from typing import Optional, Union

import config

PENDING = "PENDING"
APPROVED = "APPROVED"
REJECTED = "REJECTED"
RETURNED = "RETURNED"
VERIFIED_RETURNED = "VERIFIED_RETURNED"
LATE = "LATE"
CANCELLED = "CANCELLED"

ALL_STATUSES = (PENDING, APPROVED, REJECTED, RETURNED, VERIFIED_RETURNED, LATE, CANCELLED)
ACTIVE_STATUSES = (PENDING, APPROVED, LATE)
# Loans whose copy has left the shelf at some point
CIRCULATED_STATUSES = (APPROVED, LATE, RETURNED, VERIFIED_RETURNED)

TRANSITIONS = {
    PENDING: {APPROVED, REJECTED, CANCELLED},
    APPROVED: {RETURNED},
    LATE: {RETURNED},
    RETURNED: {VERIFIED_RETURNED},
    REJECTED: set(),
    VERIFIED_RETURNED: set(),
    CANCELLED: set(),
}


class InvalidTransition(Exception):
    def __init__(self, current: str, target: str):
        self.current = current
        self.target = target
        super().__init__(f"Cannot change loan status from {current} to {target}")


def ensure_transition(current: str, target: str) -> None:
    if target not in TRANSITIONS.get(current, set()):
        raise InvalidTransition(current, target)


def due_date_for(borrow_date: datetime) -> datetime:
    return borrow_date + timedelta(days=config.LOAN_DURATION_DAYS)


def _as_date(value: Union[date, datetime]) -> date:
    return value.date() if isinstance(value, datetime) else value


def is_overdue(loan: dict, today: Optional[date] = None) -> bool:
    today = today or date.today()
    if loan["status"] not in (APPROVED, LATE) or loan.get("actual_return_date"):
        return False
    return _as_date(loan["return_date"]) < today


def effective_status(loan: dict, today: Optional[date] = None) -> str:
    if is_overdue(loan, today):
        return LATE
    if loan["status"] == LATE:
        # legacy stored LATE: either already handed back or no longer overdue
        return RETURNED if loan.get("actual_return_date") else APPROVED
    return loan["status"]


def late_days(loan: dict, today: Optional[date] = None) -> int:
    """Whole days between the due date and the return (or today if still out)."""
    if loan["status"] not in CIRCULATED_STATUSES:
        return 0
    end = loan.get("actual_return_date") or today or date.today()
    return max(0, (_as_date(end) - _as_date(loan["return_date"])).days)


def compute_fine(loan: dict, today: Optional[date] = None, unit_fine: Optional[int] = None) -> int:
    if unit_fine is None:
        unit_fine = config.FINE_PER_DAY
    return late_days(loan, today) * unit_fine


def returned_late(loan: dict) -> bool:
    actual = loan.get("actual_return_date")
    return bool(actual) and _as_date(actual) > _as_date(loan["return_date"])
