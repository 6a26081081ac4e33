"""
Allocation of a cash amount across unpaid fee line items.

Items are paid in a fixed total order: earliest due date first (overdue
items naturally come first), mandatory before optional on the same date,
then by sequence order, then by id. Each item takes ``min(remaining,
pending)`` until the money runs out.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Iterable

from termfees.core.config import settings
from termfees.modules.fees.aggregates import derive_item_status
from termfees.modules.fees.models import FeeLineItem, FeeStatus, FeeType, TermAssignment
from termfees.shared.utils.money import ZERO, round_money

CREDIT_ITEM_NAME = "Payment Credit"


@dataclass
class ItemApplication:
    item: FeeLineItem
    amount: Decimal


def allocation_sort_key(item: FeeLineItem) -> tuple:
    return (
        item.due_date or date.max,
        0 if item.is_mandatory else 1,
        item.sequence_order,
        item.id or 0,
    )


def apply_to_item(item: FeeLineItem, amount: Decimal, today: date) -> None:
    """Record ``amount`` as paid on ``item`` and re-derive its status."""
    item.paid_amount = round_money(item.paid_amount + amount)
    item.pending_amount = round_money(item.original_amount - item.paid_amount)
    item.status = derive_item_status(item.original_amount, item.paid_amount, item.due_date, today)


def allocate(
    items: Iterable[FeeLineItem], amount: Decimal, today: date
) -> tuple[list[ItemApplication], Decimal]:
    """
    Spread ``amount`` over ``items`` in allocation order, mutating them.

    Returns the per-item applications and whatever could not be placed.
    """
    remaining = round_money(amount)
    applications: list[ItemApplication] = []

    for item in sorted(items, key=allocation_sort_key):
        if remaining <= 0:
            break
        if not item.is_unpaid:
            continue
        applied = min(remaining, item.pending_amount)
        apply_to_item(item, applied, today)
        remaining = round_money(remaining - applied)
        applications.append(ItemApplication(item=item, amount=applied))

    return applications, max(remaining, ZERO)


def build_credit_item(assignment: TermAssignment, amount: Decimal, note: str | None = None) -> FeeLineItem:
    """
    Negative line item holding an overpayment of ``amount``.

    Nothing is paid on it and it counts as settled, so allocation never
    picks it up; it only lowers the assignment's total.
    """
    credit = -round_money(amount)
    return FeeLineItem(
        term_assignment_id=assignment.id,
        student_id=assignment.student_id,
        item_name=CREDIT_ITEM_NAME,
        item_type=FeeType.DISCOUNT.value,
        original_amount=credit,
        paid_amount=ZERO,
        pending_amount=credit,
        due_date=assignment.due_date,
        is_mandatory=False,
        is_auto_generated=False,
        sequence_order=settings.credit_sequence_order,
        status=FeeStatus.PAID.value,
        notes=note,
    )
