# Overview: Service-layer operations for batches; lifecycle transitions and discount adjustments.

"""
Batch Service

BATCH LIFECYCLE:
    ACTIVE -> COMPLETED (terminal; the next cycle is a new batch)

start_new_batch() closes the customer's ACTIVE batch (if any) at the current
balance and opens the next one at that same balance, in one DB transaction.
Closing a batch never moves money.

DISCOUNTS:
Discounts live on ACTIVE batches only. Once a batch completes its
ending_balance_cents already includes them, so they are frozen with it.
Adding one raises the balance and records DISCOUNT (+amount); removing one
lowers it and records DISCOUNT_REMOVAL (-amount).
"""

from __future__ import annotations

from typing import Optional

from flask import current_app

from ..errors import InvalidStateError, NotFoundError
from ..extensions import db
from ..models import (
    Batch,
    BatchDiscount,
    BATCH_ACTIVE,
    BATCH_COMPLETED,
    DiscountPayload,
    PARTY_CUSTOMER,
    TransactionKind,
)
from ..time_utils import utcnow
from ..validation import parse_amount_cents, require_text
from .concurrency import begin_write, lock_for_update, run_atomic
from .context import CallerContext
from .ledger_service import latest_transaction_id, log_posted, money, post_to_party
from .party_service import load_party_for_update


def _active_batch_query(party_id: int):
    return db.session.query(Batch).filter_by(party_id=party_id, status=BATCH_ACTIVE)


def next_batch_number(party_id: int) -> int:
    """Next number from the party's own history: highest existing + 1, or 1."""
    highest = (
        db.session.query(db.func.max(Batch.batch_number))
        .filter(Batch.party_id == party_id)
        .scalar()
    )
    return (highest or 0) + 1


def start_new_batch(party_id: int, *, actor: CallerContext | None = None) -> Batch:
    """
    Close the customer's ACTIVE batch (if any) and open the next one.

    - closed batch: status=COMPLETED, end_date=now, ending_balance=current balance
    - new batch: batch_number = previous + 1 (1 for the first), starting_balance=current balance
    """
    def _op():
        begin_write()
        party = load_party_for_update(party_id)
        if party.party_type != PARTY_CUSTOMER:
            raise InvalidStateError(
                "Batches are only tracked for customers",
                details={"party_id": party.id, "party_type": party.party_type},
            )

        now = utcnow()
        closed = get_active_batch(party.id, for_update=True)
        if closed is not None:
            closed.status = BATCH_COMPLETED
            closed.end_date = now
            closed.ending_balance_cents = party.balance_cents
            # Close before insert so the one-ACTIVE-per-party index never sees two
            db.session.flush()

        batch = Batch(
            party_id=party.id,
            batch_number=next_batch_number(party.id),
            status=BATCH_ACTIVE,
            start_date=now,
            starting_balance_cents=party.balance_cents,
            opened_after_transaction_id=latest_transaction_id(party.id),
        )
        db.session.add(batch)
        db.session.commit()

        if closed is not None:
            current_app.logger.info(
                "start_new_batch: party_id=%s closed batch #%s at %s",
                party.id, closed.batch_number, closed.ending_balance_cents,
            )
        current_app.logger.info(
            "start_new_batch: party_id=%s opened batch #%s (id=%s) at %s",
            party.id, batch.batch_number, batch.id, batch.starting_balance_cents,
        )
        return batch

    return run_atomic(_op, operation="start_new_batch")


def _load_active_batch_for_update(batch_id: int, action: str) -> Batch:
    batch = lock_for_update(db.session.query(Batch).filter_by(id=batch_id)).first()
    if not batch:
        raise NotFoundError("Batch not found.", details={"batch_id": batch_id})
    if batch.status != BATCH_ACTIVE:
        raise InvalidStateError(
            f"Discounts can only be {action} active batches.",
            details={"batch_id": batch.id, "status": batch.status},
        )
    return batch


def add_discount(
    batch_id: int,
    description: str,
    amount_cents: int,
    *,
    actor: CallerContext | None = None,
) -> Batch:
    """Attach a discount to an ACTIVE batch and credit the customer by its amount."""
    description = require_text(description, "description")
    amount_cents = parse_amount_cents(amount_cents)

    def _op():
        begin_write()
        batch = _load_active_batch_for_update(batch_id, "added to")
        party = load_party_for_update(batch.party_id)

        discount = BatchDiscount(description=description, amount_cents=amount_cents, created_at=utcnow())
        batch.discounts.append(discount)
        batch.updated_at = utcnow()
        db.session.flush()

        txn = post_to_party(
            party,
            TransactionKind.DISCOUNT,
            DiscountPayload(discount_id=discount.id, description=description),
            amount_cents=amount_cents,
            balance_delta_cents=amount_cents,
            batch=batch,
            notes=f"Discount applied: {description} ({money(amount_cents)})",
            actor=actor,
        )
        db.session.commit()
        log_posted("add_discount", txn)
        return batch

    return run_atomic(_op, operation="add_discount")


def remove_discount(batch_id: int, discount_id: int, *, actor: CallerContext | None = None) -> Batch:
    """Drop a discount from an ACTIVE batch and reverse its balance credit."""
    def _op():
        begin_write()
        batch = _load_active_batch_for_update(batch_id, "removed from")

        discount = next((d for d in batch.discounts if d.id == discount_id), None)
        if discount is None:
            raise NotFoundError(
                "Discount not found in this batch.",
                details={"batch_id": batch.id, "discount_id": discount_id},
            )

        party = load_party_for_update(batch.party_id)
        txn = post_to_party(
            party,
            TransactionKind.DISCOUNT_REMOVAL,
            DiscountPayload(discount_id=discount.id, description=discount.description),
            amount_cents=-discount.amount_cents,
            balance_delta_cents=-discount.amount_cents,
            batch=batch,
            notes=f"Discount removed: {discount.description} ({money(discount.amount_cents)})",
            actor=actor,
        )

        batch.discounts.remove(discount)
        batch.updated_at = utcnow()
        db.session.commit()
        log_posted("remove_discount", txn)
        return batch

    return run_atomic(_op, operation="remove_discount")


# =============================================================================
# READS
# =============================================================================

def get_batch(batch_id: int) -> Batch:
    batch = db.session.get(Batch, batch_id)
    if not batch:
        raise NotFoundError("Batch not found.", details={"batch_id": batch_id})
    return batch


def get_active_batch(party_id: int, *, for_update: bool = False) -> Optional[Batch]:
    query = _active_batch_query(party_id)
    if for_update:
        query = lock_for_update(query)
    return query.first()


def list_batches_for_party(party_id: int) -> list[Batch]:
    """All batches for a party, newest first."""
    return (
        db.session.query(Batch)
        .filter_by(party_id=party_id)
        .order_by(Batch.batch_number.desc())
        .all()
    )
