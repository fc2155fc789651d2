# Overview: Service-layer operations for the transaction ledger; append, read and reconcile.

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, Optional

from flask import current_app

from ..errors import InvalidInputError, NotFoundError
from ..extensions import db
from ..models import (
    Batch,
    LedgerTransaction,
    Party,
    PAYLOAD_TYPES,
    PARTY_KINDS,
    STOCK_KINDS,
    PAYMENT_CASH,
    PAYMENT_CREDIT,
    TransactionKind,
)
from ..time_utils import utcnow
from ..validation import format_cents
from .context import CallerContext
"""
Ledger Invariants (authoritative)

- Append-only: rows are never updated or deleted (ORM hooks refuse both).
- A party balance changes only through post_to_party(), which writes the new
  balance and the LedgerTransaction in the same DB transaction.
- balance_after - balance_before of a row is its balance effect:
    SALE / WHOLESALE_SALE: -amount on CREDIT, 0 on CASH
    every other party kind: amount
- Reconstructing a party's balance = sum of balance effects of its rows,
  starting from 0 at registration.
"""

DEFAULT_PAGE_SIZE = 15
MAX_PAGE_SIZE = 100

# Required sign of amount_cents per kind ("+" > 0, "-" < 0, "0+" >= 0)
_AMOUNT_SIGN = {
    TransactionKind.SALE: "0+",
    TransactionKind.WHOLESALE_SALE: "0+",
    TransactionKind.BUY_BACK: "0+",
    TransactionKind.DEPOSIT: "+",
    TransactionKind.DISCOUNT: "+",
    TransactionKind.WITHDRAWAL: "-",
    TransactionKind.DISCOUNT_REMOVAL: "-",
}

_SALE_KINDS = (TransactionKind.SALE, TransactionKind.WHOLESALE_SALE)


def currency_label() -> str:
    return current_app.config.get("LEDGER_CURRENCY_LABEL", "TK")


def money(cents: int) -> str:
    return format_cents(cents, currency_label())


def expected_balance_effect(kind: TransactionKind, amount_cents: int, payment_method: str | None) -> int:
    """Balance movement implied by a row's kind, amount and payment method."""
    if kind in _SALE_KINDS:
        return 0 if payment_method == PAYMENT_CASH else -amount_cents
    if kind in PARTY_KINDS:
        return amount_cents
    return 0


def _check_amount_sign(kind: TransactionKind, amount_cents: int) -> None:
    rule = _AMOUNT_SIGN[kind]
    ok = (
        (rule == "+" and amount_cents > 0)
        or (rule == "-" and amount_cents < 0)
        or (rule == "0+" and amount_cents >= 0)
    )
    if not ok:
        raise ValueError(f"{kind.value} amount has the wrong sign: {amount_cents}")


def _validate_entry(
    kind: TransactionKind,
    payload,
    *,
    party: Optional[Party],
    product_id: Optional[int],
    amount_cents: Optional[int],
    balance_before_cents: Optional[int],
    balance_after_cents: Optional[int],
    payment_method: Optional[str],
) -> None:
    expected_type = PAYLOAD_TYPES[kind]
    if not isinstance(payload, expected_type):
        raise TypeError(f"{kind.value} requires {expected_type.__name__}, got {type(payload).__name__}")

    if kind in STOCK_KINDS:
        if product_id is None:
            raise ValueError(f"{kind.value} must reference a product")
        if party is not None or amount_cents is not None:
            raise ValueError(f"{kind.value} carries no party or amount")
        if balance_before_cents is not None or balance_after_cents is not None:
            raise ValueError(f"{kind.value} carries no balance snapshots")
        return

    if amount_cents is None:
        raise ValueError(f"{kind.value} requires an amount")
    _check_amount_sign(kind, amount_cents)

    if kind in _SALE_KINDS and payment_method not in (PAYMENT_CASH, PAYMENT_CREDIT):
        raise ValueError(f"{kind.value} requires a payment method")

    if party is None:
        # Only a walk-in cash sale has no account behind it
        if kind != TransactionKind.SALE or payment_method != PAYMENT_CASH:
            raise ValueError(f"{kind.value} must reference a party")
        if balance_before_cents is not None or balance_after_cents is not None:
            raise ValueError("Walk-in sales carry no balance snapshots")
        return

    if balance_before_cents is None or balance_after_cents is None:
        raise ValueError(f"{kind.value} requires balance snapshots")

    effect = balance_after_cents - balance_before_cents
    if effect != expected_balance_effect(kind, amount_cents, payment_method):
        raise ValueError(
            f"{kind.value} snapshots move the balance by {effect}, "
            f"expected {expected_balance_effect(kind, amount_cents, payment_method)}"
        )


def append_transaction(
    kind: TransactionKind,
    payload,
    *,
    party: Optional[Party] = None,
    batch: Optional[Batch] = None,
    product_id: Optional[int] = None,
    sale_id: Optional[int] = None,
    amount_cents: Optional[int] = None,
    balance_before_cents: Optional[int] = None,
    balance_after_cents: Optional[int] = None,
    payment_method: Optional[str] = None,
    notes: Optional[str] = None,
    actor: Optional[CallerContext] = None,
    occurred_at: Optional[datetime] = None,
) -> LedgerTransaction:
    """
    Append one ledger row inside the caller's DB transaction.

    - Validates the kind/payload pairing and the sign and snapshot rules.
    - Does not commit; the calling operation commits or rolls back everything.
    """
    kind = TransactionKind(kind)
    _validate_entry(
        kind,
        payload,
        party=party,
        product_id=product_id,
        amount_cents=amount_cents,
        balance_before_cents=balance_before_cents,
        balance_after_cents=balance_after_cents,
        payment_method=payment_method,
    )

    txn = LedgerTransaction(
        type=kind.value,
        party_id=party.id if party is not None else None,
        batch_id=batch.id if batch is not None else None,
        product_id=product_id,
        sale_id=sale_id,
        amount_cents=amount_cents,
        balance_before_cents=balance_before_cents,
        balance_after_cents=balance_after_cents,
        payment_method=payment_method,
        notes=notes,
        payload_json=payload.to_dict(),
        recorded_by=actor.user_id if actor else None,
        recorded_role=actor.role if actor else None,
        occurred_at=occurred_at or utcnow(),
    )
    db.session.add(txn)
    db.session.flush()  # ensures txn.id is assigned without committing
    return txn


def post_to_party(
    party: Party,
    kind: TransactionKind,
    payload,
    *,
    amount_cents: int,
    balance_delta_cents: int,
    **fields,
) -> LedgerTransaction:
    """
    Move a party's balance and record the matching ledger row, together.

    The party must already be loaded under the operation's write lock.
    """
    balance_before = party.balance_cents
    party.balance_cents = balance_before + balance_delta_cents
    db.session.flush()

    return append_transaction(
        kind,
        payload,
        party=party,
        amount_cents=amount_cents,
        balance_before_cents=balance_before,
        balance_after_cents=party.balance_cents,
        **fields,
    )


def log_posted(operation: str, txn: LedgerTransaction) -> None:
    current_app.logger.info(
        "%s: posted %s #%s party_id=%s batch_id=%s amount_cents=%s balance %s -> %s",
        operation,
        txn.type,
        txn.id,
        txn.party_id,
        txn.batch_id,
        txn.amount_cents,
        txn.balance_before_cents,
        txn.balance_after_cents,
    )


def latest_transaction_id(party_id: int) -> Optional[int]:
    return (
        db.session.query(db.func.max(LedgerTransaction.id))
        .filter(LedgerTransaction.party_id == party_id)
        .scalar()
    )


# =============================================================================
# READS
# =============================================================================

def get_transaction(transaction_id: int) -> LedgerTransaction:
    txn = db.session.get(LedgerTransaction, transaction_id)
    if not txn:
        raise NotFoundError("Transaction not found", details={"transaction_id": transaction_id})
    return txn


def _parse_kinds(kinds) -> list[str]:
    if kinds is None:
        return []
    values = []
    for k in kinds:
        try:
            values.append(TransactionKind(k).value)
        except ValueError:
            raise InvalidInputError(f"Unknown transaction kind: {k}", details={"kind": str(k)})
    return values


def list_transactions(
    *,
    party_id: Optional[int] = None,
    batch_id: Optional[int] = None,
    kinds: Optional[Iterable[TransactionKind | str]] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    page: int = 1,
    per_page: int = DEFAULT_PAGE_SIZE,
):
    """
    Newest-first page of ledger rows.

    start/end are inclusive bounds on occurred_at. Returns a Flask-SQLAlchemy
    Pagination (items, total, pages).
    """
    stmt = db.select(LedgerTransaction)
    if party_id is not None:
        stmt = stmt.where(LedgerTransaction.party_id == party_id)
    if batch_id is not None:
        stmt = stmt.where(LedgerTransaction.batch_id == batch_id)
    kind_values = _parse_kinds(kinds)
    if kind_values:
        stmt = stmt.where(LedgerTransaction.type.in_(kind_values))
    if start is not None:
        stmt = stmt.where(LedgerTransaction.occurred_at >= start)
    if end is not None:
        stmt = stmt.where(LedgerTransaction.occurred_at <= end)
    stmt = stmt.order_by(LedgerTransaction.occurred_at.desc(), LedgerTransaction.id.desc())

    per_page = max(1, min(per_page, MAX_PAGE_SIZE))
    return db.paginate(stmt, page=max(1, page), per_page=per_page, error_out=False, count=True)


# =============================================================================
# RECONCILIATION
# =============================================================================

@dataclass
class ReconciliationReport:
    party_id: int
    stored_balance_cents: int
    reconstructed_balance_cents: int
    transaction_count: int
    # Rows whose balance_before does not continue from the previous row
    continuity_breaks: list[int] = field(default_factory=list)
    # Rows whose snapshots disagree with their kind/amount
    effect_mismatches: list[int] = field(default_factory=list)
    earliest_batch_id: Optional[int] = None
    from_earliest_batch_cents: Optional[int] = None

    @property
    def is_consistent(self) -> bool:
        return (
            self.stored_balance_cents == self.reconstructed_balance_cents
            and not self.continuity_breaks
            and not self.effect_mismatches
            and (
                self.from_earliest_batch_cents is None
                or self.from_earliest_batch_cents == self.stored_balance_cents
            )
        )

    def to_dict(self) -> dict:
        return {
            "party_id": self.party_id,
            "stored_balance_cents": self.stored_balance_cents,
            "reconstructed_balance_cents": self.reconstructed_balance_cents,
            "transaction_count": self.transaction_count,
            "continuity_breaks": self.continuity_breaks,
            "effect_mismatches": self.effect_mismatches,
            "earliest_batch_id": self.earliest_batch_id,
            "from_earliest_batch_cents": self.from_earliest_batch_cents,
            "is_consistent": self.is_consistent,
        }


def reconcile_party(party_id: int) -> ReconciliationReport:
    """
    Check a party's stored balance against its ledger.

    Two reconstructions must agree with the stored balance:
    - from zero at registration, summing every row's balance effect
    - from the earliest batch's starting balance, summing the rows recorded
      after that batch opened
    """
    party = db.session.get(Party, party_id)
    if not party:
        raise NotFoundError("Party not found", details={"party_id": party_id})

    rows = (
        db.session.query(LedgerTransaction)
        .filter(LedgerTransaction.party_id == party_id)
        .order_by(LedgerTransaction.id.asc())
        .all()
    )

    report = ReconciliationReport(
        party_id=party_id,
        stored_balance_cents=party.balance_cents,
        reconstructed_balance_cents=0,
        transaction_count=len(rows),
    )

    running = 0
    for txn in rows:
        if txn.balance_before_cents != running:
            report.continuity_breaks.append(txn.id)
        expected = expected_balance_effect(txn.kind, txn.amount_cents or 0, txn.payment_method)
        if txn.balance_effect_cents != expected:
            report.effect_mismatches.append(txn.id)
        running += expected
    report.reconstructed_balance_cents = running

    earliest = (
        db.session.query(Batch)
        .filter(Batch.party_id == party_id)
        .order_by(Batch.batch_number.asc())
        .first()
    )
    if earliest is not None:
        cutoff = earliest.opened_after_transaction_id or 0
        after = sum(
            expected_balance_effect(t.kind, t.amount_cents or 0, t.payment_method)
            for t in rows
            if t.id > cutoff
        )
        report.earliest_batch_id = earliest.id
        report.from_earliest_batch_cents = earliest.starting_balance_cents + after

    return report
