# Overview: Service-layer operations for parties; registration and deposit/withdrawal posting.

"""
Party Service

Customers and wholesale buyers are registered here with a zero balance.
After that, balance_cents moves only through ledger operations:
deposits and withdrawals in this module, sales, buy-backs and discounts
elsewhere, each via ledger_service.post_to_party().
"""

from __future__ import annotations

from typing import Optional

from sqlalchemy.exc import IntegrityError

from ..errors import InsufficientBalanceError, InvalidInputError, NotFoundError
from ..extensions import db
from ..models import (
    EmptyPayload,
    LedgerTransaction,
    Party,
    PARTY_CUSTOMER,
    PARTY_TYPES,
    PARTY_WHOLESALE_BUYER,
    TransactionKind,
)
from ..validation import optional_text, parse_amount_cents, require_text
from .concurrency import begin_write, lock_for_update, run_atomic
from .context import CallerContext
from .ledger_service import log_posted, money, post_to_party


_PARTY_LABELS = {
    PARTY_CUSTOMER: "Customer",
    PARTY_WHOLESALE_BUYER: "Wholesale buyer",
}


def party_label(party_type: Optional[str]) -> str:
    return _PARTY_LABELS.get(party_type, "Party")


def load_party_for_update(party_id: int, party_type: Optional[str] = None) -> Party:
    """
    Load a party under the current operation's write lock.

    Raises NotFoundError if missing, or if it is not of party_type.
    """
    query = db.session.query(Party).filter_by(id=party_id)
    if party_type is not None:
        query = query.filter_by(party_type=party_type)
    party = lock_for_update(query).first()
    if not party:
        raise NotFoundError(f"{party_label(party_type)} not found", details={"party_id": party_id})
    return party


# =============================================================================
# REGISTRY
# =============================================================================

def create_party(
    party_type: str,
    name: str,
    phone: str,
    *,
    email: str | None = None,
    address: str | None = None,
    business_name: str | None = None,
) -> Party:
    """Register a customer or wholesale buyer. Balance always starts at zero."""
    if party_type not in PARTY_TYPES:
        raise InvalidInputError(f"party_type must be one of {', '.join(PARTY_TYPES)}")

    party = Party(
        party_type=party_type,
        name=require_text(name, "name", max_length=128),
        phone=require_text(phone, "phone", max_length=32),
        email=optional_text(email, "email"),
        address=optional_text(address, "address"),
        business_name=optional_text(business_name, "business_name"),
        balance_cents=0,
    )
    db.session.add(party)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise InvalidInputError(
            f"A {party_label(party_type).lower()} with this phone number already exists.",
            details={"phone": party.phone},
        )
    return party


def update_party_contact(party_id: int, **changes) -> Party:
    """
    Update contact fields. The balance is not writable here.
    """
    writable = {"name", "phone", "email", "address", "business_name"}
    unknown = set(changes) - writable
    if unknown:
        raise InvalidInputError(
            f"Fields not writable: {', '.join(sorted(unknown))}",
            details={"fields": sorted(unknown)},
        )

    party = db.session.get(Party, party_id)
    if not party:
        raise NotFoundError("Party not found", details={"party_id": party_id})

    for key, value in changes.items():
        if key == "name":
            party.name = require_text(value, "name", max_length=128)
        elif key == "phone":
            party.phone = require_text(value, "phone", max_length=32)
        else:
            setattr(party, key, optional_text(value, key))

    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise InvalidInputError("Update failed: phone number already in use by another party.")
    return party


def get_party(party_id: int) -> Party:
    party = db.session.get(Party, party_id)
    if not party:
        raise NotFoundError("Party not found", details={"party_id": party_id})
    return party


def list_parties(party_type: Optional[str] = None, search: Optional[str] = None) -> list[Party]:
    """Parties newest first, optionally filtered by a case-insensitive search term."""
    query = db.session.query(Party)
    if party_type is not None:
        query = query.filter(Party.party_type == party_type)
    if search:
        literal = search.strip().replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        term = f"%{literal}%"
        query = query.filter(
            db.or_(
                Party.name.ilike(term, escape="\\"),
                Party.phone.ilike(term, escape="\\"),
                Party.business_name.ilike(term, escape="\\"),
            )
        )
    return query.order_by(Party.created_at.desc(), Party.id.desc()).all()


# =============================================================================
# DEPOSIT / WITHDRAWAL
# =============================================================================

def deposit(party_id: int, amount_cents: int, *, actor: CallerContext | None = None) -> LedgerTransaction:
    """Credit the party's account; records a DEPOSIT (+amount)."""
    amount_cents = parse_amount_cents(amount_cents)

    def _op():
        begin_write()
        party = load_party_for_update(party_id)

        txn = post_to_party(
            party,
            TransactionKind.DEPOSIT,
            EmptyPayload(),
            amount_cents=amount_cents,
            balance_delta_cents=amount_cents,
            notes=f"Deposit of {money(amount_cents)} for {party.name}",
            actor=actor,
        )
        db.session.commit()
        log_posted("deposit", txn)
        return txn

    return run_atomic(_op, operation="deposit")


def withdraw(party_id: int, amount_cents: int, *, actor: CallerContext | None = None) -> LedgerTransaction:
    """
    Pay out from the party's credit; records a WITHDRAWAL (-amount).

    Rejected with InsufficientBalanceError when amount exceeds the balance.
    The check runs against the balance read under the write lock.
    """
    amount_cents = parse_amount_cents(amount_cents)

    def _op():
        begin_write()
        party = load_party_for_update(party_id)

        if amount_cents > party.balance_cents:
            raise InsufficientBalanceError(
                f"Insufficient balance. Available: {money(party.balance_cents)}",
                details={
                    "party_id": party.id,
                    "available_cents": party.balance_cents,
                    "requested_cents": amount_cents,
                },
            )

        txn = post_to_party(
            party,
            TransactionKind.WITHDRAWAL,
            EmptyPayload(),
            amount_cents=-amount_cents,
            balance_delta_cents=-amount_cents,
            notes=f"Withdrawal of {money(amount_cents)} by {party.name}",
            actor=actor,
        )
        db.session.commit()
        log_posted("withdraw", txn)
        return txn

    return run_atomic(_op, operation="withdraw")
