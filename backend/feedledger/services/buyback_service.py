# Overview: Service-layer operations for buy-backs; settles returned birds against an open batch.

from __future__ import annotations

from ..errors import InvalidInputError, InvalidStateError
from ..extensions import db
from ..models import BuyBackPayload, LedgerTransaction, PARTY_CUSTOMER, TransactionKind
from ..validation import (
    MAX_AMOUNT_CENTS,
    multiply_cents,
    optional_text,
    parse_amount_cents,
    parse_quantity,
    parse_weight_kg,
)
from .batch_service import get_active_batch
from .concurrency import begin_write, run_atomic
from .context import CallerContext
from .ledger_service import log_posted, money, post_to_party
from .party_service import load_party_for_update


def buy_from_party(
    party_id: int,
    quantity: int,
    weight_kg,
    price_per_kg_cents: int,
    *,
    reference_name: str | None = None,
    actor: CallerContext | None = None,
) -> LedgerTransaction:
    """
    Buy stock back from a customer within their ACTIVE batch.

    total = weight_kg * price_per_kg_cents (half-up to the cent) is credited
    to the customer and recorded as BUY_BACK on the active batch. The batch
    stays open; closing it is start_new_batch()'s job.
    """
    quantity = parse_quantity(quantity)
    weight = parse_weight_kg(weight_kg)
    price_per_kg_cents = parse_amount_cents(price_per_kg_cents, "price_per_kg_cents")
    reference_name = optional_text(reference_name, "reference_name", max_length=128)

    total_cents = multiply_cents(weight, price_per_kg_cents)
    if total_cents < 0 or total_cents > MAX_AMOUNT_CENTS:
        raise InvalidInputError(
            "Invalid calculation for total amount. Check weight and price.",
            details={"weight_kg": str(weight), "price_per_kg_cents": price_per_kg_cents},
        )

    def _op():
        begin_write()
        party = load_party_for_update(party_id, PARTY_CUSTOMER)

        batch = get_active_batch(party.id, for_update=True)
        if batch is None:
            raise InvalidStateError(
                "Cannot buy from customer with no active batch.",
                details={"party_id": party.id},
            )

        txn = post_to_party(
            party,
            TransactionKind.BUY_BACK,
            BuyBackPayload(
                quantity=quantity,
                weight_kg=weight,
                price_per_kg_cents=price_per_kg_cents,
                reference_name=reference_name,
            ),
            amount_cents=total_cents,
            balance_delta_cents=total_cents,
            batch=batch,
            notes=f"Bought back {quantity} chickens ({weight}kg @ {money(price_per_kg_cents)}/kg)",
            actor=actor,
        )
        db.session.commit()
        log_posted("buy_from_party", txn)
        return txn

    return run_atomic(_op, operation="buy_from_party")
