"""
Sales Service - settles retail and wholesale sales against the ledger

WHY: A sale touches stock, the buyer's balance, the Sale document and the
ledger. All four are written in one DB transaction so a failed line rolls
back every earlier stock decrement.

PAYMENT:
- CREDIT: balance moves by -total (the party owes more)
- CASH: balance unchanged; before/after snapshots are equal
- Walk-in (random customer) sales have no account and must be CASH
"""

from __future__ import annotations

from typing import Iterable

from ..errors import InsufficientStockError, InvalidInputError, InvalidStateError, NotFoundError
from ..extensions import db
from ..models import (
    LedgerTransaction,
    PARTY_CUSTOMER,
    PARTY_WHOLESALE_BUYER,
    PAYMENT_CASH,
    PAYMENT_CREDIT,
    Sale,
    SaleItem,
    SaleLine,
    SalePayload,
    SALE_RETAIL,
    SALE_WHOLESALE,
    TransactionKind,
    WholesaleItem,
    WholesaleSalePayload,
)
from ..validation import (
    MAX_AMOUNT_CENTS,
    optional_text,
    parse_int,
    parse_price_cents,
    parse_quantity,
    parse_weight_kg,
    require_text,
)
from .batch_service import get_active_batch
from .concurrency import begin_write, run_atomic
from .context import CallerContext
from .inventory_service import decrement_stock, get_product
from .ledger_service import append_transaction, log_posted, post_to_party
from .party_service import load_party_for_update


def _collect_items(items: Iterable[dict] | None) -> list:
    # Generators are truthy even when empty
    try:
        collected = list(items) if items is not None else []
    except TypeError:
        raise InvalidInputError("items must be a list of line items")
    if not collected:
        raise InvalidInputError("A sale needs at least one line item")
    return collected


def _parse_retail_items(items: Iterable[dict] | None) -> list[tuple[int, int]]:
    items = _collect_items(items)
    parsed = []
    for index, item in enumerate(items):
        if not isinstance(item, dict):
            raise InvalidInputError(f"items[{index}] must be an object")
        product_id = parse_int(item.get("product_id"), f"items[{index}].product_id")
        quantity = parse_quantity(item.get("quantity"), f"items[{index}].quantity")
        parsed.append((product_id, quantity))
    return parsed


def _parse_wholesale_items(items: Iterable[dict] | None) -> list[WholesaleItem]:
    items = _collect_items(items)
    parsed = []
    for index, item in enumerate(items):
        if not isinstance(item, dict):
            raise InvalidInputError(f"items[{index}] must be an object")
        weight = item.get("weight_kg")
        parsed.append(WholesaleItem(
            name=require_text(item.get("name"), f"items[{index}].name"),
            quantity=parse_quantity(item.get("quantity"), f"items[{index}].quantity"),
            price_cents=parse_price_cents(item.get("price_cents"), f"items[{index}].price_cents"),
            weight_kg=parse_weight_kg(weight, f"items[{index}].weight_kg") if weight is not None else None,
        ))
    return parsed


def _payment_method(is_cash_payment: bool) -> str:
    return PAYMENT_CASH if is_cash_payment else PAYMENT_CREDIT


def _capture_lines(requested: list[tuple[int, int]]) -> tuple[list[SaleItem], int]:
    """
    Price every line from the product as it is now and verify stock for the
    whole request before anything is decremented.
    """
    snapshots: list[SaleItem] = []
    per_product: dict[int, int] = {}
    products = {}
    for product_id, quantity in requested:
        product = products.get(product_id) or get_product(product_id, for_update=True)
        if not product.is_active:
            raise InvalidStateError(
                f"{product.name} is not available for sale.",
                details={"product_id": product.id},
            )
        products[product_id] = product
        per_product[product_id] = per_product.get(product_id, 0) + quantity
        snapshots.append(SaleItem(
            product_id=product.id,
            name=product.name,
            quantity=quantity,
            unit_price_cents=product.price_cents,
        ))

    for product_id, total_qty in per_product.items():
        product = products[product_id]
        if product.stock_quantity < total_qty:
            raise InsufficientStockError(
                f"Not enough stock for {product.name}. Only {product.stock_quantity} available.",
                details={
                    "product_id": product.id,
                    "requested_quantity": total_qty,
                    "on_hand": product.stock_quantity,
                },
            )

    total_cents = sum(s.line_total_cents for s in snapshots)
    if total_cents > MAX_AMOUNT_CENTS:
        raise InvalidInputError("Sale total exceeds the maximum allowed amount")
    return snapshots, total_cents


def create_sale(
    items: Iterable[dict],
    *,
    party_id: int | None = None,
    is_cash_payment: bool = False,
    is_random_customer: bool = False,
    random_customer_name: str | None = None,
    actor: CallerContext | None = None,
) -> LedgerTransaction:
    """
    Settle a retail sale of inventory products.

    items: [{"product_id": int, "quantity": int}, ...]

    Returns the SALE ledger row; the Sale document is txn.sale.
    """
    requested = _parse_retail_items(items)
    if is_random_customer:
        if not is_cash_payment:
            raise InvalidStateError("Walk-in sales must be paid in cash")
        random_customer_name = optional_text(random_customer_name, "random_customer_name", max_length=128)
    elif party_id is None:
        raise InvalidInputError("party_id is required unless the sale is to a walk-in customer")
    payment_method = _payment_method(is_cash_payment)

    def _op():
        begin_write()
        party = None if is_random_customer else load_party_for_update(party_id, PARTY_CUSTOMER)

        snapshots, total_cents = _capture_lines(requested)
        for snap in snapshots:
            decrement_stock(snap.product_id, snap.quantity)

        batch = get_active_batch(party.id, for_update=True) if party is not None else None

        sale = Sale(
            sale_type=SALE_RETAIL,
            party_id=party.id if party is not None else None,
            batch_id=batch.id if batch is not None else None,
            payment_method=payment_method,
            total_cents=total_cents,
            random_customer_name=random_customer_name if party is None else None,
            lines=[
                SaleLine(
                    product_id=s.product_id,
                    name=s.name,
                    quantity=s.quantity,
                    unit_price_cents=s.unit_price_cents,
                    line_total_cents=s.line_total_cents,
                )
                for s in snapshots
            ],
        )
        db.session.add(sale)
        db.session.flush()

        payload = SalePayload(
            items=tuple(snapshots),
            random_customer_name=random_customer_name if party is None else None,
        )
        if party is not None:
            txn = post_to_party(
                party,
                TransactionKind.SALE,
                payload,
                amount_cents=total_cents,
                balance_delta_cents=0 if is_cash_payment else -total_cents,
                batch=batch,
                sale_id=sale.id,
                payment_method=payment_method,
                notes=f"Sale of {len(snapshots)} item(s) to {party.name}",
                actor=actor,
            )
        else:
            txn = append_transaction(
                TransactionKind.SALE,
                payload,
                amount_cents=total_cents,
                sale_id=sale.id,
                payment_method=PAYMENT_CASH,
                notes=f"Cash sale to {random_customer_name or 'a random customer'}",
                actor=actor,
            )

        db.session.commit()
        log_posted("create_sale", txn)
        return txn

    return run_atomic(_op, operation="create_sale")


def create_wholesale_sale(
    wholesale_buyer_id: int,
    items: Iterable[dict],
    *,
    is_cash_payment: bool = False,
    actor: CallerContext | None = None,
) -> LedgerTransaction:
    """
    Settle a wholesale sale of free-form lines to a wholesale buyer.

    items: [{"name": str, "quantity": int, "price_cents": int (line total),
             "weight_kg": optional}, ...]

    Lines are not inventory-tracked; balance semantics match create_sale().
    """
    lines = _parse_wholesale_items(items)
    total_cents = sum(line.price_cents for line in lines)
    if total_cents > MAX_AMOUNT_CENTS:
        raise InvalidInputError("Sale total exceeds the maximum allowed amount")
    payment_method = _payment_method(is_cash_payment)

    def _op():
        begin_write()
        buyer = load_party_for_update(wholesale_buyer_id, PARTY_WHOLESALE_BUYER)

        sale = Sale(
            sale_type=SALE_WHOLESALE,
            party_id=buyer.id,
            payment_method=payment_method,
            total_cents=total_cents,
            lines=[
                SaleLine(
                    name=line.name,
                    quantity=line.quantity,
                    weight_grams=int(line.weight_kg * 1000) if line.weight_kg is not None else None,
                    line_total_cents=line.price_cents,
                )
                for line in lines
            ],
        )
        db.session.add(sale)
        db.session.flush()

        txn = post_to_party(
            buyer,
            TransactionKind.WHOLESALE_SALE,
            WholesaleSalePayload(items=tuple(lines)),
            amount_cents=total_cents,
            balance_delta_cents=0 if is_cash_payment else -total_cents,
            sale_id=sale.id,
            payment_method=payment_method,
            notes=f"Wholesale sale of {len(lines)} item(s) to {buyer.name}",
            actor=actor,
        )
        db.session.commit()
        log_posted("create_wholesale_sale", txn)
        return txn

    return run_atomic(_op, operation="create_wholesale_sale")


def get_sale(sale_id: int) -> Sale:
    sale = db.session.get(Sale, sale_id)
    if not sale:
        raise NotFoundError("Sale not found", details={"sale_id": sale_id})
    return sale
