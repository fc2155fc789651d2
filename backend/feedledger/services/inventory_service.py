# Overview: Service-layer operations for inventory; the ledger's view of product price and stock.

# backend/feedledger/services/inventory_service.py

from __future__ import annotations

from ..errors import InsufficientStockError, InvalidInputError, NotFoundError
from ..extensions import db
from ..models import LedgerTransaction, Product, StockPayload, TransactionKind
from ..validation import optional_text, parse_amount_cents, parse_int, parse_quantity, require_text
from .concurrency import begin_write, lock_for_update, run_atomic
from .context import CallerContext
from .ledger_service import append_transaction, log_posted
"""
Inventory Invariants (authoritative)

- stock_quantity never goes below zero. Every decrement is a conditional
  UPDATE (stock_quantity >= qty) so the floor check and the write are one
  statement, backed by a CHECK constraint.
- Stock changes never commit on their own when called from a sale: they share
  the sale's DB transaction and roll back with it.
- STOCK_ADD / STOCK_REMOVE rows carry the quantity change and no amount.
"""


def create_product(sku: str, name: str, price_cents: int, stock_quantity: int = 0) -> Product:
    """Seed a product the ledger can sell. Catalog editing lives elsewhere."""
    stock_quantity = parse_int(stock_quantity, "stock_quantity")
    if stock_quantity < 0:
        raise InvalidInputError("stock_quantity cannot be negative")

    product = Product(
        sku=require_text(sku, "sku", max_length=64),
        name=require_text(name, "name"),
        price_cents=parse_amount_cents(price_cents, "price_cents"),
        stock_quantity=stock_quantity,
        is_active=True,
    )
    db.session.add(product)
    db.session.commit()
    return product


def get_product(product_id: int, *, for_update: bool = False) -> Product:
    query = db.session.query(Product).filter_by(id=product_id)
    if for_update:
        query = lock_for_update(query)
    product = query.first()
    if not product:
        raise NotFoundError(f"Product with ID {product_id} not found.", details={"product_id": product_id})
    return product


def decrement_stock(product_id: int, quantity: int) -> None:
    """
    Atomically take quantity units off stock, or fail without writing.

    Does not commit. Raises InsufficientStockError if fewer units remain.
    """
    result = db.session.execute(
        db.update(Product)
        .where(Product.id == product_id, Product.stock_quantity >= quantity)
        .values(stock_quantity=Product.stock_quantity - quantity)
        .execution_options(synchronize_session="fetch")
    )
    if result.rowcount == 1:
        return

    product = get_product(product_id)
    raise InsufficientStockError(
        f"Not enough stock for {product.name}. Only {product.stock_quantity} available.",
        details={
            "product_id": product.id,
            "requested_quantity": quantity,
            "on_hand": product.stock_quantity,
        },
    )


def add_stock(
    product_id: int,
    quantity: int,
    *,
    notes: str | None = None,
    actor: CallerContext | None = None,
) -> LedgerTransaction:
    """Receive stock; records STOCK_ADD with the positive quantity change."""
    quantity = parse_quantity(quantity)
    notes = optional_text(notes, "notes", max_length=500)

    def _op():
        begin_write()
        product = get_product(product_id, for_update=True)
        product.stock_quantity = product.stock_quantity + quantity
        db.session.flush()

        txn = append_transaction(
            TransactionKind.STOCK_ADD,
            StockPayload(quantity_change=quantity),
            product_id=product.id,
            notes=notes or f"Added {quantity} unit(s) of {product.name}",
            actor=actor,
        )
        db.session.commit()
        log_posted("add_stock", txn)
        return txn

    return run_atomic(_op, operation="add_stock")


def remove_stock(
    product_id: int,
    quantity: int,
    *,
    notes: str | None = None,
    actor: CallerContext | None = None,
) -> LedgerTransaction:
    """Write stock off; records STOCK_REMOVE with the negative quantity change."""
    quantity = parse_quantity(quantity)
    notes = optional_text(notes, "notes", max_length=500)

    def _op():
        begin_write()
        product = get_product(product_id, for_update=True)
        decrement_stock(product.id, quantity)

        txn = append_transaction(
            TransactionKind.STOCK_REMOVE,
            StockPayload(quantity_change=-quantity),
            product_id=product.id,
            notes=notes or f"Removed {quantity} unit(s) of {product.name}",
            actor=actor,
        )
        db.session.commit()
        log_posted("remove_stock", txn)
        return txn

    return run_atomic(_op, operation="remove_stock")
