from __future__ import annotations

import enum
from dataclasses import dataclass, field
from decimal import Decimal

from sqlalchemy import event
from sqlalchemy.orm import object_session

from ..errors import ImmutableRecordError
from ..extensions import db
from ..time_utils import to_utc_z


class TransactionKind(str, enum.Enum):
    SALE = "SALE"
    DEPOSIT = "DEPOSIT"
    WITHDRAWAL = "WITHDRAWAL"
    STOCK_ADD = "STOCK_ADD"
    STOCK_REMOVE = "STOCK_REMOVE"
    BUY_BACK = "BUY_BACK"
    WHOLESALE_SALE = "WHOLESALE_SALE"
    DISCOUNT = "DISCOUNT"
    DISCOUNT_REMOVAL = "DISCOUNT_REMOVAL"


# =============================================================================
# PAYLOADS (one type per kind, see PAYLOAD_TYPES)
# =============================================================================

@dataclass(frozen=True)
class EmptyPayload:
    def to_dict(self) -> dict:
        return {}

    @classmethod
    def from_dict(cls, data: dict) -> "EmptyPayload":
        return cls()


@dataclass(frozen=True)
class SaleItem:
    product_id: int
    name: str
    quantity: int
    unit_price_cents: int

    @property
    def line_total_cents(self) -> int:
        return self.quantity * self.unit_price_cents


@dataclass(frozen=True)
class SalePayload:
    items: tuple[SaleItem, ...]
    random_customer_name: str | None = None

    def to_dict(self) -> dict:
        return {
            "items": [
                {
                    "product_id": i.product_id,
                    "name": i.name,
                    "quantity": i.quantity,
                    "unit_price_cents": i.unit_price_cents,
                }
                for i in self.items
            ],
            "random_customer_name": self.random_customer_name,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "SalePayload":
        return cls(
            items=tuple(SaleItem(**i) for i in data.get("items", [])),
            random_customer_name=data.get("random_customer_name"),
        )


@dataclass(frozen=True)
class WholesaleItem:
    name: str
    quantity: int
    price_cents: int
    weight_kg: Decimal | None = None


@dataclass(frozen=True)
class WholesaleSalePayload:
    items: tuple[WholesaleItem, ...]

    def to_dict(self) -> dict:
        return {
            "items": [
                {
                    "name": i.name,
                    "quantity": i.quantity,
                    "price_cents": i.price_cents,
                    "weight_kg": str(i.weight_kg) if i.weight_kg is not None else None,
                }
                for i in self.items
            ],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "WholesaleSalePayload":
        items = []
        for i in data.get("items", []):
            weight = i.get("weight_kg")
            items.append(WholesaleItem(
                name=i["name"],
                quantity=i["quantity"],
                price_cents=i["price_cents"],
                weight_kg=Decimal(weight) if weight is not None else None,
            ))
        return cls(items=tuple(items))


@dataclass(frozen=True)
class DiscountPayload:
    discount_id: int
    description: str

    def to_dict(self) -> dict:
        return {"discount_id": self.discount_id, "description": self.description}

    @classmethod
    def from_dict(cls, data: dict) -> "DiscountPayload":
        return cls(discount_id=data["discount_id"], description=data["description"])


@dataclass(frozen=True)
class BuyBackPayload:
    quantity: int
    weight_kg: Decimal
    price_per_kg_cents: int
    reference_name: str | None = None

    def to_dict(self) -> dict:
        return {
            "quantity": self.quantity,
            "weight_kg": str(self.weight_kg),
            "price_per_kg_cents": self.price_per_kg_cents,
            "reference_name": self.reference_name,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "BuyBackPayload":
        return cls(
            quantity=data["quantity"],
            weight_kg=Decimal(data["weight_kg"]),
            price_per_kg_cents=data["price_per_kg_cents"],
            reference_name=data.get("reference_name"),
        )


@dataclass(frozen=True)
class StockPayload:
    quantity_change: int

    def to_dict(self) -> dict:
        return {"quantity_change": self.quantity_change}

    @classmethod
    def from_dict(cls, data: dict) -> "StockPayload":
        return cls(quantity_change=data["quantity_change"])


PAYLOAD_TYPES = {
    TransactionKind.SALE: SalePayload,
    TransactionKind.WHOLESALE_SALE: WholesaleSalePayload,
    TransactionKind.DEPOSIT: EmptyPayload,
    TransactionKind.WITHDRAWAL: EmptyPayload,
    TransactionKind.DISCOUNT: DiscountPayload,
    TransactionKind.DISCOUNT_REMOVAL: DiscountPayload,
    TransactionKind.BUY_BACK: BuyBackPayload,
    TransactionKind.STOCK_ADD: StockPayload,
    TransactionKind.STOCK_REMOVE: StockPayload,
}

# Kinds that move a party balance and therefore carry before/after snapshots
PARTY_KINDS = frozenset({
    TransactionKind.SALE,
    TransactionKind.WHOLESALE_SALE,
    TransactionKind.DEPOSIT,
    TransactionKind.WITHDRAWAL,
    TransactionKind.DISCOUNT,
    TransactionKind.DISCOUNT_REMOVAL,
    TransactionKind.BUY_BACK,
})

STOCK_KINDS = frozenset({TransactionKind.STOCK_ADD, TransactionKind.STOCK_REMOVE})


class LedgerTransaction(db.Model):
    """
    Append-only ledger of balance- and stock-affecting events.

    TRANSACTION TYPES (amount_cents sign):
    - SALE, WHOLESALE_SALE: +total (balance moves by -total on credit, 0 on cash)
    - DEPOSIT: +amount
    - WITHDRAWAL: -amount
    - DISCOUNT: +amount
    - DISCOUNT_REMOVAL: -amount
    - BUY_BACK: +weight * price_per_kg
    - STOCK_ADD, STOCK_REMOVE: no amount, quantity in payload

    IMMUTABLE: Records are never updated or deleted. Corrections are new
    offsetting rows (DISCOUNT_REMOVAL offsets DISCOUNT).
    """
    __tablename__ = "ledger_transactions"
    __table_args__ = (
        db.Index("ix_ledger_txns_party_occurred", "party_id", "occurred_at"),
        db.Index("ix_ledger_txns_batch_occurred", "batch_id", "occurred_at"),
        db.Index("ix_ledger_txns_type_occurred", "type", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    type = db.Column(db.String(32), nullable=False)

    party_id = db.Column(db.Integer, db.ForeignKey("parties.id"), nullable=True, index=True)
    batch_id = db.Column(db.Integer, db.ForeignKey("batches.id"), nullable=True, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=True, index=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=True, index=True)

    amount_cents = db.Column(db.BigInteger, nullable=True)
    balance_before_cents = db.Column(db.BigInteger, nullable=True)
    balance_after_cents = db.Column(db.BigInteger, nullable=True)

    payment_method = db.Column(db.String(16), nullable=True)  # CASH, CREDIT (sales only)
    notes = db.Column(db.String(500), nullable=True)
    payload_json = db.Column("payload", db.JSON, nullable=False, default=dict)

    # Caller identity as supplied by the transport layer
    recorded_by = db.Column(db.String(128), nullable=True)
    recorded_role = db.Column(db.String(32), nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    party = db.relationship("Party", backref=db.backref("transactions", lazy="dynamic"))
    batch = db.relationship("Batch", backref=db.backref("transactions", lazy="dynamic"))
    product = db.relationship("Product")
    sale = db.relationship("Sale", backref=db.backref("transactions", lazy=True))

    @property
    def kind(self) -> TransactionKind:
        return TransactionKind(self.type)

    @property
    def payload(self):
        return PAYLOAD_TYPES[self.kind].from_dict(self.payload_json or {})

    @property
    def balance_effect_cents(self) -> int:
        if self.balance_before_cents is None or self.balance_after_cents is None:
            return 0
        return self.balance_after_cents - self.balance_before_cents

    def __repr__(self) -> str:
        return f"<LedgerTransaction id={self.id} type={self.type} party_id={self.party_id} amount_cents={self.amount_cents}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.type,
            "party_id": self.party_id,
            "batch_id": self.batch_id,
            "product_id": self.product_id,
            "sale_id": self.sale_id,
            "amount_cents": self.amount_cents,
            "balance_before_cents": self.balance_before_cents,
            "balance_after_cents": self.balance_after_cents,
            "payment_method": self.payment_method,
            "notes": self.notes,
            "payload": self.payload_json or {},
            "recorded_by": self.recorded_by,
            "recorded_role": self.recorded_role,
            "occurred_at": to_utc_z(self.occurred_at),
        }


@event.listens_for(LedgerTransaction, "before_update")
def _reject_ledger_update(mapper, connection, target):
    session = object_session(target)
    if session is not None and session.is_modified(target, include_collections=False):
        raise ImmutableRecordError(
            "Ledger transactions are append-only",
            details={"transaction_id": target.id},
        )


@event.listens_for(LedgerTransaction, "before_delete")
def _reject_ledger_delete(mapper, connection, target):
    raise ImmutableRecordError(
        "Ledger transactions are append-only",
        details={"transaction_id": target.id},
    )
