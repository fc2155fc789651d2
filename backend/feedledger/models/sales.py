from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


SALE_RETAIL = "RETAIL"
SALE_WHOLESALE = "WHOLESALE"

PAYMENT_CASH = "CASH"
PAYMENT_CREDIT = "CREDIT"


class Sale(db.Model):
    """
    Settled sale document.

    Written once, in the same DB transaction as the stock decrement, the party
    balance change and the SALE / WHOLESALE_SALE ledger row.

    - RETAIL sales are to a customer, or to a walk-in (party_id NULL, cash only).
    - WHOLESALE sales are to a wholesale buyer with free-form lines.
    - batch_id is the customer's ACTIVE batch at sale time, if any.
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.Index("ix_sales_party_created", "party_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_type = db.Column(db.String(16), nullable=False, default=SALE_RETAIL, index=True)

    party_id = db.Column(db.Integer, db.ForeignKey("parties.id"), nullable=True, index=True)
    batch_id = db.Column(db.Integer, db.ForeignKey("batches.id"), nullable=True, index=True)

    payment_method = db.Column(db.String(16), nullable=False)
    total_cents = db.Column(db.BigInteger, nullable=False)

    # Walk-in cash sales only
    random_customer_name = db.Column(db.String(128), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    party = db.relationship("Party", backref=db.backref("sales", lazy=True))
    batch = db.relationship("Batch", backref=db.backref("sales", lazy=True))
    lines = db.relationship(
        "SaleLine",
        back_populates="sale",
        order_by="SaleLine.id",
        cascade="all, delete-orphan",
        lazy=True,
    )
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_cash(self) -> bool:
        return self.payment_method == PAYMENT_CASH

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_type": self.sale_type,
            "party_id": self.party_id,
            "batch_id": self.batch_id,
            "payment_method": self.payment_method,
            "total_cents": self.total_cents,
            "random_customer_name": self.random_customer_name,
            "created_at": to_utc_z(self.created_at),
            "lines": [line.to_dict() for line in self.lines],
        }


class SaleLine(db.Model):
    """
    Individual line on a sale, with price captured at sale time.

    RETAIL lines reference a product and carry unit_price_cents.
    WHOLESALE lines are free-form: name, quantity, optional weight and a line price.
    """
    __tablename__ = "sale_lines"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=True)

    # Denormalized for historical receipts
    name = db.Column(db.String(255), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.BigInteger, nullable=True)
    weight_grams = db.Column(db.Integer, nullable=True)
    line_total_cents = db.Column(db.BigInteger, nullable=False)

    sale = db.relationship("Sale", back_populates="lines")
    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "product_id": self.product_id,
            "name": self.name,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "weight_grams": self.weight_grams,
            "line_total_cents": self.line_total_cents,
        }
