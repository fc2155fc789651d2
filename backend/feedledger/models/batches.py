from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


BATCH_ACTIVE = "ACTIVE"
BATCH_COMPLETED = "COMPLETED"


class Batch(db.Model):
    """
    A numbered feed cycle for one customer.

    LIFECYCLE: ACTIVE -> COMPLETED. Completed is terminal; the next cycle is a
    new Batch row with batch_number + 1.

    SNAPSHOTS:
    - starting_balance_cents: party balance when the batch was opened
    - ending_balance_cents: party balance when the batch was closed (NULL while ACTIVE)

    INVARIANTS (enforced in the schema as well as the service):
    - batch_number is unique per party
    - at most one ACTIVE batch per party (partial unique index)
    """
    __tablename__ = "batches"
    __table_args__ = (
        db.UniqueConstraint("party_id", "batch_number", name="uq_batches_party_number"),
        db.Index(
            "uq_batches_one_active_per_party",
            "party_id",
            unique=True,
            sqlite_where=db.text("status = 'ACTIVE'"),
            postgresql_where=db.text("status = 'ACTIVE'"),
        ),
        db.Index("ix_batches_party_start", "party_id", "start_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    party_id = db.Column(db.Integer, db.ForeignKey("parties.id"), nullable=False, index=True)

    batch_number = db.Column(db.Integer, nullable=False)
    status = db.Column(db.String(16), nullable=False, default=BATCH_ACTIVE, index=True)

    start_date = db.Column(db.DateTime(timezone=True), nullable=False)
    end_date = db.Column(db.DateTime(timezone=True), nullable=True)

    starting_balance_cents = db.Column(db.BigInteger, nullable=False)
    ending_balance_cents = db.Column(db.BigInteger, nullable=True)

    # Last ledger row for the party when the batch opened (NULL if none yet)
    opened_after_transaction_id = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    party = db.relationship("Party", backref=db.backref("batches", lazy=True))
    discounts = db.relationship(
        "BatchDiscount",
        back_populates="batch",
        order_by="BatchDiscount.id",
        cascade="all, delete-orphan",
        lazy=True,
    )
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_active(self) -> bool:
        return self.status == BATCH_ACTIVE

    @property
    def total_discount_cents(self) -> int:
        return sum(d.amount_cents for d in self.discounts)

    def __repr__(self) -> str:
        return f"<Batch id={self.id} party_id={self.party_id} number={self.batch_number} status={self.status}>"

    def to_dict(self, include_discounts: bool = True) -> dict:
        data = {
            "id": self.id,
            "party_id": self.party_id,
            "batch_number": self.batch_number,
            "status": self.status,
            "start_date": to_utc_z(self.start_date),
            "end_date": to_utc_z(self.end_date) if self.end_date else None,
            "starting_balance_cents": self.starting_balance_cents,
            "ending_balance_cents": self.ending_balance_cents,
            "opened_after_transaction_id": self.opened_after_transaction_id,
            "total_discount_cents": self.total_discount_cents,
            "version_id": self.version_id,
        }
        if include_discounts:
            data["discounts"] = [d.to_dict() for d in self.discounts]
        return data


class BatchDiscount(db.Model):
    """
    Discount/adjustment attached to an ACTIVE batch.

    Rows are value objects owned by their batch: added and removed only through
    the batch's discounts collection, in the same DB transaction as the
    balance change and the DISCOUNT / DISCOUNT_REMOVAL ledger row.
    """
    __tablename__ = "batch_discounts"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    batch_id = db.Column(db.Integer, db.ForeignKey("batches.id"), nullable=False, index=True)

    description = db.Column(db.String(255), nullable=False)
    amount_cents = db.Column(db.BigInteger, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    batch = db.relationship("Batch", back_populates="discounts")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "batch_id": self.batch_id,
            "description": self.description,
            "amount_cents": self.amount_cents,
            "created_at": to_utc_z(self.created_at),
        }
