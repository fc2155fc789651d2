from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


PARTY_CUSTOMER = "CUSTOMER"
PARTY_WHOLESALE_BUYER = "WHOLESALE_BUYER"

PARTY_TYPES = (PARTY_CUSTOMER, PARTY_WHOLESALE_BUYER)


class Party(db.Model):
    """
    A customer or wholesale buyer account holding a running balance.

    BALANCE SIGN:
    - negative: the party owes the business
    - positive: the business owes the party (credit on account)

    OWNERSHIP: balance_cents is written only by the ledger services, always in
    the same DB transaction as the LedgerTransaction row recording the change.

    CONCURRENCY: version_id_col makes a write against a stale read raise
    StaleDataError instead of silently overwriting another request's balance.
    """
    __tablename__ = "parties"
    __table_args__ = (
        db.UniqueConstraint("party_type", "phone", name="uq_parties_type_phone"),
        db.Index("ix_parties_type_name", "party_type", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    party_type = db.Column(db.String(16), nullable=False, index=True)

    name = db.Column(db.String(128), nullable=False)
    phone = db.Column(db.String(32), nullable=False)
    email = db.Column(db.String(255), nullable=True)
    address = db.Column(db.String(255), nullable=True)
    # Wholesale buyers only
    business_name = db.Column(db.String(255), nullable=True)

    balance_cents = db.Column(db.BigInteger, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_customer(self) -> bool:
        return self.party_type == PARTY_CUSTOMER

    def __repr__(self) -> str:
        return f"<Party id={self.id} type={self.party_type} name={self.name!r} balance_cents={self.balance_cents}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "party_type": self.party_type,
            "name": self.name,
            "phone": self.phone,
            "email": self.email,
            "address": self.address,
            "business_name": self.business_name,
            "balance_cents": self.balance_cents,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }
