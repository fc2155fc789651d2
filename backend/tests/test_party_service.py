# Overview: Pytest coverage for party registration, deposits and withdrawals.

"""
Party Service Tests

Registration always starts a party at zero. After that the balance only
moves through ledger postings, so every test here checks the balance and
the transaction log together.
"""

import pytest
from sqlalchemy import BigInteger

from feedledger.errors import InsufficientBalanceError, InvalidInputError, NotFoundError
from feedledger.models import LedgerTransaction, Party, PARTY_CUSTOMER, PARTY_WHOLESALE_BUYER, TransactionKind
from feedledger.services import party_service
from feedledger.validation import MAX_AMOUNT_CENTS


def _txn_count(db_session, party_id):
    return db_session.query(LedgerTransaction).filter_by(party_id=party_id).count()


class TestRegistration:
    """Test party creation and contact updates."""

    def test_create_customer_starts_at_zero(self, db_session):
        """New customer has a zero balance and no ledger rows."""
        party = party_service.create_party(PARTY_CUSTOMER, "  Rahim  ", "01711111111")

        assert party.id is not None
        assert party.name == "Rahim"
        assert party.balance_cents == 0
        assert _txn_count(db_session, party.id) == 0

    def test_create_wholesale_buyer_with_business_name(self, db_session):
        party = party_service.create_party(
            PARTY_WHOLESALE_BUYER, "Jamal", "01811111111", business_name="Jamal Traders"
        )
        assert party.party_type == PARTY_WHOLESALE_BUYER
        assert party.business_name == "Jamal Traders"
        assert party.is_customer is False

    def test_unknown_party_type_rejected(self, db_session):
        with pytest.raises(InvalidInputError):
            party_service.create_party("SUPPLIER", "Someone", "01711111111")

    def test_missing_name_rejected(self, db_session):
        with pytest.raises(InvalidInputError):
            party_service.create_party(PARTY_CUSTOMER, "   ", "01711111111")

    def test_duplicate_phone_same_type_rejected(self, db_session, customer):
        """Phone is unique per party type."""
        with pytest.raises(InvalidInputError):
            party_service.create_party(PARTY_CUSTOMER, "Someone Else", customer.phone)

    def test_same_phone_different_type_allowed(self, db_session, customer):
        buyer = party_service.create_party(PARTY_WHOLESALE_BUYER, "Buyer", customer.phone)
        assert buyer.id != customer.id

    def test_update_contact_fields(self, db_session, customer):
        party = party_service.update_party_contact(customer.id, address="Savar, Dhaka", email="r@example.com")
        assert party.address == "Savar, Dhaka"
        assert party.email == "r@example.com"

    def test_balance_not_writable_through_update(self, db_session, customer):
        """balance_cents is owned by the ledger."""
        with pytest.raises(InvalidInputError):
            party_service.update_party_contact(customer.id, balance_cents=5000)

        db_session.expire_all()
        assert db_session.get(Party, customer.id).balance_cents == 0

    def test_update_missing_party(self, db_session):
        with pytest.raises(NotFoundError):
            party_service.update_party_contact(99999, name="Ghost")

    def test_list_parties_filters(self, db_session, customer, other_customer, wholesale_buyer):
        customers = party_service.list_parties(PARTY_CUSTOMER)
        assert {p.id for p in customers} == {customer.id, other_customer.id}

        found = party_service.list_parties(search="karim")
        assert [p.id for p in found] == [other_customer.id]


    def test_search_treats_wildcards_literally(self, db_session):
        """% and _ in the search term match themselves."""
        percent = party_service.create_party(PARTY_CUSTOMER, "50% Feeds", "01722222222")
        party_service.create_party(PARTY_CUSTOMER, "500 Feeds", "01733333333")
        underscore = party_service.create_party(PARTY_CUSTOMER, "Farm_A", "01744444444")
        party_service.create_party(PARTY_CUSTOMER, "FarmXA", "01755555555")

        assert [p.id for p in party_service.list_parties(search="50%")] == [percent.id]
        assert [p.id for p in party_service.list_parties(search="m_A")] == [underscore.id]


class TestDeposit:
    """Test DEPOSIT posting."""

    def test_deposit_increases_balance_and_records_row(self, db_session, customer, actor):
        txn = party_service.deposit(customer.id, 10000, actor=actor)

        assert txn.kind == TransactionKind.DEPOSIT
        assert txn.amount_cents == 10000
        assert txn.balance_before_cents == 0
        assert txn.balance_after_cents == 10000
        assert txn.batch_id is None
        assert txn.recorded_by == "user-123"
        assert txn.recorded_role == "manager"

        db_session.expire_all()
        assert db_session.get(Party, customer.id).balance_cents == 10000

    def test_deposit_accepts_digit_string(self, db_session, customer):
        txn = party_service.deposit(customer.id, "2500")
        assert txn.amount_cents == 2500

    @pytest.mark.parametrize("amount", [0, -100, 12.5, "1e3", "12.50", True, None])
    def test_deposit_rejects_bad_amounts(self, db_session, customer, amount):
        """Non-positive and malformed amounts fail before the store is touched."""
        with pytest.raises(InvalidInputError):
            party_service.deposit(customer.id, amount)
        assert _txn_count(db_session, customer.id) == 0

    def test_deposit_missing_party(self, db_session):
        with pytest.raises(NotFoundError):
            party_service.deposit(99999, 100)
        assert db_session.query(LedgerTransaction).count() == 0

    def test_deposit_beyond_32_bit_range(self, db_session, customer):
        """Money columns hold amounts up to MAX_AMOUNT_CENTS."""
        assert isinstance(Party.__table__.c.balance_cents.type, BigInteger)
        assert isinstance(LedgerTransaction.__table__.c.amount_cents.type, BigInteger)

        txn = party_service.deposit(customer.id, 3_000_000_000)
        party_service.deposit(customer.id, MAX_AMOUNT_CENTS)

        assert txn.balance_after_cents == 3_000_000_000
        db_session.expire_all()
        assert db_session.get(Party, customer.id).balance_cents == 3_000_000_000 + MAX_AMOUNT_CENTS

    def test_deposit_to_wholesale_buyer(self, db_session, wholesale_buyer):
        txn = party_service.deposit(wholesale_buyer.id, 500)
        assert txn.party_id == wholesale_buyer.id
        assert txn.balance_after_cents == 500


class TestWithdraw:
    """Test WITHDRAWAL posting and the sufficient-balance check."""

    def test_withdraw_decreases_balance(self, db_session, customer):
        party_service.deposit(customer.id, 10000)
        txn = party_service.withdraw(customer.id, 2500)

        assert txn.kind == TransactionKind.WITHDRAWAL
        assert txn.amount_cents == -2500
        assert txn.balance_before_cents == 10000
        assert txn.balance_after_cents == 7500

    def test_withdraw_entire_balance(self, db_session, customer):
        party_service.deposit(customer.id, 4000)
        txn = party_service.withdraw(customer.id, 4000)
        assert txn.balance_after_cents == 0

    def test_withdraw_more_than_balance_rejected(self, db_session, customer):
        """Rejected withdrawal leaves balance and log unchanged."""
        party_service.deposit(customer.id, 1000)

        with pytest.raises(InsufficientBalanceError) as excinfo:
            party_service.withdraw(customer.id, 1001)

        assert excinfo.value.details["available_cents"] == 1000
        assert excinfo.value.details["requested_cents"] == 1001

        db_session.expire_all()
        assert db_session.get(Party, customer.id).balance_cents == 1000
        assert _txn_count(db_session, customer.id) == 1

    def test_withdraw_from_negative_balance_rejected(self, db_session, customer):
        customer.balance_cents = -500
        db_session.commit()

        with pytest.raises(InsufficientBalanceError):
            party_service.withdraw(customer.id, 1)

    def test_withdraw_missing_party(self, db_session):
        with pytest.raises(NotFoundError):
            party_service.withdraw(99999, 100)
