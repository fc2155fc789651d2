# Overview: Pytest coverage for all-or-nothing ledger operations and retry handling.

"""
Atomicity Tests

Failures are injected part-way through an operation (after the balance or
stock write has been staged) and the store must show none of its writes.
Transient storage errors retry the whole operation and surface as
LedgerConflictError once attempts run out.
"""

import pytest
from sqlalchemy.exc import DataError, DBAPIError, IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from feedledger.errors import InvalidInputError, LedgerConflictError
from feedledger.models import Batch, BATCH_ACTIVE, BatchDiscount, LedgerTransaction, Party, Product, Sale
from feedledger.services import batch_service, concurrency, ledger_service, party_service, sales_service


class InjectedFailure(RuntimeError):
    pass


def _boom(*args, **kwargs):
    raise InjectedFailure("injected")


class TestRollbackOnFailure:
    """Test a failure mid-operation leaves no partial writes."""

    def test_deposit_balance_write_rolled_back(self, db_session, customer, monkeypatch):
        """Balance is flushed, then the ledger append fails."""
        monkeypatch.setattr(ledger_service, "append_transaction", _boom)

        with pytest.raises(InjectedFailure):
            party_service.deposit(customer.id, 5000)

        db_session.expire_all()
        assert db_session.get(Party, customer.id).balance_cents == 0
        assert db_session.query(LedgerTransaction).count() == 0

    def test_sale_stock_decrement_rolled_back(self, db_session, customer, feed, monkeypatch):
        monkeypatch.setattr(sales_service, "post_to_party", _boom)

        with pytest.raises(InjectedFailure):
            sales_service.create_sale([{"product_id": feed.id, "quantity": 5}], party_id=customer.id)

        db_session.expire_all()
        assert db_session.get(Product, feed.id).stock_quantity == 50
        assert db_session.get(Party, customer.id).balance_cents == 0
        assert db_session.query(Sale).count() == 0

    def test_batch_not_left_half_closed(self, db_session, customer, monkeypatch):
        """The old batch is closed and flushed before the new one fails."""
        first = batch_service.start_new_batch(customer.id)
        first_id = first.id
        monkeypatch.setattr(batch_service, "latest_transaction_id", _boom)

        with pytest.raises(InjectedFailure):
            batch_service.start_new_batch(customer.id)

        db_session.expire_all()
        batch = db_session.get(Batch, first_id)
        assert batch.status == BATCH_ACTIVE
        assert batch.ending_balance_cents is None
        assert db_session.query(Batch).count() == 1

    def test_discount_rolled_back(self, db_session, customer, monkeypatch):
        batch = batch_service.start_new_batch(customer.id)
        monkeypatch.setattr(ledger_service, "append_transaction", _boom)

        with pytest.raises(InjectedFailure):
            batch_service.add_discount(batch.id, "Loyalty", 1000)

        db_session.expire_all()
        assert db_session.query(BatchDiscount).count() == 0
        assert db_session.get(Party, customer.id).balance_cents == 0


class TestRetry:
    """Test transient failures are retried and then reported as conflicts."""

    def test_exhausted_retries_raise_conflict(self, db_session, customer, monkeypatch):
        calls = []

        def locked(*args, **kwargs):
            calls.append(1)
            raise OperationalError("SELECT", {}, Exception("database is locked"))

        monkeypatch.setattr(party_service, "load_party_for_update", locked)

        with pytest.raises(LedgerConflictError) as excinfo:
            party_service.deposit(customer.id, 100)

        assert len(calls) == 3
        assert excinfo.value.retryable is True
        assert excinfo.value.http_status == 503
        assert excinfo.value.details == {"operation": "deposit"}

    def test_stale_read_retried_then_succeeds(self, db_session, customer, monkeypatch):
        real = party_service.load_party_for_update
        calls = []

        def stale_once(*args, **kwargs):
            calls.append(1)
            if len(calls) == 1:
                raise StaleDataError("version mismatch")
            return real(*args, **kwargs)

        monkeypatch.setattr(party_service, "load_party_for_update", stale_once)

        txn = party_service.deposit(customer.id, 100)

        assert len(calls) == 2
        assert txn.balance_after_cents == 100
        assert db_session.query(LedgerTransaction).count() == 1

    def test_integrity_error_becomes_conflict(self, app):
        def duplicate():
            raise IntegrityError("INSERT", {}, Exception("UNIQUE constraint failed"))

        with pytest.raises(LedgerConflictError):
            concurrency.run_atomic(duplicate, operation="test")

    def test_out_of_range_value_becomes_invalid_input(self, app):
        """Raw driver errors never leave the engine."""
        def overflow():
            raise DataError("UPDATE parties", {}, Exception("numeric value out of range"))

        with pytest.raises(InvalidInputError) as excinfo:
            concurrency.run_atomic(overflow, operation="deposit")
        assert excinfo.value.details == {"operation": "deposit"}

    def test_other_driver_error_becomes_conflict(self, app):
        def broken():
            raise DBAPIError("SELECT 1", {}, Exception("connection reset"))

        with pytest.raises(LedgerConflictError):
            concurrency.run_atomic(broken, operation="test")

    def test_deposit_overflow_rolled_back(self, db_session, customer, monkeypatch):
        def overflow(*args, **kwargs):
            raise DataError("INSERT INTO ledger_transactions", {}, Exception("value out of range"))

        monkeypatch.setattr(ledger_service, "append_transaction", overflow)

        with pytest.raises(InvalidInputError):
            party_service.deposit(customer.id, 100)

        db_session.expire_all()
        assert db_session.get(Party, customer.id).balance_cents == 0

    def test_attempts_from_config(self, app, monkeypatch):
        calls = []

        def locked():
            calls.append(1)
            raise OperationalError("UPDATE", {}, Exception("database is locked"))

        monkeypatch.setitem(app.config, "LEDGER_RETRY_ATTEMPTS", 5)
        with pytest.raises(LedgerConflictError):
            concurrency.run_atomic(locked, operation="test")
        assert len(calls) == 5

    def test_result_returned_on_success(self, app):
        assert concurrency.run_atomic(lambda: 42, operation="test") == 42
