# Overview: Threaded concurrency tests for same-party ledger operations.

"""
Concurrency tests for the ledger engine.

Each worker runs in its own app context and session against a file-backed
SQLite database, the way concurrent requests would.

Run with:
    python -m pytest tests/test_concurrency.py
"""
import os
import tempfile
import threading
import unittest

from feedledger import create_app
from feedledger.errors import InsufficientBalanceError, LedgerConflictError
from feedledger.extensions import db
from feedledger.models import Batch, BATCH_ACTIVE, LedgerTransaction, Party, PARTY_CUSTOMER
from feedledger.services import batch_service, ledger_service, party_service


class ConcurrencyTests(unittest.TestCase):
    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        db_path = os.path.join(self.tmpdir.name, "concurrency.db")
        self.app = create_app({
            "TESTING": True,
            "SQLALCHEMY_DATABASE_URI": f"sqlite:///{db_path}",
            "SQLALCHEMY_ENGINE_OPTIONS": {"connect_args": {"timeout": 30}},
            "LEDGER_RETRY_ATTEMPTS": 5,
            "LEDGER_RETRY_BACKOFF_SECONDS": 0.05,
        })

        with self.app.app_context():
            db.drop_all()
            db.create_all()

            party = Party(party_type=PARTY_CUSTOMER, name="Concurrent Customer", phone="01900000000", balance_cents=0)
            db.session.add(party)
            db.session.commit()
            self.party_id = party.id

    def tearDown(self):
        with self.app.app_context():
            db.session.remove()
            db.drop_all()
            db.session.remove()
            db.engine.dispose()
        self.tmpdir.cleanup()

    def _run_workers(self, target, count):
        results = []
        lock = threading.Lock()

        def worker():
            with self.app.app_context():
                try:
                    outcome = target()
                    with lock:
                        results.append(outcome)
                except Exception as exc:
                    with lock:
                        results.append(exc)
                finally:
                    db.session.remove()

        threads = [threading.Thread(target=worker) for _ in range(count)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        return results

    def test_concurrent_withdrawals_never_overdraw(self):
        with self.app.app_context():
            party_service.deposit(self.party_id, 10000)

        results = self._run_workers(lambda: party_service.withdraw(self.party_id, 3000).id, 8)

        succeeded = [r for r in results if isinstance(r, int)]
        for r in results:
            if not isinstance(r, int):
                self.assertIsInstance(r, (InsufficientBalanceError, LedgerConflictError))
        self.assertLessEqual(len(succeeded), 3)

        with self.app.app_context():
            party = db.session.get(Party, self.party_id)
            self.assertEqual(party.balance_cents, 10000 - 3000 * len(succeeded))
            self.assertGreaterEqual(party.balance_cents, 0)
            withdrawals = db.session.query(LedgerTransaction).filter_by(type="WITHDRAWAL").count()
            self.assertEqual(withdrawals, len(succeeded))
            self.assertTrue(ledger_service.reconcile_party(self.party_id).is_consistent)

    def test_concurrent_deposits_all_recorded(self):
        results = self._run_workers(lambda: party_service.deposit(self.party_id, 100).id, 10)

        succeeded = [r for r in results if isinstance(r, int)]
        for r in results:
            if not isinstance(r, int):
                self.assertIsInstance(r, LedgerConflictError)

        with self.app.app_context():
            party = db.session.get(Party, self.party_id)
            self.assertEqual(party.balance_cents, 100 * len(succeeded))
            report = ledger_service.reconcile_party(self.party_id)
            self.assertTrue(report.is_consistent, report.to_dict())

    def test_concurrent_batch_starts_keep_one_active(self):
        results = self._run_workers(lambda: batch_service.start_new_batch(self.party_id).batch_number, 6)

        numbers = [r for r in results if isinstance(r, int)]
        for r in results:
            if not isinstance(r, int):
                self.assertIsInstance(r, LedgerConflictError)
        self.assertEqual(len(numbers), len(set(numbers)))

        with self.app.app_context():
            active = db.session.query(Batch).filter_by(party_id=self.party_id, status=BATCH_ACTIVE).count()
            self.assertEqual(active, 1)
            all_numbers = sorted(
                n for (n,) in db.session.query(Batch.batch_number).filter_by(party_id=self.party_id)
            )
            self.assertEqual(all_numbers, list(range(1, len(all_numbers) + 1)))


if __name__ == "__main__":
    unittest.main()
