# Overview: Pytest coverage for the unit-of-work boundary and retry helper.

import pytest
from sqlalchemy import text
from sqlalchemy.exc import OperationalError

from lpgledger.extensions import db
from lpgledger.models import Customer
from lpgledger.services import concurrency
from lpgledger.services.concurrency import ConcurrencyConflictError, atomic, run_with_retry


class TestAtomic:

    def test_commits_on_success(self, db_session, customer):
        def _op():
            db.session.get(Customer, customer.id).phone = "0300-1234567"
            return "done"

        assert atomic(_op) == "done"
        db.session.expire_all()
        assert db.session.get(Customer, customer.id).phone == "0300-1234567"

    def test_rolls_back_on_error(self, db_session, customer):
        def _op():
            db.session.get(Customer, customer.id).ledger_balance_cents = 999
            raise ValueError("boom")

        with pytest.raises(ValueError):
            atomic(_op)
        assert db.session.get(Customer, customer.id).ledger_balance_cents == 0

    def test_stale_version_becomes_conflict(self, db_session, customer):
        """Another writer bumped the row version after we loaded it."""
        loaded = db.session.get(Customer, customer.id)
        original_name = loaded.name

        def _op():
            db.session.execute(
                text("UPDATE customers SET version_id = version_id + 1 WHERE id = :id"),
                {"id": customer.id},
            )
            loaded.name = "Renamed"

        with pytest.raises(ConcurrencyConflictError):
            atomic(_op)
        assert db.session.get(Customer, customer.id).name == original_name


class TestRunWithRetry:

    def test_retries_operational_errors(self, db_session, monkeypatch):
        sleeps = []
        monkeypatch.setattr(concurrency.time, "sleep", sleeps.append)
        calls = {"n": 0}

        def _op():
            calls["n"] += 1
            if calls["n"] < 3:
                raise OperationalError("UPDATE bill_sequences", {}, Exception("database is locked"))
            return "ok"

        assert run_with_retry(_op) == "ok"
        assert calls["n"] == 3
        assert sleeps == [0.1, 0.2]

    def test_gives_up_after_attempts(self, db_session, monkeypatch):
        monkeypatch.setattr(concurrency.time, "sleep", lambda _: None)

        def _op():
            raise OperationalError("UPDATE bill_sequences", {}, Exception("database is locked"))

        with pytest.raises(ConcurrencyConflictError):
            run_with_retry(_op, attempts=2)

    def test_other_errors_propagate_immediately(self, db_session):
        calls = {"n": 0}

        def _op():
            calls["n"] += 1
            raise KeyError("missing")

        with pytest.raises(KeyError):
            run_with_retry(_op)
        assert calls["n"] == 1
