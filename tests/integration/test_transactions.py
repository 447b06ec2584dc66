"""Integration tests for optimistic transactions and batched writes"""

from datetime import datetime
from decimal import Decimal

import pytest

from ledger_core.domain.exceptions import ConcurrentModificationError
from ledger_core.infrastructure.database.models import Account, Expense
from ledger_core.infrastructure.database.transactions import BatchCommitError, BatchWriter, run_transaction


def bump_balance(session_factory, account_id, amount):
    """Commit a competing write from another session"""
    with session_factory() as other:
        account = other.get(Account, account_id)
        account.balance = account.balance + amount
        other.commit()


def test_run_transaction_returns_result(session_factory, load, account_id):
    def _withdraw(session):
        account = session.get(Account, account_id)
        account.balance = account.balance - Decimal("10.00")
        return "done"

    assert run_transaction(session_factory, _withdraw) == "done"
    assert load(Account, account_id).balance == Decimal("990.00")


def test_conflicting_commit_triggers_rerun_on_fresh_data(session_factory, load, account_id):
    """Test a lost race re-reads the committed balance instead of overwriting it"""
    seen = []

    def _withdraw(session):
        account = session.get(Account, account_id)
        seen.append(account.balance)
        if len(seen) == 1:
            bump_balance(session_factory, account_id, Decimal("50.00"))
        account.balance = account.balance - Decimal("100.00")

    run_transaction(session_factory, _withdraw, max_attempts=3)

    assert seen == [Decimal("1000.00"), Decimal("1050.00")]
    assert load(Account, account_id).balance == Decimal("950.00")


def test_conflicts_exhaust_attempts(session_factory, load, account_id):
    calls = []

    def _always_loses(session):
        calls.append(1)
        account = session.get(Account, account_id)
        bump_balance(session_factory, account_id, Decimal("1.00"))
        account.balance = Decimal("0.00")

    with pytest.raises(ConcurrentModificationError):
        run_transaction(session_factory, _always_loses, max_attempts=3)

    assert len(calls) == 3
    # Only the competing writes landed
    assert load(Account, account_id).balance == Decimal("1003.00")


def test_error_rolls_back_every_write(session_factory, load, account_id):
    def _fails(session):
        session.get(Account, account_id).balance = Decimal("0.00")
        session.flush()
        raise RuntimeError("boom")

    with pytest.raises(RuntimeError, match="boom"):
        run_transaction(session_factory, _fails)

    assert load(Account, account_id).balance == Decimal("1000.00")


def test_batch_writer_tracks_operations(session_factory):
    with BatchWriter(session_factory, batch_size=4) as writer:
        writer.stage("a", operations=3)
        assert writer.is_full is False
        writer.stage("b")
        assert writer.is_full is True
        assert writer.pending == 4

        assert writer.commit() == ["a", "b"]
        assert writer.pending == 0
        assert writer.commit() == []


def test_batch_writer_commits_staged_rows(session_factory, load, account_id):
    with BatchWriter(session_factory) as writer:
        writer.session.get(Account, account_id).balance = Decimal("1.00")
        writer.stage(account_id)
        writer.commit()

    assert load(Account, account_id).balance == Decimal("1.00")


def test_failed_batch_is_rolled_back_whole(session_factory, load, count_rows, account_id):
    with BatchWriter(session_factory) as writer:
        writer.session.get(Account, account_id).balance = Decimal("1.00")
        writer.stage(account_id)
        # Debit expense without an account breaks the payment source constraint
        writer.session.add(
            Expense(
                user_id="user_1",
                name="Broken",
                amount=Decimal("1.00"),
                category="Misc",
                date=datetime(2024, 1, 1),
                payment_type="debit",
            )
        )
        writer.stage("broken")

        with pytest.raises(BatchCommitError) as exc_info:
            writer.commit()

        assert exc_info.value.keys == [account_id, "broken"]
        assert writer.pending == 0

    assert load(Account, account_id).balance == Decimal("1000.00")
    assert count_rows(Expense) == 0
