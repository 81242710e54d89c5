"""Tests for the wallet ledger."""

from decimal import Decimal

import pytest

from tourney.core.exceptions import InsufficientFunds, ValidationError
from tourney.models.wallet import WalletBalance, WalletTransaction
from tourney.services.wallet_service import WalletKind


class TestCredit:
    def test_credit_creates_balance(self, services, db):
        services.wallet.credit(db, "alice", Decimal("12.5"), "k1")
        db.commit()
        assert services.wallet.get_balance(db, "alice") == Decimal("12.5")

    def test_credit_is_idempotent(self, services, db):
        first = services.wallet.credit(db, "alice", Decimal("5"), "prize:abc")
        again = services.wallet.credit(db, "alice", Decimal("5"), "prize:abc")
        db.commit()

        assert again.id == first.id
        assert services.wallet.get_balance(db, "alice") == Decimal("5")
        assert db.query(WalletTransaction).count() == 1

    def test_credits_accumulate(self, services, db):
        services.wallet.credit(db, "bob", Decimal("1"), "a")
        services.wallet.credit(db, "bob", Decimal("2.25"), "b")
        db.commit()
        assert services.wallet.get_balance(db, "bob") == Decimal("3.25")

    def test_timestamps_follow_clock(self, services, db, clock):
        clock.advance(days=3)
        tx = services.wallet.credit(db, "carol", Decimal("4"), "k-clock")
        db.commit()

        assert tx.created_at == clock.now
        assert db.get(WalletBalance, "carol").updated_at == clock.now

    def test_negative_credit_rejected(self, services, db):
        with pytest.raises(ValidationError):
            services.wallet.credit(db, "bob", Decimal("-1"), "neg")

    def test_unknown_player_has_zero_balance(self, services, db):
        assert services.wallet.get_balance(db, "nobody") == Decimal("0")


class TestDebit:
    def test_debit_reduces_balance(self, services, db):
        services.wallet.credit(db, "alice", Decimal("10"), "topup")
        tx = services.wallet.debit(db, "alice", Decimal("4"), "fee", WalletKind.ENTRY_FEE)
        db.commit()

        assert tx.amount == Decimal("-4")
        assert tx.kind == WalletKind.ENTRY_FEE
        assert services.wallet.get_balance(db, "alice") == Decimal("6")

    def test_debit_beyond_balance_rejected(self, services, db):
        services.wallet.credit(db, "alice", Decimal("3"), "topup")
        with pytest.raises(InsufficientFunds):
            services.wallet.debit(db, "alice", Decimal("3.00000001"), "fee")
        db.commit()
        assert services.wallet.get_balance(db, "alice") == Decimal("3")

    def test_debit_without_wallet_rejected(self, services, db):
        with pytest.raises(InsufficientFunds):
            services.wallet.debit(db, "ghost", Decimal("1"), "fee")

    def test_debit_is_idempotent(self, services, db):
        services.wallet.credit(db, "alice", Decimal("10"), "topup")
        services.wallet.debit(db, "alice", Decimal("4"), "entry:t1:alice")
        services.wallet.debit(db, "alice", Decimal("4"), "entry:t1:alice")
        db.commit()
        assert services.wallet.get_balance(db, "alice") == Decimal("6")

    def test_rollback_discards_movement(self, services, db):
        services.wallet.credit(db, "alice", Decimal("10"), "topup")
        db.commit()

        services.wallet.debit(db, "alice", Decimal("4"), "fee")
        db.rollback()

        assert services.wallet.get_balance(db, "alice") == Decimal("10")
        assert services.wallet.get_transaction(db, "fee") is None
