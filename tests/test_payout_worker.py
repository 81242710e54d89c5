"""Tests for the payout worker draining prize transfers."""

import dataclasses
from datetime import timedelta
from decimal import Decimal

import pytest

from tourney.core.exceptions import PaymentRejected, TransientError
from tourney.models.prize import PayoutEvent, PayoutStatus
from tourney.services.payment_gateway import SimulatedPaymentGateway, TransferStatus
from tourney.services.payout_worker import PayoutWorker, refund_key, transfer_key
from tourney.services.settlement_engine import SettlementEngine


class PendingGateway(SimulatedPaymentGateway):
    """Transfers stay pending until the test decides their fate."""

    def send_funds(self, recipient, amount, idempotency_key):
        result = super().send_funds(recipient, amount, idempotency_key)
        self.set_status(result.tx_reference, TransferStatus.PENDING)
        return dataclasses.replace(result, status=TransferStatus.PENDING)


class FailingGateway(SimulatedPaymentGateway):
    def __init__(self, error):
        super().__init__()
        self.error = error
        self.calls = 0

    def send_funds(self, recipient, amount, idempotency_key):
        self.calls += 1
        raise self.error


@pytest.fixture
def settled(services, make_tournament, clock):
    """A settled tournament with pending payout events for p2 (50) and p1 (30)."""
    engine = SettlementEngine(
        services.session_factory,
        services.registry,
        services.ranking,
        services.wallet,
        clock=clock,
        enqueue_transfers=True,
    )
    tid = make_tournament()
    services.participation.record_attempt(tid, "p1", "P1", 80)
    services.participation.record_attempt(tid, "p2", "P2", 95)
    engine.run_settlement_pass(clock.advance(hours=2))
    return tid


def make_worker(services, gateway, clock, **kwargs):
    return PayoutWorker(services.session_factory, gateway, services.wallet, clock=clock, **kwargs)


def events(db):
    db.expire_all()
    return {e.player_id: e for e in db.query(PayoutEvent).all()}


class TestProcessPending:
    def test_sends_and_debits_wallet(self, services, db, clock, settled, gateway):
        worker = make_worker(services, gateway, clock)

        counts = worker.process_pending()

        assert counts["sent"] == 2
        by_player = events(db)
        assert by_player["p2"].status == PayoutStatus.SENT
        assert by_player["p2"].tx_reference in gateway.transfers
        assert services.wallet.get_balance(db, "p2") == Decimal("0")
        assert services.wallet.get_transaction(db, transfer_key(by_player["p2"].receipt_id)) is not None
        assert gateway.get_balance() == Decimal("1000") - 80

    def test_nothing_left_on_second_run(self, services, db, clock, settled, gateway):
        worker = make_worker(services, gateway, clock)
        worker.process_pending()

        assert worker.process_pending() == {"sent": 0, "retry": 0, "failed": 0, "skipped": 0}
        assert len(gateway.transfers) == 2

    def test_transient_error_schedules_retry(self, services, db, clock, settled):
        gateway = FailingGateway(TransientError("network down"))
        worker = make_worker(services, gateway, clock, retry_base_seconds=60)

        assert worker.process_pending()["retry"] == 2

        event = events(db)["p2"]
        assert event.status == PayoutStatus.PENDING
        assert event.attempts == 1
        assert event.next_attempt_at == clock.now + timedelta(seconds=60)
        assert services.wallet.get_balance(db, "p2") == Decimal("50")

        # Not due yet
        assert worker.process_pending()["retry"] == 0
        assert gateway.calls == 2

        clock.advance(seconds=60)
        worker.process_pending()
        assert events(db)["p2"].next_attempt_at == clock.now + timedelta(seconds=120)

    def test_gives_up_after_max_attempts(self, services, db, clock, settled):
        worker = make_worker(services, FailingGateway(TransientError("down")), clock, max_attempts=2)

        worker.process_pending()
        clock.advance(hours=1)
        counts = worker.process_pending()

        assert counts["failed"] == 2
        assert events(db)["p1"].status == PayoutStatus.FAILED
        assert services.wallet.get_balance(db, "p1") == Decimal("30")

    def test_rejection_fails_immediately(self, services, db, clock, settled):
        worker = make_worker(services, FailingGateway(PaymentRejected("bad address")), clock)

        assert worker.process_pending()["failed"] == 2
        event = events(db)["p2"]
        assert event.status == PayoutStatus.FAILED
        assert "bad address" in event.last_error
        assert services.wallet.get_balance(db, "p2") == Decimal("50")

    def test_low_platform_balance_defers(self, services, db, clock, settled):
        gateway = SimulatedPaymentGateway(balance=Decimal("40"))
        worker = make_worker(services, gateway, clock)

        counts = worker.process_pending()

        assert counts == {"sent": 1, "retry": 1, "failed": 0, "skipped": 0}
        assert events(db)["p1"].status == PayoutStatus.SENT
        assert events(db)["p2"].status == PayoutStatus.PENDING

    def test_spent_prize_fails_the_event(self, services, db, clock, settled, gateway):
        services.wallet.debit(db, "p1", Decimal("30"), "spent")
        db.commit()

        make_worker(services, gateway, clock).process_pending()

        assert events(db)["p1"].status == PayoutStatus.FAILED
        assert events(db)["p2"].status == PayoutStatus.SENT


class TestReconcile:
    def test_confirmed_and_failed_transfers(self, services, db, clock, settled):
        gateway = PendingGateway()
        worker = make_worker(services, gateway, clock)
        worker.process_pending()

        sent = events(db)
        assert {e.status for e in sent.values()} == {PayoutStatus.SENT}
        gateway.set_status(sent["p2"].tx_reference, TransferStatus.CONFIRMED)
        gateway.set_status(sent["p1"].tx_reference, TransferStatus.FAILED)

        counts = worker.reconcile_sent()

        assert counts == {"confirmed": 1, "failed": 1, "pending": 0}
        after = events(db)
        assert after["p2"].status == PayoutStatus.CONFIRMED
        assert after["p1"].status == PayoutStatus.FAILED
        assert services.wallet.get_balance(db, "p1") == Decimal("30")
        assert services.wallet.get_transaction(db, refund_key(after["p1"].receipt_id)) is not None

    def test_pending_transfers_stay_sent(self, services, db, clock, settled):
        gateway = PendingGateway()
        worker = make_worker(services, gateway, clock)
        worker.process_pending()

        assert worker.reconcile_sent()["pending"] == 2
        assert {e.status for e in events(db).values()} == {PayoutStatus.SENT}
