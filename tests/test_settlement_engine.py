"""Tests for settlement: exactly-once payouts, ordering and failure isolation."""

import threading
from datetime import timedelta
from decimal import Decimal

import pytest

from tourney.core.exceptions import TransientError
from tourney.models.participant import Participant
from tourney.models.prize import PayoutEvent, PayoutStatus, PrizeReceipt
from tourney.models.tournament import Tournament, TournamentStatus
from tourney.models.wallet import WalletTransaction
from tourney.schemas.settlement import SettlementStatus
from tourney.services.settlement_engine import SettlementEngine, receipt_id_for


def play(services, tid, *scores):
    for player, score in scores:
        services.participation.record_attempt(tid, player, player.upper(), score)


def balances(services, db, *players):
    return [services.wallet.get_balance(db, p) for p in players]


class TestSettlePass:
    def test_worked_example(self, services, db, make_tournament, clock):
        tid = make_tournament()
        play(services, tid, ("p1", 80), ("p2", 95), ("p3", 60))

        outcomes = services.settlement.run_settlement_pass(clock.advance(hours=2))

        assert [(o.tournament_id, o.status, o.receipts) for o in outcomes] == [(tid, SettlementStatus.SETTLED, 3)]
        assert outcomes[0].total_paid == Decimal("100")
        prizes = services.ranking.list_prizes(db, tid)
        assert [(p.place, p.player_id, p.amount) for p in prizes] == [
            (1, "p2", Decimal("50")),
            (2, "p1", Decimal("30")),
            (3, "p3", Decimal("20")),
        ]
        assert balances(services, db, "p2", "p1", "p3") == [Decimal("50"), Decimal("30"), Decimal("20")]
        tournament = db.get(Tournament, tid)
        assert tournament.status == TournamentStatus.FINISHED
        assert tournament.finished_at == clock.now

    def test_receipts_use_stable_ids(self, services, db, make_tournament, clock):
        tid = make_tournament()
        play(services, tid, ("p1", 1))
        services.settlement.run_settlement_pass(clock.advance(hours=2))

        receipt = services.ranking.list_prizes(db, tid)[0]
        assert receipt.id == receipt_id_for(tid, 1)
        assert services.wallet.get_transaction(db, f"prize:{receipt.id}") is not None

    def test_second_pass_pays_nothing(self, services, db, make_tournament, clock):
        tid = make_tournament()
        play(services, tid, ("p1", 80), ("p2", 95))
        services.settlement.run_settlement_pass(clock.advance(hours=2))

        assert services.settlement.run_settlement_pass(clock.advance(minutes=5)) == []
        assert balances(services, db, "p2", "p1") == [Decimal("50"), Decimal("30")]
        assert db.query(PrizeReceipt).count() == 2

    def test_stale_candidate_is_noop(self, services, db, make_tournament, clock):
        tid = make_tournament()
        play(services, tid, ("p1", 80))
        now = clock.advance(hours=2)

        first = services.settlement.settle_tournament(tid, now)
        # A runner that listed the tournament before it was finished
        second = services.settlement.settle_tournament(tid, now)

        assert first.status == SettlementStatus.SETTLED
        assert second.status == SettlementStatus.NOOP
        assert db.query(WalletTransaction).count() == 1

    def test_unexpired_tournament_is_skipped(self, services, db, make_tournament, clock):
        tid = make_tournament()
        play(services, tid, ("p1", 80))

        assert services.settlement.run_settlement_pass(clock.advance(minutes=30)) == []
        outcome = services.settlement.settle_tournament(tid)
        assert outcome.status == SettlementStatus.NOOP
        assert db.get(Tournament, tid).status == TournamentStatus.ACTIVE

    def test_no_participants(self, services, db, make_tournament, clock):
        tid = make_tournament()

        outcomes = services.settlement.run_settlement_pass(clock.advance(hours=2))

        assert outcomes[0].status == SettlementStatus.SETTLED
        assert outcomes[0].receipts == 0
        assert db.get(Tournament, tid).status == TournamentStatus.FINISHED
        assert db.query(PrizeReceipt).count() == 0

    def test_tie_goes_to_earliest_join(self, services, db, make_tournament, clock):
        tid = make_tournament()
        for player in ("a", "b", "c"):
            services.participation.record_attempt(tid, player, player, 100)
            clock.advance(seconds=1)

        services.settlement.run_settlement_pass(clock.advance(hours=2))

        prizes = services.ranking.list_prizes(db, tid)
        assert [(p.player_id, p.amount) for p in prizes] == [
            ("a", Decimal("50")),
            ("b", Decimal("30")),
            ("c", Decimal("20")),
        ]

    def test_upcoming_tournament_that_never_started_is_settled(self, services, db, make_tournament, clock):
        tid = make_tournament(
            start_time=clock.now + timedelta(minutes=10),
            end_time=clock.now + timedelta(minutes=20),
        )
        assert db.get(Tournament, tid).status == TournamentStatus.UPCOMING

        outcomes = services.settlement.run_settlement_pass(clock.advance(hours=1))
        assert outcomes[0].status == SettlementStatus.SETTLED


class TestConcurrency:
    def test_lost_status_flip_rolls_back_everything(self, services, db, make_tournament, clock, monkeypatch):
        tid = make_tournament()
        play(services, tid, ("p1", 80), ("p2", 95))
        monkeypatch.setattr(services.registry, "mark_finished", lambda *args: False)

        outcome = services.settlement.settle_tournament(tid, clock.advance(hours=2))

        assert outcome.status == SettlementStatus.NOOP
        assert db.query(PrizeReceipt).count() == 0
        assert balances(services, db, "p1", "p2") == [Decimal("0"), Decimal("0")]
        assert db.get(Tournament, tid).status == TournamentStatus.ACTIVE

    def test_two_runners_settle_once(self, services, db, make_tournament, clock):
        tid = make_tournament()
        play(services, tid, ("p1", 80), ("p2", 95), ("p3", 60))
        now = clock.advance(hours=2)
        outcomes = []
        barrier = threading.Barrier(2)

        def runner():
            barrier.wait()
            outcomes.append(services.settlement.settle_tournament(tid, now))

        threads = [threading.Thread(target=runner) for _ in range(2)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sorted(o.status for o in outcomes) == [SettlementStatus.NOOP, SettlementStatus.SETTLED]
        assert db.query(PrizeReceipt).count() == 3
        assert balances(services, db, "p2", "p1", "p3") == [Decimal("50"), Decimal("30"), Decimal("20")]

    def test_parallel_workers_settle_every_tournament(self, services, db, make_tournament, clock):
        tids = [make_tournament(name=f"Cup {n}") for n in range(5)]
        for n, tid in enumerate(tids):
            play(services, tid, (f"w{n}", 10))

        engine = SettlementEngine(
            services.session_factory,
            services.registry,
            services.ranking,
            services.wallet,
            clock=clock,
            max_workers=4,
        )
        outcomes = engine.run_settlement_pass(clock.advance(hours=2))

        assert len(outcomes) == 5
        assert all(o.status == SettlementStatus.SETTLED for o in outcomes)
        assert balances(services, db, *[f"w{n}" for n in range(5)]) == [Decimal("50")] * 5


class TestFailureIsolation:
    def test_failing_credit_only_fails_its_tournament(self, services, db, make_tournament, clock, monkeypatch):
        good = make_tournament(name="Good", end_time=clock.now + timedelta(minutes=30))
        bad = make_tournament(name="Bad")
        play(services, good, ("ok", 10))
        play(services, bad, ("broken", 10))

        original = services.wallet.credit

        def flaky(db, player_id, amount, key, kind="prize"):
            if player_id == "broken":
                raise TransientError("wallet unavailable")
            return original(db, player_id, amount, key, kind)

        monkeypatch.setattr(services.wallet, "credit", flaky)
        outcomes = {o.tournament_id: o for o in services.settlement.run_settlement_pass(clock.advance(hours=2))}

        assert outcomes[good].status == SettlementStatus.SETTLED
        assert outcomes[bad].status == SettlementStatus.FAILED
        assert db.get(Tournament, bad).status == TournamentStatus.ACTIVE
        assert services.ranking.list_prizes(db, bad) == []

        # Next pass retries the failed tournament
        monkeypatch.setattr(services.wallet, "credit", original)
        retry = services.settlement.run_settlement_pass(clock.advance(minutes=5))
        assert [(o.tournament_id, o.status) for o in retry] == [(bad, SettlementStatus.SETTLED)]
        assert services.wallet.get_balance(db, "broken") == Decimal("50")


class TestPayoutOutbox:
    def test_events_written_when_transfers_enabled(self, services, db, make_tournament, clock):
        engine = SettlementEngine(
            services.session_factory,
            services.registry,
            services.ranking,
            services.wallet,
            clock=clock,
            enqueue_transfers=True,
        )
        tid = make_tournament()
        play(services, tid, ("p1", 80), ("p2", 95))

        engine.run_settlement_pass(clock.advance(hours=2))

        events = db.query(PayoutEvent).order_by(PayoutEvent.amount.desc()).all()
        assert [(e.player_id, e.amount, e.status) for e in events] == [
            ("p2", Decimal("50"), PayoutStatus.PENDING),
            ("p1", Decimal("30"), PayoutStatus.PENDING),
        ]
        assert {e.receipt_id for e in events} == {receipt_id_for(tid, 1), receipt_id_for(tid, 2)}

    def test_no_events_by_default(self, services, db, make_tournament, clock):
        tid = make_tournament()
        play(services, tid, ("p1", 80))
        services.settlement.run_settlement_pass(clock.advance(hours=2))
        assert db.query(PayoutEvent).count() == 0


class TestAutoRenew:
    def test_successor_carries_opted_in_players(self, services, db, make_tournament, clock, fund):
        tid = make_tournament(auto_renew=True, entry_fee=Decimal("10"), prize_pool=Decimal("0"))
        fund("stay", 30)
        fund("leave", 30)
        fund("broke", 10)
        services.participation.record_attempt(tid, "stay", "Stay", 5, auto_renew=True)
        services.participation.record_attempt(tid, "leave", "Leave", 9)
        services.participation.record_attempt(tid, "broke", "Broke", 1, auto_renew=True)

        outcome = services.settlement.settle_tournament(tid, clock.advance(hours=2))
        assert outcome.status == SettlementStatus.SETTLED

        successor = db.query(Tournament).filter(Tournament.renewed_from_id == tid).one()
        assert successor.status == TournamentStatus.ACTIVE
        assert successor.end_time > clock.now
        carried = db.query(Participant).filter(Participant.tournament_id == successor.id).all()
        assert [p.player_id for p in carried] == ["stay"]
        assert carried[0].best_score == 0
        assert successor.current_participants == 1
        assert successor.prize_pool == Decimal("9")

        # 30 - 10 entry + prize share of a 27 pool (second place) - 10 renewal
        assert services.wallet.get_balance(db, "stay") == Decimal("30") - 10 + Decimal("8.1") - 10
        assert services.wallet.get_balance(db, "broke") == Decimal("0") + Decimal("5.4")

    def test_successor_is_created_once(self, services, db, make_tournament, clock):
        tid = make_tournament(auto_renew=True)
        now = clock.advance(hours=2)
        services.settlement.settle_tournament(tid, now)
        services.settlement.settle_tournament(tid, now)

        assert db.query(Tournament).filter(Tournament.renewed_from_id == tid).count() == 1

    def test_carried_over_seat_without_attempts_is_not_paid(self, services, db, make_tournament, clock):
        tid = make_tournament(auto_renew=True)
        services.participation.record_attempt(tid, "idle", "Idle", 40, auto_renew=True)
        services.settlement.settle_tournament(tid, clock.advance(hours=2))
        successor = db.query(Tournament).filter(Tournament.renewed_from_id == tid).one()

        services.participation.record_attempt(successor.id, "late", "Late", 0)
        outcome = services.settlement.settle_tournament(successor.id, clock.advance(hours=2))

        assert outcome.receipts == 1
        prizes = services.ranking.list_prizes(db, successor.id)
        assert [(p.place, p.player_id) for p in prizes] == [(1, "late")]
        assert balances(services, db, "idle", "late") == [Decimal("50"), Decimal("50")]
