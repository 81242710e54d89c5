"""
Shared fixtures: a file-backed SQLite database per test, a controllable
clock and the wired services container.
"""

from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from tourney.core.config import Settings
from tourney.core.container import Services
from tourney.core.rate_limit import limiter
from tourney.database import init_db
from tourney.schemas.tournament import TournamentCreate
from tourney.services.payment_gateway import SimulatedPaymentGateway


START = datetime(2026, 3, 1, 12, 0, 0)


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings(tmp_path):
    return Settings(
        SQLALCHEMY_DATABASE_URI=f"sqlite:///{tmp_path / 'tournaments.db'}",
        SCHEDULER_ENABLED=False,
        DEBUG=False,
        LOG_LEVEL="WARNING",
    )


@pytest.fixture
def gateway():
    return SimulatedPaymentGateway(balance=Decimal("1000"))


@pytest.fixture
def services(settings, clock, gateway):
    svc = Services(settings, gateway=gateway, clock=clock)
    init_db(svc.engine)
    limiter.reset()
    yield svc
    svc.engine.dispose()


@pytest.fixture
def db(services):
    session = services.session_factory()
    yield session
    session.close()


@pytest.fixture
def make_tournament(services, clock):
    """Create a tournament through the registry, active by default."""

    def _make(**overrides):
        data = {
            "name": "Weekly Cup",
            "prize_pool": Decimal("100"),
            "start_time": clock.now - timedelta(hours=1),
            "end_time": clock.now + timedelta(hours=1),
        }
        data.update(overrides)
        with services.session_factory() as session:
            tournament = services.registry.create(session, TournamentCreate(**data))
            return tournament.id

    return _make


@pytest.fixture
def fund(services):
    """Top up a player's wallet."""

    def _fund(player_id: str, amount) -> None:
        with services.session_factory() as session:
            services.wallet.credit(
                session, player_id, Decimal(str(amount)), f"topup:{player_id}:{amount}", "transfer"
            )
            session.commit()

    return _fund
