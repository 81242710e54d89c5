"""
Service wiring

Builds every service from one Settings object. The HTTP app, the scheduler
and the one-shot settlement runner all share this construction.
"""
import logging
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.engine import Engine

from tourney.core.config import Settings
from tourney.database import create_db_engine, create_session_factory
from tourney.services.participation_service import ParticipationService
from tourney.services.payment_gateway import PaymentGateway, build_payment_gateway
from tourney.services.payout_worker import PayoutWorker
from tourney.services.ranking_service import RankingService
from tourney.services.scheduler_service import SchedulerService
from tourney.services.settlement_engine import SettlementEngine
from tourney.services.tournament_registry import TournamentRegistry
from tourney.services.wallet_service import WalletService
from tourney.utils.time_utils import utc_now

logger = logging.getLogger(__name__)


class Services:
    """Container holding the configured services of one process"""

    def __init__(
        self,
        settings: Settings,
        engine: Optional[Engine] = None,
        gateway: Optional[PaymentGateway] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.settings = settings
        self.clock = clock
        self.engine = engine if engine is not None else create_db_engine(settings)
        self.session_factory = create_session_factory(self.engine)

        self.registry = TournamentRegistry(
            default_distribution=settings.DEFAULT_PRIZE_DISTRIBUTION,
            default_platform_fee_percent=settings.DEFAULT_PLATFORM_FEE_PERCENT,
            clock=clock,
        )
        self.ranking = RankingService(max_limit=settings.LEADERBOARD_MAX_LIMIT)
        self.wallet = WalletService(clock=clock)
        self.participation = ParticipationService(
            self.session_factory, self.registry, self.wallet, clock=clock
        )
        self.settlement = SettlementEngine(
            self.session_factory,
            self.registry,
            self.ranking,
            self.wallet,
            clock=clock,
            enqueue_transfers=settings.PAYOUT_TRANSFERS_ENABLED,
            max_workers=settings.SETTLEMENT_MAX_WORKERS,
        )
        self.gateway = gateway if gateway is not None else build_payment_gateway(settings)
        self.payout_worker = PayoutWorker(
            self.session_factory,
            self.gateway,
            self.wallet,
            clock=clock,
            max_attempts=settings.PAYOUT_MAX_ATTEMPTS,
            retry_base_seconds=settings.PAYOUT_RETRY_BASE_SECONDS,
        )
        self.scheduler = SchedulerService(
            settings,
            self.settlement,
            self.registry,
            self.session_factory,
            payout_worker=self.payout_worker,
            clock=clock,
        )

    def close(self) -> None:
        """Stop background jobs and release connections"""
        self.scheduler.shutdown()
        self.gateway.close()
        self.engine.dispose()
        logger.info("Services closed")
