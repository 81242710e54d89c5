import logging
import threading
from datetime import datetime, timedelta
from typing import List, Dict, Any, Optional, Callable
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.exc import SQLAlchemyError

from tourney.core.config import Settings
from tourney.schemas.settlement import SettlementOutcome
from tourney.services.payout_worker import PayoutWorker
from tourney.services.settlement_engine import SettlementEngine
from tourney.services.tournament_registry import TournamentRegistry
from tourney.utils.time_utils import utc_now

logger = logging.getLogger(__name__)


class SchedulerService:
    """Service for running settlement, activation and payout jobs on intervals."""

    def __init__(
        self,
        settings: Settings,
        settlement: SettlementEngine,
        registry: TournamentRegistry,
        session_factory,
        payout_worker: Optional[PayoutWorker] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.settings = settings
        self.settlement = settlement
        self.registry = registry
        self.session_factory = session_factory
        self.payout_worker = payout_worker
        self.clock = clock

        # Backoff state for the settlement job when storage is unavailable
        self.consecutive_failures = 0
        self.next_settlement_at: Optional[datetime] = None
        self._backoff_lock = threading.Lock()

        self.scheduler = None
        self._initialize_scheduler()

    def _initialize_scheduler(self):
        """Initialize the APScheduler instance."""
        jobstores = {
            'default': MemoryJobStore(),
        }
        executors = {
            'default': ThreadPoolExecutor(20),
        }
        job_defaults = {
            'coalesce': False,
            'max_instances': 3
        }

        self.scheduler = AsyncIOScheduler(
            jobstores=jobstores,
            executors=executors,
            job_defaults=job_defaults
        )
        logger.info("Scheduler service initialized")

    def start(self):
        """Start the scheduler."""
        if self.scheduler and not self.scheduler.running:
            self.register_jobs()
            self.scheduler.start()
            logger.info("Scheduler service started")

    def shutdown(self):
        """Shutdown the scheduler."""
        if self.scheduler and self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler service stopped")

    @property
    def running(self) -> bool:
        return bool(self.scheduler and self.scheduler.running)

    def register_jobs(self):
        """Set up the recurring jobs."""
        self.scheduler.add_job(
            func=self.settlement_tick,
            trigger=IntervalTrigger(seconds=self.settings.SETTLEMENT_INTERVAL_SECONDS),
            id='tournament_settlement',
            name='Tournament Settlement',
            replace_existing=True
        )

        self.scheduler.add_job(
            func=self.activation_tick,
            trigger=IntervalTrigger(seconds=self.settings.ACTIVATION_INTERVAL_SECONDS),
            id='tournament_activation',
            name='Tournament Activation',
            replace_existing=True
        )

        if self.payout_worker is not None and self.settings.PAYOUT_TRANSFERS_ENABLED:
            self.scheduler.add_job(
                func=self.payout_tick,
                trigger=IntervalTrigger(seconds=self.settings.PAYOUT_INTERVAL_SECONDS),
                id='prize_payouts',
                name='Prize Payouts',
                replace_existing=True
            )

        logger.info("Recurring tournament jobs scheduled")

    def get_scheduled_jobs(self) -> List[Dict[str, Any]]:
        """Get list of all scheduled jobs."""
        jobs = []
        for job in self.scheduler.get_jobs():
            jobs.append({
                "id": job.id,
                "name": job.name,
                "next_run_time": job.next_run_time.isoformat() if getattr(job, "next_run_time", None) else None,
                "trigger": str(job.trigger)
            })
        return jobs

    def settlement_tick(self) -> Optional[List[SettlementOutcome]]:
        """
        Run one settlement pass.

        When candidates cannot be listed the pass is skipped and the next
        attempts are delayed exponentially, up to SETTLEMENT_BACKOFF_MAX_SECONDS.
        Returns None when the tick was skipped or failed.
        """
        now = self.clock()
        with self._backoff_lock:
            if self.next_settlement_at is not None and now < self.next_settlement_at:
                logger.debug(f"Settlement backing off until {self.next_settlement_at}")
                return None

        try:
            outcomes = self.settlement.run_settlement_pass(now)
        except SQLAlchemyError as e:
            with self._backoff_lock:
                self.consecutive_failures += 1
                delay = min(
                    self.settings.SETTLEMENT_BACKOFF_BASE_SECONDS * 2 ** (self.consecutive_failures - 1),
                    self.settings.SETTLEMENT_BACKOFF_MAX_SECONDS,
                )
                self.next_settlement_at = now + timedelta(seconds=delay)
                logger.error(f"Settlement pass failed ({self.consecutive_failures} in a row), backing off {delay}s: {e}")
            return None

        with self._backoff_lock:
            if self.consecutive_failures:
                logger.info(f"Settlement recovered after {self.consecutive_failures} failed passes")
            self.consecutive_failures = 0
            self.next_settlement_at = None
        return outcomes

    def activation_tick(self) -> int:
        """Move upcoming tournaments whose start time passed to active."""
        try:
            with self.session_factory() as db:
                activated = self.registry.activate_started(db, self.clock())
                db.commit()
        except SQLAlchemyError as e:
            logger.error(f"Failed to activate tournaments: {e}")
            return 0

        if activated:
            logger.info(f"Activated {activated} tournaments")
        return activated

    def payout_tick(self) -> Dict[str, int]:
        """Send pending prize transfers and reconcile sent ones."""
        try:
            counts = self.payout_worker.process_pending(self.settings.PAYOUT_BATCH_SIZE)
            counts.update(self.payout_worker.reconcile_sent(self.settings.PAYOUT_BATCH_SIZE))
        except SQLAlchemyError as e:
            logger.error(f"Payout job failed: {e}")
            return {}
        return counts
