#!/usr/bin/env python3
"""
Run one settlement pass and exit.

Meant for cron or manual runs; exits non-zero when any tournament failed
to settle or storage was unavailable.
"""

import os
import sys
import logging

# Add the current directory to Python path
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from sqlalchemy.exc import SQLAlchemyError

from tourney.core.config import get_settings
from tourney.core.container import Services
from tourney.schemas.settlement import SettlementStatus


def main() -> int:
    settings = get_settings()

    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )
    logger = logging.getLogger("run_settlement")

    services = Services(settings)
    try:
        outcomes = services.settlement.run_settlement_pass()
        if settings.PAYOUT_TRANSFERS_ENABLED:
            services.payout_worker.process_pending(settings.PAYOUT_BATCH_SIZE)
    except SQLAlchemyError as e:
        logger.error(f"Settlement pass could not run: {e}")
        return 2
    finally:
        services.close()

    failed = [o for o in outcomes if o.status == SettlementStatus.FAILED]
    for outcome in failed:
        logger.error(f"Tournament {outcome.tournament_id} not settled: {outcome.detail}")
    return 1 if failed else 0


if __name__ == "__main__":
    sys.exit(main())
