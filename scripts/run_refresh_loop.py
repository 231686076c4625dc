from __future__ import annotations

import argparse
import logging
import time

from app.core.logging import configure_logging
from app.db.pg import models as _models  # noqa: F401
from app.db.pg.base import Base
from app.db.pg.session import engine
from app.services.profile_system import get_profile_system
from app.utils.time import utc_now

logger = logging.getLogger(__name__)


def main() -> None:
    parser = argparse.ArgumentParser(description="Run the upstream-gated profile refresh loop")
    parser.add_argument("--once", action="store_true", help="run a single refresh check and exit")
    parser.add_argument("--max-sleep-hours", type=float, default=24.0)
    args = parser.parse_args()

    configure_logging()
    Base.metadata.create_all(bind=engine)
    system = get_profile_system()

    while True:
        result = system.run_smart_refresh()
        print(f"executed={result.executed} reason={result.reason!r} next_check_at={result.next_check_at.isoformat()}")
        if args.once:
            return
        sleep_seconds = (result.next_check_at - utc_now()).total_seconds()
        sleep_seconds = min(max(sleep_seconds, 60.0), args.max_sleep_hours * 3600)
        logger.info("refresh_loop_sleeping", extra={"seconds": round(sleep_seconds)})
        time.sleep(sleep_seconds)


if __name__ == "__main__":
    main()
