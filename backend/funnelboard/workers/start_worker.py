#!/usr/bin/env python3
"""Start the ARQ worker for scheduled jobs.

WHAT:
    Single worker that handles:
    - Transcript polling (cron, every 30s)
    - Daily Facebook ad spend sync (cron)

USAGE:
    # From backend directory:
    python -m funnelboard.workers.start_worker

    # Or directly with arq:
    arq funnelboard.workers.arq_worker.WorkerSettings

PRODUCTION:
    # Use process manager like supervisord or systemd
    # Example supervisord config:
    #
    # [program:funnelboard-worker]
    # command=funnelboard-worker
    # directory=/app/backend
    # autostart=true
    # autorestart=true
"""

import logging
import sys

from funnelboard.utils.env import load_env_file

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)

logger = logging.getLogger(__name__)


def main():
    """Start the ARQ worker."""
    load_env_file()

    from arq import run_worker
    from funnelboard.workers.arq_worker import WorkerSettings

    logger.info("=" * 60)
    logger.info("Starting ARQ Worker")
    logger.info("=" * 60)

    try:
        run_worker(WorkerSettings)
    except KeyboardInterrupt:
        logger.info("Worker stopped by user")
        sys.exit(0)
    except Exception as e:
        logger.exception("Worker failed: %s", e)
        sys.exit(1)


if __name__ == "__main__":
    main()
