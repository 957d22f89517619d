#!/usr/bin/env python3
"""Start the ARQ worker for sync jobs and webhook retries.

USAGE:
    python -m contentsync.workers.start_arq_worker

    Or directly:
    arq contentsync.workers.arq_worker.WorkerSettings
"""

import logging
import sys

from arq import run_worker

from contentsync.utils.env import load_env_file, require_env

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)

logger = logging.getLogger(__name__)


def main():
    """Start the ARQ worker after checking mandatory configuration."""
    load_env_file()
    try:
        for name in ("DATABASE_URL", "TOKEN_ENCRYPTION_KEY", "REDIS_URL"):
            require_env(name)
    except RuntimeError as e:
        logger.error("[ARQ] %s", e)
        sys.exit(1)

    from contentsync.workers.arq_worker import WorkerSettings

    logger.info("Starting ARQ worker...")
    run_worker(WorkerSettings)


if __name__ == "__main__":
    main()
