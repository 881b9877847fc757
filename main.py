"""
SignalDesk - Main Entry Point

Runs the API server. The notification delivery worker starts with the
application unless WORKER_ENABLED=false.

Endpoints:
- REST API under /api (docs at /docs)
- Realtime inbox push at /ws/notifications?token=<jwt>
- Prometheus metrics at /metrics
"""
import logging
import signal
import sys

import uvicorn

from config import WEB_HOST, WEB_PORT, LOG_LEVEL

# Configure logging
logging.basicConfig(
    level=LOG_LEVEL,
    format='%(asctime)s | %(levelname)-8s | %(name)-20s | %(message)s',
    datefmt='%H:%M:%S'
)
logger = logging.getLogger(__name__)

# Reduce noise from libraries
logging.getLogger('aiohttp').setLevel(logging.WARNING)
logging.getLogger('passlib').setLevel(logging.ERROR)
logging.getLogger('uvicorn.access').setLevel(logging.WARNING)


def handle_sigint(sig, frame):
    """Handle Ctrl+C gracefully"""
    logger.info("Received SIGINT, shutting down...")
    sys.exit(0)


def main():
    """Main entry point"""
    signal.signal(signal.SIGINT, handle_sigint)

    from app import app

    logger.info("=" * 60)
    logger.info("SIGNALDESK STARTING")
    logger.info(f"API docs at http://localhost:{WEB_PORT}/docs")
    logger.info(f"Prometheus metrics at http://localhost:{WEB_PORT}/metrics")
    logger.info("=" * 60)

    uvicorn.run(
        app,
        host=WEB_HOST,
        port=WEB_PORT,
        log_level="warning"
    )


if __name__ == "__main__":
    main()
