"""
Permit Sniper - server entry point.

Loads .env, configures logging, and serves the FastAPI app with uvicorn.
Scheduled jobs run inside this process; stopping it (SIGINT/SIGTERM) drains
active jobs and releases every browser session through the app lifespan.
"""

import argparse
import os

import uvicorn
from dotenv import load_dotenv

from permit_sniper.infra.logging_config import setup_logging
from permit_sniper.infra.settings import get_logs_dir, get_server_port


# Load environment variables
load_dotenv()


def parse_args() -> argparse.Namespace:
    """Parse CLI arguments."""
    parser = argparse.ArgumentParser(
        description="Permit Sniper - scheduled recreation.gov permit acquisition",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Serve on localhost:8000
  python main.py

  # Listen on all interfaces, verbose logging
  python main.py --host 0.0.0.0 --port 9000 --log-level DEBUG
        """
    )
    parser.add_argument(
        "--host",
        type=str,
        default="127.0.0.1",
        help="Bind address. Default=127.0.0.1"
    )
    parser.add_argument(
        "--port",
        type=int,
        default=None,
        help="Port. Default=$PORT or 8000"
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default=None,
        help="Logging level. Default=$LOG_LEVEL or INFO"
    )
    return parser.parse_args()


def main() -> None:
    args = parse_args()

    log_level = (args.log_level or os.getenv("LOG_LEVEL", "INFO")).upper()
    logger = setup_logging(log_level, log_dir=get_logs_dir())

    port = args.port or get_server_port()
    logger.info("=" * 80)
    logger.info(f"Permit Sniper starting on http://{args.host}:{port}")
    logger.info("=" * 80)

    uvicorn.run(
        "permit_sniper.api.main:app",
        host=args.host,
        port=port,
        log_level=log_level.lower(),
    )


if __name__ == "__main__":
    main()
