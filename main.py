"""
Segment X-Ray Service — Main Entry Point
=========================================
Starts the Flask-based extraction and overlay microservice.

Usage:
    python main.py                    # Default: 0.0.0.0:5000
    python main.py --port 8000        # Custom port
    python main.py --debug            # Debug mode
"""

import argparse
import logging

from segxray.engine import LOG_DATE_FORMAT, LOG_FORMAT
from segxray.server import app, create_app

logging.basicConfig(
    level=logging.INFO,
    format=LOG_FORMAT,
    datefmt=LOG_DATE_FORMAT,
)
logger = logging.getLogger(__name__)


def main():
    parser = argparse.ArgumentParser(description="Segment X-Ray Service")
    parser.add_argument("--host", default="0.0.0.0", help="Bind host")
    parser.add_argument("--port", type=int, default=5000, help="Bind port")
    parser.add_argument("--debug", action="store_true", help="Debug mode")
    args = parser.parse_args()

    create_app()
    config = app.config["XRAY_CONFIG"]
    logger.info(
        f"Unterminated policy: {config.unterminated_policy.value}, "
        f"clip threshold: {config.clip_threshold}"
    )
    logger.info(f"Starting server on {args.host}:{args.port}")
    app.run(host=args.host, port=args.port, debug=args.debug)


if __name__ == "__main__":
    main()
