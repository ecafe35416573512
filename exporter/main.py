"""
Main program for the MTR exporter.

Loads the configuration, starts the background collector and serves the
metrics endpoint until interrupted.
"""

import argparse
import logging
import sys
from typing import List, Optional, Tuple

import uvicorn

from collector.scheduler import Scheduler
from config.parser import ConfigurationError, ExporterConfig
from exporter import __version__
from exporter.api import create_app
from exporter.metrics import MetricStore


logger = logging.getLogger(__name__)


def parse_listen_address(address: str) -> Tuple[str, int]:
    """
    Split a listen address of the form "host:port" or ":port".

    Examples:
        >>> parse_listen_address(":9116")
        ('0.0.0.0', 9116)
        >>> parse_listen_address("127.0.0.1:8080")
        ('127.0.0.1', 8080)
    """
    host, sep, port = address.rpartition(":")
    if not sep or not port.isdigit():
        raise ValueError(f"Invalid listen address: {address!r}")
    host = host.strip("[]") or "0.0.0.0"
    return host, int(port)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mtr-exporter",
        description="Prometheus exporter for mtr path measurements"
    )
    parser.add_argument(
        "--config.file",
        dest="config_file",
        default="mtr.yaml",
        help="MTR exporter configuration file."
    )
    parser.add_argument(
        "--web.listen-address",
        dest="listen_address",
        default=":9116",
        help="The address to listen on for HTTP requests."
    )
    parser.add_argument(
        "--version",
        action="store_true",
        help="Print version information."
    )
    return parser


def main(argv: Optional[List[str]] = None):
    """
    Main entry point for the exporter.
    """
    args = build_parser().parse_args(argv)

    if args.version:
        print(f"mtr_exporter, version {__version__}")
        sys.exit(0)

    # Configure logging
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    logger.info(f"Starting mtr_exporter {__version__}")

    try:
        config = ExporterConfig.from_file(args.config_file)
    except ConfigurationError as e:
        logger.error(f"Error reading config file: {e}")
        sys.exit(1)

    try:
        host, port = parse_listen_address(args.listen_address)
    except ValueError as e:
        logger.error(str(e))
        sys.exit(1)

    store = MetricStore(version=__version__)
    scheduler = Scheduler(config, store)
    scheduler.start()

    logger.info(f"Listening on {host}:{port}")
    try:
        uvicorn.run(create_app(store), host=host, port=port, log_level="info")
    finally:
        scheduler.stop(timeout=1)


if __name__ == "__main__":
    main()
