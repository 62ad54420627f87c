#!/usr/bin/env python3
"""Entry point for the Airseeker service.

This module provides the main entry point for the service that keeps
on-chain data feeds updated from signed gateway data.
"""

import argparse
import asyncio
import logging
import os
import sys

from dotenv import load_dotenv

# Configure logging before any other imports create loggers
def setup_logging(level: str = "INFO") -> None:
    """Configure logging for the application.

    Args:
        level: Logging level as string (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    log_level: int = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

# Get logger for this module
logger = logging.getLogger(__name__)

from airseeker.airseeker import Airseeker
from airseeker.config import AirseekerConfig
from airseeker.constants import CONFIG_ERROR_EXIT_CODE


async def main() -> None:
    """Main entry point for the Airseeker service.

    Parses startup arguments, loads the configuration file with secrets
    from the environment, and runs the service until it is stopped.

    Raises:
        SystemExit: On configuration or runtime errors
    """
    parser: argparse.ArgumentParser = argparse.ArgumentParser(
        description="Airseeker - Keep on-chain data feeds updated from signed gateway data",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""Environment Variables:
  AIRSEEKER_CONFIG  - Path of the configuration file (can be overridden with --config)
  AIRSEEKER_SECRETS - Path of the secrets file (can be overridden with --secrets)
  LOG_LEVEL         - Logging level (can be overridden with --log-level)

Any ${NAME} placeholder in the configuration file is replaced with the
environment variable NAME, after loading the secrets file into the environment.
        """
    )
    parser.add_argument(
        "--config",
        default=os.environ.get("AIRSEEKER_CONFIG", "airseeker.json"),
        help="Path of the configuration file (default: airseeker.json)"
    )
    parser.add_argument(
        "--secrets",
        default=os.environ.get("AIRSEEKER_SECRETS", "secrets.env"),
        help="Dotenv file with values for ${NAME} placeholders (default: secrets.env)"
    )
    parser.add_argument(
        "--log-level",
        default=os.environ.get("LOG_LEVEL", "INFO"),
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Set the logging level (default: INFO)"
    )
    args: argparse.Namespace = parser.parse_args()

    setup_logging(args.log_level)

    logger.info("=== Airseeker Starting ===")
    logger.info(f"Loading configuration from {args.config}...")

    # Variables already set in the environment take precedence
    if load_dotenv(args.secrets):
        logger.info(f"Loaded secrets from {args.secrets}")

    try:
        config: AirseekerConfig = AirseekerConfig.from_file(args.config, secrets=os.environ)
        logger.info("Configuration loaded successfully")
    except ValueError as e:
        logger.error(f"Configuration Error: {e}")
        sys.exit(CONFIG_ERROR_EXIT_CODE)

    try:
        await Airseeker(config).run()

    except KeyboardInterrupt:
        logger.info("Received interrupt signal, shutting down...")
        sys.exit(0)

    except Exception as e:
        logger.error(f"Fatal Error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
