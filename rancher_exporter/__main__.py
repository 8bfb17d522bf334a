"""
Rancher exporter CLI entry point.
"""

import argparse
import asyncio
import logging
import sys
from typing import List, Optional

from rancher_exporter.config.settings import ExporterConfig
from rancher_exporter.errors import ConfigurationError
from rancher_exporter.logging_config import setup_logging
from rancher_exporter.telemetry.service import ExporterService, run_exporter_service


def load_config(config_path: Optional[str]) -> ExporterConfig:
    """Load configuration from a YAML file if given, else from the environment."""
    if config_path:
        return ExporterConfig.from_file(config_path)
    return ExporterConfig.from_env()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Prometheus exporter for Rancher hosts, stacks and services",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run with configuration from the environment
  CATTLE_URL=http://rancher:8080/v1 CATTLE_ACCESS_KEY=... CATTLE_SECRET_KEY=... rancher-exporter

  # Run with a YAML file (environment variables still override it)
  rancher-exporter --config /etc/rancher-exporter/config.yml

  # Run a single cycle and print its report
  rancher-exporter --once
        """,
    )
    parser.add_argument("--config", "-c", type=str, default=None, help="Path to YAML configuration")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    parser.add_argument("--log-dir", type=str, default=None, help="Also write rotating log files")
    parser.add_argument("--json-logs", action="store_true", help="Emit JSON structured logs")
    parser.add_argument(
        "--validate-config", action="store_true", help="Validate configuration and exit"
    )
    parser.add_argument(
        "--once", action="store_true", help="Run one cycle, print the report as JSON and exit"
    )
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point."""
    args = build_parser().parse_args(argv)

    try:
        config = load_config(args.config)
    except ConfigurationError as e:
        setup_logging("DEBUG" if args.verbose else "INFO", use_json=args.json_logs)
        logging.getLogger(__name__).error(f"Configuration error: {e}")
        return 1

    setup_logging(
        console_level="DEBUG" if args.verbose else config.log_level,
        log_dir=args.log_dir,
        use_json=args.json_logs,
    )
    logger = logging.getLogger(__name__)

    try:
        config.require_credentials()
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        return 1

    if args.validate_config:
        print("Configuration valid")
        return 0

    try:
        if args.once:
            report = asyncio.run(ExporterService(config).collect_once())
            print(report.model_dump_json(indent=2))
            return 0 if report.succeeded else 2

        asyncio.run(run_exporter_service(config))

    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 0
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        print(f"Error running rancher-exporter: {e}", file=sys.stderr)
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
