"""callbridge CLI entry point.

Usage:
    callbridge run --config bridge.yaml
    callbridge init [--output bridge.yaml]
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

from loguru import logger

from callbridge.errors import ConfigError


def cmd_run(args: argparse.Namespace) -> None:
    """Run the callbridge server."""
    from callbridge.config import load_config

    config_path = args.config
    try:
        config = load_config(config_path if Path(config_path).exists() else None)
        config.credentials.require("openai_api_key")
    except ConfigError as e:
        logger.error(e.detail)
        sys.exit(1)

    # Configure logging
    logger.remove()
    logger.add(sys.stderr, level=config.logging.level)

    if not Path(config_path).exists():
        logger.warning(f"Config file not found: {config_path}; using defaults")
    missing = config.credentials.missing(
        "twilio_account_sid", "twilio_auth_token", "twilio_phone_number"
    )
    if missing:
        logger.warning(f"Outbound calling disabled until set: {', '.join(missing)}")

    logger.info(f"callbridge starting with config: {config_path}")
    logger.info(f"Listening on: {config.server.listen_host}:{config.server.listen_port}")
    logger.info(f"Media stream path: {config.server.listen_path}")
    logger.info(f"Speech model: {config.realtime.model} (voice={config.realtime.voice})")

    from callbridge.server import run_server

    run_server(config, host=args.host, port=args.port)


def cmd_init(args: argparse.Namespace) -> None:
    """Generate a starter configuration file."""
    output = Path(args.output)

    if output.exists() and not args.force:
        logger.error(f"File already exists: {output}. Use --force to overwrite.")
        sys.exit(1)

    from callbridge.config import DEFAULT_CONFIG_YAML

    output.write_text(DEFAULT_CONFIG_YAML)
    print(f"Configuration written to: {output}")
    print(f"\nEdit the file and run: callbridge run --config {output}")


def main(argv: list[str] | None = None) -> None:
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="callbridge",
        description="callbridge - outbound AI phone calls over Twilio and OpenAI Realtime",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # `callbridge run`
    run_parser = subparsers.add_parser("run", help="Run the callbridge server")
    run_parser.add_argument(
        "--config", "-c",
        default="bridge.yaml",
        help="Path to the bridge YAML config file (default: bridge.yaml)",
    )
    run_parser.add_argument("--host", default=None, help="Override the listen host")
    run_parser.add_argument("--port", type=int, default=None, help="Override the listen port")

    # `callbridge init`
    init_parser = subparsers.add_parser("init", help="Generate a starter config file")
    init_parser.add_argument(
        "--output", "-o",
        default="bridge.yaml",
        help="Output file path (default: bridge.yaml)",
    )
    init_parser.add_argument(
        "--force", "-f",
        action="store_true",
        help="Overwrite existing file",
    )

    args = parser.parse_args(argv)

    if args.command == "run":
        cmd_run(args)
    elif args.command == "init":
        cmd_init(args)
    else:
        parser.print_help()


if __name__ == "__main__":
    main()
