"""Summary: Command-line interface for EmailBill.

Importance: Starts the API server only once configuration is complete.
Alternatives: Run uvicorn directly against the application factory.
"""

from __future__ import annotations

import argparse
import logging

import uvicorn

from emailbill.api import create_app
from emailbill.config import AppConfig
from emailbill.errors import ConfigError


logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    """Summary: Build the CLI argument parser.

    Importance: Defines supported commands for local operation.
    Alternatives: Use a CLI framework like Typer or Click.
    """

    parser = argparse.ArgumentParser(description="EmailBill CLI")
    subparsers = parser.add_subparsers(dest="command", required=True)

    serve = subparsers.add_parser("serve", help="Run the API server")
    serve.add_argument("--host", type=str, default=None)
    serve.add_argument("--port", type=int, default=None)

    subparsers.add_parser("check-config", help="Report missing configuration values")
    return parser


def main(argv: list[str] | None = None) -> int:
    """Summary: Run the CLI entrypoint.

    Importance: A partially configured process exits non-zero instead of serving.
    Alternatives: Start anyway and fail on first login.
    """

    args = build_parser().parse_args(argv)
    config = AppConfig.from_env()
    if args.command == "check-config":
        try:
            config.validate()
        except ConfigError as exc:
            print(str(exc))
            return 1
        print("Configuration complete.")
        return 0
    if args.command == "serve":
        try:
            app = create_app(config)
        except ConfigError as exc:
            logger.error("%s", exc)
            print(str(exc))
            return 1
        uvicorn.run(app, host=args.host or config.api_host, port=args.port or config.api_port)
        return 0
    return 1


if __name__ == "__main__":
    raise SystemExit(main())
