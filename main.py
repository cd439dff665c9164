"""Command-line interface for the account gateway."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Sequence

from gateway.config import GatewaySettings, load_settings
from gateway.database import Database
from gateway.errors import RecordNotFound
from gateway.models import RATE_LIMIT_COLUMNS, RATE_LIMITS_TABLE, RateLimitEntry

logger = logging.getLogger("accounts.gateway.main")


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Account gateway utilities")
    parser.add_argument(
        "--config",
        default=None,
        help="Path to a YAML configuration file (defaults to GATEWAY_CONFIG)",
    )
    subparsers = parser.add_subparsers(dest="command")

    parser.set_defaults(command="serve")

    subparsers.add_parser("init-db", help="Initialise the local SQLite database")

    serve_parser = subparsers.add_parser("serve", help="Start the HTTP gateway")
    serve_parser.add_argument("--host", default="0.0.0.0", help="Bind address for the gateway")
    serve_parser.add_argument(
        "--port",
        type=int,
        default=8000,
        help="Port for the HTTP gateway (default: 8000)",
    )
    serve_parser.add_argument(
        "--ssl-certfile",
        default=None,
        help="Path to the TLS certificate chain in PEM format",
    )
    serve_parser.add_argument(
        "--ssl-keyfile",
        default=None,
        help="Path to the TLS private key in PEM format",
    )

    rate_parser = subparsers.add_parser(
        "rate-limit", help="Inspect or reset registration rate-limit counters"
    )
    rate_parser.add_argument("action", choices=("show", "reset"))
    rate_parser.add_argument("client_key", help="Client key (forwarded address or 'unknown')")

    args_list = list(argv) if argv is not None else sys.argv[1:]
    known_commands = {"serve", "init-db", "rate-limit"}

    leading: list[str] = []
    if args_list[:1] == ["--config"] and len(args_list) >= 2:
        leading, args_list = args_list[:2], args_list[2:]

    # `main.py --host ...` is shorthand for `main.py serve --host ...`.
    if not args_list:
        args_list = ["serve"]
    else:
        first = args_list[0]
        if first in ("-h", "--help"):
            return parser.parse_args([*leading, *args_list])
        if first not in known_commands:
            if any(flag in args_list for flag in ("-h", "--help")):
                return parser.parse_args([*leading, *args_list])
            args_list = ["serve", *args_list]

    return parser.parse_args([*leading, *args_list])


def _load_settings(config: str | None) -> GatewaySettings:
    return load_settings(Path(config).expanduser() if config else None)


def _open_database(settings: GatewaySettings) -> Database:
    if settings.backend != "sqlite":
        raise SystemExit("This command only applies to the sqlite backend.")
    database = Database(settings.database_path)
    database.initialize()
    logger.info("Database initialised at %s", settings.database_path)
    return database


def _serve(
    *,
    settings: GatewaySettings,
    host: str,
    port: int,
    ssl_certfile: str | None,
    ssl_keyfile: str | None,
) -> None:
    from gateway.service import create_app
    import uvicorn

    if bool(ssl_certfile) ^ bool(ssl_keyfile):
        raise SystemExit("Both --ssl-certfile and --ssl-keyfile must be provided together.")

    protocol = "https" if ssl_certfile and ssl_keyfile else "http"
    logger.info("Starting account gateway on %s://%s:%s", protocol, host, port)
    logger.info(
        "Registration limit: %d requests per %d ms",
        settings.rate_limit.max_requests,
        settings.rate_limit.window_ms,
    )

    app = create_app(settings)
    uvicorn.run(
        app,
        host=host,
        port=port,
        log_level="info",
        ssl_certfile=ssl_certfile,
        ssl_keyfile=ssl_keyfile,
    )


def _rate_limit_command(database: Database, action: str, client_key: str) -> int:
    if action == "reset":
        if database.reset_rate_limit(client_key):
            print(f"Reset rate-limit counter for {client_key}.")
        else:
            print(f"No rate-limit counter recorded for {client_key}.")
        return 0

    try:
        row = database.fetch_row(RATE_LIMITS_TABLE, client_key, RATE_LIMIT_COLUMNS)
    except RecordNotFound:
        print(f"No rate-limit counter recorded for {client_key}.")
        return 1

    entry = RateLimitEntry.from_row(row)
    print(json.dumps({"client_key": entry.client_key, "count": entry.count, "window_start": entry.window_start}))
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for CLI usage."""

    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(message)s")

    args = _parse_args(argv)
    try:
        settings = _load_settings(args.config)
    except ValueError as exc:
        raise SystemExit(f"Invalid configuration: {exc}") from exc

    if args.command == "serve":
        _serve(
            settings=settings,
            host=args.host,
            port=args.port,
            ssl_certfile=args.ssl_certfile,
            ssl_keyfile=args.ssl_keyfile,
        )
    elif args.command == "init-db":
        _open_database(settings)
        print("Database initialisation complete.")
    elif args.command == "rate-limit":
        return _rate_limit_command(_open_database(settings), args.action, args.client_key)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
