from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Sequence

import uvicorn

from api.api import create_app
from config import ENV_FILE_NAME, AppSettings, config, render_env_file
from db.db import clean_db

logger = logging.getLogger(__name__)


def run_server(settings: AppSettings) -> int:
    logger.info("FX oracle is serving on %s:%d", settings.api_host, settings.api_port)
    uvicorn.run(
        create_app(settings),
        host=settings.api_host,
        port=settings.api_port,
        log_level=settings.log_level.lower(),
    )
    logger.warning("Shutdown complete.")
    return 0


def write_config(directory: Path) -> int:
    target = directory / ENV_FILE_NAME
    if target.exists():
        print(f"{target} already exists. Please remove it first", file=sys.stderr)
        return 1
    target.write_text(render_env_file(AppSettings(_env_file=None)), encoding="utf-8")
    print(f"{ENV_FILE_NAME} file configured and created in {directory}")
    return 0


def clean(settings: AppSettings) -> int:
    print(f"Cleaning oracle data directory: {settings.db_root}")
    try:
        clean_db(settings.db_root)
    except OSError as exc:
        print(f"Failed to clean {settings.db_root}: {exc}", file=sys.stderr)
        return 1
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Exchange rate oracle: polls Alpha Vantage and serves the history.")
    commands = parser.add_subparsers(dest="command")

    server = commands.add_parser("server", help="run or configure the oracle server")
    server.set_defaults(server_parser=server)
    server_commands = server.add_subparsers(dest="server_command")
    server_commands.add_parser("run", help="start the HTTP API and the polling daemon")
    server_commands.add_parser("config", help=f"write a default {ENV_FILE_NAME} into the current directory")

    commands.add_parser("clean", help="remove the oracle data directory")
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    if args.command == "server" and args.server_command is None:
        print("Subcommand required", file=sys.stderr)
        args.server_parser.print_help(sys.stderr)
        return 2
    if args.command == "server" and args.server_command == "config":
        return write_config(Path.cwd())

    settings = config()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )

    if args.command == "clean":
        return clean(settings)
    return run_server(settings)


if __name__ == "__main__":
    sys.exit(main())
