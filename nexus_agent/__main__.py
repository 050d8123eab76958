"""Command-line entry point: ``nexus-agent`` / ``python -m nexus_agent``."""

from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import List, Optional

from . import __version__
from .agent import Agent
from .config import DEFAULT_CONFIG_PATH, load_settings
from .context import make_context


LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="nexus-agent", description="Host and container monitoring agent")
    parser.add_argument(
        "-c", "--config", type=Path, default=DEFAULT_CONFIG_PATH, help=f"JSON config file (default: {DEFAULT_CONFIG_PATH})"
    )
    parser.add_argument("--server", help="Backend URL (default: http://localhost:3000)")
    parser.add_argument("--name", help="Agent name (default: hostname)")
    parser.add_argument("--interval", type=float, help="Collection interval in seconds (default: 5)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose logging")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def setup_logging(level: str, log_file: str = "") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        datefmt=LOG_DATEFMT,
    )
    if log_file:
        handler = logging.FileHandler(log_file, encoding="utf-8")
        handler.setFormatter(logging.Formatter(LOG_FORMAT, LOG_DATEFMT))
        logging.getLogger().addHandler(handler)


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    settings = load_settings(
        args.config,
        backend_url=args.server,
        agent_name=args.name,
        collection_interval_seconds=args.interval,
        log_level="DEBUG" if args.verbose else None,
    )
    setup_logging(settings.log_level, settings.log_file)

    ctx = make_context(settings)
    Agent(ctx).run()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
