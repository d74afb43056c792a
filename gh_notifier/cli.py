"""CLI entry point for gh-notifier.

Usage:
    gh-notifier [--config PATH] [--verbose]          # run forever
    gh-notifier [--config PATH] run
    gh-notifier [--config PATH] once
    gh-notifier [--config PATH] status
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
from pathlib import Path

from gh_notifier.config import ConfigError, NotifierConfig, load_config
from gh_notifier.factory import build_engine, build_store

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(verbose: bool = False) -> None:
    level_name = "DEBUG" if verbose else os.getenv("LOG_LEVEL", "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, level_name, logging.INFO),
        format=LOG_FORMAT,
        handlers=[logging.StreamHandler(sys.stderr)],
    )


def cmd_run(cfg: NotifierConfig, max_cycles: int | None = None) -> None:
    engine = build_engine(cfg)
    try:
        engine.run_forever(max_cycles=max_cycles)
    except KeyboardInterrupt:
        logging.getLogger(__name__).info("Interrupted, last watermark %s", engine.watermark.isoformat())


def cmd_status(cfg: NotifierConfig) -> None:
    store = build_store(cfg)
    print(f"Token:     {'configured' if cfg.github_token else 'not configured'}")
    print(f"API:       {cfg.api_url}")
    print(f"Interval:  {cfg.poll_interval:g}s")
    print(f"Presenter: {cfg.presenter}")
    print(f"State:     {store.path}")
    if store.path.exists():
        print(f"Watermark: {store.read().isoformat()}")
    else:
        print("Watermark: none (next start skips the backlog)"
              if not cfg.replay_backlog else "Watermark: none (next start replays the backlog)")


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(prog="gh-notifier", description="GitHub desktop notifier")
    parser.add_argument("--config", type=Path, default=None, help="Config YAML file")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command")

    sub.add_parser("run", help="Poll forever (default)")
    sub.add_parser("once", help="Run a single poll cycle")
    sub.add_parser("status", help="Show configuration and stored watermark")

    args = parser.parse_args(argv)
    configure_logging(args.verbose)

    try:
        cfg = load_config(args.config)
        if args.command == "status":
            cmd_status(cfg)
        elif args.command == "once":
            cmd_run(cfg, max_cycles=1)
        else:
            cmd_run(cfg)
    except ConfigError as exc:
        print(f"gh-notifier: {exc}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
