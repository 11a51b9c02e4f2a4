"""Module entry point: ``python -m moneywise [URL]`` or ``python -m moneywise refresh``.

The interactive app runs under :func:`curses.wrapper`. ``refresh`` runs the
periodic recurring-transaction job without a terminal UI, suitable for cron.
"""

import argparse
import curses
import logging

from .cli import main
from .database import SessionLocal, init_db
from .logging_config import LoggingConfig, setup_logging
from .recurring import BackgroundScheduler

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="moneywise", description="Personal finance tracker")
    parser.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    parser.add_argument(
        "target",
        nargs="?",
        help="'refresh' to generate due recurring transactions, or a moneywise:// link",
    )
    return parser


def refresh() -> int:
    init_db()
    with SessionLocal() as session:
        return BackgroundScheduler(session).run()


def entry_point(argv=None) -> None:
    args = build_parser().parse_args(argv)
    config = LoggingConfig.from_environment()
    if args.target == "refresh":
        setup_logging(config, verbose=args.verbose)
        count = refresh()
        print(f"Generated {count} recurring transactions")
        return
    # curses owns the terminal
    config.log_to_console = False
    setup_logging(config, verbose=args.verbose)
    curses.wrapper(main, args.target)


if __name__ == "__main__":  # pragma: no cover - manual execution entry
    entry_point()
