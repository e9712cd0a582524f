"""Subcommand dispatcher for loadshow.

Usage:
    loadshow record     https://example.com/ out.mp4 [-m spec.yaml] [-u key=value ...] [-a artifacts/]
    loadshow juxtapose  a.mp4 b.mp4 -o side-by-side.mp4
"""

import argparse
import logging
import os
import sys


class ArgumentParser(argparse.ArgumentParser):
    """ArgumentParser that exits with status 1 on invalid arguments."""

    def error(self, message):
        self.print_help(sys.stderr)
        self.exit(1, f"{self.prog}: error: {message}\n")


def configure_logging() -> None:
    """Log to stderr at $LOG_LEVEL (default WARNING)."""
    level = os.environ.get("LOG_LEVEL", "WARNING").upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def fail(message) -> None:
    """Print a single error line and exit with status 1."""
    print(f"error: {message}", file=sys.stderr)
    sys.exit(1)


def main(args=None):
    parser = ArgumentParser(
        prog="loadshow",
        description="Record web page loading as a video, and compare videos side by side.",
    )
    subparsers = parser.add_subparsers(dest="command")

    # Register subcommands. Each delegates to its own module's main().
    subparsers.add_parser("record", help="Record loading video of the URL")
    subparsers.add_parser("juxtapose", help="Juxtapose multiple videos into one to compare")

    # Parse only the subcommand name, pass the rest to the subcommand's parser.
    parsed, remaining = parser.parse_known_args(args)

    if parsed.command is None:
        parser.print_help()
        sys.exit(1)

    if parsed.command == "record":
        from .record_cli import main as record_main
        record_main(remaining)
    elif parsed.command == "juxtapose":
        from .juxtapose_cli import main as juxtapose_main
        juxtapose_main(remaining)


if __name__ == "__main__":
    main()
