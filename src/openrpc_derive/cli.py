"""Command-line interface for deriving OpenRPC schemas from annotated Python sources.

Notes:
    - Derived modules import `openrpc_derive.document`, so `openrpc-derive` has to be
      installed wherever they are used.
"""

from __future__ import annotations

import argparse
import logging
import os.path
from collections.abc import Sequence

from openrpc_derive.errors import DeriveError
from openrpc_derive.run import run

logger = logging.getLogger(__name__)


def _add_recursive_argument(parser: argparse.ArgumentParser):
    """Add a recursive argument to a parser.

    Args:
        parser (argparse.ArgumentParser): The parser to add the argument to.
    """
    parser.add_argument(
        "-r",
        "--recursive",
        dest="recursive",
        default=False,
        action="store_true",
        help="recursively search for *.py files with a given glob expression.",
    )


def setup_parser() -> argparse.ArgumentParser:
    """Setup for the parser.

    Returns:
        argparse.ArgumentParser: The parser after setup.
    """
    parser = argparse.ArgumentParser(description="Derive OpenRPC schemas from @document_rpc interfaces.")

    parser.add_argument(
        "-p",
        "--paths",
        type=str,
        nargs="+",
        default=["**/*.py"],
        help="path or glob expressions that match *.py files to derive schemas for.",
    )

    parser.add_argument(
        "-e",
        "--excludes",
        type=str,
        nargs="+",
        default=[],
        help="path or glob expressions to exclude from path matches.",
    )

    parser.add_argument(
        "-o",
        "--output-dir",
        type=str,
        default="",
        help="directory to write all derived modules; defaults to alongside each source if omitted.",
    )

    parser.add_argument(
        "--no-format",
        dest="skip_format",
        default=False,
        action="store_true",
        help="skip formatting of derived modules with ruff.",
    )

    parser.add_argument(
        "-v",
        "--verbose",
        dest="verbose",
        default=False,
        action="store_true",
        help="log every processed declaration.",
    )

    _add_recursive_argument(parser)

    return parser


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point of the schema derivation.

    Args:
        argv (Sequence[str] | None, optional): Run arguments. Defaults to None.

    Returns:
        int: Error code.
    """
    parser = setup_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO)

    root_directory = os.getcwd()
    logger.info("Working from root directory: %s", root_directory)

    try:
        run(args, root_directory)
    except DeriveError as e:
        logger.error(e.format())
        return 1

    return 0
