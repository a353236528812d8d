# Copyright 2022-2025 Broadcom.
# SPDX-License-Identifier: Apache-2.0
"""
Command line interface for varwheel.
"""
from __future__ import annotations

import sys
from argparse import ArgumentParser, RawDescriptionHelpFormatter
from typing import NoReturn, Optional, Sequence

from . import build, check
from .common import __version__

EPILOG = """\
examples:
  varwheel build -c 12                build a cu12 wheel into ./dist
  varwheel build -c 13 -o out -t      build cu13 into ./out and validate it
  varwheel check dist/*.whl -c 12     make sure no CUDA library was bundled
"""

# Each module provides ``setup_parser(subparsers)`` and sets ``func``.
COMMANDS = (build, check)


class VarwheelArgumentParser(ArgumentParser):
    """
    Argument parser reporting usage errors like every other configuration error.

    Subparsers are created with the same class, so their errors exit 1 too.
    """

    def error(self, message: str) -> NoReturn:
        self.print_usage(sys.stderr)
        self.exit(1, f"Error [configure]: {message}\n")


def setup_cli() -> ArgumentParser:
    """
    Create the argument parser with one subparser per command.

    :return: The argument parser
    :rtype: ``argparse.ArgumentParser``
    """
    argparser = VarwheelArgumentParser(
        prog="varwheel",
        description="Build, repair and validate CUDA variant wheels",
        epilog=EPILOG,
        formatter_class=RawDescriptionHelpFormatter,
    )
    argparser.add_argument("--version", action="version", version=__version__)
    subparsers = argparser.add_subparsers(title="commands")
    for mod in COMMANDS:
        mod.setup_parser(subparsers)
    return argparser


def main(argv: Optional[Sequence[str]] = None) -> None:
    """
    Parse ``argv`` and hand off to the selected command.
    """
    parser = setup_cli()
    args = parser.parse_args(argv)
    if getattr(args, "func", None) is None:
        parser.print_help()
        parser.exit(1, "\nNo command given\n")
    args.func(args)


if __name__ == "__main__":
    main()
