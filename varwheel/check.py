# Copyright 2022-2025 Broadcom.
# SPDX-License-Identifier: Apache-2.0
"""
Check a repaired wheel does not bundle host provided libraries.
"""
from __future__ import annotations

import argparse
import logging
import pathlib
import re
import sys
import zipfile

from .build.linux import exclusion_list
from .common import PathLike, VarwheelException
from .profile import SUPPORTED_VARIANTS

log: logging.Logger = logging.getLogger(__name__)

# Directories auditwheel (``<name>.libs``) and delocate (``.dylibs``) bundle into.
BUNDLE_DIR_SUFFIXES = (".libs", ".dylibs")

# auditwheel renames bundled libraries to libfoo-<hash>.so.1
_HASHED_NAME = re.compile(r"^(?P<stem>.+?)-[0-9a-f]{8}(?P<rest>\.so.*)$")


def bundled_libraries(wheel: PathLike) -> list[str]:
    """
    List the base names of the shared libraries bundled into a wheel.

    :raises VarwheelException: If the file is not a readable wheel
    """
    try:
        with zipfile.ZipFile(wheel) as zfp:
            names = zfp.namelist()
    except (OSError, zipfile.BadZipFile) as exc:
        raise VarwheelException(f"Unable to read wheel {wheel}: {exc}", stage="check")
    libs = []
    for name in names:
        parts = pathlib.PurePosixPath(name).parts
        if len(parts) < 2 or not parts[-2].endswith(BUNDLE_DIR_SUFFIXES):
            continue
        libs.append(parts[-1])
    return sorted(libs)


def _soname_base(name: str) -> str:
    match = _HASHED_NAME.match(name)
    if match is None:
        return name
    return match.group("stem") + match.group("rest")


def excluded_bundled(wheel: PathLike, exclusions: list[str]) -> list[str]:
    """
    The bundled libraries of ``wheel`` that appear in ``exclusions``.
    """
    excluded = set(exclusions)
    return [
        name for name in bundled_libraries(wheel) if _soname_base(name) in excluded
    ]


def setup_parser(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> None:
    """
    Setup the subparser for the ``varwheel check`` command.

    :param subparsers: The subparsers object returned from ``add_subparsers``
    :type subparsers: argparse._SubParsersAction
    """
    subparser = subparsers.add_parser(
        "check", description="Check a wheel does not bundle excluded libraries"
    )
    subparser.set_defaults(func=main)
    subparser.add_argument("wheel", help="The wheel to check")
    subparser.add_argument(
        "-c",
        dest="cuda_variant",
        required=True,
        choices=SUPPORTED_VARIANTS,
        help="The CUDA variant the wheel was built for",
    )


def main(args: argparse.Namespace) -> None:
    """
    The entrypoint into the ``varwheel check`` command.

    :param args: The args passed to the command
    :type args: argparse.Namespace
    """
    logging.basicConfig(level=logging.INFO, format="%(message)s")
    try:
        found = excluded_bundled(args.wheel, exclusion_list(int(args.cuda_variant)))
    except VarwheelException as exc:
        log.error("Error [%s]: %s", exc.stage, exc)
        sys.exit(1)
    if found:
        for name in found:
            log.error("Host provided library bundled: %s", name)
        sys.exit(1)
    log.info("%s bundles no excluded libraries", args.wheel)
