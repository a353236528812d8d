# Copyright 2022-2025 Broadcom.
# SPDX-License-Identifier: Apache-2.0
"""
Entry points for the ``varwheel build`` CLI command.
"""
from __future__ import annotations

import argparse
import logging
import os
import sys
from types import ModuleType
from typing import Optional

from . import darwin, linux
from ..assets import AssetStage
from ..common import (
    CommandRunner,
    ConfigurationError,
    PathLike,
    VarwheelException,
    WorkDirs,
)
from ..config import (
    DEFAULT_ASSETS_DIR,
    DEFAULT_OUTPUT_DIR,
    BuildConfiguration,
    Settings,
    configuration_from_args,
    find_python,
)
from ..context import BuildContext, Pipeline
from ..prereqs import PrerequisiteStage
from ..profile import SUPPORTED_VARIANTS, PlatformProfile, detect_profile
from ..validate import ValidationStage
from ..variant import select_descriptor
from .common import BuildStage, DescriptorStage, Repairer, RepairStage

log = logging.getLogger(__name__)


def platform_module(profile: Optional[PlatformProfile] = None) -> ModuleType:
    """
    Return the right module based on the platform profile.
    """
    if profile is None:
        profile = detect_profile()
    if profile.tag == darwin.DARWIN:
        return darwin
    return linux


def repairer_for(profile: PlatformProfile) -> Repairer:
    """
    The repair strategy for a platform.
    """
    mod = platform_module(profile)
    if mod is darwin:
        return darwin.MacRepairer()
    return linux.LinuxRepairer()


def default_pipeline() -> Pipeline:
    """
    The stages of a build in the order they run.
    """
    return Pipeline(
        [
            PrerequisiteStage(),
            DescriptorStage(),
            AssetStage(),
            BuildStage(),
            RepairStage(),
            ValidationStage(),
        ]
    )


def build_context(
    config: BuildConfiguration,
    profile: PlatformProfile,
    root: PathLike,
    settings: Optional[Settings] = None,
    runner: Optional[CommandRunner] = None,
) -> BuildContext:
    """
    Gather everything the pipeline needs before anything is touched on disk.

    :raises ConfigurationError: If the variant was never resolved
    :raises ToolUnavailableError: If the interpreter is missing
    :raises DescriptorMissingError: If the variant has no manifest
    """
    if settings is None:
        settings = Settings()
    if config.variant is None:
        raise ConfigurationError("CUDA variant is not resolved")
    python = find_python(settings)
    dirs = WorkDirs(root)
    descriptor = select_descriptor(dirs.root, config.variant)
    if runner is None:
        runner = CommandRunner(verbose=config.verbose, timeout=settings.timeout)
    return BuildContext(
        config=config,
        profile=profile,
        settings=settings,
        dirs=dirs,
        python=python,
        descriptor=descriptor,
        repairer=repairer_for(profile),
        runner=runner,
    )


def build(
    config: BuildConfiguration,
    profile: PlatformProfile,
    root: PathLike,
    settings: Optional[Settings] = None,
    runner: Optional[CommandRunner] = None,
    pipeline: Optional[Pipeline] = None,
) -> BuildContext:
    """
    Build, repair and optionally validate a wheel.

    :return: The context after the last stage, its artifact is the final wheel
    :rtype: ``varwheel.context.BuildContext``
    """
    context = build_context(config, profile, root, settings, runner)
    if profile.single_variant:
        log.info("%s: building cu%s wheel (CPU-only)", profile.tag, config.variant)
    else:
        log.info("%s: building cu%s wheel", profile.tag, config.variant)
    version = context.run([context.python, "--version"], tail=0)
    log.info("Using Python: %s", " ".join(version.stdout + version.stderr).strip())
    if pipeline is None:
        pipeline = default_pipeline()
    return pipeline.run(context)


def setup_parser(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> None:
    """
    Setup the subparser for the ``build`` command.

    :param subparsers: The subparsers object returned from ``add_subparsers``
    :type subparsers: argparse._SubParsersAction
    """
    build_subparser = subparsers.add_parser(
        "build", description="Build, repair and validate a variant wheel"
    )
    build_subparser.set_defaults(func=main)
    build_subparser.add_argument(
        "-c",
        dest="cuda_variant",
        default=None,
        metavar="VARIANT",
        help=(
            "CUDA variant, one of {} (Linux only, macOS always builds cu13)".format(
                ", ".join(SUPPORTED_VARIANTS)
            )
        ),
    )
    build_subparser.add_argument(
        "-o",
        dest="output_dir",
        default=DEFAULT_OUTPUT_DIR,
        help="Output directory for wheels [default: %(default)s]",
    )
    build_subparser.add_argument(
        "-a",
        dest="assets_dir",
        default=DEFAULT_ASSETS_DIR,
        help="Directory containing external simulator assets [default: %(default)s]",
    )
    build_subparser.add_argument(
        "-t",
        dest="run_tests",
        default=False,
        action="store_true",
        help="Run validation tests after build",
    )
    build_subparser.add_argument(
        "-q",
        dest="quick_test",
        default=False,
        action="store_true",
        help="Quick test mode, only run core tests (implies -t)",
    )
    build_subparser.add_argument(
        "-p",
        dest="install_prereqs",
        default=False,
        action="store_true",
        help="Install prerequisites before building",
    )
    build_subparser.add_argument(
        "-T",
        dest="install_toolchain",
        default="",
        metavar="TOOLCHAIN",
        help="Toolchain to use with prerequisites, e.g. gcc12 or llvm (implies -p)",
    )
    build_subparser.add_argument(
        "-v",
        dest="verbose",
        default=False,
        action="store_true",
        help="Show the full output of external tools",
    )
    build_subparser.add_argument(
        "--root",
        default=os.getcwd(),
        help="The root of the project to build [default: %(default)s]",
    )
    build_subparser.add_argument(
        "--log-level",
        default="info",
        choices=(
            "error",
            "warning",
            "info",
            "debug",
        ),
        help="Log level determines how verbose the logs will be.",
    )


def main(args: argparse.Namespace) -> None:
    """
    The entrypoint to the ``build`` command.

    :param args: The arguments to the command
    :type args: ``argparse.Namespace``
    """
    logging.basicConfig(
        level=logging.getLevelName(args.log_level.upper()),
        format="%(message)s",
    )
    profile = detect_profile()
    try:
        settings = Settings()
        config = configuration_from_args(args, profile)
        build(config, profile, args.root, settings=settings)
    except VarwheelException as exc:
        log.error("Error [%s]: %s", exc.stage, exc)
        sys.exit(1)
