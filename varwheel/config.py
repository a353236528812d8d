# Copyright 2022-2025 Broadcom.
# SPDX-License-Identifier: Apache-2.0
"""
Resolve build options and environment settings.
"""
from __future__ import annotations

import argparse
import logging
import os
import pathlib
import shutil
from typing import Mapping, Optional

from .common import ConfigurationError, PathLike, ToolUnavailableError
from .profile import SUPPORTED_VARIANTS, PlatformProfile

log = logging.getLogger(__name__)

DEFAULT_OUTPUT_DIR = "dist"
DEFAULT_ASSETS_DIR = "assets"
DEFAULT_PYTHON = "python3"
DEFAULT_VERSION = "0.0.0"
DEFAULT_CUDA_HOME = "/usr/local/cuda"

# Full CUDA runtime versions handed to validation per variant.
DEFAULT_CUDA_RUNTIME = {
    "12": "12.6.0",
    "13": "13.0.0",
}

PYTHON_ENV = "PYTHON"
VERSION_ENV = "CUDA_QUANTUM_VERSION"
CUDACXX_ENV = "CUDACXX"
CUDAHOSTCXX_ENV = "CUDAHOSTCXX"
CUDA_RUNTIME_ENV = "CUDA_VERSION_CONDA"
CXX_ENV = "CXX"
CUDA_HOME_ENV = "CUDA_HOME"
TIMEOUT_ENV = "VARWHEEL_COMMAND_TIMEOUT"


class BuildConfiguration:
    """
    The fully resolved options for one pipeline run.

    A quick test always implies running the tests.
    """

    def __init__(
        self,
        variant: Optional[str] = None,
        output_dir: PathLike = DEFAULT_OUTPUT_DIR,
        assets_dir: PathLike = DEFAULT_ASSETS_DIR,
        run_tests: bool = False,
        quick_test: bool = False,
        install_prereqs: bool = False,
        install_toolchain: str = "",
        verbose: bool = False,
    ) -> None:
        self.variant = variant
        self.output_dir = pathlib.Path(output_dir)
        self.assets_dir = pathlib.Path(assets_dir)
        self.quick_test = quick_test
        self.run_tests = run_tests or quick_test
        self.install_toolchain = install_toolchain or ""
        self.install_prereqs = install_prereqs or bool(self.install_toolchain)
        self.verbose = verbose

    @property
    def major(self) -> int:
        """
        The accelerator major version of the variant.
        """
        if self.variant is None:
            raise ConfigurationError("Accelerator variant is not resolved")
        return int(self.variant)

    def to_dict(self) -> dict[str, object]:
        return {
            "variant": self.variant,
            "output_dir": self.output_dir,
            "assets_dir": self.assets_dir,
            "run_tests": self.run_tests,
            "quick_test": self.quick_test,
            "install_prereqs": self.install_prereqs,
            "install_toolchain": self.install_toolchain,
            "verbose": self.verbose,
        }

    def __repr__(self) -> str:
        return f"<BuildConfiguration {self.to_dict()!r}>"


class Settings:
    """
    Snapshot of the environment variables varwheel reads.

    Taken once at startup so later stages never consult ``os.environ``.

    :param environ: The environment to read, defaults to ``os.environ``
    :type environ: dict
    """

    def __init__(self, environ: Optional[Mapping[str, str]] = None) -> None:
        if environ is None:
            environ = os.environ
        self.environ: dict[str, str] = dict(environ)
        self.python: str = environ.get(PYTHON_ENV) or DEFAULT_PYTHON
        self.version: str = environ.get(VERSION_ENV) or DEFAULT_VERSION
        self.cudacxx: str = environ.get(CUDACXX_ENV, "")
        self.cudahostcxx: str = environ.get(CUDAHOSTCXX_ENV, "")
        self.cuda_runtime: str = environ.get(CUDA_RUNTIME_ENV, "")
        self.cxx: str = environ.get(CXX_ENV, "")
        self.cuda_home = pathlib.Path(environ.get(CUDA_HOME_ENV) or DEFAULT_CUDA_HOME)
        self.timeout = _parse_timeout(environ.get(TIMEOUT_ENV, ""))

    def get(self, name: str, default: str = "") -> str:
        return self.environ.get(name, default)

    def cuda_runtime_version(self, variant: str) -> str:
        """
        The full CUDA runtime version validation should use for ``variant``.
        """
        if self.cuda_runtime:
            return self.cuda_runtime
        try:
            return DEFAULT_CUDA_RUNTIME[variant]
        except KeyError:
            raise ConfigurationError(
                f"No default CUDA runtime version for variant {variant}, "
                f"set {CUDA_RUNTIME_ENV}"
            )


def _parse_timeout(value: str) -> Optional[float]:
    if not value.strip():
        return None
    try:
        timeout = float(value)
    except ValueError:
        raise ConfigurationError(f"{TIMEOUT_ENV} must be a number, got: {value}")
    if timeout <= 0:
        raise ConfigurationError(f"{TIMEOUT_ENV} must be positive, got: {value}")
    return timeout


def resolve_configuration(
    profile: PlatformProfile,
    variant: Optional[str] = None,
    output_dir: PathLike = DEFAULT_OUTPUT_DIR,
    assets_dir: PathLike = DEFAULT_ASSETS_DIR,
    run_tests: bool = False,
    quick_test: bool = False,
    install_prereqs: bool = False,
    install_toolchain: str = "",
    verbose: bool = False,
) -> BuildConfiguration:
    """
    Apply defaults, implications and constraints to the raw options.

    :param profile: The host platform profile
    :type profile: ``varwheel.profile.PlatformProfile``

    :raises ConfigurationError: If the variant is missing or not supported

    :return: The resolved configuration
    :rtype: ``varwheel.config.BuildConfiguration``
    """
    if profile.single_variant:
        forced = profile.variants[0]
        if variant and variant != forced:
            log.debug(
                "%s: ignoring requested variant %s, using %s",
                profile.tag,
                variant,
                forced,
            )
        variant = forced
    else:
        if not variant:
            choices = " or ".join(f"-c {_}" for _ in profile.variants)
            raise ConfigurationError(f"CUDA variant required. Use {choices}")
        if variant not in profile.variants:
            choices = " or ".join(profile.variants)
            raise ConfigurationError(
                f"CUDA variant must be {choices}, got: {variant}"
            )
    return BuildConfiguration(
        variant=variant,
        output_dir=output_dir,
        assets_dir=assets_dir,
        run_tests=run_tests,
        quick_test=quick_test,
        install_prereqs=install_prereqs,
        install_toolchain=install_toolchain,
        verbose=verbose,
    )


def configuration_from_args(
    args: argparse.Namespace, profile: PlatformProfile
) -> BuildConfiguration:
    """
    Resolve the configuration from the parsed ``varwheel build`` arguments.
    """
    return resolve_configuration(
        profile,
        variant=args.cuda_variant,
        output_dir=args.output_dir,
        assets_dir=args.assets_dir,
        run_tests=args.run_tests,
        quick_test=args.quick_test,
        install_prereqs=args.install_prereqs,
        install_toolchain=args.install_toolchain,
        verbose=args.verbose,
    )


def find_python(settings: Settings) -> str:
    """
    Locate the interpreter used for building.

    :raises ToolUnavailableError: If the interpreter can not be found
    """
    python = shutil.which(settings.python)
    if python is None:
        raise ToolUnavailableError(f"{settings.python} not found")
    return python


__all__ = [
    "BuildConfiguration",
    "Settings",
    "SUPPORTED_VARIANTS",
    "configuration_from_args",
    "find_python",
    "resolve_configuration",
]
