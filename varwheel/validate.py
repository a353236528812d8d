# Copyright 2022-2025 Broadcom.
# SPDX-License-Identifier: Apache-2.0
"""
Hand the finished wheel to the project's validation script.
"""
from __future__ import annotations

import logging
import os
from typing import Optional

from .common import ConfigurationError, PathLike, ValidationError
from .context import BuildContext

log = logging.getLogger(__name__)

VALIDATE_SCRIPT = "validate_pycudaq.sh"


class ValidationRequest:
    """
    What the validation script is told about the build.

    :param version: The version of the wheel
    :type version: str
    :param artifact_dir: The directory holding the wheel
    :type artifact_dir: str
    :param quick: Only run the core tests
    :type quick: bool
    :param cuda_version: Full CUDA runtime version, only given on Linux
    :type cuda_version: str
    """

    def __init__(
        self,
        version: str,
        artifact_dir: PathLike,
        quick: bool = False,
        cuda_version: Optional[str] = None,
    ) -> None:
        self.version = version
        self.artifact_dir = artifact_dir
        self.quick = quick
        self.cuda_version = cuda_version

    def arguments(self) -> list[str]:
        args = ["-v", self.version, "-i", os.fspath(self.artifact_dir)]
        if self.quick:
            args.append("-q")
        if self.cuda_version:
            args.extend(["-c", self.cuda_version])
        return args

    @classmethod
    def from_context(cls, context: BuildContext) -> "ValidationRequest":
        cuda_version = None
        if not context.profile.single_variant:
            variant = context.config.variant
            if variant is None:
                raise ConfigurationError("CUDA variant is not resolved")
            cuda_version = context.settings.cuda_runtime_version(variant)
        return cls(
            version=context.settings.version,
            artifact_dir=context.output_dir(),
            quick=context.config.quick_test,
            cuda_version=cuda_version,
        )


class ValidationStage:
    """
    Run validation against the wheel in the output directory.
    """

    name = "validate"

    def enabled(self, context: BuildContext) -> bool:
        return context.config.run_tests

    def run(self, context: BuildContext) -> BuildContext:
        log.info("Running validation tests...")
        request = ValidationRequest.from_context(context)
        cmd = ["bash", str(context.dirs.script(VALIDATE_SCRIPT))] + request.arguments()
        result = context.run(cmd)
        if not result.ok:
            raise ValidationError(
                f"Validation failed! (exit status {result.returncode})"
            )
        log.info("Validation passed!")
        return context
