# Copyright 2022-2025 Broadcom.
# SPDX-License-Identifier: Apache-2.0
"""
The darwin repair process.
"""
from __future__ import annotations

import pathlib

from ..common import DARWIN
from ..context import BuildContext
from .common import WHEEL_PATTERN, Repairer, WheelArtifact


class MacRepairer(Repairer):
    """
    Repair wheels with delocate, copying non system dylibs into the wheel.
    """

    platform = DARWIN
    tool = "delocate-wheel"
    package = "delocate"
    output_pattern = WHEEL_PATTERN

    def command(
        self,
        context: BuildContext,
        tool: str,
        artifact: WheelArtifact,
        wheelhouse: pathlib.Path,
    ) -> list[str]:
        cmd = [tool]
        if context.config.verbose:
            cmd.append("-v")
        cmd.extend(["-w", str(wheelhouse), str(artifact.path)])
        return cmd
