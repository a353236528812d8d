# Copyright 2022-2025 Broadcom.
# SPDX-License-Identifier: Apache-2.0
"""
The linux repair process.
"""
from __future__ import annotations

import logging
import pathlib

from ..common import LINUX, prepend_path
from ..context import BuildContext
from .common import Repairer, WheelArtifact

log = logging.getLogger(__name__)


class ExclusionEntry:
    """
    A host provided library that must never be bundled.

    The version may reference ``{major}``, the CUDA major version, or
    ``{cudart}``, the CUDA runtime soname suffix.

    :param name: The library base name, e.g. ``libcublas``
    :type name: str
    :param version: The soname version template
    :type version: str
    """

    def __init__(self, name: str, version: str) -> None:
        self.name = name
        self.version = version

    def soname(self, major: int) -> str:
        """
        Render the soname for a CUDA major version.
        """
        version = self.version.format(major=major, cudart=cudart_suffix(major))
        return f"{self.name}.so.{version}"

    def __repr__(self) -> str:
        return f"<ExclusionEntry {self.name}.so.{self.version}>"


# Libraries supplied by the CUDA driver and runtime stack on the target host.
EXCLUDED_LIBRARIES = (
    ExclusionEntry("libcustatevec", "1"),
    ExclusionEntry("libcutensornet", "2"),
    ExclusionEntry("libcudensitymat", "0"),
    ExclusionEntry("libcublas", "{major}"),
    ExclusionEntry("libcublasLt", "{major}"),
    ExclusionEntry("libcurand", "10"),
    ExclusionEntry("libcusolver", "11"),
    ExclusionEntry("libcusparse", "{major}"),
    ExclusionEntry("libcutensor", "2"),
    ExclusionEntry("libnvToolsExt", "1"),
    ExclusionEntry("libcudart", "{cudart}"),
    ExclusionEntry("libnvidia-ml", "1"),
    ExclusionEntry("libcuda", "1"),
)

LEGACY_CUDA_MAJOR = 11


def cudart_suffix(major: int) -> str:
    """
    The soname suffix of the CUDA runtime for a major version.
    """
    # XXX CUDA 11 is no longer a supported variant and 13 still maps to the 12
    # suffix. Confirm both against the shipped libcudart before changing.
    if major == LEGACY_CUDA_MAJOR:
        return "11.0"
    return "12"


def exclusion_list(major: int) -> list[str]:
    """
    The sonames auditwheel must leave out of a wheel built for ``major``.
    """
    return [entry.soname(major) for entry in EXCLUDED_LIBRARIES]


class LinuxRepairer(Repairer):
    """
    Repair wheels with auditwheel, leaving CUDA libraries to the host.
    """

    platform = LINUX
    tool = "auditwheel"
    package = "auditwheel"
    output_pattern = "*manylinux*.whl"

    def exclusions(self, context: BuildContext) -> list[str]:
        return exclusion_list(context.config.major)

    def prepare(self, context: BuildContext) -> BuildContext:
        # auditwheel resolves the extension's libraries from the build tree.
        var = context.profile.lib_path_var
        build_lib = context.dirs.staging / "lib"
        return context.with_env(**{var: prepend_path(build_lib, context.getenv(var))})

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
        cmd.extend(["repair", str(artifact.path), "-w", str(wheelhouse)])
        for soname in self.exclusions(context):
            cmd.extend(["--exclude", soname])
        return cmd
