# Copyright 2022-2025 Broadcom.
# SPDX-License-Identifier: Apache-2.0
"""
Host platform profiles.
"""
from __future__ import annotations

import sys
from typing import Optional

from .common import DARWIN, LINUX


class PlatformProfile:
    """
    What varwheel needs to know about the host operating system.

    :param tag: The ``sys.platform`` value this profile describes
    :type tag: str
    :param lib_ext: Shared library file extension
    :type lib_ext: str
    :param lib_path_var: Environment variable holding the library search path
    :type lib_path_var: str
    :param variants: The accelerator variants that can be built on this platform
    :type variants: tuple
    :param accelerated: Whether a CUDA compiler toolchain is resolved for builds
    :type accelerated: bool
    """

    def __init__(
        self,
        tag: str,
        lib_ext: str,
        lib_path_var: str,
        variants: tuple[str, ...],
        accelerated: bool,
    ) -> None:
        self._tag = tag
        self._lib_ext = lib_ext
        self._lib_path_var = lib_path_var
        self._variants = tuple(variants)
        self._accelerated = accelerated

    @property
    def tag(self) -> str:
        return self._tag

    @property
    def lib_ext(self) -> str:
        return self._lib_ext

    @property
    def lib_path_var(self) -> str:
        return self._lib_path_var

    @property
    def variants(self) -> tuple[str, ...]:
        return self._variants

    @property
    def accelerated(self) -> bool:
        return self._accelerated

    @property
    def single_variant(self) -> bool:
        """
        True when the platform only ever builds one variant.
        """
        return len(self._variants) == 1

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, PlatformProfile):
            return NotImplemented
        return self._tag == other._tag

    def __hash__(self) -> int:
        return hash(self._tag)

    def __repr__(self) -> str:
        return f"<PlatformProfile {self._tag}>"


LINUX_PROFILE = PlatformProfile(
    tag=LINUX,
    lib_ext="so",
    lib_path_var="LD_LIBRARY_PATH",
    variants=("12", "13"),
    accelerated=True,
)

# macOS builds are CPU-only, CUDA dependencies are dropped through environment
# markers in the cu13 manifest.
DARWIN_PROFILE = PlatformProfile(
    tag=DARWIN,
    lib_ext="dylib",
    lib_path_var="DYLD_LIBRARY_PATH",
    variants=("13",),
    accelerated=False,
)

SUPPORTED_VARIANTS = LINUX_PROFILE.variants


def detect_profile(plat: Optional[str] = None) -> PlatformProfile:
    """
    Return the profile for the given platform, defaulting to ``sys.platform``.
    """
    if plat is None:
        plat = sys.platform
    if plat == DARWIN:
        return DARWIN_PROFILE
    return LINUX_PROFILE
