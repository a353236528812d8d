# Copyright 2022-2025 Broadcom.
# SPDX-License-Identifier: Apache-2.0
"""
Select and activate the build manifest for an accelerator variant.

Activating a descriptor overwrites the project's ``pyproject.toml`` and is
never undone, the last activated variant stays in place for later builds in
the same tree. Two runs against one working tree must not overlap.
"""
from __future__ import annotations

import logging
import pathlib
import shutil

from .common import DescriptorMissingError, PathLike

log = logging.getLogger(__name__)

MANIFEST_NAME = "pyproject.toml"


def descriptor_name(variant: str) -> str:
    """
    The file name of the manifest for ``variant``, e.g. ``pyproject.toml.cu12``.
    """
    return f"{MANIFEST_NAME}.cu{variant}"


class VariantDescriptor:
    """
    The manifest file backing one accelerator variant.

    :param variant: The accelerator variant
    :type variant: str
    :param path: The variant specific manifest
    :type path: ``pathlib.Path``
    :param manifest: The active manifest the build tool reads
    :type manifest: ``pathlib.Path``
    """

    def __init__(
        self, variant: str, path: pathlib.Path, manifest: pathlib.Path
    ) -> None:
        self.variant = variant
        self.path = path
        self.manifest = manifest

    def __repr__(self) -> str:
        return f"<VariantDescriptor {self.variant} {self.path.name}>"


def select_descriptor(root: PathLike, variant: str) -> VariantDescriptor:
    """
    Find the descriptor for ``variant`` under ``root``.

    :raises DescriptorMissingError: If the descriptor file does not exist
    """
    root = pathlib.Path(root)
    path = root / descriptor_name(variant)
    if not path.is_file():
        raise DescriptorMissingError(f"{path.name} not found")
    return VariantDescriptor(variant, path, root / MANIFEST_NAME)


def activate_descriptor(descriptor: VariantDescriptor) -> pathlib.Path:
    """
    Copy the descriptor over the active manifest.

    :return: The path of the active manifest
    :rtype: ``pathlib.Path``
    """
    if not descriptor.path.is_file():
        raise DescriptorMissingError(f"{descriptor.path.name} not found")
    log.info("Using pyproject: %s", descriptor.path.name)
    shutil.copyfile(descriptor.path, descriptor.manifest)
    return descriptor.manifest
