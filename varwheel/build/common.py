# Copyright 2022-2025 Broadcom.
# SPDX-License-Identifier: Apache-2.0
"""
Build process common methods.
"""
from __future__ import annotations

import logging
import os
import pathlib
import shutil
from typing import Optional

from packaging.tags import Tag
from packaging.utils import InvalidWheelFilename, parse_wheel_filename
from packaging.version import InvalidVersion, Version

from ..common import (
    DIST_NAME,
    BuildError,
    BuildOutputMissingError,
    PathLike,
    RepairError,
    first_match,
    remove_matching,
    transient_dir,
)
from ..context import BuildContext
from ..variant import activate_descriptor

log = logging.getLogger(__name__)

VERSION_PIN_ENV = "SETUPTOOLS_SCM_PRETEND_VERSION"

# Lines of build output kept when not verbose.
BUILD_TAIL = 20

WHEEL_PATTERN = f"{DIST_NAME}*.whl"


class WheelArtifact:
    """
    A wheel file produced by the pipeline.

    The package name, version and tags are read from the file name.

    :param path: The path to the wheel
    :type path: str

    :raises BuildError: If the file name is not a valid wheel name
    """

    def __init__(self, path: PathLike) -> None:
        self.path = pathlib.Path(path)
        try:
            name, version, _, tags = parse_wheel_filename(self.path.name)
        except InvalidWheelFilename as exc:
            raise BuildError(f"{self.path.name} is not a valid wheel: {exc}")
        self.name: str = name
        self.version: Version = version
        self.tags: frozenset[Tag] = tags

    @property
    def platforms(self) -> set[str]:
        return {tag.platform for tag in self.tags}

    @property
    def manylinux(self) -> bool:
        """
        True when the wheel carries a manylinux platform tag.
        """
        return any(_.startswith("manylinux") for _ in self.platforms)

    def move_to(self, directory: PathLike) -> "WheelArtifact":
        """
        Move the wheel into ``directory``, returning the moved artifact.
        """
        directory = pathlib.Path(directory)
        directory.mkdir(parents=True, exist_ok=True)
        dest = directory / self.path.name
        if dest.resolve() != self.path.resolve():
            shutil.move(str(self.path), str(dest))
        return WheelArtifact(dest)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, WheelArtifact):
            return NotImplemented
        return self.path == other.path

    def __hash__(self) -> int:
        return hash(self.path)

    def __repr__(self) -> str:
        return f"<WheelArtifact {self.path.name}>"


def find_tool(name: str, python: Optional[str] = None) -> Optional[str]:
    """
    Find an executable.

    First look on the ``PATH`` then next to the interpreter, where pip puts
    console scripts.
    """
    found = shutil.which(name)
    if found:
        return found
    if python:
        candidate = pathlib.Path(python).parent / name
        if candidate.is_file() and os.access(candidate, os.X_OK):
            return str(candidate)
    return None


class Repairer:
    """
    Base class for the platform specific wheel repair strategies.

    Subclasses name the tool, the pip package providing it and the pattern
    the repaired wheel matches, and build the repair command.
    """

    tool = ""
    package = ""
    output_pattern = WHEEL_PATTERN

    def ensure_tool(self, context: BuildContext) -> str:
        """
        Return the path to the repair tool, installing it when missing.

        :raises RepairError: If the tool can not be installed
        """
        found = find_tool(self.tool, context.python)
        if found:
            return found
        log.info("Installing %s...", self.package)
        result = context.run(
            [context.python, "-m", "pip", "install", "--quiet", self.package]
        )
        if not result.ok:
            raise RepairError(f"Failed to install {self.package}")
        found = find_tool(self.tool, context.python)
        if found:
            return found
        # Installed but not on the PATH, let the shell resolve it.
        return self.tool

    def exclusions(self, context: BuildContext) -> list[str]:
        """
        Libraries that must not be bundled into the wheel.
        """
        return []

    def prepare(self, context: BuildContext) -> BuildContext:
        """
        Adjust the context before the repair tool runs.
        """
        return context

    def command(
        self,
        context: BuildContext,
        tool: str,
        artifact: WheelArtifact,
        wheelhouse: pathlib.Path,
    ) -> list[str]:
        raise NotImplementedError

    def repair(self, context: BuildContext, artifact: WheelArtifact) -> WheelArtifact:
        """
        Repair ``artifact`` and leave the result in the output directory.

        When the tool produces nothing the original wheel is used as is.

        :raises RepairError: If the repair tool fails
        """
        tool = self.ensure_tool(context)
        context = self.prepare(context)
        output_dir = context.output_dir()
        with transient_dir(context.dirs.wheelhouse) as wheelhouse:
            result = context.run(self.command(context, tool, artifact, wheelhouse))
            if not result.ok:
                raise RepairError(
                    f"{self.tool} failed on {artifact.path.name} "
                    f"(exit status {result.returncode})"
                )
            repaired = first_match(wheelhouse, self.output_pattern)
            if repaired is None:
                final = artifact.move_to(output_dir)
                log.info("Wheel (no repair needed): %s", final.path)
                return final
            try:
                final = WheelArtifact(repaired).move_to(output_dir)
            except BuildError as exc:
                raise RepairError(str(exc))
        if artifact.path.exists() and artifact.path.resolve() != final.path.resolve():
            artifact.path.unlink()
        log.info("Repaired wheel: %s", final.path)
        return final


class DescriptorStage:
    """
    Make the selected variant's manifest the active one.
    """

    name = "variant"

    def enabled(self, context: BuildContext) -> bool:
        return True

    def run(self, context: BuildContext) -> BuildContext:
        activate_descriptor(context.descriptor)
        return context


def compiler_env(context: BuildContext) -> dict[str, str]:
    """
    Resolve the CUDA compiler and its host compiler.

    Explicit settings win, otherwise the default CUDA install is probed. A
    missing compiler is fine, the build falls back to CPU only.
    """
    env: dict[str, str] = {}
    if not context.profile.accelerated:
        return env
    settings = context.settings
    if settings.cudacxx:
        env["CUDACXX"] = settings.cudacxx
    else:
        nvcc = settings.cuda_home / "bin" / "nvcc"
        if nvcc.is_file():
            env["CUDACXX"] = str(nvcc)
    if settings.cudahostcxx:
        env["CUDAHOSTCXX"] = settings.cudahostcxx
    elif settings.cxx:
        env["CUDAHOSTCXX"] = settings.cxx
    return env


def clean(context: BuildContext) -> pathlib.Path:
    """
    Remove previous build state and wheels, returning the output directory.
    """
    shutil.rmtree(context.dirs.staging, ignore_errors=True)
    output_dir = context.output_dir()
    remove_matching(context.dirs.dist, "*.whl")
    remove_matching(output_dir, "*.whl")
    output_dir.mkdir(parents=True, exist_ok=True)
    return output_dir


class BuildStage:
    """
    Build the wheel with ``python -m build``.
    """

    name = "build"

    def enabled(self, context: BuildContext) -> bool:
        return True

    def run(self, context: BuildContext) -> BuildContext:
        version = context.settings.version
        try:
            Version(version)
        except InvalidVersion:
            log.warning("%s is not a valid PEP 440 version", version)
        log.info("Building wheel version: %s", version)
        context = context.with_env(**{VERSION_PIN_ENV: version}, **compiler_env(context))

        clean(context)
        log.info("Building wheel...")
        result = context.run(
            [
                context.python,
                "-m",
                "build",
                "--wheel",
                "--outdir",
                str(context.dirs.dist),
            ],
            tail=BUILD_TAIL,
        )
        if not result.ok:
            raise BuildError(f"Build failed (exit status {result.returncode})")

        found = first_match(context.dirs.dist, WHEEL_PATTERN)
        if found is None:
            raise BuildOutputMissingError(
                f"No wheel file found in {context.dirs.dist}"
            )
        artifact = WheelArtifact(found)
        log.info("Built wheel: %s", artifact.path)
        return context.replace(artifact=artifact)


class RepairStage:
    """
    Bundle the wheel's native dependencies with the platform's repairer.
    """

    name = "repair"

    def enabled(self, context: BuildContext) -> bool:
        return True

    def run(self, context: BuildContext) -> BuildContext:
        if context.artifact is None:
            raise BuildOutputMissingError("There is no wheel to repair")
        log.info("Repairing wheel...")
        artifact = context.repairer.repair(context, context.artifact)
        log.info("Done! Wheel available in %s", context.output_dir())
        return context.replace(artifact=artifact)
