# Copyright 2022-2025 Broadcom.
# SPDX-License-Identifier: Apache-2.0
"""
The build context threaded through the pipeline and the pipeline itself.
"""
from __future__ import annotations

import logging
import pathlib
import types
from typing import TYPE_CHECKING, Any, Mapping, Optional, Protocol, Sequence

from .common import CommandResult, CommandRunner, PathLike, VarwheelException, WorkDirs
from .config import BuildConfiguration, Settings
from .profile import PlatformProfile
from .variant import VariantDescriptor

if TYPE_CHECKING:
    from .build.common import Repairer, WheelArtifact

log = logging.getLogger(__name__)


class BuildContext:
    """
    Everything a stage needs to run, never modified in place.

    Stages produce a new context with :meth:`replace`. Environment changes are
    kept in :attr:`env` and only merged over the process environment when a
    command is run.
    """

    _fields = (
        "config",
        "profile",
        "settings",
        "dirs",
        "python",
        "descriptor",
        "repairer",
        "runner",
        "env",
        "assets",
        "artifact",
    )

    def __init__(
        self,
        config: BuildConfiguration,
        profile: PlatformProfile,
        settings: Settings,
        dirs: WorkDirs,
        python: str,
        descriptor: VariantDescriptor,
        repairer: "Repairer",
        runner: CommandRunner,
        env: Optional[Mapping[str, str]] = None,
        assets: Sequence[str] = (),
        artifact: Optional["WheelArtifact"] = None,
    ) -> None:
        object.__setattr__(self, "config", config)
        object.__setattr__(self, "profile", profile)
        object.__setattr__(self, "settings", settings)
        object.__setattr__(self, "dirs", dirs)
        object.__setattr__(self, "python", python)
        object.__setattr__(self, "descriptor", descriptor)
        object.__setattr__(self, "repairer", repairer)
        object.__setattr__(self, "runner", runner)
        object.__setattr__(self, "env", types.MappingProxyType(dict(env or {})))
        object.__setattr__(self, "assets", tuple(assets))
        object.__setattr__(self, "artifact", artifact)

    # Declared for type checkers, values are set in __init__.
    config: BuildConfiguration
    profile: PlatformProfile
    settings: Settings
    dirs: WorkDirs
    python: str
    descriptor: VariantDescriptor
    repairer: "Repairer"
    runner: CommandRunner
    env: Mapping[str, str]
    assets: tuple[str, ...]
    artifact: Optional["WheelArtifact"]

    def __setattr__(self, name: str, value: Any) -> None:
        raise AttributeError(f"BuildContext is read-only, use replace() to set {name}")

    def replace(self, **changes: Any) -> "BuildContext":
        """
        Return a copy of this context with ``changes`` applied.
        """
        unknown = set(changes) - set(self._fields)
        if unknown:
            raise TypeError(f"Unknown context fields: {', '.join(sorted(unknown))}")
        values = {name: getattr(self, name) for name in self._fields}
        values.update(changes)
        return BuildContext(**values)

    def with_env(self, **env: str) -> "BuildContext":
        """
        Return a copy of this context with extra subprocess environment.
        """
        merged = dict(self.env)
        merged.update(env)
        return self.replace(env=merged)

    def getenv(self, name: str, default: str = "") -> str:
        """
        The value a subprocess would see for ``name``.
        """
        if name in self.env:
            return self.env[name]
        return self.settings.get(name, default)

    def subprocess_env(self) -> dict[str, str]:
        """
        The full environment for an external command.
        """
        env = dict(self.settings.environ)
        env.update(self.env)
        return env

    def run(
        self, args: Sequence[PathLike], tail: Optional[int] = None
    ) -> CommandResult:
        """
        Run an external command from the project root with this context's environment.
        """
        return self.runner(
            args, env=self.subprocess_env(), cwd=self.dirs.root, tail=tail
        )

    def output_dir(self) -> pathlib.Path:
        return self.dirs.resolve(self.config.output_dir)

    def assets_dir(self) -> pathlib.Path:
        return self.dirs.resolve(self.config.assets_dir)


class Stage(Protocol):
    """
    One step of the pipeline.

    ``run`` returns the context for the next stage or raises a
    ``VarwheelException`` naming the stage.
    """

    name: str

    def enabled(self, context: BuildContext) -> bool:
        ...

    def run(self, context: BuildContext) -> BuildContext:
        ...


class Pipeline:
    """
    Run stages in order, stopping at the first failure.

    :param stages: The stages to run
    :type stages: list
    """

    def __init__(self, stages: Sequence[Stage]) -> None:
        self.stages = list(stages)

    @property
    def names(self) -> list[str]:
        return [stage.name for stage in self.stages]

    def run(self, context: BuildContext) -> BuildContext:
        """
        Run every enabled stage.

        :raises VarwheelException: From the first stage that fails
        """
        for stage in self.stages:
            if not stage.enabled(context):
                log.debug("Skipping stage %s", stage.name)
                continue
            log.debug("Starting stage %s", stage.name)
            try:
                context = stage.run(context)
            except VarwheelException as exc:
                if exc.stage == VarwheelException.stage:
                    exc.stage = stage.name
                raise
            except OSError as exc:
                raise VarwheelException(str(exc), stage=stage.name) from exc
            log.debug("Finished stage %s", stage.name)
        return context
