# Copyright 2022-2025 Broadcom.
# SPDX-License-Identifier: Apache-2.0
"""
Common classes and values used around varwheel.
"""
from __future__ import annotations

import collections
import contextlib
import logging
import os
import pathlib
import selectors
import shutil
import subprocess
import time
from typing import IO, Iterator, Mapping, Optional, Sequence, Union, cast

# varwheel package version
__version__ = "0.3.0"

log = logging.getLogger(__name__)

LINUX = "linux"
DARWIN = "darwin"

# Distribution name of the wheel being built, used to match build output.
DIST_NAME = "cuda_quantum"

# Names of the working directories relative to the project root.
STAGING_DIR = "_skbuild"
BUILD_DIST_DIR = "dist"
WHEELHOUSE_DIR = "wheelhouse"
SCRIPTS_DIR = "scripts"

PathLike = Union[str, os.PathLike[str]]


class VarwheelException(Exception):
    """
    Base class for exeptions generated from varwheel.

    Every exception knows the pipeline stage it belongs to so the command line
    can report where a run stopped.
    """

    stage = "varwheel"

    def __init__(self, message: str, stage: Optional[str] = None) -> None:
        super().__init__(message)
        if stage is not None:
            self.stage = stage


class ConfigurationError(VarwheelException):
    """
    Raised when an option is invalid or a required option is missing.
    """

    stage = "configure"


class ToolUnavailableError(VarwheelException):
    """
    Raised when a required executable can not be found.
    """

    stage = "configure"


class DescriptorMissingError(VarwheelException):
    """
    Raised when there is no build manifest for the requested variant.
    """

    stage = "variant"


class PrerequisiteError(VarwheelException):
    """
    Raised when installing the prerequisites fails.
    """

    stage = "prerequisites"


class AssetError(VarwheelException):
    """
    Raised when external asset discovery fails.
    """

    stage = "assets"


class BuildError(VarwheelException):
    """
    Raised when the underlying build tool fails.
    """

    stage = "build"


class BuildOutputMissingError(BuildError):
    """
    Raised when the build finished but no wheel was produced.
    """


class RepairError(VarwheelException):
    """
    Raised when repairing a wheel fails.
    """

    stage = "repair"


class ValidationError(VarwheelException):
    """
    Raised when post build validation fails.
    """

    stage = "validate"


class CommandTimeoutError(VarwheelException):
    """
    Raised when an external command runs longer than the configured timeout.
    """


class WorkDirs:
    """
    Simple class used to hold references to the directories varwheel uses relative to a project root.

    :param root: The root of the project being built
    :type root: str
    """

    def __init__(self, root: PathLike) -> None:
        self.root: pathlib.Path = pathlib.Path(root).resolve()
        self.staging: pathlib.Path = self.root / STAGING_DIR
        self.dist: pathlib.Path = self.root / BUILD_DIST_DIR
        self.wheelhouse: pathlib.Path = self.root / WHEELHOUSE_DIR
        self.scripts: pathlib.Path = self.root / SCRIPTS_DIR

    def resolve(self, path: PathLike) -> pathlib.Path:
        """
        Return ``path`` as a normalized absolute path, relative paths are taken
        from the root.
        """
        path = pathlib.Path(path)
        if not path.is_absolute():
            path = self.root / path
        return path.resolve()

    def script(self, name: str) -> pathlib.Path:
        """
        Return the path to a helper script in the project's scripts directory.
        """
        return self.scripts / name

    def to_dict(self) -> dict[str, pathlib.Path]:
        """
        Get a dictionary representation of the directories in this collection.

        :return: A dictionary of all the directories
        :rtype: dict
        """
        return {
            x: getattr(self, x)
            for x in [
                "root",
                "staging",
                "dist",
                "wheelhouse",
                "scripts",
            ]
        }


def first_match(directory: PathLike, pattern: str) -> Optional[pathlib.Path]:
    """
    Return the first file in ``directory`` matching ``pattern`` after sorting.

    :param directory: The directory to search
    :type directory: str
    :param pattern: A glob pattern
    :type pattern: str

    :return: The first sorted match or None
    :rtype: ``pathlib.Path``
    """
    directory = pathlib.Path(directory)
    if not directory.is_dir():
        return None
    matches = sorted(directory.glob(pattern))
    if not matches:
        return None
    return matches[0]


def remove_matching(directory: PathLike, pattern: str) -> list[pathlib.Path]:
    """
    Remove every file in ``directory`` matching ``pattern``.
    """
    directory = pathlib.Path(directory)
    removed: list[pathlib.Path] = []
    if not directory.is_dir():
        return removed
    for path in sorted(directory.glob(pattern)):
        log.debug("Removing %s", path)
        path.unlink()
        removed.append(path)
    return removed


def prepend_path(value: PathLike, existing: Optional[str]) -> str:
    """
    Prepend ``value`` to a search path style string.
    """
    if existing:
        return f"{os.fspath(value)}{os.pathsep}{existing}"
    return os.fspath(value)


@contextlib.contextmanager
def transient_dir(path: PathLike) -> Iterator[pathlib.Path]:
    """
    Context manager that creates a directory and removes it on exit.

    :param path: The directory to create
    :type path: str
    """
    path = pathlib.Path(path)
    if path.exists():
        shutil.rmtree(path)
    path.mkdir(parents=True)
    try:
        yield path
    finally:
        shutil.rmtree(path, ignore_errors=True)


class CommandResult:
    """
    The outcome of an external command.

    :param args: The command that was run
    :type args: list
    :param returncode: The exit status of the command
    :type returncode: int
    :param stdout: Lines written to stdout
    :type stdout: list
    :param stderr: Lines written to stderr
    :type stderr: list
    """

    def __init__(
        self,
        args: Sequence[str],
        returncode: int,
        stdout: Optional[Sequence[str]] = None,
        stderr: Optional[Sequence[str]] = None,
    ) -> None:
        self.args = [str(_) for _ in args]
        self.returncode = returncode
        self.stdout = list(stdout or [])
        self.stderr = list(stderr or [])

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def command(self) -> str:
        return " ".join(self.args)

    def __repr__(self) -> str:
        return f"<CommandResult {self.command!r} returncode={self.returncode}>"


class CommandRunner:
    """
    Run external commands, streaming their output through the logger.

    In verbose mode every line is logged as it arrives. Otherwise output is
    held back and only the last ``tail`` lines are logged once the command
    exits, the way piping through ``tail`` would.

    :param verbose: Log all output
    :type verbose: bool
    :param tail: Number of lines logged when not verbose
    :type tail: int
    :param timeout: Seconds before a command is killed, None waits forever
    :type timeout: float
    """

    def __init__(
        self,
        verbose: bool = False,
        tail: int = 20,
        timeout: Optional[float] = None,
    ) -> None:
        self.verbose = verbose
        self.tail = tail
        self.timeout = timeout

    def __call__(
        self,
        args: Sequence[PathLike],
        env: Optional[Mapping[str, str]] = None,
        cwd: Optional[PathLike] = None,
        tail: Optional[int] = None,
    ) -> CommandResult:
        """
        Run a command and return its result.

        A non zero exit code is not an error here, callers decide what a
        failure means for their stage.

        :raises ToolUnavailableError: If the executable does not exist
        :raises CommandTimeoutError: If the command exceeds the timeout
        """
        argv = [os.fspath(_) for _ in args]
        if not argv:
            raise VarwheelException("No command provided to runner")
        if tail is None:
            tail = self.tail
        log.debug("Running command: %s", " ".join(argv))
        try:
            p = subprocess.Popen(
                argv,
                env=dict(env) if env is not None else None,
                cwd=os.fspath(cwd) if cwd is not None else None,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                encoding="utf-8",
                errors="replace",
            )
        except FileNotFoundError as exc:
            raise ToolUnavailableError(f"{argv[0]} not found: {exc}")
        stdout_stream = p.stdout
        stderr_stream = p.stderr
        if stdout_stream is None or stderr_stream is None:
            p.wait()
            raise VarwheelException("Process pipes are unavailable")

        stdout: list[str] = []
        stderr: list[str] = []
        recent: collections.deque[tuple[bool, str]] = collections.deque(
            maxlen=max(tail, 0)
        )
        deadline = None if self.timeout is None else time.monotonic() + self.timeout

        # Read both stdout and stderr simultaneously
        sel = selectors.DefaultSelector()
        sel.register(stdout_stream, selectors.EVENT_READ)
        sel.register(stderr_stream, selectors.EVENT_READ)
        try:
            while sel.get_map():
                wait = None
                if deadline is not None:
                    wait = deadline - time.monotonic()
                    if wait <= 0:
                        raise CommandTimeoutError(
                            "Command '{}' timed out after {} seconds".format(
                                " ".join(argv), self.timeout
                            )
                        )
                for key, _ in sel.select(wait):
                    stream = cast(IO[str], key.fileobj)
                    line = stream.readline()
                    if not line:
                        sel.unregister(stream)
                        continue
                    if line.endswith("\n"):
                        line = line[:-1]
                    is_err = stream is stderr_stream
                    (stderr if is_err else stdout).append(line)
                    if self.verbose:
                        self._emit(is_err, line)
                    else:
                        recent.append((is_err, line))
        except BaseException:
            # Never leave the child running behind an error.
            p.kill()
            p.wait()
            raise
        finally:
            sel.close()
        p.wait()
        if not self.verbose:
            for is_err, line in recent:
                self._emit(is_err, line)
        log.debug("Command exited with %d: %s", p.returncode, " ".join(argv))
        return CommandResult(argv, p.returncode, stdout, stderr)

    @staticmethod
    def _emit(is_err: bool, line: str) -> None:
        if is_err:
            log.warning(line)
        else:
            log.info(line)
