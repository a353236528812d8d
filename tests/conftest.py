# Copyright 2022-2025 Broadcom.
# SPDX-License-Identifier: Apache-2.0
#
import logging
import os
import sys
from pathlib import Path
from typing import Iterator

import pytest
from _pytest.config import Config

from varwheel.common import __version__
from varwheel.config import BuildConfiguration, Settings, resolve_configuration
from varwheel.profile import DARWIN_PROFILE, LINUX_PROFILE

from .helpers import (
    BUILT_DARWIN,
    FakeRunner,
    ProjectTree,
    fake_auditwheel,
    fake_build,
    fake_delocate,
)

# mypy: ignore-errors


log = logging.getLogger(__name__)


def pytest_report_header(config: Config) -> str:
    return f"varwheel version: {__version__}"


def pytest_collection_modifyitems(config: Config, items) -> None:
    skip = pytest.mark.skip(reason="Only runs on Linux")
    for item in items:
        if "skip_unless_on_linux" in item.keywords and sys.platform != "linux":
            item.add_marker(skip)


@pytest.fixture
def project(tmp_path: Path) -> Iterator[ProjectTree]:
    with ProjectTree(tmp_path / "project") as tree:
        yield tree


@pytest.fixture
def settings() -> Settings:
    # Only what the pipeline needs, so the host's CUDA setup can't leak in.
    return Settings(
        {
            "PATH": os.environ.get("PATH", ""),
            "PYTHON": sys.executable,
            "CUDA_HOME": "/nonexistent/cuda",
        }
    )


@pytest.fixture
def tools_on_path(monkeypatch: pytest.MonkeyPatch) -> None:
    """
    Pretend every repair tool is installed.
    """
    import varwheel.build.common

    monkeypatch.setattr(
        varwheel.build.common, "find_tool", lambda name, python=None: f"/usr/bin/{name}"
    )


@pytest.fixture
def runner() -> FakeRunner:
    runner = FakeRunner()
    runner.on("build", fake_build())
    runner.on("auditwheel", fake_auditwheel())
    runner.on("delocate-wheel", fake_delocate)
    return runner


@pytest.fixture
def darwin_runner(runner: FakeRunner) -> FakeRunner:
    runner.on("build", fake_build(BUILT_DARWIN))
    return runner


@pytest.fixture
def linux_config() -> BuildConfiguration:
    return resolve_configuration(LINUX_PROFILE, variant="12")


@pytest.fixture
def darwin_config() -> BuildConfiguration:
    return resolve_configuration(DARWIN_PROFILE)


@pytest.fixture
def make_context(project: ProjectTree, settings: Settings, runner: FakeRunner):
    """
    Build a context for the test project without running any stage.
    """
    from varwheel.build import build_context

    def factory(config=None, profile=LINUX_PROFILE, **kwargs):
        if config is None:
            config = resolve_configuration(profile, variant="12", **kwargs)
        return build_context(
            config, profile, project.root_dir, settings=settings, runner=runner
        )

    return factory
