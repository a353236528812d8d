# Copyright 2022-2025 Broadcom.
# SPDX-License-Identifier: Apache-2.0
import logging
import pathlib
import sys

import pytest

import varwheel.build
from varwheel.__main__ import main, setup_cli
from varwheel.build import build, default_pipeline
from varwheel.build.linux import exclusion_list
from varwheel.check import excluded_bundled
from varwheel.common import (
    BuildError,
    ConfigurationError,
    DescriptorMissingError,
    PrerequisiteError,
    ToolUnavailableError,
    VarwheelException,
    __version__,
)
from varwheel.config import BuildConfiguration, Settings, resolve_configuration
from varwheel.context import Pipeline
from varwheel.profile import DARWIN_PROFILE, LINUX_PROFILE

from tests.helpers import (
    BUILT_DARWIN,
    REPAIRED_LINUX,
    FakeRunner,
    ProjectTree,
    fake_auditwheel,
)


class RecordingStage:
    def __init__(self, name, calls, enabled=True, error=None):
        self.name = name
        self.calls = calls
        self._enabled = enabled
        self.error = error

    def enabled(self, context):
        return self._enabled

    def run(self, context):
        self.calls.append(self.name)
        if self.error is not None:
            raise self.error
        return context.with_env(**{f"STAGE_{self.name.upper()}": "1"})


@pytest.fixture
def cli(project: ProjectTree, runner: FakeRunner, monkeypatch: pytest.MonkeyPatch, tools_on_path):
    """
    Run ``varwheel`` against the test project with external commands faked.
    """
    monkeypatch.setenv("PYTHON", sys.executable)
    monkeypatch.setenv("CUDA_HOME", "/nonexistent/cuda")
    monkeypatch.delenv("CUDA_QUANTUM_VERSION", raising=False)
    monkeypatch.delenv("CUDACXX", raising=False)
    monkeypatch.delenv("CUDA_VERSION_CONDA", raising=False)
    monkeypatch.delenv("VARWHEEL_COMMAND_TIMEOUT", raising=False)
    monkeypatch.setattr(varwheel.build, "CommandRunner", lambda **kwargs: runner)
    monkeypatch.setattr(varwheel.build, "detect_profile", lambda: LINUX_PROFILE)

    def run(*argv):
        main(["build", "--root", str(project.root_dir), *argv])

    return run


def test_default_pipeline_order() -> None:
    assert default_pipeline().names == [
        "prerequisites",
        "variant",
        "assets",
        "build",
        "repair",
        "validate",
    ]


def test_pipeline_skips_disabled(make_context) -> None:
    calls = []
    pipeline = Pipeline(
        [
            RecordingStage("one", calls),
            RecordingStage("two", calls, enabled=False),
            RecordingStage("three", calls),
        ]
    )
    context = pipeline.run(make_context())
    assert calls == ["one", "three"]
    assert context.env["STAGE_THREE"] == "1"
    assert "STAGE_TWO" not in context.env


def test_pipeline_stops_at_first_failure(make_context) -> None:
    calls = []
    pipeline = Pipeline(
        [
            RecordingStage("one", calls),
            RecordingStage("two", calls, error=BuildError("boom")),
            RecordingStage("three", calls),
        ]
    )
    with pytest.raises(BuildError) as excinfo:
        pipeline.run(make_context())
    assert calls == ["one", "two"]
    assert excinfo.value.stage == "build"


def test_pipeline_labels_generic_errors(make_context) -> None:
    calls = []
    pipeline = Pipeline([RecordingStage("custom", calls, error=VarwheelException("x"))])
    with pytest.raises(VarwheelException) as excinfo:
        pipeline.run(make_context())
    assert excinfo.value.stage == "custom"


def test_pipeline_wraps_os_errors(make_context) -> None:
    calls = []
    pipeline = Pipeline(
        [RecordingStage("copy", calls, error=PermissionError("denied"))]
    )
    with pytest.raises(VarwheelException) as excinfo:
        pipeline.run(make_context())
    assert excinfo.value.stage == "copy"
    assert isinstance(excinfo.value.__cause__, PermissionError)


@pytest.mark.usefixtures("tools_on_path")
def test_build_linux(project: ProjectTree, settings: Settings, runner: FakeRunner) -> None:
    config = resolve_configuration(LINUX_PROFILE, variant="13", run_tests=True)
    context = build(config, LINUX_PROFILE, project.root_dir, settings=settings, runner=runner)
    assert context.artifact.path.name == REPAIRED_LINUX
    assert project.wheels("dist") == [REPAIRED_LINUX]
    assert "cu13" in project.manifest.read_text()
    assert runner.names == [
        pathlib.Path(sys.executable).name,
        "build",
        "auditwheel",
        "validate_pycudaq.sh",
    ]
    validate = runner.find("validate_pycudaq.sh")[0]
    assert validate.args[-2:] == ["-c", "13.0.0"]


@pytest.mark.usefixtures("tools_on_path")
def test_build_darwin(project: ProjectTree, settings: Settings, darwin_runner: FakeRunner) -> None:
    config = resolve_configuration(DARWIN_PROFILE, variant="12")
    context = build(
        config, DARWIN_PROFILE, project.root_dir, settings=settings, runner=darwin_runner
    )
    assert config.variant == "13"
    assert "cu13" in project.manifest.read_text()
    assert context.artifact.path.name == BUILT_DARWIN
    assert project.wheels("dist") == [BUILT_DARWIN]
    assert darwin_runner.find("auditwheel") == []
    assert len(darwin_runner.find("delocate-wheel")) == 1


def test_build_missing_descriptor_touches_nothing(
    tmp_path, settings: Settings, runner: FakeRunner
) -> None:
    with ProjectTree(tmp_path / "only12", variants=("12",)) as tree:
        config = resolve_configuration(LINUX_PROFILE, variant="13")
        with pytest.raises(DescriptorMissingError):
            build(config, LINUX_PROFILE, tree.root_dir, settings=settings, runner=runner)
        assert not tree.manifest.exists()
        assert runner.calls == []


def test_build_missing_python(project: ProjectTree, runner: FakeRunner) -> None:
    settings = Settings({"PATH": "", "PYTHON": "no-such-python-here"})
    config = resolve_configuration(LINUX_PROFILE, variant="12")
    with pytest.raises(ToolUnavailableError):
        build(config, LINUX_PROFILE, project.root_dir, settings=settings, runner=runner)
    assert runner.calls == []
    assert not project.manifest.exists()


def test_build_prerequisite_failure_stops(
    project: ProjectTree, settings: Settings, runner: FakeRunner
) -> None:
    runner.on("install_prerequisites.sh", returncode=2)
    config = resolve_configuration(LINUX_PROFILE, variant="12", install_prereqs=True)
    with pytest.raises(PrerequisiteError):
        build(config, LINUX_PROFILE, project.root_dir, settings=settings, runner=runner)
    assert runner.find("build") == []
    assert not project.manifest.exists()


def test_cli_version(capsys: pytest.CaptureFixture) -> None:
    with pytest.raises(SystemExit) as excinfo:
        setup_cli().parse_args(["--version"])
    assert excinfo.value.code == 0
    assert __version__ in capsys.readouterr().out


def test_cli_no_subcommand() -> None:
    with pytest.raises(SystemExit) as excinfo:
        main([])
    assert excinfo.value.code == 1


def test_cli_build(cli, project: ProjectTree, runner: FakeRunner) -> None:
    cli("-c", "12", "-o", "out", "-q")
    assert project.wheels("out") == [REPAIRED_LINUX]
    assert project.wheels("dist") == []
    validate = runner.find("validate_pycudaq.sh")[0]
    assert "-q" in validate.args
    wheel = project.root_dir / "out" / REPAIRED_LINUX
    assert excluded_bundled(wheel, exclusion_list(12)) == []


def test_cli_build_version_pin(cli, runner: FakeRunner, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CUDA_QUANTUM_VERSION", "0.12.0")
    cli("-c", "12")
    assert runner.find("build")[0].env["SETUPTOOLS_SCM_PRETEND_VERSION"] == "0.12.0"


def test_cli_build_without_variant(
    cli, project: ProjectTree, runner: FakeRunner, caplog: pytest.LogCaptureFixture
) -> None:
    with caplog.at_level(logging.ERROR):
        with pytest.raises(SystemExit) as excinfo:
            cli()
    assert excinfo.value.code == 1
    assert "Error [configure]: CUDA variant required. Use -c 12 or -c 13" in caplog.text
    assert runner.calls == []
    assert not project.manifest.exists()
    assert project.wheels("dist") == []


def test_cli_build_unknown_variant(cli, caplog: pytest.LogCaptureFixture) -> None:
    with caplog.at_level(logging.ERROR):
        with pytest.raises(SystemExit):
            cli("-c", "11")
    assert "CUDA variant must be 12 or 13, got: 11" in caplog.text


def test_cli_build_failure_names_stage(
    cli, runner: FakeRunner, caplog: pytest.LogCaptureFixture
) -> None:
    runner.on("build", returncode=1)
    with caplog.at_level(logging.ERROR):
        with pytest.raises(SystemExit) as excinfo:
            cli("-c", "12")
    assert excinfo.value.code == 1
    assert "Error [build]: Build failed (exit status 1)" in caplog.text
    assert runner.find("auditwheel") == []


def test_cli_repair_excludes_cuda_libraries(cli, project: ProjectTree, runner: FakeRunner) -> None:
    runner.on(
        "auditwheel",
        fake_auditwheel(libs=("libgomp-a34b3233.so.1", "libcudart.so.12", "libcublas.so.13")),
    )
    cli("-c", "13")
    wheel = project.root_dir / "dist" / REPAIRED_LINUX
    assert excluded_bundled(wheel, exclusion_list(13)) == []


@pytest.mark.parametrize(
    "argv",
    [
        ["build", "-x"],
        ["build", "-c"],
        ["check"],
        ["check", "some.whl", "-c", "11"],
        ["no-such-command"],
    ],
)
def test_cli_usage_errors_exit_1(argv, capsys: pytest.CaptureFixture) -> None:
    with pytest.raises(SystemExit) as excinfo:
        main(argv)
    assert excinfo.value.code == 1
    assert "Error [configure]:" in capsys.readouterr().err


@pytest.mark.usefixtures("tools_on_path")
def test_build_twice_is_repeatable(
    project: ProjectTree, settings: Settings, runner: FakeRunner
) -> None:
    config = resolve_configuration(LINUX_PROFILE, variant="12", output_dir="out")
    first = build(config, LINUX_PROFILE, project.root_dir, settings=settings, runner=runner)
    manifest = project.manifest.read_text()
    stale = project.add_file("stale.o", "", "_skbuild", "lib")
    (project.root_dir / "wheelhouse").mkdir()
    second = build(config, LINUX_PROFILE, project.root_dir, settings=settings, runner=runner)
    assert project.wheels("out") == [REPAIRED_LINUX]
    assert second.artifact.path == first.artifact.path
    assert second.artifact.path.exists()
    assert project.wheels("dist") == []
    assert not stale.exists()
    assert not (project.root_dir / "wheelhouse").exists()
    assert project.manifest.read_text() == manifest


def test_build_unresolved_variant(
    project: ProjectTree, settings: Settings, runner: FakeRunner
) -> None:
    config = BuildConfiguration()
    with pytest.raises(ConfigurationError):
        build(config, LINUX_PROFILE, project.root_dir, settings=settings, runner=runner)
    assert runner.calls == []
