import pathlib
import shutil
import zipfile

from varwheel.common import CommandResult

BUILT_LINUX = "cuda_quantum-0.0.0-cp311-cp311-linux_x86_64.whl"
REPAIRED_LINUX = "cuda_quantum-0.0.0-cp311-cp311-manylinux_2_28_x86_64.whl"
BUILT_DARWIN = "cuda_quantum-0.0.0-cp311-cp311-macosx_11_0_arm64.whl"


def make_wheel(path, libs=(), libs_dir="cuda_quantum.libs"):
    """
    Write a small but valid wheel archive, optionally bundling libraries.
    """
    path = pathlib.Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with zipfile.ZipFile(path, "w") as zfp:
        zfp.writestr("cuda_quantum/__init__.py", "")
        for lib in libs:
            zfp.writestr(f"{libs_dir}/{lib}", b"\x7f\x45\x4c\x46")
    return path


class Call:
    def __init__(self, args, env, cwd, tail):
        self.args = args
        self.env = env
        self.cwd = cwd
        self.tail = tail

    def __repr__(self):
        return f"<Call {' '.join(self.args)}>"


def command_name(args):
    """
    The name a fake command is registered under.

    ``bash script.sh`` is known by the script name and ``python -m mod`` by
    the module name.
    """
    first = pathlib.Path(args[0]).name
    if first == "bash" and len(args) > 1:
        return pathlib.Path(args[1]).name
    if len(args) > 2 and args[1] == "-m":
        return args[2]
    return first


class FakeRunner:
    """
    Stand in for ``CommandRunner`` that records calls instead of running them.
    """

    def __init__(self):
        self.calls = []
        self.handlers = {}

    def on(self, name, handler=None, returncode=0, stdout=()):
        if handler is None:

            def handler(args, env):
                return CommandResult(args, returncode, list(stdout))

        self.handlers[name] = handler

    def __call__(self, args, env=None, cwd=None, tail=None):
        argv = [str(_) for _ in args]
        self.calls.append(Call(argv, env, cwd, tail))
        handler = self.handlers.get(command_name(argv))
        if handler is None:
            return CommandResult(argv, 0)
        return handler(argv, env)

    def find(self, name):
        return [call for call in self.calls if command_name(call.args) == name]

    @property
    def names(self):
        return [command_name(call.args) for call in self.calls]


def fake_build(wheel_name=BUILT_LINUX):
    """
    Handler for ``python -m build`` writing a wheel into ``--outdir``.
    """

    def handler(args, env):
        outdir = pathlib.Path(args[args.index("--outdir") + 1])
        make_wheel(outdir / wheel_name)
        return CommandResult(args, 0, ["Successfully built " + wheel_name])

    return handler


def fake_auditwheel(repaired_name=REPAIRED_LINUX, libs=("libgomp-a34b3233.so.1",)):
    """
    Handler for ``auditwheel repair`` that bundles libraries not excluded.
    """

    def handler(args, env):
        wheelhouse = pathlib.Path(args[args.index("-w") + 1])
        excluded = [args[i + 1] for i, arg in enumerate(args) if arg == "--exclude"]
        bundled = [lib for lib in libs if lib not in excluded]
        make_wheel(wheelhouse / repaired_name, libs=bundled)
        return CommandResult(args, 0)

    return handler


def fake_delocate(args, env):
    """
    Handler for ``delocate-wheel`` copying the wheel into the wheelhouse.
    """
    wheelhouse = pathlib.Path(args[args.index("-w") + 1])
    wheel = pathlib.Path(args[-1])
    shutil.copy(wheel, wheelhouse / wheel.name)
    return CommandResult(args, 0)


class ProjectTree:
    """
    A throwaway project root with variant manifests and helper scripts.
    """

    def __init__(self, root_dir, variants=("12", "13")):
        self.root_dir = pathlib.Path(root_dir)
        self.variants = variants

    def make_project(self):
        self.root_dir.mkdir(parents=True, exist_ok=True)
        for variant in self.variants:
            self.add_file(
                f"pyproject.toml.cu{variant}",
                f'[project]\nname = "cuda-quantum-cu{variant}"\n',
            )
        scripts = self.root_dir / "scripts"
        scripts.mkdir(exist_ok=True)
        for name in (
            "install_prerequisites.sh",
            "find_wheel_assets.sh",
            "validate_pycudaq.sh",
        ):
            self.add_file(name, "#!/bin/bash\nexit 0\n", "scripts")
        return self

    def add_file(self, name, contents, *relpath, binary=False):
        file_path = (self.root_dir / pathlib.Path(*relpath) / name).resolve()
        file_path.parent.mkdir(parents=True, exist_ok=True)
        if binary:
            file_path.write_bytes(contents)
        else:
            file_path.write_text(contents)
        return file_path

    @property
    def manifest(self):
        return self.root_dir / "pyproject.toml"

    def wheels(self, *relpath):
        directory = self.root_dir / pathlib.Path(*relpath)
        if not directory.exists():
            return []
        return sorted(_.name for _ in directory.glob("*.whl"))

    def destroy_project(self):
        if self.root_dir.exists():
            shutil.rmtree(self.root_dir, ignore_errors=True)

    def __enter__(self):
        self.make_project()
        return self

    def __exit__(self, *exc):
        self.destroy_project()
