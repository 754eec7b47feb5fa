import os
import pathlib
import threading

import pytest

import goopy.errors
import goopy.process
import goopy.system
from goopy.models import spec as spec_models

pytestmark = pytest.mark.skipif(goopy.system.is_windows(), reason="uses POSIX shell scripts")


def _script(
    workdir: pathlib.Path, name: str, body: str, args: list[str] | None = None
) -> spec_models.ExecFile:
    path = workdir / name
    _ = path.write_text(f"#!/bin/sh\n{body}\n")
    path.chmod(0o755)
    return spec_models.ExecFile(path=name, args=args or [])


def test_run_script_captures_output(tmp_path: pathlib.Path):
    exec_file = _script(tmp_path, "install.sh", 'echo "hello $1"', ["world"])

    returncode = goopy.process.run_script(
        exec_file, tmp_path, dict(os.environ), tmp_path / "goopy_install.log"
    )

    assert returncode == 0
    assert (tmp_path / "goopy_install.log").read_text() == "hello world\n"


def test_run_script_failure(tmp_path: pathlib.Path):
    exec_file = _script(tmp_path, "install.sh", "exit 5")

    with pytest.raises(goopy.errors.ScriptError) as exc_info:
        _ = goopy.process.run_script(exec_file, tmp_path, dict(os.environ), tmp_path / "log")

    assert exc_info.value.returncode == 5


def test_run_script_missing(tmp_path: pathlib.Path):
    with pytest.raises(goopy.errors.ScriptError, match="missing"):
        _ = goopy.process.run_script(
            spec_models.ExecFile(path="nope.sh"), tmp_path, dict(os.environ), tmp_path / "log"
        )


def test_run_script_cancelled(tmp_path: pathlib.Path):
    # GIVEN: a long running script
    exec_file = _script(tmp_path, "install.sh", "sleep 30")
    cancel_event = threading.Event()
    timer = threading.Timer(0.3, cancel_event.set)

    # WHEN: the operation is cancelled while it runs
    timer.start()
    try:
        # THEN: the script is terminated and reported as failed
        with pytest.raises(goopy.errors.ScriptError, match="cancelled"):
            _ = goopy.process.run_script(
                exec_file, tmp_path, dict(os.environ), tmp_path / "log", cancel_event
            )
    finally:
        timer.cancel()


def test_windows_script_command(mocker):
    _ = mocker.patch("goopy.system.is_windows", return_value=True)

    assert goopy.process.script_command(pathlib.Path("install.ps1"), ["-x"])[:1] == [
        "powershell.exe"
    ]
    assert goopy.process.script_command(pathlib.Path("setup.msi"), []) == [
        "msiexec",
        "/qn",
        "/norestart",
        "/i",
        "setup.msi",
    ]
    with pytest.raises(goopy.errors.ScriptError):
        _ = goopy.process.script_command(pathlib.Path("install.sh"), [])
