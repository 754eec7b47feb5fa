import pathlib
import subprocess
import threading

import goopy.errors
import goopy.logging
import goopy.system
from goopy.models import spec as spec_models

_POLL_INTERVAL = 0.1

# extension -> command prefix on Windows
_WINDOWS_INTERPRETERS: dict[str, list[str]] = {
    ".ps1": [
        "powershell.exe",
        "-ExecutionPolicy",
        "Bypass",
        "-NonInteractive",
        "-NoProfile",
        "-Command",
    ],
    ".cmd": [],
    ".bat": [],
    ".exe": [],
    ".msi": ["msiexec", "/qn", "/norestart", "/i"],
}


def script_command(script: pathlib.Path, args: list[str]) -> list[str]:
    if not goopy.system.is_windows():
        return [str(script), *args]

    extension = script.suffix.lower()
    if extension not in _WINDOWS_INTERPRETERS:
        raise goopy.errors.ScriptError(f"unknown script extension {extension!r} for {script}")

    return [*_WINDOWS_INTERPRETERS[extension], str(script), *args]


def run_script(
    exec_file: spec_models.ExecFile,
    workdir: pathlib.Path,
    env: dict[str, str],
    log_file: pathlib.Path,
    cancel_event: threading.Event | None = None,
) -> int:
    """
    Run a package script from the unpacked archive in workdir, capturing its output in
    log_file. Returns the exit code; codes not accepted by the script raise ScriptError.
    """
    script = workdir / exec_file.path
    if not script.is_file():
        raise goopy.errors.ScriptError(f"script {exec_file.path} is missing from the package")

    cmd = script_command(script, exec_file.args)
    goopy.logging.debug("Executing %s in %s", " ".join(cmd), workdir)

    with log_file.open("w") as log:
        try:
            proc = subprocess.Popen(
                cmd, cwd=workdir, env=env, stdout=log, stderr=subprocess.STDOUT, text=True
            )
        except OSError as e:
            raise goopy.errors.ScriptError(f"unable to start {exec_file.path}: {e}") from e

        while True:
            try:
                returncode = proc.wait(timeout=_POLL_INTERVAL)
                break
            except subprocess.TimeoutExpired:
                if cancel_event is not None and cancel_event.is_set():
                    proc.terminate()
                    proc.wait()
                    raise goopy.errors.ScriptError(f"{exec_file.path} was cancelled") from None

    output = log_file.read_text(errors="replace")
    goopy.logging.debug("%s exited with %d, output:\n%s", exec_file.path, returncode, output)
    if not exec_file.accepts(returncode):
        goopy.logging.error("%s failed, output:\n%s", exec_file.path, output)
        raise goopy.errors.ScriptError(
            f"{exec_file.path} exited with code {returncode}", returncode
        )

    return returncode
