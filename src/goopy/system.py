import os
import pathlib
import platform

import goopy.logging


def is_windows() -> bool:
    """
    Check if the current operating system is Windows.
    """
    return platform.system().startswith("Windows")


def installable_archs() -> list[str]:
    """
    Returns the package architectures installable on this machine, in search order.
    """
    machine = platform.machine().lower()
    if machine in ("x86_64", "amd64"):
        return ["noarch", "x86_64", "x86_32"]
    if machine in ("x86", "i386", "i686"):
        return ["noarch", "x86_32"]
    if machine in ("arm64", "aarch64"):
        return ["noarch", "arm64", "arm"]
    if machine.startswith("arm"):
        return ["noarch", "arm"]

    goopy.logging.warning(
        "Unrecognized machine type %s, only noarch packages are installable", platform.machine()
    )
    return ["noarch"]


def default_root() -> pathlib.Path:
    """
    The install root used when neither --root nor GOOPY_ROOT is given.
    """
    if is_windows():
        return pathlib.Path(os.environ.get("ProgramData", "C:\\ProgramData")) / "GooPy"

    return pathlib.Path.home() / ".goopy"
