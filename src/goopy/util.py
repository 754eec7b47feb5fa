import os
import pathlib
import shutil

import goopy.errors
import goopy.logging


def ensure_path(path: pathlib.Path):
    """
    Ensure the given directory exists.
    """
    if not path.exists():
        path.mkdir(parents=True)
    elif not path.is_dir():
        raise RuntimeError(f"Unexpected: {path} is not a directory")


def clear_path(path: pathlib.Path):
    """
    Clears the given path.
    """

    if path.exists():
        shutil.rmtree(path)

    path.mkdir(parents=True)


def remove_path(path: pathlib.Path) -> bool:
    """
    Removes a file, symlink or directory tree. Failures are logged, not raised.
    Returns whether the path is gone.
    """
    try:
        if path.is_dir() and not path.is_symlink():
            shutil.rmtree(path)
        else:
            path.unlink(missing_ok=True)
    except OSError as e:
        goopy.logging.error("Failed to remove %s: %s", path, e)
        return False

    return True


def resolve_destination(dst: str) -> pathlib.Path:
    """
    Resolve the destination of a package file entry.

    Absolute destinations are used as is. A destination of the form "<VAR>rest" is placed
    under the value of the environment variable VAR. Anything else is rooted at "/".
    """
    if dst.startswith("<") and ">" in dst:
        var, rest = dst[1:].rsplit(">", 1)
        value = os.environ.get(var)
        if value is None:
            raise goopy.errors.GoopyError(
                f"environment variable {var} referenced by {dst} is not set"
            )
        return pathlib.Path(value + rest)

    dst_path = pathlib.Path(dst)
    if dst_path.is_absolute():
        return dst_path

    return pathlib.Path("/") / dst
