import pathlib
import typing

import goopy.logging
import goopy.util
from goopy.models import state as state_models


def _normalize(path: pathlib.Path) -> pathlib.Path:
    return path.absolute()


def clean_all(cache_dir: pathlib.Path) -> list[pathlib.Path]:
    """
    Delete everything under the cache directory.
    """
    if not cache_dir.is_dir():
        return []

    removed: list[pathlib.Path] = []
    for entry in sorted(cache_dir.iterdir()):
        if goopy.util.remove_path(entry):
            removed.append(entry)
    return removed


def clean_packages(
    states: typing.Iterable[state_models.PackageState], names: typing.Collection[str]
) -> list[pathlib.Path]:
    """
    Delete the cached archives of the named installed packages. Their records keep pointing
    at the deleted archives; reinstalling downloads them again.
    """
    removed: list[pathlib.Path] = []
    for state in states:
        if state.name not in names or state.local_path == "":
            continue
        path = pathlib.Path(state.local_path)
        goopy.logging.debug("Removing cached archive %s of %s", path, state.pkg_id)
        if goopy.util.remove_path(path):
            removed.append(path)
    return removed


def clean_uninstalled(
    cache_dir: pathlib.Path, states: typing.Iterable[state_models.PackageState]
) -> list[pathlib.Path]:
    """
    Delete every cache entry that no installed package's LocalPath refers to.
    """
    if not cache_dir.is_dir():
        return []

    keep = {
        _normalize(pathlib.Path(state.local_path)) for state in states if state.local_path != ""
    }
    removed: list[pathlib.Path] = []
    for entry in sorted(cache_dir.iterdir()):
        if _normalize(entry) in keep:
            continue
        goopy.logging.debug("Removing %s", entry)
        if goopy.util.remove_path(entry):
            removed.append(entry)
    return removed
