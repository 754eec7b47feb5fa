import os
import pathlib
import tempfile
import typing

import pydantic

import goopy.errors
import goopy.lock
import goopy.logging
from goopy.models import state as state_models


class StateDB:
    """
    The record of installed packages, keyed by name.arch.

    The database is a JSON document rewritten atomically on every change: a new copy is
    written next to it and moved into place, so a crash leaves either the old or the new
    contents. Opening the database takes an exclusive lock on a sidecar file that is held
    until close().
    """

    def __init__(self, path: pathlib.Path, lock_timeout: float = 0.0) -> None:
        self.path = path
        self._lock = goopy.lock.FileLock(path.with_name(f"{path.name}.lock"), lock_timeout)
        self._states: dict[str, state_models.PackageState] | None = None

    @classmethod
    def open(cls, path: pathlib.Path, lock_timeout: float = 0.0) -> "StateDB":
        db = cls(path, lock_timeout)
        db._lock.acquire()
        try:
            db._states = db._load()
        except BaseException:
            db._lock.release()
            raise
        return db

    def close(self) -> None:
        self._states = None
        self._lock.release()

    def __enter__(self) -> typing.Self:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _load(self) -> dict[str, state_models.PackageState]:
        if not self.path.exists():
            goopy.logging.debug("No database at %s, starting empty", self.path)
            return {}

        try:
            raw = self.path.read_bytes()
        except OSError as e:
            raise goopy.errors.DBCorrupt(f"unable to read {self.path}: {e}") from e

        if raw.strip() == b"":
            return {}

        try:
            installed = state_models.InstalledState.model_validate_json(raw)
        except pydantic.ValidationError as e:
            raise goopy.errors.DBCorrupt(f"unable to parse {self.path}: {e}") from e

        states: dict[str, state_models.PackageState] = {}
        for state in installed.root:
            if state.key in states:
                raise goopy.errors.DBCorrupt(f"{state.key} is recorded twice in {self.path}")
            states[state.key] = state
        return states

    @property
    def _current(self) -> dict[str, state_models.PackageState]:
        if self._states is None:
            raise RuntimeError(f"{self.path} is not open")
        return self._states

    def fetch_all(self, name_filter: str = "") -> list[state_models.PackageState]:
        """
        All recorded packages, sorted by name.arch. With a filter, only packages whose
        name contains it.
        """
        return [
            state.model_copy(deep=True)
            for key, state in sorted(self._current.items())
            if name_filter in state.name
        ]

    def fetch_one(self, key: str) -> state_models.PackageState:
        """
        Fetch the package recorded under name.arch.
        """
        state = self._current.get(key)
        if state is None:
            raise goopy.errors.NotInstalled(f"{key} is not installed")
        return state.model_copy(deep=True)

    def contains(self, key: str) -> bool:
        return key in self._current

    def write(self, states: typing.Iterable[state_models.PackageState]) -> None:
        """
        Replace the entire set of recorded packages.
        """
        new_states: dict[str, state_models.PackageState] = {}
        for state in states:
            if state.key in new_states:
                raise ValueError(f"{state.key} appears more than once")
            new_states[state.key] = state.model_copy(deep=True)
        self._commit(new_states)

    def upsert(self, state: state_models.PackageState) -> None:
        new_states = dict(self._current)
        new_states[state.key] = state.model_copy(deep=True)
        self._commit(new_states)

    def delete(self, key: str) -> None:
        if key not in self._current:
            raise goopy.errors.NotInstalled(f"{key} is not installed")
        new_states = dict(self._current)
        del new_states[key]
        self._commit(new_states)

    def _commit(self, states: dict[str, state_models.PackageState]) -> None:
        installed = state_models.InstalledState([states[key] for key in sorted(states)])
        data = installed.model_dump_json(by_alias=True, indent=2)

        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, prefix=f".{self.path.name}.")
        tmp_path = pathlib.Path(tmp_name)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.path)
        except BaseException:
            tmp_path.unlink(missing_ok=True)
            raise

        self._states = states
        goopy.logging.debug("Wrote %d package records to %s", len(states), self.path)
