import enum
import hashlib
import os
import pathlib
import shutil
import threading
import time

import goopy.db
import goopy.download
import goopy.env
import goopy.errors
import goopy.hash
import goopy.logging
import goopy.process
import goopy.settings
import goopy.tarfile
import goopy.util
from goopy.models import pkg as pkg_models
from goopy.models import spec as spec_models
from goopy.models import state as state_models

INSTALL_LOG = "goopy_install.log"
REMOVE_LOG = "goopy_remove.log"
VERIFY_LOG = "goopy_verify.log"


class OpState(enum.Enum):
    PLANNED = "planned"
    DOWNLOADING = "downloading"
    VERIFIED = "verified"
    SCRIPT_RUNNING = "script running"
    RECORDED = "recorded"
    DELETED = "deleted"
    DONE = "done"
    FAILED = "failed"


class PackageOperation:
    """
    Tracks one package through install or removal.

    Install goes planned -> downloading -> verified -> script running -> recorded -> done,
    skipping downloading on a cache hit. Removal goes recorded -> script running -> deleted
    -> done. Any state may move to failed, remembering the error that caused it.
    """

    def __init__(self, pkg_id: pkg_models.PkgId, state: OpState = OpState.PLANNED) -> None:
        self.pkg_id = pkg_id
        self.state = state
        self.failure: goopy.errors.GoopyError | None = None
        goopy.logging.debug("%s: %s", pkg_id, state.value)

    def transition(self, state: OpState) -> None:
        goopy.logging.debug("%s: %s -> %s", self.pkg_id, self.state.value, state.value)
        self.state = state

    def fail(self, error: goopy.errors.GoopyError) -> None:
        goopy.logging.debug(
            "%s: %s -> failed (%s: %s)", self.pkg_id, self.state.value, type(error).__name__, error
        )
        self.state = OpState.FAILED
        self.failure = error


def _copy_tree(src: pathlib.Path, dst: pathlib.Path, installed: dict[str, str]) -> None:
    """
    Copy src (file or directory) to dst, recording absolute path -> sha256 of everything
    written. Directories are recorded with an empty checksum.
    """
    if src.is_dir():
        goopy.logging.debug("Creating folder %s", dst)
        dst.mkdir(parents=True, exist_ok=True)
        installed[str(dst)] = ""
        for child in sorted(src.iterdir()):
            _copy_tree(child, dst / child.name, installed)
        return

    goopy.logging.debug("Copying file %s", dst)
    dst.parent.mkdir(parents=True, exist_ok=True)
    hasher = hashlib.sha256()
    with src.open("rb") as in_file, dst.open("wb") as out_file:
        while chunk := in_file.read(64 * 1024):
            out_file.write(chunk)
            hasher.update(chunk)
    shutil.copymode(src, dst)
    installed[str(dst)] = hasher.hexdigest()


def _planned_destinations(workdir: pathlib.Path, spec: spec_models.PkgSpec) -> dict[str, bool]:
    """
    Every path the package's files would be written to -> whether it is a directory.
    """
    destinations: dict[str, bool] = {}
    for src, dst in sorted(spec.files.items()):
        src_path = workdir / src
        dst_path = goopy.util.resolve_destination(dst)
        if not src_path.exists():
            raise goopy.errors.ParseError(f"{spec} lists {src}, which is not in the package")
        if src_path.is_dir():
            destinations[str(dst_path)] = True
            for child in src_path.rglob("*"):
                destinations[str(dst_path / child.relative_to(src_path))] = child.is_dir()
        else:
            destinations[str(dst_path)] = False
    return destinations


def remove_files(files: dict[str, str]) -> None:
    """
    Remove installed files, then any recorded directory left empty, deepest first.
    """
    directories: list[str] = []
    for path, checksum in files.items():
        if checksum == "":
            directories.append(path)
            continue
        goopy.logging.debug("Removing %s", path)
        try:
            pathlib.Path(path).unlink(missing_ok=True)
        except OSError as e:
            goopy.logging.error("Failed to remove %s: %s", path, e)

    for directory in sorted(directories, reverse=True):
        try:
            os.rmdir(directory)
        except FileNotFoundError:
            pass
        except OSError as e:
            goopy.logging.debug("Leaving directory %s in place: %s", directory, e)


class Installer:
    """
    Applies plan steps to one package at a time: fetch and verify the archive, copy its
    files, run its scripts and record the outcome in the database.
    """

    def __init__(
        self,
        env: goopy.settings.Environment,
        db: goopy.db.StateDB,
        downloader: goopy.download.Downloader,
        cancel_event: threading.Event | None = None,
    ) -> None:
        self.env = env
        self.db = db
        self.downloader = downloader
        self.cancel_event = cancel_event

    def _obtain_archive(
        self,
        op: PackageOperation,
        pkg_id: pkg_models.PkgId,
        url: str,
        checksum: str,
        local_path: str = "",
    ) -> pathlib.Path:
        if local_path != "":
            local = pathlib.Path(local_path)
            if local.is_file() and (checksum == "" or goopy.hash.file_matches(local, checksum)):
                op.transition(OpState.VERIFIED)
                return local

        cached = self.downloader.cache.lookup(pkg_id, checksum)
        if cached is not None:
            op.transition(OpState.VERIFIED)
            return cached

        if url == "":
            raise goopy.errors.DownloadError(f"{pkg_id} is not cached and has no download URL")

        op.transition(OpState.DOWNLOADING)
        archive = self.downloader.fetch(pkg_id, url, checksum)
        op.transition(OpState.VERIFIED)
        return archive

    def _check_file_conflicts(
        self, spec: spec_models.PkgSpec, destinations: dict[str, bool]
    ) -> None:
        for other in self.db.fetch_all():
            if other.key == spec.key:
                continue
            for path, checksum in other.installed_files.items():
                if checksum != "" and path in destinations and not destinations[path]:
                    raise goopy.errors.FileConflict(
                        f"{spec} would overwrite {path}, which belongs to {other.pkg_id}"
                    )

    def install(
        self,
        spec: spec_models.PkgSpec,
        *,
        checksum: str,
        download_url: str,
        source_repo: str = "",
        archive: pathlib.Path | None = None,
        local_path: str = "",
    ) -> state_models.PackageState:
        """
        Install or upgrade one package. The database is only written once files are in
        place and the install script succeeded, so a failure leaves the previous record
        untouched.
        """
        op = PackageOperation(spec.pkg_id)
        try:
            if archive is not None:
                op.transition(OpState.VERIFIED)
            else:
                archive = self._obtain_archive(op, spec.pkg_id, download_url, checksum, local_path)
            state = self._apply(op, spec, archive, checksum, download_url, source_repo)
        except goopy.errors.GoopyError as e:
            op.fail(e)
            raise

        op.transition(OpState.DONE)
        goopy.logging.info("Installation of %s completed", spec.pkg_id)
        return state

    def _apply(
        self,
        op: PackageOperation,
        spec: spec_models.PkgSpec,
        archive: pathlib.Path,
        checksum: str,
        download_url: str,
        source_repo: str,
    ) -> state_models.PackageState:
        prior = self.db.fetch_one(spec.key) if self.db.contains(spec.key) else None

        workdir = archive.with_name(f"{archive.name}.unpacked")
        goopy.util.clear_path(workdir)
        try:
            goopy.tarfile.extract(archive, workdir)
            destinations = _planned_destinations(workdir, spec)
            self._check_file_conflicts(spec, destinations)

            op.transition(OpState.SCRIPT_RUNNING)
            goopy.logging.info("Executing install of %s", spec.pkg_id)
            installed_files: dict[str, str] = {}
            prior_files = prior.installed_files if prior is not None else {}
            try:
                for src, dst in sorted(spec.files.items()):
                    _copy_tree(
                        workdir / src, goopy.util.resolve_destination(dst), installed_files
                    )
                exit_code = self._run_script(
                    spec.install, workdir, INSTALL_LOG, prior.version if prior is not None else ""
                )
            except (goopy.errors.GoopyError, OSError) as e:
                remove_files(
                    {path: c for path, c in installed_files.items() if path not in prior_files}
                )
                if isinstance(e, OSError):
                    raise goopy.errors.GoopyError(f"unable to install {spec.pkg_id}: {e}") from e
                raise
        finally:
            goopy.util.remove_path(workdir)

        state = state_models.PackageState(
            package_spec=spec,
            source_repo=source_repo,
            download_url=download_url,
            checksum=checksum,
            local_path=str(archive),
            installed_files=installed_files,
            install_exit_code=exit_code,
            install_date=int(time.time()),
        )
        self.db.upsert(state)
        op.transition(OpState.RECORDED)

        if prior is not None:
            self._clean_prior(prior, state)
        return state

    def _clean_prior(
        self, prior: state_models.PackageState, current: state_models.PackageState
    ) -> None:
        """
        Drop what an upgraded package no longer installs, along with its old archive.
        """
        stale = {
            path: checksum
            for path, checksum in prior.installed_files.items()
            if path not in current.installed_files
        }
        if len(stale) > 0:
            goopy.logging.info("Cleaning up %d files left by %s", len(stale), prior.pkg_id)
            remove_files(stale)

        if prior.local_path != "" and prior.local_path != current.local_path:
            goopy.util.remove_path(pathlib.Path(prior.local_path))

    def _run_script(
        self,
        exec_file: spec_models.ExecFile,
        workdir: pathlib.Path,
        log_name: str,
        prior_version: str,
    ) -> int:
        if exec_file.path == "":
            return 0

        env = goopy.env.script_env(str(workdir), str(self.env.root), prior_version)
        return goopy.process.run_script(
            exec_file, workdir, env, workdir / log_name, self.cancel_event
        )

    def reinstall(
        self,
        state: state_models.PackageState,
        repo_spec: spec_models.RepoSpec | None = None,
        repo_url: str = "",
    ) -> state_models.PackageState:
        """
        Install the recorded version again, preferring the recorded archive.
        """
        if repo_spec is not None:
            return self.install(
                repo_spec.package_spec,
                checksum=repo_spec.checksum,
                download_url=goopy.download.package_url(repo_url, repo_spec.source),
                source_repo=repo_url,
                local_path=state.local_path,
            )

        return self.install(
            state.package_spec,
            checksum=state.checksum,
            download_url=state.download_url,
            source_repo=state.source_repo,
            local_path=state.local_path,
        )

    def remove(self, key: str, db_only: bool = False) -> None:
        """
        Uninstall one package: run its uninstall script, remove its files and archive, and
        delete its record.
        """
        state = self.db.fetch_one(key)
        op = PackageOperation(state.pkg_id, OpState.RECORDED)
        try:
            if not db_only:
                self._uninstall(op, state)
            self.db.delete(key)
            op.transition(OpState.DELETED)
        except goopy.errors.GoopyError as e:
            op.fail(e)
            raise

        op.transition(OpState.DONE)
        goopy.logging.info("Removal of %s completed", state.pkg_id)

    def _uninstall(self, op: PackageOperation, state: state_models.PackageState) -> None:
        if state.package_spec.uninstall.path != "":
            archive = self._obtain_archive(
                op, state.pkg_id, state.download_url, state.checksum, state.local_path
            )
            workdir = archive.with_name(f"{archive.name}.unpacked")
            goopy.util.clear_path(workdir)
            try:
                goopy.tarfile.extract(archive, workdir)
                op.transition(OpState.SCRIPT_RUNNING)
                goopy.logging.info("Executing removal of %s", state.pkg_id)
                self._run_script(state.package_spec.uninstall, workdir, REMOVE_LOG, state.version)
            finally:
                goopy.util.remove_path(workdir)
        else:
            op.transition(OpState.SCRIPT_RUNNING)

        remove_files(state.installed_files)
        if state.local_path != "":
            goopy.util.remove_path(pathlib.Path(state.local_path))

    def verify(self, key: str) -> list[str]:
        """
        Check the recorded files of an installed package and run its verify script.
        Returns a description of every problem found.
        """
        state = self.db.fetch_one(key)
        problems: list[str] = []
        for path, checksum in sorted(state.installed_files.items()):
            file_path = pathlib.Path(path)
            if checksum == "":
                if not file_path.is_dir():
                    problems.append(f"directory {path} is missing")
            elif not file_path.is_file():
                problems.append(f"file {path} is missing")
            elif goopy.hash.hash_file(file_path, "sha256") != checksum:
                problems.append(f"file {path} has been modified")

        if state.package_spec.verify.path != "":
            op = PackageOperation(state.pkg_id, OpState.RECORDED)
            archive = self._obtain_archive(
                op, state.pkg_id, state.download_url, state.checksum, state.local_path
            )
            workdir = archive.with_name(f"{archive.name}.unpacked")
            goopy.util.clear_path(workdir)
            try:
                goopy.tarfile.extract(archive, workdir)
                self._run_script(state.package_spec.verify, workdir, VERIFY_LOG, state.version)
            except goopy.errors.ScriptError as e:
                problems.append(str(e))
            finally:
                goopy.util.remove_path(workdir)

        return problems
