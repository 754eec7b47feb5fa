import pathlib
import shutil
import threading
import typing

import goopy.cache
import goopy.clean
import goopy.db
import goopy.download
import goopy.errors
import goopy.hash
import goopy.index
import goopy.install
import goopy.lock
import goopy.logging
import goopy.repo
import goopy.resolver
import goopy.settings
import goopy.tarfile
import goopy.util
from goopy.models import pkg as pkg_models
from goopy.models import repo as repo_models
from goopy.models import spec as spec_models
from goopy.models import state as state_models


class Manager:
    """
    Wires repos, the database, the cache and the installer together for one invocation.

    Use as a context manager: entering takes the root lock and opens the database, exiting
    releases both.
    """

    def __init__(
        self,
        env: goopy.settings.Environment,
        *,
        sources: str = "",
        cancel_event: threading.Event | None = None,
        repo_map: repo_models.RepoMap | None = None,
    ) -> None:
        self.env = env
        self.sources = sources
        self.cancel_event = cancel_event if cancel_event is not None else threading.Event()
        self.cache = goopy.cache.DownloadCache(env.cache_dir)
        self.downloader = goopy.download.Downloader(env, self.cache, self.cancel_event)
        self.index = goopy.index.RepoIndex(env)
        self._repo_map = repo_map
        self._lock = goopy.lock.FileLock(env.lock_file, env.config.lock_timeout)
        self._db: goopy.db.StateDB | None = None

    def __enter__(self) -> typing.Self:
        goopy.util.ensure_path(self.env.root)
        goopy.util.ensure_path(self.env.cache_dir)
        goopy.logging.add_file_handler(self.env.log_file)
        self._lock.acquire()
        try:
            self._db = goopy.db.StateDB.open(self.env.db_file)
        except BaseException:
            self._lock.release()
            raise
        return self

    def __exit__(self, *exc_info: object) -> None:
        try:
            if self._db is not None:
                self._db.close()
                self._db = None
        finally:
            self._lock.release()

    @property
    def db(self) -> goopy.db.StateDB:
        if self._db is None:
            raise RuntimeError("Manager used outside of its context")
        return self._db

    @property
    def repo_map(self) -> repo_models.RepoMap:
        if self._repo_map is None:
            sources = goopy.repo.build_sources(
                self.sources, self.env.repo_dir, self.env.config.allow_unsafe_url
            )
            self._repo_map = self.index.repo_map(sources)
        return self._repo_map

    def resolver(self) -> goopy.resolver.Resolver:
        return goopy.resolver.Resolver(self.repo_map, self.db.fetch_all(), self.env.config.archs)

    def installer(self) -> goopy.install.Installer:
        return goopy.install.Installer(self.env, self.db, self.downloader, self.cancel_event)

    def _check_cancelled(self) -> None:
        if self.cancel_event.is_set():
            raise goopy.errors.Cancelled("operation cancelled")

    def execute(
        self,
        plan: goopy.resolver.Plan,
        local_archives: dict[pkg_models.PkgId, pathlib.Path] | None = None,
        db_only: bool = False,
    ) -> list[pkg_models.PkgId]:
        """
        Apply a plan step by step. Archives are fetched up front, concurrently; the steps
        themselves run one at a time and the first failure aborts the rest.
        """
        if local_archives is None:
            local_archives = {}

        jobs: list[goopy.download.DownloadJob] = []
        for step in plan:
            if step.action != "install" or step.candidate is None or step.pkg_id in local_archives:
                continue
            repo_spec = step.candidate.repo_spec
            jobs.append(
                goopy.download.DownloadJob(
                    step.pkg_id,
                    goopy.download.package_url(step.candidate.repo_url, repo_spec.source),
                    repo_spec.checksum,
                )
            )
        archives = {**self.downloader.prefetch(jobs), **local_archives}

        installer = self.installer()
        done: list[pkg_models.PkgId] = []
        for step in plan:
            self._check_cancelled()
            goopy.logging.debug("Applying %s", step)
            if step.action == "remove":
                installer.remove(step.pkg_id.key, db_only=db_only)
            elif step.action == "reinstall":
                if step.state is None:
                    raise RuntimeError(f"reinstall step {step} has no installed state")
                if step.candidate is not None:
                    installer.reinstall(
                        step.state, step.candidate.repo_spec, step.candidate.repo_url
                    )
                else:
                    installer.reinstall(step.state)
            else:
                candidate = step.candidate
                if candidate is None:
                    raise RuntimeError(f"install step {step} has no candidate")
                installer.install(
                    candidate.spec,
                    checksum=candidate.repo_spec.checksum,
                    download_url=(
                        goopy.download.package_url(candidate.repo_url, candidate.repo_spec.source)
                        if candidate.repo_url != ""
                        else ""
                    ),
                    source_repo=candidate.repo_url,
                    archive=archives.get(step.pkg_id),
                )
            done.append(step.pkg_id)
        return done

    def _local_candidate(self, archive: pathlib.Path) -> goopy.resolver.Candidate:
        spec = goopy.tarfile.read_pkg_spec(archive)
        repo_spec = spec_models.RepoSpec(
            checksum=goopy.hash.hash_file(archive, "sha256"), source="", package_spec=spec
        )
        return goopy.resolver.Candidate("", 0, repo_spec)

    def _copy_to_cache(self, archive: pathlib.Path, pkg_id: pkg_models.PkgId) -> pathlib.Path:
        dest = self.cache.path_for(pkg_id)
        if dest.absolute() != archive.absolute():
            goopy.util.ensure_path(dest.parent)
            shutil.copyfile(archive, dest)
        return dest

    def install(self, packages: list[str], reinstall: bool = False) -> list[pkg_models.PkgId]:
        """
        Install each requested package with whatever it depends on. A request is a
        package name, name.arch, name.arch.version or the path of a local archive.
        """
        done: list[pkg_models.PkgId] = []
        for package in packages:
            self._check_cancelled()
            resolver = self.resolver()
            local_archives: dict[pkg_models.PkgId, pathlib.Path] = {}

            archive = pathlib.Path(package)
            if package.endswith(".goo") and archive.is_file():
                candidate = self._local_candidate(archive)
                local_archives[candidate.pkg_id] = self._copy_to_cache(archive, candidate.pkg_id)
                query = pkg_models.PkgQuery(
                    candidate.spec.name, candidate.spec.arch, candidate.spec.version
                )
            else:
                candidate = None
                query = pkg_models.PkgQuery.parse(package)

            if reinstall:
                state = resolver.find_installed(query)
                if state is None:
                    goopy.logging.info("%s is not installed, not reinstalling it", package)
                    continue
                plan = resolver.plan_reinstall(state)
            else:
                if candidate is None:
                    candidate = resolver.find(query)
                plan = resolver.plan_install([candidate])

            if plan.is_empty():
                continue
            done += self.execute(plan, local_archives)
        return done

    def remove(self, packages: list[str], db_only: bool = False) -> list[pkg_models.PkgId]:
        """
        Remove packages and, first, every installed package that depends on them.
        """
        resolver = self.resolver_for_installed()
        keys: list[str] = []
        for package in packages:
            state = resolver.find_installed(pkg_models.PkgQuery.parse(package))
            if state is None:
                raise goopy.errors.NotInstalled(f"{package} is not installed")
            keys.append(state.key)

        plan = resolver.plan_remove(keys)
        return self.execute(plan, db_only=db_only)

    def resolver_for_installed(self) -> goopy.resolver.Resolver:
        """
        A resolver over the installed packages only, for work that needs no repos.
        """
        return goopy.resolver.Resolver({}, self.db.fetch_all(), self.env.config.archs)

    def check(self) -> list[goopy.resolver.Update]:
        return self.resolver().updates()

    def update(self) -> list[pkg_models.PkgId]:
        """
        Move every installed package to the version its repos select, up or down.
        """
        resolver = self.resolver()
        updates = resolver.updates()
        if len(updates) == 0:
            goopy.logging.info("No updates available for any installed packages")
            return []

        for update in updates:
            goopy.logging.info(
                "%s, %s --> %s", update.pkg_id.key, update.installed_version, update.pkg_id.version
            )
        plan = resolver.plan_install([update.candidate for update in updates])
        return self.execute(plan)

    def clean(self, all_: bool = False, packages: list[str] | None = None) -> list[pathlib.Path]:
        if all_:
            goopy.logging.info("Removing all files and directories in cache")
            return goopy.clean.clean_all(self.env.cache_dir)

        if packages:
            goopy.logging.info("Removing cached archives of %s", ", ".join(packages))
            return goopy.clean.clean_packages(self.db.fetch_all(), set(packages))

        goopy.logging.info("Removing cache entries of packages that are not installed")
        return goopy.clean.clean_uninstalled(self.env.cache_dir, self.db.fetch_all())

    def installed(self, name_filter: str = "") -> list[state_models.PackageState]:
        return self.db.fetch_all(name_filter)

    def verify(self, packages: list[str]) -> dict[str, list[str]]:
        """
        installed key -> problems found. An empty list means the package verified.
        """
        resolver = self.resolver_for_installed()
        installer = self.installer()
        results: dict[str, list[str]] = {}
        for package in packages:
            state = resolver.find_installed(pkg_models.PkgQuery.parse(package))
            if state is None:
                raise goopy.errors.NotInstalled(f"{package} is not installed")
            results[state.key] = installer.verify(state.key)
        return results

    def latest(self, package: str) -> goopy.resolver.Candidate:
        return self.resolver().find(pkg_models.PkgQuery.parse(package))

    def available(self, name_filter: str = "") -> list[tuple[str, spec_models.RepoSpec]]:
        """
        (repo url, package) for every package offered whose name contains the filter.
        """
        result: list[tuple[str, spec_models.RepoSpec]] = []
        for url, repo in sorted(self.repo_map.items()):
            for repo_spec in repo.packages:
                if name_filter in repo_spec.package_spec.name:
                    result.append((url, repo_spec))
        return sorted(
            result,
            key=lambda item: (
                item[1].package_spec.name,
                item[1].package_spec.arch,
                pkg_models.Version(item[1].package_spec.version),
                item[0],
            ),
        )

    def download(self, packages: list[str], dest_dir: pathlib.Path) -> list[pathlib.Path]:
        """
        Fetch the selected archive of each package into dest_dir, verifying checksums.
        """
        resolver = self.resolver()
        dest_cache = goopy.cache.DownloadCache(dest_dir)
        paths: list[pathlib.Path] = []
        for package in packages:
            candidate = resolver.find(pkg_models.PkgQuery.parse(package))
            url = goopy.download.package_url(candidate.repo_url, candidate.repo_spec.source)
            paths.append(
                self.downloader.fetch(
                    candidate.pkg_id, url, candidate.repo_spec.checksum, cache=dest_cache
                )
            )
        return paths
