import concurrent.futures
import dataclasses
import pathlib
import posixpath
import threading
import urllib.parse

import requests

import goopy.cache
import goopy.errors
import goopy.logging
import goopy.settings
from goopy.models import pkg as pkg_models

_CHUNK_SIZE = 64 * 1024
_TIMEOUT = 60


def http_get(url: str, proxies: dict[str, str] | None, stream: bool = False) -> requests.Response:
    """
    GET url, retrying once when the connection itself fails.
    """
    try:
        return requests.get(url, proxies=proxies, stream=stream, timeout=_TIMEOUT)
    except requests.ConnectionError as e:
        goopy.logging.debug("GET %s failed (%s), retrying once", url, e)
        return requests.get(url, proxies=proxies, stream=stream, timeout=_TIMEOUT)


def package_url(repo_url: str, source: str) -> str:
    """
    Archive sources are relative to the directory holding the repo, so
    https://host/repos/stable with source pkgs/a.goo resolves to
    https://host/repos/pkgs/a.goo.
    """
    parsed = urllib.parse.urlsplit(repo_url)
    parent = posixpath.dirname(parsed.path.rstrip("/")) or "/"
    path = posixpath.normpath(posixpath.join(parent, source.lstrip("/")))
    return urllib.parse.urlunsplit((parsed.scheme, parsed.netloc, path, "", ""))


@dataclasses.dataclass(frozen=True)
class DownloadJob:
    pkg_id: pkg_models.PkgId
    url: str
    checksum: str


class Downloader:
    """
    Fetches package archives over HTTP into a DownloadCache.
    """

    def __init__(
        self,
        env: goopy.settings.Environment,
        cache: goopy.cache.DownloadCache,
        cancel_event: threading.Event | None = None,
    ) -> None:
        self.env = env
        self.cache = cache
        self.cancel_event = cancel_event if cancel_event is not None else threading.Event()

    def fetch(
        self,
        pkg_id: pkg_models.PkgId,
        url: str,
        checksum: str,
        cache: goopy.cache.DownloadCache | None = None,
    ) -> pathlib.Path:
        """
        Downloads url into the cache as pkg_id, verifying checksum.
        """
        if cache is None:
            cache = self.cache
        if self.cancel_event.is_set():
            raise goopy.errors.Cancelled(f"download of {pkg_id} was cancelled")

        goopy.logging.info("Downloading %s from %s", pkg_id, url)
        try:
            with http_get(url, self.env.config.proxies, stream=True) as response:
                if response.status_code != 200:
                    raise goopy.errors.DownloadError(
                        f"unable to download {url}: server returned {response.status_code}"
                    )
                return cache.store(
                    pkg_id, response.iter_content(_CHUNK_SIZE), checksum, self.cancel_event
                )
        except requests.RequestException as e:
            raise goopy.errors.DownloadError(f"unable to download {url}: {e}") from e

    def obtain(self, pkg_id: pkg_models.PkgId, url: str, checksum: str) -> pathlib.Path:
        """
        The cached archive when it is still valid, otherwise a fresh download.
        """
        cached = self.cache.lookup(pkg_id, checksum)
        if cached is not None:
            goopy.logging.debug("Using cached %s", cached)
            return cached

        if url == "":
            raise goopy.errors.DownloadError(
                f"{pkg_id} is not cached and no download URL is known for it"
            )
        return self.fetch(pkg_id, url, checksum)

    def prefetch(self, jobs: list[DownloadJob]) -> dict[pkg_models.PkgId, pathlib.Path]:
        """
        Obtains every job's archive concurrently. The first failure is raised once all
        running downloads have finished; remaining downloads are cancelled.
        """
        results: dict[pkg_models.PkgId, pathlib.Path] = {}
        if len(jobs) == 0:
            return results

        workers = min(self.env.config.parallel_downloads, len(jobs))
        with concurrent.futures.ThreadPoolExecutor(max_workers=workers) as executor:
            futures = {
                executor.submit(self.obtain, job.pkg_id, job.url, job.checksum): job
                for job in jobs
            }
            try:
                for future in concurrent.futures.as_completed(futures):
                    results[futures[future].pkg_id] = future.result()
            except BaseException as e:
                if not isinstance(e, Exception):
                    self.cancel_event.set()
                for future in futures:
                    future.cancel()
                raise

        return results
