import gzip
import json
import time
import typing

import requests

import goopy.download
import goopy.errors
import goopy.hash
import goopy.logging
import goopy.settings
import goopy.util
from goopy.models import repo as repo_models
from goopy.models import spec as spec_models

if typing.TYPE_CHECKING:
    import pathlib

_MANIFEST_NAMES = ("index.gz", "index")


class RepoIndex:
    """
    Loads repository manifests, keeping a copy of each under the cache directory that is
    reused while younger than cache_life.
    """

    def __init__(self, env: goopy.settings.Environment) -> None:
        self.env = env
        self._manifests: dict[str, list[spec_models.RepoSpec]] = {}

    def repo_map(self, sources: dict[str, int]) -> repo_models.RepoMap:
        """
        Build the RepoMap for url -> priority. A repo that cannot be loaded is logged and
        left out.
        """
        repo_map: repo_models.RepoMap = {}
        for url, priority in sorted(sources.items()):
            try:
                packages = self.manifest(url)
            except (goopy.errors.RepoUnavailable, goopy.errors.ParseError) as e:
                goopy.logging.error("Error reading repo %s: %s", url, e)
                continue
            repo_map[url] = repo_models.Repo(priority=priority, packages=packages)

        if len(sources) > 0 and len(repo_map) == 0:
            goopy.logging.warning("None of the configured repos could be loaded")

        return repo_map

    def manifest(self, url: str) -> list[spec_models.RepoSpec]:
        if url in self._manifests:
            return self._manifests[url]

        cache_file = self.cache_file(url)
        packages = self._load_cached(cache_file)
        if packages is None:
            goopy.logging.info(
                "Fetching repo content for %s, cache either doesn't exist or is older than %ds",
                url,
                self.env.config.cache_life,
            )
            raw = self._fetch(url)
            packages = spec_models.parse_manifest(raw)
            self._write_cache(cache_file, url, packages)
        else:
            goopy.logging.info("Using cached repo content for %s", url)

        self._manifests[url] = packages
        return packages

    def cache_file(self, url: str) -> "pathlib.Path":
        return self.env.cache_dir / f"{goopy.hash.hash_bytes(url.encode(), 'sha256')}.rs"

    def _load_cached(self, cache_file: "pathlib.Path") -> list[spec_models.RepoSpec] | None:
        if not cache_file.is_file():
            return None
        if time.time() - cache_file.stat().st_mtime >= self.env.config.cache_life:
            return None

        try:
            return spec_models.parse_manifest(cache_file.read_bytes())
        except goopy.errors.ParseError as e:
            goopy.logging.warning("Ignoring unreadable cached manifest %s: %s", cache_file, e)
            return None

    def _fetch(self, url: str) -> bytes:
        base = url.rstrip("/")
        last_error = ""
        for manifest_name in _MANIFEST_NAMES:
            manifest_url = f"{base}/{manifest_name}"
            try:
                response = goopy.download.http_get(manifest_url, self.env.config.proxies)
            except requests.RequestException as e:
                raise goopy.errors.RepoUnavailable(f"unable to fetch {manifest_url}: {e}") from e

            if response.status_code != 200:
                last_error = f"{manifest_url} returned {response.status_code}"
                goopy.logging.debug("%s, trying next manifest name", last_error)
                continue

            if manifest_name.endswith(".gz"):
                try:
                    return gzip.decompress(response.content)
                except (OSError, EOFError) as e:
                    raise goopy.errors.RepoUnavailable(
                        f"{manifest_url} is not valid gzip: {e}"
                    ) from e
            return response.content

        raise goopy.errors.RepoUnavailable(f"no manifest found for {url}: {last_error}")

    def _write_cache(
        self, cache_file: "pathlib.Path", url: str, packages: list[spec_models.RepoSpec]
    ) -> None:
        try:
            goopy.util.ensure_path(cache_file.parent)
            cache_file.write_text(
                json.dumps([rs.model_dump(by_alias=True, mode="json") for rs in packages])
            )
            cache_file.with_suffix(".url").write_text(url)
        except OSError as e:
            goopy.logging.error("Failed to cache manifest of %s: %s", url, e)
