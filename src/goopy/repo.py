"""
Repository configuration: the .repo YAML files under the repo directory.

A repo file holds either a single entry or a list of entries:

    - name: stable
      url: https://example.com/goopy/stable
      priority: canary
"""

import dataclasses
import pathlib
import urllib.parse

import pydantic
import yaml

import goopy.errors
import goopy.logging
import goopy.priority
from goopy.models import repo as repo_models

REPO_FILE_SUFFIX = ".repo"


@dataclasses.dataclass
class RepoFile:
    path: pathlib.Path
    entries: list[repo_models.RepoEntry] = dataclasses.field(default_factory=list)

    def add_entry(self, entry: repo_models.RepoEntry) -> None:
        """
        Appends entry, dropping any entry sharing its name or URL.
        """
        self.entries = [
            other for other in self.entries if other.name != entry.name and other.url != entry.url
        ]
        self.entries.append(entry)

    def remove_entry(self, name: str) -> bool:
        kept = [entry for entry in self.entries if entry.name.lower() != name.lower()]
        found = len(kept) != len(self.entries)
        self.entries = kept
        return found

    def write_or_delete(self) -> None:
        if len(self.entries) == 0:
            self.path.unlink(missing_ok=True)
            return

        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(dump_entries(self.entries))


def dump_entries(entries: list[repo_models.RepoEntry]) -> str:
    return yaml.safe_dump(
        [entry.file_data() for entry in entries],
        sort_keys=False,
    )


def _has_content(text: str) -> bool:
    for line in text.splitlines():
        line = line.strip()
        if line != "" and not line.startswith("#"):
            return True
    return False


def load_repo_file(path: pathlib.Path) -> RepoFile:
    text = path.read_text()
    if not _has_content(text):
        return RepoFile(path)

    try:
        raw = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise goopy.errors.ParseError(f"unable to parse {path}: {e}") from e

    if isinstance(raw, dict):
        raw = [raw]
    if not isinstance(raw, list):
        raise goopy.errors.ParseError(f"{path} holds neither a repo entry nor a list of them")

    try:
        entries = [repo_models.RepoEntry.model_validate(item) for item in raw]
    except pydantic.ValidationError as e:
        raise goopy.errors.ParseError(f"invalid repo entry in {path}: {e}") from e

    return RepoFile(path, entries)


def config_files(repo_dir: pathlib.Path) -> list[RepoFile]:
    """
    Every parseable repo file in repo_dir. Broken files are logged and skipped.
    """
    if not repo_dir.is_dir():
        return []

    repo_files: list[RepoFile] = []
    for path in sorted(repo_dir.glob(f"*{REPO_FILE_SUFFIX}")):
        try:
            repo_files.append(load_repo_file(path))
        except (goopy.errors.ParseError, OSError) as e:
            goopy.logging.error("Skipping repo file %s: %s", path, e)
    return repo_files


def validate_repo_url(url: str, allow_unsafe_url: bool) -> bool:
    if allow_unsafe_url:
        return True

    if urllib.parse.urlsplit(url).scheme != "https":
        goopy.logging.error(
            "%s will not be used as a repository, only https endpoints are used unless "
            "allow_unsafe_url is set in goopy.conf",
            url,
        )
        return False

    return True


def repo_list(repo_dir: pathlib.Path, allow_unsafe_url: bool = False) -> dict[str, int]:
    """
    url -> priority for every configured repo. A URL listed several times keeps its
    highest priority.
    """
    result: dict[str, int] = {}
    for repo_file in config_files(repo_dir):
        for entry in repo_file.entries:
            if entry.url == "" or not validate_repo_url(entry.url, allow_unsafe_url):
                continue
            priority = entry.priority if entry.priority > 0 else goopy.priority.DEFAULT
            if entry.url not in result or priority > result[entry.url]:
                result[entry.url] = priority
    return result


def build_sources(
    sources: str, repo_dir: pathlib.Path, allow_unsafe_url: bool = False
) -> dict[str, int]:
    """
    An explicit comma separated list of URLs overrides the repo files; its repos all get
    the default priority.
    """
    if sources == "":
        return repo_list(repo_dir, allow_unsafe_url)

    return {
        url.strip(): goopy.priority.DEFAULT for url in sources.split(",") if url.strip() != ""
    }


def add_entry_to_file(entry: repo_models.RepoEntry, path: pathlib.Path) -> str:
    """
    Adds entry to the repo file at path, creating it if needed. Returns the YAML of the
    added entry.
    """
    repo_file = load_repo_file(path) if path.exists() else RepoFile(path)
    repo_file.add_entry(entry)
    repo_file.write_or_delete()
    return dump_entries([entry])


def remove_entry_from_files(name: str, repo_dir: pathlib.Path) -> list[pathlib.Path]:
    """
    Removes every entry called name. Files left without entries are deleted. Returns the
    files that changed.
    """
    changed: list[pathlib.Path] = []
    for repo_file in config_files(repo_dir):
        if repo_file.remove_entry(name):
            changed.append(repo_file.path)
            repo_file.write_or_delete()
    return changed
