import pathlib
import posixpath
import typing

import pydantic
import pydantic.alias_generators

import goopy.errors
from goopy.models import pkg as pkg_models

_MAX_TAGS = 10
_MAX_TAG_KEY_LEN = 127


def _none_as_empty_list(value: typing.Any) -> typing.Any:
    return [] if value is None else value


def _none_as_empty_dict(value: typing.Any) -> typing.Any:
    return {} if value is None else value


def _is_absolute(path: str) -> bool:
    return (
        pathlib.PurePosixPath(path).is_absolute() or pathlib.PureWindowsPath(path).is_absolute()
    )


class _PascalModel(pydantic.BaseModel):
    model_config = pydantic.ConfigDict(
        alias_generator=pydantic.alias_generators.to_pascal,
        populate_by_name=True,
        extra="ignore",
    )


class ExecFile(_PascalModel):
    """
    A script shipped inside a package archive.
    """

    path: str = ""
    args: typing.Annotated[list[str], pydantic.BeforeValidator(_none_as_empty_list)] = []
    # Exit codes accepted on top of 0
    exit_codes: typing.Annotated[list[int], pydantic.BeforeValidator(_none_as_empty_list)] = []

    @pydantic.field_validator("path")
    @classmethod
    def _normalize_path(cls, path: str) -> str:
        if path == "" or _is_absolute(path):
            return path
        # Collapse "." and ".." so the script cannot point outside the archive root
        return posixpath.normpath("/" + path.replace("\\", "/")).lstrip("/")

    def accepts(self, returncode: int) -> bool:
        return returncode == 0 or returncode in self.exit_codes


class DependencyRequest(typing.NamedTuple):
    name: str
    arch: str
    min_version: str

    def __str__(self) -> str:
        return f"{self.name}.{self.arch} >= {self.min_version}"

    def satisfied_by(self, pkg_id: pkg_models.PkgId) -> bool:
        return (
            pkg_id.name == self.name
            and pkg_models.arch_compatible(pkg_id.arch, self.arch)
            and pkg_models.compare_versions(pkg_id.version, self.min_version) >= 0
        )


class PkgSpec(_PascalModel):
    """
    The metadata of one package version, as shipped inside its archive and listed in repo
    manifests.
    """

    name: str
    version: str
    arch: str
    release_notes: typing.Annotated[list[str], pydantic.BeforeValidator(_none_as_empty_list)] = []
    description: str = ""
    license: str = ""
    authors: str = ""
    owners: str = ""
    source: str = ""
    tags: typing.Annotated[dict[str, str], pydantic.BeforeValidator(_none_as_empty_dict)] = {}
    # name or name.arch -> minimum version
    pkg_dependencies: typing.Annotated[
        dict[str, str], pydantic.BeforeValidator(_none_as_empty_dict)
    ] = {}
    replaces: typing.Annotated[list[str], pydantic.BeforeValidator(_none_as_empty_list)] = []
    conflicts: typing.Annotated[list[str], pydantic.BeforeValidator(_none_as_empty_list)] = []
    install: ExecFile = ExecFile()
    uninstall: ExecFile = ExecFile()
    verify: ExecFile = ExecFile()
    # archive-relative source -> install destination
    files: typing.Annotated[dict[str, str], pydantic.BeforeValidator(_none_as_empty_dict)] = {}

    @pydantic.field_validator("name")
    @classmethod
    def _check_name(cls, name: str) -> str:
        if name == "" or "." in name or any(c.isspace() for c in name):
            raise ValueError(f"invalid package name: {name!r}")
        return name

    @pydantic.field_validator("arch")
    @classmethod
    def _check_arch(cls, arch: str) -> str:
        if arch not in pkg_models.VALID_ARCHS:
            raise ValueError(f"invalid architecture: {arch!r}")
        return arch

    @pydantic.field_validator("version")
    @classmethod
    def _check_version(cls, version: str) -> str:
        if not pkg_models.is_valid_version(version):
            raise ValueError(f"invalid version: {version!r}")
        return version

    @pydantic.model_validator(mode="after")
    def _check_references(self) -> typing.Self:
        if len(self.tags) > _MAX_TAGS:
            raise ValueError("too many tags")
        for key in self.tags:
            if len(key) > _MAX_TAG_KEY_LEN:
                raise ValueError("tag key too large")

        for dep, min_version in self.pkg_dependencies.items():
            if dep == "" or dep.count(".") > 1 or min_version == "":
                raise ValueError(f"invalid dependency {dep!r}: {min_version!r}")

        for pattern in (*self.replaces, *self.conflicts):
            if pattern.strip() == "":
                raise ValueError("empty package pattern")

        for src in self.files:
            if _is_absolute(src):
                raise ValueError(f"{src!r} is an absolute path, expected relative")
        for exec_file in (self.install, self.uninstall, self.verify):
            if _is_absolute(exec_file.path):
                raise ValueError(f"{exec_file.path!r} is an absolute path, expected relative")

        return self

    def __str__(self) -> str:
        return str(self.pkg_id)

    @property
    def pkg_id(self) -> pkg_models.PkgId:
        return pkg_models.PkgId(self.name, self.arch, self.version)

    @property
    def key(self) -> str:
        return self.pkg_id.key

    def dependencies(self) -> list[DependencyRequest]:
        """
        Dependencies with their arch resolved. A dependency without an explicit arch takes
        the arch of the depending package.
        """
        requests: list[DependencyRequest] = []
        for dep, min_version in sorted(self.pkg_dependencies.items()):
            query = pkg_models.PkgQuery.parse(dep)
            arch = query.arch if query.arch is not None else self.arch
            requests.append(DependencyRequest(query.name, arch, min_version))
        return requests

    def replace_patterns(self) -> list[pkg_models.PkgPattern]:
        return [pkg_models.PkgPattern.parse(pattern) for pattern in self.replaces]

    def conflict_patterns(self) -> list[pkg_models.PkgPattern]:
        return [pkg_models.PkgPattern.parse(pattern) for pattern in self.conflicts]


class RepoSpec(_PascalModel):
    """
    One entry of a repository manifest.
    """

    checksum: str = ""
    # archive location relative to the repo
    source: str = ""
    package_spec: PkgSpec

    @property
    def pkg_id(self) -> pkg_models.PkgId:
        return self.package_spec.pkg_id


_repo_specs_adapter = pydantic.TypeAdapter(list[RepoSpec])


def parse_pkg_spec(data: str | bytes) -> PkgSpec:
    try:
        return PkgSpec.model_validate_json(data)
    except pydantic.ValidationError as e:
        raise goopy.errors.ParseError(f"invalid package spec: {e}") from e


def parse_manifest(data: str | bytes) -> list[RepoSpec]:
    try:
        return _repo_specs_adapter.validate_json(data)
    except pydantic.ValidationError as e:
        raise goopy.errors.ParseError(f"invalid repo manifest: {e}") from e
