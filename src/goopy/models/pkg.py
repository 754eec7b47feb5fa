import dataclasses
import functools
import re
import typing

import goopy.errors

NOARCH = "noarch"
VALID_ARCHS = ("noarch", "x86_64", "x86_32", "arm", "arm64")
WILDCARD = "*"

_VERSION_SPLIT = re.compile(r"([.+\-])")

# Rank of the separator that precedes a version component. The end of a version sorts
# after a pre-release ("-") component and before any other component, which makes
# "1.0-rc1" < "1.0" < "1.0+build" < "1.0.1".
_SEPARATOR_RANK = {"-": 0, "+": 2, ".": 3}
_END_OF_VERSION = (1,)


def _component_key(separator: str, component: str) -> tuple[int, int, int, str]:
    if component.isascii() and component.isdigit():
        return (_SEPARATOR_RANK[separator], 0, int(component), "")
    return (_SEPARATOR_RANK[separator], 1, 0, component)


def version_key(version: str) -> tuple[tuple[typing.Any, ...], ...]:
    """
    Sort key for a version string.

    Components are split on ".", "-" and "+"; numeric components compare numerically and
    sort before non-numeric ones, which compare lexicographically.
    """
    parts = _VERSION_SPLIT.split(version)
    key: list[tuple[typing.Any, ...]] = [_component_key(".", parts[0])]
    for separator, component in zip(parts[1::2], parts[2::2], strict=True):
        key.append(_component_key(separator, component))
    key.append(_END_OF_VERSION)
    return tuple(key)


def compare_versions(v1: str, v2: str) -> int:
    """
    Compare two version strings.
    Returns:
        -1 if v1 < v2
         0 if v1 == v2
         1 if v1 > v2
    """
    k1 = version_key(v1)
    k2 = version_key(v2)
    if k1 != k2:
        return -1 if k1 < k2 else 1

    # Versions such as "01" and "1" share a key, fall back to the raw strings
    if v1 == v2:
        return 0
    return -1 if v1 < v2 else 1


@functools.total_ordering
class Version:
    """
    A version string ordered by compare_versions.
    """

    def __init__(self, raw: str) -> None:
        if raw == "":
            raise goopy.errors.MalformedIdentifier("version string empty")
        self.raw = raw

    def __str__(self) -> str:
        return self.raw

    def __repr__(self) -> str:
        return f"Version({self.raw!r})"

    def __hash__(self) -> int:
        return hash(self.raw)

    def __eq__(self, rhs: object) -> bool:
        if not isinstance(rhs, Version):
            return NotImplemented
        return self.raw == rhs.raw

    def __lt__(self, rhs: object) -> bool:
        if not isinstance(rhs, Version):
            return NotImplemented
        return compare_versions(self.raw, rhs.raw) < 0


def _is_token(value: str) -> bool:
    return value != "" and value.isprintable() and "." not in value and not any(
        c.isspace() for c in value
    )


def is_valid_version(value: str) -> bool:
    return value != "" and value.isprintable() and not any(c.isspace() for c in value)


def arch_compatible(arch1: str, arch2: str) -> bool:
    """
    noarch is compatible with every concrete arch.
    """
    return arch1 == arch2 or NOARCH in (arch1, arch2)


@dataclasses.dataclass(frozen=True)
class PkgId:
    name: str
    arch: str
    version: str

    def __post_init__(self) -> None:
        if not (
            _is_token(self.name) and _is_token(self.arch) and is_valid_version(self.version)
        ):
            raise goopy.errors.MalformedIdentifier(
                f"invalid package identifier: name={self.name!r} arch={self.arch!r} "
                f"version={self.version!r}"
            )

    def __str__(self) -> str:
        return f"{self.name}.{self.arch}.{self.version}"

    @property
    def key(self) -> str:
        """
        name.arch, the unique key of an installed package.
        """
        return f"{self.name}.{self.arch}"

    @property
    def archive_name(self) -> str:
        return f"{self}.goo"

    @classmethod
    def parse(cls, pkg_str: str) -> "PkgId":
        segments = pkg_str.strip().split(".", 2)
        if len(segments) != 3:
            raise goopy.errors.MalformedIdentifier(
                f"{pkg_str!r} is not a valid package identifier, expecting name.arch.version"
            )
        name, arch, version = segments
        if not _is_token(name) or not _is_token(arch) or not is_valid_version(version):
            raise goopy.errors.MalformedIdentifier(
                f"{pkg_str!r} is not a valid package identifier, expecting name.arch.version"
            )
        return cls(name, arch, version)


@dataclasses.dataclass(frozen=True)
class PkgQuery:
    """
    A possibly partial package reference as typed by a user: name, name.arch or
    name.arch.version.
    """

    name: str
    arch: str | None = None
    version: str | None = None

    def __str__(self) -> str:
        return ".".join(part for part in (self.name, self.arch, self.version) if part)

    @classmethod
    def parse(cls, pkg_str: str) -> "PkgQuery":
        segments = pkg_str.strip().split(".", 2)
        if segments[0] == "" or any(segment == "" for segment in segments):
            raise goopy.errors.MalformedIdentifier(f"{pkg_str!r} is not a valid package reference")
        if len(segments) == 1:
            return cls(segments[0])
        if len(segments) == 2:
            return cls(segments[0], segments[1])
        return cls(segments[0], segments[1], segments[2])


@dataclasses.dataclass(frozen=True)
class PkgPattern:
    """
    A name.arch.version pattern as used by Replaces and Conflicts.

    "*" matches any value in its position, and so does an omitted position. A version
    ending in "+" matches that version or greater; any other value must match exactly.
    """

    name: str
    arch: str = WILDCARD
    version: str = WILDCARD

    def __str__(self) -> str:
        return f"{self.name}.{self.arch}.{self.version}"

    @classmethod
    def parse(cls, pattern: str) -> "PkgPattern":
        segments = pattern.strip().split(".", 2)
        if segments[0] == "":
            raise goopy.errors.MalformedIdentifier(f"{pattern!r} is not a valid package pattern")
        segments += [WILDCARD] * (3 - len(segments))
        name, arch, version = (segment if segment else WILDCARD for segment in segments)
        return cls(name, arch, version)

    def matches(self, pkg_id: PkgId) -> bool:
        if self.name != WILDCARD and self.name != pkg_id.name:
            return False
        if self.arch != WILDCARD and self.arch != pkg_id.arch:
            return False
        if self.version == WILDCARD:
            return True
        if len(self.version) > 1 and self.version.endswith("+"):
            return compare_versions(pkg_id.version, self.version[:-1]) >= 0
        return self.version == pkg_id.version
