import pathlib
import stat
import tarfile

import goopy.errors
import goopy.system
from goopy.models import spec as spec_models

PKGSPEC_SUFFIX = ".pkgspec"


def writable_extract_filter(tarinfo: tarfile.TarInfo, dest_path: str) -> tarfile.TarInfo | None:
    # Colon is not a valid character in a path on Windows
    if goopy.system.is_windows() and ":" in tarinfo.name:
        return None

    if tarinfo.isdir() or tarinfo.isreg():
        tarinfo.mode |= stat.S_IWUSR

    return tarfile.tar_filter(tarinfo, str(dest_path))


def extract(archive: pathlib.Path, dest_path: pathlib.Path) -> None:
    """
    Extracts a package archive, making files writable. Members escaping dest_path are
    refused.
    """
    try:
        with tarfile.open(archive, "r:gz") as tar:
            tar.extractall(dest_path, filter=writable_extract_filter)
    except (tarfile.TarError, EOFError) as e:
        raise goopy.errors.ParseError(f"unable to extract {archive}: {e}") from e


def read_pkg_spec(archive: pathlib.Path) -> spec_models.PkgSpec:
    """
    Reads the package spec member of a package archive without extracting it.
    """
    try:
        with tarfile.open(archive, "r:gz") as tar:
            for member in tar:
                if not member.isreg() or not member.name.endswith(PKGSPEC_SUFFIX):
                    continue
                f = tar.extractfile(member)
                if f is None:
                    continue
                with f:
                    return spec_models.parse_pkg_spec(f.read())
    except (tarfile.TarError, EOFError) as e:
        raise goopy.errors.ParseError(f"unable to read {archive}: {e}") from e

    raise goopy.errors.ParseError(f"no file with suffix {PKGSPEC_SUFFIX} found in {archive}")
