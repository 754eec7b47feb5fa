import hashlib
import pathlib
import typing


def hash_file(path: pathlib.Path, sha_type: typing.Literal["sha256", "sha512"] = "sha256") -> str:
    """
    Returns the hex digest of the SHA256 hash of the given file.
    """
    if not path.is_file():
        raise RuntimeError(f"{path} is not a regular file.")

    with path.open("rb") as f:
        return hashlib.file_digest(f, sha_type).hexdigest()


def hash_bytes(b: bytes, sha_type: typing.Literal["sha256", "sha512"] = "sha256") -> str:
    return hashlib.new(sha_type, b).hexdigest()


def file_matches(path: pathlib.Path, checksum: str) -> bool:
    """
    Whether the file exists and hashes to checksum. Comparison is case-insensitive.
    """
    if not path.is_file():
        return False

    return hash_file(path, "sha256") == checksum.lower()
