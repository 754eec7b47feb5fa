import hashlib
import os
import pathlib
import tempfile
import threading
import typing

import goopy.errors
import goopy.hash
import goopy.logging
import goopy.util
from goopy.models import pkg as pkg_models


class DownloadCache:
    """
    Package archives on local disk, named <name>.<arch>.<version>.goo.
    """

    def __init__(self, cache_dir: pathlib.Path) -> None:
        self.cache_dir = cache_dir

    def path_for(self, pkg_id: pkg_models.PkgId) -> pathlib.Path:
        return self.cache_dir / pkg_id.archive_name

    def lookup(self, pkg_id: pkg_models.PkgId, checksum: str) -> pathlib.Path | None:
        """
        Returns the cached archive if it exists and matches checksum. An empty checksum
        accepts any existing file.
        """
        path = self.path_for(pkg_id)
        if not path.is_file():
            return None

        if checksum != "" and not goopy.hash.file_matches(path, checksum):
            goopy.logging.info("Cached %s does not match its checksum, ignoring it", path)
            return None

        return path

    def store(
        self,
        pkg_id: pkg_models.PkgId,
        chunks: typing.Iterable[bytes],
        checksum: str,
        cancel_event: threading.Event | None = None,
    ) -> pathlib.Path:
        """
        Streams chunks into the cache and verifies the sha256 of the result.

        The archive only appears under its final name once fully written and verified. A
        mismatch or cancellation removes the partial file.
        """
        goopy.util.ensure_path(self.cache_dir)
        dest = self.path_for(pkg_id)

        fd, tmp_name = tempfile.mkstemp(dir=self.cache_dir, prefix=f".{dest.name}.", suffix=".part")
        tmp_path = pathlib.Path(tmp_name)
        hasher = hashlib.sha256()
        try:
            with os.fdopen(fd, "wb") as f:
                for chunk in chunks:
                    if cancel_event is not None and cancel_event.is_set():
                        raise goopy.errors.Cancelled(f"download of {pkg_id} was cancelled")
                    f.write(chunk)
                    hasher.update(chunk)

            digest = hasher.hexdigest()
            if checksum != "" and digest != checksum.lower():
                raise goopy.errors.ChecksumMismatch(
                    f"checksum of {pkg_id} is {digest}, expected {checksum}"
                )

            os.replace(tmp_path, dest)
        except BaseException:
            tmp_path.unlink(missing_ok=True)
            raise

        goopy.logging.debug("Stored %s at %s", pkg_id, dest)
        return dest

    def remove(self, path: pathlib.Path) -> None:
        goopy.util.remove_path(path)
