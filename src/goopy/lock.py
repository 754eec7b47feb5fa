import os
import pathlib
import time
import typing

import goopy.errors
import goopy.logging
import goopy.system

_RETRY_INTERVAL = 0.1
_WAIT_MESSAGE_INTERVAL = 5.0


def _try_lock(fd: int) -> None:
    if goopy.system.is_windows():
        import msvcrt

        os.lseek(fd, 0, os.SEEK_SET)
        msvcrt.locking(fd, msvcrt.LK_NBLCK, 1)  # pyright: ignore[reportAttributeAccessIssue]
    else:
        import fcntl

        fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)


def _unlock(fd: int) -> None:
    if goopy.system.is_windows():
        import msvcrt

        os.lseek(fd, 0, os.SEEK_SET)
        msvcrt.locking(fd, msvcrt.LK_UNLCK, 1)  # pyright: ignore[reportAttributeAccessIssue]
    else:
        import fcntl

        fcntl.flock(fd, fcntl.LOCK_UN)


class FileLock:
    """
    An exclusive advisory lock on a file, held for the lifetime of one process operation.

    Acquisition retries until timeout seconds have passed and then raises DBBusy.
    """

    def __init__(self, path: pathlib.Path, timeout: float = 0.0) -> None:
        self.path = path
        self.timeout = timeout
        self._fd: int | None = None

    @property
    def locked(self) -> bool:
        return self._fd is not None

    def acquire(self) -> None:
        if self._fd is not None:
            raise RuntimeError(f"{self.path} is already locked by this process")

        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(self.path, os.O_RDWR | os.O_CREAT, 0o644)
        start = time.monotonic()
        last_message = start
        while True:
            try:
                _try_lock(fd)
                break
            except OSError:
                now = time.monotonic()
                if now - start >= self.timeout:
                    os.close(fd)
                    raise goopy.errors.DBBusy(
                        f"{self.path} is locked by another process"
                    ) from None
                if now - last_message >= _WAIT_MESSAGE_INTERVAL:
                    goopy.logging.info("Waiting for another goopy process to finish...")
                    last_message = now
                time.sleep(_RETRY_INTERVAL)

        os.ftruncate(fd, 0)
        os.write(fd, str(os.getpid()).encode())
        self._fd = fd
        goopy.logging.debug("Acquired lock %s", self.path)

    def release(self) -> None:
        if self._fd is None:
            return

        try:
            _unlock(self._fd)
        finally:
            os.close(self._fd)
            self._fd = None
        goopy.logging.debug("Released lock %s", self.path)

    def __enter__(self) -> typing.Self:
        self.acquire()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.release()
