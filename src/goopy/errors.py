class GoopyError(RuntimeError):
    """
    Base class of every failure the manager reports to the user.

    Each subclass maps to one exit code so the CLI can translate errors without
    inspecting messages.
    """

    exit_code: int = 1


class ParseError(GoopyError):
    """A config file, repo file or manifest is malformed."""

    exit_code = 2


class MalformedIdentifier(ParseError):
    pass


class RepoUnavailable(GoopyError):
    exit_code = 3


class NoCandidate(GoopyError):
    exit_code = 4


class NotInstalled(GoopyError):
    exit_code = 4


class UnsatisfiableDependency(GoopyError):
    exit_code = 5


class DependencyCycle(GoopyError):
    exit_code = 5


class ReplacementCycle(GoopyError):
    exit_code = 5


class PackageConflict(GoopyError):
    exit_code = 5


class DownloadError(GoopyError):
    exit_code = 6


class ChecksumMismatch(GoopyError):
    exit_code = 6


class ScriptError(GoopyError):
    exit_code = 7

    def __init__(self, message: str, returncode: int | None = None) -> None:
        super().__init__(message)
        self.returncode = returncode


class DBBusy(GoopyError):
    exit_code = 8


class DBCorrupt(GoopyError):
    exit_code = 9


class FileConflict(GoopyError):
    exit_code = 10


class Cancelled(GoopyError):
    exit_code = 130
