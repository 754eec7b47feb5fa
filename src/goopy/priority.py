"""
Repository priorities.

A repo's priority decides which repo wins when several offer the same package: the
highest priority group always wins, whatever versions lower priority repos carry. Repo
files may give a priority as an integer or as one of the well-known names below.
"""

import goopy.errors

DEFAULT = 500
CANARY = 1000
PIN = 1500
ROLLBACK = 1500

_NAME_TO_PRIORITY = {
    "default": DEFAULT,
    "canary": CANARY,
    "pin": PIN,
    "rollback": ROLLBACK,
}

# PIN and ROLLBACK share a value; "rollback" is the name written back out.
_PRIORITY_TO_NAME = {
    DEFAULT: "default",
    CANARY: "canary",
    ROLLBACK: "rollback",
}


def from_string(value: str) -> int:
    """
    Parses a well-known priority name (case-insensitive) or a decimal integer.
    """
    name = value.strip().lower()
    if name in _NAME_TO_PRIORITY:
        return _NAME_TO_PRIORITY[name]

    try:
        return int(name)
    except ValueError:
        raise goopy.errors.ParseError(
            f"{value!r} is neither an integer nor a known priority name"
        ) from None


def to_name(priority: int) -> str | None:
    return _PRIORITY_TO_NAME.get(priority)


def to_string(priority: int) -> str:
    name = to_name(priority)
    return name if name is not None else str(priority)
