import logging
import logging.handlers
import os
import typing

if typing.TYPE_CHECKING:
    import pathlib

logger = logging.getLogger("goopy")
if "GOOPY_DEBUG" in os.environ and os.environ["GOOPY_DEBUG"] != "":
    logger.setLevel(logging.DEBUG)
else:
    logger.setLevel(logging.INFO)
logger.addHandler(logging.StreamHandler())

_LOG_FILE_MAX_BYTES = 10 * 1024 * 1024


def set_verbose(verbose: bool) -> None:
    if verbose:
        logger.setLevel(logging.DEBUG)


def add_file_handler(log_file: "pathlib.Path") -> None:
    """
    Mirror everything logged into a size-rotated file under the install root.
    """
    target = str(log_file.absolute())
    for handler in logger.handlers:
        if (
            isinstance(handler, logging.handlers.RotatingFileHandler)
            and handler.baseFilename == target
        ):
            return

    handler = logging.handlers.RotatingFileHandler(
        log_file, maxBytes=_LOG_FILE_MAX_BYTES, backupCount=1, encoding="utf-8"
    )
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(message)s"))
    logger.addHandler(handler)


def debug(msg: str, *args: object):
    logger.debug(msg, *args)


def info(msg: str, *args: object):
    logger.info(msg, *args)


def warning(msg: str, *args: object):
    logger.warning(msg, *args)


def error(msg: str, *args: object):
    logger.error(msg, *args)
