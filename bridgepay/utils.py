"""Bunch of random utilities."""

import logging
import os
from contextlib import contextmanager
from pathlib import Path

from filelock import FileLock

logger = logging.getLogger(__name__)


def setup_console_logging(
    default_log_level="warning",
    simplified_logging=False,
    log_file: Path | None = None,
    clear_log_file=True,
) -> logging.Logger:
    """Set up log output for scripts.

    - Level comes from ``LOG_LEVEL`` environment variable, falling back to ``default_log_level``
    - Tune down some noisy dependency library logging

    :param log_file:
        Output both console and this log file.

    :return:
        Root logger
    """
    level = os.environ.get("LOG_LEVEL", default_log_level).upper()
    numeric_level = getattr(logging, level, None)
    assert isinstance(numeric_level, int), f"No level: {level}"

    if simplified_logging:
        fmt = "%(message)s"
        date_fmt = "%H:%M:%S"
    else:
        fmt = "%(asctime)s %(name)-40s [%(threadName)s] %(levelname)s %(message)s"
        date_fmt = "%Y-%m-%d %H:%M:%S"

    handlers: list[logging.Handler] = [logging.StreamHandler()]

    if log_file:
        assert isinstance(log_file, Path), "log_file must be a Path"
        log_file.parent.mkdir(parents=True, exist_ok=True)
        # The file always gets INFO, env var controls only terminal output
        file_handler = logging.FileHandler(log_file, mode="w" if clear_log_file else "a", encoding="utf-8")
        file_handler.setLevel(min(logging.INFO, numeric_level))
        handlers.append(file_handler)

    handlers[0].setLevel(numeric_level)
    logging.basicConfig(
        level=min(logging.INFO, numeric_level) if log_file else numeric_level,
        format=fmt,
        datefmt=date_fmt,
        handlers=handlers,
        force=True,
    )

    # Mute noise
    logging.getLogger("web3.providers.HTTPProvider").setLevel(logging.WARNING)
    logging.getLogger("web3.RequestManager").setLevel(logging.WARNING)
    logging.getLogger("urllib3.connectionpool").setLevel(logging.WARNING)
    return logging.getLogger()


@contextmanager
def wait_other_writers(path: Path | str, timeout: int = 120):
    """Wait other potential writers writing the same file.

    - Serialises read-modify-write of a shared file across threads and processes

    Example:

    .. code-block:: python

        with wait_other_writers(path):
            data = json.loads(path.read_text())
            data["counter"] += 1
            path.write_text(json.dumps(data))

    :param path:
        File that is being written

    :param timeout:
        How many seconds wait to acquire the lock file.

        Default 2 minutes.

    :raise filelock.Timeout:
        If the file writer is stuck with the lock.
    """

    if isinstance(path, str):
        path = Path(path)

    assert isinstance(path, Path), f"Not Path object: {path}"

    assert path.is_absolute(), f"Did not get an absolute path: {path}\nPlease use absolute paths for lock files to prevent polluting the local working directory."

    os.makedirs(path.parent, exist_ok=True)

    lock_file = path.parent / (path.name + ".lock")

    lock = FileLock(lock_file, timeout=timeout)

    if lock.is_locked:
        logger.info(
            "File %s locked for writing, waiting %f seconds",
            path,
            timeout,
        )

    with lock:
        yield
