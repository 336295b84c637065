import logging
import sys

from typing import Optional

# LogLevel type since logging lib doesn't define its own enum/type for it
LogLevel = int

LOGGER_PREFIX = 'idlewakeups'


def new_logger(
    name: Optional[str] = None,
    level: LogLevel = logging.INFO,
    outfile: Optional[str] = None,
    stderr: Optional[bool] = None,
) -> logging.Logger:
    """
    Create a new configured logger.

    :param name: The name of the logger, nested under the package logger.
        Defaults to the package logger itself.
    :param level: The logging level. Defaults to INFO.
    :param outfile: Optional to set. When set, will log to a file instead of stdout.
    :param stderr: Optional to set. If outfile is not set, and stderr is set to True, then will log to stderr instead of stdout.
    :return: The configured logger.
    """
    if name is None:
        name = LOGGER_PREFIX
    elif not name.startswith(LOGGER_PREFIX):
        name = f"{LOGGER_PREFIX}.{name}"

    log = logging.getLogger(name)
    log.setLevel(level)
    fmt = logging.Formatter('[%(asctime)s] %(levelname)s: %(message)s',
                            '%Y-%m-%d %H:%M:%S')

    if outfile is not None:
        handler = logging.FileHandler(outfile)
    elif stderr:
        handler = logging.StreamHandler(sys.stderr)
    else:
        handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(fmt)

    # Loggers are cached by name; don't stack handlers on repeated calls.
    for existing in list(log.handlers):
        log.removeHandler(existing)
    log.addHandler(handler)
    log.propagate = False

    return log


def set_level(level: LogLevel) -> None:
    """Change the level of every logger created through new_logger."""
    for name, log in logging.Logger.manager.loggerDict.items():
        if not isinstance(log, logging.Logger):
            continue
        if name == LOGGER_PREFIX or name.startswith(LOGGER_PREFIX + '.'):
            log.setLevel(level)
            for handler in log.handlers:
                handler.setLevel(level)


# package-wide logger, diagnostics go to stderr so reports on stdout stay clean
logger = new_logger(stderr=True)
