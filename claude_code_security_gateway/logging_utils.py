import logging
import sys

LOGGER_NAME = 'claude_code_security_gateway'


def configure_logging(debug: bool = False, stream=None) -> logging.Logger:
    """Configure the package logger.

    stderr is the channel the agent reads block reasons from, so nothing is
    emitted there unless debug mode is on. Without a handler the root
    logger's last-resort handler would print warnings, hence the
    NullHandler.
    """
    logger = logging.getLogger(LOGGER_NAME)

    # Avoid duplicate handlers if configure_logging() is called multiple times.
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    logger.propagate = False

    if debug:
        handler = logging.StreamHandler(stream or sys.stderr)
        handler.setFormatter(logging.Formatter("DEBUG: %(name)s: %(message)s"))
        logger.addHandler(handler)
        logger.setLevel(logging.DEBUG)
    else:
        logger.addHandler(logging.NullHandler())
        logger.setLevel(logging.WARNING)

    return logger
