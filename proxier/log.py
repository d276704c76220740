"""Logging setup for the proxier command line."""
import logging

LOG_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"


class SafeUnicodeFilter(logging.Filter):
    """Filter to sanitize log messages containing surrogate characters.

    Service names and API error bodies can carry bytes that were decoded
    with surrogateescape; writing those to a UTF-8 stream would raise
    UnicodeEncodeError inside the logging handler.
    """

    def filter(self, record):
        """Sanitize the log message to handle surrogate characters."""
        if isinstance(record.msg, str):
            record.msg = _sanitize(record.msg)

        if record.args and isinstance(record.args, tuple):
            record.args = tuple(_sanitize(arg) if isinstance(arg, str) else arg for arg in record.args)

        return True


def _sanitize(text):
    try:
        text.encode("utf-8")
        return text
    except UnicodeEncodeError:
        return text.encode("utf-8", errors="replace").decode("utf-8")


def configure_logging(level="INFO"):
    """
    Install a root handler with timestamps and the surrogate filter.

    Args:
        level: Level name or number for the root logger (default: INFO)
    """
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler.addFilter(SafeUnicodeFilter())

    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(level.upper() if isinstance(level, str) else level)

    # The client logs every request at DEBUG.
    logging.getLogger("kubernetes").setLevel(max(root.level, logging.INFO))
    logging.getLogger("urllib3").setLevel(logging.WARNING)
