import logging
import os
import sys

_root_configured = False

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
LOG_LEVEL_ENV = "CALCPLAN_LOG_LEVEL"


class Colors:
    """ANSI color codes for terminal output."""

    RESET = "\033[0m"
    RED = "\033[31m"
    YELLOW = "\033[33m"
    CYAN = "\033[36m"
    GREY = "\x1b[38;5;245m"
    BOLD_RED = "\x1b[31;1m"

    @staticmethod
    def disable():
        """Disable colors (for non-terminal output)."""
        for attr in dir(Colors):
            if not attr.startswith("_") and attr not in ("disable", "enabled"):
                setattr(Colors, attr, "")

    @staticmethod
    def enabled():
        """Check if colors are enabled."""
        stream = sys.stderr
        return hasattr(stream, "isatty") and stream.isatty() and os.getenv("TERM") != "dumb"


class ColoredFormatter(logging.Formatter):
    """Formatter that tints each record by level."""

    def format(self, record):
        level_colors = {
            logging.DEBUG: Colors.GREY,
            logging.INFO: Colors.CYAN,
            logging.WARNING: Colors.YELLOW,
            logging.ERROR: Colors.RED,
            logging.CRITICAL: Colors.BOLD_RED,
        }
        formatted = super().format(record)
        log_color = level_colors.get(record.levelno, Colors.RESET)
        return f"{log_color}{formatted}{Colors.RESET}"


def setup_logger(name: str, level: str | None = None) -> logging.Logger:
    """Return a named logger, configuring the root handler on first use.

    Logs go to stderr so scripts can print rendered output on stdout. The
    root level comes from $CALCPLAN_LOG_LEVEL (default INFO); an explicit
    level applies to the named logger and its children.
    """
    global _root_configured

    if not _root_configured:
        root_logger = logging.getLogger()
        root_logger.handlers.clear()
        root_level = (os.getenv(LOG_LEVEL_ENV) or "INFO").upper()
        root_logger.setLevel(getattr(logging, root_level, logging.INFO))

        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(ColoredFormatter(fmt=LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
        root_logger.addHandler(handler)
        _root_configured = True

    logger = logging.getLogger(name)
    if level:
        logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    return logger


if not Colors.enabled():
    Colors.disable()
