"""
Centralized logging configuration for dhtcrawler.

Provides colored console output, an optional log file and separate loggers
for each subsystem (controller, crawler, engine, geo, config).

Verbosity levels accepted on the command line and in the config file:

    0 fatal | 1 error | 2 warning | 3 info | 4 debug | 5 trace | 6 verbose
"""

import logging
import sys
from pathlib import Path
from typing import Optional

import colorlog

TRACE = 7
VERBOSE = 5

logging.addLevelName(TRACE, "TRACE")
logging.addLevelName(VERBOSE, "VERBOSE")

VERBOSITY_LEVELS = {
    0: logging.CRITICAL,
    1: logging.ERROR,
    2: logging.WARNING,
    3: logging.INFO,
    4: logging.DEBUG,
    5: TRACE,
    6: VERBOSE,
}

DEFAULT_VERBOSITY = 3


def level_from_verbosity(verbosity: int) -> int:
    """Map a 0..6 verbosity to a logging level, clamping out-of-range values."""
    verbosity = max(0, min(verbosity, max(VERBOSITY_LEVELS)))
    return VERBOSITY_LEVELS[verbosity]


class CrawlerLogger:
    """Centralized logger for crawler components"""

    _initialized = False
    _log_file: Optional[Path] = None

    @classmethod
    def setup(
        cls,
        level: int = logging.INFO,
        log_file: Optional[str] = None,
        force: bool = False,
    ):
        """
        Setup logging configuration.

        Args:
            level: Logging level (may be TRACE or VERBOSE)
            log_file: Optional file to mirror log output into
            force: Reconfigure even if logging was already set up
        """
        if cls._initialized and not force:
            return

        if log_file:
            cls._log_file = Path(log_file)
            cls._log_file.parent.mkdir(parents=True, exist_ok=True)
        else:
            cls._log_file = None

        root_logger = logging.getLogger("dhtcrawler")
        root_logger.setLevel(level)
        for handler in list(root_logger.handlers):
            root_logger.removeHandler(handler)
            handler.close()

        console_handler = colorlog.StreamHandler(sys.stdout)
        console_handler.setLevel(level)
        console_formatter = colorlog.ColoredFormatter(
            "%(log_color)s%(asctime)s [%(name)s] %(levelname)-8s%(reset)s %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
            log_colors={
                "VERBOSE": "white",
                "TRACE": "blue",
                "DEBUG": "cyan",
                "INFO": "green",
                "WARNING": "yellow",
                "ERROR": "red",
                "CRITICAL": "red,bg_white",
            },
        )
        console_handler.setFormatter(console_formatter)
        root_logger.addHandler(console_handler)

        if cls._log_file:
            file_handler = logging.FileHandler(cls._log_file)
            file_handler.setLevel(level)
            file_formatter = logging.Formatter(
                "%(asctime)s [%(name)s] %(levelname)-8s %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
            file_handler.setFormatter(file_formatter)
            root_logger.addHandler(file_handler)

        cls._initialized = True

    @classmethod
    def get_logger(cls, name: str) -> logging.Logger:
        """
        Get a logger for a specific subsystem.

        Args:
            name: Subsystem name (e.g., 'controller', 'crawler', 'engine')

        Returns:
            Logger instance
        """
        if not cls._initialized:
            cls.setup()

        return logging.getLogger(f"dhtcrawler.{name}")


# Convenience functions
def get_logger(name: str) -> logging.Logger:
    """Get a logger for a specific subsystem"""
    return CrawlerLogger.get_logger(name)


def setup_logging(verbosity: int = DEFAULT_VERBOSITY, log_file: Optional[str] = None):
    """Setup logging from a 0..6 verbosity"""
    CrawlerLogger.setup(level=level_from_verbosity(verbosity), log_file=log_file, force=True)
