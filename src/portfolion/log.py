"""Process-wide logging setup."""

import logging

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def configure_logging(level: str = "INFO", fmt: str = LOG_FORMAT) -> None:
    """
    Configure the root logger once for the whole process.

    Library modules only ever call logging.getLogger(__name__); handlers
    and formats are decided here, by the program that runs them.
    """
    numeric = getattr(logging, str(level).upper(), logging.INFO)
    logging.basicConfig(level=numeric, format=fmt, datefmt=DATE_FORMAT)
    logging.getLogger("portfolion").setLevel(numeric)
    logging.getLogger("taskapp").setLevel(numeric)
