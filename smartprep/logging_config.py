"""Logging setup shared by the API process and maintenance scripts."""

import logging

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: int | str = "INFO") -> logging.Logger:
    """Configure root logging once and return the package logger."""
    logging.basicConfig(level=level, format=LOG_FORMAT)
    return logging.getLogger("smartprep")
