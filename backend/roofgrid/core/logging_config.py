"""
Logging setup for RoofGrid.

Services log through ``logging.getLogger(__name__)``; this module only
configures the root handler once at application start.
"""

import logging

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: str = "INFO") -> None:
    """Configure the root logger with the given level name."""
    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO

    logging.basicConfig(level=numeric_level, format=LOG_FORMAT)
    logging.getLogger("roofgrid").setLevel(numeric_level)
