# common/logging_config.py
import logging
import os

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(service_name: str) -> logging.Logger:
    """
    Configure root logging once per process and return the service logger.

    The level comes from ``LOG_LEVEL`` (default INFO).

    Parameters
    ----------
    service_name : str
        Name of the service logger, e.g. ``"rooms"``.

    Returns
    -------
    logging.Logger
        Logger named after the service.
    """
    level = os.getenv("LOG_LEVEL", "INFO").upper()
    logging.basicConfig(level=level, format=LOG_FORMAT)
    return logging.getLogger(service_name)
