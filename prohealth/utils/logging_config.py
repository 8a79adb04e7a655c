"""
Logging configuration.

Sets up a single stdout handler on the root logger so that module loggers
(logging.getLogger(__name__)) and the Flask app logger share one format.
Gunicorn captures stdout, so nothing else is needed in production.
"""
import os
import sys
import logging

LOG_FORMAT = '%(asctime)s %(levelname)s [%(name)s] %(message)s'

_configured = False


def setup_logging(level: str = None) -> None:
    """Configure root logging once per process."""
    global _configured
    if _configured:
        return

    level_name = (level or os.getenv('LOG_LEVEL', 'INFO')).upper()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))

    root = logging.getLogger()
    root.setLevel(getattr(logging, level_name, logging.INFO))
    root.addHandler(handler)

    # httpx logs every request at INFO
    logging.getLogger('httpx').setLevel(logging.WARNING)

    _configured = True
