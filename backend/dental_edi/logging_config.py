import logging

from dental_edi.config import get_settings
from dental_edi.hipaa.log_sanitizer import PHISanitizationFilter

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: str | None = None) -> logging.Logger:
    """Configure the root logger for the EDI engine.

    Attaches the PHI sanitization filter to every root handler.  Filters on a
    logger only see records logged on that exact logger, so handler-level
    filters are the only way to cover ``dental_edi.*`` children.
    """
    root = logging.getLogger()
    root.setLevel((level or get_settings().LOG_LEVEL).upper())

    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(handler)

    for handler in root.handlers:
        if not any(isinstance(f, PHISanitizationFilter) for f in handler.filters):
            handler.addFilter(PHISanitizationFilter())

    return root
