import logging
import sys

from ideaintake.config import settings

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

def setup_logging(level: str | None = None) -> logging.Logger:
    """Configure root logging once and return the service logger."""
    logging.basicConfig(
        level=getattr(logging, (level or settings.LOG_LEVEL).upper(), logging.INFO),
        format=LOG_FORMAT,
        stream=sys.stdout,
    )
    # the SDK logs every HTTP request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
    return logging.getLogger("ideaintake")
