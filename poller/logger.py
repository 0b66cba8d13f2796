import logging
from typing import Optional

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "fatal": logging.CRITICAL,
    "critical": logging.CRITICAL,
}


def parse_level(name: Optional[str]) -> Optional[int]:
    """Map a level name to a logging level, or None if it is not recognised."""
    if not name:
        return None
    return LEVELS.get(name.strip().lower())


def setup_logging(level_name: str = "info") -> int:
    """Configure root logging. Unknown level names fall back to info."""
    level = parse_level(level_name)
    logging.basicConfig(level=level or logging.INFO, format=LOG_FORMAT, force=True)
    # requests' connection pool is chatty at debug level
    logging.getLogger("urllib3").setLevel(max(level or logging.INFO, logging.INFO))
    if level is None:
        logging.getLogger(__name__).warning(f"Unknown log level {level_name!r}, using info")
        return logging.INFO
    return level
