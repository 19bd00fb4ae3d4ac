import logging
from typing import Any, Dict, Optional

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

logger = logging.getLogger("relay_service")


def configure_logging(settings: Optional[Dict[str, Any]] = None) -> None:
    """Apply the `logging` section of the settings to the package logger."""
    cfg = (settings or {}).get("logging", {}) or {}
    level = str(cfg.get("level", "INFO")).upper()
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(cfg.get("format", LOG_FORMAT)))
        logger.addHandler(handler)
    logger.setLevel(level)
