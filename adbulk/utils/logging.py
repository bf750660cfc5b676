"""
Logging setup for adbulk.

Every module gets its logger from ``setup_logger(__name__)``. Level and an
optional log file come from ``ADBULK_LOG_LEVEL`` / ``ADBULK_LOG_FILE``, with
the plain ``LOG_LEVEL`` / ``LOG_FILE`` variables as fallback.
"""

import logging
import os
from typing import Any, MutableMapping, Optional, Tuple
from pydantic import BaseModel, Field

def _env(name: str, default: Optional[str] = None) -> Optional[str]:
    return os.getenv(f"ADBULK_{name}", os.getenv(name, default))

class LogConfig(BaseModel):
    """Logging configuration."""
    level: str = Field(default_factory=lambda: _env("LOG_LEVEL", "INFO").upper())
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    date_format: str = "%Y-%m-%d %H:%M:%S"
    file_path: Optional[str] = Field(default_factory=lambda: _env("LOG_FILE"))

def setup_logger(name: str, config: Optional[LogConfig] = None) -> logging.Logger:
    """
    Return the logger ``name``, attaching handlers on first use.

    Args:
        name: Logger name, normally ``__name__``
        config: Explicit configuration instead of the environment

    Returns:
        logging.Logger: Configured logger
    """
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger

    config = config or LogConfig()
    formatter = logging.Formatter(fmt=config.format, datefmt=config.date_format)
    handlers = [logging.StreamHandler()]
    if config.file_path:
        handlers.append(logging.FileHandler(config.file_path, encoding="utf-8"))

    logger.setLevel(config.level)
    for handler in handlers:
        handler.setLevel(config.level)
        handler.setFormatter(formatter)
        logger.addHandler(handler)
    return logger

class RequestLogAdapter(logging.LoggerAdapter):
    """Prefixes messages with the bulk request they belong to."""

    def __init__(self, logger: logging.Logger, request_id: str):
        super().__init__(logger, {"request_id": request_id})

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> Tuple[Any, MutableMapping[str, Any]]:
        return f"[{self.extra['request_id']}] {msg}", kwargs
