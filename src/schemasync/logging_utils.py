"""
Root logger setup for the schemasync CLI.
"""

import logging
from logging.handlers import RotatingFileHandler
from typing import List, Optional

from .config import LoggingConfig


def configure_logging(config: Optional[LoggingConfig] = None, debug: bool = False) -> None:
    """Install console and optional rotating file handlers on the root logger."""
    config = config or LoggingConfig()
    level = logging.DEBUG if debug else getattr(logging, config.level, logging.INFO)

    handlers: List[logging.Handler] = [logging.StreamHandler()]
    if config.file:
        handlers.append(
            RotatingFileHandler(
                config.file,
                maxBytes=config.max_size,
                backupCount=config.backup_count,
                encoding="utf-8",
            )
        )

    logging.basicConfig(
        level=level,
        format=config.format,
        handlers=handlers,
        force=True,
    )
    # asyncpg is chatty at DEBUG
    logging.getLogger("asyncpg").setLevel(max(level, logging.INFO))
