"""
Logging setup - console texte lisible + fichier JSON optionnel.

Appelé une seule fois par le point d'entrée (api.main) avec la
configuration LoggingConfig.
"""
from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler

from config.settings import LoggingConfig
from shared.json_log_formatter import JsonLogFormatter

TEXT_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def setup_logging(config: LoggingConfig) -> logging.Logger:
    """Configurer le logger racine et retourner celui de l'application."""
    logging.basicConfig(
        level=getattr(logging, config.log_level, logging.INFO),
        format=TEXT_FORMAT,
    )
    root = logging.getLogger()
    root.setLevel(getattr(logging, config.log_level, logging.INFO))

    if config.log_file_path:
        config.log_file_path.parent.mkdir(parents=True, exist_ok=True)
        already = any(
            isinstance(h, RotatingFileHandler)
            and getattr(h, "baseFilename", None) == str(config.log_file_path.resolve())
            for h in root.handlers
        )
        if not already:
            handler = RotatingFileHandler(
                config.log_file_path,
                maxBytes=config.log_max_size_mb * 1024 * 1024,
                backupCount=config.log_backup_count,
                encoding="utf-8",
            )
            if config.log_format == "json":
                handler.setFormatter(JsonLogFormatter())
            else:
                handler.setFormatter(logging.Formatter(TEXT_FORMAT))
            root.addHandler(handler)

    return logging.getLogger("exchange-router")
