# backend/logging_setup.py
"""
Logging configuration for the ProductiFlow backend.

All components log through children of the 'productiflow' logger
(productiflow.store, productiflow.sync, ...). The host application calls
setup_logging() once at startup; library modules never add handlers.
"""
import os
import logging
from datetime import datetime
from typing import Optional

from .config import Config

APP_LOGGER_NAME = 'productiflow'
LOG_FILE_NAME = 'productiflow.log'


class MicrosecondFormatter(logging.Formatter):
    def formatTime(self, record, datefmt=None):
        dt = datetime.fromtimestamp(record.created)
        return dt.strftime('%Y-%m-%d %H:%M:%S.%f')


def get_logger(component: str) -> logging.Logger:
    """Return the logger for a backend component, e.g. get_logger('sync')."""
    return logging.getLogger(f'{APP_LOGGER_NAME}.{component}')


def setup_logging(config: Config, level: int = logging.INFO, console: Optional[bool] = None) -> logging.Logger:
    """Attach file (and optionally console) handlers to the application logger.

    Safe to call more than once: existing handlers are replaced rather than
    duplicated. Console output defaults to on outside production.
    """
    os.makedirs(config.log_dir, exist_ok=True)

    logger = logging.getLogger(APP_LOGGER_NAME)
    logger.setLevel(level)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    formatter = MicrosecondFormatter('%(asctime)s [%(levelname)s] %(message)s')

    file_handler = logging.FileHandler(
        os.path.join(config.log_dir, LOG_FILE_NAME), mode='a', encoding='utf-8'
    )
    file_handler.setFormatter(formatter)
    logger.addHandler(file_handler)

    if console is None:
        console = config.environment != 'production'
    if console:
        stream_handler = logging.StreamHandler()
        stream_handler.setFormatter(formatter)
        logger.addHandler(stream_handler)

    logger.propagate = False
    logger.info(f"[Logging] Initialized (environment={config.environment}, log_dir={config.log_dir})")
    return logger
