"""
Logging setup for the matching service.

Loggers under ``unmute`` follow LOG_LEVEL. The AWS, OpenSearch and Gremlin
transports stay at WARNING unless LOG_LEVEL is DEBUG.
"""

import logging
import sys
from typing import Optional

from .config import AppConfig, config as default_config

PACKAGE_LOGGER = 'unmute'
SDK_LOGGERS = ('boto3', 'botocore', 'urllib3', 'opensearch', 'gremlinpython', 'aiohttp')
LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def _level(config: AppConfig) -> int:
    return getattr(logging, config.log_level.upper(), logging.INFO)


def setup_logging(config: Optional[AppConfig] = None) -> None:
    """
    Configure the root handler, the package logger and the SDK loggers.

    Args:
        config: AppConfig instance, uses default if None
    """
    level = _level(config or default_config)

    logging.basicConfig(level=level, format=LOG_FORMAT, handlers=[logging.StreamHandler(sys.stdout)])
    logging.getLogger(PACKAGE_LOGGER).setLevel(level)

    sdk_level = logging.DEBUG if level <= logging.DEBUG else logging.WARNING
    for name in SDK_LOGGERS:
        logging.getLogger(name).setLevel(sdk_level)


def get_logger(name: str, config: Optional[AppConfig] = None) -> logging.Logger:
    """
    Module logger.

    Loggers inside the package inherit the package level; anything else gets
    LOG_LEVEL set on it directly.
    """
    logger = logging.getLogger(name)
    if not name.startswith(PACKAGE_LOGGER):
        logger.setLevel(_level(config or default_config))
    return logger
