import sys
from loguru import logger
from .config import settings

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level> | {extra}"
)


def setup_logging():
    """Install the service's single stderr sink and return the logger.

    JSON lines in prod, human-readable everywhere else.
    """
    logger.remove()
    if settings.app_env == "prod":
        logger.add(sys.stderr, level=settings.log_level, serialize=True)
    else:
        logger.add(sys.stderr, level=settings.log_level, format=LOG_FORMAT)
    logger.info("Logging configured", app=settings.app_name, env=settings.app_env)
    return logger
