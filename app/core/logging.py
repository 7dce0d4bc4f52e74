# app/core/logging.py
import logging
from app.core.config import settings

# Level follows the environment: verbose locally and under test, INFO elsewhere
if settings.ENVIRONMENT in ("development", "test"):
    log_level = logging.DEBUG
else:
    log_level = logging.INFO

# Don't reconfigure when a runner (uvicorn --reload, pytest) already installed handlers
if not logging.root.handlers:
    logging.basicConfig(level=log_level, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')

# Chatty third-party loggers
for noisy in ("httpx", "httpcore", "asyncpg"):
    logging.getLogger(noisy).setLevel(max(log_level, logging.INFO))

logger = logging.getLogger(__name__)
logger.debug("Core logging configured.")

def get_logger(name: str):
    """Helper to get a logger instance for a specific module."""
    return logging.getLogger(name)
