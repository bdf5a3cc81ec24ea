import logging
import sys
import uuid
from contextvars import ContextVar
from typing import Optional

# Correlation id for the current command or formation task.
# Worker threads start with an empty context, so the queue binds each task id explicitly.
correlation_id_ctx: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)

def get_correlation_id() -> str:
    """Retrieve the current correlation id or generate a new one if not set."""
    cid = correlation_id_ctx.get()
    if cid is None:
        cid = uuid.uuid4().hex[:8]
        correlation_id_ctx.set(cid)
    return cid

class CorrelationIDFilter(logging.Filter):
    """Injects correlation_id into log records.

    Reads the context without minting an id, so threads that never bound one
    (the formation worker between tasks) log "-".
    """
    def filter(self, record):
        record.correlation_id = correlation_id_ctx.get() or "-"
        return True

def configure_logging(level: str = "WARNING"):
    """Configures the root logger with a standard format including the correlation id."""
    logger = logging.getLogger()
    logger.setLevel(level)

    # Remove existing handlers to avoid duplication
    if logger.handlers:
        logger.handlers.clear()

    handler = logging.StreamHandler(sys.stderr)
    formatter = logging.Formatter(
        "%(asctime)s | %(levelname)-8s | [%(correlation_id)s] | %(threadName)s | %(name)s:%(funcName)s:%(lineno)d - %(message)s"
    )
    handler.setFormatter(formatter)

    handler.addFilter(CorrelationIDFilter())

    logger.addHandler(handler)

    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("openai").setLevel(logging.WARNING)

# Initialize logging on import with default settings
configure_logging()
logger = logging.getLogger("mnemos")
