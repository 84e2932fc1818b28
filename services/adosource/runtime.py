"""
Process lifespan for hosts embedding the branch source.

Configures logging and the shared gateway on the way in and releases the
gateway's connection pool on the way out.
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from adosource.config import settings
from adosource.gateway import close_gateway, init_gateway
from adosource.gateway.protocol import Gateway
from adosource.logging_config import configure_logging, get_logger

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan() -> AsyncGenerator[Gateway]:
    """Startup and shutdown around one embedding host."""
    configure_logging(json_logs=settings.json_logs, log_level=settings.log_level)
    logger.info("Starting Azure DevOps branch source", version="0.1.0")

    gateway = init_gateway()

    try:
        yield gateway
    finally:
        await close_gateway()
        logger.info("Azure DevOps branch source stopped")
