"""
Remote gateway for Azure DevOps Repos.

Provides init_gateway() / close_gateway() for process lifespan and
get_gateway() for callers that share one connection pool.
"""

from __future__ import annotations

from adosource.config import settings
from adosource.gateway.protocol import Gateway
from adosource.logging_config import get_logger

logger = get_logger(__name__)

# Module-level gateway instance
_gateway: Gateway | None = None


def init_gateway() -> Gateway:
    """Create the shared gateway from configuration."""
    global _gateway  # noqa: PLW0603
    from adosource.gateway.azure import AzureDevOpsGateway

    cfg = settings.azure
    _gateway = AzureDevOpsGateway(
        server_url=cfg.server_url,
        personal_access_token=cfg.personal_access_token,
        api_version=cfg.api_version,
        timeout_seconds=cfg.timeout_seconds,
    )
    logger.info("Gateway initialized", server_url=cfg.server_url, api_version=cfg.api_version)
    return _gateway


async def close_gateway() -> None:
    """Close the shared gateway and release its connection pool."""
    global _gateway  # noqa: PLW0603
    if _gateway is not None:
        await _gateway.close()
        _gateway = None
        logger.info("Gateway closed")


def get_gateway() -> Gateway:
    """Return the shared gateway.

    Raises RuntimeError if the gateway has not been initialized.
    """
    if _gateway is None:
        raise RuntimeError("Gateway not initialized - call init_gateway() first")
    return _gateway
