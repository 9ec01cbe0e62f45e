"""Security package for the LinkVault API."""

from .rate_limiting import (
    DeepModeQuota,
    build_limiter,
    get_client_ip,
    get_user_identifier,
    rate_limit_handler,
    setup_rate_limiting
)

__all__ = [
    "DeepModeQuota",
    "build_limiter",
    "get_client_ip",
    "get_user_identifier",
    "rate_limit_handler",
    "setup_rate_limiting"
]
