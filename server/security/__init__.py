"""Security package for the n8n-rag-sync API."""

from .rate_limiting import (
    limiter,
    setup_rate_limiting,
    trigger_rate_limit,
    search_rate_limit,
    get_client_ip
)
from .auth import authorize_trigger, is_cron_request, TRIGGER_CRON, TRIGGER_MANUAL

__all__ = [
    # Rate limiting
    "limiter",
    "setup_rate_limiting",
    "trigger_rate_limit",
    "search_rate_limit",
    "get_client_ip",
    # Trigger authorisation
    "authorize_trigger",
    "is_cron_request",
    "TRIGGER_CRON",
    "TRIGGER_MANUAL"
]
