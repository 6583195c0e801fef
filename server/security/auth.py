"""Trigger authorisation for the sync endpoints."""

import hmac
import logging
from typing import Optional

from fastapi import Request

logger = logging.getLogger(__name__)

TRIGGER_CRON = "cron"
TRIGGER_MANUAL = "manual"


def _matches(given: str, expected: str) -> bool:
    return hmac.compare_digest(given.encode(), expected.encode())


def is_cron_request(request: Request, cron_secret: Optional[str]) -> bool:
    """True when the request carries ``Authorization: Bearer <cron_secret>``."""
    if not cron_secret:
        return False
    auth = request.headers.get("authorization") or ""
    return _matches(auth, f"Bearer {cron_secret}")


def authorize_trigger(request: Request, cron_secret: Optional[str],
                      sync_key: Optional[str]) -> Optional[str]:
    """Identify who may trigger a sync.

    A cron bearer secret always authorises. Otherwise an ``x-sync-key`` header
    must match ``sync_key``; when no key is configured any non-empty value is
    accepted.

    Returns:
        ``"cron"`` or ``"manual"``, or None when the request is not authorised.
    """
    if is_cron_request(request, cron_secret):
        return TRIGGER_CRON

    key = request.headers.get("x-sync-key")
    if key:
        if sync_key is None or _matches(key, sync_key):
            return TRIGGER_MANUAL
        logger.warning("Rejected sync trigger with a mismatched x-sync-key")

    return None
