"""Sentry error reporting.

Enabled only when SENTRY_DSN is set. Events are scrubbed of provider API
keys before they leave the process.
"""

import logging

from mealgen.core.config import settings
from mealgen.core.logging import redact

logger = logging.getLogger(__name__)

_KEY_HEADERS = {"authorization", "x-api-key"}


def scrub_event(event: dict, hint: dict | None = None) -> dict:
    """``before_send`` hook: drop credential headers, mask keys in messages."""
    headers = (event.get("request") or {}).get("headers")
    if isinstance(headers, dict):
        for name in list(headers):
            if name.lower() in _KEY_HEADERS:
                headers[name] = "[redacted]"

    logentry = event.get("logentry")
    if isinstance(logentry, dict) and isinstance(logentry.get("message"), str):
        logentry["message"] = redact(logentry["message"])

    for exc in (event.get("exception") or {}).get("values") or []:
        if isinstance(exc.get("value"), str):
            exc["value"] = redact(exc["value"])
    return event


def init_sentry() -> bool:
    """Initialize Sentry; returns True when reporting is on."""
    if not settings.sentry_dsn:
        logger.debug("SENTRY_DSN not set, error reporting disabled")
        return False

    import sentry_sdk
    from sentry_sdk.integrations.fastapi import FastApiIntegration

    sentry_sdk.init(
        dsn=settings.sentry_dsn,
        environment=settings.app_env,
        traces_sample_rate=0.1 if settings.app_env == "production" else 1.0,
        send_default_pii=False,
        before_send=scrub_event,
        integrations=[FastApiIntegration(transaction_style="endpoint")],
    )
    logger.info("Sentry initialized (env=%s)", settings.app_env)
    return True
