"""
Sentry initialization and error monitoring configuration.

Captures:
- Python exceptions
- FastAPI errors
- ERROR-level log records

Never sends cookies, authorization headers, tokens or message bodies.
"""

import logging

import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.logging import LoggingIntegration

from switchboard import __version__
from switchboard.core.config import Settings

logger = logging.getLogger(__name__)

SENSITIVE_KEYS = (
    "access_token",
    "refresh_token",
    "token",
    "verifier",
    "csrf",
    "secret",
    "password",
    "authorization",
    "cookie",
    "body",
)

REDACTED = "[REDACTED]"


def init_sentry(settings: Settings) -> bool:
    """
    Initialize Sentry error monitoring.

    Only initializes if SENTRY_DSN is configured.

    Returns:
        True if Sentry was initialized
    """
    if not settings.SENTRY_DSN:
        logger.info("Sentry DSN not configured - error monitoring disabled")
        return False

    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        environment=settings.ENVIRONMENT,
        release=f"switchboard@{__version__}",

        integrations=[
            FastApiIntegration(transaction_style="endpoint"),
            LoggingIntegration(
                level=logging.INFO,  # Breadcrumbs
                event_level=logging.ERROR,  # Send errors to Sentry
            ),
        ],

        traces_sample_rate=0.1 if settings.is_production else 1.0,
        sample_rate=1.0,

        # Privacy Settings
        send_default_pii=False,
        max_breadcrumbs=50,

        before_send=filter_sensitive_data,
    )

    logger.info(f"Sentry initialized - environment: {settings.ENVIRONMENT}")
    return True


def _redact(obj):
    if isinstance(obj, dict):
        for key in list(obj.keys()):
            if any(sensitive in str(key).lower() for sensitive in SENSITIVE_KEYS):
                obj[key] = REDACTED
            else:
                _redact(obj[key])
    elif isinstance(obj, list):
        for item in obj:
            _redact(item)


def filter_sensitive_data(event, hint):
    """
    Scrub secrets from a Sentry event before it is sent.

    Removes cookies, authorization headers, query strings (OAuth codes and
    state travel there) and any extra/context key that looks like a secret.

    Returns:
        The scrubbed event
    """
    request = event.get("request")
    if isinstance(request, dict):
        request.pop("cookies", None)
        request.pop("data", None)
        if request.get("query_string"):
            request["query_string"] = REDACTED
        headers = request.get("headers")
        if isinstance(headers, dict):
            for name in list(headers.keys()):
                if name.lower() in ("cookie", "authorization", "x-csrf-token", "set-cookie"):
                    headers[name] = REDACTED

    if event.get("extra"):
        _redact(event["extra"])

    if event.get("contexts"):
        _redact(event["contexts"])

    breadcrumbs = event.get("breadcrumbs")
    if isinstance(breadcrumbs, dict):
        for breadcrumb in breadcrumbs.get("values") or []:
            _redact(breadcrumb.get("data"))

    return event
