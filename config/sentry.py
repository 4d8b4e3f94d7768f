"""
config/sentry.py
Optional Sentry error monitoring. Disabled unless SENTRY_DSN is set.
Also receives audit append failures (see services/audit/service.py).
"""

import logging

import sentry_sdk
from sentry_sdk.integrations.celery import CeleryIntegration
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.logging import LoggingIntegration

from config.settings import Settings

logger = logging.getLogger(__name__)


def init_sentry(settings: Settings) -> bool:
    if not settings.SENTRY_DSN:
        logger.debug("Sentry disabled: SENTRY_DSN not set")
        return False

    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        environment=settings.APP_ENV,
        release=settings.APP_VERSION,
        integrations=[
            LoggingIntegration(level=logging.INFO, event_level=logging.ERROR),
            FastApiIntegration(transaction_style="endpoint"),
            CeleryIntegration(monitor_beat_tasks=True),
        ],
        send_default_pii=False,
        traces_sample_rate=0.1 if settings.is_production else 1.0,
    )
    logger.info("Sentry initialized")
    return True
