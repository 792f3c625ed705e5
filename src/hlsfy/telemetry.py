import logging
from typing import Optional

import sentry_sdk
from sentry_sdk.integrations.logging import LoggingIntegration

logger = logging.getLogger(__name__)

_enabled = False


def init_telemetry(dsn: Optional[str], environment: str = "development") -> bool:
    """Start the error reporting sink when a DSN is configured."""
    global _enabled
    if not dsn:
        return False

    logger.info("Initializing sentry")
    sentry_sdk.init(
        dsn=dsn,
        environment=environment,
        send_default_pii=True,
        integrations=[LoggingIntegration(level=logging.INFO, event_level=logging.ERROR)],
    )
    _enabled = True
    return True


def set_tag(key: str, value: str) -> None:
    if _enabled:
        sentry_sdk.set_tag(key, value)


def capture(exc: BaseException) -> None:
    if not _enabled:
        return
    sentry_sdk.capture_exception(exc)
    sentry_sdk.flush()
