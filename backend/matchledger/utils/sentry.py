import logging
import os

import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration

logger = logging.getLogger(__name__)


def _sample_rate(env_var: str, default: float = 0.0) -> float:
    raw_value = os.getenv(env_var)
    if raw_value is None:
        return default
    try:
        value = float(raw_value)
    except ValueError:
        logger.warning("%s is not a valid float (got %r); defaulting to %.2f", env_var, raw_value, default)
        return default
    if not 0 <= value <= 1:
        logger.warning("%s must be between 0 and 1; defaulting to %.2f", env_var, default)
        return default
    return value


def init_sentry() -> bool:
    """Initialise Sentry when ``SENTRY_DSN`` is set; return whether it was."""

    dsn = os.getenv("SENTRY_DSN")
    if not dsn:
        logger.info("SENTRY_DSN not provided; error reporting disabled.")
        return False

    environment = (os.getenv("SENTRY_ENVIRONMENT") or "").strip() or None
    sentry_sdk.init(
        dsn=dsn,
        integrations=[FastApiIntegration()],
        environment=environment,
        traces_sample_rate=_sample_rate("SENTRY_TRACES_SAMPLE_RATE"),
    )
    logger.info("Sentry enabled%s", f" (environment={environment})" if environment else "")
    return True
