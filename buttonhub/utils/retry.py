"""Retry policy for credential authority calls."""

import logging

from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from buttonhub.config import settings

logger = logging.getLogger(__name__)


def create_authority_retry_policy(
    retry_on: type[BaseException] | tuple[type[BaseException], ...],
    max_attempts: int = settings.authority_max_attempts,
    min_wait: float = settings.authority_retry_min_wait,
    max_wait: float = settings.authority_retry_max_wait,
):
    """Decorator retrying transient failures with exponential backoff.

    The last exception is re-raised unchanged once attempts run out.
    """
    return retry(
        stop=stop_after_attempt(max_attempts),
        wait=wait_exponential(multiplier=min_wait, min=min_wait, max=max_wait),
        retry=retry_if_exception_type(retry_on),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
