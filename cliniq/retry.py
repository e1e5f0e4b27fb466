"""
cliniq/retry.py
================
Provider Request Retry Utility — ClinIQ

Wraps a blocking backend call (OpenAI SDK, Deepgram SDK, ``requests``) so
that it runs in a worker thread and is retried on transient failures
(429 rate-limit, 5xx server errors, connection timeouts) with exponential
back-off.

Usage in a batch adapter::

    from cliniq.retry import call_with_retry

    payload = await call_with_retry(
        _post_window, wav_bytes, provider="sarvam",
    )

This module does NOT:
    - Create or manage SDK client instances
    - Restart recognition sessions (handled by cliniq.stt.session)
"""

import asyncio
import logging
from typing import Any, Callable

from cliniq.errors import TransientProviderError, classify_provider_exception

logger = logging.getLogger("cliniq.retry")

# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

MAX_RETRIES: int = 2          # total attempts = MAX_RETRIES + 1 (initial)
BASE_DELAY: float = 0.5       # seconds, first back-off delay
MAX_DELAY: float = 4.0        # a window is only 5 s of speech
BACKOFF_FACTOR: float = 2.0   # exponential multiplier


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


async def call_with_retry(
    func: Callable[..., Any],
    *args: Any,
    provider: str | None = None,
    max_retries: int = MAX_RETRIES,
    base_delay: float = BASE_DELAY,
    **kwargs: Any,
) -> Any:
    """
    Run ``func(*args, **kwargs)`` in a thread with automatic retry.

    Only failures classified as TransientProviderError are retried.
    Anything else is re-raised immediately as its ClinIQ error type.

    Args:
        func:        Blocking callable performing one backend request.
        provider:    Provider id used for logging and error attribution.
        max_retries: Retries after the first attempt.
        base_delay:  First back-off delay in seconds.

    Returns:
        Whatever ``func`` returns.

    Raises:
        TranscriptionError: The classified failure of the last attempt.
    """
    delay = base_delay

    for attempt in range(max_retries + 1):
        try:
            return await asyncio.to_thread(func, *args, **kwargs)
        except Exception as exc:
            error = classify_provider_exception(exc, provider)

            if not isinstance(error, TransientProviderError):
                logger.warning(
                    "%s call failed with non-retryable error: %s", provider, exc,
                )
                if error is exc:
                    raise
                raise error from exc

            if attempt < max_retries:
                logger.warning(
                    "%s call failed (attempt %d/%d): %s, retrying in %.1fs",
                    provider,
                    attempt + 1,
                    max_retries + 1,
                    exc,
                    delay,
                )
                await asyncio.sleep(delay)
                delay = min(delay * BACKOFF_FACTOR, MAX_DELAY)
            else:
                logger.error(
                    "%s call failed after %d attempts: %s",
                    provider,
                    max_retries + 1,
                    exc,
                )
                if error is exc:
                    raise
                raise error from exc

    raise TransientProviderError(f"{provider} call was not attempted", provider)
