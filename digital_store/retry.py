import asyncio
import logging

logger = logging.getLogger(__name__)


async def retry(operation, max_attempts=3, base_delay=1.0, retry_on=(Exception,)):
    """Await ``operation()`` up to ``max_attempts`` times.

    The wait before attempt ``n + 1`` is ``base_delay * n`` (linear backoff).
    After the last failure the original exception propagates unchanged.
    Never wrap payment creation with this: a retried charge may be a
    duplicate charge.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    for attempt in range(1, max_attempts + 1):
        try:
            return await operation()
        except retry_on as exc:
            if attempt == max_attempts:
                raise
            delay = base_delay * attempt
            logger.warning(
                "Attempt %d/%d failed (%s), retrying in %.2fs",
                attempt, max_attempts, exc, delay,
            )
            await asyncio.sleep(delay)
