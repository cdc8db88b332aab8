import asyncio
import logging
import random
from typing import Awaitable, Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def call_with_retry(
    func: Callable[[], Awaitable[T]],
    *,
    retries: int = 2,
    delay: float = 1.0,
    backoff: float = 2.0,
    max_delay: float = 10.0,
    jitter: float = 0.1,
    catch_exceptions: type[Exception] | tuple[type[Exception], ...] = Exception,
    label: str = "operation",
) -> T:
    """
    Await ``func()`` and retry it with exponential backoff.

    Only exceptions in ``catch_exceptions`` are retried; anything else
    propagates on the first occurrence.

    Args:
        func: Zero-argument coroutine factory.
        retries: The maximum number of retries.
        delay: The initial delay between retries in seconds.
        backoff: The multiplier for the delay for each subsequent retry.
        max_delay: The maximum delay between retries.
        jitter: A factor to add random jitter to the delay.
        catch_exceptions: The exception or tuple of exceptions to retry on.
        label: Name used in log messages.
    """
    current_delay = delay
    for attempt in range(retries + 1):
        try:
            return await func()
        except catch_exceptions as e:
            if attempt == retries:
                logger.error(
                    f"{label} failed after {retries + 1} attempts. Last error: {e}"
                )
                raise

            logger.warning(
                f"Attempt {attempt + 1}/{retries + 1} for {label} failed. "
                f"Retrying in {current_delay:.2f}s. Error: {e}"
            )

            jitter_amount = current_delay * jitter * random.uniform(-1, 1)
            await asyncio.sleep(max(current_delay + jitter_amount, 0))

            current_delay = min(current_delay * backoff, max_delay)

    raise RuntimeError("Retry loop exited unexpectedly")
