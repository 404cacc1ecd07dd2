import asyncio
import logging

logger = logging.getLogger(__name__)

# Slept before each attempt: a just-ended call's recording lags the hangup
TRANSCRIPT_RETRY_DELAYS = (2.0, 5.0, 10.0)
# Slept between attempts
EMAIL_RETRY_DELAYS = (1.0, 2.0)


async def retry_async(
    fn,
    *,
    delays=TRANSCRIPT_RETRY_DELAYS,
    wait_first: bool = False,
    retry_on=(Exception,),
    label: str = "operation",
    sleep=asyncio.sleep,
):
    """Await fn() with a bounded backoff schedule.

    With wait_first=False there are len(delays) + 1 attempts and delays[i]
    is slept after failed attempt i. With wait_first=True there are
    len(delays) attempts and delays[i] is slept before attempt i.
    Re-raises the last error once the schedule is exhausted.
    """
    schedule = list(delays) if wait_first else [0.0, *delays]
    attempts = len(schedule)
    for attempt, delay in enumerate(schedule, start=1):
        if delay:
            await sleep(delay)
        try:
            return await fn()
        except retry_on as e:
            if attempt >= attempts:
                logger.error("%s failed after %d attempts: %s", label, attempts, e)
                raise
            logger.warning("%s failed (attempt %d/%d): %s", label, attempt, attempts, e)
