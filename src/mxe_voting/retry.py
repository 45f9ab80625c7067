"""Generic bounded/unbounded retry combinator.

Shared by the cluster key fetcher and the finalization waiter: both wait on
a one-time condition ("key published", "computation finalized"), so the
delay between attempts is fixed rather than exponential.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional, Tuple, Type, TypeVar

from .errors import RetryExhausted

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """How many attempts to make and how long to sleep between them

    Attributes
    - max_attempts: attempt limit, or None to retry until success
    - delay: seconds slept between two attempts (never after the last one)
    """

    max_attempts: Optional[int] = 20
    delay: float = 0.5

    def __post_init__(self):
        if self.max_attempts is not None and self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.delay < 0:
            raise ValueError("delay must be non-negative")


DEFAULT_KEY_FETCH_POLICY = RetryPolicy(max_attempts=20, delay=0.5)


def retry(
    operation: Callable[[], T],
    policy: RetryPolicy,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    description: str = "operation",
    sleep: Callable[[float], None] = time.sleep,
    log_level: int = logging.INFO,
) -> T:
    """Call `operation` until it returns, retrying on the given exception types

    Exceptions outside `retry_on` propagate immediately. When the attempt
    limit is reached, raises RetryExhausted chained to the last failure.
    Failed attempts are logged at `log_level`.
    """

    attempt = 0
    while True:
        attempt += 1
        try:
            return operation()
        except retry_on as e:
            last_error = e
            limit = policy.max_attempts
            if limit is not None and attempt >= limit:
                raise RetryExhausted(attempt, last_error) from e
            logger.log(
                log_level,
                "%s attempt %d/%s failed: %s",
                description,
                attempt,
                limit if limit is not None else "-",
                e,
            )
        sleep(policy.delay)
