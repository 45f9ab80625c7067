from __future__ import annotations

import logging
import time
from typing import Callable, Optional

from .errors import KeyUnavailable, RetryExhausted, TransportError
from .ledger import LedgerClient
from .retry import DEFAULT_KEY_FETCH_POLICY, RetryPolicy, retry

logger = logging.getLogger(__name__)


class _KeyNotPublished(Exception):
    pass


class RetryingKeyFetcher:
    """Fetches the cluster (MXE) public key for a program, tolerating a late publish

    An absent key or a transport failure is retried after a fixed delay. Any
    other error (a malformed request, for example) propagates at once.
    """

    def __init__(
        self,
        ledger: LedgerClient,
        program_id: bytes,
        policy: RetryPolicy = DEFAULT_KEY_FETCH_POLICY,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.ledger = ledger
        self.program_id = program_id
        self.policy = policy
        self._sleep = sleep

    def _fetch_once(self) -> bytes:
        key = self.ledger.get_mxe_public_key(self.program_id)
        if not key:
            raise _KeyNotPublished("cluster key not published yet")
        if len(key) != 32:
            raise ValueError(f"cluster public key has {len(key)} bytes, expected 32")
        return key

    def fetch(self, max_attempts: Optional[int] = None, delay: Optional[float] = None) -> bytes:
        policy = RetryPolicy(
            max_attempts=max_attempts if max_attempts is not None else self.policy.max_attempts,
            delay=delay if delay is not None else self.policy.delay,
        )
        try:
            key = retry(
                self._fetch_once,
                policy,
                retry_on=(_KeyNotPublished, TransportError),
                description="cluster public key fetch",
                sleep=self._sleep,
            )
        except RetryExhausted as e:
            raise KeyUnavailable(self.program_id.hex(), e.attempts) from e.last_error
        logger.info("cluster public key for %s is %s", self.program_id.hex()[:16], key.hex())
        return key
