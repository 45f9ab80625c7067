from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

from .errors import ComputationFailed, FinalizationTimeout, RetryExhausted, TransportError
from .ledger import COMMITMENT_LEVELS, LedgerClient
from .retry import RetryPolicy, retry

logger = logging.getLogger(__name__)

FINALIZED = "finalized"
FAILED = "failed"


@dataclass(frozen=True)
class FinalizationResult:
    offset: int
    status: str
    signature: Optional[str]
    slot: Optional[int]


class _Pending(Exception):
    pass


class FinalizationWaiter:
    """Polls the ledger until a computation reaches a terminal state

    Only the calling thread blocks; sessions running in other threads are
    unaffected. There is no overall deadline unless `max_attempts` is given.
    """

    def __init__(
        self,
        ledger: LedgerClient,
        poll_interval: float = 0.5,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.ledger = ledger
        self.poll_interval = poll_interval
        self._sleep = sleep

    def wait(
        self,
        offset: int,
        program_id: bytes,
        commitment: str = "confirmed",
        max_attempts: Optional[int] = None,
    ) -> FinalizationResult:
        """Block until computation `offset` is finalized at `commitment`

        Raises ComputationFailed when the cluster reports a failure and
        FinalizationTimeout when a bounded wait runs out.
        """

        if commitment not in COMMITMENT_LEVELS:
            raise ValueError(f"unknown commitment level {commitment!r}")

        def poll_once() -> FinalizationResult:
            state = self.ledger.get_computation(program_id, offset, commitment)
            if not state:
                raise _Pending("computation not visible yet")
            status = state.get("status")
            if status == FAILED:
                raise ComputationFailed(offset, state.get("error") or "unknown failure")
            if status != FINALIZED:
                raise _Pending(f"status {status}")
            return FinalizationResult(
                offset=offset,
                status=status,
                signature=state.get("signature"),
                slot=state.get("slot"),
            )

        policy = RetryPolicy(max_attempts=max_attempts, delay=self.poll_interval)
        try:
            result = retry(
                poll_once,
                policy,
                retry_on=(_Pending, TransportError),
                description=f"finalization of {offset}",
                sleep=self._sleep,
                log_level=logging.DEBUG,
            )
        except RetryExhausted as e:
            raise FinalizationTimeout(offset, e.attempts) from e.last_error
        logger.info("computation %d finalized at slot %s sig=%s", offset, result.slot, result.signature)
        return result
