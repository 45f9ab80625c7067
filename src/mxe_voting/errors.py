"""Error taxonomy for the confidential voting client.

Every failure the protocol can surface derives from `VotingError`, so callers
that only want to abort a poll lifecycle can catch a single type. The
orchestrator never recovers from these itself.
"""

from typing import Optional


class VotingError(Exception):
    """Base class for all protocol errors."""


class ConfigError(VotingError, ValueError):
    """Invalid or missing session configuration."""


class KeyUnavailable(VotingError):
    """The cluster public key could not be fetched within the retry budget.

    Usually means the cluster bootstrap did not complete. Re-invoking the
    fetcher later is allowed; retrying in a tight loop is not useful.
    """

    def __init__(self, program_id: str, attempts: int):
        super().__init__(
            f"cluster public key for program {program_id} unavailable after {attempts} attempts"
        )
        self.program_id = program_id
        self.attempts = attempts


class TransportError(VotingError):
    """Network level failure talking to the ledger RPC endpoint.

    Landing status of a submitted transaction is unknown; a retried step
    must use a new computation offset.
    """


class LedgerRpcError(VotingError):
    """The ledger answered with a JSON-RPC error for a read or malformed call."""

    def __init__(self, message: str, code: Optional[int] = None):
        super().__init__(message)
        self.code = code


class SubmissionRejected(LedgerRpcError):
    """The ledger refused a transaction (duplicate offset, missing comp def, ...)."""

    def __init__(self, reason: str, code: Optional[int] = None):
        super().__init__(f"transaction rejected: {reason}", code)
        self.reason = reason


class ComputationFailed(VotingError):
    """The MPC cluster reported that a computation will never finalize."""

    def __init__(self, offset: int, reason: str):
        super().__init__(f"computation {offset} failed: {reason}")
        self.offset = offset
        self.reason = reason


class FinalizationTimeout(VotingError):
    """A bounded finalization wait ran out of attempts."""

    def __init__(self, offset: int, attempts: int):
        super().__init__(f"computation {offset} not finalized after {attempts} polls")
        self.offset = offset
        self.attempts = attempts


class CorrelationMismatch(VotingError):
    """An event of the awaited kind belongs to another operation.

    Raised by event filters and swallowed by the correlator, which keeps
    listening.
    """


class EventTimeout(VotingError):
    """No matching event arrived before the caller's deadline."""


class RetryExhausted(VotingError):
    """`retry()` ran out of attempts; `last_error` holds the final failure."""

    def __init__(self, attempts: int, last_error: Optional[BaseException]):
        super().__init__(f"gave up after {attempts} attempts: {last_error!r}")
        self.attempts = attempts
        self.last_error = last_error


class ResultMismatch(VotingError):
    """A revealed result differs from the locally known expectation."""

    def __init__(self, poll_id: int, expected: bool, actual: bool):
        super().__init__(f"poll {poll_id}: expected {expected}, revealed {actual}")
        self.poll_id = poll_id
        self.expected = expected
        self.actual = actual
