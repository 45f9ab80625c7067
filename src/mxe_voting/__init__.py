"""mxe_voting package - client for confidential polls tallied by an MPC cluster

Votes are encrypted to a secret shared with the cluster, submitted to the
ledger program as computation requests, and tallied without ever being
decrypted by the client or the ledger. `PollSession` drives the full
create -> vote -> reveal lifecycle; `localnet` serves a local simulator.
"""

from .config import SessionConfig, config_from_env, make_session_config
from .errors import (
    ComputationFailed,
    ConfigError,
    CorrelationMismatch,
    EventTimeout,
    FinalizationTimeout,
    KeyUnavailable,
    LedgerRpcError,
    ResultMismatch,
    SubmissionRejected,
    TransportError,
    VotingError,
)
from .keys import Identity, derive_encryption_keypair, load_identity, save_identity
from .session import PollSession, expected_outcome, run_polls

__all__ = [
    "ComputationFailed",
    "ConfigError",
    "CorrelationMismatch",
    "EventTimeout",
    "FinalizationTimeout",
    "Identity",
    "KeyUnavailable",
    "LedgerRpcError",
    "PollSession",
    "ResultMismatch",
    "SessionConfig",
    "SubmissionRejected",
    "TransportError",
    "VotingError",
    "config_from_env",
    "derive_encryption_keypair",
    "expected_outcome",
    "load_identity",
    "make_session_config",
    "run_polls",
    "save_identity",
]
