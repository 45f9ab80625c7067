"""Session configuration.

One `SessionConfig` is built at startup by `make_session_config` (or
`config_from_env`) and passed explicitly to every component.

Environment variables (a `.env` file in the working directory is honoured):
- VOTING_NETWORK: "devnet" or "local" (default local)
- SOLANA_RPC_URL: ledger RPC endpoint, required on devnet
- VOTING_IDENTITY_PATH: wallet keypair file (default ~/.config/solana/id.json)
- ARCIUM_CLUSTER_OFFSET: MPC cluster offset
- VOTING_PROGRAM_ID: hex id of the voting program
- VOTING_COMMITMENT: processed / confirmed / finalized
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Union

from dotenv import load_dotenv

from .addresses import DEFAULT_PROGRAM_ID
from .errors import ConfigError
from .ledger import COMMITMENT_LEVELS
from .retry import DEFAULT_KEY_FETCH_POLICY, RetryPolicy

LOCAL_RPC_URL = "http://127.0.0.1:8899"
DEFAULT_IDENTITY_PATH = "~/.config/solana/id.json"
DEVNET_CLUSTER_OFFSET = 456
LOCAL_CLUSTER_OFFSET = 0


class Network(Enum):
    DEVNET = "devnet"
    LOCAL = "local"


@dataclass(frozen=True)
class SessionConfig:
    """Process-wide inputs of a voting session

    Attributes
    - network: which deployment the session talks to
    - rpc_url: ledger JSON-RPC endpoint
    - identity_path: wallet keypair file
    - cluster_offset: MPC cluster the computations are queued on
    - program_id: 32-byte id of the voting program
    - commitment: commitment level used for finalization reads
    - key_fetch_policy: retry budget for the cluster key
    - poll_interval: seconds between finalization / event polls
    - request_timeout: per HTTP request timeout in seconds
    - event_timeout: seconds to wait for a program event, None waits forever
    """

    network: Network
    rpc_url: str
    identity_path: str
    cluster_offset: int
    program_id: bytes = DEFAULT_PROGRAM_ID
    commitment: str = "confirmed"
    key_fetch_policy: RetryPolicy = field(default=DEFAULT_KEY_FETCH_POLICY)
    poll_interval: float = 0.5
    request_timeout: float = 10.0
    event_timeout: Optional[float] = None


def _parse_network(value: Union[str, Network]) -> Network:
    if isinstance(value, Network):
        return value
    try:
        return Network(str(value).strip().lower())
    except ValueError:
        raise ConfigError(f"unknown network {value!r} (expected devnet or local)") from None


def _parse_int(name: str, value: Union[str, int]) -> int:
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{name} must be an integer, got {value!r}") from None
    if parsed < 0:
        raise ConfigError(f"{name} must be non-negative")
    return parsed


def _parse_program_id(value: Union[str, bytes]) -> bytes:
    if isinstance(value, bytes):
        raw = value
    else:
        try:
            raw = bytes.fromhex(value.strip())
        except ValueError:
            raise ConfigError("program id must be hex encoded") from None
    if len(raw) != 32:
        raise ConfigError("program id must be 32 bytes")
    return raw


def make_session_config(
    network: Union[str, Network] = Network.LOCAL,
    rpc_url: Optional[str] = None,
    identity_path: Optional[str] = None,
    cluster_offset: Optional[Union[int, str]] = None,
    program_id: Optional[Union[str, bytes]] = None,
    commitment: str = "confirmed",
    key_fetch_policy: RetryPolicy = DEFAULT_KEY_FETCH_POLICY,
    poll_interval: float = 0.5,
    request_timeout: float = 10.0,
    event_timeout: Optional[float] = None,
) -> SessionConfig:
    """Validate options and build the session configuration

    Devnet has no default endpoint: a missing RPC URL is an error there.
    """

    net = _parse_network(network)
    if net is Network.DEVNET and not rpc_url:
        raise ConfigError("SOLANA_RPC_URL is not set")
    if commitment not in COMMITMENT_LEVELS:
        raise ConfigError(f"unknown commitment level {commitment!r}")
    if poll_interval < 0 or request_timeout <= 0:
        raise ConfigError("poll_interval and request_timeout must be positive")
    if event_timeout is not None and event_timeout <= 0:
        raise ConfigError("event_timeout must be positive")

    if cluster_offset is None:
        offset = DEVNET_CLUSTER_OFFSET if net is Network.DEVNET else LOCAL_CLUSTER_OFFSET
    else:
        offset = _parse_int("cluster offset", cluster_offset)

    return SessionConfig(
        network=net,
        rpc_url=rpc_url or LOCAL_RPC_URL,
        identity_path=os.path.expanduser(identity_path or DEFAULT_IDENTITY_PATH),
        cluster_offset=offset,
        program_id=_parse_program_id(program_id) if program_id else DEFAULT_PROGRAM_ID,
        commitment=commitment,
        key_fetch_policy=key_fetch_policy,
        poll_interval=poll_interval,
        request_timeout=request_timeout,
        event_timeout=event_timeout,
    )


def config_from_env(dotenv_path: Optional[str] = None) -> SessionConfig:
    load_dotenv(dotenv_path)
    return make_session_config(
        network=os.getenv("VOTING_NETWORK", Network.LOCAL.value),
        rpc_url=os.getenv("SOLANA_RPC_URL") or None,
        identity_path=os.getenv("VOTING_IDENTITY_PATH") or None,
        cluster_offset=os.getenv("ARCIUM_CLUSTER_OFFSET") or None,
        program_id=os.getenv("VOTING_PROGRAM_ID") or None,
        commitment=os.getenv("VOTING_COMMITMENT", "confirmed"),
    )
