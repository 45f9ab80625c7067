"""JSON-RPC client for the ledger program.

The ledger is an opaque service: this module only knows how to submit a
signed transaction and how to read accounts, computation status and emitted
events. Error mapping:
- connection problems, timeouts, HTTP 5xx -> TransportError
- JSON-RPC error on sendTransaction -> SubmissionRejected
- any other JSON-RPC error -> LedgerRpcError
"""

from __future__ import annotations

import itertools
import json
import logging
import threading
from typing import Any, Dict, List, Optional, Tuple

import requests

from .errors import LedgerRpcError, SubmissionRejected, TransportError
from .keys import Identity

logger = logging.getLogger(__name__)

COMMITMENT_LEVELS = ("processed", "confirmed", "finalized")

# JSON-RPC error codes used by the ledger
TRANSACTION_REJECTED = -32002
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602


def canonical_json(obj: Any) -> bytes:
    """Stable encoding used for transaction signatures (sorted keys, compact)"""

    return json.dumps(obj, sort_keys=True, separators=(",", ":")).encode("utf-8")


class LedgerClient:
    """Thin synchronous client over the ledger's HTTP JSON-RPC endpoint

    Args
    - rpc_url: endpoint URL
    - identity: signer used for `send_transaction` (reads work without one)
    - session: optional preconfigured requests.Session (adapters, proxies)
    - timeout: per-request timeout in seconds
    """

    def __init__(
        self,
        rpc_url: str,
        identity: Optional[Identity] = None,
        session: Optional[requests.Session] = None,
        timeout: float = 10.0,
    ):
        self.rpc_url = rpc_url
        self.identity = identity
        self.timeout = timeout
        self._session = session or requests.Session()
        self._ids = itertools.count(1)
        self._id_lock = threading.Lock()

    def close(self) -> None:
        self._session.close()

    def _next_id(self) -> int:
        with self._id_lock:
            return next(self._ids)

    def call(self, method: str, params: Dict[str, Any]) -> Any:
        body = {"jsonrpc": "2.0", "id": self._next_id(), "method": method, "params": params}
        try:
            r = self._session.post(self.rpc_url, json=body, timeout=self.timeout)
        except requests.RequestException as e:
            raise TransportError(f"{method}: {e}") from e

        if r.status_code >= 500:
            raise TransportError(f"{method}: HTTP {r.status_code}")
        try:
            data = r.json()
        except ValueError as e:
            raise TransportError(f"{method}: malformed response ({r.status_code})") from e
        if not isinstance(data, dict):
            raise TransportError(f"{method}: malformed response")

        error = data.get("error")
        if error:
            code = error.get("code")
            message = error.get("message", "unknown error")
            if method == "sendTransaction":
                raise SubmissionRejected(message, code)
            raise LedgerRpcError(f"{method}: {message}", code)
        return data.get("result")

    ## --- writes ------------------------------------------------------------

    def send_transaction(
        self,
        program_id: bytes,
        instruction: str,
        accounts: Dict[str, str],
        args: Dict[str, Any],
    ) -> str:
        """Sign and submit one instruction; returns the transaction signature (hex)"""

        if self.identity is None:
            raise ValueError("a signing identity is required to submit transactions")
        transaction = {
            "programId": program_id.hex(),
            "instruction": instruction,
            "accounts": accounts,
            "args": args,
            "signer": self.identity.address,
        }
        signature = self.identity.sign(canonical_json(transaction)).hex()
        result = self.call("sendTransaction", {"transaction": transaction, "signature": signature})
        sig = result.get("signature") if isinstance(result, dict) else None
        if not isinstance(sig, str):
            raise TransportError("sendTransaction: response carries no signature")
        return sig

    ## --- reads -------------------------------------------------------------

    def get_mxe_public_key(self, program_id: bytes) -> Optional[bytes]:
        result = self.call("getMxePublicKey", {"programId": program_id.hex()})
        if result is None:
            return None
        return bytes.fromhex(result)

    def get_computation(
        self, program_id: bytes, offset: int, commitment: str = "confirmed"
    ) -> Optional[Dict[str, Any]]:
        return self.call(
            "getComputation",
            {"programId": program_id.hex(), "offset": offset, "commitment": commitment},
        )

    def get_events(self, program_id: bytes, since: Optional[int] = None) -> Tuple[List[Dict[str, Any]], int]:
        """Events with a sequence number above `since`, plus the new cursor

        With `since=None` only the current cursor is returned.
        """

        result = self.call("getEvents", {"programId": program_id.hex(), "since": since})
        return list(result.get("events", [])), int(result.get("cursor", 0))

    def get_account(self, address: bytes) -> Optional[Dict[str, Any]]:
        return self.call("getAccount", {"address": address.hex()})
