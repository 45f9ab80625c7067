"""Local ledger program + MPC cluster simulator served over JSON-RPC (Flask).

JSON-RPC methods (POST /):
- getMxePublicKey {programId} -> hex | null
- sendTransaction {transaction, signature} -> {"signature": ...}
- getComputation {programId, offset, commitment} -> status object | null
- getEvents {programId, since} -> {"events": [...], "cursor": n}
- getAccount {address} -> account | null

Every request advances the ledger by one slot. A queued computation is
executed by the simulated cluster after `execution_delay` slots; vote
statistics stay encrypted under the cluster's own key between computations.

Run with: python -m mxe_voting.localnet --port 8899
"""

from __future__ import annotations

import argparse
import logging
import secrets
import threading
import time
from typing import Any, Callable, Dict, List, Optional

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PublicKey
from flask import Flask, current_app, jsonify, request

from . import addresses
from .cipher import CipherEnvelope, nonce_from_int, random_nonce
from .computation import ComputationKind
from .keys import shared_secret, x25519_public_key
from .ledger import (
    COMMITMENT_LEVELS,
    INVALID_PARAMS,
    INVALID_REQUEST,
    METHOD_NOT_FOUND,
    TRANSACTION_REJECTED,
    canonical_json,
)

MAX_DESCRIPTION_BYTES = 50
MAX_U32 = 2**32 - 1
MAX_U64 = 2**64 - 1
MAX_U128 = 2**128 - 1

QUEUED = "queued"
EXECUTING = "executing"
FINALIZED = "finalized"
FAILED = "failed"

_INSTRUCTION_KINDS = {kind.instruction: kind for kind in ComputationKind}
_INIT_INSTRUCTION_KINDS = {kind.init_instruction: kind for kind in ComputationKind}


class RpcError(Exception):
    def __init__(self, code: int, message: str):
        super().__init__(message)
        self.code = code
        self.message = message


class _CircuitError(Exception):
    pass


def _reject(message: str) -> RpcError:
    return RpcError(TRANSACTION_REJECTED, message)


def _hex_bytes(value: Any, length: int, name: str) -> bytes:
    if not isinstance(value, str):
        raise _reject(f"{name} must be a hex string")
    try:
        raw = bytes.fromhex(value)
    except ValueError:
        raise _reject(f"{name} is not valid hex") from None
    if len(raw) != length:
        raise _reject(f"{name} must be {length} bytes")
    return raw


def _uint(value: Any, limit: int, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or not 0 <= value <= limit:
        raise _reject(f"{name} out of range")
    return value


class LocalnetState:
    """In-memory ledger program and cluster

    Args
    - program_id: id of the deployed voting program
    - cluster_offset: offset of the single local MPC cluster
    - execution_delay: slots a computation waits in the mempool
    - key_publish_delay: number of key reads answered with null
    - auto_init_comp_defs: start with every computation definition initialized
    """

    def __init__(
        self,
        program_id: bytes = addresses.DEFAULT_PROGRAM_ID,
        cluster_offset: int = 0,
        execution_delay: int = 1,
        key_publish_delay: int = 0,
        auto_init_comp_defs: bool = False,
        clock: Callable[[], float] = time.time,
    ):
        self.program_id = program_id
        self.cluster_offset = cluster_offset
        self.execution_delay = execution_delay
        self.key_publish_delay = key_publish_delay
        self.clock = clock
        self.logger = logging.getLogger(__name__)
        self.lock = threading.RLock()
        self.slot = 0
        self.accounts: Dict[str, Dict[str, Any]] = {}
        self.computations: Dict[int, Dict[str, Any]] = {}
        self.events: List[Dict[str, Any]] = []
        self._key_reads = 0
        self._mxe_private_key = secrets.token_bytes(32)
        self.mxe_public_key = x25519_public_key(self._mxe_private_key)
        # the cluster keeps vote statistics encrypted to itself
        self._mxe_cipher = CipherEnvelope(shared_secret(self._mxe_private_key, self.mxe_public_key))
        if auto_init_comp_defs:
            for kind in ComputationKind:
                self._store_comp_def(kind, None)

    ## --- dispatch ----------------------------------------------------------

    def dispatch(self, method: str, params: Dict[str, Any]) -> Any:
        handler = _METHODS.get(method)
        if handler is None:
            raise RpcError(METHOD_NOT_FOUND, f"method {method!r} not found")
        with self.lock:
            self._tick()
            return handler(self, params)

    def _tick(self) -> None:
        self.slot += 1
        for comp in self.computations.values():
            if comp["status"] != QUEUED:
                continue
            if comp["remaining"] > 0:
                comp["remaining"] -= 1
                continue
            self._execute(comp)

    def _check_program(self, params: Dict[str, Any]) -> None:
        if params.get("programId") != self.program_id.hex():
            raise RpcError(INVALID_PARAMS, "unknown program id")

    ## --- reads -------------------------------------------------------------

    def get_mxe_public_key(self, params: Dict[str, Any]) -> Optional[str]:
        self._check_program(params)
        self._key_reads += 1
        if self._key_reads <= self.key_publish_delay:
            return None
        return self.mxe_public_key.hex()

    def get_computation(self, params: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        self._check_program(params)
        commitment = params.get("commitment", "confirmed")
        if commitment not in COMMITMENT_LEVELS:
            raise RpcError(INVALID_PARAMS, f"unknown commitment {commitment!r}")
        offset = params.get("offset")
        if not isinstance(offset, int):
            raise RpcError(INVALID_PARAMS, "offset must be an integer")
        comp = self.computations.get(offset)
        if comp is None:
            return None
        status = comp["status"]
        # rooted one slot after execution
        if status in (FINALIZED, FAILED) and commitment == "finalized" and self.slot <= comp["slot"]:
            status = EXECUTING
        terminal = status in (FINALIZED, FAILED)
        return {
            "status": status,
            "error": comp["error"] if terminal else None,
            "signature": comp["finalizeSignature"] if terminal else None,
            "slot": comp["slot"] if terminal else None,
        }

    def get_events(self, params: Dict[str, Any]) -> Dict[str, Any]:
        self._check_program(params)
        since = params.get("since")
        cursor = len(self.events)
        if since is None:
            return {"events": [], "cursor": cursor}
        if not isinstance(since, int) or since < 0:
            raise RpcError(INVALID_PARAMS, "since must be a non-negative integer")
        return {"events": self.events[since:], "cursor": cursor}

    def get_account(self, params: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        address = params.get("address")
        if not isinstance(address, str):
            raise RpcError(INVALID_PARAMS, "address must be a hex string")
        account = self.accounts.get(address)
        return dict(account) if account is not None else None

    ## --- writes ------------------------------------------------------------

    def send_transaction(self, params: Dict[str, Any]) -> Dict[str, str]:
        tx = params.get("transaction")
        if not isinstance(tx, dict):
            raise RpcError(INVALID_PARAMS, "transaction must be an object")
        signer = _hex_bytes(tx.get("signer"), 32, "signer")
        signature = _hex_bytes(params.get("signature"), 64, "signature")
        try:
            Ed25519PublicKey.from_public_bytes(signer).verify(signature, canonical_json(tx))
        except InvalidSignature:
            raise _reject("signature verification failed") from None
        if tx.get("programId") != self.program_id.hex():
            raise _reject("unknown program id")

        instruction = tx.get("instruction")
        accounts = tx.get("accounts")
        args = tx.get("args")
        if not isinstance(accounts, dict) or not isinstance(args, dict):
            raise _reject("accounts and args must be objects")

        if instruction in _INIT_INSTRUCTION_KINDS:
            self._init_comp_def(_INIT_INSTRUCTION_KINDS[instruction], accounts, args, signer)
        elif instruction in _INSTRUCTION_KINDS:
            self._queue_computation(_INSTRUCTION_KINDS[instruction], accounts, args, signer)
        else:
            raise _reject(f"unknown instruction {instruction!r}")
        return {"signature": signature.hex()}

    def _store_comp_def(self, kind: ComputationKind, circuit_hash: Optional[str]) -> None:
        address = addresses.comp_def_address(self.program_id, kind.comp_def_name).hex()
        self.accounts[address] = {
            "type": "computationDefinition",
            "name": kind.comp_def_name,
            "offset": addresses.comp_def_offset(kind.comp_def_name),
            "circuitHash": circuit_hash,
            "slot": self.slot,
        }

    def _init_comp_def(self, kind: ComputationKind, accounts: Dict[str, Any], args: Dict[str, Any], signer: bytes) -> None:
        if args.get("compDefName") != kind.comp_def_name:
            raise _reject("computation definition name does not match instruction")
        address = addresses.comp_def_address(self.program_id, kind.comp_def_name).hex()
        if accounts.get("compDefAccount") != address:
            raise _reject("compDefAccount mismatch")
        if accounts.get("mxeAccount") != addresses.mxe_address(self.program_id).hex():
            raise _reject("mxeAccount mismatch")
        if accounts.get("payer") != signer.hex():
            raise _reject("payer must sign")
        if address in self.accounts:
            raise _reject(f"computation definition {kind.comp_def_name} already initialized")
        circuit_hash = args.get("circuitHash")
        if circuit_hash is not None:
            _hex_bytes(circuit_hash, 32, "circuitHash")
        self._store_comp_def(kind, circuit_hash)
        self.logger.info("comp def %s initialized", kind.comp_def_name)

    def _queue_computation(
        self, kind: ComputationKind, accounts: Dict[str, Any], args: Dict[str, Any], signer: bytes
    ) -> None:
        offset = _uint(args.get("computationOffset"), MAX_U64, "computationOffset")
        poll_id = _uint(args.get("id"), MAX_U32, "id")

        expected = addresses.computation_accounts(self.program_id, self.cluster_offset, offset, kind.comp_def_name)
        for name, address in expected.items():
            if accounts.get(name) != address:
                raise _reject(f"{name} mismatch")
        if accounts.get("authority") != signer.hex():
            raise _reject("authority must sign")
        if offset in self.computations:
            raise _reject(f"computation offset {offset} already in use")
        if expected["compDefAccount"] not in self.accounts:
            raise _reject(f"computation definition {kind.comp_def_name} not initialized")

        poll_address = accounts.get("pollAccount")
        poll = self.accounts.get(poll_address) if isinstance(poll_address, str) else None
        inputs: Dict[str, Any] = {"pollAccount": poll_address}

        if kind is ComputationKind.CREATE_POLL:
            if poll_address != addresses.poll_address(self.program_id, signer, poll_id).hex():
                raise _reject("pollAccount mismatch")
            if poll is not None:
                raise _reject(f"poll {poll_id} already exists")
            description = args.get("description")
            if not isinstance(description, str) or len(description.encode("utf-8")) > MAX_DESCRIPTION_BYTES:
                raise _reject(f"description must be a string of at most {MAX_DESCRIPTION_BYTES} bytes")
            nonce = _uint(args.get("nonce"), MAX_U128, "nonce")
            self.accounts[poll_address] = {
                "type": "poll",
                "id": poll_id,
                "description": description,
                "nonce": nonce,
                "authority": signer.hex(),
                "voteStats": None,
            }
        else:
            if poll is None or poll.get("type") != "poll" or poll["id"] != poll_id:
                raise _reject(f"poll {poll_id} not found")
            if poll["voteStats"] is None:
                raise _reject(f"poll {poll_id} vote statistics not initialized")
            if kind is ComputationKind.CAST_VOTE:
                inputs["vote"] = _hex_bytes(args.get("vote"), 32, "vote")
                inputs["pubkey"] = _hex_bytes(args.get("voteEncryptionPubkey"), 32, "voteEncryptionPubkey")
                inputs["nonce"] = nonce_from_int(_uint(args.get("voteNonce"), MAX_U128, "voteNonce"))
            elif poll["authority"] != signer.hex():
                raise _reject("only the poll authority can reveal the result")

        self.computations[offset] = {
            "offset": offset,
            "kind": kind,
            "pollId": poll_id,
            "inputs": inputs,
            "status": QUEUED,
            "remaining": self.execution_delay,
            "error": None,
            "finalizeSignature": None,
            "slot": None,
        }
        self.logger.info("queued %s offset=%d poll=%d", kind.comp_def_name, offset, poll_id)

    ## --- cluster -----------------------------------------------------------

    def _read_stats(self, poll: Dict[str, Any]) -> List[int]:
        stats = poll["voteStats"]
        blocks = [bytes.fromhex(c) for c in stats["ciphertext"]]
        return self._mxe_cipher.decrypt(blocks, nonce_from_int(stats["nonce"]))

    def _write_stats(self, poll: Dict[str, Any], yes: int, no: int, nonce: bytes) -> None:
        blocks = self._mxe_cipher.encrypt([yes, no], nonce)
        poll["voteStats"] = {"ciphertext": [b.hex() for b in blocks], "nonce": int.from_bytes(nonce, "little")}

    def _emit(self, name: str, data: Dict[str, Any]) -> None:
        self.events.append({"seq": len(self.events) + 1, "name": name, "data": data})

    def _execute(self, comp: Dict[str, Any]) -> None:
        kind = comp["kind"]
        poll = self.accounts[comp["inputs"]["pollAccount"]]
        try:
            if kind is ComputationKind.CREATE_POLL:
                self._write_stats(poll, 0, 0, nonce_from_int(poll["nonce"]))
            elif kind is ComputationKind.CAST_VOTE:
                inputs = comp["inputs"]
                voter = CipherEnvelope(shared_secret(self._mxe_private_key, inputs["pubkey"]))
                vote = voter.decrypt([inputs["vote"]], inputs["nonce"])[0]
                if vote not in (0, 1):
                    raise _CircuitError("vote does not decrypt to a boolean")
                yes, no = self._read_stats(poll)
                if vote:
                    yes += 1
                else:
                    no += 1
                self._write_stats(poll, yes, no, random_nonce())
                self._emit(
                    "voteEvent",
                    {"timestamp": int(self.clock()), "pollId": comp["pollId"], "computationOffset": comp["offset"]},
                )
            else:
                yes, no = self._read_stats(poll)
                if yes + no == 0:
                    raise _CircuitError("empty tally: no votes recorded")
                self._emit(
                    "revealResultEvent",
                    {"output": yes > no, "pollId": comp["pollId"], "computationOffset": comp["offset"]},
                )
        except (_CircuitError, ValueError) as e:
            comp["status"] = FAILED
            comp["error"] = str(e)
            self.logger.warning("computation %d failed: %s", comp["offset"], e)
        else:
            comp["status"] = FINALIZED
        comp["finalizeSignature"] = secrets.token_hex(64)
        comp["slot"] = self.slot


_METHODS: Dict[str, Callable[[LocalnetState, Dict[str, Any]], Any]] = {
    "getMxePublicKey": LocalnetState.get_mxe_public_key,
    "sendTransaction": LocalnetState.send_transaction,
    "getComputation": LocalnetState.get_computation,
    "getEvents": LocalnetState.get_events,
    "getAccount": LocalnetState.get_account,
}


def _rpc_error(rpc_id: Any, code: int, message: str):
    return jsonify({"jsonrpc": "2.0", "id": rpc_id, "error": {"code": code, "message": message}})


def create_app(state: Optional[LocalnetState] = None) -> Flask:
    app = Flask(__name__)
    state = state or LocalnetState()
    state.logger = app.logger
    app.config["LOCALNET"] = state

    @app.route("/", methods=["POST"])
    def rpc():
        data = request.get_json(silent=True)
        if not isinstance(data, dict):
            return _rpc_error(None, INVALID_REQUEST, "request body must be a JSON object"), 400
        rpc_id = data.get("id")
        method = data.get("method")
        params = data.get("params") or {}
        if not isinstance(method, str) or not isinstance(params, dict):
            return _rpc_error(rpc_id, INVALID_REQUEST, "missing method or params"), 400
        try:
            result = current_app.config["LOCALNET"].dispatch(method, params)
        except RpcError as e:
            return _rpc_error(rpc_id, e.code, e.message)
        return jsonify({"jsonrpc": "2.0", "id": rpc_id, "result": result})

    @app.route("/health", methods=["GET"])
    def health():
        st = current_app.config["LOCALNET"]
        return jsonify({"status": "ok", "slot": st.slot, "programId": st.program_id.hex()})

    return app


def main():
    p = argparse.ArgumentParser(description="Local ledger + MPC cluster simulator")
    p.add_argument("--host", default="127.0.0.1")
    p.add_argument("--port", type=int, default=8899)
    p.add_argument("--cluster-offset", type=int, default=0)
    p.add_argument("--execution-delay", type=int, default=1)
    p.add_argument("--key-publish-delay", type=int, default=0)
    p.add_argument("--init-comp-defs", action="store_true", help="start with computation definitions initialized")
    args = p.parse_args()

    logging.basicConfig(level=logging.INFO)
    state = LocalnetState(
        cluster_offset=args.cluster_offset,
        execution_delay=args.execution_delay,
        key_publish_delay=args.key_publish_delay,
        auto_init_comp_defs=args.init_comp_defs,
    )
    create_app(state).run(host=args.host, port=args.port, threaded=True)


if __name__ == "__main__":
    main()
