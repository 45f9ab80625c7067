"""Construction and submission of confidential computation requests.

Each request is addressed by a fresh random 8-byte computation offset. The
offset binds the submission to its finalization: it seeds the computation
account address and is the key the finalization waiter polls on.
"""

from __future__ import annotations

import dataclasses
import hashlib
import logging
import secrets
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from . import addresses
from .cipher import nonce_to_int, random_nonce
from .ledger import LedgerClient

logger = logging.getLogger(__name__)

OFFSET_BYTES = 8


class ComputationKind(Enum):
    CREATE_POLL = "init_vote_stats"
    CAST_VOTE = "vote"
    REVEAL_RESULT = "reveal_result"

    @property
    def comp_def_name(self) -> str:
        return self.value

    @property
    def instruction(self) -> str:
        return _INSTRUCTIONS[self]

    @property
    def init_instruction(self) -> str:
        return _INIT_INSTRUCTIONS[self]


_INSTRUCTIONS = {
    ComputationKind.CREATE_POLL: "createNewPoll",
    ComputationKind.CAST_VOTE: "vote",
    ComputationKind.REVEAL_RESULT: "revealResult",
}

_INIT_INSTRUCTIONS = {
    ComputationKind.CREATE_POLL: "initVoteStatsCompDef",
    ComputationKind.CAST_VOTE: "initVoteCompDef",
    ComputationKind.REVEAL_RESULT: "initRevealResultCompDef",
}


def new_offset() -> int:
    """Cryptographically random u64 computation offset"""

    return int.from_bytes(secrets.token_bytes(OFFSET_BYTES), "big")


@dataclass(frozen=True)
class ComputationRequest:
    """One off-chain computation request

    Attributes
    - offset: unique u64 identifier of this computation
    - kind: which computation to queue
    - poll_id: target poll
    - payload: kind-specific instruction arguments
    - program_id: target ledger program
    - signature: transaction signature once submitted
    """

    offset: int
    kind: ComputationKind
    poll_id: int
    payload: Dict[str, Any]
    program_id: bytes
    signature: Optional[str] = None


class ComputationRequestBuilder:
    """Builds and submits computation requests for one signer and cluster"""

    def __init__(self, ledger: LedgerClient, program_id: bytes, cluster_offset: int):
        if ledger.identity is None:
            raise ValueError("ledger client has no signing identity")
        self.ledger = ledger
        self.program_id = program_id
        self.cluster_offset = cluster_offset

    @property
    def authority(self) -> bytes:
        return self.ledger.identity.public_key

    def build(
        self,
        kind: ComputationKind,
        poll_id: int,
        payload: Dict[str, Any],
        offset: Optional[int] = None,
    ) -> ComputationRequest:
        return ComputationRequest(
            offset=new_offset() if offset is None else offset,
            kind=kind,
            poll_id=poll_id,
            payload=payload,
            program_id=self.program_id,
        )

    def accounts_for(self, request: ComputationRequest) -> Dict[str, str]:
        accounts = addresses.computation_accounts(
            self.program_id, self.cluster_offset, request.offset, request.kind.comp_def_name
        )
        accounts["pollAccount"] = addresses.poll_address(
            self.program_id, self.authority, request.poll_id
        ).hex()
        accounts["authority"] = self.authority.hex()
        return accounts

    def submit(self, request: ComputationRequest) -> ComputationRequest:
        """Submit one transaction for `request`

        Returns a copy of the request carrying the transaction signature.
        Raises SubmissionRejected or TransportError; a failed request must
        not be resubmitted with the same offset.
        """

        args = {"computationOffset": request.offset, "id": request.poll_id}
        args.update(request.payload)
        signature = self.ledger.send_transaction(
            self.program_id, request.kind.instruction, self.accounts_for(request), args
        )
        logger.info(
            "queued %s for poll %d (offset %d) sig=%s",
            request.kind.comp_def_name,
            request.poll_id,
            request.offset,
            signature[:16],
        )
        return dataclasses.replace(request, signature=signature)

    ## --- per-kind helpers --------------------------------------------------

    # The *_request methods only build: callers that must register an event
    # listener for the offset before submitting use them with `submit`.

    def create_poll_request(self, poll_id: int, description: str, nonce: Optional[bytes] = None) -> ComputationRequest:
        nonce = random_nonce() if nonce is None else nonce
        payload = {"description": description, "nonce": nonce_to_int(nonce)}
        return self.build(ComputationKind.CREATE_POLL, poll_id, payload)

    def vote_request(
        self, poll_id: int, ciphertext: bytes, encryption_public_key: bytes, nonce: bytes
    ) -> ComputationRequest:
        payload = {
            "vote": ciphertext.hex(),
            "voteEncryptionPubkey": encryption_public_key.hex(),
            "voteNonce": nonce_to_int(nonce),
        }
        return self.build(ComputationKind.CAST_VOTE, poll_id, payload)

    def reveal_request(self, poll_id: int) -> ComputationRequest:
        return self.build(ComputationKind.REVEAL_RESULT, poll_id, {})

    def create_poll(self, poll_id: int, description: str, nonce: Optional[bytes] = None) -> ComputationRequest:
        return self.submit(self.create_poll_request(poll_id, description, nonce))

    def cast_vote(
        self, poll_id: int, ciphertext: bytes, encryption_public_key: bytes, nonce: bytes
    ) -> ComputationRequest:
        return self.submit(self.vote_request(poll_id, ciphertext, encryption_public_key, nonce))

    def reveal_result(self, poll_id: int) -> ComputationRequest:
        return self.submit(self.reveal_request(poll_id))

    ## --- computation definitions -------------------------------------------

    def comp_def_address(self, kind: ComputationKind) -> bytes:
        return addresses.comp_def_address(self.program_id, kind.comp_def_name)

    def init_comp_def(self, kind: ComputationKind, circuit: Optional[bytes] = None) -> str:
        """One-time initialization of the computation definition for `kind`

        When `circuit` is given its SHA-256 is recorded with the definition.
        """

        accounts = {
            "compDefAccount": self.comp_def_address(kind).hex(),
            "mxeAccount": addresses.mxe_address(self.program_id).hex(),
            "payer": self.authority.hex(),
        }
        args = {
            "compDefName": kind.comp_def_name,
            "circuitHash": hashlib.sha256(circuit).hexdigest() if circuit is not None else None,
        }
        signature = self.ledger.send_transaction(self.program_id, kind.init_instruction, accounts, args)
        logger.info("initialized %s computation definition sig=%s", kind.comp_def_name, signature[:16])
        return signature
