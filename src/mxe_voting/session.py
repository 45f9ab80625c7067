"""Poll lifecycle orchestration: create poll -> cast votes -> reveal result.

Within one poll the three phases are strictly ordered. Different polls are
independent and may run concurrently (see `run_polls`); they only share the
read-only encryption envelope and the event listener registry.

The session does not recover from errors: every protocol error propagates
to the caller, who decides whether to abort the poll or restart a step
(always with a new computation offset).
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import requests

from . import addresses
from .cipher import CipherEnvelope, random_nonce
from .computation import ComputationKind, ComputationRequestBuilder
from .config import SessionConfig
from .errors import ResultMismatch
from .events import (
    REVEAL_RESULT_EVENT,
    VOTE_EVENT,
    EventCorrelator,
    EventListenerRegistry,
    RevealResultEvent,
    VoteEvent,
    match_offset,
)
from .finalization import FinalizationResult, FinalizationWaiter
from .key_fetcher import RetryingKeyFetcher
from .keys import ENCRYPTION_KEY_MESSAGE, EncryptionKeypair, Identity, derive_encryption_keypair, shared_secret
from .ledger import LedgerClient

logger = logging.getLogger(__name__)


def expected_outcome(votes: Iterable[bool]) -> bool:
    """Majority rule of the tally circuit: yes strictly beats no (ties are False)"""

    votes = list(votes)
    yes = sum(1 for v in votes if v)
    return yes > len(votes) - yes


class PollSession:
    """Runs the confidential voting protocol for one signer

    Args
    - config: session configuration
    - identity: the signer's wallet keypair
    - http: optional requests.Session used for the ledger endpoint
    """

    def __init__(self, config: SessionConfig, identity: Identity, http: Optional[requests.Session] = None):
        self.config = config
        self.identity = identity
        self.program_id = config.program_id
        self.ledger = LedgerClient(config.rpc_url, identity=identity, session=http, timeout=config.request_timeout)
        self.builder = ComputationRequestBuilder(self.ledger, self.program_id, config.cluster_offset)
        self.waiter = FinalizationWaiter(self.ledger, poll_interval=config.poll_interval)
        self.key_fetcher = RetryingKeyFetcher(self.ledger, self.program_id, policy=config.key_fetch_policy)
        self.registry = EventListenerRegistry(self.ledger, self.program_id, poll_interval=config.poll_interval)
        self.events = EventCorrelator(self.registry)
        self._cipher: Optional[CipherEnvelope] = None
        self._keypair: Optional[EncryptionKeypair] = None
        self._cipher_lock = threading.Lock()

    def close(self) -> None:
        self.registry.close()
        self.ledger.close()

    def __enter__(self) -> PollSession:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    ## --- encryption --------------------------------------------------------

    def encryption_keypair(self) -> EncryptionKeypair:
        if self._keypair is None:
            self._keypair = derive_encryption_keypair(self.identity, ENCRYPTION_KEY_MESSAGE)
        return self._keypair

    def cipher(self) -> CipherEnvelope:
        """Envelope keyed by the secret shared with the cluster, derived once per session"""

        with self._cipher_lock:
            if self._cipher is None:
                keypair = self.encryption_keypair()
                cluster_key = self.key_fetcher.fetch()
                self._cipher = CipherEnvelope(shared_secret(keypair.private_key, cluster_key))
            return self._cipher

    ## --- setup -------------------------------------------------------------

    def initialize_comp_defs(self, circuits: Optional[Dict[ComputationKind, bytes]] = None) -> List[str]:
        """Initialize every computation definition that does not exist yet"""

        circuits = circuits or {}
        signatures = []
        for kind in ComputationKind:
            if self.ledger.get_account(self.builder.comp_def_address(kind)) is not None:
                logger.info("%s computation definition already initialized", kind.comp_def_name)
                continue
            signatures.append(self.builder.init_comp_def(kind, circuits.get(kind)))
        return signatures

    def fetch_poll(self, poll_id: int) -> Optional[dict]:
        return self.ledger.get_account(addresses.poll_address(self.program_id, self.identity.public_key, poll_id))

    ## --- protocol phases ---------------------------------------------------

    def create_poll(self, poll_id: int, description: str) -> FinalizationResult:
        request = self.builder.create_poll(poll_id, description)
        result = self.waiter.wait(request.offset, self.program_id, self.config.commitment)
        logger.info("poll %d created (%s)", poll_id, description)
        return result

    def cast_vote(self, poll_id: int, vote: bool) -> VoteEvent:
        cipher = self.cipher()
        nonce = random_nonce()
        ciphertext = cipher.encrypt([int(bool(vote))], nonce)[0]
        request = self.builder.vote_request(poll_id, ciphertext, self.encryption_keypair().public_key, nonce)
        with self.events.listen(VOTE_EVENT, match_offset(request.offset)) as sub:
            self.builder.submit(request)
            self.waiter.wait(request.offset, self.program_id, self.config.commitment)
            event = VoteEvent.from_event(sub.wait(self.config.event_timeout))
        logger.info("vote cast for poll %d at %d", poll_id, event.timestamp)
        return event

    def reveal_result(self, poll_id: int) -> bool:
        request = self.builder.reveal_request(poll_id)
        with self.events.listen(REVEAL_RESULT_EVENT, match_offset(request.offset)) as sub:
            self.builder.submit(request)
            self.waiter.wait(request.offset, self.program_id, self.config.commitment)
            event = RevealResultEvent.from_event(sub.wait(self.config.event_timeout))
        logger.info("poll %d revealed: %s", poll_id, event.output)
        return event.output

    def run_poll(self, poll_id: int, description: str, votes: Iterable[bool], verify: bool = True) -> bool:
        """Full lifecycle of one poll; returns the revealed result

        With `verify`, the revealed result must equal the outcome computed
        locally from `votes`, else ResultMismatch is raised.
        """

        votes = list(votes)
        self.create_poll(poll_id, description)
        for vote in votes:
            self.cast_vote(poll_id, vote)
        output = self.reveal_result(poll_id)
        if verify:
            expected = expected_outcome(votes)
            if output != expected:
                raise ResultMismatch(poll_id, expected, output)
        return output


def run_polls(
    session: PollSession,
    polls: Dict[int, Tuple[str, Sequence[bool]]],
    max_workers: int = 4,
    verify: bool = True,
) -> Dict[int, bool]:
    """Run independent poll lifecycles concurrently

    Args
    - polls: poll_id -> (description, votes)

    Returns: poll_id -> revealed result. The first failing poll's error is
    raised after every lifecycle has finished.
    """

    with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="poll") as pool:
        futures = {
            poll_id: pool.submit(session.run_poll, poll_id, description, votes, verify)
            for poll_id, (description, votes) in polls.items()
        }
        results = {}
        errors = []
        for poll_id, future in futures.items():
            try:
                results[poll_id] = future.result()
            except Exception as e:
                logger.error("poll %d failed: %s", poll_id, e)
                errors.append(e)
    if errors:
        raise errors[0]
    return results
