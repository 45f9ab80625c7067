"""Delivery of ledger program events to one-shot listeners.

`EventListenerRegistry` polls the ledger's event log from a background
thread and pushes each event into the bounded queue of every listener
registered for that event name whose filter accepts it. `EventCorrelator`
turns a registration into a `Subscription` that resolves on the first
matching event and always unregisters, whether it resolved, timed out or
was abandoned.

Callers must open the subscription *before* submitting the transaction that
triggers the event. A listener only sees events sequenced after its
registration.
"""

from __future__ import annotations

import itertools
import logging
import queue
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Optional, Tuple

from .errors import CorrelationMismatch, EventTimeout, VotingError
from .ledger import LedgerClient

logger = logging.getLogger(__name__)

VOTE_EVENT = "voteEvent"
REVEAL_RESULT_EVENT = "revealResultEvent"


@dataclass(frozen=True)
class LedgerEvent:
    seq: int
    name: str
    data: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_wire(cls, raw: Dict[str, Any]) -> LedgerEvent:
        return cls(seq=int(raw["seq"]), name=str(raw["name"]), data=dict(raw.get("data") or {}))


@dataclass(frozen=True)
class VoteEvent:
    timestamp: int
    poll_id: int
    offset: int

    @classmethod
    def from_event(cls, event: LedgerEvent) -> VoteEvent:
        d = event.data
        return cls(timestamp=int(d["timestamp"]), poll_id=int(d["pollId"]), offset=int(d["computationOffset"]))


@dataclass(frozen=True)
class RevealResultEvent:
    output: bool
    poll_id: int
    offset: int

    @classmethod
    def from_event(cls, event: LedgerEvent) -> RevealResultEvent:
        d = event.data
        return cls(output=bool(d["output"]), poll_id=int(d["pollId"]), offset=int(d["computationOffset"]))


def match_offset(offset: int) -> Callable[[LedgerEvent], None]:
    """Event filter accepting only events emitted for computation `offset`"""

    def check(event: LedgerEvent) -> None:
        got = event.data.get("computationOffset")
        if got is None or int(got) != offset:
            raise CorrelationMismatch(f"{event.name} #{event.seq} is for offset {got}, waiting for {offset}")

    return check


@dataclass
class _Listener:
    name: str
    channel: "queue.Queue[LedgerEvent]"
    # highest sequence number seen by this listener
    last_seq: int
    match: Optional[Callable[[LedgerEvent], None]] = None


class EventListenerRegistry:
    """Ledger-client adapter fanning events out to registered listeners

    Args
    - ledger: client used to read the event log
    - program_id: program whose events are followed
    - poll_interval: seconds between two event log reads
    - channel_size: capacity of each listener's queue
    """

    def __init__(
        self,
        ledger: LedgerClient,
        program_id: bytes,
        poll_interval: float = 0.5,
        channel_size: int = 16,
    ):
        self.ledger = ledger
        self.program_id = program_id
        self.poll_interval = poll_interval
        self.channel_size = channel_size
        self._listeners: Dict[int, _Listener] = {}
        self._ids = itertools.count(1)
        self._lock = threading.Lock()
        self._cursor: Optional[int] = None
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def listener_count(self) -> int:
        with self._lock:
            return len(self._listeners)

    def add_listener(
        self, name: str, match: Optional[Callable[[LedgerEvent], None]] = None
    ) -> Tuple[int, "queue.Queue[LedgerEvent]"]:
        """Register a listener for `name`; returns (listener_id, channel)

        Reads the ledger's current event cursor synchronously so the listener
        is guaranteed to receive every later event. Events rejected by
        `match` never reach the channel.
        """

        _, head = self.ledger.get_events(self.program_id, since=None)
        channel: "queue.Queue[LedgerEvent]" = queue.Queue(maxsize=self.channel_size)
        with self._lock:
            listener_id = next(self._ids)
            self._listeners[listener_id] = _Listener(name=name, channel=channel, last_seq=head, match=match)
            if self._cursor is None or head < self._cursor:
                self._cursor = head
            if self._thread is None or not self._thread.is_alive():
                self._stop = threading.Event()
                self._thread = threading.Thread(
                    target=self._run, args=(self._stop,), name="ledger-event-poller", daemon=True
                )
                self._thread.start()
        logger.debug("listener %d registered for %s after #%d", listener_id, name, head)
        return listener_id, channel

    def remove_listener(self, listener_id: int) -> None:
        with self._lock:
            removed = self._listeners.pop(listener_id, None)
            if not self._listeners:
                self._stop.set()
                self._thread = None
                self._cursor = None
        if removed is not None:
            logger.debug("listener %d for %s removed", listener_id, removed.name)

    def close(self) -> None:
        with self._lock:
            self._listeners.clear()
            self._stop.set()
            thread, self._thread = self._thread, None
            self._cursor = None
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=max(1.0, 2 * self.poll_interval))

    def _run(self, stop: threading.Event) -> None:
        while not stop.is_set():
            try:
                self.poll_once()
            except Exception:
                logger.exception("event poller tick failed")
            stop.wait(self.poll_interval)

    def poll_once(self) -> int:
        """Read new events once and dispatch them; returns how many were read"""

        with self._lock:
            since = self._cursor
        if since is None:
            return 0
        try:
            raw_events, cursor = self.ledger.get_events(self.program_id, since=since)
        except VotingError as e:
            logger.warning("event poll failed, retrying next tick: %s", e)
            return 0

        events = [LedgerEvent.from_wire(raw) for raw in raw_events]
        with self._lock:
            if self._cursor is None:
                return len(events)
            for event in events:
                for listener_id, listener in self._listeners.items():
                    if event.seq <= listener.last_seq:
                        continue
                    listener.last_seq = event.seq
                    if listener.name != event.name:
                        continue
                    if listener.match is not None:
                        try:
                            listener.match(event)
                        except CorrelationMismatch as e:
                            logger.debug("listener %d ignoring event: %s", listener_id, e)
                            continue
                    try:
                        listener.channel.put_nowait(event)
                    except queue.Full:
                        logger.warning("listener %d channel full, dropping %s #%d", listener_id, event.name, event.seq)
            self._cursor = max(self._cursor, cursor)
        return len(events)


class ListenerState(Enum):
    IDLE = "idle"
    LISTENING = "listening"
    RESOLVED = "resolved"
    CLOSED = "closed"


class Subscription:
    """A one-shot listener: resolves on the first matching event, then unregisters"""

    def __init__(
        self,
        registry: EventListenerRegistry,
        name: str,
        match: Optional[Callable[[LedgerEvent], None]] = None,
    ):
        self.registry = registry
        self.name = name
        self.match = match
        self.state = ListenerState.IDLE
        self.event: Optional[LedgerEvent] = None
        self._listener_id: Optional[int] = None
        self._channel: Optional["queue.Queue[LedgerEvent]"] = None

    def open(self) -> Subscription:
        if self.state is not ListenerState.IDLE:
            raise RuntimeError(f"subscription already {self.state.value}")
        self._listener_id, self._channel = self.registry.add_listener(self.name, self.match)
        self.state = ListenerState.LISTENING
        return self

    def close(self) -> None:
        if self._listener_id is not None:
            self.registry.remove_listener(self._listener_id)
            self._listener_id = None
        if self.state is not ListenerState.RESOLVED:
            self.state = ListenerState.CLOSED

    def __enter__(self) -> Subscription:
        if self.state is ListenerState.IDLE:
            self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def wait(self, timeout: Optional[float] = None) -> LedgerEvent:
        """Block until a matching event arrives

        Non-matching events are filtered out by the registry. Raises
        EventTimeout when `timeout` seconds pass first; the listener is
        released either way.
        """

        if self.state is ListenerState.RESOLVED:
            return self.event
        if self.state is not ListenerState.LISTENING:
            raise RuntimeError(f"cannot wait on a {self.state.value} subscription")

        try:
            try:
                event = self._channel.get(timeout=timeout)
            except queue.Empty:
                raise EventTimeout(f"no {self.name} within {timeout}s") from None
            self.event = event
            self.state = ListenerState.RESOLVED
            logger.info("received %s #%d", event.name, event.seq)
            return event
        finally:
            self.close()


class EventCorrelator:
    def __init__(self, registry: EventListenerRegistry):
        self.registry = registry

    def listen(self, name: str, match: Optional[Callable[[LedgerEvent], None]] = None) -> Subscription:
        """Register now, wait later: use as a context manager around the submission"""

        return Subscription(self.registry, name, match).open()

    def wait_for(
        self,
        name: str,
        match: Optional[Callable[[LedgerEvent], None]] = None,
        timeout: Optional[float] = None,
    ) -> LedgerEvent:
        with self.listen(name, match) as sub:
            return sub.wait(timeout)
