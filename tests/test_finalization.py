import logging

import pytest

from mxe_voting.errors import ComputationFailed, FinalizationTimeout, TransportError
from mxe_voting.finalization import FinalizationWaiter

PROGRAM_ID = b"\x09" * 32


class FakeLedger:
    def __init__(self, states):
        self.states = list(states)
        self.requests = []

    def get_computation(self, program_id, offset, commitment):
        self.requests.append((program_id, offset, commitment))
        item = self.states.pop(0) if self.states else {"status": "queued"}
        if isinstance(item, Exception):
            raise item
        return item


def _waiter(ledger):
    sleeps = []
    return FinalizationWaiter(ledger, poll_interval=0.2, sleep=sleeps.append), sleeps


def test_waits_through_pending_states():
    ledger = FakeLedger([
        None,
        {"status": "queued"},
        TransportError("timeout"),
        {"status": "executing"},
        {"status": "finalized", "signature": "ab" * 64, "slot": 12},
    ])
    waiter, sleeps = _waiter(ledger)
    result = waiter.wait(42, PROGRAM_ID, "confirmed")
    assert result.offset == 42
    assert result.slot == 12
    assert result.signature == "ab" * 64
    assert len(sleeps) == 4
    assert all(r == (PROGRAM_ID, 42, "confirmed") for r in ledger.requests)


def test_failed_computation_is_not_retried():
    ledger = FakeLedger([{"status": "failed", "error": "empty tally: no votes recorded"}])
    waiter, _ = _waiter(ledger)
    with pytest.raises(ComputationFailed) as info:
        waiter.wait(7, PROGRAM_ID)
    assert info.value.offset == 7
    assert "empty tally" in info.value.reason
    assert len(ledger.requests) == 1


def test_bounded_wait_times_out():
    waiter, sleeps = _waiter(FakeLedger([]))
    with pytest.raises(FinalizationTimeout) as info:
        waiter.wait(5, PROGRAM_ID, max_attempts=3)
    assert info.value.attempts == 3
    assert len(sleeps) == 2


def test_unknown_commitment_is_rejected():
    waiter, _ = _waiter(FakeLedger([]))
    with pytest.raises(ValueError):
        waiter.wait(1, PROGRAM_ID, commitment="rooted")


def test_pending_polls_are_not_logged_at_info(caplog):
    caplog.set_level(logging.DEBUG)
    ledger = FakeLedger([{"status": "queued"}] * 5 + [{"status": "finalized", "signature": "cd", "slot": 3}])
    waiter, _ = _waiter(ledger)
    waiter.wait(11, PROGRAM_ID)
    retry_records = [r for r in caplog.records if r.name == "mxe_voting.retry"]
    assert len(retry_records) == 5
    assert all(r.levelno == logging.DEBUG for r in retry_records)
