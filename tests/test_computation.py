import pytest

from mxe_voting import addresses
from mxe_voting.cipher import nonce_to_int, random_nonce
from mxe_voting.computation import ComputationKind, ComputationRequestBuilder, new_offset
from mxe_voting.keys import Identity

PROGRAM_ID = addresses.DEFAULT_PROGRAM_ID


class RecordingLedger:
    def __init__(self, identity):
        self.identity = identity
        self.sent = []

    def send_transaction(self, program_id, instruction, accounts, args):
        self.sent.append((program_id, instruction, accounts, args))
        return "5" * 128


@pytest.fixture
def ledger():
    return RecordingLedger(Identity.generate())


@pytest.fixture
def builder(ledger):
    return ComputationRequestBuilder(ledger, PROGRAM_ID, cluster_offset=456)


def test_offsets_are_random_u64():
    offsets = {new_offset() for _ in range(32)}
    assert len(offsets) == 32
    assert all(0 <= o < 2**64 for o in offsets)


def test_builder_requires_signer():
    with pytest.raises(ValueError):
        ComputationRequestBuilder(RecordingLedger(None), PROGRAM_ID, 0)


def test_vote_submission(builder, ledger):
    nonce = random_nonce()
    request = builder.cast_vote(420, b"\x01" * 32, b"\x02" * 32, nonce)

    assert request.signature == "5" * 128
    program_id, instruction, accounts, args = ledger.sent[0]
    assert program_id == PROGRAM_ID
    assert instruction == "vote"
    assert args == {
        "computationOffset": request.offset,
        "id": 420,
        "vote": "01" * 32,
        "voteEncryptionPubkey": "02" * 32,
        "voteNonce": nonce_to_int(nonce),
    }
    expected = addresses.computation_accounts(PROGRAM_ID, 456, request.offset, "vote")
    for name, address in expected.items():
        assert accounts[name] == address
    assert accounts["pollAccount"] == addresses.poll_address(PROGRAM_ID, ledger.identity.public_key, 420).hex()
    assert accounts["authority"] == ledger.identity.address


def test_build_only_helpers_do_not_submit(builder, ledger):
    request = builder.reveal_request(1)
    assert request.kind is ComputationKind.REVEAL_RESULT
    assert request.signature is None
    assert ledger.sent == []


def test_each_request_gets_a_fresh_offset(builder):
    assert builder.reveal_request(1).offset != builder.reveal_request(1).offset


def test_create_poll_payload(builder, ledger):
    builder.create_poll(3, "Poll 3", nonce=b"\x01" + b"\x00" * 15)
    _, instruction, _, args = ledger.sent[0]
    assert instruction == "createNewPoll"
    assert args["description"] == "Poll 3"
    assert args["nonce"] == 1


def test_init_comp_def_records_circuit_hash(builder, ledger):
    builder.init_comp_def(ComputationKind.CREATE_POLL, b"circuit")
    _, instruction, accounts, args = ledger.sent[0]
    assert instruction == "initVoteStatsCompDef"
    assert args["compDefName"] == "init_vote_stats"
    assert len(bytes.fromhex(args["circuitHash"])) == 32
    assert accounts["compDefAccount"] == builder.comp_def_address(ComputationKind.CREATE_POLL).hex()
