import pytest

from mxe_voting.cipher import (
    BLOCK_LENGTH,
    FIELD_PRIME,
    CipherEnvelope,
    nonce_from_int,
    nonce_to_int,
    random_nonce,
)
from mxe_voting.keys import Identity, derive_encryption_keypair, shared_secret


def _envelopes():
    voter = derive_encryption_keypair(Identity.generate())
    cluster = derive_encryption_keypair(Identity.generate())
    return (
        CipherEnvelope(shared_secret(voter.private_key, cluster.public_key)),
        CipherEnvelope(shared_secret(cluster.private_key, voter.public_key)),
    )


def test_cluster_recovers_votes():
    voter_side, cluster_side = _envelopes()
    nonce = random_nonce()
    blocks = voter_side.encrypt([1, 0, 1], nonce)
    assert all(len(b) == BLOCK_LENGTH for b in blocks)
    assert cluster_side.decrypt(blocks, nonce) == [1, 0, 1]


def test_fresh_nonce_changes_ciphertext():
    envelope, _ = _envelopes()
    assert envelope.encrypt([1], random_nonce()) != envelope.encrypt([1], random_nonce())


def test_equal_votes_under_one_nonce_get_distinct_masks():
    envelope, _ = _envelopes()
    a, b = envelope.encrypt([1, 1], random_nonce())
    assert a != b


def test_wrong_key_does_not_recover_plaintext():
    envelope, _ = _envelopes()
    stranger, _ = _envelopes()
    nonce = random_nonce()
    blocks = envelope.encrypt([1], nonce)
    assert stranger.decrypt(blocks, nonce) != [1]


def test_plaintext_outside_field_is_rejected():
    envelope, _ = _envelopes()
    with pytest.raises(ValueError):
        envelope.encrypt([FIELD_PRIME], random_nonce())
    with pytest.raises(ValueError):
        envelope.encrypt([-1], random_nonce())


def test_nonce_length_is_checked():
    envelope, _ = _envelopes()
    with pytest.raises(ValueError):
        envelope.encrypt([1], b"\x00" * 12)
    with pytest.raises(ValueError):
        nonce_to_int(b"\x00" * 8)


def test_nonce_is_little_endian_u128():
    assert nonce_to_int(b"\x01" + b"\x00" * 15) == 1
    assert nonce_from_int(2**120) == b"\x00" * 15 + b"\x01"
    nonce = random_nonce()
    assert nonce_from_int(nonce_to_int(nonce)) == nonce


def test_shared_secret_length_is_checked():
    with pytest.raises(ValueError):
        CipherEnvelope(b"short")
