import json

import pytest

from mxe_voting.keys import (
    ENCRYPTION_KEY_MESSAGE,
    Identity,
    derive_encryption_keypair,
    load_identity,
    save_identity,
    shared_secret,
    x25519_public_key,
)


def test_encryption_keypair_is_deterministic_per_identity():
    identity = Identity.from_seed(bytes(range(32)))
    a = derive_encryption_keypair(identity)
    b = derive_encryption_keypair(Identity.from_seed(bytes(range(32))))
    assert a == b
    assert len(a.private_key) == 32 and len(a.public_key) == 32
    assert x25519_public_key(a.private_key) == a.public_key


def test_encryption_keypair_depends_on_identity_and_message():
    one = Identity.generate()
    two = Identity.generate()
    assert derive_encryption_keypair(one) != derive_encryption_keypair(two)
    assert derive_encryption_keypair(one) != derive_encryption_keypair(one, ENCRYPTION_KEY_MESSAGE + "-other")


def test_repr_does_not_leak_private_key():
    keypair = derive_encryption_keypair(Identity.generate())
    assert keypair.private_key.hex() not in repr(keypair)


def test_shared_secret_agrees_on_both_sides():
    voter = derive_encryption_keypair(Identity.generate())
    cluster = derive_encryption_keypair(Identity.generate())
    assert shared_secret(voter.private_key, cluster.public_key) == shared_secret(
        cluster.private_key, voter.public_key
    )


def test_shared_secret_rejects_short_peer_key():
    keypair = derive_encryption_keypair(Identity.generate())
    with pytest.raises(ValueError):
        shared_secret(keypair.private_key, b"\x01" * 31)


def test_identity_file_round_trip(tmp_path):
    identity = Identity.generate()
    path = tmp_path / "id.json"
    save_identity(identity, str(path))

    raw = json.loads(path.read_text())
    assert isinstance(raw, list) and len(raw) == 64
    assert load_identity(str(path)).public_key == identity.public_key


def test_secret_key_with_wrong_public_half_is_rejected():
    secret = bytearray(Identity.generate().secret_key())
    secret[-1] ^= 0xFF
    with pytest.raises(ValueError):
        Identity.from_secret_key(bytes(secret))


def test_load_identity_rejects_non_byte_arrays(tmp_path):
    path = tmp_path / "id.json"
    path.write_text(json.dumps({"secret": "nope"}))
    with pytest.raises(ValueError):
        load_identity(str(path))
