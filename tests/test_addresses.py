import hashlib

import pytest

from mxe_voting import addresses
from mxe_voting.keys import Identity

PROGRAM_ID = addresses.DEFAULT_PROGRAM_ID


def test_derived_addresses_are_off_curve_and_stable():
    address, bump = addresses.find_program_address([b"seed"], PROGRAM_ID)
    assert len(address) == 32
    assert 0 <= bump <= 255
    assert not addresses.is_on_curve(address)
    assert addresses.find_program_address([b"seed"], PROGRAM_ID) == (address, bump)


def test_real_public_keys_are_on_curve():
    assert addresses.is_on_curve(Identity.generate().public_key)


def test_long_seeds_are_rejected():
    with pytest.raises(ValueError):
        addresses.find_program_address([b"x" * 33], PROGRAM_ID)


def test_comp_def_offset_is_little_endian_hash_prefix():
    digest = hashlib.sha256(b"vote").digest()
    assert addresses.comp_def_offset("vote") == int.from_bytes(digest[:4], "little")
    assert addresses.comp_def_offset("vote") != addresses.comp_def_offset("reveal_result")


def test_computation_accounts_depend_on_offset_only_where_expected():
    a = addresses.computation_accounts(PROGRAM_ID, 456, 1, "vote")
    b = addresses.computation_accounts(PROGRAM_ID, 456, 2, "vote")
    assert a["computationAccount"] != b["computationAccount"]
    for name in ("clusterAccount", "mxeAccount", "mempoolAccount", "executingPool", "compDefAccount"):
        assert a[name] == b[name]


def test_cluster_offset_changes_cluster_accounts():
    a = addresses.computation_accounts(PROGRAM_ID, 0, 1, "vote")
    b = addresses.computation_accounts(PROGRAM_ID, 456, 1, "vote")
    assert a["clusterAccount"] != b["clusterAccount"]
    assert a["mxeAccount"] == b["mxeAccount"]


def test_poll_address_is_per_authority_and_id():
    alice = Identity.generate().public_key
    bob = Identity.generate().public_key
    assert addresses.poll_address(PROGRAM_ID, alice, 420) != addresses.poll_address(PROGRAM_ID, alice, 421)
    assert addresses.poll_address(PROGRAM_ID, alice, 420) != addresses.poll_address(PROGRAM_ID, bob, 420)
