"""Counter-mode cipher over the prime field used to encrypt votes.

Plaintexts are field elements (a vote is 0 or 1). Each plaintext is masked by
one keystream element: `c = (m + k) mod p`. The keystream comes from ChaCha20
keyed by an HKDF expansion of the X25519 shared secret, so only holders of
the shared secret (the voter and the MPC cluster) can remove the mask.
"""

from __future__ import annotations

import secrets
from typing import List, Sequence

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

# Field modulus 2^255 - 19
FIELD_PRIME = 2**255 - 19

NONCE_LENGTH = 16
BLOCK_LENGTH = 32

_KEYSTREAM_BYTES_PER_BLOCK = 64
_HKDF_INFO = b"mxe-voting/ctr-cipher"


def random_nonce() -> bytes:
    return secrets.token_bytes(NONCE_LENGTH)


def nonce_to_int(nonce: bytes) -> int:
    """Little-endian u128 form of a nonce, as passed to the ledger program"""

    if len(nonce) != NONCE_LENGTH:
        raise ValueError(f"nonce must be {NONCE_LENGTH} bytes")
    return int.from_bytes(nonce, "little")


def nonce_from_int(value: int) -> bytes:
    return int(value).to_bytes(NONCE_LENGTH, "little")


class CipherEnvelope:
    """Encrypts field elements under a shared secret

    The caller owns nonce uniqueness: never reuse a nonce with the same
    shared secret. `random_nonce()` is the expected source.
    """

    def __init__(self, shared_secret: bytes):
        if len(shared_secret) != 32:
            raise ValueError("shared secret must be 32 bytes")
        self._key = HKDF(
            algorithm=hashes.SHA256(), length=32, salt=None, info=_HKDF_INFO
        ).derive(bytes(shared_secret))

    def _keystream(self, nonce: bytes, count: int) -> List[int]:
        if len(nonce) != NONCE_LENGTH:
            raise ValueError(f"nonce must be {NONCE_LENGTH} bytes")
        encryptor = Cipher(algorithms.ChaCha20(self._key, bytes(nonce)), mode=None).encryptor()
        stream = encryptor.update(b"\x00" * (_KEYSTREAM_BYTES_PER_BLOCK * count))
        out = []
        for i in range(count):
            chunk = stream[i * _KEYSTREAM_BYTES_PER_BLOCK:(i + 1) * _KEYSTREAM_BYTES_PER_BLOCK]
            out.append(int.from_bytes(chunk, "little") % FIELD_PRIME)
        return out

    def encrypt(self, plaintexts: Sequence[int], nonce: bytes) -> List[bytes]:
        """Encrypt a sequence of field elements

        Args
        - plaintexts: integers in [0, p)
        - nonce: 16 fresh random bytes

        Returns: one 32-byte little-endian ciphertext block per plaintext
        """

        for m in plaintexts:
            if not 0 <= int(m) < FIELD_PRIME:
                raise ValueError("plaintext outside the field")
        keystream = self._keystream(nonce, len(plaintexts))
        return [
            ((int(m) + k) % FIELD_PRIME).to_bytes(BLOCK_LENGTH, "little")
            for m, k in zip(plaintexts, keystream)
        ]

    def decrypt(self, ciphertexts: Sequence[bytes], nonce: bytes) -> List[int]:
        """Inverse of `encrypt`; only the cluster (and tests) call this"""

        for c in ciphertexts:
            if len(c) != BLOCK_LENGTH:
                raise ValueError(f"ciphertext blocks must be {BLOCK_LENGTH} bytes")
        keystream = self._keystream(nonce, len(ciphertexts))
        return [
            (int.from_bytes(bytes(c), "little") - k) % FIELD_PRIME
            for c, k in zip(ciphertexts, keystream)
        ]
