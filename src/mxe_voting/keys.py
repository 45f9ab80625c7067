from __future__ import annotations

import hashlib
import json
import os
from dataclasses import dataclass

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey
from cryptography.hazmat.primitives.asymmetric.x25519 import X25519PrivateKey, X25519PublicKey

ENCRYPTION_KEY_MESSAGE = "arcium-voting-encryption-key-v1"

KEY_LENGTH = 32

_RAW = serialization.Encoding.Raw


class Identity:
    """Ed25519 signing keypair owned by the caller (the wallet)

    Attributes
    - public_key: 32 raw bytes, also the ledger address of the signer
    """

    def __init__(self, private_key: Ed25519PrivateKey):
        self._private_key = private_key
        self.public_key = private_key.public_key().public_bytes(_RAW, serialization.PublicFormat.Raw)

    @classmethod
    def generate(cls) -> Identity:
        return cls(Ed25519PrivateKey.generate())

    @classmethod
    def from_seed(cls, seed: bytes) -> Identity:
        if len(seed) != KEY_LENGTH:
            raise ValueError("ed25519 seed must be 32 bytes")
        return cls(Ed25519PrivateKey.from_private_bytes(bytes(seed)))

    @classmethod
    def from_secret_key(cls, secret_key: bytes) -> Identity:
        """Build an identity from a 64-byte secret key (seed || public key)

        The trailing public key must match the one derived from the seed.
        """

        if len(secret_key) != 2 * KEY_LENGTH:
            raise ValueError("secret key must be 64 bytes (seed followed by public key)")
        identity = cls.from_seed(secret_key[:KEY_LENGTH])
        if identity.public_key != bytes(secret_key[KEY_LENGTH:]):
            raise ValueError("secret key public half does not match its seed")
        return identity

    @property
    def address(self) -> str:
        return self.public_key.hex()

    def sign(self, message: bytes) -> bytes:
        return self._private_key.sign(message)

    def secret_key(self) -> bytes:
        seed = self._private_key.private_bytes(
            _RAW, serialization.PrivateFormat.Raw, serialization.NoEncryption()
        )
        return seed + self.public_key

    def __repr__(self) -> str:
        return f"Identity({self.address})"


def load_identity(path: str) -> Identity:
    """Load a wallet keypair file: a JSON array of the 64 secret key bytes"""

    with open(os.path.expanduser(path), "r", encoding="utf-8") as f:
        raw = json.load(f)
    if not isinstance(raw, list) or not all(isinstance(b, int) and 0 <= b < 256 for b in raw):
        raise ValueError(f"{path}: expected a JSON array of byte values")
    return Identity.from_secret_key(bytes(raw))


def save_identity(identity: Identity, path: str) -> None:
    """Write the signing keypair in the same JSON array format `load_identity` reads"""

    with open(os.path.expanduser(path), "w", encoding="utf-8") as f:
        json.dump(list(identity.secret_key()), f)


@dataclass(frozen=True)
class EncryptionKeypair:
    """X25519 keypair derived from an identity

    Attributes
    - private_key: 32-byte X25519 scalar (never persisted)
    - public_key: 32-byte X25519 public key sent with every vote
    """

    private_key: bytes
    public_key: bytes

    def __repr__(self) -> str:
        return f"EncryptionKeypair(public_key={self.public_key.hex()})"


def x25519_public_key(private_key: bytes) -> bytes:
    priv = X25519PrivateKey.from_private_bytes(private_key)
    return priv.public_key().public_bytes(_RAW, serialization.PublicFormat.Raw)


def derive_encryption_keypair(identity: Identity, message: str = ENCRYPTION_KEY_MESSAGE) -> EncryptionKeypair:
    """Derive the voter's encryption keypair from their wallet

    Signs `message` with the identity, hashes the signature with SHA-256 and
    uses the digest as the X25519 private key. Ed25519 signatures are
    deterministic, so the same wallet always recovers the same keypair.
    """

    signature = identity.sign(message.encode("utf-8"))
    private_key = hashlib.sha256(signature).digest()
    return EncryptionKeypair(private_key=private_key, public_key=x25519_public_key(private_key))


def shared_secret(private_key: bytes, peer_public_key: bytes) -> bytes:
    """X25519 key agreement between our private key and a peer public key

    Raises ValueError for malformed keys or a low-order peer point.
    """

    if len(peer_public_key) != KEY_LENGTH:
        raise ValueError("peer public key must be 32 bytes")
    priv = X25519PrivateKey.from_private_bytes(private_key)
    return priv.exchange(X25519PublicKey.from_public_bytes(bytes(peer_public_key)))
