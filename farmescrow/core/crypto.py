"""
farmescrow/core/crypto.py

Ed25519 signing for ledger transactions.

Key contracts:
    public_key              : @property → "G..." ledger address (NO parentheses)
    secret                  : @property → "S..." secret seed
    sign(data)              : bytes → raw 64-byte Ed25519 signature
    signature_hint          : @property → last 4 bytes of the raw public key
    verify_detached(...)    : @staticmethod, verifies with ONLY a "G..." address
    keypair                 : @property → stellar_sdk Keypair, for envelope signing

Secrets are held only for the lifetime of the key manager. Callers build one
per operation and let it go out of scope when the operation returns.
"""

import secrets as _secrets

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)
from cryptography.hazmat.primitives.serialization import (
    Encoding,
    NoEncryption,
    PrivateFormat,
    PublicFormat,
)

from stellar_sdk import Keypair, StrKey

from farmescrow.core.exceptions import ValidationError


class Ed25519KeyManager:
    """
    Ed25519 key pair addressed by ledger "G..." / "S..." keys.

    Public surface:
        Ed25519KeyManager.generate()                          → new random key
        Ed25519KeyManager.from_secret(secret)                 → load from "S..." seed
        Ed25519KeyManager.from_private_bytes(seed)            → load from raw 32-byte seed
        Ed25519KeyManager.verify_detached(data, sig, address) → @staticmethod

        key.public_key        (@property) → "G..." address
        key.raw_public_key    (@property) → 32 raw bytes
        key.signature_hint    (@property) → 4 bytes
        key.keypair           (@property) → stellar_sdk Keypair
        key.sign(data)                    → 64 raw bytes
        key.proves_ownership(address)     → bool
    """

    def __init__(self, private_key: Ed25519PrivateKey) -> None:
        self._private_key:    Ed25519PrivateKey = private_key
        self._public_key:     Ed25519PublicKey  = private_key.public_key()
        self._raw_public_key: bytes = self._public_key.public_bytes(
            Encoding.Raw, PublicFormat.Raw
        )
        self._address: str = StrKey.encode_ed25519_public_key(self._raw_public_key)

    # ── Construction ──────────────────────────────────────────

    @classmethod
    def generate(cls) -> "Ed25519KeyManager":
        """Generate a new random Ed25519 key pair."""
        return cls(Ed25519PrivateKey.generate())

    @classmethod
    def from_private_bytes(cls, seed: bytes) -> "Ed25519KeyManager":
        """
        Load an Ed25519 key from a raw 32-byte seed.
        Raises ValueError if seed is not exactly 32 bytes.
        """
        if len(seed) != 32:
            raise ValueError(
                f"Ed25519 seed must be 32 bytes, got {len(seed)}"
            )
        return cls(Ed25519PrivateKey.from_private_bytes(seed))

    @classmethod
    def from_secret(cls, secret: str, field: str = "secret_key") -> "Ed25519KeyManager":
        """
        Load an Ed25519 key from an "S..." secret seed.
        Raises ValidationError naming field if the seed is malformed.
        The offending value is never echoed back.
        """
        try:
            if not isinstance(secret, str):
                raise ValueError("expected a string")
            seed = StrKey.decode_ed25519_secret_seed(secret)
        except ValueError as exc:
            raise ValidationError(
                f"{field} is not a valid secret seed",
                field=field,
            ) from exc
        return cls.from_private_bytes(seed)

    # ── Public Key ────────────────────────────────────────────

    @property
    def public_key(self) -> str:
        """56-character "G..." address of this key. A @property."""
        return self._address

    @property
    def raw_public_key(self) -> bytes:
        return self._raw_public_key

    @property
    def signature_hint(self) -> bytes:
        """Last 4 bytes of the raw public key, as carried in decorated signatures."""
        return self._raw_public_key[-4:]

    @property
    def secret(self) -> str:
        """
        "S..." secret seed. Use only to hand the key to its owner; never log.
        """
        return StrKey.encode_ed25519_secret_seed(self._raw_seed())

    @property
    def keypair(self) -> Keypair:
        """The same key as a stellar_sdk Keypair, for signing envelopes."""
        return Keypair.from_raw_ed25519_seed(self._raw_seed())

    def _raw_seed(self) -> bytes:
        return self._private_key.private_bytes(
            encoding=             Encoding.Raw,
            format=               PrivateFormat.Raw,
            encryption_algorithm= NoEncryption(),
        )

    # ── Signing ───────────────────────────────────────────────

    def sign(self, data: bytes) -> bytes:
        """Sign data with Ed25519. Returns the raw 64-byte signature."""
        return self._private_key.sign(data)

    def proves_ownership(self, address: str) -> bool:
        """
        True if this key controls address.

        Decided by signing a fresh random challenge and verifying it
        against address, not by comparing strings.
        """
        challenge = _secrets.token_bytes(32)
        return Ed25519KeyManager.verify_detached(challenge, self.sign(challenge), address)

    # ── Verification (static) ─────────────────────────────────

    @staticmethod
    def verify_detached(data: bytes, signature: bytes, address: str) -> bool:
        """
        Verify an Ed25519 signature using ONLY a "G..." address.

        Returns:
            True if the signature is valid over data with the given key.
            False for ANY failure: wrong key, malformed address, wrong
            signature length. Never raises.
        """
        try:
            raw_pub = decode_account_id(address)
        except ValueError:
            return False
        if len(signature) != 64:
            return False
        try:
            Ed25519PublicKey.from_public_bytes(raw_pub).verify(signature, data)
        except (InvalidSignature, ValueError):
            return False
        return True

    def __repr__(self) -> str:
        return f"Ed25519KeyManager(public_key={self._address[:8]}...)"


# ── Addresses ─────────────────────────────────────────────────

def decode_account_id(address: str) -> bytes:
    """Raw 32-byte public key of a "G..." address. Raises ValueError."""
    if not isinstance(address, str):
        raise ValueError("address must be a string")
    return StrKey.decode_ed25519_public_key(address)


def is_valid_account_id(address: str) -> bool:
    return isinstance(address, str) and StrKey.is_valid_ed25519_public_key(address)


def require_account_id(address: str, field: str) -> str:
    """Return address unchanged, or raise ValidationError naming field."""
    try:
        decode_account_id(address)
    except ValueError as exc:
        raise ValidationError(
            f"{field} is not a valid ledger address: {exc}",
            field=field,
        ) from exc
    return address


def abbreviate(address: str) -> str:
    """Short form for logs: GABC...WXYZ."""
    return f"{address[:4]}...{address[-4:]}"
