"""Cryptographic utilities.

BLS signatures over the proof-of-possession ciphersuite (py_ecc), signing
roots built from SSZ hash tree roots.
"""

import hashlib
import logging
import os
from typing import Optional

from py_ecc.bls import G2ProofOfPossession as _bls
from py_ecc.bls.g2_primitives import signature_to_G2, subgroup_check

from ..exceptions import (
    CommitmentError,
    InvalidPublicKeyEncoding,
    InvalidSignatureEncoding,
)
from ..spec.constants import BLS_PUBKEY_LENGTH, BLS_SIGNATURE_LENGTH

logger = logging.getLogger(__name__)

ZERO_ROOT = b"\x00" * 32


def sha256(data: bytes) -> bytes:
    """Compute SHA256 hash."""
    return hashlib.sha256(data).digest()


def hash_tree_root(obj) -> bytes:
    """Compute the hash tree root of an SSZ object or return bytes directly.

    Args:
        obj: SSZ object with hash_tree_root() method, or 32-byte root

    Returns:
        32-byte hash tree root

    Raises:
        CommitmentError: if the object cannot be canonically encoded
    """
    if isinstance(obj, bytes):
        if len(obj) == 32:
            return obj
        raise CommitmentError(f"Expected 32-byte root, got {len(obj)} bytes")

    if hasattr(obj, "hash_tree_root"):
        try:
            root = obj.hash_tree_root()
        except Exception as e:
            raise CommitmentError(f"Cannot compute hash tree root of {type(obj).__name__}: {e}") from e
        if isinstance(root, bytes):
            return root
        return bytes(root)

    raise CommitmentError(f"Cannot compute hash_tree_root of {type(obj)}")


def compute_domain(
    domain_type: bytes,
    fork_version: bytes,
    genesis_validators_root: bytes = ZERO_ROOT,
) -> bytes:
    """Compute the 32-byte signing domain for a domain type and fork."""
    from ..spec.types import ForkData, Root

    fork_data = ForkData(
        current_version=fork_version,
        genesis_validators_root=Root(genesis_validators_root),
    )
    fork_data_root = hash_tree_root(fork_data)
    return domain_type + fork_data_root[:28]


def compute_signing_root(obj, domain: bytes) -> bytes:
    """Compute the signing root for a message and domain.

    Args:
        obj: SSZ object or 32-byte root
        domain: 32-byte domain

    Returns:
        32-byte signing root
    """
    from ..spec.types import SigningData, Root

    signing_data = SigningData(
        object_root=Root(hash_tree_root(obj)),
        domain=domain,
    )
    return hash_tree_root(signing_data)


def generate_secret_key(seed: Optional[bytes] = None) -> int:
    """Derive a BLS secret key from a seed of at least 32 bytes (random if omitted)."""
    if seed is None:
        seed = os.urandom(32)
    return _bls.KeyGen(seed)


def pubkey_from_privkey(privkey: int) -> bytes:
    """Derive public key from private key."""
    return _bls.SkToPk(privkey)


def sign(privkey: int, message: bytes) -> bytes:
    """Sign a message with a BLS private key."""
    return _bls.Sign(privkey, message)


def verify(pubkey: bytes, message: bytes, signature: bytes) -> bool:
    """Verify a BLS signature."""
    try:
        return _bls.Verify(pubkey, message, signature)
    except Exception:
        return False


def sign_object(privkey: int, obj, domain: Optional[bytes] = None) -> bytes:
    """Sign the hash tree root of an SSZ object, or its signing root under a domain."""
    if domain is None:
        message = hash_tree_root(obj)
    else:
        message = compute_signing_root(obj, domain)
    return sign(privkey, message)


def decode_signature(signature: bytes):
    """Decode a compressed G2 signature, raising InvalidSignatureEncoding if malformed."""
    if len(signature) != BLS_SIGNATURE_LENGTH:
        raise InvalidSignatureEncoding(
            f"signature must be {BLS_SIGNATURE_LENGTH} bytes, got {len(signature)}"
        )
    try:
        point = signature_to_G2(signature)
    except Exception as e:
        raise InvalidSignatureEncoding(f"malformed signature: {e}") from e
    if not subgroup_check(point):
        raise InvalidSignatureEncoding("signature is not in the G2 subgroup")
    return point


def validate_pubkey(pubkey: bytes) -> bytes:
    """Check a compressed G1 public key, raising InvalidPublicKeyEncoding if malformed."""
    if len(pubkey) != BLS_PUBKEY_LENGTH:
        raise InvalidPublicKeyEncoding(
            f"pubkey must be {BLS_PUBKEY_LENGTH} bytes, got {len(pubkey)}"
        )
    try:
        valid = _bls.KeyValidate(pubkey)
    except Exception as e:
        raise InvalidPublicKeyEncoding(f"malformed pubkey: {e}") from e
    if not valid:
        raise InvalidPublicKeyEncoding("pubkey is not a valid G1 point")
    return pubkey


def verify_signature(obj, pubkey: bytes, signature: bytes, domain: Optional[bytes] = None) -> bool:
    """Verify a signature over an SSZ object's commitment.

    The commitment is the object's hash tree root, or its signing root when a
    domain is given. Decoding failures raise before any pairing check.

    Raises:
        CommitmentError: the object cannot be hashed
        InvalidSignatureEncoding: the signature is malformed
        InvalidPublicKeyEncoding: the pubkey is malformed
    """
    if domain is None:
        message = hash_tree_root(obj)
    else:
        message = compute_signing_root(obj, domain)
    decode_signature(signature)
    validate_pubkey(pubkey)
    return verify(pubkey, message, signature)


__all__ = [
    "ZERO_ROOT",
    "sha256",
    "hash_tree_root",
    "compute_domain",
    "compute_signing_root",
    "generate_secret_key",
    "pubkey_from_privkey",
    "sign",
    "verify",
    "sign_object",
    "decode_signature",
    "validate_pubkey",
    "verify_signature",
]
