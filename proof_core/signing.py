"""
signing.py — Ed25519 Signatures
=================================
Key generation, signing and verification for node identities and
validators. Uses PyCryptodome's EdDSA implementation in RFC 8032
mode, which yields deterministic 64-byte signatures.
"""

import logging
from pathlib import Path

from Crypto.PublicKey import ECC
from Crypto.Signature import eddsa

from proof_core.errors import SignatureInvalidError

logger = logging.getLogger(__name__)

CURVE = "Ed25519"
PUBLIC_KEY_SIZE = 32
SIGNATURE_SIZE = 64


def generate_private_key() -> ECC.EccKey:
    """Generate a fresh Ed25519 private key."""
    key = ECC.generate(curve=CURVE)
    logger.info("Generated new Ed25519 key pair")
    return key


def public_key_bytes(key: ECC.EccKey) -> bytes:
    """Raw 32-byte encoding of the public half of ``key``."""
    return key.public_key().export_key(format="raw")


def load_public_key(raw: bytes) -> ECC.EccKey:
    """
    Import a raw 32-byte Ed25519 public key.

    Raises:
        SignatureInvalidError: If the bytes are not a valid public key.
    """
    try:
        return eddsa.import_public_key(bytes(raw))
    except ValueError as e:
        raise SignatureInvalidError(f"Invalid Ed25519 public key: {e}")


def sign(private_key: ECC.EccKey, message: bytes) -> bytes:
    """Sign ``message`` with ``private_key``; returns 64 signature bytes."""
    signer = eddsa.new(private_key, "rfc8032")
    return signer.sign(bytes(message))


def verify_signature(public_key: bytes, message: bytes, signature: bytes) -> bool:
    """
    Verify an Ed25519 signature.

    Args:
        public_key: Raw 32-byte public key.
        message: Signed message.
        signature: 64-byte signature.

    Returns:
        True if valid, False otherwise.
    """
    try:
        check_signature(public_key, message, signature)
    except SignatureInvalidError as e:
        logger.debug("Signature verification failed: %s", e)
        return False
    return True


def check_signature(public_key: bytes, message: bytes, signature: bytes) -> None:
    """
    Verify an Ed25519 signature, raising on failure.

    Raises:
        SignatureInvalidError: If the key is malformed or the signature
            does not verify.
    """
    key = load_public_key(public_key)
    verifier = eddsa.new(key, "rfc8032")
    try:
        verifier.verify(bytes(message), bytes(signature))
    except ValueError:
        raise SignatureInvalidError("Signature does not match message and key")


def load_or_create_key(path: str) -> ECC.EccKey:
    """
    Load a PEM-encoded private key from ``path``, generating and
    saving a new one if the file does not exist.
    """
    key_path = Path(path)
    if key_path.exists():
        key = ECC.import_key(key_path.read_text())
        logger.info("Loaded key from %s", key_path)
        return key

    key = generate_private_key()
    key_path.parent.mkdir(parents=True, exist_ok=True)
    key_path.write_text(key.export_key(format="PEM"))
    logger.info("Saved new key to %s", key_path)
    return key
