"""
binding.py — Location and Key Binding
=======================================
Cryptographically ties chunk data to a node's network location and
private key:

    server_binding = SHA-256( enc(location) || chunk_data )
    key_binding    = Ed25519-Sign( private_key, server_binding || chunk_data )
    final_binding  = SHA-256( server_binding || key_binding )

Moving the data to another address changes server_binding; sharing the
data under another key changes key_binding. Either way every proof
derived from the old binding stops verifying.
"""

import logging

from proof_core.errors import BindingMismatchError
from proof_core.hashing import sha256_digest
from proof_core.models import ChunkBinding, NetworkLocation, NodeIdentity
from proof_core.signing import check_signature, sign

logger = logging.getLogger(__name__)


def bind_to_location(data: bytes, location: NetworkLocation) -> bytes:
    """SHA-256 of the canonical location encoding followed by ``data``."""
    return sha256_digest(location.canonical_bytes(), data)


def create_chunk_bindings(chunk_data: bytes, identity: NodeIdentity) -> ChunkBinding:
    """Derive the write-once binding of a chunk to ``identity``."""
    server_binding = bind_to_location(chunk_data, identity.location)
    key_binding = sign(identity.private_key, server_binding + chunk_data)
    final_binding = sha256_digest(server_binding, key_binding)
    logger.debug(
        "Bound %d bytes to %s: final=%s...",
        len(chunk_data),
        identity.location.to_host(),
        final_binding.hex()[:16],
    )
    return ChunkBinding(
        server_binding=server_binding,
        key_binding=key_binding,
        final_binding=final_binding,
    )


def check_chunk_bindings(
    chunk_data: bytes,
    binding: ChunkBinding,
    public_key: bytes,
    location: NetworkLocation,
) -> None:
    """
    Recompute and check a chunk binding.

    Raises:
        BindingMismatchError: If either hash binding differs.
        SignatureInvalidError: If the key binding does not verify.
    """
    expected_server = bind_to_location(chunk_data, location)
    if expected_server != binding.server_binding:
        raise BindingMismatchError("Server binding does not match location and data")

    check_signature(public_key, binding.server_binding + chunk_data, binding.key_binding)

    if sha256_digest(binding.server_binding, binding.key_binding) != binding.final_binding:
        raise BindingMismatchError("Final binding does not match its components")
