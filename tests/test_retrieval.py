"""
test_retrieval.py — Unit Tests for the Retrieval Service
==========================================================
"""

from dataclasses import replace

import pytest
from proof_core.errors import (
    ChunkNotStoredError,
    RestorationVerificationError,
    SignatureInvalidError,
)
from proof_core.models import StorageChallenge
from proof_core.proofs import check_response_binding
from proof_core.signing import generate_private_key, public_key_bytes, sign
from storage_node.services.chunk_store import ChunkStore
from storage_node.services.retrieval import RetrievalService
from storage_node.services.transform import TransformPipeline

FILE_DATA = b"retrieval test payload " * 4


@pytest.fixture
def store(tmp_path, identity, small_config):
    store = ChunkStore(str(tmp_path))
    TransformPipeline(identity, small_config, store=store).transform_file(FILE_DATA)
    return store


def signed_challenge(key, chunk_index=1):
    unsigned = StorageChallenge(
        copy_index=0, chunk_index=chunk_index, challenge_nonce=b"\x02" * 16, timestamp=0
    )
    return replace(unsigned, validator_signature=sign(key, unsigned.signing_payload()))


class TestServeChunk:
    """Tests for serving original bytes by fast reversal."""

    def test_serves_original_bytes(self, identity, store):
        service = RetrievalService(identity, store)
        served = b"".join(service.serve_chunk(i) for i in range(4))
        assert served == FILE_DATA

    def test_missing_chunk(self, identity, store):
        with pytest.raises(ChunkNotStoredError):
            RetrievalService(identity, store).serve_chunk(42)

    def test_corrupt_artifact_not_served(self, identity, store):
        payload = store.data_dir / identity.node_id / "00001.chunk"
        corrupted = bytearray(payload.read_bytes())
        corrupted[0] ^= 0x01
        payload.write_bytes(bytes(corrupted))
        with pytest.raises(RestorationVerificationError):
            RetrievalService(identity, store).serve_chunk(1)


class TestRespondToChallenge:
    """Tests for building challenge responses."""

    def test_response_binds_location_and_key(self, identity, store):
        service = RetrievalService(identity, store, clock=lambda: 1234)
        response = service.respond_to_challenge(signed_challenge(generate_private_key()))
        assert response.responded_at == 1234
        assert response.mutated_data == store.retrieve(identity.node_id, 1).mutated_data
        check_response_binding(response, identity.public_key, identity.location)

    def test_requires_validator_signature_when_configured(self, identity, store):
        validator_key = generate_private_key()
        service = RetrievalService(
            identity, store, validator_public_key=public_key_bytes(validator_key)
        )
        service.respond_to_challenge(signed_challenge(validator_key))
        with pytest.raises(SignatureInvalidError):
            service.respond_to_challenge(signed_challenge(generate_private_key()))

    def test_missing_chunk(self, identity, store):
        with pytest.raises(ChunkNotStoredError):
            RetrievalService(identity, store).respond_to_challenge(
                signed_challenge(generate_private_key(), chunk_index=9)
            )
