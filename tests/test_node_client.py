"""
test_node_client.py — Unit Tests for the Validator's Node Client
==================================================================
Uses httpx.MockTransport in place of a live storage node.
"""

import json

import httpx
import pytest
from proof_core.errors import ChunkNotStoredError, ProofOfStorageError
from proof_core.models import StorageChallenge
from proof_core.proofs import create_server_coin_memo
from storage_node.services.chunk_store import ChunkStore
from storage_node.services.retrieval import RetrievalService
from storage_node.services.transform import TransformPipeline
from validator.services.node_client import NodeClient

NODE_URL = "http://10.0.0.5:9000"


@pytest.fixture
def retrieval(tmp_path, identity, small_config):
    store = ChunkStore(str(tmp_path))
    TransformPipeline(identity, small_config, store=store).transform_file(b"client data " * 4)
    return RetrievalService(identity, store)


@pytest.fixture
def transport(retrieval, identity):
    """Routes requests to the in-process retrieval service."""

    def handler(request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path == "/registration":
            return httpx.Response(200, json=create_server_coin_memo(identity, 3).to_dict())
        if path == "/challenge":
            challenge = StorageChallenge.from_dict(json.loads(request.content))
            if challenge.chunk_index >= 4:
                return httpx.Response(404, json={"detail": "Chunk not stored"})
            return httpx.Response(200, json=retrieval.respond_to_challenge(challenge).to_dict())
        if path.endswith("/proof"):
            index = int(path.split("/")[2])
            chunk = retrieval.store.retrieve(identity.node_id, index)
            if chunk is None:
                return httpx.Response(404, json={"detail": "Chunk not found"})
            return httpx.Response(200, json=chunk.proof.to_dict())
        return httpx.Response(500)

    return httpx.MockTransport(handler)


def challenge_for(chunk_index):
    return StorageChallenge(
        copy_index=0, chunk_index=chunk_index, challenge_nonce=b"\x03" * 16, timestamp=0
    )


class TestNodeClient:
    """Tests for the validator's HTTP client to storage nodes."""

    @pytest.mark.asyncio
    async def test_fetch_registration(self, transport, identity):
        """The node's signed record comes back as a ServerCoinMemo."""
        memo = await NodeClient(NODE_URL, transport=transport).fetch_registration()
        assert memo.wallet_public_key == identity.public_key
        assert memo.epoch == 3

    @pytest.mark.asyncio
    async def test_send_challenge(self, transport, identity):
        """A challenge is answered from the node's stored chunk."""
        response = await NodeClient(NODE_URL, transport=transport).send_challenge(challenge_for(2))
        assert response.proof.current_location == identity.location

    @pytest.mark.asyncio
    async def test_missing_chunk(self, transport):
        """A 404 from the node means the chunk is not stored."""
        with pytest.raises(ChunkNotStoredError):
            await NodeClient(NODE_URL, transport=transport).send_challenge(challenge_for(7))

    @pytest.mark.asyncio
    async def test_fetch_transform_proof(self, transport, identity):
        result = await NodeClient(NODE_URL, transport=transport).fetch_transform_proof(1)
        assert len(result.checkpoints) == 4
        with pytest.raises(ChunkNotStoredError):
            await NodeClient(NODE_URL, transport=transport).fetch_transform_proof(9)

    @pytest.mark.asyncio
    async def test_refusal(self):
        """Any other non-200 status is a refusal."""
        transport = httpx.MockTransport(lambda request: httpx.Response(403, json={"detail": "no"}))
        with pytest.raises(ProofOfStorageError):
            await NodeClient(NODE_URL, transport=transport).send_challenge(challenge_for(0))

    @pytest.mark.asyncio
    async def test_timeout(self):
        """A stalled node surfaces as TimeoutError."""

        def stall(request):
            raise httpx.ReadTimeout("stalled", request=request)

        with pytest.raises(TimeoutError):
            await NodeClient(NODE_URL, transport=httpx.MockTransport(stall)).send_challenge(
                challenge_for(0)
            )

    @pytest.mark.asyncio
    async def test_unreachable(self):
        """Connection failures are protocol errors, not timeouts."""

        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(ProofOfStorageError, match="unreachable"):
            await NodeClient(NODE_URL, transport=httpx.MockTransport(refuse)).send_challenge(
                challenge_for(0)
            )

    @pytest.mark.asyncio
    async def test_malformed_answer(self):
        """A 200 whose body is not a challenge response is a protocol error."""
        transport = httpx.MockTransport(lambda request: httpx.Response(200, json={"garbage": 1}))
        with pytest.raises(ProofOfStorageError, match="malformed"):
            await NodeClient(NODE_URL, transport=transport).send_challenge(challenge_for(0))

    @pytest.mark.asyncio
    async def test_non_json_answer(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(200, content=b"<html>"))
        with pytest.raises(ProofOfStorageError, match="malformed"):
            await NodeClient(NODE_URL, transport=transport).send_challenge(challenge_for(0))

    @pytest.mark.asyncio
    async def test_missing_chunk_without_json(self):
        """A bare 404 still reads as a missing chunk."""
        transport = httpx.MockTransport(lambda request: httpx.Response(404, content=b"nope"))
        with pytest.raises(ChunkNotStoredError):
            await NodeClient(NODE_URL, transport=transport).send_challenge(challenge_for(0))

    @pytest.mark.asyncio
    async def test_malformed_registration(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(200, json=[1, 2]))
        with pytest.raises(ProofOfStorageError, match="malformed"):
            await NodeClient(NODE_URL, transport=transport).fetch_registration()

    @pytest.mark.asyncio
    async def test_registration_refused(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(500))
        with pytest.raises(ProofOfStorageError, match="refused"):
            await NodeClient(NODE_URL, transport=transport).fetch_registration()
