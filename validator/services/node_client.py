"""
node_client.py — Storage Node Client
======================================
HTTP client the validator uses to reach storage nodes: fetch their
key-location records and transform proofs, and carry challenges.
A reply that cannot be parsed is reported as a ProofOfStorageError
like any other node-side failure.

The client enforces the challenge deadline as a transport timeout,
so a node that stalls resolves as a timeout rather than hanging the
validator.
"""

import logging
from typing import Optional

import httpx

from proof_core.errors import ChunkNotStoredError, ProofOfStorageError
from proof_core.models import ChallengeResponse, StorageChallenge, VDFResult
from proof_core.proofs import ServerCoinMemo

logger = logging.getLogger(__name__)


class NodeClient:
    """
    Client for one storage node's REST API.
    """

    def __init__(self, node_url: str, transport: Optional[httpx.AsyncBaseTransport] = None):
        """
        Initialize the node client.

        Args:
            node_url: Base URL of the storage node.
            transport: Optional httpx transport (used for tests).
        """
        self.node_url = node_url.rstrip("/")
        self.transport = transport
        logger.debug("NodeClient initialized for %s", self.node_url)

    def _client(self, timeout: float) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=timeout, transport=self.transport)

    async def fetch_registration(self) -> ServerCoinMemo:
        """
        Get the node's signed key-location record.

        Raises:
            ProofOfStorageError: If the node is unreachable or its answer
                is not a key-location record.
        """
        try:
            async with self._client(10) as client:
                response = await client.get(f"{self.node_url}/registration")
        except httpx.TransportError as e:
            raise ProofOfStorageError(f"Node {self.node_url} is unreachable: {e}")

        if response.status_code != 200:
            raise ProofOfStorageError(
                f"Node {self.node_url} refused registration: HTTP {response.status_code}"
            )
        try:
            return ServerCoinMemo.from_dict(response.json())
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise ProofOfStorageError(f"Node {self.node_url} sent a malformed registration: {e!r}")

    async def fetch_transform_proof(self, chunk_index: int) -> VDFResult:
        """Get the stored transform result of one chunk."""
        async with self._client(10) as client:
            response = await client.get(f"{self.node_url}/chunks/{chunk_index}/proof")
            if response.status_code == 404:
                raise ChunkNotStoredError(f"Node holds no chunk {chunk_index}")
            response.raise_for_status()
            return VDFResult.from_dict(response.json())

    async def send_challenge(self, challenge: StorageChallenge) -> ChallengeResponse:
        """
        Deliver a challenge and parse the node's response.

        Raises:
            TimeoutError: If the node does not answer within the challenge timeout.
            ChunkNotStoredError: If the node reports the chunk missing.
            ProofOfStorageError: If the node is unreachable or refuses otherwise.
        """
        try:
            async with self._client(challenge.timeout_ms / 1000) as client:
                response = await client.post(
                    f"{self.node_url}/challenge", json=challenge.to_dict()
                )
        except httpx.TimeoutException as e:
            raise TimeoutError(f"Node {self.node_url} did not answer in time: {e}")
        except httpx.TransportError as e:
            raise ProofOfStorageError(f"Node {self.node_url} is unreachable: {e}")

        if response.status_code == 404:
            raise ChunkNotStoredError(_detail(response, "chunk not stored"))
        if response.status_code != 200:
            raise ProofOfStorageError(
                f"Node {self.node_url} refused challenge: HTTP {response.status_code}"
            )
        try:
            return ChallengeResponse.from_dict(response.json())
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise ProofOfStorageError(f"Node {self.node_url} sent a malformed response: {e!r}")


def _detail(response: httpx.Response, default: str) -> str:
    try:
        return str(response.json().get("detail", default))
    except (ValueError, AttributeError):
        return default
