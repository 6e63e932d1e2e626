"""
IPFS node clients.

Architecture:
    - EvidenceNode: abstract, streamed read access by CID.
    - KuboRpcNode: the directly configured node (Kubo HTTP RPC, all calls
      are POST). Reads, writes and version probes.
    - GatewayNode: read-only HTTP gateway used as the fallback path.

Both own an httpx.AsyncClient unless one is injected; inject a client built
on httpx.MockTransport to exercise them without a daemon.
"""

import json
import logging
from abc import ABC, abstractmethod
from typing import AsyncIterator, Dict, Optional

import httpx

from fotomultas.core.errors import NotFound, StoreUnavailable

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0


class EvidenceNode(ABC):
    """A node that can stream the bytes behind a CID."""

    name: str = "node"

    def __init__(self, base_url: str, client: Optional[httpx.AsyncClient] = None, timeout: float = DEFAULT_TIMEOUT):
        self.base_url = base_url.rstrip("/")
        self._client = client or httpx.AsyncClient(timeout=timeout)

    @abstractmethod
    def cat(self, cid: str) -> AsyncIterator[bytes]:
        """Yield the content behind ``cid`` chunk by chunk."""
        ...

    async def aclose(self) -> None:
        await self._client.aclose()


class KuboRpcNode(EvidenceNode):
    """Kubo RPC API (``/api/v0``)."""

    name = "kubo"

    async def version(self) -> Dict:
        response = await self._client.post(f"{self.base_url}/api/v0/version")
        response.raise_for_status()
        return response.json()

    async def add(self, data: bytes, filename: str) -> str:
        """Add and pin ``data`` as a CIDv0 object. Returns the CID."""
        response = await self._client.post(
            f"{self.base_url}/api/v0/add",
            params={"cid-version": 0, "pin": "true"},
            files={"file": (filename, data, "application/octet-stream")},
        )
        response.raise_for_status()

        # NDJSON: one object per added entry, the last one is the root
        lines = [line for line in response.text.splitlines() if line.strip()]
        if not lines:
            raise StoreUnavailable("IPFS add returned an empty response")
        return json.loads(lines[-1])["Hash"]

    async def cat(self, cid: str) -> AsyncIterator[bytes]:
        async with self._client.stream(
            "POST", f"{self.base_url}/api/v0/cat", params={"arg": cid}
        ) as response:
            response.raise_for_status()
            async for chunk in response.aiter_bytes():
                if chunk:
                    yield chunk


class GatewayNode(EvidenceNode):
    """Path-style HTTP gateway (``/ipfs/<cid>``)."""

    name = "gateway"

    async def cat(self, cid: str) -> AsyncIterator[bytes]:
        async with self._client.stream("GET", f"{self.base_url}/ipfs/{cid}") as response:
            if response.status_code == 404:
                raise NotFound(f"Evidence {cid} not found on gateway {self.base_url}")
            response.raise_for_status()
            async for chunk in response.aiter_bytes():
                if chunk:
                    yield chunk
