"""
EvidenceStore — content-addressed storage of fine evidence.

Writes go to the configured Kubo node only. Reads try that node first and
fall back to an HTTP gateway:

    get(cid)
      ├─ validate CID (no network on failure)
      └─ wait_for(timeout) ──┬─ attempt 1: connect + cat on primary
                             │     error or zero chunks ↓
                             └─ attempt 2: cat on fallback
                                   zero chunks → NotFound

The timeout covers both attempts together. There is exactly one implicit
retry (the fallback) and no backoff.
"""

import asyncio
import logging
from enum import Enum
from typing import List, Optional

from fotomultas.core.config import Settings, settings
from fotomultas.core.errors import (
    NotFound,
    RetrievalTimeout,
    StoreUnavailable,
    ValidationError,
)
from fotomultas.infrastructure.ipfs.nodes import EvidenceNode, GatewayNode, KuboRpcNode
from fotomultas.schemas.evidence import EvidenceBlob, is_valid_cid, validate_cid

logger = logging.getLogger(__name__)


class ConnectionState(str, Enum):
    UNINITIALIZED = "uninitialized"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class EvidenceStore:

    def __init__(
        self,
        primary: KuboRpcNode,
        fallback: Optional[EvidenceNode] = None,
        timeout: float = 30.0,
    ) -> None:
        self.primary = primary
        self.fallback = fallback
        self.timeout = timeout
        self._state = ConnectionState.UNINITIALIZED

    @classmethod
    def from_settings(cls, cfg: Settings = settings) -> "EvidenceStore":
        timeout = cfg.EVIDENCE_RETRIEVAL_TIMEOUT_SECONDS
        primary = KuboRpcNode(cfg.IPFS_API_URL, timeout=timeout)
        fallback = GatewayNode(cfg.IPFS_GATEWAY_URL, timeout=timeout) if cfg.IPFS_GATEWAY_URL else None
        return cls(primary, fallback, timeout=timeout)

    @property
    def state(self) -> ConnectionState:
        return self._state

    async def connect(self) -> None:
        """Probe the primary node once; a failed probe resets to UNINITIALIZED."""
        if self._state is ConnectionState.CONNECTED:
            return

        self._state = ConnectionState.CONNECTING
        logger.info(f"[IPFS] Connecting to node at {self.primary.base_url}")
        try:
            info = await self.primary.version()
        except Exception as e:
            self._state = ConnectionState.UNINITIALIZED
            logger.error(f"[IPFS] Could not connect to {self.primary.base_url}: {e}")
            raise StoreUnavailable(
                f"Could not connect to IPFS node at {self.primary.base_url}. Is the daemon running?"
            ) from e

        self._state = ConnectionState.CONNECTED
        logger.info(f"[IPFS] Connected, version={info.get('Version', 'unknown')}")

    async def is_connected(self) -> bool:
        try:
            if self._state is not ConnectionState.CONNECTED:
                await self.connect()
                return True
            await self.primary.version()
            return True
        except Exception as e:
            logger.warning(f"[IPFS] Connectivity probe failed: {e}")
            return False

    async def upload(self, data: bytes, name: str) -> str:
        """
        Store ``data`` on the primary node and return its CID.

        Identical bytes always produce the identical CID.

        Raises:
            ValidationError: empty payload.
            StoreUnavailable: node unreachable or rejecting the upload.
        """
        if not data:
            raise ValidationError("Evidence file is empty")

        await self.connect()
        try:
            cid = await self.primary.add(data, name)
        except StoreUnavailable:
            raise
        except Exception as e:
            logger.error(f"[IPFS] Upload of {name!r} failed: {e}")
            raise StoreUnavailable(f"Error uploading evidence to IPFS: {e}") from e

        if not is_valid_cid(cid):
            raise StoreUnavailable(f"IPFS node returned an invalid CID: {cid!r}")
        logger.info(f"[IPFS] Uploaded {name!r} ({len(data)} bytes), cid={cid}")
        return cid

    async def get(self, cid: str) -> EvidenceBlob:
        """
        Raises:
            ValidationError: malformed CID, before any network call.
            NotFound: neither node produced any data.
            RetrievalTimeout: both attempts together exceeded the bound.
            StoreUnavailable: both attempts failed with node errors.
        """
        validate_cid(cid)
        try:
            chunks = await asyncio.wait_for(self._retrieve(cid), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            logger.error(f"[IPFS] Retrieval of {cid} timed out after {self.timeout}s")
            raise RetrievalTimeout(
                f"Timed out retrieving evidence {cid} after {self.timeout} seconds"
            ) from e

        blob = EvidenceBlob(cid=cid, chunks=chunks)
        logger.info(f"[IPFS] Retrieved {cid}, {len(chunks)} chunk(s), {blob.size} bytes")
        return blob

    async def _retrieve(self, cid: str) -> List[bytes]:
        primary_error: Optional[Exception] = None
        try:
            await self.connect()
            chunks = await self._collect(self.primary, cid)
            if chunks:
                return chunks
            logger.warning(f"[IPFS] Primary node returned no data for {cid}")
        except Exception as e:
            primary_error = e
            logger.warning(f"[IPFS] Primary node failed for {cid}: {e}")

        if self.fallback is None:
            if primary_error is not None:
                raise StoreUnavailable(f"Error retrieving evidence {cid}: {primary_error}") from primary_error
            raise NotFound(f"No data found for CID {cid}")

        logger.warning(f"[IPFS] Falling back to {self.fallback.name} at {self.fallback.base_url} for {cid}")
        try:
            chunks = await self._collect(self.fallback, cid)
        except NotFound:
            raise
        except Exception as e:
            logger.error(f"[IPFS] Fallback node failed for {cid}: {e}")
            raise StoreUnavailable(f"Error retrieving evidence {cid}: {e}") from e

        if not chunks:
            raise NotFound(f"No data found for CID {cid}")
        return chunks

    @staticmethod
    async def _collect(node: EvidenceNode, cid: str) -> List[bytes]:
        chunks: List[bytes] = []
        async for chunk in node.cat(cid):
            chunks.append(chunk)
        return chunks

    async def aclose(self) -> None:
        await self.primary.aclose()
        if self.fallback is not None:
            await self.fallback.aclose()
