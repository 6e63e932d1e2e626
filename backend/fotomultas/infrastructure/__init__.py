"""
FOTOMULTAS Infrastructure Module.

Exports the external-system adapters:
    - LedgerGateway: FineManagement contract client (web3)
    - IntegrityVerifier: fine vs. status-log cross-check
    - EvidenceStore: IPFS evidence storage with gateway fallback
"""

from fotomultas.infrastructure.blockchain.integrity import IntegrityVerifier
from fotomultas.infrastructure.blockchain.ledger_gateway import LedgerGateway
from fotomultas.infrastructure.ipfs.evidence_store import ConnectionState, EvidenceStore

__all__ = [
    "LedgerGateway",
    "IntegrityVerifier",
    "EvidenceStore",
    "ConnectionState",
]
