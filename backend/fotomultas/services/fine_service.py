"""
FineService — application orchestration over the ledger and the evidence store.

Usage:
    service = FineService(LedgerGateway.from_settings(), EvidenceStore.from_settings())
    result = await service.register_fine(registration, image_bytes, "photo.jpg")
    tx_hash = await service.update_fine_status(result.fine_id, FineState.PAID, "Paid at bank")

Status changes are validated against the state machine before anything is
submitted; the ledger itself accepts any change of state.
"""

import logging
from typing import Dict, List

from fotomultas.core.errors import FineError, ValidationError
from fotomultas.domain import fine_state
from fotomultas.infrastructure.blockchain.ledger_gateway import LedgerGateway
from fotomultas.infrastructure.ipfs.evidence_store import EvidenceStore
from fotomultas.schemas.evidence import EvidenceBlob
from fotomultas.schemas.fine import (
    MAX_TEXT_LENGTH,
    Fine,
    FineRegistration,
    FineState,
    Found,
    IntegrityReport,
    RecentActivity,
    RegisteredFine,
    StatusHistoryPage,
)
from fotomultas.services.history_aggregator import HistoryAggregator

logger = logging.getLogger(__name__)


class FineService:

    def __init__(self, ledger: LedgerGateway, store: EvidenceStore) -> None:
        self.ledger = ledger
        self.store = store
        self.history = HistoryAggregator(ledger)

    # ── Writes ──

    async def register_fine(self, registration: FineRegistration, evidence: bytes, filename: str) -> RegisteredFine:
        """Upload the evidence, then register the fine pointing at its CID."""
        cid = await self.store.upload(evidence, filename)
        result = await self.ledger.register_fine(registration, cid)
        logger.info(f"[FINES] Registered fine #{result.fine_id} for plate {registration.plate_number}")
        return RegisteredFine(
            fine_id=result.fine_id,
            evidence_cid=cid,
            transaction_hash=result.tx_hash,
            id_source="event" if isinstance(result.derivation, Found) else "count",
        )

    async def update_fine_status(self, fine_id: int, new_state: FineState, reason: str) -> str:
        """
        Raises:
            ValidationError: blank or oversized reason.
            InvalidTransition: the change is not in the transition table.
            NotFound: the fine does not exist.
        """
        reason = (reason or "").strip()
        if not reason:
            raise ValidationError("Reason for status change is required")
        if len(reason) > MAX_TEXT_LENGTH:
            raise ValidationError(f"Reason must be at most {MAX_TEXT_LENGTH} characters")

        fine = await self.ledger.get_fine_details(fine_id)
        fine_state.validate_transition(fine.current_state, new_state)
        return await self.ledger.update_fine_status(fine_id, FineState(new_state), reason)

    # ── Reads ──

    async def get_fine(self, fine_id: int) -> Fine:
        return await self.ledger.get_fine_details(fine_id)

    async def list_fines(self, page: int = 1, page_size: int = 10) -> List[Fine]:
        return await self.ledger.get_fines_details(page, page_size)

    async def get_fines_by_plate(self, plate_number: str) -> List[Fine]:
        fine_ids = await self.ledger.get_fines_by_plate(plate_number)
        return [await self.ledger.get_fine_details(fine_id) for fine_id in fine_ids]

    async def get_fine_status_history(self, fine_id: int, page: int = 1, page_size: int = 10) -> StatusHistoryPage:
        return await self.ledger.get_fine_status_history(fine_id, page, page_size)

    async def verify_integrity(self, fine_id: int) -> IntegrityReport:
        return await self.ledger.verify_blockchain_integrity(fine_id)

    async def get_fine_evidence(self, cid: str) -> EvidenceBlob:
        return await self.store.get(cid)

    async def recent_history(self) -> List[RecentActivity]:
        return await self.history.recent_history()

    async def health(self) -> Dict[str, object]:
        ledger_ok = await self.ledger.is_connected()
        store_ok = await self.store.is_connected()
        total = None
        if ledger_ok:
            try:
                total = await self.ledger.get_total_fines()
            except FineError as e:
                logger.warning(f"[FINES] Health check could not read fine count: {e}")
        return {
            "status": "ok" if ledger_ok and store_ok else "degraded",
            "ledger": ledger_ok,
            "evidenceStore": store_ok,
            "totalFines": total,
        }
