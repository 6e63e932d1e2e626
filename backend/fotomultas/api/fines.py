"""
Fines router — thin HTTP adapter over FineService.

Usage:
    from fotomultas.api.fines import fines_router
    app.include_router(fines_router)

Static paths (/by-plate, /evidence, /recent-history) are declared before the
/{fine_id} routes so they are matched first.
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, Query, Request, UploadFile
from fastapi.responses import StreamingResponse
from pydantic import ValidationError as SchemaError

from fotomultas.core.errors import ValidationError
from fotomultas.schemas.evidence import validate_cid
from fotomultas.schemas.fine import (
    Fine,
    FineRegistration,
    IntegrityReport,
    RecentActivity,
    RegisteredFine,
    StatusHistoryPage,
    StatusUpdateRequest,
    TransactionReceipt,
)
from fotomultas.services.fine_service import FineService

logger = logging.getLogger(__name__)

fines_router = APIRouter(prefix="/fines", tags=["Fines"])


def get_fine_service(request: Request) -> FineService:
    return request.app.state.fine_service


# ═══════════════════════════════════════════════════════════════════════════════
# WRITES
# ═══════════════════════════════════════════════════════════════════════════════

@fines_router.post("", response_model=RegisteredFine, status_code=201)
async def register_fine(
    plate_number: str = Form(..., alias="plateNumber"),
    location: str = Form(...),
    infraction_type: str = Form(..., alias="infractionType"),
    cost: int = Form(...),
    owner_identifier: str = Form(..., alias="ownerIdentifier"),
    external_system_id: Optional[str] = Form(None, alias="externalSystemId"),
    evidence: UploadFile = File(...),
    service: FineService = Depends(get_fine_service),
):
    try:
        registration = FineRegistration(
            plate_number=plate_number,
            location=location,
            infraction_type=infraction_type,
            cost=cost,
            owner_identifier=owner_identifier,
            external_system_id=external_system_id or None,
        )
    except SchemaError as e:
        messages = "; ".join(f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors())
        raise ValidationError(f"Invalid fine data: {messages}") from e

    data = await evidence.read()
    logger.info(f"[API] Registering fine for {registration.plate_number} ({len(data)} bytes of evidence)")
    return await service.register_fine(registration, data, evidence.filename or "evidence")


@fines_router.put("/{fine_id}/status", response_model=TransactionReceipt)
async def update_fine_status(
    fine_id: int,
    body: StatusUpdateRequest,
    service: FineService = Depends(get_fine_service),
):
    tx_hash = await service.update_fine_status(fine_id, body.new_state, body.reason)
    return TransactionReceipt(transaction_hash=tx_hash)


# ═══════════════════════════════════════════════════════════════════════════════
# READS
# ═══════════════════════════════════════════════════════════════════════════════

@fines_router.get("", response_model=List[Fine])
async def list_fines(
    page: int = Query(1),
    page_size: int = Query(10, alias="pageSize"),
    service: FineService = Depends(get_fine_service),
):
    return await service.list_fines(page, page_size)


@fines_router.get("/by-plate/{plate_number}", response_model=List[Fine])
async def get_fines_by_plate(plate_number: str, service: FineService = Depends(get_fine_service)):
    return await service.get_fines_by_plate(plate_number)


@fines_router.get("/recent-history", response_model=List[RecentActivity])
async def recent_history(service: FineService = Depends(get_fine_service)):
    return await service.recent_history()


@fines_router.get("/evidence/{cid}")
async def get_fine_evidence(cid: str, service: FineService = Depends(get_fine_service)):
    validate_cid(cid)
    blob = await service.get_fine_evidence(cid)
    return StreamingResponse(
        iter(blob.chunks),
        media_type="application/octet-stream",
        headers={"Content-Length": str(blob.size)},
    )


@fines_router.get("/{fine_id}", response_model=Fine)
async def get_fine(fine_id: int, service: FineService = Depends(get_fine_service)):
    return await service.get_fine(fine_id)


@fines_router.get("/{fine_id}/status-history", response_model=StatusHistoryPage)
async def get_fine_status_history(
    fine_id: int,
    page: int = Query(1),
    page_size: int = Query(10, alias="pageSize"),
    service: FineService = Depends(get_fine_service),
):
    return await service.get_fine_status_history(fine_id, page, page_size)


@fines_router.get("/{fine_id}/integrity", response_model=IntegrityReport)
async def verify_integrity(fine_id: int, service: FineService = Depends(get_fine_service)):
    return await service.verify_integrity(fine_id)
