"""
FOTOMULTAS — API entry point.

Owns the ledger gateway and the evidence store for the lifetime of the
process and exposes the fines router over them.

Usage:
    uvicorn fotomultas.main:app --app-dir backend
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware

from fotomultas.api.errors import register_exception_handlers
from fotomultas.api.fines import fines_router, get_fine_service
from fotomultas.core.config import Settings, settings
from fotomultas.infrastructure.blockchain.ledger_gateway import LedgerGateway
from fotomultas.infrastructure.ipfs.evidence_store import EvidenceStore
from fotomultas.services.fine_service import FineService

logger = logging.getLogger(__name__)


def create_app(
    ledger: Optional[LedgerGateway] = None,
    store: Optional[EvidenceStore] = None,
    cfg: Settings = settings,
) -> FastAPI:
    """
    Build the application. Clients not passed in are built from ``cfg``
    when the app starts and closed when it stops.
    """
    logging.basicConfig(
        level=cfg.LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned_ledger: Optional[LedgerGateway] = None
        owned_store: Optional[EvidenceStore] = None
        if getattr(app.state, "fine_service", None) is None:
            if ledger is None:
                owned_ledger = LedgerGateway.from_settings(cfg)
            if store is None:
                owned_store = EvidenceStore.from_settings(cfg)
            app.state.fine_service = FineService(ledger or owned_ledger, store or owned_store)
            logger.info(f"[API] {cfg.PROJECT_NAME} started ({cfg.ENVIRONMENT})")
        yield
        if owned_store is not None:
            await owned_store.aclose()
        if owned_ledger is not None:
            await owned_ledger.aclose()

    app = FastAPI(
        title=cfg.PROJECT_NAME,
        description="Traffic fine ledger and evidence store API",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.settings = cfg
    if ledger is not None and store is not None:
        app.state.fine_service = FineService(ledger, store)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=cfg.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    register_exception_handlers(app)
    app.include_router(fines_router, prefix=cfg.API_PREFIX)

    @app.get("/health", tags=["System"])
    async def health(service: FineService = Depends(get_fine_service)):
        return await service.health()

    return app


app = create_app()
