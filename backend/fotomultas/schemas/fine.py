"""
Pydantic schemas for fines as they are recorded on the FineManagement ledger.

Two families live here:

- Ledger records (Fine, StatusUpdate, IntegrityReport): the shape this layer
  exposes after decoding contract tuples. They are frozen; the ledger is the
  system of record and these are read-only views of it. Free-text fields are
  taken as the ledger holds them, without re-validation.
- Registration input (FineRegistration): the value object a caller must
  build before anything is written. It enforces the Colombian plate format,
  the infraction catalogue and the cost bounds, so a malformed fine never
  reaches a paid transaction.

All models serialize with camelCase aliases to match the HTTP contract.
"""

import re
from dataclasses import dataclass
from datetime import datetime
from enum import Enum, IntEnum
from typing import List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


# --- Ledger constants ---
MIN_COST: int = 0
MAX_COST: int = 100_000_000  # COP
MAX_TEXT_LENGTH: int = 500
PLATE_PATTERN = re.compile(r"^[A-Z]{3}[0-9]{3}$")

ALL_CHECKS_PASSED = "All integrity checks passed"


class FineState(IntEnum):
    """Fine status as stored by the contract (uint8 enum)."""
    PENDING = 0
    PAID = 1
    APPEALED = 2
    RESOLVED_APPEAL = 3
    CANCELLED = 4


class InfractionType(str, Enum):
    """Catalogue of infraction codes accepted at registration."""
    EXCESO_VELOCIDAD = "EXCESO_VELOCIDAD"
    SEMAFORO_ROJO = "SEMAFORO_ROJO"
    ESTACIONAMIENTO_PROHIBIDO = "ESTACIONAMIENTO_PROHIBIDO"
    CONDUCIR_EMBRIAGADO = "CONDUCIR_EMBRIAGADO"
    NO_RESPETAR_PASO_PEATONAL = "NO_RESPETAR_PASO_PEATONAL"
    USO_CELULAR = "USO_CELULAR"
    NO_USAR_CINTURON = "NO_USAR_CINTURON"
    CONDUCIR_SIN_LICENCIA = "CONDUCIR_SIN_LICENCIA"
    OTRO = "OTRO"


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class _FrozenCamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


# ═══════════════════════════════════════════════════════════════════════════════
# REGISTRATION INPUT
# ═══════════════════════════════════════════════════════════════════════════════

class FineRegistration(_CamelModel):
    """
    Fields required to register a new fine (evidence CID is added later,
    after the upload succeeds).

    Validation rules:
    - plate_number: upper-cased, 3 letters + 3 digits (ABC123).
    - location: non-blank, at most 500 characters.
    - infraction_type: one of InfractionType; spaces become underscores.
    - cost: integer COP between 0 and 100,000,000.
    - owner_identifier: non-blank.
    """
    plate_number: str
    location: str = Field(..., min_length=1, max_length=MAX_TEXT_LENGTH)
    infraction_type: InfractionType
    cost: int = Field(..., ge=MIN_COST, le=MAX_COST)
    owner_identifier: str = Field(..., min_length=1)
    external_system_id: Optional[str] = None

    @field_validator("plate_number", mode="before")
    @classmethod
    def normalize_plate(cls, value: str) -> str:
        plate = str(value or "").strip().upper()
        if not PLATE_PATTERN.match(plate):
            raise ValueError("Invalid plate number format. Expected ABC123 (3 letters + 3 digits)")
        return plate

    @field_validator("infraction_type", mode="before")
    @classmethod
    def normalize_infraction(cls, value):
        if isinstance(value, str):
            return re.sub(r"\s+", "_", value.strip()).upper()
        return value

    @field_validator("location", "owner_identifier")
    @classmethod
    def reject_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be blank")
        return value


# ═══════════════════════════════════════════════════════════════════════════════
# LEDGER RECORDS
# ═══════════════════════════════════════════════════════════════════════════════

class Fine(_FrozenCamelModel):
    """A fine as recorded on the ledger."""
    id: int = Field(..., gt=0)
    plate_number: str
    evidence_cid: str = Field(..., alias="evidenceCID")
    location: str
    infraction_type: str
    cost: int = Field(..., ge=MIN_COST)
    owner_identifier: str
    current_state: FineState
    registered_by: str
    timestamp: int = Field(..., ge=0, description="Unix seconds of registration")
    external_system_id: Optional[str] = None

    @field_validator("external_system_id", mode="before")
    @classmethod
    def empty_to_none(cls, value):
        return value or None


class StatusUpdate(_FrozenCamelModel):
    """One append-only status transition of a fine."""
    fine_id: int
    old_state: FineState
    new_state: FineState
    reason: str
    updated_by: str
    timestamp: int


class StatusHistoryPage(_CamelModel):
    """A page of the status log plus the total number of entries on the ledger."""
    updates: List[StatusUpdate] = Field(default_factory=list)
    total_count: int = 0


class IntegrityReport(_CamelModel):
    """Result of cross-checking a fine against its own status log."""
    fine_id: int
    is_valid: bool
    registration_block: int = 0
    registration_timestamp: int = 0
    status_history_length: int = 0
    last_status_update: int = 0
    violations: List[str] = Field(default_factory=list)


class RecentActivity(_CamelModel):
    """One entry of the cross-fine activity feed."""
    fine_id: int
    plate_number: str
    status: int
    reason: str
    timestamp: datetime


# ═══════════════════════════════════════════════════════════════════════════════
# REGISTRATION RESULTS
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class Found:
    """Fine id read from the FineRegistered event of the receipt."""
    fine_id: int


@dataclass(frozen=True)
class DerivedFromCount:
    """
    Fine id inferred from getAllFineCount() after confirmation.

    Not safe when several registrations confirm in the same window: the
    count may already include a later fine.
    """
    fine_id: int


IdDerivation = Union[Found, DerivedFromCount]


@dataclass(frozen=True)
class Registration:
    """Outcome of a confirmed registerFine transaction."""
    fine_id: int
    tx_hash: str
    derivation: IdDerivation


class RegisteredFine(_CamelModel):
    """Response of the register operation (upload + ledger write)."""
    fine_id: int
    evidence_cid: str = Field(..., alias="evidenceCID")
    transaction_hash: str
    id_source: str = Field(..., description="'event' or 'count'")


class StatusUpdateRequest(_CamelModel):
    new_state: FineState
    reason: str = Field(..., min_length=1, max_length=MAX_TEXT_LENGTH)


class TransactionReceipt(_CamelModel):
    transaction_hash: str
