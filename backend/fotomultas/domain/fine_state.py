"""
FineStateMachine — valid status transitions and time-based fine rules.

Pure decision logic, no I/O. The ledger itself does not enforce this table
(it only rejects a no-op change), so callers validate here before paying
for a transaction that would leave the log in an impossible state.

Transition table (directed, no implicit reverse edges):

    PENDING         -> PAID, APPEALED, CANCELLED
    PAID            -> APPEALED
    APPEALED        -> RESOLVED_APPEAL, CANCELLED
    RESOLVED_APPEAL -> PAID, CANCELLED
    CANCELLED       -> (terminal)

A state is final only when it has no outgoing edge. PAID is therefore NOT
final: a paid fine can still be appealed.
"""

from datetime import datetime, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, FrozenSet, Optional

from fotomultas.core.errors import InvalidTransition
from fotomultas.schemas.fine import Fine, FineState

DAYS_TO_PAY: int = 30
LATE_FEE_MULTIPLIER = Decimal("1.10")

TRANSITIONS: Dict[FineState, FrozenSet[FineState]] = {
    FineState.PENDING: frozenset({FineState.PAID, FineState.APPEALED, FineState.CANCELLED}),
    FineState.PAID: frozenset({FineState.APPEALED}),
    FineState.APPEALED: frozenset({FineState.RESOLVED_APPEAL, FineState.CANCELLED}),
    FineState.RESOLVED_APPEAL: frozenset({FineState.PAID, FineState.CANCELLED}),
    FineState.CANCELLED: frozenset(),
}

INITIAL_STATE = FineState.PENDING


def allowed_transitions(current: FineState) -> FrozenSet[FineState]:
    return TRANSITIONS.get(FineState(current), frozenset())


def can_transition(current: FineState, target: FineState) -> bool:
    return FineState(target) in allowed_transitions(current)


def validate_transition(current: FineState, target: FineState) -> None:
    """Raise InvalidTransition when ``current -> target`` is not in the table."""
    current, target = FineState(current), FineState(target)
    if not can_transition(current, target):
        allowed = ", ".join(s.name for s in sorted(allowed_transitions(current))) or "none"
        raise InvalidTransition(
            f"Invalid state transition from {current.name} to {target.name} "
            f"(allowed: {allowed})"
        )


def can_be_appealed(status: FineState) -> bool:
    return status in (FineState.PENDING, FineState.PAID)


def is_final_state(status: FineState) -> bool:
    return not allowed_transitions(status)


def _as_datetime(now: Optional[datetime]) -> datetime:
    if now is None:
        return datetime.now(timezone.utc)
    if now.tzinfo is None:
        return now.replace(tzinfo=timezone.utc)
    return now


def due_date(fine: Fine) -> datetime:
    registered = datetime.fromtimestamp(fine.timestamp, tz=timezone.utc)
    return registered + timedelta(days=DAYS_TO_PAY)


def is_overdue(fine: Fine, now: Optional[datetime] = None) -> bool:
    """True when the payment window has elapsed and the fine is still PENDING."""
    return _as_datetime(now) > due_date(fine) and fine.current_state == FineState.PENDING


def cost_with_late_fee(fine: Fine, now: Optional[datetime] = None) -> int:
    """
    Cost including the 10% late fee when overdue, rounded half-up to whole COP.
    """
    if not is_overdue(fine, now):
        return fine.cost
    return int((Decimal(fine.cost) * LATE_FEE_MULTIPLIER).quantize(Decimal(1), rounding=ROUND_HALF_UP))
