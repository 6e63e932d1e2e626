"""
IntegrityVerifier — cross-checks a fine against its own status log.

Checks, in order:
    1. the fine exists
    2. registration block/timestamp can be read, timestamp non-zero
    3. newest status entry's new_state == fine.current_state
    4. no history but a non-initial status → "status present without history"
    5. when the whole log is in hand: the log starts at PENDING and every
       entry's old_state is the previous entry's new_state

A failed fetch is reported, not raised: the result is an invalid report
with a single violation describing the failure.
"""

import logging
import math
from typing import TYPE_CHECKING, List, Optional

from fotomultas.schemas.fine import (
    ALL_CHECKS_PASSED,
    Fine,
    FineState,
    IntegrityReport,
    StatusUpdate,
)

if TYPE_CHECKING:
    from fotomultas.infrastructure.blockchain.ledger_gateway import LedgerGateway

logger = logging.getLogger(__name__)

HISTORY_PAGE_SIZE = 100


class IntegrityVerifier:

    def __init__(self, ledger: "LedgerGateway", page_size: int = HISTORY_PAGE_SIZE) -> None:
        self.ledger = ledger
        self.page_size = page_size

    async def verify(self, fine_id: int) -> IntegrityReport:
        try:
            fine = await self.ledger.get_fine_details(fine_id)
            block_number, registered_at = await self.ledger.get_registration_details(fine_id)
            updates, total, newest = await self._load_history(fine_id)
        except Exception as e:
            logger.warning(f"[INTEGRITY] Fine #{fine_id} could not be verified: {e}")
            return IntegrityReport(
                fine_id=fine_id,
                is_valid=False,
                violations=[f"Integrity verification failed: {e}"],
            )

        violations = self._check(fine, registered_at, updates, total, newest)
        is_valid = not violations
        if is_valid:
            violations = [ALL_CHECKS_PASSED]
        else:
            logger.warning(f"[INTEGRITY] Fine #{fine_id} has {len(violations)} violation(s): {violations}")

        return IntegrityReport(
            fine_id=fine_id,
            is_valid=is_valid,
            registration_block=block_number,
            registration_timestamp=registered_at,
            status_history_length=total,
            last_status_update=newest.timestamp if newest else 0,
            violations=violations,
        )

    async def _load_history(self, fine_id: int):
        """First page, plus the page holding the newest entry when the log is longer."""
        first = await self.ledger.get_fine_status_history(fine_id, 1, self.page_size)
        updates = list(first.updates)
        total = max(first.total_count, len(updates))
        newest: Optional[StatusUpdate] = updates[-1] if updates else None

        if len(updates) < total:
            last_page = math.ceil(total / self.page_size)
            tail = await self.ledger.get_fine_status_history(fine_id, last_page, self.page_size)
            if tail.updates:
                newest = tail.updates[-1]
        return updates, total, newest

    @staticmethod
    def _check(
        fine: Fine,
        registered_at: int,
        updates: List[StatusUpdate],
        total: int,
        newest: Optional[StatusUpdate],
    ) -> List[str]:
        violations: List[str] = []

        if newest is not None and newest.new_state != fine.current_state:
            violations.append(
                f"Current status {fine.current_state.name} does not match "
                f"last status update {FineState(newest.new_state).name}"
            )

        if registered_at == 0:
            violations.append("Registration timestamp is zero")

        if total == 0 and fine.current_state != FineState.PENDING:
            violations.append(
                f"Status {fine.current_state.name} present without history"
            )

        if updates and len(updates) >= total:
            expected = FineState.PENDING
            for index, update in enumerate(updates):
                if update.old_state != expected:
                    violations.append(
                        f"Status update {index + 1} starts from {FineState(update.old_state).name}, "
                        f"expected {expected.name}"
                    )
                expected = FineState(update.new_state)

        return violations
