"""
HistoryAggregator — global recent-activity feed across all fines.

For every fine on the ledger: one synthesized registration event plus one
event per status update. Everything is merged, sorted newest first and cut
to the limit. Recomputed on every call, no caching: cost grows with
fines × history length.
"""

import logging
from datetime import datetime, timezone
from typing import List

from fotomultas.domain.fine_state import INITIAL_STATE
from fotomultas.domain.ports import FineReader
from fotomultas.schemas.fine import Fine, RecentActivity

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 10


def _registration_reason(fine: Fine) -> str:
    return f"Fine registered for {fine.infraction_type} at {fine.location}"


class HistoryAggregator:

    def __init__(self, reader: FineReader) -> None:
        self.reader = reader

    async def recent_history(self, limit: int = DEFAULT_LIMIT) -> List[RecentActivity]:
        total = await self.reader.get_total_fines()
        if total == 0:
            return []

        fines = await self.reader.get_fines_details(1, total)
        events: List[tuple] = []

        for fine in fines:
            events.append((fine.timestamp, fine, int(INITIAL_STATE), _registration_reason(fine)))
            for update in await self.reader.get_full_status_history(fine.id):
                events.append((update.timestamp, fine, int(update.new_state), update.reason))

        # equal timestamps: later log entry first, so an update outranks its registration
        order = sorted(range(len(events)), key=lambda i: (events[i][0], i), reverse=True)
        events = [events[i] for i in order]
        logger.info(f"[HISTORY] {len(events)} events across {len(fines)} fines, returning {min(limit, len(events))}")

        return [
            RecentActivity(
                fine_id=fine.id,
                plate_number=fine.plate_number,
                status=status,
                reason=reason,
                timestamp=datetime.fromtimestamp(ts, tz=timezone.utc),
            )
            for ts, fine, status, reason in events[:limit]
        ]
