"""
Read port over the fines ledger.

HistoryAggregator and plate resolution fan out one call per fine through
this interface. LedgerGateway implements it directly; a caching decorator
can wrap it later without touching the call sites.
"""

from abc import ABC, abstractmethod
from typing import List

from fotomultas.schemas.fine import Fine, StatusHistoryPage, StatusUpdate


class FineReader(ABC):

    @abstractmethod
    async def get_total_fines(self) -> int:
        ...

    @abstractmethod
    async def get_fine_details(self, fine_id: int) -> Fine:
        ...

    @abstractmethod
    async def get_fines_details(self, page: int, page_size: int) -> List[Fine]:
        ...

    @abstractmethod
    async def get_fines_by_plate(self, plate_number: str) -> List[int]:
        ...

    @abstractmethod
    async def get_fine_status_history(
        self, fine_id: int, page: int = 1, page_size: int = 10,
    ) -> StatusHistoryPage:
        ...

    async def get_full_status_history(self, fine_id: int, page_size: int = 100) -> List[StatusUpdate]:
        """Walk every page of the status log, oldest entry first."""
        updates: List[StatusUpdate] = []
        page = 1
        while True:
            result = await self.get_fine_status_history(fine_id, page, page_size)
            updates.extend(result.updates)
            if not result.updates or len(updates) >= result.total_count:
                return updates
            page += 1
