"""Persistence boundary used by the sync pipeline."""

from datetime import datetime
from typing import Optional, Protocol

from lesefluss.models.schemas import Entry, NewEntry


class EntryStore(Protocol):
    """What SyncOrchestrator needs from entry persistence.

    Implementations must enforce uniqueness of (subscription_id, guid_hash)
    and raise ConflictError from insert_entry when it is violated.
    """

    async def exists_by_guid_hash(self, subscription_id: int, guid_hash: str) -> bool:
        ...

    async def insert_entry(self, entry: NewEntry) -> Entry:
        ...

    async def max_published_at(self, subscription_id: int) -> Optional[datetime]:
        ...

    async def update_subscription_sync_result(
        self,
        subscription_id: int,
        last_sync_at: datetime,
        sync_error: Optional[str],
    ) -> None:
        ...
