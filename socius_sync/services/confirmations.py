"""
Socius Sync — Confirmation Lookup
===================================

What:  Remembers which external references (chat message ids) already
       produced a record, so a widget never offers the same action twice.
How:   An insertion-ordered set of reference strings, persisted as a JSON
       array under its own LocalStore key. Owned by one SyncEngine.
Who:   SyncEngine.add(..., source_ref=...) records; SyncEngine.is_confirmed()
       reads.
"""

import logging
from typing import Dict, List

from socius_sync.exceptions import LocalStoreError
from socius_sync.services.local_store import LocalStore

logger = logging.getLogger(__name__)


class ConfirmationLookup:
    """Persisted set of confirmed source references."""

    def __init__(self, store: LocalStore):
        self.store = store
        self._refs: Dict[str, None] = {}

    def __contains__(self, ref: object) -> bool:
        return str(ref) in self._refs

    def __len__(self) -> int:
        return len(self._refs)

    @property
    def refs(self) -> List[str]:
        return list(self._refs)

    async def load(self) -> None:
        """Merge the persisted references into memory; unreadable items are skipped."""
        for item in await self.store.load():
            if isinstance(item, (str, int)) and not isinstance(item, bool):
                self._refs[str(item)] = None

    async def confirm(self, ref: str) -> bool:
        """
        Record `ref` and persist the set.

        Returns False when `ref` was already confirmed (nothing is written).
        """
        key = str(ref)
        if key in self._refs:
            return False
        self._refs[key] = None
        try:
            await self.store.save(list(self._refs))
        except LocalStoreError as e:
            logger.error("Could not persist confirmation '%s': %s", key, e.message)
        return True
