"""Document store abstraction.

The core only needs get/put/update/subscribe on independent documents; there are
no transactions and no cross-document coordination. ``find`` exists for the HTTP
listing endpoints.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Awaitable, Callable, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)

VEHICLES = "vehicles"
TRIPS = "trips"
SETTINGS = "settings"

ChangeCallback = Callable[[str, str, dict], Awaitable[None]]


def matches(doc: dict, filter: Optional[dict]) -> bool:
    if not filter:
        return True
    return all(doc.get(k) == v for k, v in filter.items())


class ChangeFeed:
    """In-process fan-out of committed writes to subscribers."""

    def __init__(self):
        self._subs: Dict[int, Tuple[str, Optional[dict], ChangeCallback]] = {}
        self._next = 0

    def subscribe(self, collection: str, callback: ChangeCallback, filter: Optional[dict] = None):
        key = self._next
        self._next += 1
        self._subs[key] = (collection, filter, callback)

        def unsubscribe():
            self._subs.pop(key, None)

        return unsubscribe

    async def publish(self, collection: str, doc_id: str, doc: dict):
        for sub_collection, filter, callback in list(self._subs.values()):
            if sub_collection != collection or not matches(doc, filter):
                continue
            try:
                await callback(collection, doc_id, doc)
            except Exception:
                # a broken subscriber must not fail the write that triggered it
                logger.exception(f"change subscriber failed for {collection}/{doc_id}")

    def __len__(self):
        return len(self._subs)


class DocumentStore(ABC):
    def __init__(self, feed: Optional[ChangeFeed] = None):
        self.feed = feed or ChangeFeed()

    @abstractmethod
    async def get(self, collection: str, doc_id: str) -> Optional[dict]:
        """Return the document or None."""

    @abstractmethod
    async def put(self, collection: str, doc_id: str, doc: dict) -> dict:
        """Create or replace a whole document."""

    @abstractmethod
    async def update(self, collection: str, doc_id: str, partial: dict, where: Optional[dict] = None) -> Optional[dict]:
        """Set the given fields on an existing document; raises NotFoundError on a miss.

        With ``where``, the write only happens if the stored document still has
        those field values at write time; otherwise nothing is written and None
        is returned.
        """

    @abstractmethod
    async def push(self, collection: str, doc_id: str, field: str, item, where: Optional[dict] = None) -> Optional[dict]:
        """Append ``item`` to a list field. Same ``where`` semantics as ``update``."""

    @abstractmethod
    async def find(self, collection: str, filter: Optional[dict] = None, limit: int = 500) -> List[dict]:
        """List documents whose fields equal the filter values."""

    def subscribe(self, collection: str, callback: ChangeCallback, filter: Optional[dict] = None):
        """Call ``callback(collection, doc_id, doc)`` after every matching write.

        Returns an unsubscribe function.
        """
        return self.feed.subscribe(collection, callback, filter)

    async def latest(self, collection: str, doc_id: str) -> Optional[dict]:
        return await self.get(collection, doc_id)

    async def close(self):
        pass
