import copy
from typing import Dict, List, Optional

from fleettrack.db.store import ChangeFeed, DocumentStore, matches
from fleettrack.errors import NotFoundError


class MemoryDocumentStore(DocumentStore):
    """Dict-backed store for tests and ``STORE_BACKEND=memory`` runs."""

    def __init__(self, feed: Optional[ChangeFeed] = None):
        super().__init__(feed)
        self._data: Dict[str, Dict[str, dict]] = {}

    async def get(self, collection: str, doc_id: str) -> Optional[dict]:
        doc = self._data.get(collection, {}).get(doc_id)
        return copy.deepcopy(doc) if doc is not None else None

    async def put(self, collection: str, doc_id: str, doc: dict) -> dict:
        stored = copy.deepcopy(doc)
        stored["id"] = doc_id
        self._data.setdefault(collection, {})[doc_id] = stored
        await self.feed.publish(collection, doc_id, copy.deepcopy(stored))
        return copy.deepcopy(stored)

    async def update(self, collection: str, doc_id: str, partial: dict, where: Optional[dict] = None) -> Optional[dict]:
        current = self._current(collection, doc_id)
        if not matches(current, where):
            return None
        current.update(copy.deepcopy(partial))
        await self.feed.publish(collection, doc_id, copy.deepcopy(current))
        return copy.deepcopy(current)

    async def push(self, collection: str, doc_id: str, field: str, item, where: Optional[dict] = None) -> Optional[dict]:
        current = self._current(collection, doc_id)
        if not matches(current, where):
            return None
        current.setdefault(field, []).append(copy.deepcopy(item))
        await self.feed.publish(collection, doc_id, copy.deepcopy(current))
        return copy.deepcopy(current)

    def _current(self, collection: str, doc_id: str) -> dict:
        current = self._data.get(collection, {}).get(doc_id)
        if current is None:
            raise NotFoundError(collection, doc_id)
        return current

    async def find(self, collection: str, filter: Optional[dict] = None, limit: int = 500) -> List[dict]:
        docs = [d for d in self._data.get(collection, {}).values() if matches(d, filter)]
        return copy.deepcopy(docs[:limit])
