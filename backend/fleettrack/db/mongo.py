import certifi
from typing import List, Optional
from motor.motor_asyncio import AsyncIOMotorClient
from pymongo import ReturnDocument

from fleettrack.core import config
from fleettrack.db.store import SETTINGS, TRIPS, VEHICLES, ChangeFeed, DocumentStore
from fleettrack.errors import NotFoundError

_client = None


def db():
    global _client
    if _client is None:
        url = config.MONGO_URL
        if not url:
            raise RuntimeError("MONGO_URL not set. Create backend/.env with MONGO_URL=...")
        _client = AsyncIOMotorClient(url, tlsCAFile=certifi.where())
    return _client[config.MONGO_DB]


class MongoDocumentStore(DocumentStore):
    """Each logical document is one Mongo document keyed by its ``id`` field."""

    def __init__(self, database=None, feed: Optional[ChangeFeed] = None):
        super().__init__(feed)
        self._db = database

    @property
    def database(self):
        if self._db is None:
            self._db = db()
        return self._db

    async def ensure_indexes(self):
        for name in (VEHICLES, TRIPS, SETTINGS):
            await self.database[name].create_index([("id", 1)], unique=True)
        await self.database[TRIPS].create_index([("vehicle_id", 1)])
        await self.database[TRIPS].create_index([("state", 1)])

    async def get(self, collection: str, doc_id: str) -> Optional[dict]:
        return await self.database[collection].find_one({"id": doc_id}, {"_id": 0})

    async def put(self, collection: str, doc_id: str, doc: dict) -> dict:
        stored = dict(doc)
        stored["id"] = doc_id
        await self.database[collection].replace_one({"id": doc_id}, stored, upsert=True)
        stored.pop("_id", None)
        await self.feed.publish(collection, doc_id, stored)
        return stored

    async def update(self, collection: str, doc_id: str, partial: dict, where: Optional[dict] = None) -> Optional[dict]:
        return await self._modify(collection, doc_id, {"$set": partial}, where)

    async def push(self, collection: str, doc_id: str, field: str, item, where: Optional[dict] = None) -> Optional[dict]:
        return await self._modify(collection, doc_id, {"$push": {field: item}}, where)

    async def _modify(self, collection: str, doc_id: str, change: dict, where: Optional[dict]) -> Optional[dict]:
        # the filter is checked and the change applied in one atomic step
        updated = await self.database[collection].find_one_and_update(
            {**(where or {}), "id": doc_id},
            change,
            projection={"_id": 0},
            return_document=ReturnDocument.AFTER,
        )
        if not updated:
            if where and await self.database[collection].count_documents({"id": doc_id}, limit=1):
                return None
            raise NotFoundError(collection, doc_id)
        await self.feed.publish(collection, doc_id, updated)
        return updated

    async def find(self, collection: str, filter: Optional[dict] = None, limit: int = 500) -> List[dict]:
        cursor = self.database[collection].find(filter or {}, {"_id": 0}).sort("created_at_ms", 1)
        return await cursor.to_list(length=limit)

    async def close(self):
        global _client
        if self._db is not None and _client is not None:
            _client.close()
            _client = None
