from typing import Optional

from fleettrack.core import config
from fleettrack.db.memory import MemoryDocumentStore
from fleettrack.db.mongo import MongoDocumentStore
from fleettrack.db.store import DocumentStore

_store: Optional[DocumentStore] = None


def get_store() -> DocumentStore:
    global _store
    if _store is None:
        if config.STORE_BACKEND == "memory":
            _store = MemoryDocumentStore()
        elif config.STORE_BACKEND == "mongo":
            _store = MongoDocumentStore()
        else:
            raise RuntimeError(f"unknown STORE_BACKEND {config.STORE_BACKEND!r}")
    return _store


def set_store(store: Optional[DocumentStore]):
    global _store
    _store = store
