"""
Database helpers

Thin wrapper around the MongoDB database shared with the HeavyRent mobile app.
Collections keep the camelCase field names the app writes.
"""

import os
import logging
import threading
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Union

from bson import ObjectId
from pydantic import BaseModel
from pymongo import MongoClient
from pymongo.errors import PyMongoError

logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME")

db = None
if DATABASE_URL and DATABASE_NAME:
    try:
        _client = MongoClient(DATABASE_URL)
        db = _client[DATABASE_NAME]
    except PyMongoError:
        logger.exception("Could not connect to MongoDB")
        db = None


def _require_db():
    if db is None:
        raise RuntimeError("Database not available. Check DATABASE_URL and DATABASE_NAME")
    return db


def doc_key(id_str: str) -> Union[ObjectId, str]:
    """Stored key for a path id: ObjectId when it looks like one, else the raw string (Firebase uids)."""
    if isinstance(id_str, ObjectId):
        return id_str
    if ObjectId.is_valid(id_str):
        return ObjectId(id_str)
    return id_str


def serialize(doc: Optional[dict]):
    if not doc:
        return doc
    out = {}
    for k, v in doc.items():
        if k == "_id":
            out["id"] = str(v)
        elif isinstance(v, ObjectId):
            out[k] = str(v)
        elif isinstance(v, datetime):
            out[k] = v.isoformat()
        elif isinstance(v, dict):
            out[k] = serialize(v)
        else:
            out[k] = v
    return out


def create_document(collection_name: str, data: Union[BaseModel, dict]) -> str:
    database = _require_db()
    if isinstance(data, BaseModel):
        data_dict = data.model_dump(exclude_none=True)
    else:
        data_dict = dict(data)
    now = datetime.now(timezone.utc)
    data_dict.setdefault("createdAt", now)
    data_dict["updatedAt"] = now
    result = database[collection_name].insert_one(data_dict)
    return str(result.inserted_id)


def get_documents(collection_name: str, filter_dict: Optional[dict] = None, limit: Optional[int] = None,
                  sort_by: Optional[str] = None, descending: bool = True) -> List[dict]:
    database = _require_db()
    cursor = database[collection_name].find(filter_dict or {})
    if sort_by:
        cursor = cursor.sort(sort_by, -1 if descending else 1)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def update_document(collection_name: str, id_str: str, fields: Dict[str, Any]) -> bool:
    """Field-level $set. Returns False when no document matched."""
    database = _require_db()
    res = database[collection_name].update_one({"_id": doc_key(id_str)}, {"$set": fields})
    return res.matched_count > 0


def delete_document(collection_name: str, id_str: str) -> bool:
    database = _require_db()
    res = database[collection_name].delete_one({"_id": doc_key(id_str)})
    return res.deleted_count > 0


Snapshot = Callable[[List[dict], datetime], None]


class LiveQuery:
    """
    Standing query over one collection.

    Delivers the full matching result set once on start and again after every
    change on the collection. The owner must call stop(); a running query keeps
    re-delivering until then.
    """

    def __init__(self, database, collection_name: str, filter_dict: Optional[dict], callback: Snapshot,
                 max_await_ms: int = 1000):
        self._collection = database[collection_name]
        self._filter = filter_dict or {}
        self._callback = callback
        self._max_await_ms = max_await_ms
        self._stopped = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def deliver(self):
        observed_at = datetime.now(timezone.utc)
        docs = list(self._collection.find(self._filter))
        self._callback(docs, observed_at)

    def start(self) -> "LiveQuery":
        if self.running:
            return self
        self._stopped.clear()
        self._thread = threading.Thread(target=self._run, name=f"live-{self._collection.name}", daemon=True)
        self._thread.start()
        return self

    def stop(self, timeout: Optional[float] = 5.0):
        self._stopped.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def _run(self):
        try:
            self.deliver()
            with self._collection.watch(max_await_time_ms=self._max_await_ms) as stream:
                while not self._stopped.is_set() and stream.alive:
                    change = stream.try_next()
                    if change is not None:
                        self.deliver()
        except PyMongoError:
            logger.exception("Live query on %s stopped", self._collection.name)
        except Exception:
            logger.exception("Live query callback failed on %s", self._collection.name)


def subscribe(collection_name: str, filter_dict: Optional[dict], callback: Snapshot) -> LiveQuery:
    return LiveQuery(_require_db(), collection_name, filter_dict, callback).start()
