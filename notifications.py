"""
Notification bookkeeping

Admin notifications ("adminNotifications") and user notifications
("userNotifications", "notifications") move unread -> read exactly once.
Unread counts are always recomputed from the full unread set.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional

from pydantic import BaseModel, ConfigDict
from pymongo.errors import PyMongoError

from chat_ids import is_general_chat_id, is_machinery_chat_id
from database import doc_key

logger = logging.getLogger(__name__)

ADMIN_NOTIFICATIONS = "adminNotifications"
USER_NOTIFICATIONS = "userNotifications"
RENT_NOTIFICATIONS = "notifications"

NEW_MESSAGE = "new_message"
UNREAD = "unread"
READ = "read"

BATCH_WORKERS = 8

Predicate = Callable[[dict], bool]


class NotificationBatchError(Exception):
    """Some updates of a batch mark-as-read failed; the others stay committed."""

    def __init__(self, failed: List[str], total: int):
        self.failed = failed
        self.total = total
        super().__init__(f"{len(failed)} of {total} notification updates failed")


def _now():
    return datetime.now(timezone.utc)


# ------------------------
# Predicates
# ------------------------
def is_chat_notification(doc: dict) -> bool:
    return doc.get("type") == NEW_MESSAGE


def is_machinery_inquiry(doc: dict) -> bool:
    return is_chat_notification(doc) and is_machinery_chat_id(doc.get("chatId"))


def is_general_support(doc: dict) -> bool:
    return is_chat_notification(doc) and is_general_chat_id(doc.get("chatId"))


def for_chat(chat_id: str) -> Predicate:
    def predicate(doc: dict) -> bool:
        return is_chat_notification(doc) and doc.get("chatId") == chat_id
    return predicate


# ------------------------
# Reads
# ------------------------
def unread_documents(db, collection: str = ADMIN_NOTIFICATIONS) -> List[dict]:
    return list(db[collection].find({"status": UNREAD}))


def count_unread(db, predicate: Optional[Predicate] = None, collection: str = ADMIN_NOTIFICATIONS) -> int:
    docs = unread_documents(db, collection)
    if predicate is None:
        return len(docs)
    return sum(1 for d in docs if predicate(d))


# ------------------------
# Writes
# ------------------------
def _mark_one(coll, key, read_at) -> bool:
    res = coll.update_one({"_id": key, "status": UNREAD}, {"$set": {"status": READ, "readAt": read_at}})
    return res.modified_count > 0


def _mark_batch(db, collection: str, docs: List[dict]) -> int:
    if not docs:
        return 0
    coll = db[collection]
    read_at = _now()
    failed: List[str] = []
    marked = 0
    with ThreadPoolExecutor(max_workers=min(BATCH_WORKERS, len(docs))) as pool:
        futures = {str(d["_id"]): pool.submit(_mark_one, coll, d["_id"], read_at) for d in docs}
        for doc_id, fut in futures.items():
            try:
                if fut.result():
                    marked += 1
            except PyMongoError:
                logger.exception("Failed to mark notification %s read", doc_id)
                failed.append(doc_id)
    if failed:
        raise NotificationBatchError(failed, len(docs))
    return marked


def mark_chat_read(db, chat_id: Optional[str] = None) -> int:
    """
    Mark unread new_message notifications read, for one chat or all chats.

    Returns how many moved to read. Safe to call again: already-read
    notifications are left alone, and a partially failed run is finished by the
    next call.
    """
    query: Dict[str, Any] = {"status": UNREAD}
    docs = [d for d in db[ADMIN_NOTIFICATIONS].find(query) if is_chat_notification(d)]
    if chat_id is not None:
        docs = [d for d in docs if d.get("chatId") == chat_id]
    return _mark_batch(db, ADMIN_NOTIFICATIONS, docs)


def mark_all_read(db, collection: str = ADMIN_NOTIFICATIONS) -> int:
    return _mark_batch(db, collection, unread_documents(db, collection))


def mark_notification_read(db, notification_id: str, collection: str = ADMIN_NOTIFICATIONS) -> bool:
    """False when no such notification exists. Marking a read notification again is a no-op."""
    coll = db[collection]
    key = doc_key(notification_id)
    if coll.find_one({"_id": key}, {"_id": 1}) is None:
        return False
    _mark_one(coll, key, _now())
    return True


def delete_notification(db, notification_id: str, collection: str = ADMIN_NOTIFICATIONS) -> bool:
    return db[collection].delete_one({"_id": doc_key(notification_id)}).deleted_count > 0


def _insert(db, collection: str, doc: dict) -> Optional[str]:
    doc = {**doc, "status": UNREAD, "createdAt": _now(), "readAt": None}
    try:
        return str(db[collection].insert_one(doc).inserted_id)
    except PyMongoError:
        logger.exception("Failed to write %s notification to %s", doc.get("type"), collection)
        return None


def notify_admin_new_message(db, user_id: str, user_name: str, message: str, chat_id: str,
                             machinery: Optional[dict] = None) -> Optional[str]:
    title = f"New inquiry about {machinery.get('name')}" if machinery else "New general message"
    return _insert(db, ADMIN_NOTIFICATIONS, {
        "type": NEW_MESSAGE,
        "title": title,
        "message": f"{user_name}: {message}",
        "userId": user_id,
        "userName": user_name,
        "chatId": chat_id,
        "machineryDetails": machinery,
    })


def notify_user_admin_reply(db, user_id: str, message: str, chat_id: str,
                            machinery: Optional[dict] = None) -> Optional[str]:
    return _insert(db, USER_NOTIFICATIONS, {
        "userId": user_id,
        "type": "admin_reply",
        "title": "Admin Reply",
        "message": message,
        "chatId": chat_id,
        "machineryDetails": machinery,
    })


def notify_user_ad_decision(db, ad: dict, approved: bool) -> Optional[str]:
    if not ad.get("userId"):
        return None
    ad_id = str(ad.get("_id", ad.get("id", "")))
    doc = {
        "userId": ad["userId"],
        "adId": ad_id,
        "adData": {
            "name": ad.get("name"),
            "price": ad.get("price"),
            "category": ad.get("categoryName"),
        },
    }
    if approved:
        doc.update({
            "type": "ad_approved",
            "title": "Ad Successfully Posted!",
            "message": f'Your ad "{ad.get("name")}" has been approved and is now live! Rent: ₹{ad.get("price")}/day',
            "priority": "high",
        })
    else:
        doc.update({
            "type": "ad_rejected",
            "title": "Ad Rejected",
            "message": f'Your ad "{ad.get("name")}" was rejected. Please contact support for details.',
            "reason": "Please contact support for details",
            "priority": "medium",
        })
    return _insert(db, USER_NOTIFICATIONS, doc)


def notify_rent_request_approved(db, request: dict) -> List[Optional[str]]:
    """Tell the renter and the machinery owner; each write is independent."""
    request_id = str(request.get("_id", request.get("id", "")))
    name = request.get("machineryName")
    renter = _insert(db, RENT_NOTIFICATIONS, {
        "userId": request.get("userId"),
        "type": "rent_approved",
        "title": "Rent Request Approved",
        "message": f'Your rent request for "{name}" has been approved! Check chat for owner details.',
        "requestId": request_id,
    })
    owner = _insert(db, RENT_NOTIFICATIONS, {
        "userId": request.get("machineryOwnerId"),
        "type": "machinery_rented",
        "title": "Your Machinery has been Rented",
        "message": f'Your "{name}" has been rented! Renter will contact you soon. Contact: {request.get("userPhone")}',
        "requestId": request_id,
        "machineryId": request.get("machineryId"),
        "machineryName": name,
        "renterName": request.get("userName"),
        "renterPhone": request.get("userPhone"),
        "renterAddress": request.get("userAddress"),
        "rentalStartDate": request.get("rentalStartDate"),
        "rentalDuration": request.get("rentalDuration"),
        "deliveryLocation": request.get("deliveryLocation"),
    })
    return [renter, owner]


# ------------------------
# Process-wide unread state
# ------------------------
class UnreadCounts(BaseModel):
    model_config = ConfigDict(frozen=True)

    total: int = 0
    generalSupport: int = 0
    machineryInquiries: int = 0
    perChat: Dict[str, int] = {}
    observedAt: Optional[datetime] = None


def compute_unread_counts(docs: Iterable[dict], observed_at: Optional[datetime] = None) -> UnreadCounts:
    total = general = machinery = 0
    per_chat: Dict[str, int] = {}
    for d in docs:
        if d.get("status") != UNREAD:
            continue
        total += 1
        if not is_chat_notification(d):
            continue
        chat_id = d.get("chatId")
        if chat_id:
            per_chat[chat_id] = per_chat.get(chat_id, 0) + 1
        if is_machinery_chat_id(chat_id):
            machinery += 1
        elif is_general_chat_id(chat_id):
            general += 1
    return UnreadCounts(
        total=total,
        generalSupport=general,
        machineryInquiries=machinery,
        perChat=per_chat,
        observedAt=observed_at,
    )


class NotificationState:
    """
    Single owner of the admin unread counts.

    Fed full unread snapshots by one live subscription (and by manual refreshes).
    A snapshot observed before the current one is dropped.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._counts = UnreadCounts()
        self._subscription = None

    def apply_snapshot(self, docs: Iterable[dict], observed_at: Optional[datetime] = None) -> bool:
        observed_at = observed_at or _now()
        counts = compute_unread_counts(docs, observed_at)
        with self._lock:
            current = self._counts.observedAt
            if current is not None and observed_at < current:
                logger.debug("Dropping stale unread snapshot from %s", observed_at.isoformat())
                return False
            self._counts = counts
        return True

    @property
    def live(self) -> bool:
        return self._subscription is not None and getattr(self._subscription, "running", False)

    def refresh(self, db) -> UnreadCounts:
        observed_at = _now()
        self.apply_snapshot(unread_documents(db), observed_at)
        return self.counts()

    def counts(self) -> UnreadCounts:
        """A private copy; callers never share the live projection."""
        with self._lock:
            return self._counts.model_copy(deep=True)

    def unread_for_chat(self, chat_id: str) -> int:
        with self._lock:
            return self._counts.perChat.get(chat_id, 0)

    def start(self, subscribe) -> None:
        """subscribe(collection, filter, callback) -> handle with stop()."""
        if self._subscription is None:
            self._subscription = subscribe(ADMIN_NOTIFICATIONS, {"status": UNREAD}, self.apply_snapshot)

    def stop(self) -> None:
        if self._subscription is not None:
            self._subscription.stop()
            self._subscription = None


notification_state = NotificationState()
