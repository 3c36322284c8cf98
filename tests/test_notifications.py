from datetime import datetime, timedelta, timezone

import pytest
from pymongo.errors import PyMongoError

from notifications import (
    ADMIN_NOTIFICATIONS,
    USER_NOTIFICATIONS,
    NotificationBatchError,
    NotificationState,
    compute_unread_counts,
    count_unread,
    delete_notification,
    for_chat,
    is_general_support,
    is_machinery_inquiry,
    mark_all_read,
    mark_chat_read,
    mark_notification_read,
    notify_admin_new_message,
    notify_user_ad_decision,
)


def _seed(db):
    notify_admin_new_message(db, "user1", "Ali", "hello", "general_user1")
    notify_admin_new_message(db, "user1", "Ali", "still there?", "general_user1")
    notify_admin_new_message(db, "user2", "Sara", "is it free?", "machinery_m1_user2", {"id": "m1", "name": "Crane"})
    notify_admin_new_message(db, "user3", "Omar", "hi", "admin_initiated_user3_1700000000000")
    db[ADMIN_NOTIFICATIONS].insert_one({"type": "new_ad", "title": "New ad", "message": "x", "status": "unread"})


def test_count_unread_by_class(mock_db):
    _seed(mock_db)
    assert count_unread(mock_db) == 5
    assert count_unread(mock_db, is_general_support) == 3
    assert count_unread(mock_db, is_machinery_inquiry) == 1
    assert count_unread(mock_db, for_chat("general_user1")) == 2


def test_new_message_title_depends_on_listing(mock_db):
    _seed(mock_db)
    titles = {d["chatId"]: d["title"] for d in mock_db[ADMIN_NOTIFICATIONS].find({"type": "new_message"})}
    assert titles["machinery_m1_user2"] == "New inquiry about Crane"
    assert titles["general_user1"] == "New general message"


def test_mark_chat_read_only_touches_that_chat(mock_db):
    _seed(mock_db)
    before_other = count_unread(mock_db, for_chat("machinery_m1_user2"))

    assert mark_chat_read(mock_db, "general_user1") == 2

    assert count_unread(mock_db, for_chat("general_user1")) == 0
    assert count_unread(mock_db, for_chat("machinery_m1_user2")) == before_other
    read = list(mock_db[ADMIN_NOTIFICATIONS].find({"chatId": "general_user1"}))
    assert all(d["status"] == "read" and d["readAt"] is not None for d in read)


def test_mark_chat_read_is_idempotent(mock_db):
    _seed(mock_db)
    mark_chat_read(mock_db, "general_user1")
    first = sorted((str(d["_id"]), d["status"]) for d in mock_db[ADMIN_NOTIFICATIONS].find())

    assert mark_chat_read(mock_db, "general_user1") == 0
    second = sorted((str(d["_id"]), d["status"]) for d in mock_db[ADMIN_NOTIFICATIONS].find())
    assert first == second


def test_mark_chat_read_all_chats_leaves_other_types(mock_db):
    _seed(mock_db)
    assert mark_chat_read(mock_db) == 4
    assert count_unread(mock_db) == 1
    assert mock_db[ADMIN_NOTIFICATIONS].find_one({"type": "new_ad"})["status"] == "unread"


def test_mark_all_read_and_single_read(mock_db):
    _seed(mock_db)
    doc = mock_db[ADMIN_NOTIFICATIONS].find_one({"type": "new_ad"})
    assert mark_notification_read(mock_db, str(doc["_id"])) is True
    assert mark_notification_read(mock_db, str(doc["_id"])) is True
    assert mark_notification_read(mock_db, "000000000000000000000000") is False
    assert mark_all_read(mock_db) == 4
    assert count_unread(mock_db) == 0


def test_delete_notification(mock_db):
    _seed(mock_db)
    doc = mock_db[ADMIN_NOTIFICATIONS].find_one({"type": "new_ad"})
    assert delete_notification(mock_db, str(doc["_id"])) is True
    assert delete_notification(mock_db, str(doc["_id"])) is False


def test_ad_decision_notification(mock_db):
    ad = {"_id": "ad1", "userId": "owner1", "name": "Excavator", "price": "5000", "categoryName": "Heavy"}
    notify_user_ad_decision(mock_db, ad, approved=True)
    notify_user_ad_decision(mock_db, {**ad, "userId": None}, approved=False)
    docs = list(mock_db[USER_NOTIFICATIONS].find())
    assert len(docs) == 1
    assert docs[0]["type"] == "ad_approved"
    assert docs[0]["status"] == "unread"
    assert docs[0]["adData"]["category"] == "Heavy"


class FlakyCollection:
    """Fails the update for one document id."""

    def __init__(self, docs, failing_id):
        self.docs = docs
        self.failing_id = failing_id
        self.updated = []

    def find(self, query):
        return [d for d in self.docs if d["status"] == query["status"]]

    def update_one(self, filter_, update):
        if filter_["_id"] == self.failing_id:
            raise PyMongoError("connection reset")
        self.updated.append(filter_["_id"])

        class Result:
            modified_count = 1
        return Result()


def test_partial_batch_failure_reports_failed_ids():
    docs = [
        {"_id": f"n{i}", "type": "new_message", "chatId": "general_u", "status": "unread"} for i in range(4)
    ]
    coll = FlakyCollection(docs, failing_id="n2")
    with pytest.raises(NotificationBatchError) as exc:
        mark_chat_read({ADMIN_NOTIFICATIONS: coll}, "general_u")
    assert exc.value.failed == ["n2"]
    assert exc.value.total == 4
    assert sorted(coll.updated) == ["n0", "n1", "n3"]


# ------------------------
# NotificationState
# ------------------------
def _unread(chat_id, type_="new_message"):
    return {"type": type_, "chatId": chat_id, "status": "unread"}


def test_compute_unread_counts_from_full_set():
    counts = compute_unread_counts([
        _unread("general_a"),
        _unread("general_a"),
        _unread("admin_initiated_b_1"),
        _unread("machinery_m_c"),
        _unread(None, "new_ad"),
        {"type": "new_message", "chatId": "general_a", "status": "read"},
    ])
    assert counts.total == 5
    assert counts.generalSupport == 3
    assert counts.machineryInquiries == 1
    assert counts.perChat == {"general_a": 2, "admin_initiated_b_1": 1, "machinery_m_c": 1}


def test_state_recomputes_from_each_snapshot():
    state = NotificationState()
    t0 = datetime(2024, 6, 1, tzinfo=timezone.utc)
    state.apply_snapshot([_unread("general_a"), _unread("machinery_m_c")], t0)
    assert state.unread_for_chat("general_a") == 1

    state.apply_snapshot([_unread("machinery_m_c")], t0 + timedelta(seconds=1))
    assert state.unread_for_chat("general_a") == 0
    assert state.counts().machineryInquiries == 1


def test_state_drops_older_snapshot():
    state = NotificationState()
    t0 = datetime(2024, 6, 1, tzinfo=timezone.utc)
    assert state.apply_snapshot([], t0) is True
    assert state.apply_snapshot([_unread("general_a")], t0 - timedelta(seconds=5)) is False
    assert state.counts().total == 0
    assert state.apply_snapshot([_unread("general_a")], t0) is True
    assert state.counts().total == 1


def test_counts_projection_is_read_only():
    state = NotificationState()
    state.apply_snapshot([_unread("general_a")])
    with pytest.raises(Exception):
        state.counts().total = 10

    state.counts().perChat["general_a"] = 99
    state.counts().perChat["machinery_m_c"] = 5
    assert state.unread_for_chat("general_a") == 1
    assert state.unread_for_chat("machinery_m_c") == 0
    assert state.counts().perChat == {"general_a": 1}


def test_state_refresh_and_subscription_lifecycle(mock_db):
    _seed(mock_db)
    state = NotificationState()
    assert state.refresh(mock_db).total == 5

    class Handle:
        running = True
        stopped = False

        def stop(self):
            self.stopped = True

    handle = Handle()
    calls = []

    def subscribe(collection, filter_, callback):
        calls.append((collection, filter_))
        return handle

    state.start(subscribe)
    state.start(subscribe)
    assert calls == [(ADMIN_NOTIFICATIONS, {"status": "unread"})]
    assert state.live is True
    state.stop()
    assert handle.stopped is True
    assert state.live is False
