"""
Support chat inbox

Builds the admin inbox from the flat chatMessages stream: one summary per
chatId, split into general support (general_*, admin_initiated_*) and
machinery inquiries (machinery_*).
"""

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional

from pydantic import BaseModel

from chat_ids import (
    AdminInitiatedChat,
    GeneralChat,
    MachineryChat,
    admin_initiated_chat_id,
    parse_chat_id,
)
from notifications import notify_user_admin_reply

logger = logging.getLogger(__name__)

CHAT_MESSAGES = "chatMessages"
ADMIN_SENDER = "admin"
EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

UserLookup = Callable[[str], Optional[dict]]


class ConversationSummary(BaseModel):
    chatId: str
    kind: str
    userId: str
    userName: str
    userEmail: str
    machineryId: Optional[str] = None
    machineryDetails: Optional[Dict[str, Any]] = None
    lastMessage: str
    lastMessageTime: datetime
    unreadCount: int = 0


class ConversationLists(BaseModel):
    general: List[ConversationSummary] = []
    machinery: List[ConversationSummary] = []


def created_time(msg: dict) -> datetime:
    """createdAt as an aware datetime; missing or unreadable values sort as the epoch."""
    value = msg.get("createdAt")
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        seconds = value / 1000 if value > 1e11 else value
        try:
            return datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return EPOCH
    if isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return EPOCH
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return EPOCH


def _display_name(profile: Optional[dict], fallback: Optional[str]) -> str:
    if profile:
        name = f"{profile.get('firstName') or ''} {profile.get('lastName') or ''}".strip()
        if name:
            return name
    return fallback or "Unknown"


def _summarize(chat_id: str, thread: List[dict], unread: int, lookup: UserLookup) -> Optional[ConversationSummary]:
    ref = parse_chat_id(chat_id)
    if ref is None:
        return None

    # thread is newest first
    last = thread[0]
    from_user = [m for m in thread if m.get("senderType") != ADMIN_SENDER and m.get("senderId") != ADMIN_SENDER]

    if isinstance(ref, GeneralChat):
        user_id = from_user[0].get("senderId") if from_user else ref.user_id
    else:
        user_id = ref.user_id

    profile = lookup(user_id) if user_id else None
    sender_name = from_user[0].get("senderName") if from_user else None

    summary = ConversationSummary(
        chatId=chat_id,
        kind=ref.kind,
        userId=user_id or "",
        userName=_display_name(profile, sender_name),
        userEmail=(profile or {}).get("email") or "unknown@email.com",
        lastMessage=last.get("message") or "No messages yet",
        lastMessageTime=created_time(last),
        unreadCount=unread,
    )
    if isinstance(ref, MachineryChat):
        summary.machineryId = ref.machinery_id
        snapshot = next((m["machineryDetails"] for m in thread if m.get("machineryDetails")), None)
        if snapshot is None:
            logger.warning("Machinery chat %s has no listing snapshot", chat_id)
        summary.machineryDetails = snapshot
    return summary


def assemble_conversations(messages: List[dict], unread_by_chat: Mapping[str, int],
                           lookup_user: UserLookup) -> ConversationLists:
    """
    Group messages into per-chat summaries.

    Chats whose id is not general_/admin_initiated_/machinery_ are left out.
    Both lists are ordered by last message time, newest first.
    """
    threads: Dict[str, List[dict]] = {}
    for msg in messages:
        chat_id = msg.get("chatId")
        if chat_id:
            threads.setdefault(chat_id, []).append(msg)

    profiles: Dict[str, Optional[dict]] = {}

    def lookup(user_id: str) -> Optional[dict]:
        if user_id not in profiles:
            profiles[user_id] = lookup_user(user_id)
        return profiles[user_id]

    result = ConversationLists()
    for chat_id, thread in threads.items():
        thread.sort(key=created_time, reverse=True)
        summary = _summarize(chat_id, thread, unread_by_chat.get(chat_id, 0), lookup)
        if summary is None:
            continue
        if summary.kind == "machinery":
            result.machinery.append(summary)
        else:
            result.general.append(summary)

    result.general.sort(key=lambda s: s.lastMessageTime, reverse=True)
    result.machinery.sort(key=lambda s: s.lastMessageTime, reverse=True)
    return result


def conversation_messages(db, chat_id: str) -> List[dict]:
    # equality filter only; ordering is done here to avoid a composite index
    msgs = list(db[CHAT_MESSAGES].find({"chatId": chat_id}))
    msgs.sort(key=created_time)
    return msgs


def send_admin_message(db, chat_id: str, text: str) -> str:
    """Write an admin reply into a support chat and notify the user. Raises ValueError for unknown chats."""
    ref = parse_chat_id(chat_id)
    if ref is None:
        raise ValueError(f"Not a support chat: {chat_id}")

    machinery = None
    recipient = ref.user_id
    if isinstance(ref, MachineryChat):
        thread = conversation_messages(db, chat_id)
        machinery = next((m["machineryDetails"] for m in reversed(thread) if m.get("machineryDetails")), None)
    elif isinstance(ref, GeneralChat):
        thread = conversation_messages(db, chat_id)
        senders = [m.get("senderId") for m in thread if m.get("senderId") != ADMIN_SENDER]
        recipient = senders[-1] if senders else ref.user_id

    doc = {
        "chatId": chat_id,
        "senderId": ADMIN_SENDER,
        "senderName": "Admin",
        "senderType": ADMIN_SENDER,
        "recipientId": recipient,
        "message": text,
        "createdAt": datetime.now(timezone.utc),
        "status": "sent",
    }
    if machinery:
        doc["machineryDetails"] = machinery
    message_id = str(db[CHAT_MESSAGES].insert_one(doc).inserted_id)
    notify_user_admin_reply(db, recipient, text, chat_id, machinery)
    return message_id


def start_admin_chat(db, user: dict) -> AdminInitiatedChat:
    user_id = str(user.get("uid") or user.get("_id"))
    started_ms = int(datetime.now(timezone.utc).timestamp() * 1000)
    ref = parse_chat_id(admin_initiated_chat_id(user_id, started_ms))
    text = f"Hello {user.get('firstName') or 'there'}! I'm reaching out from the admin team. How can I help you today?"
    db[CHAT_MESSAGES].insert_one({
        "chatId": ref.chat_id,
        "senderId": ADMIN_SENDER,
        "senderName": "Admin",
        "senderType": ADMIN_SENDER,
        "recipientId": user_id,
        "message": text,
        "createdAt": datetime.now(timezone.utc),
        "status": "sent",
    })
    notify_user_admin_reply(db, user_id, text, ref.chat_id)
    return ref
