"""
Chat id parsing

A chatId encodes the conversation class and its participants positionally:

- general_{userId}
- admin_initiated_{userId}_{startedAtMs}
- machinery_{machineryId}_{userId}

Parse it once with parse_chat_id and pass the result around.
"""

from typing import Optional, Union
from pydantic import BaseModel

GENERAL_PREFIX = "general_"
ADMIN_INITIATED_PREFIX = "admin_initiated_"
MACHINERY_PREFIX = "machinery_"


class GeneralChat(BaseModel):
    chat_id: str
    user_id: str
    kind: str = "general"


class AdminInitiatedChat(BaseModel):
    chat_id: str
    user_id: str
    started_at: Optional[int] = None
    kind: str = "admin_initiated"


class MachineryChat(BaseModel):
    chat_id: str
    machinery_id: str
    user_id: str
    kind: str = "machinery"


ChatRef = Union[GeneralChat, AdminInitiatedChat, MachineryChat]


def parse_chat_id(chat_id: Optional[str]) -> Optional[ChatRef]:
    """None for ids outside the three support classes (e.g. rent_approved_* card threads)."""
    if not chat_id or not isinstance(chat_id, str):
        return None

    if chat_id.startswith(ADMIN_INITIATED_PREFIX):
        rest = chat_id[len(ADMIN_INITIATED_PREFIX):]
        user_id, _, started = rest.rpartition("_")
        if not user_id:
            user_id, started = rest, ""
        return AdminInitiatedChat(
            chat_id=chat_id,
            user_id=user_id,
            started_at=int(started) if started.isdigit() else None,
        )

    if chat_id.startswith(GENERAL_PREFIX):
        return GeneralChat(chat_id=chat_id, user_id=chat_id[len(GENERAL_PREFIX):])

    if chat_id.startswith(MACHINERY_PREFIX):
        machinery_id, _, user_id = chat_id[len(MACHINERY_PREFIX):].partition("_")
        return MachineryChat(chat_id=chat_id, machinery_id=machinery_id, user_id=user_id)

    return None


def is_machinery_chat_id(chat_id: Optional[str]) -> bool:
    return isinstance(parse_chat_id(chat_id), MachineryChat)


def is_general_chat_id(chat_id: Optional[str]) -> bool:
    return isinstance(parse_chat_id(chat_id), (GeneralChat, AdminInitiatedChat))


def general_chat_id(user_id: str) -> str:
    return f"{GENERAL_PREFIX}{user_id}"


def admin_initiated_chat_id(user_id: str, started_at_ms: int) -> str:
    return f"{ADMIN_INITIATED_PREFIX}{user_id}_{started_at_ms}"


def machinery_chat_id(machinery_id: str, user_id: str) -> str:
    return f"{MACHINERY_PREFIX}{machinery_id}_{user_id}"
