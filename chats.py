"""
Customer <-> agent conversations.

Only the two participants of a chat and admins may read or write it.
Non-admin "clear" hides messages for the requester alone (cleared_for);
admin clear and chat deletion remove messages for everybody.
"""

import logging
from typing import List, Optional

from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.database import Database

from database import create_document, find_by_id, now_utc, to_object_id
from errors import Forbidden, NotFound, ValidationFailure
from schemas import Message

logger = logging.getLogger(__name__)

SENDER_ROLES = ("customer", "agent", "admin")


def is_admin(role: Optional[str]) -> bool:
    return role == "admin"


def _get_chat(db: Database, chat_id: str) -> dict:
    chat = find_by_id(db, "chat", chat_id)
    if not chat:
        raise NotFound("Chat not found")
    return chat


def _get_message(db: Database, message_id: str) -> dict:
    message = find_by_id(db, "message", message_id)
    if not message:
        raise NotFound("Message not found")
    return message


def _authorize(chat: dict, user_id: Optional[str], role: Optional[str]) -> None:
    if is_admin(role):
        return
    if not user_id or user_id not in chat.get("participants", []):
        raise Forbidden("Access denied")


def create_or_get_chat(db: Database, user_id: str, agent_id: str) -> dict:
    if not user_id or not agent_id:
        raise ValidationFailure("userId and agentId are required")
    stamp = now_utc()
    # Upsert on the unique pair so concurrent callers share one chat.
    return db["chat"].find_one_and_update(
        {"user_id": user_id, "agent_id": agent_id},
        {
            "$setOnInsert": {
                "participants": [user_id, agent_id],
                "last_message": None,
                "last_message_at": None,
                "created_at": stamp,
                "updated_at": stamp,
            }
        },
        upsert=True,
        return_document=ReturnDocument.AFTER,
    )


def list_chats(
    db: Database,
    user_id: Optional[str] = None,
    agent_id: Optional[str] = None,
    role: Optional[str] = None,
) -> List[dict]:
    if is_admin(role):
        filt = {}
    else:
        if not user_id and not agent_id:
            raise ValidationFailure("userId or agentId required")
        filt = {}
        if user_id:
            filt["user_id"] = user_id
        if agent_id:
            filt["agent_id"] = agent_id
    return list(db["chat"].find(filt).sort("updated_at", DESCENDING))


def list_messages(db: Database, chat_id: str, requester_id: Optional[str], role: Optional[str]) -> List[dict]:
    chat = _get_chat(db, chat_id)
    _authorize(chat, requester_id, role)
    filt = {"chat_id": str(chat["_id"])}
    if requester_id:
        filt["cleared_for"] = {"$ne": requester_id}
    return list(db["message"].find(filt).sort([("created_at", ASCENDING), ("_id", ASCENDING)]))


def _append(db: Database, chat: dict, sender_id: str, sender_role: str, text: str) -> dict:
    message = Message(chat_id=str(chat["_id"]), sender_id=sender_id, sender_role=sender_role, text=text)
    message_id = create_document(db, "message", message)
    stamp = now_utc()
    db["chat"].update_one(
        {"_id": chat["_id"]},
        {"$set": {"last_message": text, "last_message_at": stamp, "updated_at": stamp}},
    )
    return find_by_id(db, "message", message_id)


def send_message(db: Database, chat_id: str, sender_id: str, sender_role: str, text: str) -> dict:
    if not chat_id or not sender_id or not sender_role or not text:
        raise ValidationFailure("chatId, senderId, senderRole, and text are required")
    if sender_role not in SENDER_ROLES:
        raise ValidationFailure(f"Invalid sender role: {sender_role}")
    chat = _get_chat(db, chat_id)
    _authorize(chat, sender_id, sender_role)
    return _append(db, chat, sender_id, sender_role, text)


def post_notification(db: Database, chat: dict, sender_id: str, sender_role: str, text: str) -> dict:
    """Append a message on behalf of the platform; no participant check."""
    return _append(db, chat, sender_id, sender_role, text)


def edit_message(db: Database, message_id: str, requester_id: Optional[str], role: Optional[str], text: str) -> dict:
    if not text:
        raise ValidationFailure("Text is required")
    message = _get_message(db, message_id)
    if message["sender_id"] != requester_id and not is_admin(role):
        raise Forbidden("Access denied")
    return db["message"].find_one_and_update(
        {"_id": message["_id"]},
        {"$set": {"text": text, "updated_at": now_utc()}},
        return_document=ReturnDocument.AFTER,
    )


def delete_message(db: Database, message_id: str, requester_id: Optional[str], role: Optional[str]) -> None:
    message = _get_message(db, message_id)
    chat = _get_chat(db, message["chat_id"])
    _authorize(chat, requester_id, role)
    db["message"].delete_one({"_id": message["_id"]})


def clear_chat(db: Database, chat_id: str, requester_id: Optional[str], role: Optional[str]) -> int:
    chat = _get_chat(db, chat_id)
    _authorize(chat, requester_id, role)
    key = str(chat["_id"])
    if is_admin(role):
        deleted = db["message"].delete_many({"chat_id": key}).deleted_count
        logger.info("Admin cleared chat %s (%d messages deleted)", chat_id, deleted)
        return deleted
    result = db["message"].update_many(
        {"chat_id": key, "cleared_for": {"$ne": requester_id}},
        {"$addToSet": {"cleared_for": requester_id}},
    )
    return result.modified_count


def delete_chat(db: Database, chat_id: str, requester_id: Optional[str], role: Optional[str]) -> None:
    chat = _get_chat(db, chat_id)
    _authorize(chat, requester_id, role)
    deleted = db["message"].delete_many({"chat_id": str(chat["_id"])}).deleted_count
    db["chat"].delete_one({"_id": chat["_id"]})
    logger.info("Chat %s deleted with %d messages", chat_id, deleted)
