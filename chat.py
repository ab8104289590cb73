"""
Conversations and messages.

A conversation between two users is stored under the sorted pair of their
ids, so creating one is a create-if-absent write that any number of callers
can race on. Messages live in their own collection, tagged with the
conversation id and ordered by sent_at.
"""

import threading
from typing import Callable, Dict, List, Optional, Tuple

from pydantic import BaseModel
from pymongo.errors import PyMongoError

from database import create_document, create_if_absent, get_document, get_documents, now, update_document
from errors import ConversationBootstrapFailed, ConversationNotFound
from logger import logger
from schemas import KEY_SEPARATOR, MAX_MESSAGE_LENGTH, Conversation, Message, check_user_id
from settings import get_settings


class Participant(BaseModel):
    id: str
    display_name: str = ""
    avatar_url: str = ""


class LiveFeed:
    """
    In-process publish/subscribe keyed by topic.

    Every emission carries the full current snapshot, never a delta.
    Snapshots are loaded and delivered under one lock per feed, so a
    subscriber never receives an older snapshot after a newer one.
    """

    def __init__(self, name: str):
        self.name = name
        self._subscribers: Dict[str, List[Callable]] = {}
        self._lock = threading.Lock()
        self._delivery = threading.RLock()

    def subscribe(self, topic: str, callback: Callable,
                  load: Optional[Callable] = None) -> Callable[[], None]:
        """
        Register `callback` for `topic` and return a cancel function.

        With `load`, the callback first receives `load()` before any later
        publish can reach it.
        """

        def cancel() -> None:
            with self._lock:
                callbacks = self._subscribers.get(topic, [])
                if callback in callbacks:
                    callbacks.remove(callback)
                if not callbacks:
                    self._subscribers.pop(topic, None)

        with self._delivery:
            with self._lock:
                self._subscribers.setdefault(topic, []).append(callback)
            if load is not None:
                try:
                    callback(load())
                except Exception:
                    cancel()
                    raise
        return cancel

    def publish(self, topic: str, load: Callable) -> None:
        with self._delivery:
            with self._lock:
                callbacks = list(self._subscribers.get(topic, []))
            if not callbacks:
                return
            snapshot = load()
            for callback in callbacks:
                try:
                    callback(snapshot)
                except Exception:
                    logger.exception(f"{self.name} subscriber for {topic} failed")


message_feed = LiveFeed("messages")
conversation_feed = LiveFeed("conversations")


def conversation_id_for(user_a: str, user_b: str) -> str:
    return KEY_SEPARATOR.join(sorted([user_a, user_b]))


def _to_conversation(doc: dict) -> Conversation:
    data = dict(doc)
    data["id"] = str(data.pop("_id"))
    return Conversation(**data)


def _to_message(doc: dict) -> Message:
    data = dict(doc)
    data["id"] = str(data.pop("_id"))
    return Message(**data)


def get_conversation(conversation_id: str) -> Optional[Conversation]:
    doc = get_document("conversations", conversation_id)
    return _to_conversation(doc) if doc else None


def get_messages(conversation_id: str) -> List[Message]:
    docs = get_documents("messages", {"conversation_id": conversation_id},
                         sort=[("sent_at", 1), ("_id", 1)])
    return [_to_message(d) for d in docs]


def get_user_conversations(user_id: str) -> List[Conversation]:
    docs = get_documents("conversations", {"participants": user_id},
                         sort=[("last_message_at", -1)])
    return [_to_conversation(d) for d in docs]


def get_other_participant(conversation: Conversation, current_user_id: str) -> Optional[Participant]:
    other_id = next((p for p in conversation.participants if p != current_user_id), None)
    if other_id is None:
        return None
    return Participant(
        id=other_id,
        display_name=conversation.participant_display_names.get(other_id) or "Unknown User",
        avatar_url=conversation.participant_avatars.get(other_id, ""),
    )


def _publish_conversations(user_ids: List[str]) -> None:
    for user_id in user_ids:
        conversation_feed.publish(user_id, lambda user_id=user_id: get_user_conversations(user_id))


def open_conversation(first: Participant, second: Participant) -> Tuple[str, bool]:
    """
    Create the conversation between two participants unless it exists.

    Returns the conversation id and whether this call created it. An existing
    conversation keeps its history and its participant snapshot.
    """
    check_user_id(first.id)
    check_user_id(second.id)
    if first.id == second.id:
        raise ValueError("A conversation needs two different participants")
    conversation_id = conversation_id_for(first.id, second.id)
    stamp = now()
    data = {
        "participants": [first.id, second.id],
        "participant_display_names": {first.id: first.display_name, second.id: second.display_name},
        "participant_avatars": {first.id: first.avatar_url, second.id: second.avatar_url},
        "last_message": "",
        "last_message_at": stamp,
        "last_message_sender": "",
        "created_at": stamp,
    }
    try:
        created = create_if_absent("conversations", conversation_id, data)
    except PyMongoError as exc:
        raise ConversationBootstrapFailed(f"Could not create conversation {conversation_id}") from exc
    if created:
        logger.info(f"Created conversation {conversation_id}")
        _publish_conversations([first.id, second.id])
    return conversation_id, created


def ensure_conversation(first: Participant, second: Participant) -> str:
    conversation_id, _ = open_conversation(first, second)
    return conversation_id


def send_message(conversation_id: str, sender_id: str, sender_name: str, sender_avatar: str, text: str) -> Message:
    """Append a message and update the conversation's last-message fields."""
    if not text or not text.strip():
        raise ValueError("Message text must not be empty")
    if len(text) > MAX_MESSAGE_LENGTH:
        raise ValueError(f"Message text is longer than {MAX_MESSAGE_LENGTH} characters")
    conversation = get_document("conversations", conversation_id)
    if not conversation:
        raise ConversationNotFound(conversation_id)

    sent_at = now()
    message_id = create_document("messages", {
        "conversation_id": conversation_id,
        "sender_id": sender_id,
        "sender_display_name": sender_name,
        "sender_avatar_url": sender_avatar,
        "text": text,
        "sent_at": sent_at,
        "read": False,
    })
    update_document("conversations", conversation_id, {
        "last_message": text,
        "last_message_at": sent_at,
        "last_message_sender": sender_id,
    })

    message_feed.publish(conversation_id, lambda: get_messages(conversation_id))
    _publish_conversations(conversation["participants"])

    return Message(
        id=message_id,
        conversation_id=conversation_id,
        sender_id=sender_id,
        sender_display_name=sender_name,
        sender_avatar_url=sender_avatar,
        text=text,
        sent_at=sent_at,
    )


def send_intro_message(conversation_id: str, sender: Participant, text: str) -> Message:
    try:
        return send_message(conversation_id, sender.id, sender.display_name, sender.avatar_url, text)
    except (PyMongoError, ConversationNotFound, ValueError) as exc:
        raise ConversationBootstrapFailed(f"Could not send intro message to {conversation_id}: {exc}") from exc


def intro_text(mentor: Participant, mentee: Participant) -> str:
    template = get_settings().intro_message_template
    try:
        return template.format(mentor_name=mentor.display_name, mentee_name=mentee.display_name)
    except (KeyError, IndexError, ValueError) as exc:
        raise ConversationBootstrapFailed(f"Bad intro message template {template!r}") from exc


def bootstrap_match_conversation(mentor: Participant, mentee: Participant) -> str:
    """
    Open the conversation for a new match and seed it with the intro message.

    The intro always goes from the mentee to the mentor, and only when the
    conversation did not exist before this call.
    """
    conversation_id, created = open_conversation(mentor, mentee)
    if not created:
        logger.info(f"Conversation {conversation_id} already exists, skipping intro message")
        return conversation_id
    send_intro_message(conversation_id, mentee, intro_text(mentor, mentee))
    logger.info(f"Intro message sent from mentee {mentee.id} to mentor {mentor.id}")
    return conversation_id


def subscribe_to_messages(conversation_id: str, on_update: Callable[[List[Message]], None]) -> Callable[[], None]:
    """
    Deliver the ordered message list now and after every new message.

    Returns a function that cancels the subscription.
    """
    return message_feed.subscribe(conversation_id, on_update, load=lambda: get_messages(conversation_id))


def subscribe_to_user_conversations(user_id: str,
                                    on_update: Callable[[List[Conversation]], None]) -> Callable[[], None]:
    return conversation_feed.subscribe(user_id, on_update, load=lambda: get_user_conversations(user_id))
