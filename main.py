import asyncio
from typing import Callable, List, Optional

from fastapi import FastAPI, HTTPException, Query, WebSocket
from fastapi.concurrency import run_in_threadpool
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, field_validator
from pymongo.errors import PyMongoError

import database
from chat import (
    Participant,
    ensure_conversation,
    get_conversation,
    get_messages,
    get_other_participant,
    get_user_conversations,
    send_message,
    subscribe_to_messages,
    subscribe_to_user_conversations,
)
from errors import (
    ConversationBootstrapFailed,
    ConversationNotFound,
    DatabaseNotConfigured,
    DirectoryUnavailable,
    MatchingError,
    MatchPersistenceFailed,
    ProfileNotFound,
    SwipeRecordingFailed,
)
from logger import logger
from matching import get_candidates, get_user_matches, record_swipe
from profiles import (
    create_user_documents,
    get_combined_profile,
    get_user_profile,
    update_role_profile,
    update_user_profile,
)
from schemas import Direction, MenteeProfile, MentorProfile, Role, UserProfile, check_user_id
from settings import get_settings

app = FastAPI(title="Mentor Match API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Error mapping

ERROR_STATUS = {
    DatabaseNotConfigured: 503,
    DirectoryUnavailable: 503,
    ProfileNotFound: 404,
    ConversationNotFound: 404,
    SwipeRecordingFailed: 500,
    MatchPersistenceFailed: 500,
    ConversationBootstrapFailed: 500,
}


@app.exception_handler(MatchingError)
async def matching_error_handler(request, exc: MatchingError):
    status = ERROR_STATUS.get(type(exc), 500)
    retryable = status >= 500
    return JSONResponse(status_code=status, content={"detail": str(exc), "retryable": retryable})


@app.exception_handler(ValueError)
async def value_error_handler(request, exc: ValueError):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(PyMongoError)
async def database_error_handler(request, exc: PyMongoError):
    logger.error(f"Database error on {request.url.path}: {exc}")
    return JSONResponse(status_code=503, content={"detail": "Database error", "retryable": True})


# Utility to convert Mongo docs to JSON-safe

def to_doc(d):
    if not d:
        return d
    d = dict(d)
    if "_id" in d:
        d["id"] = str(d.pop("_id"))
    for k, v in list(d.items()):
        if isinstance(v, dict):
            d[k] = to_doc(v)
    return jsonable_encoder(d)


def _require_user(profile_id: str) -> dict:
    user = get_user_profile(profile_id)
    if not user:
        raise HTTPException(status_code=404, detail="Profile not found")
    return user


def _participant(profile_id: str) -> Participant:
    user = _require_user(profile_id)
    return Participant(
        id=profile_id,
        display_name=user.get("display_name") or get_settings().default_display_name,
        avatar_url=user.get("avatar_url") or "",
    )


# Health
@app.get("/")
def root():
    return {"message": "Mentor Match API running"}


# Profile endpoints
class RegisterIn(BaseModel):
    user_id: str
    profile: UserProfile
    details: dict = {}

    @field_validator("user_id")
    @classmethod
    def valid_user_id(cls, value: str) -> str:
        return check_user_id(value)


class ProfileUpdate(BaseModel):
    display_name: Optional[str] = None
    avatar_url: Optional[str] = None
    is_public: Optional[bool] = None
    bio: Optional[str] = None
    skills: Optional[List[str]] = None
    location: Optional[str] = None
    experience: Optional[str] = None
    education: Optional[str] = None
    languages: Optional[List[str]] = None
    availability: Optional[str] = None
    hourly_rate: Optional[float] = None


USER_FIELDS = ("display_name", "avatar_url", "is_public")


@app.post("/profiles", status_code=201)
def register(payload: RegisterIn):
    if payload.profile.role == "mentor":
        role_data = MentorProfile(**payload.details)
    else:
        role_data = MenteeProfile(**payload.details)
    create_user_documents(payload.user_id, payload.profile, role_data)
    return {"id": payload.user_id}


@app.get("/profiles/me")
def get_me(profile_id: str):
    doc = get_combined_profile(profile_id)
    if not doc:
        raise HTTPException(status_code=404, detail="Profile not found")
    return to_doc(doc)


@app.put("/profiles/me")
def update_me(profile_id: str, payload: ProfileUpdate):
    user = _require_user(profile_id)
    update = payload.model_dump(exclude_unset=True)
    if not update:
        return {"updated": False}
    update_user_profile(profile_id, {k: v for k, v in update.items() if k in USER_FIELDS})
    role_fields = {k: v for k, v in update.items() if k not in USER_FIELDS}
    if user["role"] != "mentor":
        role_fields.pop("hourly_rate", None)
    update_role_profile(profile_id, user["role"], role_fields)
    return to_doc(get_combined_profile(profile_id))


# Discovery - opposite-role profiles not yet matched with me
@app.get("/discover")
def discover(profile_id: str, role: Role, limit: Optional[int] = Query(None, ge=1, le=200)):
    candidates = get_candidates(profile_id, role)
    return jsonable_encoder(candidates[: limit or get_settings().discover_limit])


# Swipes and matching
class SwipeIn(BaseModel):
    target_id: str
    direction: Direction


@app.post("/swipe")
def swipe(profile_id: str, payload: SwipeIn):
    match = record_swipe(profile_id, payload.target_id, payload.direction)
    return {"ok": True, "match": match is not None, "match_id": match.key if match else None}


@app.get("/matches")
def matches(profile_id: str):
    out = []
    for m in get_user_matches(profile_id):
        m_doc = jsonable_encoder(m)
        m_doc["id"] = m.key
        other_id = m.mentee_id if m.mentor_id == profile_id else m.mentor_id
        m_doc["other"] = to_doc(get_user_profile(other_id))
        out.append(m_doc)
    return out


# Conversations and messages
class ConversationIn(BaseModel):
    other_id: str


class MessageIn(BaseModel):
    text: str


@app.post("/conversations")
def start_conversation(profile_id: str, payload: ConversationIn):
    conversation_id = ensure_conversation(_participant(profile_id), _participant(payload.other_id))
    return jsonable_encoder(get_conversation(conversation_id))


@app.get("/conversations")
def conversations(profile_id: str):
    out = []
    for c in get_user_conversations(profile_id):
        c_doc = jsonable_encoder(c)
        c_doc["other"] = jsonable_encoder(get_other_participant(c, profile_id))
        out.append(c_doc)
    return out


@app.get("/conversations/{conversation_id}/messages")
def list_messages(conversation_id: str):
    if get_conversation(conversation_id) is None:
        raise ConversationNotFound(conversation_id)
    return jsonable_encoder(get_messages(conversation_id))


@app.post("/conversations/{conversation_id}/messages", status_code=201)
def post_message(conversation_id: str, sender_id: str, payload: MessageIn):
    sender = _participant(sender_id)
    conversation = get_conversation(conversation_id)
    if conversation is None:
        raise ConversationNotFound(conversation_id)
    if sender_id not in conversation.participants:
        raise HTTPException(status_code=403, detail="Not a participant of this conversation")
    message = send_message(conversation_id, sender.id, sender.display_name, sender.avatar_url, payload.text)
    return jsonable_encoder(message)


# Live feeds

def put_latest(queue: asyncio.Queue, snapshot) -> None:
    """Keep only the newest snapshot for a slow socket; each one is complete."""
    if queue.full():
        queue.get_nowait()
    queue.put_nowait(snapshot)


async def _stream(websocket: WebSocket, subscribe: Callable) -> None:
    """
    Forward every snapshot from a live feed to the socket until it closes.

    Closing the socket cancels the subscription.
    """
    await websocket.accept()
    loop = asyncio.get_running_loop()
    queue: asyncio.Queue = asyncio.Queue(maxsize=1)

    def on_update(snapshot):
        loop.call_soon_threadsafe(put_latest, queue, snapshot)

    try:
        cancel = await run_in_threadpool(subscribe, on_update)
    except (MatchingError, PyMongoError) as exc:
        logger.error(f"Could not open live feed: {exc}")
        await websocket.close(code=1011)
        return

    async def pump():
        while True:
            snapshot = await queue.get()
            await websocket.send_json(jsonable_encoder(snapshot))

    async def drain():
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                return

    tasks = [asyncio.create_task(pump()), asyncio.create_task(drain())]
    try:
        done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        for task in pending:
            task.cancel()
        for task in done:
            if task.exception() is not None:
                logger.debug(f"Live feed closed: {task.exception()!r}")
    finally:
        cancel()


@app.websocket("/ws/conversations/{conversation_id}")
async def messages_socket(websocket: WebSocket, conversation_id: str):
    await _stream(websocket, lambda on_update: subscribe_to_messages(conversation_id, on_update))


@app.websocket("/ws/users/{user_id}/conversations")
async def conversations_socket(websocket: WebSocket, user_id: str):
    await _stream(websocket, lambda on_update: subscribe_to_user_conversations(user_id, on_update))


# Test DB connectivity
@app.get("/test")
def test_database():
    response = {"backend": "✅ Running", "database": "❌ Not Available"}
    try:
        if database.db is not None:
            response["database"] = "✅ Connected"
            response["collections"] = database.db.list_collection_names()
        else:
            response["database"] = "❌ Not Connected"
    except PyMongoError as e:
        response["error"] = str(e)
    return response


if __name__ == "__main__":
    import uvicorn
    settings = get_settings()
    uvicorn.run(app, host=settings.app_host, port=settings.app_port)
