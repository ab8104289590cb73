"""
Profile directory: global user documents plus role-specific documents.

The matching core only reads from here; create/update exist for
registration and profile editing.
"""

from typing import Dict, List, Optional, Union

from pymongo.errors import PyMongoError

from database import get_document, get_documents, now, put_document, update_document
from errors import DirectoryUnavailable, ProfileNotFound
from logger import logger
from schemas import MenteeProfile, MentorProfile, Profile, UserProfile, check_user_id, role_collection
from settings import get_settings


def create_user_documents(user_id: str, user: UserProfile,
                          role_data: Union[MentorProfile, MenteeProfile]) -> None:
    """Write the global profile and the document for the user's role."""
    check_user_id(user_id)
    doc = user.model_dump()
    doc["created_at"] = now()
    put_document("users", user_id, doc)
    put_document(role_collection(user.role), user_id, role_data)
    logger.info(f"Created {user.role} profile {user_id}")


def get_user_profile(user_id: str) -> Optional[dict]:
    return get_document("users", user_id)


def get_role_profile(user_id: str, role: str) -> Optional[dict]:
    return get_document(role_collection(role), user_id)


def get_combined_profile(user_id: str) -> Optional[dict]:
    user = get_user_profile(user_id)
    if not user:
        return None
    role_data = get_role_profile(user_id, user["role"])
    combined = dict(user)
    combined[f"{user['role']}_data"] = role_data
    return combined


def _drop_unset(data: Dict) -> Dict:
    return {k: v for k, v in data.items() if v is not None}


def update_user_profile(user_id: str, data: Dict) -> None:
    fields = _drop_unset(data)
    fields.pop("role", None)  # role is fixed at registration
    if not fields:
        return
    if not update_document("users", user_id, fields):
        raise ProfileNotFound(user_id)


def update_role_profile(user_id: str, role: str, data: Dict) -> None:
    fields = _drop_unset(data)
    if not fields:
        return
    if not update_document(role_collection(role), user_id, fields):
        raise ProfileNotFound(user_id)


_IDENTITY_KEYS = ("_id", "id", "role", "display_name", "avatar_url")


def to_profile(user: dict, role_data: Optional[dict]) -> Profile:
    settings = get_settings()
    attrs = {k: v for k, v in (role_data or {}).items() if k not in _IDENTITY_KEYS}
    return Profile(
        **attrs,
        id=str(user["_id"]),
        role=user["role"],
        display_name=user.get("display_name") or settings.default_display_name,
        avatar_url=user.get("avatar_url") or settings.default_avatar_url,
    )


def list_profiles_by_role(role: str) -> List[Profile]:
    """All profiles with the given role. Store failures raise DirectoryUnavailable."""
    details = role_collection(role)
    try:
        users = get_documents("users", {"role": role})
        ids = [u["_id"] for u in users]
        role_docs = {d["_id"]: d for d in get_documents(details, {"_id": {"$in": ids}})}
    except PyMongoError as exc:
        logger.error(f"Error fetching {role} profiles: {exc}")
        raise DirectoryUnavailable(f"Could not load {role} profiles") from exc
    return [to_profile(u, role_docs.get(u["_id"])) for u in users]
