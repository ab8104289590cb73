"""
Database Schemas for the mentor/mentee matching app

Each Pydantic model represents a collection in MongoDB.
Documents are keyed by deterministic ids wherever the model says so.
"""

from datetime import datetime
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, EmailStr, Field

Role = Literal["mentor", "mentee"]
Direction = Literal["left", "right"]

ROLES = ("mentor", "mentee")
DIRECTIONS = ("left", "right")
MAX_MESSAGE_LENGTH = 2000

# Joins ids in swipe, match and conversation keys, so never allowed inside one
KEY_SEPARATOR = "_"


def check_user_id(user_id: str) -> str:
    if not user_id or not user_id.strip():
        raise ValueError("User id must not be empty")
    if KEY_SEPARATOR in user_id:
        raise ValueError(f"User id must not contain {KEY_SEPARATOR!r}: {user_id!r}")
    return user_id


def opposite_role(role: str) -> str:
    if role not in ROLES:
        raise ValueError(f"Invalid role: {role!r}")
    return "mentee" if role == "mentor" else "mentor"


def role_collection(role: str) -> str:
    if role not in ROLES:
        raise ValueError(f"Invalid role: {role!r}")
    return role + "s"


class UserProfile(BaseModel):
    """
    Global user profile
    Collection name: "users", keyed by user id
    """
    email: EmailStr = Field(..., description="Login email")
    display_name: str = Field(..., min_length=1, description="Display name")
    role: Role = Field(..., description="mentor or mentee")
    avatar_url: str = Field("", description="Avatar image URL")
    is_public: bool = Field(True, description="Whether the profile is discoverable")


class RoleProfile(BaseModel):
    bio: str = ""
    skills: List[str] = Field(default_factory=list)
    location: str = ""
    experience: str = ""
    education: str = ""
    languages: List[str] = Field(default_factory=list)
    availability: str = ""


class MentorProfile(RoleProfile):
    """
    Mentor-specific attributes
    Collection name: "mentors", keyed by user id
    """
    hourly_rate: Optional[float] = Field(None, ge=0, description="Hourly rate")


class MenteeProfile(RoleProfile):
    """
    Mentee-specific attributes
    Collection name: "mentees", keyed by user id
    """


class Profile(BaseModel):
    """Read model handed to discovery: identity plus role-specific attributes."""
    id: str
    role: Role
    display_name: str
    avatar_url: str
    bio: str = ""
    skills: List[str] = Field(default_factory=list)
    location: str = ""
    experience: str = ""
    education: str = ""
    languages: List[str] = Field(default_factory=list)
    availability: str = ""
    hourly_rate: Optional[float] = None


class SwipeDecision(BaseModel):
    """
    Swipe ledger entry
    Collection name: "swipes", keyed "{actor_id}_{target_id}"
    """
    actor_id: str = Field(..., description="User who swiped")
    target_id: str = Field(..., description="User who was swiped on")
    direction: Direction = Field(..., description="Swipe direction")
    decided_at: datetime


class Match(BaseModel):
    """
    Confirmed mutual right-swipe
    Collection name: "matches", keyed "{mentor_id}_{mentee_id}"
    """
    mentor_id: str
    mentee_id: str
    created_at: datetime
    status: Literal["active"] = "active"

    @property
    def key(self) -> str:
        return f"{self.mentor_id}_{self.mentee_id}"


class Conversation(BaseModel):
    """
    Two-person message thread
    Collection name: "conversations", keyed by the sorted participant ids
    """
    id: str
    participants: List[str] = Field(..., min_length=2, max_length=2)
    participant_display_names: Dict[str, str] = Field(default_factory=dict)
    participant_avatars: Dict[str, str] = Field(default_factory=dict)
    last_message: str = ""
    last_message_at: datetime
    last_message_sender: str = ""
    created_at: datetime


class Message(BaseModel):
    """
    Chat message
    Collection name: "messages", auto id, grouped by conversation_id
    """
    id: str
    conversation_id: str
    sender_id: str
    sender_display_name: str = ""
    sender_avatar_url: str = ""
    text: str = Field(..., min_length=1, max_length=MAX_MESSAGE_LENGTH)
    sent_at: datetime
    read: bool = False
