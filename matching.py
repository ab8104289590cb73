"""
Swipe -> match -> conversation pipeline.

Swipes are stored one per (actor, target) pair and overwritten on re-swipe.
A match is created when the reverse swipe is also a right swipe; it is
keyed by "{mentor_id}_{mentee_id}" and written create-if-absent, so both
sides detecting the match at the same time still produce a single record.
"""

from typing import Iterable, List, Optional, Set, Tuple

from pymongo.errors import PyMongoError

from chat import Participant, bootstrap_match_conversation
from database import create_if_absent, get_document, get_documents, is_permission_denied, now, put_document
from errors import ConversationBootstrapFailed, DirectoryUnavailable, MatchPersistenceFailed, SwipeRecordingFailed
from logger import logger
from profiles import get_user_profile, list_profiles_by_role
from schemas import DIRECTIONS, KEY_SEPARATOR, Match, Profile, SwipeDecision, check_user_id, opposite_role
from settings import get_settings


def swipe_key(actor_id: str, target_id: str) -> str:
    return f"{actor_id}{KEY_SEPARATOR}{target_id}"


# Match store

def get_user_matches(user_id: str) -> List[Match]:
    docs = get_documents(
        "matches",
        {"$or": [{"mentor_id": user_id}, {"mentee_id": user_id}]},
        sort=[("created_at", -1)],
    )
    return [Match(**d) for d in docs]


def _matched_user_ids(user_id: str) -> Set[str]:
    matched = set()
    for match in get_user_matches(user_id):
        matched.add(match.mentor_id)
        matched.add(match.mentee_id)
    matched.discard(user_id)
    return matched


def filter_out_matched(profiles: Iterable[Profile], user_id: str) -> List[Profile]:
    matched = _matched_user_ids(user_id)
    return [p for p in profiles if p.id not in matched]


# Discovery

def _left_swiped_ids(actor_id: str) -> Set[str]:
    docs = get_documents("swipes", {"actor_id": actor_id, "direction": "left"})
    return {d["target_id"] for d in docs}


def get_candidates(actor_id: str, actor_role: str, exclude_left_swiped: Optional[bool] = None) -> List[Profile]:
    """
    Opposite-role profiles the actor can still swipe on.

    Excludes the actor and everyone already matched with them. Left-swiped
    profiles are only excluded when `exclude_left_swiped` (or the
    EXCLUDE_LEFT_SWIPED setting) is on. Order is not meaningful.
    """
    target_role = opposite_role(actor_role)
    if exclude_left_swiped is None:
        exclude_left_swiped = get_settings().exclude_left_swiped

    profiles = list_profiles_by_role(target_role)
    try:
        excluded = _matched_user_ids(actor_id)
        if exclude_left_swiped:
            excluded |= _left_swiped_ids(actor_id)
    except PyMongoError as exc:
        logger.error(f"Error loading exclusions for {actor_id}: {exc}")
        raise DirectoryUnavailable("Could not load matches for discovery") from exc

    candidates = [p for p in profiles if p.id != actor_id and p.id not in excluded]
    logger.debug(f"{len(candidates)} candidates for {actor_role} {actor_id}")
    return candidates


# Swipes

def record_swipe(actor_id: str, target_id: str, direction: str) -> Optional[Match]:
    """
    Store the actor's decision about the target, replacing any earlier one.

    A right swipe runs the match check before returning; the resulting
    Match (or None) is returned.
    """
    check_user_id(actor_id)
    check_user_id(target_id)
    if actor_id == target_id:
        raise ValueError("Users cannot swipe on themselves")
    if direction not in DIRECTIONS:
        raise ValueError(f"Invalid direction: {direction!r}")

    decision = SwipeDecision(actor_id=actor_id, target_id=target_id, direction=direction, decided_at=now())
    try:
        put_document("swipes", swipe_key(actor_id, target_id), decision)
    except PyMongoError as exc:
        logger.error(f"Error recording swipe {actor_id} -> {target_id}: {exc}")
        raise SwipeRecordingFailed(f"Could not record swipe on {target_id}") from exc
    logger.info(f"Recorded swipe {actor_id} -> {target_id} ({direction})")

    if direction == "right":
        return check_and_create_match(actor_id, target_id)
    return None


def _reverse_swipe(actor_id: str, target_id: str) -> Optional[dict]:
    try:
        doc = get_document("swipes", swipe_key(target_id, actor_id))
    except PyMongoError as exc:
        if is_permission_denied(exc):
            # reverse swipe not readable yet: same as not there
            logger.debug(f"Reverse swipe {target_id} -> {actor_id} not readable, treating as absent")
            return None
        raise
    if doc and (doc.get("actor_id"), doc.get("target_id")) != (target_id, actor_id):
        logger.warning(
            f"Swipe {doc['_id']} belongs to {doc.get('actor_id')} -> {doc.get('target_id')}, "
            f"not {target_id} -> {actor_id}; ignoring it"
        )
        return None
    return doc


def _participant(user_id: str, user: dict) -> Participant:
    settings = get_settings()
    return Participant(
        id=user_id,
        display_name=user.get("display_name") or settings.default_display_name,
        avatar_url=user.get("avatar_url") or "",
    )


def _assign_roles(actor_id: str, target_id: str) -> Tuple[Participant, Participant]:
    """Return (mentor, mentee) for the pair."""
    try:
        actor = get_user_profile(actor_id)
        target = get_user_profile(target_id)
    except PyMongoError as exc:
        raise MatchPersistenceFailed(f"Could not load profiles for {actor_id} and {target_id}") from exc
    if not actor or not target:
        missing = actor_id if not actor else target_id
        logger.error(f"Mutual match between {actor_id} and {target_id} but profile {missing} is missing")
        raise MatchPersistenceFailed(f"Profile {missing} not found")

    users = {actor_id: actor, target_id: target}
    if actor.get("role") == "mentor" and target.get("role") == "mentee":
        mentor_id, mentee_id = actor_id, target_id
    elif actor.get("role") == "mentee" and target.get("role") == "mentor":
        mentor_id, mentee_id = target_id, actor_id
    else:
        mentor_id, mentee_id = sorted([actor_id, target_id])
        logger.warning(
            f"Role collision in match {actor_id}/{target_id} "
            f"(roles {actor.get('role')!r}/{target.get('role')!r}); using {mentor_id} as mentor"
        )
    return _participant(mentor_id, users[mentor_id]), _participant(mentee_id, users[mentee_id])


def check_and_create_match(actor_id: str, target_id: str) -> Optional[Match]:
    """
    Create the match if the target has already swiped right on the actor.

    Safe to call any number of times, from either side: the match and its
    conversation are each written at most once. Returns None when there is
    no mutual right swipe.
    """
    check_user_id(actor_id)
    check_user_id(target_id)
    try:
        reverse = _reverse_swipe(actor_id, target_id)
    except PyMongoError as exc:
        logger.error(f"Error checking reverse swipe {target_id} -> {actor_id}: {exc}")
        raise MatchPersistenceFailed(f"Could not check for a match with {target_id}") from exc

    if not reverse or reverse.get("direction") != "right":
        logger.debug(f"No mutual match yet between {actor_id} and {target_id}")
        return None

    mentor, mentee = _assign_roles(actor_id, target_id)
    match = Match(mentor_id=mentor.id, mentee_id=mentee.id, created_at=now())
    try:
        created = create_if_absent("matches", match.key, match)
        if not created:
            match = Match(**get_document("matches", match.key))
    except PyMongoError as exc:
        logger.exception(f"Mutual match {match.key} detected but could not be stored")
        raise MatchPersistenceFailed(f"Could not store match {match.key}") from exc

    if created:
        logger.info(f"Match created: mentor {mentor.id}, mentee {mentee.id}")
    else:
        logger.info(f"Match {match.key} already exists")

    try:
        bootstrap_match_conversation(mentor, mentee)
    except (ConversationBootstrapFailed, PyMongoError) as exc:
        logger.opt(exception=exc).error(f"Match {match.key} stands without its conversation")

    return match
