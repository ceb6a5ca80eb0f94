"""
Guestbook submission, listing and moderation.

Likes, replies and flags live in engagement.py; this module owns the entry
lifecycle: spam scoring on submission and on every name/message edit, the
public listing, the moderation queue and moderator actions.
"""
import logging
import math
from datetime import timedelta
from typing import Optional

from pymongo import ASCENDING, DESCENDING, ReturnDocument

from database import collection, create_document, object_id, to_public, utcnow
from engagement import GUESTBOOK_LIKES, add_reply, flag_entry, toggle_like
from errors import NotFoundError, ValidationError
from ratelimit import SubmissionLimiter
from schemas import GuestbookEntry, validate_document
from spam import REJECT_REASON, score_message

logger = logging.getLogger(__name__)

GUESTBOOK = "guestbook"
SUBMISSION_MAX_LENGTH = 240
MODERATION_SPAM_SCORE = 30
LISTING_MAX_LIMIT = 100
APPROVED = {"status": "approved", "is_spam": False}

LISTING_SORTS = {
    "newest": [("featured", DESCENDING), ("created_at", DESCENDING)],
    "oldest": [("created_at", ASCENDING)],
    "most-liked": [("likes", DESCENDING), ("created_at", DESCENDING)],
}


def _public_entry(doc: dict) -> dict:
    entry = to_public(doc)
    # likers are IP addresses; only their count is public
    entry.pop("liked_by", None)
    entry.pop("ip_address", None)
    entry["flags"] = len(doc.get("flags", []))
    return entry


def _moderation_fields(name: str, message: str) -> dict:
    verdict = score_message(name, message)
    fields = {"spam_score": verdict.score, "is_spam": verdict.is_spam}
    if verdict.auto_status:
        fields["status"] = verdict.auto_status
        fields["moderation_reason"] = verdict.moderation_reason
    return fields


def submit_entry(
    data: dict,
    ip_address: str,
    limiter: SubmissionLimiter,
    user_agent: str = "",
    user_id: Optional[str] = None,
) -> dict:
    """Create an entry, scored for spam. At most `limiter.limit` per IP per window."""
    name = (data.get("name") or "").strip()
    message = (data.get("message") or "").strip()
    if not name or not message:
        raise ValidationError("name" if not name else "message", "Name and message are required!")
    if len(message) > SUBMISSION_MAX_LENGTH:
        raise ValidationError("message", f"Message must be {SUBMISSION_MAX_LENGTH} characters or less!")

    entry = validate_document(GuestbookEntry, {
        **data,
        "name": name,
        "message": message,
        "email": (data.get("email") or "").strip().lower() or None,
        "ip_address": ip_address,
        "user_agent": user_agent or "",
        "user_id": user_id,
    })
    limiter.check(ip_address)

    document = {**entry.model_dump(), **_moderation_fields(name, message)}
    entry_id = create_document(GUESTBOOK, document)
    if document.get("status") == "rejected":
        logger.warning("Guestbook entry %s from %s auto-rejected (spam score %d)", entry_id, ip_address, document["spam_score"])
    return _public_entry(collection(GUESTBOOK).find_one({"_id": object_id(entry_id)}))


def list_entries(
    filter_name: str = "all",
    sort: str = "newest",
    page: int = 1,
    limit: int = 10,
    project_id: Optional[str] = None,
) -> dict:
    if page < 1 or limit < 1:
        raise ValidationError("page" if page < 1 else "limit", "Pagination values must be positive")
    limit = min(limit, LISTING_MAX_LIMIT)

    query = dict(APPROVED)
    if project_id:
        query["project_id"] = project_id
    elif filter_name == "project-comments":
        query["project_id"] = {"$ne": None}
    elif filter_name == "general":
        query["project_id"] = None

    coll = collection(GUESTBOOK)
    total = coll.count_documents(query)
    docs = coll.find(query).sort(LISTING_SORTS.get(sort, LISTING_SORTS["newest"])).skip((page - 1) * limit).limit(limit)
    total_pages = math.ceil(total / limit) if total else 0
    return {
        "entries": [_public_entry(doc) for doc in docs],
        "pagination": {
            "current_page": page,
            "total_pages": total_pages,
            "total_entries": total,
            "has_next": page < total_pages,
            "has_prev": page > 1,
        },
    }


def top_poster() -> dict:
    """Most prolific approved poster, with the avatar from their latest entry."""
    top = list(collection(GUESTBOOK).aggregate([
        {"$match": APPROVED},
        {"$sort": {"created_at": -1}},
        {"$group": {"_id": "$name", "count": {"$sum": 1}, "avatar": {"$first": "$avatar"}}},
        {"$sort": {"count": -1, "_id": 1}},
        {"$limit": 1},
    ]))
    if not top:
        return {"name": "No entries yet", "count": 0, "avatar": None}
    return {"name": top[0]["_id"], "count": top[0]["count"], "avatar": top[0].get("avatar")}


def entry_stats() -> dict:
    coll = collection(GUESTBOOK)
    week_ago = utcnow() - timedelta(days=7)
    return {
        "total": coll.count_documents(APPROVED),
        "last_week": coll.count_documents({**APPROVED, "created_at": {"$gte": week_ago}}),
        "top_user": top_poster(),
    }


def moderation_queue() -> list:
    query = {"$or": [
        {"status": "pending"},
        {"status": "flagged"},
        {"spam_score": {"$gte": MODERATION_SPAM_SCORE}},
    ]}
    docs = collection(GUESTBOOK).find(query).sort("created_at", DESCENDING)
    return [{**_public_entry(doc), "flags": doc.get("flags", [])} for doc in docs]


def _update(entry_id: str, update: dict) -> dict:
    doc = collection(GUESTBOOK).find_one_and_update(
        {"_id": object_id(entry_id)},
        update,
        return_document=ReturnDocument.AFTER,
    )
    if doc is None:
        raise NotFoundError("Guestbook entry", entry_id)
    return doc


def set_status(entry_id: str, status: str, moderator: str, reason: Optional[str] = None) -> dict:
    doc = _update(entry_id, {"$set": {
        "status": status,
        "moderation_reason": reason,
        "moderated_by": moderator,
        "moderated_at": utcnow(),
        "updated_at": utcnow(),
    }})
    logger.info("Guestbook entry %s set to %s by %s", entry_id, status, moderator)
    return _public_entry(doc)


def update_text(entry_id: str, name: Optional[str] = None, message: Optional[str] = None) -> dict:
    """Edit an entry's name and/or message and score it again."""
    coll = collection(GUESTBOOK)
    current = coll.find_one({"_id": object_id(entry_id)})
    if current is None:
        raise NotFoundError("Guestbook entry", entry_id)

    name = name.strip() if name is not None else current["name"]
    message = message.strip() if message is not None else current["message"]
    validate_document(GuestbookEntry, {**current, "name": name, "message": message})

    fields = {"name": name, "message": message, "updated_at": utcnow(), **_moderation_fields(name, message)}
    # an automatic rejection is lifted once the edited text scores clean;
    # statuses a moderator set by hand are left alone
    auto_rejected = current.get("status") == "rejected" and current.get("moderation_reason") == REJECT_REASON
    if auto_rejected and "status" not in fields:
        fields.update(status="approved", moderation_reason=None)
    return _public_entry(_update(entry_id, {"$set": fields}))


def toggle_pin(entry_id: str) -> dict:
    coll = collection(GUESTBOOK)
    doc = coll.find_one({"_id": object_id(entry_id)}, {"featured": 1})
    if doc is None:
        raise NotFoundError("Guestbook entry", entry_id)
    pinned = not doc.get("featured", False)
    coll.update_one({"_id": doc["_id"]}, {"$set": {"featured": pinned, "updated_at": utcnow()}})
    return {"pinned": pinned}


def delete_entry(entry_id: str) -> dict:
    result = collection(GUESTBOOK).delete_one({"_id": object_id(entry_id)})
    if result.deleted_count == 0:
        raise NotFoundError("Guestbook entry", entry_id)
    logger.info("Guestbook entry %s deleted", entry_id)
    return {"deleted_id": entry_id}


def like_entry(entry_id: str, identity: str) -> dict:
    return toggle_like(collection(GUESTBOOK), entry_id, identity, GUESTBOOK_LIKES).as_dict()


def reply_to_entry(entry_id: str, name: str, message: str, user_id: Optional[str] = None, is_admin: bool = False) -> dict:
    return add_reply(collection(GUESTBOOK), entry_id, name, message, user_id=user_id, is_admin=is_admin)


def flag(entry_id: str, reporter: str, reason: str, description: Optional[str] = None) -> dict:
    return {"flagged": flag_entry(collection(GUESTBOOK), entry_id, reporter, reason, description)}
