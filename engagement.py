"""
Likes, replies, flags, comments and view counts.

Every operation is a single atomic update on one document. Updates carry a
guard in their filter (identity present / absent, reporter not yet flagged) so
two concurrent requests on the same document can never double count, and the
like counter always equals the length of the liked-by array.
"""
import logging
from dataclasses import dataclass
from typing import Optional, get_args

from bson.objectid import ObjectId
from pymongo import ReturnDocument

from database import object_id, utcnow
from errors import NotFoundError, ValidationError
from schemas import FlagReason

logger = logging.getLogger(__name__)

REPLY_MAX_LENGTH = 500
COMMENT_MAX_LENGTH = 500
FLAG_DESCRIPTION_MAX_LENGTH = 200
FLAGS_BEFORE_REVIEW = 3
FLAG_REASONS = get_args(FlagReason)
TOGGLE_ATTEMPTS = 5


@dataclass(frozen=True)
class LikeTarget:
    """Where a document keeps its likes.

    `counter` is the (possibly dotted) counter path, `members` the array of
    likers. With `key` set, members are `{key: identity, "liked_at": ...}`
    records; otherwise they are bare identities.
    """

    resource: str
    counter: str
    members: str = "liked_by"
    key: Optional[str] = None

    def present(self, identity: str) -> dict:
        if self.key:
            return {f"{self.members}.{self.key}": identity}
        return {self.members: identity}

    def absent(self, identity: str) -> dict:
        if self.key:
            return {f"{self.members}.{self.key}": {"$ne": identity}}
        return {self.members: {"$ne": identity}}

    def member(self, identity: str):
        if self.key:
            return {self.key: identity, "liked_at": utcnow()}
        return identity

    def pull(self, identity: str):
        if self.key:
            return {self.key: identity}
        return identity

    def count(self, doc: dict) -> int:
        value = doc
        for part in self.counter.split("."):
            value = (value or {}).get(part, 0)
        return value or 0


GUESTBOOK_LIKES = LikeTarget("Guestbook entry", "likes")
PORTFOLIO_LIKES = LikeTarget("Portfolio item", "metrics.likes", key="user")
BLOG_LIKES = LikeTarget("Blog post", "likes", key="user")


@dataclass(frozen=True)
class LikeResult:
    liked: bool
    likes: int

    def as_dict(self) -> dict:
        return {"liked": self.liked, "likes": self.likes}


def _ensure_exists(coll, oid: ObjectId, resource: str, raw_id: str) -> None:
    if coll.count_documents({"_id": oid}, limit=1) == 0:
        raise NotFoundError(resource, raw_id)


def toggle_like(coll, doc_id: str, identity: str, target: LikeTarget = GUESTBOOK_LIKES) -> LikeResult:
    """Like the document for `identity`, or remove the like if it is already there."""
    oid = object_id(doc_id)
    now = utcnow()
    for _ in range(TOGGLE_ATTEMPTS):
        doc = coll.find_one_and_update(
            {"_id": oid, **target.present(identity)},
            {"$pull": {target.members: target.pull(identity)}, "$inc": {target.counter: -1}, "$set": {"updated_at": now}},
            return_document=ReturnDocument.AFTER,
        )
        if doc is not None:
            return LikeResult(liked=False, likes=target.count(doc))

        doc = coll.find_one_and_update(
            {"_id": oid, **target.absent(identity)},
            {"$push": {target.members: target.member(identity)}, "$inc": {target.counter: 1}, "$set": {"updated_at": now}},
            return_document=ReturnDocument.AFTER,
        )
        if doc is not None:
            return LikeResult(liked=True, likes=target.count(doc))

        # Neither guard matched: the document is gone, or another request
        # with the same identity flipped it between our two updates.
        _ensure_exists(coll, oid, target.resource, doc_id)

    raise RuntimeError(f"Like toggle on {doc_id} did not settle after {TOGGLE_ATTEMPTS} attempts")


def add_reply(
    coll,
    entry_id: str,
    name: str,
    message: str,
    user_id: Optional[str] = None,
    is_admin: bool = False,
) -> dict:
    name = (name or "").strip()
    message = (message or "").strip()
    if not name:
        raise ValidationError("name", "Name is required")
    if not message:
        raise ValidationError("message", "Message is required")
    if len(message) > REPLY_MAX_LENGTH:
        raise ValidationError("message", f"Reply must be {REPLY_MAX_LENGTH} characters or less")

    oid = object_id(entry_id)
    now = utcnow()
    reply = {
        "id": str(ObjectId()),
        "name": name,
        "message": message,
        "user_id": user_id,
        "is_admin": is_admin,
        "created_at": now,
    }
    doc = coll.find_one_and_update(
        {"_id": oid},
        {"$push": {"replies": reply}, "$set": {"updated_at": now}},
        projection={"_id": 1},
    )
    if doc is None:
        raise NotFoundError("Guestbook entry", entry_id)
    return reply


def flag_entry(coll, entry_id: str, reporter: str, reason: str, description: Optional[str] = None) -> bool:
    """Record a flag; False when `reporter` has already flagged this entry."""
    if reason not in FLAG_REASONS:
        raise ValidationError("reason", f"Reason must be one of: {', '.join(FLAG_REASONS)}")
    if description and len(description) > FLAG_DESCRIPTION_MAX_LENGTH:
        raise ValidationError("description", f"Flag description cannot exceed {FLAG_DESCRIPTION_MAX_LENGTH} characters")

    oid = object_id(entry_id)
    now = utcnow()
    flag = {"reporter": reporter, "reason": reason, "description": description, "flagged_at": now}
    doc = coll.find_one_and_update(
        {"_id": oid, "flags.reporter": {"$ne": reporter}},
        {"$push": {"flags": flag}, "$set": {"updated_at": now}},
        projection={"flags": 1, "status": 1},
        return_document=ReturnDocument.AFTER,
    )
    if doc is None:
        _ensure_exists(coll, oid, "Guestbook entry", entry_id)
        return False

    if len(doc.get("flags", [])) >= FLAGS_BEFORE_REVIEW and doc.get("status") != "flagged":
        coll.update_one({"_id": oid}, {"$set": {"status": "flagged", "updated_at": now}})
        logger.info("Guestbook entry %s flagged for review after %d reports", entry_id, len(doc["flags"]))
    return True


def add_comment(coll, doc_id: str, user: str, content: str, resource: str = "Portfolio item") -> dict:
    content = (content or "").strip()
    if not content:
        raise ValidationError("content", "Please provide a comment")
    if len(content) > COMMENT_MAX_LENGTH:
        raise ValidationError("content", f"Comment cannot exceed {COMMENT_MAX_LENGTH} characters")

    now = utcnow()
    comment = {"id": str(ObjectId()), "user": user, "content": content, "created_at": now}
    doc = coll.find_one_and_update(
        {"_id": object_id(doc_id)},
        {"$push": {"comments": comment}, "$set": {"updated_at": now}},
        projection={"_id": 1},
    )
    if doc is None:
        raise NotFoundError(resource, doc_id)
    return comment


def increment_views(coll, doc_id: str, field: str = "metrics.views") -> None:
    coll.update_one({"_id": object_id(doc_id)}, {"$inc": {field: 1}})
