"""
Portfolio listing and item lifecycle.

Listing filters are built from the clause objects in filters.py, so creator
scoping, visibility, category, status and the search OR-group combine without
one overwriting another.
"""
import logging
import math
import re
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Dict, List, Mapping, Optional, Tuple

from pymongo import ASCENDING, DESCENDING

from database import collection, create_document, object_id, to_public, utcnow
from engagement import PORTFOLIO_LIKES, add_comment, increment_views, toggle_like
from errors import ForbiddenError, NotFoundError, ValidationError
from filters import AnyOf, Equals, Missing, collapse, search_any
from schemas import Metrics, validate_portfolio_item

logger = logging.getLogger(__name__)

PORTFOLIO = "portfolio"
GUESTBOOK = "guestbook"

DEFAULT_LIMIT = 12
MAX_LIMIT = 100
SEARCH_FIELDS = ("title", "description", "short_description", "tags", "keywords")
IMMUTABLE_FIELDS = {"creator", "item_type", "metrics", "liked_by", "comments", "slug", "_id", "id", "created_at", "updated_at"}

SORT_MAP: Dict[str, Tuple[str, int]] = {
    "newest": ("created_at", DESCENDING),
    "oldest": ("created_at", ASCENDING),
    "az": ("title", ASCENDING),
    "za": ("title", DESCENDING),
    "views": ("metrics.views", DESCENDING),
    "likes": ("metrics.likes", DESCENDING),
    "trending": ("metrics.views", DESCENDING),
}
DEFAULT_SORT = SORT_MAP["newest"]


@dataclass
class PortfolioQuery:
    predicate: dict
    sort: List[Tuple[str, int]]
    page: int = 1
    limit: int = DEFAULT_LIMIT

    @property
    def skip(self) -> int:
        return (self.page - 1) * self.limit


def _positive_int(params: Mapping[str, Any], name: str, default: int) -> int:
    raw = params.get(name)
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except (TypeError, ValueError):
        raise ValidationError(name, f"{name} must be a positive integer")
    if value < 1:
        raise ValidationError(name, f"{name} must be a positive integer")
    return value


def sort_for(sort_param: Optional[str]) -> List[Tuple[str, int]]:
    return [SORT_MAP.get(sort_param or "", DEFAULT_SORT)]


def public_visibility() -> AnyOf:
    # documents written before visibility existed count as public
    return AnyOf((Equals("visibility", "public"), Missing("visibility")))


def compose_filter(params: Mapping[str, Any], current_identity: Optional[str] = None) -> PortfolioQuery:
    """Translate listing query parameters into a predicate, sort and page window."""
    page = _positive_int(params, "page", 1)
    limit = min(_positive_int(params, "limit", DEFAULT_LIMIT), MAX_LIMIT)

    clauses: List[Any] = []
    if params.get("my_items") == "true" and current_identity:
        clauses.append(Equals("creator", current_identity))
    else:
        clauses.append(public_visibility())

    category = params.get("category")
    if category:
        clauses.append(Equals("category", category))

    if params.get("featured") == "true":
        clauses.append(Equals("featured", True))

    status = params.get("status")
    if status and status != "all":
        clauses.append(Equals("status", status))

    search = (params.get("search") or "").strip()
    if search:
        clauses.append(search_any(SEARCH_FIELDS, search))

    return PortfolioQuery(
        predicate=collapse(clauses),
        sort=sort_for(params.get("sort_param") or params.get("sort")),
        page=page,
        limit=limit,
    )


def _public_item(doc: dict, identity: Optional[str] = None) -> dict:
    item = to_public(doc)
    if identity:
        item["is_liked_by_user"] = any(like.get("user") == identity for like in doc.get("liked_by", []))
    return item


def list_portfolio(params: Mapping[str, Any], current_identity: Optional[str] = None) -> dict:
    query = compose_filter(params, current_identity)
    coll = collection(PORTFOLIO)
    logger.debug("Portfolio listing filter=%s sort=%s", query.predicate, query.sort)

    total = coll.count_documents(query.predicate)
    docs = coll.find(query.predicate).sort(query.sort).skip(query.skip).limit(query.limit)
    return {
        "items": [_public_item(doc, current_identity) for doc in docs],
        "total_count": total,
        "page": query.page,
        "limit": query.limit,
        "total_pages": math.ceil(total / query.limit) if total else 0,
    }


def slugify(title: str) -> str:
    slug = re.sub(r"[^a-z0-9\s-]", "", title.lower())
    slug = re.sub(r"[\s-]+", "-", slug).strip("-")
    return slug or "item"


def unique_slug(coll, title: str, exclude=None) -> str:
    base = slugify(title)
    slug, n = base, 1
    while True:
        query = {"slug": slug}
        if exclude is not None:
            query["_id"] = {"$ne": exclude}
        if not coll.count_documents(query, limit=1):
            return slug
        n += 1
        slug = f"{base}-{n}"


def _load(coll, item_id: str) -> dict:
    doc = coll.find_one({"_id": object_id(item_id)})
    if not doc:
        raise NotFoundError("Portfolio item", item_id)
    return doc


def _check_owner(doc: dict, identity: str, role: Optional[str]) -> None:
    if doc.get("creator") != identity and role != "admin":
        raise ForbiddenError("Only the creator can change this item")


def _check_visible(doc: dict, identity: Optional[str], role: Optional[str]) -> None:
    if doc.get("visibility") == "private" and doc.get("creator") != identity and role != "admin":
        raise ForbiddenError("This item is private")


def create_item(payload: dict, creator: str) -> dict:
    item = validate_portfolio_item(payload)
    coll = collection(PORTFOLIO)
    document = {
        **item.model_dump(),
        "creator": creator,
        "slug": unique_slug(coll, item.title),
        "metrics": Metrics().model_dump(),
        "liked_by": [],
        "comments": [],
    }
    item_id = create_document(PORTFOLIO, document)
    logger.info("Portfolio %s %s created by %s", item.item_type, item_id, creator)
    return to_public(coll.find_one({"_id": object_id(item_id)}))


def get_item(item_id: str, identity: Optional[str] = None, role: Optional[str] = None) -> dict:
    coll = collection(PORTFOLIO)
    doc = _load(coll, item_id)
    _check_visible(doc, identity, role)

    increment_views(coll, item_id)
    doc.setdefault("metrics", {})
    doc["metrics"]["views"] = doc["metrics"].get("views", 0) + 1
    return _public_item(doc, identity)


def update_item(item_id: str, changes: dict, identity: str, role: Optional[str] = None) -> dict:
    coll = collection(PORTFOLIO)
    doc = _load(coll, item_id)
    _check_owner(doc, identity, role)

    changes = {key: value for key, value in changes.items() if key not in IMMUTABLE_FIELDS}
    merged = {key: value for key, value in doc.items() if key not in IMMUTABLE_FIELDS}
    merged.update(changes)
    merged["item_type"] = doc.get("item_type", "project")
    item = validate_portfolio_item(merged)

    update = {**item.model_dump(), "updated_at": utcnow()}
    if item.title != doc.get("title"):
        update["slug"] = unique_slug(coll, item.title, exclude=doc["_id"])
    coll.update_one({"_id": doc["_id"]}, {"$set": update})
    return _public_item(coll.find_one({"_id": doc["_id"]}), identity)


def delete_item(item_id: str, identity: str, role: Optional[str] = None) -> dict:
    coll = collection(PORTFOLIO)
    doc = _load(coll, item_id)
    _check_owner(doc, identity, role)

    coll.delete_one({"_id": doc["_id"]})
    # guestbook entries keep their text and project_title but lose the link
    detached = collection(GUESTBOOK).update_many(
        {"project_id": item_id},
        {"$set": {"project_id": None, "updated_at": utcnow()}},
    ).modified_count
    logger.info("Portfolio item %s deleted by %s, %d guestbook entries detached", item_id, identity, detached)
    return {"deleted_id": item_id, "detached_entries": detached}


def like_item(item_id: str, identity: str) -> dict:
    return toggle_like(collection(PORTFOLIO), item_id, identity, PORTFOLIO_LIKES).as_dict()


def comment_on_item(item_id: str, identity: str, content: str) -> dict:
    return add_comment(collection(PORTFOLIO), item_id, identity, content)


COMMENTS_DEFAULT_LIMIT = 50


def list_comments(
    item_id: str,
    page: int = 1,
    limit: int = COMMENTS_DEFAULT_LIMIT,
    sort: str = "newest",
    identity: Optional[str] = None,
    role: Optional[str] = None,
) -> dict:
    """Page through an item's comments, newest first unless `sort` is "oldest"."""
    if page < 1 or limit < 1:
        raise ValidationError("page" if page < 1 else "limit", "Pagination values must be positive")
    limit = min(limit, MAX_LIMIT)

    doc = collection(PORTFOLIO).find_one({"_id": object_id(item_id)}, {"comments": 1, "visibility": 1, "creator": 1})
    if not doc:
        raise NotFoundError("Portfolio item", item_id)
    _check_visible(doc, identity, role)

    # stored oldest first
    comments = doc.get("comments", [])
    if sort != "oldest":
        comments = comments[::-1]
    total = len(comments)
    total_pages = math.ceil(total / limit) if total else 0
    start = (page - 1) * limit
    return {
        "comments": comments[start:start + limit],
        "pagination": {
            "current_page": page,
            "total_pages": total_pages,
            "total_comments": total,
            "has_next": page < total_pages,
            "has_prev": page > 1,
        },
    }


def featured_items(limit: int = 6) -> List[dict]:
    predicate = collapse([public_visibility(), Equals("featured", True)])
    docs = collection(PORTFOLIO).find(predicate).sort([("priority", DESCENDING), ("created_at", DESCENDING)]).limit(limit)
    return [to_public(doc) for doc in docs]


def trending_items(days: int = 7, limit: int = 10) -> List[dict]:
    since = utcnow() - timedelta(days=days)
    predicate = {"$and": [public_visibility().to_query(), {"created_at": {"$gte": since}}]}
    docs = (
        collection(PORTFOLIO)
        .find(predicate)
        .sort([("metrics.views", DESCENDING), ("metrics.likes", DESCENDING)])
        .limit(limit)
    )
    return [to_public(doc) for doc in docs]


def category_counts() -> List[dict]:
    pipeline = [
        {"$match": public_visibility().to_query()},
        {"$group": {"_id": {"$ifNull": ["$category", "other"]}, "count": {"$sum": 1}}},
        {"$sort": {"count": -1, "_id": 1}},
    ]
    return [{"category": row["_id"], "count": row["count"]} for row in collection(PORTFOLIO).aggregate(pipeline)]
