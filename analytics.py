"""
Event tracking and the admin dashboard summary.
"""
import logging
from typing import Any, Dict, Optional

from pymongo.errors import PyMongoError

from database import collection, create_document
from schemas import AnalyticsEvent

logger = logging.getLogger(__name__)

ANALYTICS = "analytics"

GUESTBOOK_EMPTY = {
    "total": 0, "approved": 0, "pending": 0, "flagged": 0,
    "spam": 0, "likes": 0, "replies": 0, "average_spam_score": 0.0,
}
PORTFOLIO_EMPTY = {"items": 0, "views": 0, "likes": 0}


def track_event(
    event_type: str,
    event_name: str,
    user_id: Optional[str] = None,
    ip_address: Optional[str] = None,
    path: Optional[str] = None,
    event_data: Optional[Dict[str, Any]] = None,
) -> Optional[str]:
    """Store an event. Tracking never fails the request that triggered it."""
    event = AnalyticsEvent(
        event_type=event_type,
        event_name=event_name,
        user_id=user_id,
        ip_address=ip_address,
        path=path,
        event_data=event_data or {},
    )
    try:
        return create_document(ANALYTICS, event)
    except (PyMongoError, RuntimeError) as exc:
        logger.warning("Analytics tracking failed for %s: %s", event_type, exc)
        return None


def _single_group(coll_name: str, pipeline: list, empty: dict) -> dict:
    rows = list(collection(coll_name).aggregate(pipeline))
    if not rows:
        return dict(empty)
    row = rows[0]
    row.pop("_id", None)
    return row


def summary() -> dict:
    events = {
        row["_id"]: row["count"]
        for row in collection(ANALYTICS).aggregate([{"$group": {"_id": "$event_type", "count": {"$sum": 1}}}])
    }

    guestbook = _single_group("guestbook", [
        {"$project": {
            "status": 1,
            "likes": {"$ifNull": ["$likes", 0]},
            "spam_score": {"$ifNull": ["$spam_score", 0]},
            "spam": {"$cond": [{"$eq": ["$is_spam", True]}, 1, 0]},
            "replies": {"$size": {"$ifNull": ["$replies", []]}},
        }},
        {"$group": {
            "_id": None,
            "total": {"$sum": 1},
            "approved": {"$sum": {"$cond": [{"$eq": ["$status", "approved"]}, 1, 0]}},
            "pending": {"$sum": {"$cond": [{"$eq": ["$status", "pending"]}, 1, 0]}},
            "flagged": {"$sum": {"$cond": [{"$eq": ["$status", "flagged"]}, 1, 0]}},
            "spam": {"$sum": "$spam"},
            "likes": {"$sum": "$likes"},
            "replies": {"$sum": "$replies"},
            "average_spam_score": {"$avg": "$spam_score"},
        }},
    ], GUESTBOOK_EMPTY)
    guestbook["average_spam_score"] = round(guestbook["average_spam_score"] or 0, 2)

    portfolio = _single_group("portfolio", [
        {"$group": {
            "_id": None,
            "items": {"$sum": 1},
            "views": {"$sum": "$metrics.views"},
            "likes": {"$sum": "$metrics.likes"},
        }},
    ], PORTFOLIO_EMPTY)

    return {"events": events, "guestbook": guestbook, "portfolio": portfolio}
