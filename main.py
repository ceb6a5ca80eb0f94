import logging
import math
import os
from typing import Any, Dict, Optional

from bson.errors import InvalidId
from bson.objectid import ObjectId
from fastapi import Body, Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo import DESCENDING

import analytics
import auth
import database
import guestbook
import portfolio
from auth import Identity, get_current_identity, require_role, require_user
from database import collection, create_document, object_id, to_public, utcnow
from engagement import BLOG_LIKES, add_comment, increment_views, toggle_like
from errors import CosmicError, ForbiddenError, NotFoundError, RateLimitError
from filters import Equals, collapse, search_any
from ratelimit import InMemoryCounterStore, MongoCounterStore, SubmissionLimiter
from schemas import (
    Blog as BlogSchema,
    BlogCreate,
    BlogUpdate,
    CommentRequest,
    EntryTextUpdate,
    FlagRequest,
    GuestbookSubmission,
    LoginRequest,
    ProfileUpdate,
    RegisterRequest,
    ReplyRequest,
    ScoreRequest,
    StatusUpdate,
    TrackRequest,
    validate_document,
)
from spam import score_message

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO"),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Cosmic DevSpace API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def build_limiter() -> SubmissionLimiter:
    if os.getenv("GUESTBOOK_LIMIT_STORE", "memory") == "mongo" and database.db is not None:
        store = MongoCounterStore(collection("rate_limits"))
    else:
        store = InMemoryCounterStore()
    limit = int(os.getenv("GUESTBOOK_HOURLY_LIMIT", "5"))
    logger.info("Guestbook submissions limited to %d per hour (%s)", limit, type(store).__name__)
    return SubmissionLimiter(store, limit=limit, window_seconds=3600)


submission_limiter = build_limiter()


@app.exception_handler(CosmicError)
async def handle_cosmic_error(request: Request, exc: CosmicError):
    headers = {"Retry-After": str(exc.retry_after)} if isinstance(exc, RateLimitError) else None
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


# Helpers

def client_ip(request: Request) -> str:
    return request.client.host if request.client else "unknown"


def actor(request: Request, identity: Optional[Identity]) -> str:
    """Who is liking or flagging: the user when signed in, otherwise the client IP."""
    return identity.user_id if identity else client_ip(request)


# Health
@app.get("/")
def read_root():
    return {"message": "Cosmic DevSpace API running"}


@app.get("/test")
def test_database():
    status = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "❌ Not Set" if not os.getenv("DATABASE_URL") else "✅ Set",
        "database_name": "❌ Not Set" if not os.getenv("DATABASE_NAME") else "✅ Set",
        "collections": [],
    }
    if database.db is None:
        return status
    try:
        status["collections"] = database.db.list_collection_names()
        status["database"] = "✅ Connected"
    except Exception as e:
        status["database"] = f"❌ Error: {str(e)[:80]}"
    return status


# Auth
@app.post("/auth/register", status_code=201)
def register(payload: RegisterRequest):
    return auth.register_user(payload.username, payload.email, payload.password, payload.display_name)


@app.post("/auth/login")
def login(payload: LoginRequest):
    return auth.login(payload.username, payload.password)


@app.get("/auth/me")
def me(identity: Identity = Depends(require_user)):
    user = auth.get_user(identity.user_id)
    if not user:
        raise NotFoundError("User", identity.user_id)
    return user


@app.get("/auth/profile")
def read_profile(identity: Identity = Depends(require_user)):
    return me(identity)


@app.put("/auth/profile")
def update_profile(payload: ProfileUpdate, identity: Identity = Depends(require_user)):
    return auth.update_profile(identity.user_id, payload.model_dump())


# Guestbook
@app.get("/guestbook")
def list_guestbook(
    filter: str = "all",
    sort: str = "newest",
    page: int = 1,
    limit: int = 10,
    project_id: Optional[str] = None,
):
    return guestbook.list_entries(filter, sort, page, limit, project_id)


@app.get("/guestbook/stats")
def guestbook_stats():
    return guestbook.entry_stats()


@app.get("/guestbook/moderation")
def guestbook_moderation(identity: Identity = Depends(require_role("moderator"))):
    return {"entries": guestbook.moderation_queue()}


@app.post("/guestbook/score")
def score_guestbook_message(payload: ScoreRequest):
    return score_message(payload.name, payload.message).as_dict()


@app.post("/guestbook", status_code=201)
def create_guestbook_entry(
    payload: GuestbookSubmission,
    request: Request,
    identity: Optional[Identity] = Depends(get_current_identity),
):
    ip = client_ip(request)
    entry = guestbook.submit_entry(
        payload.model_dump(),
        ip,
        submission_limiter,
        user_agent=request.headers.get("user-agent", ""),
        user_id=identity.user_id if identity else None,
    )
    analytics.track_event(
        "guestbook_entry",
        "Guestbook Entry Created",
        user_id=identity.user_id if identity else None,
        ip_address=ip,
        path="/guestbook",
        event_data={"has_project": bool(payload.project_id), "message_length": len(payload.message)},
    )
    return entry


@app.post("/guestbook/{entry_id}/like")
def like_guestbook_entry(entry_id: str, request: Request, identity: Optional[Identity] = Depends(get_current_identity)):
    return guestbook.like_entry(entry_id, actor(request, identity))


@app.post("/guestbook/{entry_id}/reply", status_code=201)
def reply_guestbook_entry(entry_id: str, payload: ReplyRequest, identity: Optional[Identity] = Depends(get_current_identity)):
    return guestbook.reply_to_entry(
        entry_id,
        payload.name,
        payload.message,
        user_id=identity.user_id if identity else None,
        is_admin=bool(identity and identity.is_staff),
    )


@app.post("/guestbook/{entry_id}/flag")
def flag_guestbook_entry(
    entry_id: str,
    payload: FlagRequest,
    request: Request,
    identity: Optional[Identity] = Depends(get_current_identity),
):
    return guestbook.flag(entry_id, actor(request, identity), payload.reason, payload.description)


@app.put("/guestbook/{entry_id}")
def edit_guestbook_entry(entry_id: str, payload: EntryTextUpdate, identity: Identity = Depends(require_role("moderator"))):
    return guestbook.update_text(entry_id, payload.name, payload.message)


@app.put("/guestbook/{entry_id}/status")
def moderate_guestbook_entry(entry_id: str, payload: StatusUpdate, identity: Identity = Depends(require_role("moderator"))):
    return guestbook.set_status(entry_id, payload.status, identity.user_id, payload.reason)


@app.put("/guestbook/{entry_id}/pin")
def pin_guestbook_entry(entry_id: str, identity: Identity = Depends(require_role("moderator"))):
    return guestbook.toggle_pin(entry_id)


@app.delete("/guestbook/{entry_id}")
def delete_guestbook_entry(entry_id: str, identity: Identity = Depends(require_role("admin"))):
    return guestbook.delete_entry(entry_id)


# Portfolio
@app.get("/portfolio")
def list_portfolio(
    page: Optional[str] = None,
    limit: Optional[str] = None,
    sort_param: Optional[str] = Query(None, alias="sortParam"),
    category: Optional[str] = None,
    featured: Optional[str] = None,
    status: Optional[str] = None,
    search: Optional[str] = None,
    my_items: Optional[str] = Query(None, alias="myItems"),
    identity: Optional[Identity] = Depends(get_current_identity),
):
    params = {
        "page": page,
        "limit": limit,
        "sort_param": sort_param,
        "category": category,
        "featured": featured,
        "status": status,
        "search": search,
        "my_items": my_items,
    }
    return portfolio.list_portfolio(params, identity.user_id if identity else None)


@app.get("/portfolio/featured")
def featured_portfolio(limit: int = Query(6, ge=1, le=50)):
    return {"items": portfolio.featured_items(limit)}


@app.get("/portfolio/trending")
def trending_portfolio(days: int = Query(7, ge=1, le=365), limit: int = Query(10, ge=1, le=50)):
    return {"items": portfolio.trending_items(days, limit)}


@app.get("/portfolio/categories")
def portfolio_categories():
    return {"categories": portfolio.category_counts()}


@app.get("/portfolio/{item_id}/comments")
def list_portfolio_comments(
    item_id: str,
    page: int = 1,
    limit: int = portfolio.COMMENTS_DEFAULT_LIMIT,
    sort: str = "newest",
    identity: Optional[Identity] = Depends(get_current_identity),
):
    return portfolio.list_comments(
        item_id, page, limit, sort,
        identity.user_id if identity else None,
        identity.role if identity else None,
    )


@app.get("/portfolio/{item_id}")
def get_portfolio_item(item_id: str, identity: Optional[Identity] = Depends(get_current_identity)):
    item = portfolio.get_item(item_id, identity.user_id if identity else None, identity.role if identity else None)
    analytics.track_event(
        "project_view",
        "Portfolio Item Detail View",
        user_id=identity.user_id if identity else None,
        path=f"/portfolio/{item_id}",
        event_data={"item_type": item.get("item_type", "project")},
    )
    return item


@app.post("/portfolio", status_code=201)
def create_portfolio_item(payload: Dict[str, Any] = Body(...), identity: Identity = Depends(require_user)):
    return portfolio.create_item(payload, identity.user_id)


@app.put("/portfolio/{item_id}")
def update_portfolio_item(item_id: str, payload: Dict[str, Any] = Body(...), identity: Identity = Depends(require_user)):
    return portfolio.update_item(item_id, payload, identity.user_id, identity.role)


@app.delete("/portfolio/{item_id}")
def delete_portfolio_item(item_id: str, identity: Identity = Depends(require_user)):
    return portfolio.delete_item(item_id, identity.user_id, identity.role)


@app.post("/portfolio/{item_id}/like")
def like_portfolio_item(item_id: str, identity: Identity = Depends(require_user)):
    result = portfolio.like_item(item_id, identity.user_id)
    analytics.track_event(
        "project_like",
        "Project Liked" if result["liked"] else "Project Unliked",
        user_id=identity.user_id,
        path=f"/portfolio/{item_id}/like",
    )
    return result


@app.post("/portfolio/{item_id}/comment", status_code=201)
def comment_portfolio_item(item_id: str, payload: CommentRequest, identity: Identity = Depends(require_user)):
    return portfolio.comment_on_item(item_id, identity.user_id, payload.content)


# Blogs
BLOGS = "blog"
WORDS_PER_MINUTE = 200


def _read_time(content: str) -> int:
    return max(1, math.ceil(len(content.split()) / WORDS_PER_MINUTE))


def _blog_or_404(identifier: str) -> dict:
    blogs = collection(BLOGS)
    try:
        blog = blogs.find_one({"_id": ObjectId(identifier)})
    except (InvalidId, TypeError):
        blog = blogs.find_one({"slug": identifier})
    if not blog:
        raise NotFoundError("Blog post", identifier)
    return blog


def _check_author(blog: dict, identity: Identity) -> None:
    if blog.get("author") != identity.user_id and identity.role != "admin":
        raise ForbiddenError("Only the author can change this post")


@app.get("/blog")
def list_blogs(
    category: Optional[str] = None,
    tag: Optional[str] = None,
    featured: Optional[str] = None,
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
):
    clauses = [Equals("status", "published")]
    if category:
        clauses.append(Equals("category", category))
    if tag:
        clauses.append(Equals("tags", tag.lower()))
    if featured == "true":
        clauses.append(Equals("featured", True))
    if search:
        clauses.append(search_any(("title", "excerpt", "content"), search))
    filt = collapse(clauses)

    blogs = collection(BLOGS)
    total = blogs.count_documents(filt)
    items = blogs.find(filt, {"content": 0, "liked_by": 0}).sort("published_at", DESCENDING).skip((page - 1) * limit).limit(limit)
    return {"posts": [to_public(b) for b in items], "total_count": total, "page": page, "limit": limit}


@app.get("/blog/{identifier}")
def get_blog(identifier: str, identity: Optional[Identity] = Depends(get_current_identity)):
    blog = _blog_or_404(identifier)
    if blog.get("status") != "published":
        if not identity or (blog.get("author") != identity.user_id and not identity.is_staff):
            raise NotFoundError("Blog post", identifier)
    increment_views(collection(BLOGS), str(blog["_id"]), field="views")
    blog["views"] = blog.get("views", 0) + 1
    return to_public(blog)


@app.post("/blog", status_code=201)
def create_blog(payload: BlogCreate, identity: Identity = Depends(require_role("admin", "moderator"))):
    data = payload.model_dump()
    data["tags"] = [t.strip().lower() for t in data["tags"] if t.strip()]
    data["slug"] = portfolio.unique_slug(collection(BLOGS), data["title"])
    if data["status"] == "published":
        data["published_at"] = utcnow()
    blog = validate_document(BlogSchema, {**data, "author": identity.user_id, "read_time": _read_time(data["content"])})
    bid = create_document(BLOGS, blog)
    return {"id": bid, "slug": data["slug"]}


@app.put("/blog/{blog_id}")
def update_blog(blog_id: str, payload: BlogUpdate, identity: Identity = Depends(require_user)):
    blogs = collection(BLOGS)
    blog = blogs.find_one({"_id": object_id(blog_id)})
    if not blog:
        raise NotFoundError("Blog post", blog_id)
    _check_author(blog, identity)

    update = {k: v for k, v in payload.model_dump().items() if v is not None}
    validate_document(BlogSchema, {**blog, **update})
    if "content" in update:
        update["read_time"] = _read_time(update["content"])
    if update.get("status") == "published" and not blog.get("published_at"):
        update["published_at"] = utcnow()
    if update:
        update["updated_at"] = utcnow()
        blogs.update_one({"_id": blog["_id"]}, {"$set": update})
    return to_public(blogs.find_one({"_id": blog["_id"]}))


@app.delete("/blog/{blog_id}")
def delete_blog(blog_id: str, identity: Identity = Depends(require_user)):
    blogs = collection(BLOGS)
    blog = blogs.find_one({"_id": object_id(blog_id)})
    if not blog:
        raise NotFoundError("Blog post", blog_id)
    _check_author(blog, identity)
    blogs.delete_one({"_id": blog["_id"]})
    return {"ok": True}


def _published_or_403(blog_id: str) -> dict:
    blog = _blog_or_404(blog_id)
    if blog.get("status") != "published":
        raise HTTPException(status_code=403, detail="Only published posts take comments and likes")
    return blog


@app.post("/blog/{blog_id}/comment", status_code=201)
def comment_blog(blog_id: str, payload: CommentRequest, identity: Identity = Depends(require_user)):
    blog = _published_or_403(blog_id)
    return add_comment(collection(BLOGS), str(blog["_id"]), identity.user_id, payload.content, resource="Blog post")


@app.post("/blog/{blog_id}/like")
def like_blog(blog_id: str, identity: Identity = Depends(require_user)):
    blog = _published_or_403(blog_id)
    return toggle_like(collection(BLOGS), str(blog["_id"]), identity.user_id, BLOG_LIKES).as_dict()


# Analytics
@app.post("/analytics/track", status_code=201)
def track(
    payload: TrackRequest,
    request: Request,
    identity: Optional[Identity] = Depends(get_current_identity),
):
    event_id = analytics.track_event(
        payload.event_type,
        payload.event_name,
        user_id=identity.user_id if identity else None,
        ip_address=client_ip(request),
        path=payload.path,
        event_data=payload.event_data,
    )
    return {"event_id": event_id, "tracked": event_id is not None}


@app.get("/analytics/summary")
def analytics_summary(identity: Identity = Depends(require_role("admin"))):
    return analytics.summary()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
