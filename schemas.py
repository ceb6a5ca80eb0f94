"""
Database Schemas for Cosmic DevSpace

Each Pydantic model corresponds to a MongoDB collection; request bodies that
do not map onto a collection live at the bottom of the file.

Collections:
- user: authentication + identity
- guestbook: guestbook entries with replies, likes and flags
- portfolio: projects, certifications and achievements
- blog: blog posts
- analytics: tracked events
"""
from datetime import datetime
from typing import Annotated, Any, Dict, List, Literal, Optional, Type, TypeVar, Union

from pydantic import BaseModel, EmailStr, Field, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from errors import ValidationError

EntryStatus = Literal["pending", "approved", "rejected", "flagged", "hidden"]
FlagReason = Literal["spam", "inappropriate", "offensive", "misleading", "other"]
Visibility = Literal["public", "private", "unlisted"]
ItemStatus = Literal["planning", "in-progress", "completed", "on-hold", "archived"]
PortfolioCategory = Literal[
    "web", "mobile", "ai", "design", "backend", "frontend", "fullstack",
    "game", "blockchain", "iot", "certification", "achievement", "other",
]
Role = Literal["user", "moderator", "admin"]
EventType = Literal[
    "page_view", "user_login", "user_register", "project_view", "project_like",
    "message_post", "message_like", "profile_view", "search", "download",
    "share", "contact", "error", "performance", "custom", "guestbook_entry",
    "profile_creation", "contact_form", "blog_view", "item_view", "project_creation",
]

ModelT = TypeVar("ModelT", bound=BaseModel)


def validate_document(model: Type[ModelT], data: dict) -> ModelT:
    """Build `model` from `data`, reporting the first failing field as a ValidationError."""
    try:
        return model.model_validate(data)
    except PydanticValidationError as exc:
        raise _first_error(exc)


def _first_error(exc: PydanticValidationError, skip: int = 0) -> ValidationError:
    error = exc.errors()[0]
    field = ".".join(str(part) for part in error["loc"][skip:]) or "body"
    return ValidationError(field, error["msg"])


# Users

class User(BaseModel):
    username: str = Field(..., min_length=3, max_length=30, description="Unique handle")
    email: EmailStr
    password_hash: str = Field(..., description="bcrypt hash")
    display_name: Optional[str] = None
    avatar_url: Optional[str] = None
    bio: Optional[str] = Field(None, max_length=500)
    location: Optional[str] = Field(None, max_length=100)
    website: Optional[str] = Field(None, pattern=r"^https?://.+")
    role: Role = "user"
    verified: bool = False


# Guestbook

class Reply(BaseModel):
    id: str
    name: str = Field(..., min_length=1, max_length=100)
    message: str = Field(..., min_length=1, max_length=500)
    user_id: Optional[str] = None
    is_admin: bool = False
    created_at: datetime


class Flag(BaseModel):
    reporter: str = Field(..., description="User id or IP of the reporter")
    reason: FlagReason
    description: Optional[str] = Field(None, max_length=200)
    flagged_at: datetime


class GuestbookEntry(BaseModel):
    name: str = Field(..., min_length=2, max_length=100)
    email: Optional[EmailStr] = None
    avatar: Optional[str] = None
    message: str = Field(..., min_length=10, max_length=1000)
    project_id: Optional[str] = Field(None, description="Weak reference to a portfolio item")
    project_title: Optional[str] = Field(None, max_length=200)
    user_id: Optional[str] = None
    ip_address: str
    user_agent: str = ""
    status: EntryStatus = "approved"
    moderation_reason: Optional[str] = Field(None, max_length=500)
    moderated_by: Optional[str] = None
    moderated_at: Optional[datetime] = None
    spam_score: int = Field(0, ge=0, le=100)
    is_spam: bool = False
    likes: int = Field(0, ge=0)
    liked_by: List[str] = Field(default_factory=list)
    replies: List[Reply] = Field(default_factory=list)
    flags: List[Flag] = Field(default_factory=list)
    featured: bool = False


# Portfolio

class Metrics(BaseModel):
    views: int = Field(0, ge=0)
    likes: int = Field(0, ge=0)
    shares: int = Field(0, ge=0)
    downloads: int = Field(0, ge=0)
    stars: int = Field(0, ge=0)


class Links(BaseModel):
    live: Optional[str] = Field(None, pattern=r"^https?://.+")
    github: Optional[str] = Field(None, pattern=r"^https?://(www\.)?github\.com/.+")
    demo: Optional[str] = Field(None, pattern=r"^https?://.+")
    documentation: Optional[str] = Field(None, pattern=r"^https?://.+")


class Technology(BaseModel):
    name: str = Field(..., min_length=1)
    category: Literal["frontend", "backend", "database", "framework", "library", "tool", "service"] = "library"
    version: Optional[str] = None


class Timeline(BaseModel):
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    duration: Optional[str] = None


class PortfolioContent(BaseModel):
    """Fields every portfolio item carries, whatever its type."""

    title: str = Field(..., min_length=1, max_length=100)
    short_description: Optional[str] = Field(None, max_length=200)
    category: PortfolioCategory = "other"
    tags: List[str] = Field(default_factory=list)
    keywords: List[str] = Field(default_factory=list)
    status: ItemStatus = "completed"
    visibility: Visibility = "public"
    featured: bool = False
    priority: int = Field(5, ge=0, le=10)
    thumbnail: Optional[str] = None


class Project(PortfolioContent):
    item_type: Literal["project"] = "project"
    description: str = Field(..., min_length=1, max_length=1000)
    technologies: List[Technology] = Field(default_factory=list)
    timeline: Timeline = Field(default_factory=Timeline)
    links: Links = Field(default_factory=Links)


class Certification(PortfolioContent):
    item_type: Literal["certification"]
    category: PortfolioCategory = "certification"
    description: Optional[str] = Field(None, max_length=1000)
    issuing_organization: str = Field(..., min_length=1, max_length=200)
    issue_date: Optional[datetime] = None
    expiry_date: Optional[datetime] = None
    credential_id: Optional[str] = Field(None, max_length=100)
    credential_url: Optional[str] = Field(None, pattern=r"^https?://.+")
    skills_gained: List[str] = Field(default_factory=list)


class Achievement(PortfolioContent):
    item_type: Literal["achievement"]
    category: PortfolioCategory = "achievement"
    description: Optional[str] = Field(None, max_length=1000)
    achievement_category: Literal["Award", "Recognition", "Milestone", "Competition"]
    achievement_date: Optional[datetime] = None
    organization: Optional[str] = Field(None, max_length=200)
    details: Optional[str] = Field(None, max_length=2000)


PortfolioItem = Annotated[Union[Project, Certification, Achievement], Field(discriminator="item_type")]
portfolio_item_adapter = TypeAdapter(PortfolioItem)


def validate_portfolio_item(data: dict) -> Union[Project, Certification, Achievement]:
    data = {**data}
    data.setdefault("item_type", "project")
    try:
        return portfolio_item_adapter.validate_python(data)
    except PydanticValidationError as exc:
        # locations inside a variant start with its tag
        skip = 1 if data["item_type"] in ("project", "certification", "achievement") else 0
        raise _first_error(exc, skip)


class LikeRecord(BaseModel):
    user: str
    liked_at: datetime


class Comment(BaseModel):
    id: str
    user: str
    content: str = Field(..., min_length=1, max_length=500)
    created_at: datetime


# Blog

class Blog(BaseModel):
    author: str = Field(..., description="Author user id")
    slug: str = Field(..., description="URL-friendly identifier")
    title: str = Field(..., min_length=1, max_length=200)
    excerpt: str = Field(..., min_length=1, max_length=300)
    content: str = Field(..., min_length=1)
    category: str
    tags: List[str] = Field(default_factory=list)
    cover_image: Optional[str] = None
    status: Literal["draft", "published", "archived"] = "draft"
    published_at: Optional[datetime] = None
    featured: bool = False
    read_time: int = Field(1, ge=1, description="Minutes")
    views: int = 0
    likes: int = 0
    liked_by: List[LikeRecord] = Field(default_factory=list)
    comments: List[Comment] = Field(default_factory=list)


# Analytics

class AnalyticsEvent(BaseModel):
    event_type: str
    event_name: str
    user_id: Optional[str] = None
    ip_address: Optional[str] = None
    path: Optional[str] = None
    event_data: Dict[str, Any] = Field(default_factory=dict)


# Request bodies

class RegisterRequest(BaseModel):
    username: str
    email: str
    password: str
    display_name: Optional[str] = None


class LoginRequest(BaseModel):
    username: str = Field(..., description="Username or email")
    password: str


class ProfileUpdate(BaseModel):
    display_name: Optional[str] = Field(None, max_length=50)
    avatar_url: Optional[str] = None
    bio: Optional[str] = None
    location: Optional[str] = None
    website: Optional[str] = None


class GuestbookSubmission(BaseModel):
    name: str
    message: str
    email: Optional[str] = None
    avatar: Optional[str] = None
    project_id: Optional[str] = None
    project_title: Optional[str] = None


class ScoreRequest(BaseModel):
    name: str = ""
    message: str = ""


class ReplyRequest(BaseModel):
    name: str = ""
    message: str = ""


class FlagRequest(BaseModel):
    reason: str
    description: Optional[str] = None


class EntryTextUpdate(BaseModel):
    name: Optional[str] = None
    message: Optional[str] = None


class StatusUpdate(BaseModel):
    status: EntryStatus
    reason: Optional[str] = Field(None, max_length=500)


class CommentRequest(BaseModel):
    content: str = ""


class TrackRequest(BaseModel):
    event_type: EventType
    event_name: str = Field(..., min_length=1, max_length=100)
    path: Optional[str] = None
    event_data: Dict[str, Any] = Field(default_factory=dict)


class BlogCreate(BaseModel):
    title: str
    excerpt: str
    content: str
    category: str
    tags: List[str] = []
    cover_image: Optional[str] = None
    status: Literal["draft", "published", "archived"] = "draft"
    featured: bool = False


class BlogUpdate(BaseModel):
    title: Optional[str] = None
    excerpt: Optional[str] = None
    content: Optional[str] = None
    category: Optional[str] = None
    tags: Optional[List[str]] = None
    cover_image: Optional[str] = None
    status: Optional[Literal["draft", "published", "archived"]] = None
    featured: Optional[bool] = None
