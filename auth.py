"""
Accounts, password hashing and bearer tokens.

Tokens are HS256 JWTs carrying the user id in `sub` and the role in `role`.
Route dependencies hand the rest of the app an `Identity`, never the raw token.
"""
import logging
import os
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from passlib.context import CryptContext
from pymongo import ReturnDocument

from database import collection, create_document, object_id, to_public, utcnow
from errors import ConflictError, NotFoundError, ValidationError
from schemas import User, validate_document

logger = logging.getLogger(__name__)

SECRET_KEY = os.getenv("JWT_SECRET", "change-me-cosmic-devspace-signing-key")
ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("JWT_EXPIRE_MINUTES", "10080"))
PASSWORD_MIN_LENGTH = 8

USERS = "user"

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
bearer_scheme = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class Identity:
    user_id: str
    role: str = "user"

    @property
    def is_staff(self) -> bool:
        return self.role in ("admin", "moderator")


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def create_access_token(user_id: str, role: str = "user", expires_delta: Optional[timedelta] = None) -> str:
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    payload = {"sub": user_id, "role": role, "exp": expire, "type": "access"}
    return jwt.encode(payload, SECRET_KEY, algorithm=ALGORITHM)


def verify_token(token: str) -> Optional[Identity]:
    """Decode a token; None when it is expired, tampered with or malformed."""
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except jwt.ExpiredSignatureError:
        return None
    except jwt.InvalidTokenError:
        return None
    if payload.get("type") != "access" or not payload.get("sub"):
        return None
    return Identity(user_id=payload["sub"], role=payload.get("role", "user"))


def _public_user(doc: dict) -> dict:
    user = to_public(doc)
    user.pop("password_hash", None)
    return user


def register_user(username: str, email: str, password: str, display_name: Optional[str] = None) -> dict:
    if len(password or "") < PASSWORD_MIN_LENGTH:
        raise ValidationError("password", f"Password must be at least {PASSWORD_MIN_LENGTH} characters")
    username = (username or "").strip()
    email = (email or "").strip().lower()

    users = collection(USERS)
    if users.find_one({"username": username}):
        raise ConflictError("Username already exists")
    if users.find_one({"email": email}):
        raise ConflictError("Email already registered")

    user = validate_document(User, {
        "username": username,
        "email": email,
        "password_hash": hash_password(password),
        "display_name": display_name or username,
    })
    user_id = create_document(USERS, user)
    logger.info("Registered user %s (%s)", username, user_id)
    return {"id": user_id, "username": username}


def login(username_or_email: str, password: str) -> dict:
    key = (username_or_email or "").strip()
    user = collection(USERS).find_one({"$or": [{"username": key}, {"email": key.lower()}]})
    if not user or not verify_password(password, user["password_hash"]):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")
    token = create_access_token(str(user["_id"]), user.get("role", "user"))
    return {"access_token": token, "token_type": "bearer", "user": _public_user(user)}


def get_user(user_id: str) -> Optional[dict]:
    doc = collection(USERS).find_one({"_id": object_id(user_id)})
    return _public_user(doc) if doc else None


PROFILE_FIELDS = ("display_name", "avatar_url", "bio", "location", "website")


def update_profile(user_id: str, changes: dict) -> dict:
    """Apply the given profile fields; account fields (username, email, role) are not editable here."""
    users = collection(USERS)
    doc = users.find_one({"_id": object_id(user_id)})
    if not doc:
        raise NotFoundError("User", user_id)

    update = {key: value for key, value in changes.items() if key in PROFILE_FIELDS and value is not None}
    validate_document(User, {**doc, **update})
    if update:
        update["updated_at"] = utcnow()
        doc = users.find_one_and_update(
            {"_id": doc["_id"]},
            {"$set": update},
            return_document=ReturnDocument.AFTER,
        )
    return _public_user(doc)


# Dependencies

def get_current_identity(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Optional[Identity]:
    if credentials is None:
        return None
    return verify_token(credentials.credentials)


def require_user(identity: Optional[Identity] = Depends(get_current_identity)) -> Identity:
    if identity is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return identity


def require_role(*roles: str):
    """Dependency factory; admins pass every role check."""

    def role_checker(identity: Identity = Depends(require_user)) -> Identity:
        if identity.role != "admin" and identity.role not in roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Operation requires one of: {', '.join(roles)}",
            )
        return identity

    return role_checker
