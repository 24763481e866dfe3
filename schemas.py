"""
Database Schemas for the dream journal

Each document model below maps to a MongoDB collection (plural lowercase of
the class name, e.g. Dream -> "dreams"). Request payload models follow.
"""

import re
from datetime import datetime
from typing import Annotated, List, Optional

from pydantic import AfterValidator, BaseModel, Field
from pydantic_core import PydanticCustomError

COLOR_RE = re.compile(r"^#([0-9a-f]{3}){1,2}$", re.IGNORECASE)
EMAIL_RE = re.compile(r"\S+@\S+\.\S+")
OBJECT_ID_RE = re.compile(r"^[0-9a-fA-F]{24}$")


def _check_color(value: str) -> str:
    if not COLOR_RE.match(value):
        raise PydanticCustomError("invalid_color", "Invalid color")
    return value


def _check_email(value: str) -> str:
    if not EMAIL_RE.search(value):
        raise PydanticCustomError("invalid_email", "Invalid email")
    return value


def _check_object_id(value: str) -> str:
    if not OBJECT_ID_RE.match(value):
        raise PydanticCustomError("invalid_id", "Invalid identifier")
    return value


Color = Annotated[str, AfterValidator(_check_color)]
Email = Annotated[str, AfterValidator(_check_email)]
ObjectIdStr = Annotated[str, AfterValidator(_check_object_id)]
Password = Annotated[str, Field(min_length=8, description="Plain password, hashed before storage")]


# ---------------------- Documents ----------------------

class User(BaseModel):
    """
    Users collection schema
    Collection name: "users"
    """
    name: str = Field(..., description="Unique display name")
    email: Optional[Email] = Field(None, description="Email address")
    password_hash: str = Field(..., description="Password hash (bcrypt)")
    description: Optional[str] = None
    avatar: Optional[str] = Field(None, description="Avatar image URL")
    last_connection: Optional[datetime] = None


class Topic(BaseModel):
    """
    Collection name: "topics"
    """
    name: str
    color: Color


class Type(BaseModel):
    """
    Collection name: "types"
    """
    name: str
    color: Color


class Dream(BaseModel):
    """
    Dreams collection schema
    Collection name: "dreams"

    Comments are not stored here; they are looked up from "comments" by
    their `dream` reference.
    """
    author: ObjectIdStr
    anonym: bool = False
    content: str
    title: str
    topics: List[ObjectIdStr] = Field(..., description="At least one existing topic")
    type: ObjectIdStr
    published: bool = False


class Comment(BaseModel):
    """
    Comments collection schema
    Collection name: "comments"

    `parent` is None for top-level comments and points at another comment
    for replies.
    """
    content: str
    author: ObjectIdStr
    dream: ObjectIdStr
    parent: Optional[ObjectIdStr] = None


class Reaction(BaseModel):
    """
    Collection name: "reactions"
    """
    name: str
    icon: str


class RefreshToken(BaseModel):
    """
    Issued refresh tokens, one document per token id (jti)
    Collection name: "refresh_tokens"
    """
    token: str
    user: ObjectIdStr
    expires_at: datetime


# ---------------------- Payloads ----------------------

class UserCreate(BaseModel):
    name: str = Field(..., min_length=1)
    password: Password
    email: Optional[Email] = None
    description: Optional[str] = None
    avatar: Optional[str] = None


class UserUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    password: Optional[Password] = None
    email: Optional[Email] = None
    description: Optional[str] = None
    avatar: Optional[str] = None


class LoginRequest(BaseModel):
    name: str
    password: str


class RefreshRequest(BaseModel):
    refresh_token: str


class ColoredLabel(BaseModel):
    """Body of topic and type create/replace requests."""
    name: str = Field(..., min_length=1)
    color: Color


class ReactionCreate(BaseModel):
    name: str = Field(..., min_length=1)
    icon: str = Field(..., min_length=1)


class ReactionUpdate(BaseModel):
    name: Optional[str] = None
    icon: Optional[str] = None


class DreamCreate(BaseModel):
    content: str
    title: str
    topics: List[str]
    type: ObjectIdStr
    author: ObjectIdStr
    anonym: bool = False


class DreamUpdate(BaseModel):
    title: Optional[str] = None
    content: Optional[str] = None
    topics: Optional[List[str]] = None
    type: Optional[ObjectIdStr] = None
    anonym: Optional[bool] = None


class CommentCreate(BaseModel):
    content: str
    author: ObjectIdStr


class CommentUpdate(BaseModel):
    content: Optional[str] = None


def patch_fields(payload: BaseModel) -> dict:
    """Fields the client actually sent with a non-null value."""
    return {k: v for k, v in payload.model_dump(exclude_unset=True).items() if v is not None}
