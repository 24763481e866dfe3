"""
Referential integrity for dreams and their comment threads.

Topic references are checked against the topics collection every time a
dream's topic set is written. Comments carry the reference to their dream
and, for replies, to their parent comment; the comments of a dream are
always recomputed from the comments collection and never stored on the
dream itself.

Nothing here logs or retries: failures are raised as `ValidationFailed`
(field-scoped) or `NotFoundError` (entity-scoped) for the request layer to
map onto responses.
"""
from typing import Any, Dict, List, Optional, Sequence, Tuple, Type, TypeVar

from bson import ObjectId
from pydantic import BaseModel, ValidationError

from database import (
    create_document,
    delete_document,
    document_exists,
    get_document,
    get_documents,
    parse_object_id,
    update_document,
)
from errors import NotFoundError, ValidationFailed, Violation, violations_from_errors
from schemas import Comment, Dream, DreamCreate, DreamUpdate, patch_fields

ModelT = TypeVar("ModelT", bound=BaseModel)


def _references(doc: Dict[str, Any], *fields: str) -> Dict[str, Any]:
    """Stores the given id fields as ObjectIds (lists are converted item by item)."""
    for field in fields:
        value = doc.get(field)
        if isinstance(value, list):
            doc[field] = [ObjectId(v) for v in value]
        elif value is not None:
            doc[field] = ObjectId(value)
    return doc


# ---------------------- Topics ----------------------

def topic_violations(topics: Sequence[str]) -> Tuple[List[ObjectId], List[Violation]]:
    """
    Resolves every topic id against the topics collection.

    Returns the resolved ids and the violations found: kind
    ``topic_required`` for an empty sequence, ``invalid_topic`` when any id
    does not resolve. Duplicates are collapsed, first-seen order kept.
    """
    if not topics:
        return [], [Violation("topics", "topic_required", "At least one topic is required")]

    resolved: List[ObjectId] = []
    missing: List[str] = []
    for value in dict.fromkeys(topics):
        oid = parse_object_id(value)
        if oid is None or not document_exists("topics", {"_id": oid}):
            missing.append(str(value))
        else:
            resolved.append(oid)

    if missing:
        return [], [Violation("topics", "invalid_topic", f"Invalid topic: {', '.join(missing)}")]
    return resolved, []


# ---------------------- Dreams ----------------------

def require_dream(dream_id: Any) -> dict:
    dream = get_document("dreams", dream_id)
    if dream is None:
        raise NotFoundError("dream")
    return dream


def check_dream_body(model: Type[ModelT], body: Dict[str, Any]) -> Tuple[ModelT, Optional[List[ObjectId]]]:
    """
    Validates a dream create/patch body in one pass.

    Field errors and topic reference errors are collected together, so a
    client gets every violation at once. Topics are resolved whenever the
    body carries a list of strings, even if other fields are invalid.
    """
    violations: List[Violation] = []
    payload = None
    try:
        payload = model.model_validate(body)
    except ValidationError as exc:
        violations.extend(violations_from_errors(exc.errors()))

    resolved = None
    topics = body.get("topics") if isinstance(body, dict) else None
    if isinstance(topics, list) and all(isinstance(t, str) for t in topics):
        resolved, topic_errors = topic_violations(topics)
        violations.extend(topic_errors)

    if violations:
        raise ValidationFailed(violations)
    return payload, resolved


def create_dream(body: Dict[str, Any]) -> str:
    payload, topics = check_dream_body(DreamCreate, body)
    doc = Dream(**{**payload.model_dump(), "topics": [str(t) for t in topics]}).model_dump()
    return create_document("dreams", _references(doc, "author", "topics", "type"))


def update_dream(dream_id: Any, body: Dict[str, Any]) -> dict:
    """
    Applies a partial update. Absent and null fields are left untouched; a
    new topic set goes through the same validation as at creation.
    """
    dream = require_dream(dream_id)
    payload, topics = check_dream_body(DreamUpdate, body)
    changes = patch_fields(payload)
    if "topics" in changes:
        changes["topics"] = topics
    _references(changes, "type")
    updated = update_document("dreams", dream["_id"], changes)
    if updated is None:
        raise NotFoundError("dream")
    return updated


# ---------------------- Comments ----------------------

def _new_comment(dream: dict, author: str, content: str, parent: Optional[dict] = None) -> str:
    doc = Comment(
        content=content,
        author=author,
        dream=str(dream["_id"]),
        parent=str(parent["_id"]) if parent else None,
    ).model_dump()
    return create_document("comments", _references(doc, "author", "dream", "parent"))


def create_top_level(dream_id: Any, author: str, content: str) -> str:
    dream = require_dream(dream_id)
    return _new_comment(dream, author, content)


def create_reply(dream_id: Any, parent_id: Any, author: str, content: str) -> str:
    """
    Creates a reply to `parent_id` under `dream_id`.

    The dream is checked before the parent. The parent's own dream is not
    compared with `dream_id`, so a reply may point at a comment of another
    dream.
    """
    dream = require_dream(dream_id)
    parent = get_document("comments", parent_id)
    if parent is None:
        raise NotFoundError("parent")
    return _new_comment(dream, author, content, parent)


def dream_comments(dream_id: Any) -> List[dict]:
    """Every comment referencing the dream, in insertion order. The dream itself may be gone."""
    oid = parse_object_id(dream_id)
    if oid is None:
        return []
    return get_documents("comments", {"dream": oid})


def find_dream_comment(dream_id: Any, comment_id: Any) -> dict:
    require_dream(dream_id)
    for comment in dream_comments(dream_id):
        if str(comment["_id"]) == str(comment_id):
            return comment
    raise NotFoundError("comment")


def comment_replies(dream_id: Any, comment_id: Any) -> List[dict]:
    parent = find_dream_comment(dream_id, comment_id)
    return get_documents("comments", {"dream": parent["dream"], "parent": parent["_id"]})


def update_comment(dream_id: Any, comment_id: Any, content: Optional[str]) -> dict:
    comment = find_dream_comment(dream_id, comment_id)
    if content is None:
        return comment
    updated = update_document("comments", comment["_id"], {"content": content})
    if updated is None:
        raise NotFoundError("comment")
    return updated


def delete_comment(comment_id: Any) -> dict:
    """Deletes by id only. Replies keep pointing at the removed comment."""
    deleted = delete_document("comments", comment_id)
    if deleted is None:
        raise NotFoundError("comment")
    return deleted
