import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import Body, Depends, FastAPI, Query, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.errors import DuplicateKeyError, PyMongoError

import database
import integrity
from database import (
    count_documents,
    create_document,
    delete_document,
    document_exists,
    ensure_indexes,
    get_document,
    get_documents,
    parse_object_id,
    serialize,
    update_document,
)
from errors import (
    ApiError,
    AuthenticationError,
    NotFoundError,
    PermissionDenied,
    ValidationFailed,
    Violation,
    format_errors,
    format_server_error,
    violations_from_request_error,
)
from schemas import (
    ColoredLabel,
    CommentCreate,
    CommentUpdate,
    LoginRequest,
    Reaction,
    ReactionCreate,
    ReactionUpdate,
    RefreshRequest,
    Topic,
    Type,
    User,
    UserCreate,
    UserUpdate,
    patch_fields,
)
from security import (
    PUBLIC_USER,
    get_current_user,
    hash_password,
    issue_tokens,
    revoke_refresh_token,
    revoke_user_tokens,
    rotate_refresh_token,
    verify_password,
)
from settings import settings

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(settings.SERVICE_NAME)


@asynccontextmanager
async def lifespan(app: FastAPI):
    try:
        ensure_indexes()
    except PyMongoError as e:
        logger.warning("Could not ensure indexes: %s", str(e)[:80])
    yield


app = FastAPI(title="Dream Journal API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------------------- Errors ----------------------

@app.exception_handler(ApiError)
async def api_error_handler(request: Request, exc: ApiError):
    return JSONResponse(status_code=exc.status_code, content=format_errors(*exc.to_dicts()))


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    violations = violations_from_request_error(exc)
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=format_errors(*(v.to_dict() for v in violations)),
    )


@app.exception_handler(Exception)
async def server_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=format_server_error())


# ---------------------- Utils ----------------------

class Page:
    """`skip` / `limit` query parameters shared by list endpoints."""

    def __init__(
        self,
        skip: int = Query(0, ge=0),
        limit: int = Query(settings.PAGE_SIZE, ge=1, le=100),
    ):
        self.skip = skip
        self.limit = limit


def link(request: Request, rel: str, action: str, path: str) -> Dict[str, str]:
    return {"rel": rel, "action": action, "href": f"{str(request.base_url).rstrip('/')}{path}"}


def page_links(request: Request, page: Page, total: int) -> List[Dict[str, str]]:
    links = []
    if page.skip + page.limit < total:
        links.append({
            "rel": "next",
            "action": "GET",
            "href": str(request.url.include_query_params(skip=page.skip + page.limit, limit=page.limit)),
        })
    if page.skip > 0:
        links.append({
            "rel": "previous",
            "action": "GET",
            "href": str(request.url.include_query_params(skip=max(page.skip - page.limit, 0), limit=page.limit)),
        })
    return links


def paginate(
    request: Request,
    collection_name: str,
    key: str,
    page: Page,
    filter_dict: Optional[Dict[str, Any]] = None,
    projection: Optional[Dict[str, int]] = None,
) -> Dict[str, Any]:
    items = get_documents(collection_name, filter_dict, skip=page.skip, limit=page.limit, projection=projection)
    total = count_documents(collection_name, filter_dict)
    return {key: serialize(items), "total": total, "links": page_links(request, page, total)}


def public_user(user_doc: dict) -> dict:
    return serialize({k: v for k, v in user_doc.items() if k != "password_hash"})


# ---------------------- Routes ----------------------

@app.get("/")
def read_root():
    return {"message": "Dream journal backend running"}


@app.get("/test")
def database_status():
    report = {"database": settings.DATABASE_NAME, "connection_status": "Not Configured", "collections": []}
    if database.db is None:
        return report
    try:
        report["collections"] = sorted(database.db.list_collection_names())
        report["connection_status"] = "Connected"
    except PyMongoError as e:
        logger.warning("Database status check failed: %s", str(e)[:80])
        report["connection_status"] = "Unreachable"
    return report


# Auth
@app.post("/auth/login")
def login(payload: LoginRequest):
    users = get_documents("users", {"name": payload.name}, limit=1)
    user = users[0] if users else None
    if not user or not verify_password(payload.password, user.get("password_hash", "")):
        logger.warning("Failed login for %s", payload.name)
        raise AuthenticationError("Invalid name or password", error="invalid_grant")
    user = update_document("users", user["_id"], {"last_connection": datetime.now(timezone.utc)})
    if user is None:
        raise AuthenticationError("Invalid name or password", error="invalid_grant")
    return {**issue_tokens(user), "user": public_user(user)}


@app.post("/auth/refresh")
def refresh(payload: RefreshRequest):
    return rotate_refresh_token(payload.refresh_token)


@app.post("/auth/logout", status_code=status.HTTP_204_NO_CONTENT)
def logout(payload: RefreshRequest):
    revoke_refresh_token(payload.refresh_token)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@app.get("/me")
def me(user: dict = Depends(get_current_user)):
    return public_user(user)


# Users
def unique_violations(name: Optional[str], email: Optional[str], exclude_id=None) -> List[Violation]:
    scope = {"_id": {"$ne": exclude_id}} if exclude_id is not None else {}
    violations = []
    if name is not None and document_exists("users", {**scope, "name": name}):
        violations.append(Violation("name", "unique", "Name already exists"))
    if email is not None and document_exists("users", {**scope, "email": email}):
        violations.append(Violation("email", "unique", "Email already exists"))
    return violations


@app.get("/users")
def list_users(request: Request, page: Page = Depends()):
    return paginate(request, "users", "users", page, projection=PUBLIC_USER)


@app.get("/users/{user_id}")
def get_user(user_id: str):
    user = get_document("users", user_id, PUBLIC_USER)
    if user is None:
        raise NotFoundError("user")
    return {"user": public_user(user)}


@app.get("/users/{user_id}/dreams")
def list_user_dreams(user_id: str, request: Request, page: Page = Depends()):
    user = get_document("users", user_id, PUBLIC_USER)
    if user is None:
        raise NotFoundError("user")
    return paginate(request, "dreams", "dreams", page, {"author": user["_id"]})


@app.post("/users", status_code=status.HTTP_201_CREATED)
def create_user(payload: UserCreate, request: Request):
    violations = unique_violations(payload.name, payload.email)
    if violations:
        raise ValidationFailed(violations)
    user_doc = User(
        name=payload.name,
        email=payload.email,
        password_hash=hash_password(payload.password),
        description=payload.description,
        avatar=payload.avatar,
        last_connection=datetime.now(timezone.utc),
    ).model_dump()
    if user_doc["email"] is None:
        user_doc.pop("email")  # sparse unique index
    try:
        user_id = create_document("users", user_doc)
    except DuplicateKeyError:
        raise ValidationFailed([Violation("name", "unique", "User already exists")])
    logger.info("Created user %s", user_id)
    return {"id": user_id, "links": [link(request, "Gets the created user", "GET", f"/users/{user_id}")]}


@app.patch("/users/{user_id}")
def update_user(user_id: str, payload: UserUpdate, request: Request, current: dict = Depends(get_current_user)):
    if str(current["_id"]) != user_id:
        raise PermissionDenied("Users can only modify their own account")
    changes = patch_fields(payload)
    violations = unique_violations(changes.get("name"), changes.get("email"), exclude_id=current["_id"])
    if violations:
        raise ValidationFailed(violations)
    if "password" in changes:
        changes["password_hash"] = hash_password(changes.pop("password"))
    if update_document("users", user_id, changes) is None:
        raise NotFoundError("user")
    return {"id": user_id, "links": [link(request, "Gets the updated user", "GET", f"/users/{user_id}")]}


@app.delete("/users/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_user(user_id: str, current: dict = Depends(get_current_user)):
    if str(current["_id"]) != user_id:
        raise PermissionDenied("Users can only delete their own account")
    user = delete_document("users", user_id)
    if user is None:
        raise NotFoundError("user")
    revoke_user_tokens(user["_id"])
    logger.info("Deleted user %s", user_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# Topics
@app.get("/topics")
def list_topics(request: Request, page: Page = Depends()):
    return paginate(request, "topics", "topics", page)


@app.get("/topics/{topic_id}")
def get_topic(topic_id: str):
    topic = get_document("topics", topic_id)
    if topic is None:
        raise NotFoundError("topic")
    return {"topic": serialize(topic)}


@app.post("/topics", status_code=status.HTTP_201_CREATED)
def create_topic(payload: ColoredLabel, request: Request):
    topic_id = create_document("topics", Topic(**payload.model_dump()).model_dump())
    logger.info("Created topic %s", topic_id)
    return {"id": topic_id, "links": [link(request, "Gets the created topic", "GET", f"/topics/{topic_id}")]}


@app.put("/topics/{topic_id}")
def modify_topic(topic_id: str, payload: ColoredLabel, request: Request):
    if update_document("topics", topic_id, Topic(**payload.model_dump()).model_dump()) is None:
        raise NotFoundError("topic")
    return {"id": topic_id, "links": [link(request, "Gets the modified topic", "GET", f"/topics/{topic_id}")]}


@app.delete("/topics/{topic_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_topic(topic_id: str):
    if delete_document("topics", topic_id) is None:
        raise NotFoundError("topic")
    logger.info("Deleted topic %s", topic_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# Types
@app.get("/types")
def list_types(request: Request, page: Page = Depends()):
    return paginate(request, "types", "types", page)


@app.get("/types/{type_id}")
def get_type(type_id: str):
    dream_type = get_document("types", type_id)
    if dream_type is None:
        raise NotFoundError("type")
    return {"type": serialize(dream_type)}


@app.post("/types", status_code=status.HTTP_201_CREATED)
def create_type(payload: ColoredLabel, request: Request):
    type_id = create_document("types", Type(**payload.model_dump()).model_dump())
    logger.info("Created type %s", type_id)
    return {"id": type_id, "links": [link(request, "Gets the created type", "GET", f"/types/{type_id}")]}


@app.put("/types/{type_id}")
def modify_type(type_id: str, payload: ColoredLabel, request: Request):
    if update_document("types", type_id, Type(**payload.model_dump()).model_dump()) is None:
        raise NotFoundError("type")
    return {"id": type_id, "links": [link(request, "Gets the modified type", "GET", f"/types/{type_id}")]}


@app.delete("/types/{type_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_type(type_id: str):
    if delete_document("types", type_id) is None:
        raise NotFoundError("type")
    logger.info("Deleted type %s", type_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# Reactions
@app.get("/reactions")
def list_reactions(request: Request, page: Page = Depends()):
    return paginate(request, "reactions", "reactions", page)


@app.get("/reactions/{reaction_id}")
def get_reaction(reaction_id: str):
    reaction = get_document("reactions", reaction_id)
    if reaction is None:
        raise NotFoundError("reaction")
    return {"reaction": serialize(reaction)}


@app.post("/reactions", status_code=status.HTTP_201_CREATED)
def create_reaction(payload: ReactionCreate, request: Request):
    reaction_id = create_document("reactions", Reaction(**payload.model_dump()).model_dump())
    logger.info("Created reaction %s", reaction_id)
    return {
        "id": reaction_id,
        "links": [link(request, "Gets the created reaction", "GET", f"/reactions/{reaction_id}")],
    }


@app.patch("/reactions/{reaction_id}")
def update_reaction(reaction_id: str, payload: ReactionUpdate, request: Request):
    if update_document("reactions", reaction_id, patch_fields(payload)) is None:
        raise NotFoundError("reaction")
    return {
        "id": reaction_id,
        "links": [link(request, "Gets the updated reaction", "GET", f"/reactions/{reaction_id}")],
    }


@app.delete("/reactions/{reaction_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_reaction(reaction_id: str):
    if delete_document("reactions", reaction_id) is None:
        raise NotFoundError("reaction")
    logger.info("Deleted reaction %s", reaction_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# Dreams
@app.get("/dreams")
def list_dreams(
    request: Request,
    page: Page = Depends(),
    author: Optional[str] = None,
    topic: Optional[str] = None,
    type_id: Optional[str] = Query(None, alias="type"),
    published: Optional[bool] = None,
):
    filter_dict: Dict[str, Any] = {}
    violations = []
    for param, field, value in (("author", "author", author), ("topic", "topics", topic), ("type", "type", type_id)):
        if value is None:
            continue
        oid = parse_object_id(value)
        if oid is None:
            violations.append(Violation(param, "invalid_id", "Invalid identifier"))
        filter_dict[field] = oid
    if violations:
        raise ValidationFailed(violations)
    if published is not None:
        filter_dict["published"] = published
    return paginate(request, "dreams", "dreams", page, filter_dict)


@app.get("/dreams/{dream_id}")
def get_dream(dream_id: str):
    dream = integrity.require_dream(dream_id)
    comments = integrity.dream_comments(dream["_id"])
    return {"dream": {**serialize(dream), "comments": serialize(comments)}}


@app.post("/dreams", status_code=status.HTTP_201_CREATED)
def create_dream(request: Request, body: Dict[str, Any] = Body(...)):
    # Raw body: field and topic violations are reported together
    dream_id = integrity.create_dream(body)
    logger.info("Created dream %s", dream_id)
    return {"id": dream_id, "links": [link(request, "Gets the created dream", "GET", f"/dreams/{dream_id}")]}


@app.patch("/dreams/{dream_id}")
def update_dream(dream_id: str, request: Request, body: Dict[str, Any] = Body(...)):
    integrity.update_dream(dream_id, body)
    return {"id": dream_id, "links": [link(request, "Gets the updated dream", "GET", f"/dreams/{dream_id}")]}


@app.delete("/dreams/{dream_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_dream(dream_id: str):
    # Comments are left in place
    if delete_document("dreams", dream_id) is None:
        raise NotFoundError("dream")
    logger.info("Deleted dream %s", dream_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# Dream comments
@app.get("/dreams/{dream_id}/comments")
def list_dream_comments(dream_id: str):
    dream = integrity.require_dream(dream_id)
    return {"comments": serialize(integrity.dream_comments(dream["_id"]))}


@app.get("/dreams/{dream_id}/comments/{comment_id}")
def get_dream_comment(dream_id: str, comment_id: str):
    return {"comment": serialize(integrity.find_dream_comment(dream_id, comment_id))}


@app.get("/dreams/{dream_id}/comments/{comment_id}/replies")
def list_comment_replies(dream_id: str, comment_id: str):
    return {"comments": serialize(integrity.comment_replies(dream_id, comment_id))}


@app.post("/dreams/{dream_id}/comments", status_code=status.HTTP_201_CREATED)
def create_dream_comment(dream_id: str, payload: CommentCreate, request: Request):
    comment_id = integrity.create_top_level(dream_id, payload.author, payload.content)
    logger.info("Created comment %s on dream %s", comment_id, dream_id)
    return {
        "id": comment_id,
        "links": [link(request, "Gets the created comment", "GET", f"/dreams/{dream_id}/comments/{comment_id}")],
    }


@app.post("/dreams/{dream_id}/comments/{comment_id}", status_code=status.HTTP_201_CREATED)
def reply_dream_comment(dream_id: str, comment_id: str, payload: CommentCreate, request: Request):
    reply_id = integrity.create_reply(dream_id, comment_id, payload.author, payload.content)
    logger.info("Created reply %s to comment %s", reply_id, comment_id)
    return {
        "id": reply_id,
        "links": [link(request, "Gets the created reply", "GET", f"/dreams/{dream_id}/comments/{reply_id}")],
    }


@app.patch("/dreams/{dream_id}/comments/{comment_id}")
def update_dream_comment(dream_id: str, comment_id: str, payload: CommentUpdate, request: Request):
    integrity.update_comment(dream_id, comment_id, payload.content)
    return {
        "id": comment_id,
        "links": [link(request, "Gets the updated comment", "GET", f"/dreams/{dream_id}/comments/{comment_id}")],
    }


@app.delete("/dreams/{dream_id}/comments/{comment_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_dream_comment(dream_id: str, comment_id: str):
    # Deleted by id alone; replies keep their parent reference
    integrity.delete_comment(comment_id)
    logger.info("Deleted comment %s", comment_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=settings.PORT)
