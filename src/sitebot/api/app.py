"""REST surface for the chat assistant.

All routes live under /sitebot/v1. The caller's identity arrives in the
X-User-Id header (authentication happens upstream); identities listed in
server.admin_users may also call the privileged routes.

POST   /chat                           ask a question, get the assistant's reply
GET    /conversations                  list (archived filter, limit, offset)
POST   /conversations                  create (201)
GET    /conversations/{id}             one conversation with its messages
PATCH  /conversations/{id}             rename and/or (un)archive
DELETE /conversations/{id}             delete with its messages
GET    /conversations/{id}/messages    paginated messages
POST   /upload-image                   multipart image upload (201)
GET    /preferences, POST /preferences per-user display preferences
GET    /test-api                       admin: check the model API credential
POST   /context/refresh                admin: rebuild the site context
GET    /context/stats                  admin: cache or index state
GET    /context/diagnostics            admin: per-source fetch and cleaning report

Every SitebotError becomes {"success": false, "error": {kind, message, status}}.
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import asdict
from typing import Any, Optional

from fastapi import (
    APIRouter,
    Depends,
    FastAPI,
    File,
    Header,
    HTTPException,
    Query,
    Request,
    UploadFile,
)
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from sitebot.config import SIDEBAR_POSITIONS, SitebotConfig
from sitebot.db.connection import Database
from sitebot.db.models import Conversation
from sitebot.db.repository import Repository
from sitebot.db.schema import initialize
from sitebot.errors import NotFoundError, SitebotError, ValidationError
from sitebot.services import Services

router = APIRouter(prefix="/sitebot/v1", tags=["sitebot"])


# ============================================================================
# MODELS
# ============================================================================


class ChatRequest(BaseModel):
    message: str
    conversation_id: Optional[int] = None
    image: Optional[str] = None


class ReplyMessage(BaseModel):
    role: str
    content: str


class ChatResponse(BaseModel):
    success: bool
    conversation_id: int
    message: ReplyMessage
    usage: dict[str, Any] = {}
    model: Optional[str] = None


class ConversationCreate(BaseModel):
    title: Optional[str] = None


class ConversationUpdate(BaseModel):
    title: Optional[str] = None
    archived: Optional[bool] = None


class PreferencesUpdate(BaseModel):
    sidebar_position: Optional[str] = None


# ============================================================================
# DEPENDENCIES
# ============================================================================


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_repo(request: Request) -> Iterator[Repository]:
    """Yield a Repository on a per-request connection, closed afterwards."""
    conn = request.app.state.database.connect()
    try:
        yield Repository(conn)
    finally:
        conn.close()


def current_user(x_user_id: Optional[int] = Header(default=None)) -> int:
    if x_user_id is None:
        raise HTTPException(status_code=401, detail="Authentication required")
    return x_user_id


def admin_user(
    user_id: int = Depends(current_user),
    services: Services = Depends(get_services),
) -> int:
    if user_id not in services.config.server.admin_users:
        raise HTTPException(status_code=403, detail="Administrator access required")
    return user_id


def _conversation_out(
    conversation: Conversation, *, with_messages: bool = False
) -> dict[str, Any]:
    data = asdict(conversation)
    if not with_messages:
        data.pop("messages")
    return data


# ============================================================================
# CHAT
# ============================================================================


@router.post("/chat", response_model=ChatResponse)
def chat(
    body: ChatRequest,
    user_id: int = Depends(current_user),
    repo: Repository = Depends(get_repo),
    services: Services = Depends(get_services),
):
    """Answer a message inside a new or existing conversation."""
    result = services.orchestrator(repo).handle_chat(
        user_id, body.message, conversation_id=body.conversation_id, image=body.image
    )
    return result.to_dict()


# ============================================================================
# CONVERSATIONS
# ============================================================================


@router.get("/conversations")
def list_conversations(
    archived: bool = False,
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    user_id: int = Depends(current_user),
    repo: Repository = Depends(get_repo),
):
    conversations = repo.list_conversations(
        user_id, archived=archived, limit=limit, offset=offset
    )
    return {
        "conversations": [_conversation_out(c) for c in conversations],
        "total": repo.count_conversations(user_id, archived=archived),
    }


@router.post("/conversations", status_code=201)
def create_conversation(
    body: ConversationCreate,
    user_id: int = Depends(current_user),
    repo: Repository = Depends(get_repo),
):
    conversation_id = repo.create_conversation(user_id, body.title)
    return _conversation_out(repo.require_conversation(conversation_id, user_id))


@router.get("/conversations/{conversation_id}")
def get_conversation(
    conversation_id: int,
    user_id: int = Depends(current_user),
    repo: Repository = Depends(get_repo),
):
    conversation = repo.get_conversation(conversation_id, user_id, with_messages=True)
    if conversation is None:
        raise NotFoundError(f"Conversation {conversation_id} not found.")
    return _conversation_out(conversation, with_messages=True)


@router.patch("/conversations/{conversation_id}")
def update_conversation(
    conversation_id: int,
    body: ConversationUpdate,
    user_id: int = Depends(current_user),
    repo: Repository = Depends(get_repo),
):
    repo.require_conversation(conversation_id, user_id)
    if body.title is not None:
        repo.update_title(conversation_id, user_id, body.title)
    if body.archived is not None:
        repo.archive(conversation_id, user_id, body.archived)
    return _conversation_out(repo.require_conversation(conversation_id, user_id))


@router.delete("/conversations/{conversation_id}")
def delete_conversation(
    conversation_id: int,
    user_id: int = Depends(current_user),
    repo: Repository = Depends(get_repo),
):
    if not repo.delete_conversation(conversation_id, user_id):
        raise NotFoundError(f"Conversation {conversation_id} not found.")
    return {"success": True, "deleted": conversation_id}


@router.get("/conversations/{conversation_id}/messages")
def list_messages(
    conversation_id: int,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    user_id: int = Depends(current_user),
    repo: Repository = Depends(get_repo),
):
    messages = repo.list_messages(conversation_id, user_id, limit=limit, offset=offset)
    return {"messages": [asdict(m) for m in messages]}


# ============================================================================
# IMAGES + PREFERENCES
# ============================================================================


@router.post("/upload-image", status_code=201)
def upload_image(
    file: Optional[UploadFile] = File(default=None),
    user_id: int = Depends(current_user),
    repo: Repository = Depends(get_repo),
    services: Services = Depends(get_services),
):
    if file is None:
        raise ValidationError("No image uploaded.")
    stored = services.image_store(repo).store(file.file.read(), user_id)
    return {
        "success": True,
        "image": {"id": stored.id, "url": stored.url, "expires_at": stored.expires_at},
    }


@router.get("/preferences")
def get_preferences(
    user_id: int = Depends(current_user),
    repo: Repository = Depends(get_repo),
    services: Services = Depends(get_services),
):
    prefs = repo.get_preferences(user_id)
    return {
        "sidebar_position": prefs.get(
            "sidebar_position", services.config.server.sidebar_position
        )
    }


@router.post("/preferences")
def update_preferences(
    body: PreferencesUpdate,
    user_id: int = Depends(current_user),
    repo: Repository = Depends(get_repo),
    services: Services = Depends(get_services),
):
    updates: dict[str, Any] = {}
    if body.sidebar_position is not None:
        if body.sidebar_position not in SIDEBAR_POSITIONS:
            raise ValidationError("sidebar_position must be 'left' or 'right'.")
        updates["sidebar_position"] = body.sidebar_position
    prefs = repo.set_preferences(user_id, updates)
    return {
        "success": True,
        "sidebar_position": prefs.get(
            "sidebar_position", services.config.server.sidebar_position
        ),
    }


# ============================================================================
# ADMIN
# ============================================================================


@router.get("/test-api")
def test_api(
    _: int = Depends(admin_user),
    services: Services = Depends(get_services),
):
    check = services.chat_client.test_connection()
    return {"success": check.success, "message": check.message}


@router.post("/context/refresh")
def refresh_context(
    _: int = Depends(admin_user),
    services: Services = Depends(get_services),
):
    report = services.context.force_refresh()
    return {"success": True, **asdict(report)}


@router.get("/context/stats")
def context_stats(
    _: int = Depends(admin_user),
    services: Services = Depends(get_services),
):
    return asdict(services.context.stats())


@router.get("/context/diagnostics")
def context_diagnostics(
    _: int = Depends(admin_user),
    services: Services = Depends(get_services),
):
    reports = services.context.aggregator.diagnose()
    return {"success": True, "sources": [asdict(r) for r in reports]}


# ============================================================================
# APP FACTORY
# ============================================================================


async def _sitebot_error_handler(request: Request, exc: SitebotError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status,
        content={"success": False, "error": exc.to_dict()},
    )


def create_app(config: SitebotConfig, services: Services | None = None) -> FastAPI:
    """Build the FastAPI application and initialise the database schema."""
    database = Database(config.storage.db_path)
    with database as conn:
        initialize(conn)

    app = FastAPI(title="Sitebot", version="0.1.0")
    app.state.database = database
    app.state.services = services if services is not None else Services.from_config(config)
    app.add_exception_handler(SitebotError, _sitebot_error_handler)
    app.include_router(router)
    return app
