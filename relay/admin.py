"""
Admin API for the Telegram relay.

Read endpoints over users and dialogs, CRUD over assistants, table
counts and a raw read-only query passthrough.  Mounted under
``/api/admin``; CORS is handled by the application middleware.
"""

import datetime
from typing import Any, Dict, List

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from . import crud
from .database import get_db, get_readonly_db
from .logging import get_logger
from .schemas import AssistantCreate, AssistantUpdate, QueryRequest
from .store import ConversationStore, StoreUnavailableError
from .utils import is_read_only_query

logger = get_logger(__name__)

router = APIRouter(prefix="/api/admin", tags=["admin"])


def get_store(request: Request) -> ConversationStore:
    return request.app.state.store


@router.get("/stats")
def stats(db: Session = Depends(get_db)) -> Dict[str, Any]:
    counts: Dict[str, Any] = crud.count_rows(db)
    counts["timestamp"] = datetime.datetime.now(datetime.timezone.utc).isoformat()
    return counts


@router.get("/users")
def users(db: Session = Depends(get_db)) -> List[Dict[str, Any]]:
    return [u.to_dict() for u in crud.get_recent_users(db, limit=100)]


@router.get("/dialogs")
def dialogs(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=50, ge=1, le=500),
    db: Session = Depends(get_db),
) -> List[Dict[str, Any]]:
    """Return one page of dialogs, newest first."""
    return crud.get_dialogs_page(db, page, limit)


@router.get("/dialogs/{tg_id}")
def user_dialogs(tg_id: int, db: Session = Depends(get_db)) -> List[Dict[str, Any]]:
    """Return a user's whole conversation in chronological order."""
    return [d.to_dict() for d in crud.get_user_dialogs(db, tg_id)]


@router.get("/assistants")
def list_assistants(store: ConversationStore = Depends(get_store)) -> List[Dict[str, Any]]:
    return [a.to_dict() for a in store.list_personas()]


@router.post("/assistants")
def create_assistant(
    body: AssistantCreate, store: ConversationStore = Depends(get_store)
) -> Dict[str, Any]:
    try:
        assistant = store.create_persona(body.model_dump())
    except StoreUnavailableError as exc:
        raise HTTPException(status_code=503, detail=str(exc))
    return assistant.to_dict()


@router.put("/assistants/{assistant_id}")
def update_assistant(
    assistant_id: str,
    body: AssistantUpdate,
    store: ConversationStore = Depends(get_store),
) -> Dict[str, Any]:
    try:
        assistant = store.update_persona(assistant_id, body.model_dump(exclude_unset=True))
    except StoreUnavailableError as exc:
        raise HTTPException(status_code=503, detail=str(exc))
    if assistant is None:
        raise HTTPException(status_code=404, detail="Assistant not found")
    return assistant.to_dict()


@router.delete("/assistants/{assistant_id}")
def delete_assistant(
    assistant_id: str, store: ConversationStore = Depends(get_store)
) -> Dict[str, bool]:
    try:
        deleted = store.delete_persona(assistant_id)
    except StoreUnavailableError as exc:
        raise HTTPException(status_code=503, detail=str(exc))
    if not deleted:
        raise HTTPException(status_code=404, detail="Assistant not found")
    return {"success": True}


@router.post("/query")
@router.post("/direct-query")
def direct_query(body: QueryRequest, db: Session = Depends(get_readonly_db)) -> Any:
    """Run a read statement and return its rows.

    Only statements whose first keyword is SELECT, WITH, PRAGMA or
    EXPLAIN reach the database, and the session is rolled back
    afterwards whatever the statement did.
    """
    query = (body.query or "").strip()
    if not query:
        raise HTTPException(status_code=400, detail="Query is required")
    if not is_read_only_query(query):
        logger.warning("query_rejected", query=query[:200])
        raise HTTPException(status_code=400, detail="Only read queries are allowed")

    logger.info("query_executing", query=query[:200])
    try:
        rows = crud.run_read_query(db, query)
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("query_failed", error=str(exc))
        error = getattr(exc, "orig", None) or exc
        return JSONResponse(status_code=500, content={"success": False, "error": str(error)})
    return {"success": True, "data": rows}
