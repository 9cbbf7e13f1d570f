"""
Query helpers for the Telegram relay.

These functions encapsulate database queries and inserts.  They keep
the admin routes and :class:`relay.store.ConversationStore` free of
SQL details.  All functions expect a SQLAlchemy session; committing is
left to the caller (``database.get_db()`` for routes, the store for
the pipeline).
"""

import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import func, select, text
from sqlalchemy.orm import Session

from .models import ROLES, Assistant, Dialog, User, utcnow
from .utils import display_name, make_session_id, new_assistant_id

ASSISTANT_FIELDS = ("name", "type", "system_prompt", "tov_snippet", "handoff_rules", "is_active")
# Columns that cannot be cleared by an update.
REQUIRED_ASSISTANT_FIELDS = frozenset({"name", "type", "system_prompt", "is_active"})


def get_user(db: Session, tg_id: int) -> Optional[User]:
    return db.get(User, tg_id)


def create_user(
    db: Session,
    *,
    tg_id: int,
    first_name: str,
    last_name: Optional[str] = None,
    now: Optional[datetime.datetime] = None,
) -> User:
    """Create a user row with both timestamps set to ``now``."""
    now = now or utcnow()
    user = User(
        tg_id=tg_id,
        full_name=display_name(first_name, last_name),
        is_blocked=False,
        last_activity=now,
        created_at=now,
    )
    db.add(user)
    db.flush()
    return user


def create_dialog(
    db: Session,
    *,
    tg_id: int,
    role: str,
    content: str,
    meta: Optional[str] = None,
) -> Dialog:
    """Append one dialog row."""
    if role not in ROLES:
        raise ValueError(f"unknown dialog role: {role}")
    now = utcnow()
    dialog = Dialog(
        session_id=make_session_id(tg_id),
        tg_id=tg_id,
        timestamp=now,
        role=role,
        content=content,
        meta=meta,
    )
    db.add(dialog)
    return dialog


def get_last_n_dialogs(db: Session, tg_id: int, limit: int) -> List[Dialog]:
    """Return the last ``limit`` dialogs of a user sorted ascending."""
    if limit <= 0:
        return []
    stmt = (
        select(Dialog)
        .where(Dialog.tg_id == tg_id)
        .order_by(Dialog.id.desc())
        .limit(limit)
    )
    # reversed to ascending order in memory
    return list(reversed(list(db.scalars(stmt))))


def get_user_dialogs(db: Session, tg_id: int) -> List[Dialog]:
    stmt = select(Dialog).where(Dialog.tg_id == tg_id).order_by(Dialog.id.asc())
    return list(db.scalars(stmt))


def get_dialogs_page(db: Session, page: int, limit: int) -> List[Dict[str, Any]]:
    """Return one page of dialogs, newest first, with the sender's name."""
    offset = (max(page, 1) - 1) * limit
    stmt = (
        select(Dialog, User.full_name)
        .join(User, User.tg_id == Dialog.tg_id, isouter=True)
        .order_by(Dialog.id.desc())
        .offset(offset)
        .limit(limit)
    )
    rows = []
    for dialog, full_name in db.execute(stmt):
        item = dialog.to_dict()
        item["full_name"] = full_name
        rows.append(item)
    return rows


def get_recent_users(db: Session, limit: int = 100) -> List[User]:
    stmt = select(User).order_by(User.created_at.desc()).limit(limit)
    return list(db.scalars(stmt))


def count_rows(db: Session) -> Dict[str, int]:
    """Return row counts for the three tables."""
    return {
        "users": db.scalar(select(func.count()).select_from(User)) or 0,
        "dialogs": db.scalar(select(func.count()).select_from(Dialog)) or 0,
        "assistants": db.scalar(select(func.count()).select_from(Assistant)) or 0,
    }


def list_assistants(db: Session) -> List[Assistant]:
    stmt = select(Assistant).order_by(Assistant.created_at.desc())
    return list(db.scalars(stmt))


def get_assistant(db: Session, assistant_id: str) -> Optional[Assistant]:
    return db.get(Assistant, assistant_id)


def create_assistant(db: Session, fields: Dict[str, Any]) -> Assistant:
    now = utcnow()
    assistant = Assistant(
        id=new_assistant_id(),
        name=fields["name"],
        type=fields.get("type") or "ai",
        system_prompt=fields["system_prompt"],
        tov_snippet=fields.get("tov_snippet"),
        handoff_rules=fields.get("handoff_rules"),
        is_active=bool(fields.get("is_active", True)),
        created_at=now,
        updated_at=now,
    )
    db.add(assistant)
    return assistant


def update_assistant(db: Session, assistant: Assistant, fields: Dict[str, Any]) -> Assistant:
    """Apply only the fields present in ``fields`` and refresh ``updated_at``."""
    for name in ASSISTANT_FIELDS:
        if name not in fields:
            continue
        if fields[name] is None and name in REQUIRED_ASSISTANT_FIELDS:
            continue
        setattr(assistant, name, fields[name])
    assistant.updated_at = utcnow()
    return assistant


def run_read_query(db: Session, query: str) -> List[Dict[str, Any]]:
    """Execute a raw statement and return its rows as dicts."""
    result = db.execute(text(query))
    if not result.returns_rows:
        return []
    return [dict(row) for row in result.mappings()]
