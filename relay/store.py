"""
Fail-soft persistence gateway used by the message pipeline.

Every pipeline-facing method opens its own short session, commits, and
converts storage faults into logged defaults.  Conversation logging must
never stop a reply from being delivered.

If the tables cannot be found when the store is built, it runs in
degraded mode: reads return empty results, user lookups return a
synthesized user, writes do nothing, and persona mutations raise
:class:`StoreUnavailableError`.
"""

from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import inspect
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from . import crud
from .database import SessionLocal
from .logging import get_logger
from .models import Assistant, Dialog, User, utcnow
from .utils import display_name

logger = get_logger(__name__)

REQUIRED_TABLES = ("users", "dialogs", "assistants")


class StoreUnavailableError(Exception):
    """Raised by persona mutations when storage cannot be used."""


class ConversationStore:
    """Row-level access to users, dialogs and assistants."""

    def __init__(self, session_factory: Callable[[], Session] = SessionLocal):
        self._session_factory = session_factory
        self.available = self._probe()

    def _probe(self) -> bool:
        try:
            with self._session_factory() as db:
                inspector = inspect(db.get_bind())
                missing = [t for t in REQUIRED_TABLES if not inspector.has_table(t)]
        except SQLAlchemyError as exc:
            logger.error("store_probe_failed", error=str(exc))
            return False
        if missing:
            logger.error("store_tables_missing", tables=missing)
            return False
        return True

    # -- users -----------------------------------------------------------

    def get_or_create_user(
        self, tg_id: int, first_name: str, last_name: Optional[str] = None
    ) -> User:
        """Return the user row, creating it on first contact.

        An existing user gets ``last_activity`` refreshed.  On any storage
        fault an unpersisted user built from the arguments is returned.
        """
        if not self.available:
            return self._synthesized_user(tg_id, first_name, last_name)
        try:
            with self._session_factory() as db:
                user = crud.get_user(db, tg_id)
                if user is None:
                    try:
                        user = crud.create_user(
                            db, tg_id=tg_id, first_name=first_name, last_name=last_name
                        )
                        db.commit()
                        logger.info("user_created", tg_id=tg_id)
                        return user
                    except IntegrityError:
                        # Another request inserted the same identity first.
                        db.rollback()
                        user = crud.get_user(db, tg_id)
                        if user is None:
                            raise
                user.last_activity = max(utcnow(), user.last_activity)
                db.commit()
                return user
        except SQLAlchemyError as exc:
            logger.error("get_or_create_user_failed", tg_id=tg_id, error=str(exc))
            return self._synthesized_user(tg_id, first_name, last_name)

    @staticmethod
    def _synthesized_user(tg_id: int, first_name: str, last_name: Optional[str]) -> User:
        now = utcnow()
        return User(
            tg_id=tg_id,
            full_name=display_name(first_name, last_name),
            is_blocked=False,
            last_activity=now,
            created_at=now,
        )

    # -- dialogs ---------------------------------------------------------

    def append_message(
        self, tg_id: int, role: str, content: str, metadata: Optional[str] = None
    ) -> None:
        if not self.available:
            return
        try:
            with self._session_factory() as db:
                crud.create_dialog(db, tg_id=tg_id, role=role, content=content, meta=metadata)
                db.commit()
        except SQLAlchemyError as exc:
            logger.error("append_message_failed", tg_id=tg_id, role=role, error=str(exc))

    def recent_messages(self, tg_id: int, limit: int) -> List[Dialog]:
        """Return up to ``limit`` most recent dialogs in chronological order."""
        if not self.available:
            return []
        try:
            with self._session_factory() as db:
                return crud.get_last_n_dialogs(db, tg_id, limit)
        except SQLAlchemyError as exc:
            logger.error("recent_messages_failed", tg_id=tg_id, error=str(exc))
            return []

    # -- assistants ------------------------------------------------------

    def list_personas(self) -> List[Assistant]:
        if not self.available:
            return []
        try:
            with self._session_factory() as db:
                return crud.list_assistants(db)
        except SQLAlchemyError as exc:
            logger.error("list_personas_failed", error=str(exc))
            return []

    def get_persona(self, assistant_id: str) -> Optional[Assistant]:
        if not self.available:
            return None
        try:
            with self._session_factory() as db:
                return crud.get_assistant(db, assistant_id)
        except SQLAlchemyError as exc:
            logger.error("get_persona_failed", assistant_id=assistant_id, error=str(exc))
            return None

    def create_persona(self, fields: Dict[str, Any]) -> Assistant:
        self._require_available()
        try:
            with self._session_factory() as db:
                assistant = crud.create_assistant(db, fields)
                db.commit()
        except SQLAlchemyError as exc:
            logger.error("create_persona_failed", error=str(exc))
            raise StoreUnavailableError("failed to create assistant") from exc
        logger.info("persona_created", assistant_id=assistant.id)
        return assistant

    def update_persona(self, assistant_id: str, fields: Dict[str, Any]) -> Optional[Assistant]:
        """Apply a partial update; returns None when the persona does not exist."""
        self._require_available()
        try:
            with self._session_factory() as db:
                assistant = crud.get_assistant(db, assistant_id)
                if assistant is None:
                    return None
                crud.update_assistant(db, assistant, fields)
                db.commit()
        except SQLAlchemyError as exc:
            logger.error("update_persona_failed", assistant_id=assistant_id, error=str(exc))
            raise StoreUnavailableError("failed to update assistant") from exc
        return assistant

    def delete_persona(self, assistant_id: str) -> bool:
        self._require_available()
        try:
            with self._session_factory() as db:
                assistant = crud.get_assistant(db, assistant_id)
                if assistant is None:
                    return False
                db.delete(assistant)
                db.commit()
        except SQLAlchemyError as exc:
            logger.error("delete_persona_failed", assistant_id=assistant_id, error=str(exc))
            raise StoreUnavailableError("failed to delete assistant") from exc
        logger.info("persona_deleted", assistant_id=assistant_id)
        return True

    def _require_available(self) -> None:
        if not self.available:
            raise StoreUnavailableError("storage is unavailable")
