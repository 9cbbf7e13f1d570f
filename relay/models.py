"""
ORM models for the Telegram relay.

This module defines three tables:

* **User** – one row per Telegram account that ever wrote to the bot.
  Profile fields (``fio``, ``phone``, ``city``, ``adress``) exist for
  the admin panel and are never filled by the pipeline.
* **Dialog** – every inbound and outbound turn, append-only.  The
  ``metadata`` column holds an optional JSON string describing
  auxiliary facts such as a received attachment.
* **Assistant** – persona records managed through the admin API.
"""

import datetime

from sqlalchemy import BigInteger, Boolean, Column, DateTime, ForeignKey, Integer, String, Text

from .database import Base

ROLES = ("user", "assistant", "system")


def utcnow() -> datetime.datetime:
    """Naive UTC now, the form SQLite round-trips unchanged."""
    return datetime.datetime.now(datetime.timezone.utc).replace(tzinfo=None)


def _iso(value):
    return value.isoformat() if value is not None else None


class User(Base):
    __tablename__ = "users"

    tg_id = Column(BigInteger, primary_key=True, autoincrement=False)
    full_name = Column(String(255), nullable=True)
    fio = Column(String(255), nullable=True)
    phone = Column(String(50), nullable=True)
    city = Column(String(100), nullable=True)
    adress = Column(String(255), nullable=True)
    is_blocked = Column(Boolean, nullable=False, default=False)
    last_activity = Column(DateTime, nullable=False, default=utcnow)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    def to_dict(self) -> dict:
        """Return a JSON serialisable representation of this user."""
        return {
            "tg_id": self.tg_id,
            "full_name": self.full_name,
            "fio": self.fio,
            "phone": self.phone,
            "city": self.city,
            "adress": self.adress,
            "is_blocked": bool(self.is_blocked),
            "last_activity": _iso(self.last_activity),
            "created_at": _iso(self.created_at),
        }


class Dialog(Base):
    __tablename__ = "dialogs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    session_id = Column(String(64), nullable=False)
    tg_id = Column(BigInteger, ForeignKey("users.tg_id"), nullable=False, index=True)
    timestamp = Column(DateTime, nullable=False, default=utcnow, index=True)
    role = Column(String(20), nullable=False)
    content = Column(Text, nullable=False)
    # ``metadata`` is reserved on declarative classes.
    meta = Column("metadata", Text, nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "session_id": self.session_id,
            "tg_id": self.tg_id,
            "timestamp": _iso(self.timestamp),
            "role": self.role,
            "content": self.content,
            "metadata": self.meta,
        }


class Assistant(Base):
    __tablename__ = "assistants"

    id = Column(String(64), primary_key=True)
    name = Column(String(255), nullable=False)
    type = Column(String(20), nullable=False, default="ai")
    system_prompt = Column(Text, nullable=False)
    tov_snippet = Column(Text, nullable=True)
    handoff_rules = Column(Text, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "type": self.type,
            "system_prompt": self.system_prompt,
            "tov_snippet": self.tov_snippet,
            "handoff_rules": self.handoff_rules,
            "is_active": bool(self.is_active),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }
