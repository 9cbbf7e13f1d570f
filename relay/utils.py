"""
Utility functions for the Telegram relay.

Small pure helpers shared by the store, the pipeline and the admin
routes: display names, session tokens, persona ids, attachment
metadata and the read-only guard for the raw query endpoint.
"""

import datetime
import json
import re
import uuid
from typing import Any, Dict, Optional

# First keywords accepted by the raw query endpoint.
READ_KEYWORDS = frozenset({"select", "with", "pragma", "explain"})

_SKIPPABLE = re.compile(r"\s+|--[^\n]*(?:\n|$)|/\*.*?(?:\*/|$)|[(;]", re.S)
_KEYWORD = re.compile(r"[A-Za-z_]+")


def display_name(first_name: Optional[str], last_name: Optional[str] = None) -> str:
    """Join Telegram's given and family names the way they are shown."""
    first = first_name or ""
    if last_name:
        return f"{first} {last_name}".strip()
    return first


def make_session_id(tg_id: int, now: Optional[datetime.datetime] = None) -> str:
    """Return the ``<tg_id>_<epoch millis>`` grouping token for a dialog row.

    The token only groups rows for display; it is not unique.
    """
    now = now or datetime.datetime.now(datetime.timezone.utc)
    return f"{tg_id}_{int(now.timestamp() * 1000)}"


def new_assistant_id() -> str:
    return f"assistant_{uuid.uuid4().hex}"


def attachment_metadata(kind: str, file_id: str, mime_type: Optional[str] = None) -> str:
    """Serialise an attachment reference for the dialog ``metadata`` column."""
    data: Dict[str, Any] = {"attachment": kind, "file_id": file_id}
    if mime_type:
        data["mime_type"] = mime_type
    return json.dumps(data, ensure_ascii=False)


def first_keyword(query: str) -> Optional[str]:
    """Return the statement's first keyword in lower case, or None.

    Leading whitespace, ``--`` and ``/* */`` comments, opening
    parentheses and semicolons are skipped first.  An unterminated block
    comment swallows the rest of the text.
    """
    pos = 0
    while True:
        match = _SKIPPABLE.match(query, pos)
        if match is None or match.end() == pos:
            break
        pos = match.end()
    match = _KEYWORD.match(query, pos)
    if match is None:
        return None
    return match.group(0).lower()


def is_read_only_query(query: str) -> bool:
    """Return True if the statement starts with a read keyword."""
    return first_keyword(query) in READ_KEYWORDS
