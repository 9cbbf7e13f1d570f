"""
Conversation context assembly.

Turns the stored dialog log into the ordered turn list sent to Gemini.
``system`` rows are never forwarded; instructions travel separately as
the request's system instruction.
"""

from dataclasses import dataclass
from typing import Dict, List

from .store import ConversationStore

# Stored role -> Gemini role.
ROLE_MAP: Dict[str, str] = {
    "user": "user",
    "assistant": "model",
}


@dataclass(frozen=True)
class Turn:
    role: str
    content: str


def assemble_context(store: ConversationStore, tg_id: int, max_turns: int) -> List[Turn]:
    """Return the user's last ``max_turns`` dialogs as Gemini turns, oldest first."""
    turns: List[Turn] = []
    for dialog in store.recent_messages(tg_id, max_turns):
        role = ROLE_MAP.get(dialog.role)
        if role is None:
            continue
        turns.append(Turn(role=role, content=dialog.content))
    return turns
