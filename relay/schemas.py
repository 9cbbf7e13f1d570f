"""Request bodies for the admin API."""

from typing import Literal, Optional

from pydantic import BaseModel, Field

AssistantType = Literal["ai", "function"]


class AssistantCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    type: AssistantType = "ai"
    system_prompt: str = Field(min_length=1)
    tov_snippet: Optional[str] = None
    handoff_rules: Optional[str] = None
    is_active: bool = True


class AssistantUpdate(BaseModel):
    """Partial update; only fields sent by the client are applied."""

    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    type: Optional[AssistantType] = None
    system_prompt: Optional[str] = Field(default=None, min_length=1)
    tov_snippet: Optional[str] = None
    handoff_rules: Optional[str] = None
    is_active: Optional[bool] = None


class QueryRequest(BaseModel):
    query: Optional[str] = None
