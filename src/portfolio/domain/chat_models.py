from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional
from pydantic import BaseModel, ConfigDict, Field


Role = Literal["user", "assistant"]


class ChatMessage(BaseModel):
    role: Role
    content: str
    timestamp: str


class Conversation(BaseModel):
    id: str
    user_id: Optional[str] = None
    user_identifier: Optional[str] = None
    title: Optional[str] = None
    messages: List[ChatMessage] = Field(default_factory=list)
    last_topic: Optional[str] = None
    context_summary: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class ChatRequest(BaseModel):
    """Inbound body of the chat endpoint.

    Every field is optional at the schema level so that a missing message is
    reported through the chat error contract instead of a 422.
    """

    model_config = ConfigDict(populate_by_name=True)

    message: Optional[str] = None
    user_id: Optional[str] = Field(default=None, alias="userId")
    user_identifier: Optional[str] = Field(default=None, alias="userIdentifier")


class ChatReply(BaseModel):
    response: str
    conversation_id: str
    timestamp: str


class ChatErrorBody(BaseModel):
    error: str
    details: str


class ConversationView(BaseModel):
    id: str
    title: Optional[str] = None
    messages: List[ChatMessage]
    last_topic: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


def parse_messages(raw: Any) -> List[ChatMessage]:
    """Keep only well-formed entries of a stored message log."""
    if not isinstance(raw, list):
        return []
    out: List[ChatMessage] = []
    for item in raw:
        if not isinstance(item, dict):
            continue
        role = item.get("role")
        content = item.get("content")
        timestamp = item.get("timestamp")
        if role not in ("user", "assistant"):
            continue
        if not isinstance(content, str) or not isinstance(timestamp, str):
            continue
        out.append(ChatMessage(role=role, content=content, timestamp=timestamp))
    return out


def dump_messages(messages: List[ChatMessage]) -> List[Dict[str, str]]:
    return [m.model_dump() for m in messages]
