from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from ..domain.chat_models import ChatMessage, Conversation, dump_messages, parse_messages
from ..domain.errors import ConflictError
from ..domain.identity import CallerIdentity
from .gateway import PersistenceGateway, get_gateway

LOG = logging.getLogger("portfolio.chat")

TABLE = "chat_conversations"


class ConversationStore:
    """Access to ``chat_conversations``: one row per account or guest identifier."""

    def __init__(self, gateway: PersistenceGateway) -> None:
        self._gateway = gateway

    def _to_conversation(self, row: Dict[str, Any]) -> Conversation:
        return Conversation(
            id=str(row.get("id")),
            user_id=row.get("user_id"),
            user_identifier=row.get("user_identifier"),
            title=row.get("title"),
            messages=parse_messages(row.get("messages")),
            last_topic=row.get("last_topic"),
            context_summary=row.get("context_summary"),
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
        )

    def find_by_identity(self, identity: CallerIdentity) -> Optional[Conversation]:
        rows = self._gateway.select(
            TABLE,
            filters={identity.column: identity.value},
            order_by="created_at",
            limit=1,
        )
        if not rows:
            return None
        return self._to_conversation(rows[0])

    def create(
        self,
        identity: CallerIdentity,
        *,
        title: str,
        messages: List[ChatMessage],
        last_topic: str,
        updated_at: str,
    ) -> Conversation:
        """Insert a complete conversation row in one write.

        A concurrent first contact from the same identity surfaces as a
        conflict; the row that won is then extended with ``messages``.
        """
        row = {
            "user_id": identity.account_id,
            "user_identifier": identity.guest_id,
            "title": title,
            "messages": dump_messages(messages),
            "last_topic": last_topic,
            "updated_at": updated_at,
        }
        try:
            return self._to_conversation(self._gateway.insert(TABLE, row))
        except ConflictError:
            existing = self.find_by_identity(identity)
            if existing is None:
                raise
            LOG.info("gateway_conflict_recovered", extra={"conversation_id": existing.id, "identity_kind": identity.kind})
            return self.upsert_messages(
                existing.id,
                existing.messages + messages,
                last_topic=last_topic,
                updated_at=updated_at,
            )

    def upsert_messages(
        self,
        conversation_id: str,
        messages: List[ChatMessage],
        *,
        last_topic: str,
        updated_at: str,
    ) -> Conversation:
        row = self._gateway.update_by_id(
            TABLE,
            conversation_id,
            {
                "messages": dump_messages(messages),
                "last_topic": last_topic,
                "updated_at": updated_at,
            },
        )
        return self._to_conversation(row)

    def delete_by_identity(self, identity: CallerIdentity) -> int:
        return self._gateway.delete(TABLE, filters={identity.column: identity.value})


_store: ConversationStore | None = None


def get_conversation_store() -> ConversationStore:
    global _store
    if _store is None:
        _store = ConversationStore(get_gateway())
    return _store
