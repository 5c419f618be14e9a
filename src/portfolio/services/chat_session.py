from __future__ import annotations

import logging
from typing import Callable, List, Optional, TypeVar

from ..domain.chat_models import ChatMessage, ChatReply, ChatRequest, Conversation
from ..domain.errors import ChatError, PersistenceError, UpstreamError, ValidationError
from ..domain.identity import CallerIdentity
from ..infrastructure.content_repository import ContentRepository, get_content_repository
from ..infrastructure.conversation_store import ConversationStore, get_conversation_store
from ..infrastructure.events import publish_event
from ..infrastructure.gateway import now_iso
from .completion_client import CompletionClient, get_completion_client
from .prompt_assembler import assemble_prompt, render_context

LOG = logging.getLogger("portfolio.chat")

TITLE_LENGTH = 50
TOPIC_LENGTH = 100

T = TypeVar("T")


def derive_title(message: str) -> str:
    return message[:TITLE_LENGTH] + ("..." if len(message) > TITLE_LENGTH else "")


class ChatSessionHandler:
    """Turns one inbound user message into one assistant reply.

    The conversation is written exactly once, after the completion is
    obtained. Any failure before that point leaves storage untouched, so a
    client may resend the same message without duplicating the user turn.
    """

    def __init__(
        self,
        store: ConversationStore,
        content: ContentRepository,
        completion: CompletionClient,
        clock: Callable[[], str] = now_iso,
    ) -> None:
        self._store = store
        self._content = content
        self._completion = completion
        self._clock = clock

    def handle(self, request: ChatRequest) -> ChatReply:
        message = request.message
        if message is None or not message.strip():
            raise ValidationError("Message is required")
        identity = CallerIdentity.from_request(request.user_id, request.user_identifier)
        return self.reply(message, identity)

    def reply(self, message: str, identity: CallerIdentity) -> ChatReply:
        conversation = self._persist(lambda: self._store.find_by_identity(identity))
        prior: List[ChatMessage] = list(conversation.messages) if conversation else []

        user_msg = ChatMessage(role="user", content=message, timestamp=self._clock())
        updated = prior + [user_msg]
        prompt = self._build_prompt(updated, message)

        text = self._complete(prompt)
        assistant_msg = ChatMessage(role="assistant", content=text, timestamp=self._clock())
        final = updated + [assistant_msg]

        saved = self._save(identity, conversation, message, final)
        LOG.info(
            "chat_turn_completed",
            extra={
                "conversation_id": saved.id,
                "identity_kind": identity.kind,
                "message_count": len(saved.messages),
            },
        )
        publish_event(
            "chat.turn_completed",
            {"conversation_id": saved.id, "identity_kind": identity.kind, "message_count": len(saved.messages)},
        )
        return ChatReply(response=text, conversation_id=saved.id, timestamp=self._clock())

    def _build_prompt(self, messages: List[ChatMessage], message: str) -> str:
        instructions = self._persist(self._content.load_instructions)
        projects = self._persist(self._content.list_active_projects)
        settings = self._persist(self._content.load_settings)
        return assemble_prompt(instructions, projects, settings, render_context(messages), message)

    def _complete(self, prompt: str) -> str:
        try:
            return self._completion.complete(prompt)
        except ChatError:
            raise
        except Exception as exc:
            LOG.exception("llm_client_crashed: %r", exc)
            raise UpstreamError(f"Completion client failed: {exc}") from exc

    def _save(
        self,
        identity: CallerIdentity,
        conversation: Optional[Conversation],
        message: str,
        messages: List[ChatMessage],
    ) -> Conversation:
        topic = message[:TOPIC_LENGTH]
        updated_at = self._clock()
        if conversation is None:
            return self._persist(
                lambda: self._store.create(
                    identity,
                    title=derive_title(message),
                    messages=messages,
                    last_topic=topic,
                    updated_at=updated_at,
                )
            )
        return self._persist(
            lambda: self._store.upsert_messages(
                conversation.id,
                messages,
                last_topic=topic,
                updated_at=updated_at,
            )
        )

    @staticmethod
    def _persist(op: Callable[[], T]) -> T:
        try:
            return op()
        except ChatError:
            raise
        except Exception as exc:
            LOG.exception("gateway_call_failed: %r", exc)
            raise PersistenceError(f"Store operation failed: {exc}") from exc


_handler: ChatSessionHandler | None = None


def get_chat_handler() -> ChatSessionHandler:
    global _handler
    if _handler is None:
        _handler = ChatSessionHandler(
            store=get_conversation_store(),
            content=get_content_repository(),
            completion=get_completion_client(),
        )
    return _handler
