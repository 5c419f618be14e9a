from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, Response, status
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from pydantic import ValidationError as PydanticValidationError

from ...domain.chat_models import ChatErrorBody, ChatRequest, ConversationView
from ...domain.errors import ChatError, GENERIC_FAILURE_MESSAGE, ValidationError
from ...domain.identity import CallerIdentity
from ...infrastructure.conversation_store import ConversationStore, get_conversation_store
from ...infrastructure.events import publish_event
from ...observability.metrics import CHAT_TURNS
from ...security.rate_limit import RateLimitExceeded, limit_chat_turn
from ...services.chat_session import ChatSessionHandler, get_chat_handler

LOG = logging.getLogger("portfolio.chat")

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "authorization, x-client-info, apikey, content-type",
}

router = APIRouter(tags=["chat"])


def _error_response(exc: ChatError, status_code: int = 500) -> JSONResponse:
    body = ChatErrorBody(error=exc.user_message, details=exc.details)
    return JSONResponse(status_code=status_code, content=body.model_dump(), headers=CORS_HEADERS)


def _turn_failed(exc: ChatError) -> JSONResponse:
    CHAT_TURNS.labels(outcome=exc.outcome).inc()
    LOG.warning("chat_turn_failed outcome=%s details=%s", exc.outcome, exc.details)
    return _error_response(exc)


async def _read_chat_request(request: Request) -> ChatRequest:
    """Parse the body here so malformed input follows the chat error contract."""
    try:
        payload = await request.json()
    except ValueError as exc:
        raise ValidationError(f"Request body is not valid JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object")
    try:
        return ChatRequest.model_validate(payload)
    except PydanticValidationError as exc:
        fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in exc.errors())
        raise ValidationError(f"Invalid request body: {fields}") from exc


@router.options("/chat-with-ai")
def chat_preflight() -> Response:
    return Response(status_code=status.HTTP_200_OK, headers=CORS_HEADERS)


@router.post("/chat-with-ai")
async def chat_with_ai(request: Request, handler: ChatSessionHandler = Depends(get_chat_handler)) -> JSONResponse:
    try:
        req = await _read_chat_request(request)
    except ChatError as exc:
        return _turn_failed(exc)

    caller_key = req.user_id or req.user_identifier
    if caller_key:
        try:
            limit_chat_turn(caller_key)
        except RateLimitExceeded as exc:
            CHAT_TURNS.labels(outcome="rate_limited").inc()
            LOG.warning("chat_turn_rate_limited retry_after=%s", exc.retry_after_seconds)
            body = ChatErrorBody(error=GENERIC_FAILURE_MESSAGE, details="Rate limit exceeded")
            return JSONResponse(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                content=body.model_dump(),
                headers={**CORS_HEADERS, "Retry-After": str(exc.retry_after_seconds)},
            )

    try:
        # the handler does blocking I/O
        reply = await run_in_threadpool(handler.handle, req)
    except ChatError as exc:
        return _turn_failed(exc)
    except Exception as exc:
        CHAT_TURNS.labels(outcome="error").inc()
        LOG.exception("chat_turn_crashed: %r", exc)
        body = ChatErrorBody(error=GENERIC_FAILURE_MESSAGE, details=repr(exc))
        return JSONResponse(status_code=500, content=body.model_dump(), headers=CORS_HEADERS)

    CHAT_TURNS.labels(outcome="ok").inc()
    return JSONResponse(content=reply.model_dump(), headers=CORS_HEADERS)


def _identity(user_id: Optional[str], user_identifier: Optional[str]) -> CallerIdentity:
    return CallerIdentity.from_request(user_id, user_identifier)


def _lookup_error(exc: ChatError) -> JSONResponse:
    return _error_response(exc, status_code=400 if isinstance(exc, ValidationError) else 500)


@router.get("/chat/conversation", response_model=ConversationView)
def get_conversation(
    user_id: Optional[str] = Query(None, alias="userId"),
    user_identifier: Optional[str] = Query(None, alias="userIdentifier"),
    store: ConversationStore = Depends(get_conversation_store),
):
    try:
        conversation = store.find_by_identity(_identity(user_id, user_identifier))
    except ChatError as exc:
        return _lookup_error(exc)
    if conversation is None:
        return JSONResponse(status_code=404, content={"detail": "Conversation not found"}, headers=CORS_HEADERS)
    return ConversationView(
        id=conversation.id,
        title=conversation.title,
        messages=conversation.messages,
        last_topic=conversation.last_topic,
        created_at=conversation.created_at,
        updated_at=conversation.updated_at,
    )


@router.delete("/chat/conversation", status_code=status.HTTP_204_NO_CONTENT)
def clear_conversation(
    user_id: Optional[str] = Query(None, alias="userId"),
    user_identifier: Optional[str] = Query(None, alias="userIdentifier"),
    store: ConversationStore = Depends(get_conversation_store),
) -> Response:
    try:
        identity = _identity(user_id, user_identifier)
        removed = store.delete_by_identity(identity)
    except ChatError as exc:
        return _lookup_error(exc)
    LOG.info("chat_conversation_cleared", extra={"identity_kind": identity.kind, "removed": removed})
    if removed:
        publish_event("chat.conversation_cleared", {"identity_kind": identity.kind})
    return Response(status_code=status.HTTP_204_NO_CONTENT)
