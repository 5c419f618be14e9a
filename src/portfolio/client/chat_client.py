from __future__ import annotations

"""HTTP client for the chat endpoint, mirroring what the site widget does.

Guests are identified by an identifier persisted on the device (see
``GuestIdentityProvider``); signed-in visitors pass their account id instead.
"""

import json
import logging
import threading
from pathlib import Path
from typing import Any, Dict, Optional

import requests
from pydantic import ValidationError as PydanticValidationError

from ..domain.chat_models import ChatReply, ConversationView
from ..domain.errors import GENERIC_FAILURE_MESSAGE
from ..domain.identity import GuestIdentityProvider

LOG = logging.getLogger("portfolio.client")


class ChatClientError(Exception):
    def __init__(self, error: str, details: str = "", status_code: Optional[int] = None) -> None:
        super().__init__(f"{error}: {details}" if details else error)
        self.error = error
        self.details = details
        self.status_code = status_code


class FileIdentityStorage:
    """JSON-file key/value storage, standing in for the browser's local storage."""

    def __init__(self, path: Path | str) -> None:
        self._path = Path(path)
        self._lock = threading.Lock()

    def _load(self) -> Dict[str, str]:
        if not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError):
            LOG.warning("identity_storage_unreadable path=%s", self._path)
            return {}
        return {str(k): str(v) for k, v in data.items()} if isinstance(data, dict) else {}

    def _dump(self, data: Dict[str, str]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._load().get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            data = self._load()
            data[key] = value
            self._dump(data)

    def remove(self, key: str) -> None:
        with self._lock:
            data = self._load()
            if data.pop(key, None) is not None:
                self._dump(data)


class ChatClient:
    def __init__(
        self,
        base_url: str,
        provider: GuestIdentityProvider,
        account_id: Optional[str] = None,
        session: Optional[requests.Session] = None,
        timeout: float = 70.0,
    ) -> None:
        self._base = base_url.rstrip("/")
        self._provider = provider
        self._account_id = account_id
        self._session = session or requests.Session()
        self._timeout = timeout

    def _identity_params(self) -> Dict[str, str]:
        if self._account_id:
            return {"userId": self._account_id}
        return {"userIdentifier": self._provider.get_or_create()}

    @staticmethod
    def _failure(resp: requests.Response) -> ChatClientError:
        try:
            body = resp.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}
        error = str(body.get("error") or body.get("detail") or GENERIC_FAILURE_MESSAGE)
        details = str(body.get("details") or resp.text or "")
        return ChatClientError(error, details, status_code=resp.status_code)

    def _call(self, method: str, path: str, **kwargs: Any) -> requests.Response:
        try:
            return self._session.request(method, f"{self._base}{path}", timeout=self._timeout, **kwargs)
        except requests.RequestException as exc:
            raise ChatClientError(GENERIC_FAILURE_MESSAGE, str(exc)) from exc

    def send_message(self, text: str) -> Optional[ChatReply]:
        """Send one message; blank input is ignored and returns ``None``."""
        message = (text or "").strip()
        if not message:
            return None
        payload: Dict[str, Any] = {"message": message, **self._identity_params()}
        resp = self._call("POST", "/chat-with-ai", json=payload)
        if not resp.ok:
            raise self._failure(resp)
        try:
            return ChatReply.model_validate(resp.json())
        except (ValueError, PydanticValidationError) as exc:
            raise ChatClientError(GENERIC_FAILURE_MESSAGE, f"Unexpected response: {exc}") from exc

    def load_conversation(self) -> Optional[ConversationView]:
        resp = self._call("GET", "/chat/conversation", params=self._identity_params())
        if resp.status_code == 404:
            return None
        if not resp.ok:
            raise self._failure(resp)
        try:
            return ConversationView.model_validate(resp.json())
        except (ValueError, PydanticValidationError) as exc:
            raise ChatClientError(GENERIC_FAILURE_MESSAGE, f"Unexpected response: {exc}") from exc

    def clear_conversation(self) -> None:
        """Delete the stored conversation and start over with a fresh guest identifier."""
        resp = self._call("DELETE", "/chat/conversation", params=self._identity_params())
        if not resp.ok and resp.status_code != 404:
            raise self._failure(resp)
        if not self._account_id:
            self._provider.reset()
