from __future__ import annotations

"""Caller identity for chat conversations.

A conversation belongs either to an authenticated account or to a guest
identifier generated on the visitor's device. Lookups always use exactly one
of the two.
"""

import secrets
import string
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Protocol

from .errors import ValidationError

GUEST_STORAGE_KEY = "ai_chat_session_id"
_BASE36 = string.digits + string.ascii_lowercase


@dataclass(frozen=True)
class CallerIdentity:
    account_id: Optional[str] = None
    guest_id: Optional[str] = None

    def __post_init__(self) -> None:
        if bool(self.account_id) == bool(self.guest_id):
            raise ValueError("exactly one of account_id or guest_id is required")

    @classmethod
    def from_request(cls, user_id: Optional[str], user_identifier: Optional[str]) -> "CallerIdentity":
        """Resolve the identity of an inbound request; the account id wins when both are sent."""
        account = (user_id or "").strip()
        guest = (user_identifier or "").strip()
        if account:
            return cls(account_id=account)
        if guest:
            return cls(guest_id=guest)
        raise ValidationError("Caller identity is required (userId or userIdentifier)")

    @property
    def is_guest(self) -> bool:
        return self.account_id is None

    @property
    def column(self) -> str:
        return "user_identifier" if self.is_guest else "user_id"

    @property
    def value(self) -> str:
        return self.guest_id if self.is_guest else self.account_id  # type: ignore[return-value]

    @property
    def kind(self) -> str:
        return "guest" if self.is_guest else "account"


class IdentityStorage(Protocol):
    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...

    def remove(self, key: str) -> None: ...


class MemoryIdentityStorage:
    def __init__(self, initial: Optional[Dict[str, str]] = None) -> None:
        self._data: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def remove(self, key: str) -> None:
        self._data.pop(key, None)


def generate_guest_identifier(now_ms: Optional[int] = None) -> str:
    stamp = int(time.time() * 1000) if now_ms is None else now_ms
    suffix = "".join(secrets.choice(_BASE36) for _ in range(9))
    return f"guest_{stamp}_{suffix}"


class GuestIdentityProvider:
    """Create-if-absent guest identifier backed by device-local storage."""

    def __init__(
        self,
        storage: IdentityStorage,
        generator: Callable[[], str] = generate_guest_identifier,
    ) -> None:
        self._storage = storage
        self._generator = generator

    def get_or_create(self) -> str:
        existing = self._storage.get(GUEST_STORAGE_KEY)
        if existing:
            return existing
        created = self._generator()
        self._storage.set(GUEST_STORAGE_KEY, created)
        return created

    def reset(self) -> None:
        self._storage.remove(GUEST_STORAGE_KEY)
