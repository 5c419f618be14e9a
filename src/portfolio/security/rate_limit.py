from __future__ import annotations

"""Fixed-window throttling of chat turns per caller identity."""

import math
import os
import threading
import time
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

# Expired windows are swept once this many callers are tracked.
_SWEEP_THRESHOLD = 1024


@dataclass
class _Window:
    count: int
    resets_at: float


_WINDOWS: Dict[Tuple[str, str], _Window] = {}
_LOCK = threading.Lock()


class RateLimitExceeded(Exception):
    def __init__(self, retry_after_seconds: int) -> None:
        super().__init__("Rate limit exceeded")
        self.retry_after_seconds = retry_after_seconds


@dataclass(frozen=True)
class RateLimitPolicy:
    action: str
    limit_env: str
    window_env: str
    default_limit: int
    default_window_seconds: int

    @property
    def limit(self) -> int:
        return _env_int(self.limit_env, self.default_limit)

    @property
    def window_seconds(self) -> int:
        return _env_int(self.window_env, self.default_window_seconds)


CHAT_TURN_POLICY = RateLimitPolicy(
    action="chat",
    limit_env="PORTFOLIO_CHAT_RATE_LIMIT",
    window_env="PORTFOLIO_CHAT_RATE_WINDOW",
    default_limit=20,
    default_window_seconds=60,
)


def check_rate_limit(policy: RateLimitPolicy, identifier: str, *, now: Optional[float] = None) -> None:
    """Count one action for ``identifier``.

    Raises:
        RateLimitExceeded when the caller used up the current window;
        retry_after_seconds is the time left until it resets.
    """
    if _rate_limiting_disabled():
        return

    ts = time.monotonic() if now is None else now
    key = (policy.action, identifier)
    with _LOCK:
        if len(_WINDOWS) >= _SWEEP_THRESHOLD:
            _sweep(ts)
        window = _WINDOWS.get(key)
        if window is None or window.resets_at <= ts:
            _WINDOWS[key] = _Window(count=1, resets_at=ts + policy.window_seconds)
            return
        if window.count >= policy.limit:
            raise RateLimitExceeded(max(math.ceil(window.resets_at - ts), 1))
        window.count += 1


def limit_chat_turn(identifier: str, *, now: Optional[float] = None) -> None:
    check_rate_limit(CHAT_TURN_POLICY, identifier, now=now)


def _sweep(ts: float) -> None:
    for key in [k for k, w in _WINDOWS.items() if w.resets_at <= ts]:
        del _WINDOWS[key]


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return value if value > 0 else default


def _rate_limiting_disabled() -> bool:
    flag = os.getenv("PORTFOLIO_RATE_LIMIT_DISABLED")
    if flag and flag.lower() in {"1", "true", "yes", "on"}:
        return True
    return bool(os.getenv("PYTEST_CURRENT_TEST"))


def reset_rate_limits() -> None:
    """Clear in-memory counters (useful for tests)."""
    with _LOCK:
        _WINDOWS.clear()
