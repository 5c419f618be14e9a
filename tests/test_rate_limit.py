import pytest

from src.portfolio.security import rate_limit as rl


@pytest.fixture
def enabled(monkeypatch):
    # pytest sets PYTEST_CURRENT_TEST again for the call phase
    monkeypatch.setattr(rl, "_rate_limiting_disabled", lambda: False)


def test_limit_blocks_after_threshold(enabled, monkeypatch):
    monkeypatch.setenv("PORTFOLIO_CHAT_RATE_LIMIT", "3")
    monkeypatch.setenv("PORTFOLIO_CHAT_RATE_WINDOW", "30")
    for _ in range(3):
        rl.limit_chat_turn("g1")
    with pytest.raises(rl.RateLimitExceeded) as ei:
        rl.limit_chat_turn("g1")
    assert 1 <= ei.value.retry_after_seconds <= 30
    rl.limit_chat_turn("g2")


def test_invalid_env_values_fall_back_to_defaults(enabled, monkeypatch):
    monkeypatch.setenv("PORTFOLIO_CHAT_RATE_LIMIT", "-4")
    for _ in range(20):
        rl.limit_chat_turn("g1")
    with pytest.raises(rl.RateLimitExceeded):
        rl.limit_chat_turn("g1")


def test_disabled_flag(monkeypatch):
    monkeypatch.delenv("PYTEST_CURRENT_TEST", raising=False)
    monkeypatch.setenv("PORTFOLIO_RATE_LIMIT_DISABLED", "off")
    assert rl._rate_limiting_disabled() is False
    monkeypatch.setenv("PORTFOLIO_RATE_LIMIT_DISABLED", "true")
    assert rl._rate_limiting_disabled() is True
    monkeypatch.setenv("PORTFOLIO_CHAT_RATE_LIMIT", "1")
    for _ in range(5):
        rl.limit_chat_turn("g1")
    assert rl._WINDOWS == {}


def test_reset_clears_counters(enabled, monkeypatch):
    monkeypatch.setenv("PORTFOLIO_CHAT_RATE_LIMIT", "1")
    rl.limit_chat_turn("g1")
    rl.reset_rate_limits()
    rl.limit_chat_turn("g1")


def test_window_resets_after_expiry(enabled, monkeypatch):
    monkeypatch.setenv("PORTFOLIO_CHAT_RATE_LIMIT", "1")
    monkeypatch.setenv("PORTFOLIO_CHAT_RATE_WINDOW", "10")
    rl.limit_chat_turn("g1", now=100.0)
    with pytest.raises(rl.RateLimitExceeded) as ei:
        rl.limit_chat_turn("g1", now=104.5)
    assert ei.value.retry_after_seconds == 6
    rl.limit_chat_turn("g1", now=110.0)


def test_expired_windows_are_swept(enabled, monkeypatch):
    monkeypatch.setattr(rl, "_SWEEP_THRESHOLD", 3)
    for i in range(3):
        rl.limit_chat_turn(f"g{i}", now=0.0)
    rl.limit_chat_turn("late", now=1000.0)
    assert set(rl._WINDOWS) == {("chat", "late")}
