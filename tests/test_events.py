import importlib
import json
import sys
import types


def _reload_events(monkeypatch, *, url=None, redis_module=None):
    monkeypatch.delenv("REDIS_URL", raising=False)
    if url is not None:
        monkeypatch.setenv("REDIS_URL", url)
    if redis_module is not None:
        monkeypatch.setitem(sys.modules, "redis", redis_module)
    else:
        stub = types.SimpleNamespace(Redis=types.SimpleNamespace(from_url=lambda *args, **kwargs: None))
        monkeypatch.setitem(sys.modules, "redis", stub)
    monkeypatch.delitem(sys.modules, "src.portfolio.infrastructure.events", raising=False)
    return importlib.import_module("src.portfolio.infrastructure.events")


def test_publish_event_no_url_returns_quietly(monkeypatch):
    module = _reload_events(monkeypatch)
    assert module._get_publisher() is None
    module.publish_event("chat.turn_completed", {"payload": "ignored"})


class FakeRedisClient:
    attempt = 0
    published = []
    publish_should_fail = False

    def ping(self):
        if FakeRedisClient.attempt == 0:
            FakeRedisClient.attempt += 1
            raise Exception("connect failed")

    def publish(self, channel, payload):
        FakeRedisClient.published.append((channel, payload))
        if FakeRedisClient.publish_should_fail:
            FakeRedisClient.publish_should_fail = False
            raise Exception("publish failed")


def test_redis_publisher_recovers_after_connection_failure(monkeypatch):
    FakeRedisClient.attempt = 0
    FakeRedisClient.published = []
    FakeRedisClient.publish_should_fail = False

    def from_url(url, socket_timeout=0.5):
        return FakeRedisClient()

    redis_module = types.SimpleNamespace(Redis=types.SimpleNamespace(from_url=staticmethod(from_url)))

    module = _reload_events(monkeypatch, url="redis://localhost", redis_module=redis_module)
    publisher = module._get_publisher()
    assert publisher is not None

    module.publish_event("chat.turn_completed", {"conversation_id": "c1", "note": "مرحباً"})
    assert FakeRedisClient.attempt == 1  # first ping failed once
    channel, payload = FakeRedisClient.published[-1]
    assert channel == "portfolio.events.chat.turn_completed"
    assert json.loads(payload) == {"conversation_id": "c1", "note": "مرحباً"}
    assert "مرحباً" in payload

    FakeRedisClient.publish_should_fail = True
    module.publish_event("project.liked", {"project_id": "p1"})
    # next publish reconnects and succeeds
    module.publish_event("project.liked", {"project_id": "p2"})
    assert FakeRedisClient.published[-1][0] == "portfolio.events.project.liked"
    assert json.loads(FakeRedisClient.published[-1][1]) == {"project_id": "p2"}
