import json as _json
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
root_str = str(ROOT)
if root_str not in sys.path:
    sys.path.insert(0, root_str)


SEED = {
    "projects": [
        {
            "id": "p-shop",
            "title": "متجر إلكتروني",
            "description": "متجر كامل بلوحة تحكم",
            "technologies": ["React", "Supabase"],
            "project_status": "active",
            "display_order": 1,
            "download_count": 0,
            "like_count": 0,
            "download_enabled": True,
        },
        {
            "id": "p-blog",
            "title": "مدونة",
            "description": "مدونة شخصية",
            "technologies": "",
            "project_status": "active",
            "display_order": 2,
            "download_count": 4,
            "like_count": 1,
            "download_enabled": False,
        },
        {
            "id": "p-draft",
            "title": "مسودة",
            "description": "لم تنشر بعد",
            "technologies": ["Vue"],
            "project_status": "draft",
            "display_order": 0,
        },
    ],
    "ai_instructions": [
        {"instruction_key": "assistant_name", "instruction_value": "مساعد موسى"},
        {"instruction_key": "contact_info", "instruction_value": "واتساب: 0910000000"},
    ],
    "advanced_settings": [
        {"setting_key": "site_name", "setting_value": "موقع موسى"},
    ],
}


@pytest.fixture(autouse=True)
def _reset_singletons(monkeypatch):
    """Every test starts with fresh module-level singletons and a clean environment."""
    from src.portfolio.infrastructure import content_repository, conversation_store, events, gateway
    from src.portfolio.security.rate_limit import reset_rate_limits
    from src.portfolio.services import chat_session, completion_client, project_interactions

    for name in (
        "PORTFOLIO_GATEWAY_IMPL",
        "REDIS_URL",
        "GEMINI_API_KEY",
        "GEMINI_MODEL",
        "GEMINI_BASE_URL",
        "PORTFOLIO_RATE_LIMIT_DISABLED",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setattr(gateway, "_gateway", None)
    monkeypatch.setattr(conversation_store, "_store", None)
    monkeypatch.setattr(content_repository, "_repo", None)
    monkeypatch.setattr(chat_session, "_handler", None)
    monkeypatch.setattr(completion_client, "_client", None)
    monkeypatch.setattr(project_interactions, "_interactions", None)
    monkeypatch.setattr(events, "_publisher", None)
    reset_rate_limits()
    yield
    reset_rate_limits()


class StubCompletion:
    """Completion client double that records prompts."""

    def __init__(self, reply="أهلاً بك", error=None):
        self.reply = reply
        self.error = error
        self.prompts = []

    def complete(self, prompt):
        self.prompts.append(prompt)
        if self.error is not None:
            raise self.error
        return self.reply


class FakeResponse:
    def __init__(self, status_code=200, payload=None, text=None, reason=""):
        self.status_code = status_code
        self._payload = payload
        if text is None:
            text = "" if payload is None else _json.dumps(payload, ensure_ascii=False)
        self.text = text
        self.content = text.encode("utf-8")
        self.reason = reason

    @property
    def ok(self):
        return 200 <= self.status_code < 400

    def json(self):
        if self._payload is None:
            return _json.loads(self.text)
        return self._payload


class FakeSession:
    """Minimal ``requests.Session`` double; replies are consumed in order."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []

    def _next(self):
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    def request(self, method, url, **kwargs):
        self.calls.append({"method": method, "url": url, **kwargs})
        return self._next()

    def post(self, url, **kwargs):
        return self.request("POST", url, **kwargs)


class FixedClock:
    def __init__(self, start="2025-01-01T00:00:00Z"):
        self.value = start
        self.ticks = 0

    def __call__(self):
        self.ticks += 1
        return self.value


@pytest.fixture
def seed():
    return _json.loads(_json.dumps(SEED))


@pytest.fixture
def gateway(seed):
    from src.portfolio.infrastructure.gateway import InMemoryGateway

    return InMemoryGateway(seed=seed)


@pytest.fixture
def stub_completion():
    return StubCompletion()


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def fake_session():
    return FakeSession


@pytest.fixture
def fake_response():
    return FakeResponse


@pytest.fixture
def handler(gateway, stub_completion, clock):
    from src.portfolio.infrastructure.content_repository import ContentRepository
    from src.portfolio.infrastructure.conversation_store import ConversationStore
    from src.portfolio.services.chat_session import ChatSessionHandler

    return ChatSessionHandler(
        store=ConversationStore(gateway),
        content=ContentRepository(gateway),
        completion=stub_completion,
        clock=clock,
    )


@pytest.fixture
def api_client(gateway, handler):
    from fastapi.testclient import TestClient

    from src.portfolio.api.main import app
    from src.portfolio.infrastructure.content_repository import ContentRepository, get_content_repository
    from src.portfolio.infrastructure.conversation_store import ConversationStore, get_conversation_store
    from src.portfolio.services.chat_session import get_chat_handler
    from src.portfolio.services.project_interactions import ProjectInteractions, get_project_interactions

    app.dependency_overrides[get_chat_handler] = lambda: handler
    app.dependency_overrides[get_conversation_store] = lambda: ConversationStore(gateway)
    app.dependency_overrides[get_content_repository] = lambda: ContentRepository(gateway)
    app.dependency_overrides[get_project_interactions] = lambda: ProjectInteractions(gateway)
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
