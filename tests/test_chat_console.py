import importlib.util
from pathlib import Path

from src.portfolio.client.chat_client import ChatClientError
from src.portfolio.domain.chat_models import ChatReply

SCRIPT = Path(__file__).resolve().parents[1] / "scripts" / "chat_console.py"


def _load_console():
    spec = importlib.util.spec_from_file_location("chat_console", SCRIPT)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


class FlakyClient:
    def __init__(self, *args, **kwargs):
        self.sent = []
        self.failures = 1

    def send_message(self, text):
        self.sent.append(text)
        if self.failures:
            self.failures -= 1
            raise ChatClientError("حدث خطأ في معالجة طلبك", "Gemini API timeout")
        return ChatReply(response="أهلاً بك", conversation_id="c1", timestamp="t")


def test_console_keeps_unsent_text_for_retry(monkeypatch, tmp_path, capsys):
    console = _load_console()
    created = []

    def factory(*args, **kwargs):
        client = FlakyClient()
        created.append(client)
        return client

    monkeypatch.setattr(console, "ChatClient", factory)
    lines = iter(["مرحباً", "", "/quit"])
    monkeypatch.setattr("builtins.input", lambda _prompt="": next(lines))

    code = console.main(["--storage", str(tmp_path / "id.json")])

    assert code == 0
    assert created[0].sent == ["مرحباً", "مرحباً"]
    out = capsys.readouterr().out
    assert "Gemini API timeout" in out
    assert "أهلاً بك" in out
