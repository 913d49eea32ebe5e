import json
from unittest.mock import patch

from fastapi.testclient import TestClient

# bot.py calls validate_config() at import time, which sys.exit(1) if env vars missing.
# Patch it so the import succeeds in test environment.
with patch("discoverycall.config.validate_config"):
    from discoverycall import bot
    from discoverycall.bot import app, build_collaborators

from discoverycall.config import Settings
from discoverycall.tools import CalendarClient, MemoryClient
from discoverycall.webhooks import WebhookClient


class TestHealth:
    def test_health_ok(self):
        client = TestClient(app)
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.text == "ok"


class TestBuildCollaborators:
    def test_none_without_urls(self):
        assert build_collaborators(Settings()) == (None, None, None)

    def test_clients_for_configured_urls(self):
        calendar, memory, webhooks = build_collaborators(Settings(
            calendar_api_url="https://calendar.example.com",
            memory_api_url="https://memory.example.com",
            webhook_url="https://crm.example.com/hook",
        ))
        assert isinstance(calendar, CalendarClient)
        assert isinstance(memory, MemoryClient)
        assert isinstance(webhooks, WebhookClient)


class TestLlmWebsocket:
    def test_greets_over_websocket_and_ends_session(self):
        client = TestClient(app)
        with client.websocket_connect("/llm-websocket/call_0a1b2c?customer_name=Jane") as ws:
            ws.send_text(json.dumps({
                "interaction_type": "response_required",
                "transcript": [{"role": "user", "content": "Hello?"}],
                "response_id": 5,
            }))
            reply = json.loads(ws.receive_text())
        assert reply["response_id"] == 5
        assert reply["content_complete"] is True
        assert "Sarah" in reply["content"]
        assert bot.tracker.get_session_info("call_0a1b2c") is None
