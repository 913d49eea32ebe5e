import json

import httpx
import pytest
import respx

from discoverycall.prompts import GENERIC_FALLBACK
from discoverycall.responder import OPENAI_CHAT_URL, generate_reply

MESSAGES = [
    {"role": "system", "content": "You are Sarah."},
    {"role": "user", "content": "What do you do?"},
]


class TestGenerateReply:
    @respx.mock
    @pytest.mark.asyncio
    async def test_returns_completion(self):
        route = respx.post(OPENAI_CHAT_URL).mock(return_value=httpx.Response(200, json={
            "choices": [{"message": {"content": " We help businesses follow up with leads. "}}],
        }))
        reply = await generate_reply(MESSAGES, api_key="sk-test")
        assert reply == "We help businesses follow up with leads."
        request = route.calls[0].request
        assert request.headers["authorization"] == "Bearer sk-test"
        body = json.loads(request.content)
        assert body["model"] == "gpt-4o"
        assert body["max_tokens"] == 150
        assert body["temperature"] == 0.7
        assert body["messages"] == MESSAGES

    @respx.mock
    @pytest.mark.asyncio
    async def test_http_error_falls_back(self):
        respx.post(OPENAI_CHAT_URL).mock(return_value=httpx.Response(500))
        assert await generate_reply(MESSAGES, api_key="sk-test") == GENERIC_FALLBACK

    @respx.mock
    @pytest.mark.asyncio
    async def test_timeout_falls_back(self):
        respx.post(OPENAI_CHAT_URL).mock(side_effect=httpx.ReadTimeout("slow"))
        assert await generate_reply(MESSAGES, api_key="sk-test") == GENERIC_FALLBACK

    @respx.mock
    @pytest.mark.asyncio
    async def test_empty_completion_falls_back(self):
        respx.post(OPENAI_CHAT_URL).mock(return_value=httpx.Response(200, json={
            "choices": [{"message": {"content": "   "}}],
        }))
        assert await generate_reply(MESSAGES, api_key="sk-test") == GENERIC_FALLBACK
