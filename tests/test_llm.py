import json

import httpx
import pytest
import respx

from intakegenie.errors import LLMError
from intakegenie.llm import OPENAI_CHAT_URL, LLMClient


def _completion(content):
    return httpx.Response(200, json={"choices": [{"message": {"content": content}}]})


class TestCompleteJson:
    @pytest.mark.asyncio
    @respx.mock
    async def test_returns_parsed_object(self):
        route = respx.post(OPENAI_CHAT_URL).mock(return_value=_completion('{"assistant_say": "Hi"}'))
        client = LLMClient("sk-test")
        data = await client.complete_json([{"role": "user", "content": "hello"}])

        assert data == {"assistant_say": "Hi"}
        sent = json.loads(route.calls.last.request.content)
        assert sent["response_format"] == {"type": "json_object"}
        assert sent["model"] == "gpt-4o-mini"
        assert route.calls.last.request.headers["Authorization"] == "Bearer sk-test"

    @pytest.mark.asyncio
    @respx.mock
    async def test_invalid_json_content(self):
        respx.post(OPENAI_CHAT_URL).mock(return_value=_completion("not json"))
        with pytest.raises(LLMError, match="not valid JSON"):
            await LLMClient("sk-test").complete_json([])

    @pytest.mark.asyncio
    @respx.mock
    async def test_non_object_json(self):
        respx.post(OPENAI_CHAT_URL).mock(return_value=_completion("[1, 2]"))
        with pytest.raises(LLMError, match="not an object"):
            await LLMClient("sk-test").complete_json([])

    @pytest.mark.asyncio
    @respx.mock
    async def test_http_error(self):
        respx.post(OPENAI_CHAT_URL).mock(return_value=httpx.Response(500))
        with pytest.raises(LLMError):
            await LLMClient("sk-test").complete_json([])

    @pytest.mark.asyncio
    @respx.mock
    async def test_circuit_opens_after_repeated_failures(self):
        route = respx.post(OPENAI_CHAT_URL).mock(return_value=httpx.Response(503))
        client = LLMClient("sk-test")
        for _ in range(3):
            with pytest.raises(LLMError):
                await client.complete_json([])
        with pytest.raises(LLMError, match="circuit breaker open"):
            await client.complete_json([])
        assert route.call_count == 3

    @pytest.mark.asyncio
    @respx.mock
    async def test_bad_body_does_not_trip_circuit(self):
        route = respx.post(OPENAI_CHAT_URL).mock(return_value=_completion("nope"))
        client = LLMClient("sk-test")
        for _ in range(4):
            with pytest.raises(LLMError):
                await client.complete_json([])
        assert route.call_count == 4
