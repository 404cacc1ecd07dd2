import json
import logging

import httpx

from intakegenie.circuit_breaker import CircuitBreaker
from intakegenie.errors import LLMError

logger = logging.getLogger(__name__)

OPENAI_CHAT_URL = "https://api.openai.com/v1/chat/completions"
DEFAULT_MODEL = "gpt-4o-mini"


class LLMClient:
    """JSON-mode chat completion client.

    Every failure (transport, HTTP status, missing content, non-object JSON)
    surfaces as LLMError so callers can degrade in one place. A circuit
    breaker skips the provider for a cooldown after repeated failures.
    """

    def __init__(
        self,
        api_key: str,
        model: str = DEFAULT_MODEL,
        timeout: float = 10.0,
        url: str = OPENAI_CHAT_URL,
        client: httpx.AsyncClient | None = None,
    ):
        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        self.url = url
        self._client = client
        self._circuit = CircuitBreaker(failure_threshold=3, cooldown_seconds=30.0, label="LLM")

    async def complete_json(self, messages: list[dict], temperature: float = 0.7) -> dict:
        if not self._circuit.should_try():
            raise LLMError("LLM circuit breaker open")
        payload = {
            "model": self.model,
            "temperature": temperature,
            "response_format": {"type": "json_object"},
            "messages": messages,
        }
        headers = {"Authorization": f"Bearer {self.api_key}"}
        try:
            if self._client is not None:
                resp = await self._client.post(self.url, json=payload, headers=headers, timeout=self.timeout)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    resp = await client.post(self.url, json=payload, headers=headers)
            resp.raise_for_status()
            content = resp.json()["choices"][0]["message"]["content"]
        except (httpx.HTTPError, KeyError, IndexError, TypeError, ValueError) as e:
            self._circuit.record_failure()
            raise LLMError(f"completion request failed: {e}") from e

        # The provider answered; a bad body is a model problem, not an outage
        self._circuit.record_success()
        try:
            data = json.loads(content)
        except (TypeError, ValueError) as e:
            raise LLMError(f"completion was not valid JSON: {e}") from e
        if not isinstance(data, dict):
            raise LLMError("completion JSON was not an object")
        return data
