"""Speech pre-generation for agent turns.

Audio for each agent utterance is synthesized in the background as soon as
the turn is decided, so by the time the telephony provider fetches the
playback URL it is usually cached. A miss synthesizes on demand; a failure
there makes the audio endpoint return 404 and the call falls back to the
provider's built-in <Say> voice.
"""

import asyncio
import logging
import re
from collections import OrderedDict
from urllib.parse import urlencode

import httpx

from intakegenie.circuit_breaker import CircuitBreaker
from intakegenie.validation import format_phone_for_speech

logger = logging.getLogger(__name__)

DEEPGRAM_SPEAK_URL = "https://api.deepgram.com/v1/speak"
DEFAULT_VOICE = "aura-asteria-en"
CACHE_SIZE = 500


def cache_key(text: str) -> str:
    return re.sub(r"\s+", " ", text.strip().lower())


class AudioCache:
    """Bounded LRU of synthesized audio keyed by normalized text."""

    def __init__(self, max_entries: int = CACHE_SIZE):
        self.max_entries = max_entries
        self._entries: OrderedDict[str, bytes] = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, text: str) -> bytes | None:
        key = cache_key(text)
        audio = self._entries.get(key)
        if audio is not None:
            self._entries.move_to_end(key)
        return audio

    def put(self, text: str, audio: bytes) -> None:
        key = cache_key(text)
        self._entries[key] = audio
        self._entries.move_to_end(key)
        while len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)


class SpeechSynthesizer:
    def __init__(
        self,
        *,
        api_key: str,
        base_url: str,
        voice: str = DEFAULT_VOICE,
        timeout: float = 5.0,
        cache: AudioCache | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.voice = voice
        self.timeout = timeout
        self.cache = cache or AudioCache()
        self._client = client
        self._pending: dict[str, asyncio.Task] = {}
        self._circuit = CircuitBreaker(failure_threshold=3, cooldown_seconds=60.0, label="Deepgram Aura")

    def audio_url(self, call_id: str, turn: int, text: str) -> str:
        query = urlencode({"callSid": call_id, "turn": turn, "text": text})
        return f"{self.base_url}/audio?{query}"

    def prefetch(self, call_id: str, turn: int, text: str) -> None:
        """Start synthesis without waiting for it. Never raises."""
        key = cache_key(text)
        if not key or self.cache.get(text) is not None or key in self._pending:
            return
        try:
            task = asyncio.get_running_loop().create_task(self._prefetch(call_id, turn, text))
        except RuntimeError:
            logger.debug("no running loop, skipping prefetch for %s turn %s", call_id, turn)
            return
        self._pending[key] = task
        task.add_done_callback(lambda _t: self._pending.pop(key, None))

    async def _prefetch(self, call_id: str, turn: int, text: str) -> None:
        audio = await self.synthesize(text)
        if audio is None:
            logger.info("[%s] prefetch for turn %s failed, will fall back to <Say>", call_id, turn)

    async def get_audio(self, text: str) -> bytes | None:
        """Cached audio, waiting on an in-flight prefetch or synthesizing if needed."""
        cached = self.cache.get(text)
        if cached is not None:
            return cached
        pending = self._pending.get(cache_key(text))
        if pending is not None:
            await asyncio.shield(pending)
            cached = self.cache.get(text)
            if cached is not None:
                return cached
        return await self.synthesize(text)

    async def synthesize(self, text: str) -> bytes | None:
        if not self._circuit.should_try():
            return None
        try:
            if self._client is not None:
                resp = await self._post(self._client, text)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    resp = await self._post(client, text)
            resp.raise_for_status()
        except httpx.HTTPError as e:
            self._circuit.record_failure()
            logger.warning("speech synthesis failed: %s", e)
            return None
        self._circuit.record_success()
        audio = resp.content
        self.cache.put(text, audio)
        return audio

    async def _post(self, client: httpx.AsyncClient, text: str) -> httpx.Response:
        return await client.post(
            DEEPGRAM_SPEAK_URL,
            params={"model": self.voice, "encoding": "mp3"},
            headers={"Authorization": f"Token {self.api_key}", "Content-Type": "application/json"},
            json={"text": format_phone_for_speech(text)},
            timeout=self.timeout,
        )
