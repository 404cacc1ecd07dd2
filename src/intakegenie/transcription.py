import logging

import httpx

from intakegenie.errors import TranscriptUnavailable

logger = logging.getLogger(__name__)

TWILIO_API = "https://api.twilio.com/2010-04-01"
DEEPGRAM_LISTEN_URL = "https://api.deepgram.com/v1/listen"


class TranscriptionClient:
    """Fetches a call's recording from Twilio and transcribes it with Deepgram.

    Raises TranscriptUnavailable when there is nothing to transcribe yet, so
    the caller can retry on its own schedule.
    """

    def __init__(
        self,
        *,
        account_sid: str,
        auth_token: str,
        deepgram_api_key: str,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.account_sid = account_sid
        self.auth_token = auth_token
        self.deepgram_api_key = deepgram_api_key
        self.timeout = timeout
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def close(self):
        await self._client.aclose()

    async def fetch_recording_url(self, call_sid: str) -> str:
        resp = await self._client.get(
            f"{TWILIO_API}/Accounts/{self.account_sid}/Calls/{call_sid}/Recordings.json",
            auth=(self.account_sid, self.auth_token),
        )
        resp.raise_for_status()
        recordings = resp.json().get("recordings") or []
        if not recordings:
            raise TranscriptUnavailable(f"no recording yet for {call_sid}")
        sid = recordings[0]["sid"]
        return f"{TWILIO_API}/Accounts/{self.account_sid}/Recordings/{sid}.mp3"

    async def transcribe_recording(self, recording_url: str) -> str:
        audio = await self._client.get(recording_url, auth=(self.account_sid, self.auth_token))
        if audio.status_code == 404:
            raise TranscriptUnavailable(f"recording not ready: {recording_url}")
        audio.raise_for_status()

        resp = await self._client.post(
            DEEPGRAM_LISTEN_URL,
            params={"model": "nova-2", "smart_format": "true", "punctuate": "true", "diarize": "true"},
            headers={
                "Authorization": f"Token {self.deepgram_api_key}",
                "Content-Type": audio.headers.get("content-type", "audio/mpeg"),
            },
            content=audio.content,
        )
        resp.raise_for_status()
        try:
            alt = resp.json()["results"]["channels"][0]["alternatives"][0]
        except (KeyError, IndexError, TypeError) as e:
            raise TranscriptUnavailable(f"unexpected transcription response: {e}") from e
        text = (alt.get("transcript") or "").strip()
        if not text:
            raise TranscriptUnavailable("transcription was empty")
        logger.info("transcribed recording (%d chars)", len(text))
        return text
