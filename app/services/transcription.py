"""
Speech-to-text clients
Deepgram over HTTP (default) or Groq Whisper through the OpenAI-compatible API.
"""
from typing import Optional

import httpx
from openai import APIError, APIStatusError, AsyncOpenAI

from app.config import settings
from app.core.errors import TranscriptionError
from app.core.logging import get_logger

logger = get_logger(__name__)


class DeepgramTranscriber:
    """Deepgram pre-recorded transcription (`/v1/listen`)."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
        timeout: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_key = api_key if api_key is not None else settings.DEEPGRAM_API_KEY
        self.base_url = (base_url or settings.DEEPGRAM_BASE_URL).rstrip("/")
        self.model = model or settings.DEEPGRAM_STT_MODEL
        self.timeout = timeout or settings.STAGE_TIMEOUT_SECONDS
        self._http_client = client

    async def _get_http_client(self) -> httpx.AsyncClient:
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(timeout=self.timeout)
        return self._http_client

    async def transcribe(self, audio: bytes, content_type: str = "audio/webm") -> str:
        """
        Transcribe one clip and return the best transcript.

        An empty string means the service heard nothing; that is not an error.
        """
        if not audio:
            raise TranscriptionError("Audio clip is empty")

        client = await self._get_http_client()
        try:
            response = await client.post(
                f"{self.base_url}/v1/listen",
                params={"model": self.model, "smart_format": "true"},
                headers={
                    "Authorization": f"Token {self.api_key}",
                    "Content-Type": content_type,
                },
                content=audio,
            )
        except httpx.TimeoutException as e:
            logger.error("stt_timeout", provider="deepgram", error=str(e))
            raise TranscriptionError("Deepgram STT request timed out") from e
        except httpx.HTTPError as e:
            logger.error("stt_http_error", provider="deepgram", error=str(e))
            raise TranscriptionError(f"Deepgram STT request failed: {e}") from e

        if response.status_code >= 400:
            logger.error(
                "stt_upstream_error",
                provider="deepgram",
                status=response.status_code,
                body=response.text[:200],
            )
            raise TranscriptionError(
                f"Deepgram STT failed with status {response.status_code}",
                status_code=response.status_code,
            )

        try:
            payload = response.json()
            alternatives = payload["results"]["channels"][0]["alternatives"]
            transcript = (alternatives[0].get("transcript") if alternatives else "") or ""
        except (ValueError, KeyError, IndexError, TypeError, AttributeError) as e:
            logger.error("stt_malformed_response", provider="deepgram", status=response.status_code)
            raise TranscriptionError("Deepgram STT returned an unexpected response") from e

        logger.info("stt_complete", provider="deepgram", audio_size=len(audio), transcript_length=len(transcript))
        return transcript

    async def close(self):
        if self._http_client is not None:
            await self._http_client.aclose()


class GroqTranscriber:
    """Groq Whisper transcription through the OpenAI SDK."""

    def __init__(self, api_key: Optional[str] = None, model: Optional[str] = None, client: Optional[AsyncOpenAI] = None):
        self.api_key = api_key if api_key is not None else settings.GROQ_API_KEY
        self.model = model or settings.GROQ_STT_MODEL
        self._client = client

    @property
    def client(self) -> AsyncOpenAI:
        if self._client is None:
            self._client = AsyncOpenAI(
                api_key=self.api_key,
                base_url="https://api.groq.com/openai/v1",
                timeout=settings.STAGE_TIMEOUT_SECONDS,
                max_retries=0,
            )
        return self._client

    async def transcribe(self, audio: bytes, content_type: str = "audio/webm") -> str:
        if not audio:
            raise TranscriptionError("Audio clip is empty")

        extension = content_type.split("/")[-1].split(";")[0] or "webm"
        try:
            transcript = await self.client.audio.transcriptions.create(
                model=self.model,
                file=(f"voice.{extension}", audio),
            )
        except APIStatusError as e:
            logger.error("stt_upstream_error", provider="groq", status=e.status_code)
            raise TranscriptionError(
                f"Groq STT failed with status {e.status_code}", status_code=e.status_code
            ) from e
        except APIError as e:
            logger.error("stt_http_error", provider="groq", error=str(e))
            raise TranscriptionError(f"Groq STT request failed: {e}") from e

        text = getattr(transcript, "text", None) or ""
        logger.info("stt_complete", provider="groq", audio_size=len(audio), transcript_length=len(text))
        return text


def get_transcriber(provider: Optional[str] = None):
    """Build the transcriber selected by STT_PROVIDER."""
    provider = (provider or settings.STT_PROVIDER).lower()
    if provider == "deepgram":
        return DeepgramTranscriber()
    if provider == "groq":
        return GroqTranscriber()
    raise ValueError(f"Unknown STT provider: {provider}")
