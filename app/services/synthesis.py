"""
Speech synthesis client
Deepgram Aura text-to-speech (`/v1/speak`).
"""
from typing import Dict, Optional

import httpx

from app.config import settings
from app.core.errors import SynthesisError
from app.core.logging import get_logger
from app.models.voice import SynthesizedSpeech

logger = get_logger(__name__)

DEFAULT_SYNTHESIS_VOICE = "aura-asteria-en"

# Application voice selector -> Deepgram Aura model
VOICE_MODEL_MAP: Dict[str, str] = {
    "alloy": "aura-asteria-en",
    "echo": "aura-luna-en",
    "fable": "aura-stella-en",
    "onyx": "aura-athena-en",
    "nova": "aura-hera-en",
    "shimmer": "aura-orion-en",
}


def resolve_synthesis_voice(selector, fallback: str = DEFAULT_SYNTHESIS_VOICE) -> str:
    """Map a voice selector to a provider voice. Total: unknown input gets the fallback."""
    key = getattr(selector, "value", selector)
    if not isinstance(key, str):
        return fallback
    return VOICE_MODEL_MAP.get(key.strip().lower(), fallback)


class DeepgramSynthesizer:
    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        fallback_voice: Optional[str] = None,
        timeout: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_key = api_key if api_key is not None else settings.DEEPGRAM_API_KEY
        self.base_url = (base_url or settings.DEEPGRAM_BASE_URL).rstrip("/")
        self.fallback_voice = fallback_voice or settings.DEEPGRAM_TTS_FALLBACK_MODEL
        self.timeout = timeout or settings.STAGE_TIMEOUT_SECONDS
        self._http_client = client

    async def _get_http_client(self) -> httpx.AsyncClient:
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(timeout=self.timeout)
        return self._http_client

    async def synthesize(self, text: str, voice_selector=None) -> SynthesizedSpeech:
        """Speak `text` with the mapped voice; the result carries the text back."""
        if not text or not text.strip():
            raise SynthesisError("Nothing to synthesize")

        model = resolve_synthesis_voice(voice_selector, self.fallback_voice)
        client = await self._get_http_client()
        try:
            response = await client.post(
                f"{self.base_url}/v1/speak",
                params={"model": model},
                headers={
                    "Authorization": f"Token {self.api_key}",
                    "Content-Type": "application/json",
                },
                json={"text": text},
            )
        except httpx.TimeoutException as e:
            logger.error("tts_timeout", provider="deepgram", voice=model, error=str(e))
            raise SynthesisError("Deepgram TTS request timed out") from e
        except httpx.HTTPError as e:
            logger.error("tts_http_error", provider="deepgram", voice=model, error=str(e))
            raise SynthesisError(f"Deepgram TTS request failed: {e}") from e

        if response.status_code >= 400:
            logger.error(
                "tts_upstream_error",
                provider="deepgram",
                voice=model,
                status=response.status_code,
                body=response.text[:200],
            )
            raise SynthesisError(
                f"Deepgram TTS failed with status {response.status_code}",
                status_code=response.status_code,
            )

        audio = response.content
        if not audio:
            logger.error("tts_empty_audio", provider="deepgram", voice=model)
            raise SynthesisError("Deepgram TTS returned no audio")

        content_type = response.headers.get("content-type", "audio/mpeg").split(";")[0]
        if not content_type.startswith("audio/"):
            content_type = "audio/mpeg"

        logger.info("tts_complete", provider="deepgram", voice=model, text_length=len(text), audio_size=len(audio))
        return SynthesizedSpeech(audio=audio, text=text, voice_model=model, content_type=content_type)

    async def close(self):
        if self._http_client is not None:
            await self._http_client.aclose()
