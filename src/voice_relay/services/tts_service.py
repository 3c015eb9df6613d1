import base64
import binascii
import logging
import re
from dataclasses import dataclass
from typing import Any, Optional, Protocol
from xml.sax.saxutils import escape

import httpx

from voice_relay.config import Settings
from voice_relay.errors import UpstreamSynthesisError

logger = logging.getLogger(__name__)

_FENCED_CODE = re.compile(r"```[^`]*```")
_INLINE_CODE = re.compile(r"`[^`]*`")


def clean_text_for_speech(text: str) -> str:
    """Drop markup that should not be read aloud: asterisks and code spans."""
    cleaned = text.replace("*", "")
    cleaned = _FENCED_CODE.sub("", cleaned)
    cleaned = _INLINE_CODE.sub("", cleaned)
    return cleaned.strip()


class Synthesizer(Protocol):
    async def synthesize(self, text: str) -> Optional[bytes]:
        """Return raw audio for ``text`` or None when there is nothing to say."""
        ...


@dataclass(frozen=True)
class VoiceConfig:
    """Fixed voice and audio parameters; a deployment constant, never per session."""

    language_code: str = "pt-BR"
    voice_name: str = "pt-BR-Neural2-B"
    gender: str = "MALE"
    audio_encoding: str = "LINEAR16"
    sample_rate: int = 16000
    effects_profile: str = "large-home-entertainment-class-device"
    pitch: float = -2.0
    speaking_rate: float = 1.3

    @classmethod
    def from_settings(cls, settings: Settings) -> "VoiceConfig":
        return cls(
            language_code=settings.tts_language_code,
            voice_name=settings.tts_voice_name,
            gender=settings.tts_voice_gender,
            audio_encoding=settings.tts_audio_encoding,
            sample_rate=settings.tts_sample_rate,
            effects_profile=settings.tts_effects_profile,
            pitch=settings.tts_pitch,
            speaking_rate=settings.tts_speaking_rate,
        )

    def request_body(self, text: str) -> dict[str, Any]:
        return {
            "input": {"ssml": f"<speak>{escape(text)}</speak>"},
            "voice": {
                "languageCode": self.language_code,
                "name": self.voice_name,
                "ssmlGender": self.gender,
            },
            "audioConfig": {
                "audioEncoding": self.audio_encoding,
                "sampleRateHertz": self.sample_rate,
                "effectsProfileId": [self.effects_profile],
                "pitch": self.pitch,
                "speakingRate": self.speaking_rate,
            },
        }


class TTSService:
    """
    Speech synthesis through the Google Cloud Text-to-Speech REST API.

    One ``text:synthesize`` call per sentence; the decoded ``audioContent``
    is returned as an opaque byte string. Failures raise
    ``UpstreamSynthesisError`` and are never retried.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        voice: Optional[VoiceConfig] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self._api_key = (
            settings.google_tts_api_key.get_secret_value()
            if settings.google_tts_api_key
            else None
        )
        self._url = f"{str(settings.google_tts_base_url).rstrip('/')}/text:synthesize"
        self._timeout = settings.tts_timeout
        self.voice = voice or VoiceConfig.from_settings(settings)
        self._http_client = http_client
        self._owns_client = http_client is None

        if not self._api_key:
            logger.warning("No Google TTS API key configured. TTS calls will fail.")

    def get_http_client(self) -> httpx.AsyncClient:
        """Return the shared HTTP client, creating it on first use."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self._timeout)
            logger.info("Created httpx.AsyncClient for TTS")
        return self._http_client

    async def aclose(self) -> None:
        """Close the HTTP client if this service created it. Call on app shutdown."""
        if self._http_client is not None and self._owns_client:
            await self._http_client.aclose()
            self._http_client = None
            logger.info("Closed TTS HTTP client")

    async def synthesize(self, text: str) -> Optional[bytes]:
        cleaned = clean_text_for_speech(text)
        if not cleaned:
            logger.debug("Cleaned text is empty, skipping synthesis")
            return None

        client = self.get_http_client()
        try:
            response = await client.post(
                self._url,
                params={"key": self._api_key or ""},
                json=self.voice.request_body(cleaned),
                timeout=self._timeout,
            )
        except httpx.HTTPError as exc:
            raise UpstreamSynthesisError(f"TTS request failed: {exc}") from exc

        if response.status_code >= 400:
            raise UpstreamSynthesisError(
                self._extract_error_detail(response), status_code=response.status_code
            )

        try:
            body = response.json()
        except ValueError as exc:
            raise UpstreamSynthesisError(f"TTS returned invalid JSON: {exc}") from exc

        audio_b64 = body.get("audioContent") if isinstance(body, dict) else None
        if not audio_b64:
            raise UpstreamSynthesisError("TTS returned no audio content")

        try:
            audio = base64.b64decode(audio_b64, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise UpstreamSynthesisError(f"TTS audio content is not base64: {exc}") from exc

        logger.info(f"TTS synthesized {len(audio)} bytes for text: {cleaned[:50]}...")
        return audio

    @staticmethod
    def _extract_error_detail(response: httpx.Response) -> Any:
        try:
            payload = response.json()
        except ValueError:
            return response.text or f"TTS returned HTTP {response.status_code}"
        if isinstance(payload, dict):
            error = payload.get("error")
            if isinstance(error, dict):
                return error.get("message") or error
            return error or payload
        return payload


__all__ = ["Synthesizer", "TTSService", "VoiceConfig", "clean_text_for_speech"]
