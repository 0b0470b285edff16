"""TTS providers: edge-tts, OpenAI, and ElevenLabs behind one interface."""

import asyncio
import logging
from dataclasses import dataclass

import edge_tts
import httpx

from track_renderer.config import Settings
from track_renderer.errors import ConfigError, ProviderError
from track_renderer.models import VoiceSettings

logger = logging.getLogger(__name__)

OPENAI_SPEECH_URL = "https://api.openai.com/v1/audio/speech"
ELEVENLABS_SPEECH_URL = "https://api.elevenlabs.io/v1/text-to-speech/{voice_id}"
OPENAI_VOICES = ("alloy", "echo", "fable", "onyx", "nova", "shimmer")


@dataclass
class SynthesizedSpeech:
    """One provider clip, still encoded.

    duration_seconds is None until the voice layer decodes the clip.
    """

    audio: bytes
    format: str
    duration_seconds: float | None = None
    provider: str = "tts"


class TTSProvider:
    """Base class: turn script text into one audio clip."""

    name = "base"

    def synthesize(self, script: str, voice_id: str, settings: dict) -> SynthesizedSpeech:
        raise NotImplementedError

    def _finish(self, audio: bytes, fmt: str) -> SynthesizedSpeech:
        if not audio:
            raise ProviderError(self.name, "returned no audio")
        logger.info("%s synthesized %d bytes of %s", self.name, len(audio), fmt)
        return SynthesizedSpeech(audio=audio, format=fmt, provider=self.name)


class EdgeTTSProvider(TTSProvider):
    """Microsoft Edge read-aloud voices via edge-tts. Needs no API key.

    Settings: rate ("-10%"), volume ("+0%"), pitch ("+0Hz").
    """

    name = "edge"

    def synthesize(self, script: str, voice_id: str, settings: dict) -> SynthesizedSpeech:
        options = {k: settings[k] for k in ("rate", "volume", "pitch") if k in settings}
        try:
            audio = asyncio.run(self._collect(script, voice_id, options))
        except Exception as e:
            raise ProviderError(self.name, str(e) or e.__class__.__name__) from e
        return self._finish(audio, "mp3")

    @staticmethod
    async def _collect(script: str, voice_id: str, options: dict) -> bytes:
        communicate = edge_tts.Communicate(script, voice_id, **options)
        chunks = []
        async for chunk in communicate.stream():
            if chunk["type"] == "audio":
                chunks.append(chunk["data"])
        return b"".join(chunks)


class _HTTPProvider(TTSProvider):
    """Shared request/response handling for the HTTP providers."""

    def __init__(self, api_key: str | None, client: httpx.Client):
        if not api_key:
            raise ConfigError(f"{self.name} voice requested but no API key is configured")
        self.api_key = api_key
        self.client = client

    def _post(self, url: str, headers: dict, body: dict) -> bytes:
        try:
            response = self.client.post(url, headers=headers, json=body)
        except httpx.HTTPError as e:
            raise ProviderError(self.name, f"request failed: {e}") from e
        if response.status_code >= 400:
            # Response body goes into the job's error message unchanged
            raise ProviderError(
                self.name,
                "synthesis request rejected",
                status_code=response.status_code,
                body=response.text,
            )
        return response.content


class OpenAITTSProvider(_HTTPProvider):
    """Settings: model (tts-1 | tts-1-hd), speed (0.25-4.0)."""

    name = "openai"

    def synthesize(self, script: str, voice_id: str, settings: dict) -> SynthesizedSpeech:
        if voice_id not in OPENAI_VOICES:
            raise ConfigError(
                f"Invalid OpenAI voice: {voice_id!r}. Valid voices: {', '.join(OPENAI_VOICES)}"
            )
        body = {
            "model": settings.get("model", "tts-1"),
            "voice": voice_id,
            "input": script,
            "response_format": "mp3",
            "speed": settings.get("speed", 1.0),
        }
        audio = self._post(
            OPENAI_SPEECH_URL,
            {"Authorization": f"Bearer {self.api_key}"},
            body,
        )
        return self._finish(audio, "mp3")


class ElevenLabsTTSProvider(_HTTPProvider):
    """Settings: model_id, stability (0-1), similarity_boost (0-1)."""

    name = "elevenlabs"

    def synthesize(self, script: str, voice_id: str, settings: dict) -> SynthesizedSpeech:
        body = {
            "text": script,
            "model_id": settings.get("model_id", "eleven_multilingual_v2"),
            "voice_settings": {
                "stability": settings.get("stability", 0.5),
                "similarity_boost": settings.get("similarity_boost", 0.75),
            },
        }
        audio = self._post(
            ELEVENLABS_SPEECH_URL.format(voice_id=voice_id),
            {"xi-api-key": self.api_key, "Accept": "audio/mpeg"},
            body,
        )
        return self._finish(audio, "mp3")


class TTSClient:
    """Provider registry built from settings; one instance per worker."""

    def __init__(self, settings: Settings, http_client: httpx.Client | None = None):
        self.settings = settings
        self.http_client = http_client or httpx.Client(timeout=settings.tts_timeout_seconds)
        self._providers: dict[str, TTSProvider] = {}

    def get_provider(self, name: str) -> TTSProvider:
        if name not in self._providers:
            self._providers[name] = self._create(name)
        return self._providers[name]

    def _create(self, name: str) -> TTSProvider:
        if name == "edge":
            return EdgeTTSProvider()
        if name == "openai":
            return OpenAITTSProvider(self.settings.openai_api_key, self.http_client)
        if name == "elevenlabs":
            return ElevenLabsTTSProvider(self.settings.elevenlabs_api_key, self.http_client)
        raise ConfigError(f"Unsupported voice provider: {name!r}")

    def synthesize(self, voice: VoiceSettings, script: str) -> SynthesizedSpeech:
        provider = self.get_provider(voice.provider)
        logger.info("Synthesizing %d chars with %s/%s", len(script), voice.provider, voice.voice_id)
        return provider.synthesize(script, voice.voice_id, voice.settings)

    def close(self) -> None:
        self.http_client.close()
