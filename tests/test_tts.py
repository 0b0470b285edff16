"""Tests for TTS providers and the provider registry."""

import json
from unittest.mock import MagicMock, patch

import httpx
import pytest

from track_renderer.config import Settings
from track_renderer.errors import ConfigError, ProviderError
from track_renderer.models import VoiceSettings
from track_renderer.tts import (
    EdgeTTSProvider,
    ElevenLabsTTSProvider,
    OpenAITTSProvider,
    TTSClient,
)


def _make_mock_communicate(chunks):
    """Create a mock edge_tts.Communicate whose stream yields the given chunks."""
    def factory(text, voice, **kwargs):
        mock = MagicMock()
        async def stream():
            for chunk in chunks:
                yield chunk
        mock.stream = stream
        return mock
    return factory


def _client(handler):
    return httpx.Client(transport=httpx.MockTransport(handler))


# --- Edge ---

@patch("track_renderer.tts.edge_tts.Communicate")
def test_edge_collects_audio_chunks(mock_comm):
    """Only audio chunks are kept, in order."""
    mock_comm.side_effect = _make_mock_communicate([
        {"type": "audio", "data": b"abc"},
        {"type": "WordBoundary", "offset": 0},
        {"type": "audio", "data": b"def"},
    ])
    speech = EdgeTTSProvider().synthesize("Hello", "en-US-AriaNeural", {"rate": "-10%", "model": "x"})
    assert speech.audio == b"abcdef"
    assert speech.format == "mp3"
    assert speech.provider == "edge"
    assert speech.duration_seconds is None
    assert mock_comm.call_args.kwargs == {"rate": "-10%"}


@patch("track_renderer.tts.edge_tts.Communicate")
def test_edge_failure_is_provider_error(mock_comm):
    mock_comm.side_effect = RuntimeError("connection reset")
    with pytest.raises(ProviderError, match="edge: connection reset"):
        EdgeTTSProvider().synthesize("Hello", "en-US-AriaNeural", {})


@patch("track_renderer.tts.edge_tts.Communicate")
def test_edge_no_audio_is_provider_error(mock_comm):
    mock_comm.side_effect = _make_mock_communicate([])
    with pytest.raises(ProviderError, match="no audio"):
        EdgeTTSProvider().synthesize("Hello", "en-US-AriaNeural", {})


# --- OpenAI ---

def test_openai_request_shape():
    seen = {}

    def handler(request):
        seen["auth"] = request.headers["Authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, content=b"mp3-bytes")

    provider = OpenAITTSProvider("sk-test", _client(handler))
    speech = provider.synthesize("Hello", "nova", {"speed": 0.9})

    assert speech.audio == b"mp3-bytes"
    assert seen["auth"] == "Bearer sk-test"
    assert seen["body"] == {
        "model": "tts-1",
        "voice": "nova",
        "input": "Hello",
        "response_format": "mp3",
        "speed": 0.9,
    }


def test_openai_rejection_keeps_status_and_body():
    """Auth failures and rate limits land verbatim in the error."""
    body = '{"error": {"message": "Rate limit reached"}}'
    provider = OpenAITTSProvider("sk-test", _client(lambda r: httpx.Response(429, text=body)))
    with pytest.raises(ProviderError) as exc_info:
        provider.synthesize("Hello", "nova", {})
    assert exc_info.value.status_code == 429
    assert exc_info.value.body == body
    assert "status 429" in str(exc_info.value)
    assert "Rate limit reached" in str(exc_info.value)


def test_openai_unknown_voice_is_config_error():
    provider = OpenAITTSProvider("sk-test", _client(lambda r: httpx.Response(200)))
    with pytest.raises(ConfigError, match="Invalid OpenAI voice"):
        provider.synthesize("Hello", "morgan", {})


def test_transport_error_is_provider_error_without_status():
    def handler(request):
        raise httpx.ConnectError("dns failure", request=request)

    provider = OpenAITTSProvider("sk-test", _client(handler))
    with pytest.raises(ProviderError) as exc_info:
        provider.synthesize("Hello", "nova", {})
    assert exc_info.value.status_code is None


def test_provider_does_not_decode_audio():
    """Bytes are passed through untouched; decoding happens once, in the voice layer."""
    provider = OpenAITTSProvider("sk-test", _client(lambda r: httpx.Response(200, content=b"junk")))
    with patch("track_renderer.voice.AudioSegment.from_file") as mock_decode:
        speech = provider.synthesize("Hello", "nova", {})
    mock_decode.assert_not_called()
    assert speech.audio == b"junk"
    assert speech.provider == "openai"


# --- ElevenLabs ---

def test_elevenlabs_request_shape():
    seen = {}

    def handler(request):
        seen["path"] = request.url.path
        seen["key"] = request.headers["xi-api-key"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, content=b"mp3-bytes")

    provider = ElevenLabsTTSProvider("el-key", _client(handler))
    provider.synthesize("Hello", "voice123", {"stability": 0.3})

    assert seen["path"] == "/v1/text-to-speech/voice123"
    assert seen["key"] == "el-key"
    assert seen["body"]["voice_settings"] == {"stability": 0.3, "similarity_boost": 0.75}


def test_elevenlabs_auth_failure():
    provider = ElevenLabsTTSProvider("bad", _client(lambda r: httpx.Response(401, text="invalid api key")))
    with pytest.raises(ProviderError, match="invalid api key"):
        provider.synthesize("Hello", "voice123", {})


# --- Registry ---

def test_client_missing_key_is_config_error():
    client = TTSClient(Settings(OPENAI_API_KEY=None), http_client=MagicMock())
    with pytest.raises(ConfigError, match="API key"):
        client.get_provider("openai")


def test_client_unsupported_provider():
    client = TTSClient(Settings(), http_client=MagicMock())
    with pytest.raises(ConfigError, match="Unsupported"):
        client.get_provider("polly")


def test_client_caches_and_dispatches():
    client = TTSClient(Settings(), http_client=MagicMock())
    assert client.get_provider("edge") is client.get_provider("edge")

    with patch.object(EdgeTTSProvider, "synthesize", return_value="speech") as mock_synth:
        voice = VoiceSettings(provider="edge", voice_id="en-US-AriaNeural", settings={"rate": "+0%"})
        assert client.synthesize(voice, "Hello") == "speech"
    mock_synth.assert_called_once_with("Hello", "en-US-AriaNeural", {"rate": "+0%"})
