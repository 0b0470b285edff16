"""Tests for the voice layer: decode, loop and fit."""

from unittest.mock import patch

import numpy as np
import pytest
from pydub import AudioSegment

from conftest import FakeTTS, make_tone, to_wav_bytes
from track_renderer.errors import ConfigError, ProviderError
from track_renderer.models import VoiceSettings
from track_renderer.tones import frames_for
from track_renderer.tts import SynthesizedSpeech
from track_renderer.voice import build_voice_layer, decode_speech, loop_to_duration, to_mix_format

RATE = 8000


def _stereo(duration_ms):
    return to_mix_format(make_tone(duration_ms), RATE)


# --- Exact duration ---

def test_short_clip_looped_to_exact_target():
    """D < T: repeated with pauses and cut to exactly T."""
    result = loop_to_duration(_stereo(2_000), 10_000, 1_000)
    assert result.frame_count() == frames_for(10_000, RATE)
    assert len(result) == 10_000


def test_long_clip_trimmed_to_exact_target():
    """D >= T: trimmed, no looping."""
    result = loop_to_duration(_stereo(12_000), 5_000, 1_000)
    assert result.frame_count() == frames_for(5_000, RATE)


def test_equal_length_clip_unchanged():
    base = _stereo(3_000)
    result = loop_to_duration(base, 3_000, 1_000)
    assert result.raw_data == base.raw_data


def test_pause_is_silent_between_copies():
    """Frames right after the first copy belong to the pause."""
    base = _stereo(1_000)
    result = loop_to_duration(base, 5_000, 2_000)
    data = np.frombuffer(result.raw_data, dtype=np.int16).reshape((-1, 2))
    one_second = frames_for(1_000, RATE)
    assert not data[one_second:one_second + frames_for(2_000, RATE)].any()
    assert data[frames_for(3_000, RATE):frames_for(4_000, RATE)].any()


def test_awkward_durations_still_exact():
    for clip_ms, target_ms, pause_ms in [(997, 60_001, 1_000), (1_234, 7_777, 3_333), (50, 30_000, 29_999)]:
        result = loop_to_duration(_stereo(clip_ms), target_ms, pause_ms)
        assert result.frame_count() == frames_for(target_ms, RATE)


def test_empty_clip_is_provider_error():
    empty = _stereo(0)
    with pytest.raises(ProviderError):
        loop_to_duration(empty, 1_000, 1_000)


def test_non_positive_target_rejected():
    with pytest.raises(ConfigError):
        loop_to_duration(_stereo(1_000), 0, 1_000)


# --- Decoding ---

def test_decode_upmixes_mono_and_resamples():
    speech = SynthesizedSpeech(audio=to_wav_bytes(make_tone(500, sample_rate=16000)), format="wav", duration_seconds=0.5)
    audio = decode_speech(speech, RATE)
    assert audio.channels == 2
    assert audio.frame_rate == RATE
    assert audio.sample_width == 2


def test_decode_garbage_is_provider_error():
    speech = SynthesizedSpeech(audio=b"not audio at all", format="wav", provider="openai")
    with pytest.raises(ProviderError, match="openai: returned undecodable wav audio"):
        decode_speech(speech, RATE)


def test_decode_records_duration_once():
    speech = SynthesizedSpeech(audio=to_wav_bytes(make_tone(1_250)), format="wav")
    with patch("track_renderer.voice.AudioSegment.from_file", wraps=AudioSegment.from_file) as mock_decode:
        decode_speech(speech, RATE)
    assert mock_decode.call_count == 1
    assert speech.duration_seconds == pytest.approx(1.25)


# --- Layer ---

def test_build_voice_layer_synthesizes_once():
    tts = FakeTTS(clip_ms=1_500)
    voice = VoiceSettings(provider="edge", voice_id="en-US-AriaNeural")
    layer = build_voice_layer(tts, voice, "Hello.", 20_000, 2_000, gain_db=-1.0, sample_rate=RATE)
    assert len(tts.calls) == 1
    assert layer.kind == "voice"
    assert layer.gain_db == -1.0
    assert layer.frame_count == frames_for(20_000, RATE)
    assert layer.channels == 2
