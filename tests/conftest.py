"""Shared fixtures for track renderer tests."""

import io
from datetime import datetime, timedelta

import numpy as np
import pytest
from pydub import AudioSegment

from track_renderer.constants import DEFAULT_VOICES
from track_renderer.db import create_db_engine
from track_renderer.engine import SynthesisEngine
from track_renderer.errors import ConfigError
from track_renderer.storage import LocalStorage
from track_renderer.store import JobStore
from track_renderer.tts import SynthesizedSpeech

TEST_RATE = 8000


def make_tone(duration_ms, frequency=440.0, sample_rate=TEST_RATE, channels=1, amplitude=0.3):
    """A plain sine AudioSegment for feeding the pipeline."""
    n = int(duration_ms * sample_rate / 1000)
    t = np.arange(n) / sample_rate
    wave = (np.sin(2 * np.pi * frequency * t) * amplitude * 32767).astype(np.int16)
    frames = np.repeat(wave[:, np.newaxis], channels, axis=1)
    return AudioSegment(
        data=frames.tobytes(),
        sample_width=2,
        frame_rate=sample_rate,
        channels=channels,
    )


def to_wav_bytes(audio):
    buffer = io.BytesIO()
    audio.export(buffer, format="wav")
    return buffer.getvalue()


class FakeTTS:
    """Stands in for TTSClient: returns a fixed WAV clip, records calls."""

    def __init__(self, clip_ms=2000, sample_rate=TEST_RATE, channels=1, error=None):
        self.clip = make_tone(clip_ms, sample_rate=sample_rate, channels=channels)
        self.error = error
        self.calls = []

    def get_provider(self, name):
        if name not in DEFAULT_VOICES:
            raise ConfigError(f"Unsupported voice provider: {name!r}")
        return self

    def synthesize(self, voice, script):
        self.calls.append((voice.provider, voice.voice_id, script))
        if self.error:
            raise self.error
        return SynthesizedSpeech(
            audio=to_wav_bytes(self.clip),
            format="wav",
        )


class Clock:
    """Controllable naive-UTC clock for the job store."""

    def __init__(self, start=datetime(2024, 1, 1, 12, 0, 0)):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += timedelta(seconds=seconds)


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def db_url(tmp_path):
    return f"sqlite:///{tmp_path / 'jobs.db'}"


@pytest.fixture
def store(db_url, clock):
    """File-backed SQLite store so threads share one database."""
    job_store = JobStore(create_db_engine(db_url), stale_after=timedelta(seconds=600), clock=clock)
    job_store.create_tables()
    return job_store


@pytest.fixture
def storage(tmp_path):
    return LocalStorage(tmp_path / "renders")


@pytest.fixture
def fake_tts():
    return FakeTTS()


@pytest.fixture
def engine(fake_tts, storage):
    return SynthesisEngine(
        tts=fake_tts,
        storage=storage,
        sample_rate=TEST_RATE,
        preview_ms=2000,
        preview_offset_ms=3000,
    )


@pytest.fixture
def payload():
    """A complete job payload with every optional layer enabled except music."""
    return {
        "script": "Breathe in. Breathe out.",
        "voice": {"provider": "edge", "voice_id": "en-US-AriaNeural"},
        "output": {
            "target_duration_seconds": 10,
            "pause_seconds": 1,
            "format": "wav",
            "quality": "medium",
        },
        "binaural": {"band": "theta"},
        "solfeggio": {"frequency": 528},
    }
