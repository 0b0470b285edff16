"""End-to-end: enqueue, claim, render, upload, complete."""

import io
from unittest.mock import patch

import numpy as np
import pytest
from pydub import AudioSegment

from conftest import TEST_RATE, FakeTTS
from track_renderer.engine import SynthesisEngine
from track_renderer.store import JobStatus
from track_renderer.worker import RenderWorker


def _level_at(track, start_ms, end_ms, frequency):
    """Left-channel spectral magnitude at frequency over track[start_ms:end_ms], per sample."""
    window = track[start_ms:end_ms]
    samples = np.frombuffer(window.raw_data, dtype=np.int16).reshape((-1, 2))[:, 0].astype(np.float64)
    spectrum = np.abs(np.fft.rfft(samples)) / len(samples)
    freqs = np.fft.rfftfreq(len(samples), 1 / TEST_RATE)
    band = np.abs(freqs - frequency) <= 2.0
    return float(spectrum[band].max())


def test_ten_minute_theta_session(store, storage):
    """13s voice clip, 5s gaps, theta binaural: exactly 600s at the target loudness."""
    tts = FakeTTS(clip_ms=13_000)
    engine = SynthesisEngine(tts, storage, sample_rate=TEST_RATE)
    job = store.enqueue("track-42", "user-7", {
        "script": "Let your thoughts drift.",
        "voice": {"provider": "edge", "voice_id": "en-US-AriaNeural"},
        "target_duration_seconds": 600,
        "pause_seconds": 5,
        "output": {"format": "wav"},
        "binaural": {"enabled": True, "band": "theta"},
    })

    seen = []
    render = engine.render

    def watched_render(claimed, progress=None):
        seen.append(store.get(claimed.id).status)
        return render(claimed, progress)

    with patch.object(engine, "render", side_effect=watched_render):
        report = RenderWorker(store, engine, worker_id="w1").process_batch()

    assert seen == [JobStatus.PROCESSING.value]
    assert report.claimed == 1
    assert report.completed == 1
    assert len(tts.calls) == 1

    stored = store.get(job.id)
    assert stored.status == JobStatus.COMPLETED.value
    assert stored.progress == 100
    assert stored.error is None
    assert stored.result["duration_seconds"] == 600.0
    assert stored.result["layers"] == ["voice", "binaural"]
    assert stored.result["format"] == "wav"
    assert stored.result["loudness_lufs"] == pytest.approx(-16.0, abs=0.1)

    data = storage.get(stored.result["storage_key"])
    assert stored.result["size_bytes"] == len(data)
    track = AudioSegment.from_file(io.BytesIO(data), format="wav")
    assert track.channels == 2
    assert track.frame_count() == 600 * TEST_RATE

    # Copies start every 18s (13s clip + 5s gap); the 34th starts at 594s and is cut at 600s
    first_gap = _level_at(track, 13_100, 17_900, 440)
    last_gap = _level_at(track, 589_100, 593_900, 440)
    second_copy = _level_at(track, 18_100, 30_900, 440)
    trimmed_copy = _level_at(track, 595_000, 598_400, 440)
    assert second_copy > 50 * first_gap
    assert trimmed_copy > 50 * last_gap
    assert trimmed_copy == pytest.approx(second_copy, rel=0.05)


def test_binaural_survives_mix(store, engine, storage):
    """During a voice pause only the beat is left: right ear sits 6 Hz above left."""
    job = store.enqueue("track-1", "user-1", {
        "script": "Pause.",
        "voice": {"provider": "edge"},
        "output": {"target_duration_seconds": 30, "pause_seconds": 10, "format": "wav"},
        "binaural": {"band": "theta", "carrier_hz": 200},
    })
    RenderWorker(store, engine, worker_id="w1").process_batch()
    stored = store.get(job.id)

    track = AudioSegment.from_file(io.BytesIO(storage.get(stored.result["storage_key"])), format="wav")
    # Fake voice is 2s long, so 2s..12s is the first pause
    pause = track[2_500:12_000]
    samples = np.frombuffer(pause.raw_data, dtype=np.int16).reshape((-1, 2)).astype(np.float64)
    freqs = np.fft.rfftfreq(len(samples), 1 / TEST_RATE)
    left = freqs[np.argmax(np.abs(np.fft.rfft(samples[:, 0])))]
    right = freqs[np.argmax(np.abs(np.fft.rfft(samples[:, 1])))]
    assert right - left == pytest.approx(6.0, abs=0.3)


def test_failure_then_fresh_job(store, engine, fake_tts):
    """A failed job stays failed; the producer retries by enqueueing a new one."""
    from track_renderer.errors import ProviderError

    fake_tts.error = ProviderError("edge", "service unavailable", status_code=503, body="try later")
    failed = store.enqueue("track-1", "user-1", {
        "script": "Hello.",
        "voice": {"provider": "edge"},
        "output": {"target_duration_seconds": 5, "format": "wav"},
    })
    worker = RenderWorker(store, engine, worker_id="w1")
    assert worker.process_batch().failed == 1

    fake_tts.error = None
    retry = store.enqueue("track-1", "user-1", store.get(failed.id).payload)
    assert worker.process_batch().completed == 1

    assert store.get(failed.id).status == JobStatus.FAILED.value
    assert "status 503" in store.get(failed.id).error
    assert store.get(retry.id).status == JobStatus.COMPLETED.value
    assert worker.health()["total_failed"] == 1
