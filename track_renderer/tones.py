"""Tone layers: binaural beats, solfeggio tones, their noise bed, and silence.

Everything here is in-process numpy sample generation (scipy only colors
the noise). No ffmpeg filter graph or other external generator is involved.
"""

import logging

import numpy as np
from pydub import AudioSegment
from scipy.signal import lfilter

from track_renderer.constants import (
    BINAURAL_BANDS,
    BINAURAL_CARRIER_HZ,
    BINAURAL_GAIN_DB,
    CHANNELS,
    NOISE_CARRIER_GAIN_DB,
    NOISE_RMS,
    NOISE_SEED,
    SAMPLE_RATE,
    SAMPLE_WIDTH,
    SOLFEGGIO_FREQUENCIES,
    SOLFEGGIO_GAIN_DB,
    SYNTH_CHUNK_SECONDS,
)
from track_renderer.errors import ConfigError

logger = logging.getLogger(__name__)

INT16_FULL_SCALE = 32767


def db_to_amplitude(db: float) -> float:
    """Convert a gain in dB to a linear amplitude factor."""
    return float(10 ** (db / 20.0))


def frames_for(duration_ms: int, sample_rate: int = SAMPLE_RATE) -> int:
    """Frame count for a duration, matching pydub's slicing arithmetic."""
    return int(duration_ms * sample_rate / 1000.0)


def fit_duration(audio: AudioSegment, duration_ms: int) -> AudioSegment:
    """Cut (or zero-pad) to exactly the frame count of duration_ms.

    Callers build audio at least as long as the target; the padding branch
    only absorbs a trailing frame lost to rounding.
    """
    n_bytes = frames_for(duration_ms, audio.frame_rate) * audio.frame_width
    data = audio.raw_data[:n_bytes]
    if len(data) < n_bytes:
        data += b"\x00" * (n_bytes - len(data))
    return AudioSegment(
        data=data,
        sample_width=audio.sample_width,
        frame_rate=audio.frame_rate,
        channels=audio.channels,
    )


def beat_frequency_for_band(band: str) -> float:
    """Look up the base beat frequency for a brainwave band."""
    try:
        return BINAURAL_BANDS[band]
    except (KeyError, TypeError):
        raise ConfigError(
            f"Unknown binaural band: {band!r}. Valid: {', '.join(BINAURAL_BANDS)}"
        ) from None


def _sine_channels(
    frequencies: list[float],
    n_frames: int,
    amplitude: float,
    sample_rate: int,
) -> np.ndarray:
    """Interleaved int16 frames, one sine per channel.

    Generated in fixed-size chunks so a 30 minute layer never materializes
    a float64 time axis for the whole duration.
    """
    out = np.empty((n_frames, len(frequencies)), dtype=np.int16)
    chunk = max(1, SYNTH_CHUNK_SECONDS * sample_rate)
    scale = amplitude * INT16_FULL_SCALE

    for start in range(0, n_frames, chunk):
        stop = min(start + chunk, n_frames)
        t = np.arange(start, stop, dtype=np.float64) / sample_rate
        for ch, freq in enumerate(frequencies):
            wave = np.sin(2 * np.pi * freq * t) * scale
            out[start:stop, ch] = np.clip(np.round(wave), -32768, 32767).astype(np.int16)

    return out


# Pink: -3 dB/octave IIR approximation. Brown: leaky integrator (-6 dB/octave).
NOISE_FILTERS = {
    "pink": (
        [0.049922035, -0.095993537, 0.050612699, -0.004408786],
        [1.0, -2.494956002, 2.017265875, -0.522189400],
    ),
    "brown": ([1.0], [1.0, -0.995]),
}


def add_noise_carrier(
    frames: np.ndarray,
    color: str,
    gain_db: float = NOISE_CARRIER_GAIN_DB,
    sample_rate: int = SAMPLE_RATE,
) -> np.ndarray:
    """Mix a mono pink or brown noise bed into every channel of int16 frames, in place.

    White noise from a fixed seed is colored by NOISE_FILTERS chunk by chunk,
    with the filter state carried across chunks. The bed is scaled so the
    first chunk sits at NOISE_RMS before gain_db is applied.
    """
    if color not in NOISE_FILTERS:
        raise ConfigError(f"Unknown noise carrier: {color!r}. Valid: {', '.join(NOISE_FILTERS)}")

    b, a = NOISE_FILTERS[color]
    rng = np.random.default_rng(NOISE_SEED)
    state = np.zeros(max(len(a), len(b)) - 1)
    chunk = max(1, SYNTH_CHUNK_SECONDS * sample_rate)
    scale = None

    for start in range(0, frames.shape[0], chunk):
        stop = min(start + chunk, frames.shape[0])
        noise, state = lfilter(b, a, rng.uniform(-1.0, 1.0, stop - start), zi=state)
        if scale is None:
            rms = float(np.sqrt(np.mean(noise ** 2)))
            scale = NOISE_RMS * db_to_amplitude(gain_db) * INT16_FULL_SCALE / rms if rms > 0 else 0.0
        bed = np.round(noise * scale).astype(np.int32)[:, np.newaxis]
        mixed = frames[start:stop].astype(np.int32) + bed
        frames[start:stop] = np.clip(mixed, -32768, 32767).astype(np.int16)

    logger.debug("Added %s noise carrier at %.1fdB to %d frames", color, gain_db, frames.shape[0])
    return frames


def _to_segment(frames: np.ndarray, sample_rate: int) -> AudioSegment:
    return AudioSegment(
        data=frames.tobytes(),
        sample_width=SAMPLE_WIDTH,
        frame_rate=sample_rate,
        channels=frames.shape[1],
    )


def generate_binaural(
    band: str,
    duration_ms: int,
    gain_db: float = BINAURAL_GAIN_DB,
    carrier_hz: float = BINAURAL_CARRIER_HZ,
    sample_rate: int = SAMPLE_RATE,
    beat_hz: float | None = None,
    noise_color: str | None = None,
    noise_gain_db: float = NOISE_CARRIER_GAIN_DB,
) -> AudioSegment:
    """Generate a stereo binaural beat.

    Left ear plays the carrier, right ear plays carrier + beat, where the
    beat comes from the band unless beat_hz overrides it. The band is
    resolved before any samples are produced, so an unknown band fails fast.
    With noise_color set, a pink or brown bed is mixed under both ears.
    """
    band_hz = beat_frequency_for_band(band)
    if beat_hz is None:
        beat_hz = band_hz
    left_hz = carrier_hz
    right_hz = carrier_hz + beat_hz
    logger.debug(
        "Binaural %s: L=%.2fHz R=%.2fHz (%dms at %.1fdB)",
        band, left_hz, right_hz, duration_ms, gain_db,
    )
    frames = _sine_channels(
        [left_hz, right_hz],
        frames_for(duration_ms, sample_rate),
        db_to_amplitude(gain_db),
        sample_rate,
    )
    if noise_color:
        add_noise_carrier(frames, noise_color, noise_gain_db, sample_rate)
    return _to_segment(frames, sample_rate)


def generate_solfeggio(
    frequency: float,
    duration_ms: int,
    gain_db: float = SOLFEGGIO_GAIN_DB,
    sample_rate: int = SAMPLE_RATE,
    noise_color: str | None = None,
    noise_gain_db: float = NOISE_CARRIER_GAIN_DB,
) -> AudioSegment:
    """Generate a fixed-frequency sine, mono content duplicated to stereo.

    With noise_color set, the tone is embedded in a pink or brown bed.
    """
    if frequency <= 0 or frequency >= sample_rate / 2:
        raise ConfigError(f"Tone frequency {frequency}Hz is outside the audible band for {sample_rate}Hz")
    kind = "standard" if frequency in SOLFEGGIO_FREQUENCIES else "custom"
    logger.debug("Solfeggio %.2fHz %s tone (%dms at %.1fdB)", frequency, kind, duration_ms, gain_db)
    mono = _sine_channels(
        [frequency],
        frames_for(duration_ms, sample_rate),
        db_to_amplitude(gain_db),
        sample_rate,
    )
    frames = np.repeat(mono, CHANNELS, axis=1)
    if noise_color:
        add_noise_carrier(frames, noise_color, noise_gain_db, sample_rate)
    return _to_segment(frames, sample_rate)


def generate_silence(
    duration_ms: int,
    sample_rate: int = SAMPLE_RATE,
    channels: int = CHANNELS,
) -> AudioSegment:
    """Deterministic all-zero buffer, used for repeat gaps and padding."""
    frames = np.zeros((frames_for(duration_ms, sample_rate), channels), dtype=np.int16)
    return _to_segment(frames, sample_rate)
