"""Mixer and normalizer: sum aligned layers, fade the mix, then one loudness pass."""

import logging
import math

import numpy as np
from pydub import AudioSegment

from track_renderer.constants import PEAK_CEILING_DBFS, SAMPLE_WIDTH, TARGET_LUFS
from track_renderer.errors import ConfigError
from track_renderer.loudness import integrated_loudness
from track_renderer.models import AudioLayer
from track_renderer.tones import db_to_amplitude, frames_for

logger = logging.getLogger(__name__)

INT16_SCALE = 32768.0


def segment_to_array(audio: AudioSegment) -> np.ndarray:
    """16-bit AudioSegment -> float32 array of shape (frames, channels) in [-1, 1]."""
    if audio.sample_width != SAMPLE_WIDTH:
        audio = audio.set_sample_width(SAMPLE_WIDTH)
    samples = np.frombuffer(audio.raw_data, dtype=np.int16).astype(np.float32)
    return samples.reshape((-1, audio.channels)) / INT16_SCALE


def array_to_segment(samples: np.ndarray, sample_rate: int) -> AudioSegment:
    """float array of shape (frames, channels) -> 16-bit AudioSegment, clipped."""
    processed = np.clip(np.round(samples * INT16_SCALE), -32768, 32767).astype(np.int16)
    return AudioSegment(
        data=processed.tobytes(),
        sample_width=SAMPLE_WIDTH,
        frame_rate=sample_rate,
        channels=processed.shape[1],
    )


def mix_layers(layers: list[AudioLayer]) -> np.ndarray:
    """Sum layers sample by sample after applying each layer's gain.

    Every layer must share frame rate, channel count and frame count.
    """
    if not layers:
        raise ConfigError("Nothing to mix: no layers were produced")

    first = layers[0]
    for layer in layers[1:]:
        if (layer.frame_rate, layer.channels, layer.frame_count) != (
            first.frame_rate, first.channels, first.frame_count,
        ):
            raise ConfigError(
                f"Layer {layer.kind!r} ({layer.frame_count} frames, {layer.channels}ch, "
                f"{layer.frame_rate}Hz) does not match {first.kind!r} ({first.frame_count} frames, "
                f"{first.channels}ch, {first.frame_rate}Hz)"
            )

    mix = np.zeros((first.frame_count, first.channels), dtype=np.float32)
    for layer in layers:
        samples = segment_to_array(layer.audio)
        if layer.gain_db:
            samples *= db_to_amplitude(layer.gain_db)
        mix += samples
        logger.debug("Mixed %s layer at %.1fdB", layer.kind, layer.gain_db)
    return mix


def apply_fades(samples: np.ndarray, sample_rate: int, fade_in_ms: int, fade_out_ms: int) -> np.ndarray:
    """Linear fade-in at the head and fade-out at the tail of (frames, channels), in place.

    Each fade is capped at half the mix.
    """
    n_frames = samples.shape[0]
    fade_in = min(frames_for(fade_in_ms, sample_rate), n_frames // 2)
    fade_out = min(frames_for(fade_out_ms, sample_rate), n_frames // 2)
    if fade_in > 0:
        ramp = np.linspace(0.0, 1.0, fade_in, endpoint=False, dtype=samples.dtype)
        samples[:fade_in] *= ramp[:, np.newaxis]
    if fade_out > 0:
        ramp = np.linspace(1.0, 0.0, fade_out, dtype=samples.dtype)
        samples[n_frames - fade_out:] *= ramp[:, np.newaxis]
    return samples


def normalize_loudness(
    samples: np.ndarray,
    sample_rate: int,
    target_lufs: float = TARGET_LUFS,
    ceiling_dbfs: float = PEAK_CEILING_DBFS,
) -> tuple[np.ndarray, float]:
    """Single gain pass to target_lufs, backed off to keep the peak under the ceiling.

    Returns (normalized samples, measured loudness before gain). Silence and
    clips too short to measure are returned untouched.
    """
    measured = integrated_loudness(samples, sample_rate)
    if not math.isfinite(measured):
        logger.info("Mix is silent or too short to measure; skipping normalization")
        return samples, measured

    gain_db = target_lufs - measured
    peak = float(np.max(np.abs(samples))) if samples.size else 0.0
    if peak > 0:
        headroom_db = ceiling_dbfs - 20 * math.log10(peak)
        if gain_db > headroom_db:
            logger.info("Peak ceiling limits gain from %+.2fdB to %+.2fdB", gain_db, headroom_db)
            gain_db = headroom_db

    logger.info("Loudness %.2f LUFS -> target %.2f LUFS (gain %+.2fdB)", measured, target_lufs, gain_db)
    return samples * db_to_amplitude(gain_db), measured


def mix_and_normalize(
    layers: list[AudioLayer],
    target_lufs: float = TARGET_LUFS,
    ceiling_dbfs: float = PEAK_CEILING_DBFS,
    fade_in_ms: int = 0,
    fade_out_ms: int = 0,
) -> tuple[AudioSegment, float]:
    """Mix, fade, normalize, and return (stereo mix, output loudness in LUFS)."""
    sample_rate = layers[0].frame_rate if layers else 0
    mixed = mix_layers(layers)
    if fade_in_ms or fade_out_ms:
        apply_fades(mixed, sample_rate, fade_in_ms, fade_out_ms)
    normalized, _ = normalize_loudness(mixed, sample_rate, target_lufs, ceiling_dbfs)
    output_lufs = integrated_loudness(normalized, sample_rate)
    return array_to_segment(normalized, sample_rate), output_lufs
