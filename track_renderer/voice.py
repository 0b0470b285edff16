"""Voice layer: synthesize the script once, then loop it with pauses to length."""

import io
import logging
import math

from pydub import AudioSegment

from track_renderer.constants import CHANNELS, SAMPLE_RATE, SAMPLE_WIDTH
from track_renderer.errors import ConfigError, ProviderError
from track_renderer.models import AudioLayer, VoiceSettings
from track_renderer.tones import fit_duration, frames_for, generate_silence
from track_renderer.tts import SynthesizedSpeech, TTSClient

logger = logging.getLogger(__name__)


def to_mix_format(audio: AudioSegment, sample_rate: int = SAMPLE_RATE) -> AudioSegment:
    """Stereo, 16-bit, at the engine sample rate.

    pydub only converts mono<->multichannel, so anything wider than stereo
    is folded to mono first.
    """
    if audio.channels > CHANNELS:
        audio = audio.set_channels(1)
    return (
        audio.set_channels(CHANNELS)
        .set_sample_width(SAMPLE_WIDTH)
        .set_frame_rate(sample_rate)
    )


def decode_speech(speech: SynthesizedSpeech, sample_rate: int = SAMPLE_RATE) -> AudioSegment:
    """Decode a provider clip and upmix it to stereo, whatever it came as.

    This is the only decode of the clip; its duration is recorded on speech.
    """
    try:
        audio = AudioSegment.from_file(io.BytesIO(speech.audio), format=speech.format)
    except Exception as e:
        raise ProviderError(speech.provider, f"returned undecodable {speech.format} audio: {e}") from e
    if len(audio) == 0:
        raise ProviderError(speech.provider, "speech clip is empty")
    if speech.duration_seconds is None:
        speech.duration_seconds = len(audio) / 1000.0
    return to_mix_format(audio, sample_rate)


def loop_to_duration(base: AudioSegment, target_ms: int, pause_ms: int) -> AudioSegment:
    """Repeat base with pause_ms of silence between copies, exactly target_ms long.

    A clip already at least target_ms is simply trimmed. Otherwise
    ceil(target / (clip + pause)) repetitions always cover the target, and
    the last one is cut so the total is the target, not merely >= it.
    """
    if len(base) == 0:
        raise ProviderError("tts", "speech clip is empty")
    if target_ms <= 0:
        raise ConfigError(f"Target duration must be positive, got {target_ms}ms")

    target_frames = frames_for(target_ms, base.frame_rate)
    if base.frame_count() >= target_frames:
        return fit_duration(base, target_ms)

    gap = generate_silence(pause_ms, sample_rate=base.frame_rate, channels=base.channels)
    unit = base.raw_data + gap.raw_data
    repeats = math.ceil(target_frames / (len(unit) // base.frame_width))
    logger.debug("Looping %dms clip x%d with %dms pauses to %dms", len(base), repeats, pause_ms, target_ms)

    looped = AudioSegment(
        data=unit * repeats,
        sample_width=base.sample_width,
        frame_rate=base.frame_rate,
        channels=base.channels,
    )
    return fit_duration(looped, target_ms)


def build_voice_layer(
    tts: TTSClient,
    voice: VoiceSettings,
    script: str,
    target_ms: int,
    pause_ms: int,
    gain_db: float,
    sample_rate: int = SAMPLE_RATE,
) -> AudioLayer:
    """Synthesize once via the TTS collaborator and fit to the target length."""
    speech = tts.synthesize(voice, script)
    base = decode_speech(speech, sample_rate)
    logger.info(
        "Voice clip %.2fs, fitting to %.2fs with %.1fs pauses",
        len(base) / 1000, target_ms / 1000, pause_ms / 1000,
    )
    return AudioLayer(
        kind="voice",
        audio=loop_to_duration(base, target_ms, pause_ms),
        gain_db=gain_db,
    )
