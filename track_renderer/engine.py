"""Synthesis engine: one render job in, one uploaded track out.

Stages and the progress reported on entry/exit:

    voice       5 -> 20
    music      25 -> 30   (if configured)
    solfeggio  35 -> 40   (if enabled)
    binaural   45 -> 50   (if enabled)
    mix        55 -> 85   (master fade, then one loudness pass)
    encode     88
    upload     95

All audio lives only inside one render() call. The engine holds its
collaborators but no per-job state, so one instance serves a whole worker.
"""

import logging
from typing import Callable

import httpx

from track_renderer.constants import (
    NOISE_CARRIER_GAIN_DB,
    PREVIEW_DURATION_MS,
    PREVIEW_OFFSET_MS,
    SAMPLE_RATE,
)
from track_renderer.exporter import encode, extract_preview
from track_renderer.mixer import mix_and_normalize
from track_renderer.models import AudioLayer, RenderConfig, RenderResult
from track_renderer.music import build_music_layer
from track_renderer.storage import CONTENT_TYPES, Storage, render_key
from track_renderer.store import RenderJob
from track_renderer.tones import beat_frequency_for_band, generate_binaural, generate_solfeggio
from track_renderer.tts import TTSClient
from track_renderer.voice import build_voice_layer

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, str], None]


def _no_progress(percent: int, stage: str) -> None:
    pass


class SynthesisEngine:
    def __init__(
        self,
        tts: TTSClient,
        storage: Storage,
        sample_rate: int = SAMPLE_RATE,
        preview_ms: int = PREVIEW_DURATION_MS,
        preview_offset_ms: int = PREVIEW_OFFSET_MS,
        http_client: httpx.Client | None = None,
    ):
        self.tts = tts
        self.storage = storage
        self.sample_rate = sample_rate
        self.preview_ms = preview_ms
        self.preview_offset_ms = preview_offset_ms
        self.http_client = http_client

    def render(self, job: RenderJob, progress: ProgressCallback | None = None) -> RenderResult:
        report = progress or _no_progress

        def stage(percent: int, label: str) -> None:
            logger.info("[job %s] %d%% %s", job.id, percent, label)
            report(percent, label)

        config = RenderConfig.from_payload(job.payload)
        # Resolve everything that can be rejected before paying for synthesis
        if config.binaural:
            beat_frequency_for_band(config.binaural.band)
        self.tts.get_provider(config.voice.provider)

        target_ms = config.output.target_ms
        layers: list[AudioLayer] = []

        stage(5, "Generating voice")
        layers.append(build_voice_layer(
            self.tts,
            config.voice,
            config.script,
            target_ms,
            config.output.pause_ms,
            config.voice_gain_db(),
            self.sample_rate,
        ))
        stage(20, "Voice ready")

        if config.background_music:
            stage(25, "Preparing background music")
            layers.append(build_music_layer(
                config.background_music,
                self.storage,
                target_ms,
                config.music_gain_db(),
                self.sample_rate,
                self.http_client,
            ))
            stage(30, "Background music ready")

        carrier = config.noise_carrier
        if config.solfeggio:
            stage(35, "Generating solfeggio tone")
            layers.append(AudioLayer(
                kind="solfeggio",
                audio=generate_solfeggio(
                    config.solfeggio.frequency,
                    target_ms,
                    config.solfeggio_gain_db(),
                    self.sample_rate,
                    noise_color=carrier.color if carrier else None,
                    noise_gain_db=carrier.gain_db if carrier else NOISE_CARRIER_GAIN_DB,
                ),
            ))
            stage(40, "Solfeggio tone ready")

        if config.binaural:
            stage(45, "Generating binaural beat")
            layers.append(AudioLayer(
                kind="binaural",
                audio=generate_binaural(
                    config.binaural.band,
                    target_ms,
                    config.binaural_gain_db(),
                    config.binaural.carrier_hz,
                    self.sample_rate,
                    beat_hz=config.binaural.beat_hz,
                    noise_color=carrier.color if carrier else None,
                    noise_gain_db=carrier.binaural_gain_db if carrier else NOISE_CARRIER_GAIN_DB,
                ),
            ))
            stage(50, "Binaural beat ready")

        stage(55, "Mixing layers")
        mix, loudness = mix_and_normalize(
            layers,
            config.output.target_lufs,
            fade_in_ms=config.output.fade_in_ms,
            fade_out_ms=config.output.fade_out_ms,
        )
        stage(85, "Mix normalized")

        fmt = config.output.format
        stage(88, "Encoding")
        preview = extract_preview(mix, self.preview_ms, self.preview_offset_ms)
        track_bytes = encode(mix, fmt, config.output.quality)
        preview_bytes = encode(preview, fmt, config.output.quality)

        stage(95, "Uploading")
        content_type = CONTENT_TYPES.get(fmt, "application/octet-stream")
        track_key = render_key(job.track_id, job.id, job.claim_generation, f"track.{fmt}")
        preview_key = render_key(job.track_id, job.id, job.claim_generation, f"preview.{fmt}")
        audio_url = self.storage.put(track_key, track_bytes, content_type)
        preview_url = self.storage.put(preview_key, preview_bytes, content_type)

        result = RenderResult(
            audio_url=audio_url,
            preview_url=preview_url,
            storage_key=track_key,
            preview_key=preview_key,
            duration_seconds=round(mix.frame_count() / mix.frame_rate, 3),
            size_bytes=len(track_bytes),
            format=fmt,
            layers=[layer.kind for layer in layers],
            loudness_lufs=loudness,
        )
        logger.info(
            "[job %s] rendered %.1fs %s (%d bytes, layers=%s)",
            job.id, result.duration_seconds, fmt, result.size_bytes, ",".join(result.layers),
        )
        return result
