"""Background music: fetch the producer's asset, then loop or trim it to length."""

import io
import logging
import math
from urllib.parse import urlparse

import httpx
from pydub import AudioSegment

from track_renderer.constants import (
    MUSIC_FADE_IN_MS,
    MUSIC_FADE_OUT_MS,
    MUSIC_LOOP_CROSSFADE_MS,
    SAMPLE_RATE,
)
from track_renderer.errors import ConfigError, ProviderError
from track_renderer.models import AudioLayer, MusicSettings
from track_renderer.storage import Storage
from track_renderer.tones import fit_duration, frames_for
from track_renderer.voice import to_mix_format

logger = logging.getLogger(__name__)

KNOWN_FORMATS = ("mp3", "wav", "ogg", "flac", "m4a", "aac")


def guess_format(source: str) -> str | None:
    """Container format from the source's file extension, if recognisable."""
    path = urlparse(source).path if "://" in source else source
    suffix = path.rsplit(".", 1)[-1].lower() if "." in path else ""
    return suffix if suffix in KNOWN_FORMATS else None


def fetch_music(source: str, storage: Storage, http_client: httpx.Client | None = None) -> bytes:
    """Download the asset: http(s) URLs over HTTP, anything else from storage."""
    if not source.lower().startswith(("http://", "https://")):
        return storage.get(source)

    client = http_client or httpx.Client(timeout=60.0, follow_redirects=True)
    try:
        response = client.get(source)
    except httpx.HTTPError as e:
        raise ProviderError("music", f"download failed for {source}: {e}") from e
    finally:
        if http_client is None:
            client.close()

    if response.status_code >= 400:
        raise ProviderError(
            "music",
            f"download failed for {source}",
            status_code=response.status_code,
            body=response.text,
        )
    return response.content


def load_music(data: bytes, sample_rate: int = SAMPLE_RATE, fmt: str | None = None) -> AudioSegment:
    """Decode music bytes into the mix format. Bad assets are the producer's fault."""
    try:
        audio = AudioSegment.from_file(io.BytesIO(data), format=fmt)
    except Exception as e:
        raise ConfigError(f"Background music could not be decoded: {e}") from e
    if len(audio) == 0:
        raise ConfigError("Background music is empty")
    return to_mix_format(audio, sample_rate)


def loop_with_crossfade(music: AudioSegment, target_ms: int, crossfade_ms: int) -> AudioSegment:
    """Repeat music until it covers target_ms, blending each seam over crossfade_ms.

    The seam (the clip's tail crossfaded into its head) is built once. Every
    repeat after the first is that seam plus the clip's middle, so the result
    is one byte-level tile of that unit.
    """
    target_frames = frames_for(target_ms, music.frame_rate)
    if crossfade_ms <= 0:
        repeats = math.ceil(target_frames / music.frame_count())
        return music * repeats

    body = music[: len(music) - crossfade_ms]
    seam = music[-crossfade_ms:].append(music[:crossfade_ms], crossfade=crossfade_ms)
    unit = seam.raw_data + music[crossfade_ms: len(music) - crossfade_ms].raw_data
    unit_frames = len(unit) // music.frame_width

    repeats = max(0, math.ceil((target_frames - body.frame_count()) / unit_frames))
    logger.debug(
        "Looping %dms music x%d to %dms (%dms crossfade)", len(music), repeats + 1, target_ms, crossfade_ms
    )
    return AudioSegment(
        data=body.raw_data + unit * repeats,
        sample_width=music.sample_width,
        frame_rate=music.frame_rate,
        channels=music.channels,
    )


def prepare_music(
    music: AudioSegment,
    target_ms: int,
    fade_in_ms: int = MUSIC_FADE_IN_MS,
    fade_out_ms: int = MUSIC_FADE_OUT_MS,
    crossfade_ms: int = MUSIC_LOOP_CROSSFADE_MS,
) -> AudioSegment:
    """Loop (with crossfaded seams) or trim music to exactly target_ms, then fade.

    The crossfade is capped at half the clip so each loop still adds audio.
    """
    if len(music) == 0:
        raise ConfigError("Background music is empty")
    if target_ms <= 0:
        raise ConfigError(f"Target duration must be positive, got {target_ms}ms")

    if len(music) < target_ms:
        crossfade = min(crossfade_ms, len(music) // 2)
        music = loop_with_crossfade(music, target_ms, crossfade)

    music = fit_duration(music, target_ms)

    fade_in = min(fade_in_ms, len(music) // 2)
    fade_out = min(fade_out_ms, len(music) // 2)
    if fade_in > 0:
        music = music.fade_in(fade_in)
    if fade_out > 0:
        music = music.fade_out(fade_out)
    return music


def build_music_layer(
    settings: MusicSettings,
    storage: Storage,
    target_ms: int,
    gain_db: float,
    sample_rate: int = SAMPLE_RATE,
    http_client: httpx.Client | None = None,
) -> AudioLayer:
    data = fetch_music(settings.source, storage, http_client)
    music = load_music(data, sample_rate, guess_format(settings.source))
    logger.info("Music %s: %.2fs, fitting to %.2fs", settings.source, len(music) / 1000, target_ms / 1000)
    return AudioLayer(kind="music", audio=prepare_music(music, target_ms), gain_db=gain_db)
