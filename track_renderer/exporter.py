"""Preview extraction and encoding of the final mix."""

import io
import logging

from pydub import AudioSegment

from track_renderer.constants import (
    PREVIEW_DURATION_MS,
    PREVIEW_FADE_MS,
    PREVIEW_OFFSET_MS,
    QUALITY_BITRATES,
    VERSION,
)
from track_renderer.errors import ConfigError, InternalError

logger = logging.getLogger(__name__)


def extract_preview(
    mix: AudioSegment,
    duration_ms: int = PREVIEW_DURATION_MS,
    offset_ms: int = PREVIEW_OFFSET_MS,
    fade_ms: int = PREVIEW_FADE_MS,
) -> AudioSegment:
    """Cut a short faded clip from the mix.

    The offset is pulled back when it would run past the end, and the clip
    is the whole mix when the mix is shorter than the preview.
    """
    duration_ms = min(duration_ms, len(mix))
    offset_ms = max(0, min(offset_ms, len(mix) - duration_ms))
    preview = mix[offset_ms:offset_ms + duration_ms]

    fade = min(fade_ms, len(preview) // 2)
    if fade > 0:
        preview = preview.fade_in(fade).fade_out(fade)
    return preview


def encode(audio: AudioSegment, fmt: str, quality: str, tags: dict | None = None) -> bytes:
    """Encode audio to bytes in the delivery format.

    Bitrate follows quality for mp3; wav is written as 16-bit PCM.
    """
    if quality not in QUALITY_BITRATES:
        raise ConfigError(f"Unsupported output quality: {quality!r}")
    bitrate = QUALITY_BITRATES[quality] if fmt == "mp3" else None

    kwargs = {"format": fmt}
    if bitrate:
        kwargs["bitrate"] = bitrate
        kwargs["tags"] = {"encoded_by": f"track-renderer {VERSION}", **(tags or {})}

    buffer = io.BytesIO()
    try:
        audio.export(buffer, **kwargs)
    except Exception as e:
        logger.error("Encoding failed (format=%s, bitrate=%s): %s", fmt, bitrate, e)
        raise InternalError(f"{fmt} encoding failed: {e}", cause=e.__class__.__name__) from e

    data = buffer.getvalue()
    logger.info(
        "Encoded %.2fs as %s%s (%.2fMB)",
        len(audio) / 1000, fmt, f" @ {bitrate}" if bitrate else "", len(data) / 1024 / 1024,
    )
    return data
