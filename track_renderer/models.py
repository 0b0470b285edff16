"""Data models for render jobs: payload config, audio layers, results."""

import math
from dataclasses import asdict, dataclass, field
from typing import Any

from pydub import AudioSegment

from track_renderer.constants import (
    BINAURAL_BANDS,
    BINAURAL_BEAT_RANGE,
    BINAURAL_CARRIER_HZ,
    BINAURAL_CARRIER_RANGE,
    BINAURAL_GAIN_DB,
    BINAURAL_NOISE_OFFSET_DB,
    DEFAULT_FORMAT,
    DEFAULT_PAUSE_SECONDS,
    DEFAULT_QUALITY,
    DEFAULT_VOICE_PROVIDER,
    DEFAULT_VOICES,
    MASTER_FADE_IN_MS,
    MASTER_FADE_OUT_MS,
    MAX_DURATION_SECONDS,
    MAX_FADE_MS,
    MUSIC_GAIN_DB,
    NOISE_CARRIER_GAIN_DB,
    NOISE_COLORS,
    OUTPUT_FORMATS,
    PAUSE_SECONDS_RANGE,
    QUALITY_BITRATES,
    SOLFEGGIO_GAIN_DB,
    TARGET_LUFS,
    TONE_FREQUENCY_RANGE,
    VOICE_GAIN_DB,
)
from track_renderer.errors import ConfigError

LAYER_KINDS = ("voice", "music", "binaural", "solfeggio", "silence")


@dataclass
class VoiceSettings:
    provider: str = DEFAULT_VOICE_PROVIDER
    voice_id: str = ""
    settings: dict = field(default_factory=dict)


@dataclass
class OutputSettings:
    target_duration_seconds: float
    pause_seconds: float = DEFAULT_PAUSE_SECONDS
    format: str = DEFAULT_FORMAT
    quality: str = DEFAULT_QUALITY
    target_lufs: float = TARGET_LUFS
    fade_in_ms: int = MASTER_FADE_IN_MS
    fade_out_ms: int = MASTER_FADE_OUT_MS

    @property
    def target_ms(self) -> int:
        return int(round(self.target_duration_seconds * 1000))

    @property
    def pause_ms(self) -> int:
        return int(round(self.pause_seconds * 1000))


@dataclass
class MusicSettings:
    source: str
    gain_db: float | None = None


@dataclass
class BinauralSettings:
    band: str
    carrier_hz: float = BINAURAL_CARRIER_HZ
    gain_db: float | None = None
    beat_hz: float | None = None  # overrides the band default

    @property
    def beat_frequency(self) -> float:
        if self.beat_hz is not None:
            return self.beat_hz
        return BINAURAL_BANDS[self.band]


@dataclass
class SolfeggioSettings:
    frequency: float
    gain_db: float | None = None


@dataclass
class NoiseCarrier:
    """Pink or brown noise bed mixed under the tone layers."""

    color: str
    gain_db: float = NOISE_CARRIER_GAIN_DB

    @property
    def binaural_gain_db(self) -> float:
        return self.gain_db + BINAURAL_NOISE_OFFSET_DB


@dataclass
class LayerGains:
    """Explicit per-layer gain table. None means "not set by the producer"."""

    voice_db: float | None = None
    music_db: float | None = None
    binaural_db: float | None = None
    solfeggio_db: float | None = None


@dataclass
class RenderConfig:
    script: str
    voice: VoiceSettings
    output: OutputSettings
    background_music: MusicSettings | None = None
    binaural: BinauralSettings | None = None
    solfeggio: SolfeggioSettings | None = None
    noise_carrier: NoiseCarrier | None = None
    gains: LayerGains = field(default_factory=LayerGains)

    @classmethod
    def from_payload(cls, payload: dict) -> "RenderConfig":
        """Parse and validate a job payload.

        Raises ConfigError on the first violation, before any audio work.
        Output timing may be nested under "output" or given at the top level.
        The camelCase keys written by the checkout and track-edit producers
        (backgroundMusic, durationMin, pauseSec, carrierHz, gains.voiceDb, ...)
        are read as aliases of the snake_case ones.
        """
        if not isinstance(payload, dict):
            raise ConfigError("Job payload must be an object")

        script = payload.get("script")
        if not isinstance(script, str) or not script.strip():
            raise ConfigError("Job payload has no script text")

        music_key = "background_music" if payload.get("background_music") is not None else "backgroundMusic"
        return cls(
            script=script,
            voice=_parse_voice(payload.get("voice") or {}),
            output=_parse_output(payload),
            background_music=_parse_music(payload.get(music_key), music_key),
            binaural=_parse_binaural(payload.get("binaural")),
            solfeggio=_parse_solfeggio(payload.get("solfeggio")),
            noise_carrier=_parse_noise_carrier(payload),
            gains=_parse_gains(payload.get("gains") or {}),
        )

    def to_payload(self) -> dict:
        """Normalized payload, the shape producers should insert."""
        return asdict(self)

    def voice_gain_db(self) -> float:
        return _first_set(self.gains.voice_db, VOICE_GAIN_DB)

    def music_gain_db(self) -> float:
        own = self.background_music.gain_db if self.background_music else None
        return _first_set(self.gains.music_db, own, MUSIC_GAIN_DB)

    def binaural_gain_db(self) -> float:
        own = self.binaural.gain_db if self.binaural else None
        return _first_set(self.gains.binaural_db, own, BINAURAL_GAIN_DB)

    def solfeggio_gain_db(self) -> float:
        own = self.solfeggio.gain_db if self.solfeggio else None
        return _first_set(self.gains.solfeggio_db, own, SOLFEGGIO_GAIN_DB)


@dataclass
class AudioLayer:
    """One job-scoped layer on its way to the mixer."""

    kind: str
    audio: AudioSegment
    gain_db: float = 0.0  # applied by the mixer; tone layers bake gain in at generation

    @property
    def duration_ms(self) -> int:
        return len(self.audio)

    @property
    def frame_count(self) -> int:
        return int(self.audio.frame_count())

    @property
    def channels(self) -> int:
        return self.audio.channels

    @property
    def frame_rate(self) -> int:
        return self.audio.frame_rate


@dataclass
class RenderResult:
    audio_url: str
    preview_url: str | None
    storage_key: str
    preview_key: str | None
    duration_seconds: float
    size_bytes: int
    format: str
    layers: list[str] = field(default_factory=list)
    loudness_lufs: float | None = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        if data["loudness_lufs"] is not None and not math.isfinite(data["loudness_lufs"]):
            data["loudness_lufs"] = None  # JSON has no -inf
        return data


# --- payload parsing helpers ---

def _first_set(*values):
    for value in values:
        if value is not None:
            return float(value)
    return None


def _lookup(block: dict, *keys):
    """First key present with a non-null value, as (key, value)."""
    for key in keys:
        if block.get(key) is not None:
            return key, block[key]
    return keys[0], None


def _number(value, name: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigError(f"{name} must be a number, got {value!r}")
    if not math.isfinite(value):
        raise ConfigError(f"{name} must be finite, got {value!r}")
    return float(value)


def _optional_number(block: dict, prefix: str, *keys) -> float | None:
    key, value = _lookup(block, *keys)
    if value is None:
        return None
    return _number(value, f"{prefix}.{key}" if prefix else key)


def _enabled(block, name: str) -> bool:
    if block is None:
        return False
    if not isinstance(block, dict):
        raise ConfigError(f"{name} must be an object, got {block!r}")
    return block.get("enabled", True) is not False


def _parse_voice(block: dict) -> VoiceSettings:
    if not isinstance(block, dict):
        raise ConfigError("voice must be an object")
    provider = block.get("provider") or DEFAULT_VOICE_PROVIDER
    if provider not in DEFAULT_VOICES:
        raise ConfigError(
            f"Unsupported voice provider: {provider!r}. "
            f"Valid: {', '.join(sorted(DEFAULT_VOICES))}"
        )
    voice_id = block.get("voice_id") or block.get("id") or DEFAULT_VOICES[provider]
    settings = block.get("settings") or {}
    if not isinstance(settings, dict):
        raise ConfigError("voice.settings must be an object")
    return VoiceSettings(provider=provider, voice_id=str(voice_id), settings=dict(settings))


def _parse_duration(payload: dict, block: dict) -> float:
    key, duration = _lookup(block, "target_duration_seconds")
    if duration is None:
        key, duration = _lookup(payload, "target_duration_seconds")
    if duration is not None:
        duration = _number(duration, key)
    else:
        key, minutes = _lookup(payload, "durationMin", "duration")
        if minutes is None:
            raise ConfigError("target_duration_seconds is required")
        duration = _number(minutes, key) * 60

    if not 0 < duration <= MAX_DURATION_SECONDS:
        raise ConfigError(
            f"target_duration_seconds must be in (0, {MAX_DURATION_SECONDS}], got {duration:g}"
        )
    return duration


def _parse_pause(payload: dict, block: dict) -> float:
    loop = payload.get("loop") or {}
    if not isinstance(loop, dict):
        raise ConfigError("loop must be an object")
    sources = (
        (block, ("pause_seconds",)),
        (payload, ("pause_seconds", "pauseSec")),
        (loop, ("pause_seconds",)),
    )
    for source, keys in sources:
        key, pause = _lookup(source, *keys)
        if pause is not None:
            break
    else:
        key, pause = "pause_seconds", DEFAULT_PAUSE_SECONDS

    pause = _number(pause, key)
    low, high = PAUSE_SECONDS_RANGE
    if not low <= pause <= high:
        raise ConfigError(f"pause_seconds must be in [{low:g}, {high:g}], got {pause:g}")
    return pause


def _parse_fade(payload: dict, block: dict, name: str, keys: tuple, default: int) -> int:
    """Master fade length from output.<name>, else the fade block's in_ms / inMs style keys."""
    fade = payload.get("fade") or {}
    if not isinstance(fade, dict):
        raise ConfigError("fade must be an object")
    value = _optional_number(block, "output", name)
    if value is None:
        value = _optional_number(fade, "fade", *keys)
    if value is None:
        value = default
    if not 0 <= value <= MAX_FADE_MS:
        raise ConfigError(f"{name} must be in [0, {MAX_FADE_MS}], got {value:g}")
    return int(value)


def _parse_output(payload: dict) -> OutputSettings:
    block = payload.get("output") or {}
    if not isinstance(block, dict):
        raise ConfigError("output must be an object")

    fmt = block.get("format", DEFAULT_FORMAT)
    if fmt not in OUTPUT_FORMATS:
        raise ConfigError(f"Unsupported output format: {fmt!r}")

    quality = block.get("quality", DEFAULT_QUALITY)
    if quality not in QUALITY_BITRATES:
        raise ConfigError(f"Unsupported output quality: {quality!r}")

    safety = payload.get("safety") or {}
    if not isinstance(safety, dict):
        raise ConfigError("safety must be an object")
    target_lufs = _optional_number(block, "output", "target_lufs", "normalization_target")
    if target_lufs is None:
        target_lufs = _optional_number(safety, "safety", "targetLufs")
    if target_lufs is None:
        target_lufs = TARGET_LUFS
    if target_lufs >= 0:
        raise ConfigError(f"target_lufs must be negative, got {target_lufs:g}")

    return OutputSettings(
        target_duration_seconds=_parse_duration(payload, block),
        pause_seconds=_parse_pause(payload, block),
        format=fmt,
        quality=quality,
        target_lufs=target_lufs,
        fade_in_ms=_parse_fade(payload, block, "fade_in_ms", ("in_ms", "inMs"), MASTER_FADE_IN_MS),
        fade_out_ms=_parse_fade(payload, block, "fade_out_ms", ("out_ms", "outMs"), MASTER_FADE_OUT_MS),
    )


def _parse_music(block, name: str = "background_music") -> MusicSettings | None:
    if not _enabled(block, name):
        return None
    source = block.get("source") or block.get("url")
    if not isinstance(source, str) or not source.strip():
        raise ConfigError(f"{name} has no source or url")
    return MusicSettings(
        source=source.strip(),
        gain_db=_optional_number(block, name, "gain_db", "volume_db"),
    )


def _parse_binaural(block) -> BinauralSettings | None:
    if not _enabled(block, "binaural"):
        return None
    band = block.get("band")
    if band not in BINAURAL_BANDS:
        raise ConfigError(
            f"Unknown binaural band: {band!r}. Valid: {', '.join(BINAURAL_BANDS)}"
        )

    carrier = _optional_number(block, "binaural", "carrier_hz", "carrierHz")
    if carrier is None:
        carrier = BINAURAL_CARRIER_HZ
    low, high = BINAURAL_CARRIER_RANGE
    if not low <= carrier <= high:
        raise ConfigError(f"binaural.carrier_hz must be in [{low:g}, {high:g}], got {carrier:g}")

    beat = _optional_number(block, "binaural", "beat_hz", "beatHz")
    if beat is not None:
        low, high = BINAURAL_BEAT_RANGE
        if not low <= beat <= high:
            raise ConfigError(f"binaural.beat_hz must be in [{low:g}, {high:g}], got {beat:g}")

    return BinauralSettings(
        band=band,
        carrier_hz=carrier,
        gain_db=_optional_number(block, "binaural", "gain_db", "volume_db"),
        beat_hz=beat,
    )


def _parse_solfeggio(block) -> SolfeggioSettings | None:
    if not _enabled(block, "solfeggio"):
        return None
    frequency = _optional_number(block, "solfeggio", "frequency", "hz")
    if frequency is None:
        raise ConfigError("solfeggio.frequency is required")
    low, high = TONE_FREQUENCY_RANGE
    if not low < frequency < high:
        raise ConfigError(f"solfeggio.frequency must be in ({low:g}, {high:g}) Hz, got {frequency:g}")
    return SolfeggioSettings(
        frequency=frequency,
        gain_db=_optional_number(block, "solfeggio", "gain_db", "volume_db"),
    )


def _parse_noise_carrier(payload: dict) -> NoiseCarrier | None:
    """noise_carrier {color, gain_db}, or the flat carrierType / carrierGainDb keys."""
    block = payload.get("noise_carrier")
    if block is not None and not isinstance(block, dict):
        raise ConfigError(f"noise_carrier must be an object, got {block!r}")
    block = block or {}

    color = block.get("color", payload.get("carrierType"))
    if color is None or color == "none":
        return None
    if color not in NOISE_COLORS:
        raise ConfigError(f"Unknown noise carrier: {color!r}. Valid: {', '.join(NOISE_COLORS)}, none")

    gain = _optional_number(block, "noise_carrier", "gain_db")
    if gain is None:
        gain = _optional_number(payload, "", "carrierGainDb")
    return NoiseCarrier(color=color, gain_db=NOISE_CARRIER_GAIN_DB if gain is None else gain)


def _parse_gains(block: dict) -> LayerGains:
    if not isinstance(block, dict):
        raise ConfigError("gains must be an object")
    return LayerGains(
        voice_db=_optional_number(block, "gains", "voice_db", "voiceDb"),
        music_db=_optional_number(block, "gains", "music_db", "musicDb"),
        binaural_db=_optional_number(block, "gains", "binaural_db", "binauralDb"),
        solfeggio_db=_optional_number(block, "gains", "solfeggio_db", "solfeggioDb"),
    )
