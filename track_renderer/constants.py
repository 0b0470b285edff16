"""All magic numbers and configuration constants."""

SAMPLE_RATE = 44100                 # Hz, every layer is resampled to this before mixing
CHANNELS = 2                        # all layers are stereo
SAMPLE_WIDTH = 2                    # bytes (16-bit PCM)
SYNTH_CHUNK_SECONDS = 10            # tone generation chunk size (bounds peak memory)

VOICE_GAIN_DB = -1.0                # default gain staging per layer
MUSIC_GAIN_DB = -10.0
SOLFEGGIO_GAIN_DB = -18.0
BINAURAL_GAIN_DB = -20.0

BINAURAL_CARRIER_HZ = 200.0         # left ear carrier; right ear = carrier + beat
BINAURAL_CARRIER_RANGE = (100.0, 1000.0)
BINAURAL_BANDS = {                  # band -> base beat frequency (Hz)
    "delta": 2.0,
    "theta": 6.0,
    "alpha": 10.0,
    "beta": 20.0,
    "gamma": 40.0,
}
SOLFEGGIO_FREQUENCIES = (174, 285, 396, 417, 528, 639, 741, 852, 963)
BINAURAL_BEAT_RANGE = (0.5, 100.0)  # explicit beat overrides the band default
TONE_FREQUENCY_RANGE = (20.0, 20000.0)

NOISE_COLORS = ("pink", "brown")    # optional noise bed under the tone layers
NOISE_CARRIER_GAIN_DB = -24.0
BINAURAL_NOISE_OFFSET_DB = -2.0     # binaural bed sits a little under the solfeggio one
NOISE_RMS = 0.25                    # bed level before the carrier gain
NOISE_SEED = 1770                   # same bed on every render

PAUSE_SECONDS_RANGE = (1.0, 30.0)   # silence between voice repetitions
DEFAULT_PAUSE_SECONDS = 5.0
MAX_DURATION_SECONDS = 1800         # 30 minute cap on a single render

MUSIC_FADE_IN_MS = 1000
MUSIC_FADE_OUT_MS = 1500
MUSIC_LOOP_CROSSFADE_MS = 2000      # overlap at each music loop boundary

MASTER_FADE_IN_MS = 1000            # whole-mix fades, applied before normalization
MASTER_FADE_OUT_MS = 1500
MAX_FADE_MS = 60000

PREVIEW_DURATION_MS = 15000         # 15s preview clip
PREVIEW_OFFSET_MS = 30000           # preview starts here when the mix is long enough
PREVIEW_FADE_MS = 500

TARGET_LUFS = -16.0
PEAK_CEILING_DBFS = -1.0
OUTPUT_FORMATS = ("mp3", "wav")
QUALITY_BITRATES = {"low": "128k", "medium": "192k", "high": "320k"}
DEFAULT_FORMAT = "mp3"
DEFAULT_QUALITY = "medium"

DEFAULT_VOICE_PROVIDER = "openai"
DEFAULT_VOICES = {
    "edge": "en-US-AriaNeural",
    "openai": "nova",
    "elevenlabs": "21m00Tcm4TlvDq8ikWAM",
}

STALE_AFTER_SECONDS = 600           # processing jobs older than this are reclaimable
MAX_JOBS_PER_CYCLE = 5
POLL_INTERVAL_SECONDS = 300
STORAGE_PREFIX = "renders"
VERSION = "0.1.0"
