"""All magic numbers and configuration constants."""

MAX_PARAGRAPH_CHARS = 1000          # chars: target upper bound per narrated paragraph
FORCE_SPLIT_FACTOR = 1.5            # chunks above MAX * factor are cut at fixed width
SYNTH_MAX_CHARS = 4000              # hard input limit of one synthesis call
SAMPLE_RATE = 24000                 # Hz: native output rate of the synthesis adapter
CHANNELS = 1                        # mono narration
BIT_DEPTH = 16                      # container bit depth (fixed)
WAV_HEADER_SIZE = 44                # bytes: RIFF/WAVE header with a single fmt chunk
TIMESTAMP_TOLERANCE = 0.001         # seconds: allowed drift between table end and track duration
TTS_RETRY_COUNT = 3                 # max attempts per synthesis call
TTS_RETRY_BASE_DELAY = 1.0          # seconds: base delay for exponential backoff
TTS_TIMEOUT_SECONDS = 60.0          # per synthesis call
TTS_RATE = "+0%"                    # speech rate relative to the voice default
SYNTH_WORKERS = 4                   # concurrent synthesis calls per document
SYNTH_CANCEL_POLL_INTERVAL = 0.1    # seconds: how often a running call checks for an abort
OCR_MODEL = "gemini-2.5-flash"
OCR_TIMEOUT_SECONDS = 120.0         # per OCR call
OCR_PROMPT = (
    "Extract all the legible text from this document image. "
    "Maintain the original paragraph structure as best as possible. "
    "Do not add any markdown formatting like bold or italics, just plain text."
)
MAX_IMAGE_BYTES = 10 * 1024 * 1024  # 10MB per uploaded page image
PROGRESS_SAVE_INTERVAL = 2.0        # seconds: minimum gap between playback progress writes
PLAYBACK_SPEED_MIN = 0.5
PLAYBACK_SPEED_MAX = 2.0
MALE_VOICE = "en-US-GuyNeural"
FEMALE_VOICE = "en-US-JennyNeural"
AUDIO_FORMAT = "wav"
OUTPUT_DIR = "output"
VERSION = "0.1.0"
