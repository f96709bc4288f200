"""
Project-wide constants for the Gemini enhancement pipeline
"""  # noqa: D200, D212, D415

# ==============================================================================
# Remote API
# ==============================================================================

DEFAULT_MODEL_ID = "gemini-2.5-flash"
API_BASE_URL = "https://generativelanguage.googleapis.com/v1beta/models"
API_KEY_HEADER = "x-goog-api-key"

NETWORK_TIMEOUT = 120.0  # seconds
DEFAULT_RETRY_AFTER_MS = 60_000

# Generation defaults
DEFAULT_TEMPERATURE = 0.7
DEFAULT_TOP_P = 0.95
DEFAULT_TOP_K = 40
DEFAULT_MAX_OUTPUT_TOKENS = 8192

# ==============================================================================
# Segmenting
# ==============================================================================

# One value is both the threshold that triggers chunking and the segment ceiling
DEFAULT_CHUNK_SIZE = 20_000  # characters
MIN_SEGMENT_CHARS = 4000  # floor for the model-derived segment size
PROMPT_OVERHEAD_TOKENS = 1500
HISTORY_OVERHEAD_TOKENS = 2000
CHARS_PER_TOKEN = 4

# ==============================================================================
# Model context sizes (tokens)
# ==============================================================================

DEFAULT_CONTEXT_TOKENS = 16_000
MODEL_CONTEXT_TOKENS = {
    "gemini-2.5-pro": 1_000_000,
    "gemini-2.5-flash": 16_000,
    "gemini-2.0-flash": 32_000,
}

# ==============================================================================
# Orchestration
# ==============================================================================

MAX_ATTEMPTS = 3  # total, including the first
BACKOFF_BASE_MS = 3000
RATE_LIMIT_SLICE_SECONDS = 25.0  # keep-alive slice for long waits
INTER_SEGMENT_DELAY_SECONDS = 1.0

# Retention guard against silent summarization
MIN_RETENTION_RATIO = 0.7
RETENTION_MIN_WORDS = 200  # shorter segments are exempt

# Segments shorter than this are rejected without a network call
MIN_CONTENT_CHARS = 50

# Conversation history forwarded with each request (2 exchanges)
HISTORY_TURN_LIMIT = 4
