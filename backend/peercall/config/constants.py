"""
Application-wide constants for signaling and media tuning.

Note: Environment-dependent settings (Redis, ICE servers, devices) belong in settings.py.
This file is for operational parameters that rarely change between environments.
"""

# ==============================================================================
# CALL IDENTITY
# ==============================================================================

# Separator used when joining the sorted participant ids into a call id
CALL_ID_SEPARATOR: str = "_"

# Characters a participant id may not contain (call id separator, Redis key delimiter)
PARTICIPANT_ID_FORBIDDEN_CHARS: tuple[str, ...] = (CALL_ID_SEPARATOR, ":")

# ==============================================================================
# SIGNALING - REDIS KEYS
# ==============================================================================

# Hash holding the scalar fields of a call record
CALL_RECORD_KEY_PREFIX: str = "call:"

# Suffix for the per-participant candidate list (call:{id}:candidates:{uid})
CALL_CANDIDATES_KEY_SUFFIX: str = ":candidates:"

# Suffix for the per-participant candidate fingerprint set (union semantics)
CALL_CANDIDATE_SEEN_KEY_SUFFIX: str = ":candidates-seen:"

# Set of participants that have published candidates for a record
CALL_CANDIDATE_OWNERS_KEY_SUFFIX: str = ":candidate-owners"

# Pub/sub channel notified after every write to a call record
CALL_CHANNEL_PREFIX: str = "channel:call:"

# Record fields cleared when a call ends
NEGOTIATION_FIELDS: tuple[str, ...] = ("offer", "answer", "candidates")

# ==============================================================================
# ICE
# ==============================================================================

# Public STUN server used when none is configured
DEFAULT_STUN_URL: str = "stun:stun.l.google.com:19302"

# ==============================================================================
# MEDIA CAPTURE
# ==============================================================================

# Requested camera resolution and frame rate
DEFAULT_VIDEO_SIZE: str = "640x480"
DEFAULT_VIDEO_FRAMERATE: str = "30"

# Camera input formats per platform (ffmpeg demuxer names)
VIDEO_FORMAT_BY_PLATFORM: dict[str, tuple[str, str]] = {
    "linux": ("/dev/video0", "v4l2"),
    "darwin": ("default:none", "avfoundation"),
    "win32": ("video=Integrated Camera", "dshow"),
}

# Microphone input formats tried in order when none is configured
AUDIO_FORMAT_FALLBACKS: tuple[str, ...] = ("pulse", "alsa")

# ==============================================================================
# TIMING
# ==============================================================================

# Pub/sub poll timeout for the snapshot listener (seconds)
SIGNALING_LISTEN_TIMEOUT_SEC: float = 1.0

# Grace period when cancelling a snapshot listener task (seconds)
GRACEFUL_SHUTDOWN_TIMEOUT_SEC: float = 0.5
