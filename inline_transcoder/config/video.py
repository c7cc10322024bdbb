"""
Configuration settings related to video and animated-image conversion.

This module defines the static encoder parameters used to build the strategy
table: codec names, container formats, CRF escalation rules and the fixed
profile used by the size-governed re-encode pass.
"""

# --- Supported Inputs ---
# MIME type prefixes accepted for conversion. GIFs are converted to video.
SUPPORTED_MIME_TYPES = (
    "video/mp4",
    "video/webm",
    "video/quicktime",
    "video/x-msvideo",
    "video/x-matroska",
    "video/mov",
    "image/gif",
)
ANIMATED_IMAGE_MIME_TYPES = ("image/gif",)
ANIMATED_IMAGE_EXTENSIONS = (".gif",)
VIDEO_EXTENSIONS = (".mp4", ".webm", ".mov", ".avi", ".mkv", ".m4v")

# File extension used for the downloaded input, by observed content type.
INPUT_EXTENSIONS = {
    "video/mp4": "mp4",
    "video/webm": "webm",
    "video/quicktime": "mov",
    "video/mov": "mov",
    "video/x-msvideo": "avi",
    "video/x-matroska": "mkv",
    "image/gif": "gif",
}

DEFAULT_VIDEO_MIME_TYPE = "video/mp4"
DEFAULT_ANIMATED_IMAGE_MIME_TYPE = "image/gif"

# Stream codec names ffprobe reports for animated image inputs.
ANIMATED_IMAGE_CODEC_NAMES = ("gif", "webp", "apng")

# --- Encoder Settings ---
VP9_ENCODER = "libvpx-vp9"
H264_ENCODER = "libx264"

CONTAINER_MIME_TYPES = {
    "webm": "video/webm",
    "mp4": "video/mp4",
}

# --- CRF Rules ---
# Animated images start slightly coarser than the configured base CRF.
ANIMATED_IMAGE_CRF_OFFSET = 5
CRF_ESCALATION_STEP = 5
PRIMARY_CRF_CEILING = 35
FALLBACK_CRF_CEILING = 40
MAX_CRF = 51

# --- Frame Rate Caps ---
PRIMARY_MAX_FPS = 30
REENCODE_MAX_FPS = 24

# --- Size-Governed Re-encode Profile ---
REENCODE_RESOLUTION_DIVISOR = 2
MIN_REENCODE_RESOLUTION = 144
REENCODE_CRF = {
    VP9_ENCODER: 40,
    H264_ENCODER: 28,
}

# --- Codec Specific Flags ---
VP9_PRIMARY_ARGS = {
    "b:v": 0,
    "deadline": "good",
    "cpu-used": 2,
    "auto-alt-ref": 0,
    "an": None,
}
VP9_REENCODE_ARGS = {
    "b:v": 0,
    "deadline": "good",
    "cpu-used": 4,
    "auto-alt-ref": 0,
    "an": None,
}
H264_ANIMATED_ARGS = {
    "preset": "fast",
    "pix_fmt": "yuv420p",
    "movflags": "+faststart",
    "an": None,
}
H264_VIDEO_ARGS = {
    "preset": "fast",
    "c:a": "aac",
    "b:a": "128k",
    "movflags": "+faststart",
}
