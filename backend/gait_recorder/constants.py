from pathlib import Path

APP_DIR = Path(__file__).resolve().parent

MAX_UPLOAD_BYTES = 500 * 1024 * 1024  # 500MB
CHUNK_SIZE = 1024 * 1024

DEFAULT_EXTENSION = ".webm"
DEFAULT_MEDIA_TYPE = "video/webm"

VIDEO_MEDIA_TYPES = {
    ".webm": "video/webm",
    ".mp4": "video/mp4",
    ".mov": "video/quicktime",
    ".mkv": "video/x-matroska",
    ".ogv": "video/ogg",
}

ASSESSMENTS = ("good", "issue", "poor")

# room for form fields and boundaries on top of the video part
MULTIPART_OVERHEAD_BYTES = 64 * 1024
