"""Global constants for placement, storage keys and file types."""
import re
from urllib.parse import unquote

# Spawn placement shells
SPAWN_INNER_RADIUS = 200
SPAWN_SHELL_THICKNESS = 400
SPAWN_STARS_PER_SHELL = 350
SPAWN_MAX_ATTEMPTS = 10
SPAWN_COORD_DECIMALS = 1

# Signed URL lifetimes (seconds) used when settings are unavailable
DEFAULT_SIGN_TTL_LIST = 3600
DEFAULT_SIGN_TTL_DETAIL = 36000
MAX_SIGN_TTL = 7 * 24 * 3600

IMAGE_EXTENSIONS = {"jpg", "jpeg", "png", "webp", "gif", "bmp", "tiff", "heic"}
VIDEO_EXTENSIONS = {"mp4", "webm", "mov", "mkv", "avi"}
AUDIO_EXTENSIONS = {"mp3", "m4a", "aac", "wav", "ogg", "flac"}

PHOTO_MAX_WIDTH = 1600
PHOTO_JPEG_QUALITY = 80

MAX_FILENAME_LENGTH = 255
USER_SEARCH_LIMIT = 10
ACTIVATION_CODE_LENGTH = 7
ACTIVATION_CODE_ALPHABET = "abcdefghijklmnopqrstuvwxyz0123456789"

PLANS = ("EXPLORER", "PREMIUM", "LEGACY")

MAX_WEBDAV_RETRY_ATTEMPTS = 3
INITIAL_WEBDAV_BACKOFF = 0.5

DEFAULT_STORAGE_WORKERS = 6
DEFAULT_STORAGE_CONCURRENCY = 2

DEFAULT_CONTENT_TYPE = "application/octet-stream"

_MIME_TYPES = {
    'jpg': 'image/jpeg',
    'jpeg': 'image/jpeg',
    'png': 'image/png',
    'webp': 'image/webp',
    'gif': 'image/gif',
    'bmp': 'image/bmp',
    'tiff': 'image/tiff',
    'heic': 'image/heic',
    'mp4': 'video/mp4',
    'webm': 'video/webm',
    'mov': 'video/quicktime',
    'mkv': 'video/x-matroska',
    'avi': 'video/x-msvideo',
    'mp3': 'audio/mpeg',
    'm4a': 'audio/mp4',
    'aac': 'audio/aac',
    'wav': 'audio/wav',
    'ogg': 'audio/ogg',
    'flac': 'audio/flac',
    'pdf': 'application/pdf',
    'txt': 'text/plain',
}


def _get_extension(filename: str) -> str:
    """Extract file extension safely."""
    ext = str(filename).lower().split('.')[-1] if '.' in filename else ''
    return ext


def is_image(filename: str) -> bool:
    return _get_extension(filename) in IMAGE_EXTENSIONS


def guess_content_type(filename: str, declared: str | None = None) -> str:
    """Prefer the client-declared content type, fall back to the extension."""
    if declared and declared != DEFAULT_CONTENT_TYPE:
        return declared
    return _MIME_TYPES.get(_get_extension(filename), DEFAULT_CONTENT_TYPE)


_UNSAFE_KEY_CHARS = frozenset('<>:"|?*') | frozenset(chr(c) for c in range(0x10))


def sanitize_filename(filename: str) -> str:
    """Reduce an uploaded file name to a bare, key-safe base name.

    Percent-escapes are decoded first so encoded traversal sequences are
    caught; Windows and POSIX directory parts and leading dots are dropped.
    """
    base = re.split(r"[\\/]", unquote(filename))[-1].lstrip(".")
    if len(base) > MAX_FILENAME_LENGTH:
        raise ValueError(f"Invalid filename: exceeds maximum length of {MAX_FILENAME_LENGTH}")
    cleaned = "".join(ch for ch in base if ch not in _UNSAFE_KEY_CHARS)
    if not cleaned:
        raise ValueError("Invalid filename: empty after sanitization")
    return cleaned
