"""Input validation gates and PII stripping for the glitch service."""

import json
import os
import re
from pathlib import Path

# Source image intake
MAX_UPLOAD_SIZE = 50 * 1024 * 1024  # 50 MB
ALLOWED_EXTENSIONS = {".png", ".jpg", ".jpeg", ".gif", ".bmp", ".webp", ".tif", ".tiff"}

# 8192 x 8192; every glitch copies the canvas at least once
MAX_PIXELS = 8192 * 8192

# Frames per generated animation
MIN_FRAME_COUNT = 1
MAX_FRAME_COUNT = 500

ALLOWED_OUTPUT_EXTENSIONS = {".gif", ".png"}
BLOCKED_OUTPUT_PREFIXES = (
    "/System",
    "/Library",
    "/usr",
    "/bin",
    "/sbin",
    "/etc",
    "/private/var",
    "/private/etc",
)


def _unsafe_name(name: str) -> bool:
    return ".." in name or "/" in name or "\\" in name or "\x00" in name


def validate_upload(path: str) -> list[str]:
    """Validate a source image path. Returns list of errors (empty = valid).

    Checks:
    - Resolves under the user's home directory
    - File exists and is not a symlink
    - Extension in the image whitelist
    - File size <= 50 MB
    - Filename is safe (no path traversal)
    """
    errors: list[str] = []
    p = Path(path)

    resolved = str(p.resolve())
    if not resolved.startswith(str(Path.home())):
        errors.append("Path must be within user home directory")
        return errors

    if p.is_symlink():
        errors.append("Symlinks are not allowed")
        return errors

    if not p.exists():
        errors.append(f"File not found: {path}")
        return errors

    ext = p.suffix.lower()
    if ext not in ALLOWED_EXTENSIONS:
        errors.append(
            f"Extension '{ext}' not allowed. Allowed: {sorted(ALLOWED_EXTENSIONS)}"
        )

    size = p.stat().st_size
    if size > MAX_UPLOAD_SIZE:
        size_mb = size / (1024 * 1024)
        errors.append(
            f"File too large: {size_mb:.1f} MB (max {MAX_UPLOAD_SIZE // (1024 * 1024)} MB)"
        )

    if _unsafe_name(p.name):
        errors.append(f"Unsafe filename: {p.name}")

    return errors


def validate_dimensions(width: int, height: int) -> list[str]:
    """Validate image dimensions against the pixel cap. Returns list of errors."""
    errors: list[str] = []
    if width < 1 or height < 1:
        errors.append(f"Invalid dimensions {width}x{height}")
    elif width * height > MAX_PIXELS:
        errors.append(
            f"Image {width}x{height} exceeds maximum of {MAX_PIXELS} pixels"
        )
    return errors


def validate_frame_count(count: int) -> list[str]:
    """Validate animation length. Returns list of errors."""
    errors: list[str] = []
    if not MIN_FRAME_COUNT <= count <= MAX_FRAME_COUNT:
        errors.append(
            f"Frame count {count} outside {MIN_FRAME_COUNT}..{MAX_FRAME_COUNT}"
        )
    return errors


def validate_output_path(path: str, allowed: set[str] | None = None) -> list[str]:
    """Validate an export output path. Returns list of errors (empty = valid).

    allowed narrows the extension whitelist (e.g. {".gif"} for animations).
    """
    errors: list[str] = []
    p = Path(path)
    extensions = allowed or ALLOWED_OUTPUT_EXTENSIONS

    if not p.is_absolute():
        errors.append("Output path must be absolute")
        return errors

    resolved = str(p.resolve())
    for prefix in BLOCKED_OUTPUT_PREFIXES:
        if resolved.startswith(prefix):
            errors.append(f"Cannot write to system directory: {prefix}")
            return errors

    ext = p.suffix.lower()
    if ext not in extensions:
        errors.append(f"Output extension '{ext}' not allowed. Allowed: {sorted(extensions)}")

    parent = p.parent
    if not parent.exists():
        errors.append(f"Output directory does not exist: {parent}")
    elif not os.access(str(parent), os.W_OK):
        errors.append(f"Output directory is not writable: {parent}")

    if _unsafe_name(p.name):
        errors.append(f"Unsafe output filename: {p.name}")

    return errors


# --- PII stripping for Sentry and crash dumps ---

_HOME = os.path.expanduser("~")
_USERNAME = os.path.basename(_HOME)
_PATH_PATTERN = re.compile(r"/Users/[^/\s]+|/home/[^/\s]+|C:\\Users\\[^\\\s]+")
_SENSITIVE_KEYS = {"_token", "token", "auth", "key", "secret", "password", "dsn"}


def _scrub_dict(d: dict):
    for key in list(d.keys()):
        if any(s in key.lower() for s in _SENSITIVE_KEYS):
            d[key] = "<REDACTED>"


def strip_pii(event: dict, hint: dict) -> dict:
    """Sentry before_send hook. Strips home paths, usernames and tokens.

    Also used on crash dumps, wrapped as {"extra": crash_data}.
    """
    event_str = json.dumps(event)
    event_str = event_str.replace(_HOME, "<HOME>")
    if len(_USERNAME) > 1:
        event_str = event_str.replace(_USERNAME, "<USER>")
    event_str = _PATH_PATTERN.sub("<REDACTED_PATH>", event_str)
    event = json.loads(event_str)

    _scrub_dict(event.get("extra", {}))
    _scrub_dict(event.get("tags", {}))
    for ctx in event.get("contexts", {}).values():
        if isinstance(ctx, dict):
            _scrub_dict(ctx)
    return event
