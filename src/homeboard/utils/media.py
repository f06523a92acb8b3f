"""Disk storage for uploaded listing media."""

import hashlib
import re
import shutil
from pathlib import Path
from typing import Final

from homeboard.logging import get_logger

logger = get_logger(__name__)

_LISTINGS_DIR: Final = "listings"

VALID_IMAGE_EXTENSIONS: Final = (".jpg", ".jpeg", ".png", ".gif", ".webp")
VALID_VIDEO_EXTENSIONS: Final = (".mp4", ".mov", ".webm")

MEDIA_TYPES: Final = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".gif": "image/gif",
    ".webp": "image/webp",
    ".mp4": "video/mp4",
    ".mov": "video/quicktime",
    ".webm": "video/webm",
}


def media_extension(filename: str) -> str | None:
    """Lowercased extension if the filename is an accepted image or video type."""
    suffix = Path(filename).suffix.lower()
    if suffix in VALID_IMAGE_EXTENSIONS or suffix in VALID_VIDEO_EXTENSIONS:
        return suffix
    return None


def safe_dir_name(listing_id: str) -> str:
    """Convert a listing id to a filesystem-safe directory name."""
    return re.sub(r"[^a-zA-Z0-9_-]", "_", listing_id)


def get_listing_media_dir(media_dir: str, listing_id: str) -> Path:
    """Return the media directory for one listing."""
    return Path(media_dir) / _LISTINGS_DIR / safe_dir_name(listing_id)


def content_filename(data: bytes, extension: str) -> str:
    """Deterministic filename from a content hash prefix, e.g. "a1b2c3d4e5f6.jpg"."""
    digest = hashlib.sha256(data).hexdigest()[:16]
    return f"{digest}{extension}"


def save_media_bytes(media_dir: str, listing_id: str, data: bytes, extension: str) -> str:
    """Write uploaded bytes to disk and return the public URL path.

    Identical content for the same listing maps to the same file.
    """
    target_dir = get_listing_media_dir(media_dir, listing_id)
    target_dir.mkdir(parents=True, exist_ok=True)
    filename = content_filename(data, extension)
    path = target_dir / filename
    if not path.exists():
        path.write_bytes(data)
        logger.debug("media_saved", listing_id=listing_id, filename=filename, size=len(data))
    return media_url(listing_id, filename)


def media_url(listing_id: str, filename: str) -> str:
    return f"/media/{_LISTINGS_DIR}/{safe_dir_name(listing_id)}/{filename}"


def resolve_media_path(media_dir: str, listing_id: str, filename: str) -> Path | None:
    """Map a served filename back to disk, rejecting traversal attempts."""
    if not filename or ".." in filename or "/" in filename or "\\" in filename:
        return None
    return get_listing_media_dir(media_dir, listing_id) / filename


def delete_media_file(media_dir: str, image_url: str) -> bool:
    """Delete the file behind a ``/media/listings/<id>/<file>`` URL."""
    parts = image_url.strip("/").split("/")
    if len(parts) != 4 or parts[0] != "media" or parts[1] != _LISTINGS_DIR:
        return False
    path = resolve_media_path(media_dir, parts[2], parts[3])
    if path is None or not path.is_file():
        return False
    path.unlink()
    return True


def clear_listing_media(media_dir: str, listing_id: str) -> bool:
    """Remove a listing's whole media directory."""
    target_dir = get_listing_media_dir(media_dir, listing_id)
    if not target_dir.is_dir():
        return False
    shutil.rmtree(target_dir)
    logger.debug("listing_media_cleared", listing_id=listing_id)
    return True
