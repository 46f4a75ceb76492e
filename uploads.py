## ─────────────────────────────────────────────────────────────────────────────
## uploads.py  —  Upload validation and temporary file storage
## ─────────────────────────────────────────────────────────────────────────────
import logging
import os
import random
import time

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

UPLOAD_DIR: str = os.getenv("UPLOAD_DIR", "uploads")
MAX_UPLOAD_BYTES: int = int(os.getenv("MAX_UPLOAD_BYTES", str(10 * 1024 * 1024)))

ALLOWED_MIME_TYPES = frozenset({"application/pdf", "image/jpeg", "image/jpg", "image/png"})


class UploadRejected(ValueError):
    """The uploaded file violates one of the upload constraints."""


def validate_upload(content: bytes, content_type: str | None, max_bytes: int = MAX_UPLOAD_BYTES) -> None:
    """Raise UploadRejected naming the first constraint the file violates."""
    if content_type not in ALLOWED_MIME_TYPES:
        raise UploadRejected(
            f"Invalid file type '{content_type}'. Only PDF, JPEG, and PNG are allowed."
        )
    if not content:
        raise UploadRejected("Uploaded file is empty.")
    if len(content) > max_bytes:
        raise UploadRejected(
            f"File too large ({len(content)} bytes). Maximum size is {max_bytes // (1024 * 1024)} MB."
        )


def generate_filename(original_name: str | None) -> str:
    """`<epoch millis>-<random>` plus the original extension, e.g. `1718000000000-123456789.pdf`."""
    _, ext = os.path.splitext(original_name or "")
    return f"{int(time.time() * 1000)}-{random.randint(0, 10**9)}{ext}"


def save_upload(content: bytes, original_name: str | None, upload_dir: str | None = None) -> str:
    """Write the upload to disk and return its absolute path."""
    directory = upload_dir or UPLOAD_DIR
    os.makedirs(directory, exist_ok=True)
    file_path = os.path.abspath(os.path.join(directory, generate_filename(original_name)))
    with open(file_path, "wb") as f:
        f.write(content)
    return file_path


def remove_upload(file_path: str | None) -> bool:
    """Delete an uploaded file, logging (not raising) on failure. Returns True if removed."""
    if not file_path or not os.path.exists(file_path):
        return False
    try:
        os.remove(file_path)
        logger.debug(f"Removed upload file: {file_path}")
        return True
    except OSError as e:
        logger.warning(f"Could not remove upload file {file_path}: {e}")
        return False
