"""Common utilities: file validation, hashing, and path management"""
import hashlib
import re
import os
from pathlib import Path
import logging

from core.domain import ErrorCode, ServiceError

# ⚠️ DO NOT import settings here - causes circular import with config.py
# Settings is imported lazily inside functions that need it

def _get_logger():
    """Lazy logger initialization to avoid circular import"""
    from config import settings
    return logging.getLogger(settings.LOGGER_NAME)


# ============= Path Management =============

def get_project_root() -> str:
    """Returns the absolute path to the project's root directory."""
    return os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))


def get_log_file_path() -> str:
    """Creates the log directory if it doesn't exist and returns the full log file path."""
    project_root = get_project_root()
    log_dir = os.path.join(project_root, 'log')

    if not os.path.exists(log_dir):
        os.makedirs(log_dir)

    return os.path.join(log_dir, 'kbase.log')


# ============= File Validation =============

def validate_file_name(filename: str) -> str:
    """Sanitize a client file name and check its extension. Returns the safe name."""
    from config import settings  # Lazy import

    if not filename or not filename.strip():
        raise ServiceError("No file name provided", ErrorCode.VALIDATION_ERROR)

    safe_name = sanitize_filename(filename.strip())
    extension = get_file_extension(safe_name)
    if extension not in settings.ALLOWED_FILE_EXTENSIONS:
        raise ServiceError(
            f"Unsupported file type. Allowed: {', '.join(settings.ALLOWED_FILE_EXTENSIONS)}",
            ErrorCode.UNSUPPORTED_MEDIA_TYPE
        )
    return safe_name


def validate_upload(filename: str, content_type: str, content: bytes) -> None:
    """Validate size, declared MIME type and magic number of uploaded bytes."""
    from config import settings  # Lazy import

    if len(content) > settings.MAX_FILE_SIZE:
        max_mb = settings.MAX_FILE_SIZE // 1024 // 1024
        raise ServiceError(f"File too large. Max size: {max_mb}MB", ErrorCode.FILE_TOO_LARGE)

    extension = get_file_extension(filename)
    declared = (content_type or "").split(";")[0].strip().lower()
    accepted = settings.MIME_TYPES.get(extension, [])
    if declared not in accepted:
        raise ServiceError(
            f"Content-Type '{declared or 'missing'}' does not match '.{extension}'. "
            f"Expected one of: {', '.join(accepted)}",
            ErrorCode.UNSUPPORTED_MEDIA_TYPE
        )

    if extension == 'pdf' and not content[:16].startswith(b'%PDF'):
        raise ServiceError("Invalid PDF file", ErrorCode.INVALID_FORMAT)

    _get_logger().info(f"Successfully validated upload '{filename}' ({len(content)} bytes)")


# ============= File Utilities =============

def get_file_hash(content: bytes) -> str:
    """Calculates the SHA256 hash of file content."""
    return hashlib.sha256(content).hexdigest()


def sanitize_filename(filename: str) -> str:
    """Remove dangerous characters from filename."""
    safe_name = os.path.basename(filename.replace("\\", "/"))
    safe_name = re.sub(r'[^\w\-_\.]', '_', safe_name)
    return safe_name[:100]


def get_file_extension(filename: str) -> str:
    """Extracts and normalizes the file extension from a filename."""
    return Path(filename).suffix[1:].lower()
