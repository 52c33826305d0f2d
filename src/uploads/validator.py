"""Attachment validation against the upload size and format policy.

Pure functions: identical name, size and type always give the same verdict.
"""

import logging
from collections.abc import Iterable

from src.models.schemas import FileCandidate, ValidationResult

logger = logging.getLogger(__name__)

# Constants
MAX_FILE_SIZE = 20 * 1024 * 1024  # 20MB
SUPPORTED_MIME_TYPES = frozenset(
    {
        "application/pdf",
        "text/plain",
        "image/png",
        "image/jpeg",
        "image/jpg",
        "image/webp",
    }
)
# Fallback for browsers that send an empty or generic type
EXTENSION_MIME_MAP = {
    "pdf": "application/pdf",
    "txt": "text/plain",
    "png": "image/png",
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "webp": "image/webp",
}
SUPPORTED_FORMATS_LABEL = "PDF, TXT, PNG, JPG, JPEG, WEBP"


def _extension(filename: str) -> str | None:
    if "." not in filename:
        return None
    return filename.rsplit(".", 1)[-1].lower() or None


def resolve_mime_type(file: FileCandidate) -> str | None:
    """Return the MIME type to upload the file with.

    The declared type wins when it is on the allow-list, otherwise the
    file extension decides.

    Args:
        file: The candidate file.

    Returns:
        A supported MIME type, or None if neither type nor extension is allowed.
    """
    declared = file.mime_type.strip().lower()
    if declared in SUPPORTED_MIME_TYPES:
        return declared
    ext = _extension(file.name)
    if ext is None:
        return None
    return EXTENSION_MIME_MAP.get(ext)


def format_file_size(size: int) -> str:
    """Format a byte count as a human readable string."""
    if size <= 0:
        return "0 Bytes"
    units = ["Bytes", "KB", "MB", "GB"]
    value = float(size)
    i = 0
    while value >= 1024 and i < len(units) - 1:
        value /= 1024
        i += 1
    return f"{round(value, 2):g} {units[i]}"


def validate(file: FileCandidate) -> ValidationResult:
    """Check a file against the size ceiling and the format allow-list.

    Args:
        file: The candidate file.

    Returns:
        ValidationResult with a size- or format-specific error when rejected.
    """
    if file.size > MAX_FILE_SIZE:
        size_mb = file.size / (1024 * 1024)
        return ValidationResult(
            is_valid=False,
            name=file.name,
            error=(
                f'File "{file.name}" is too large ({size_mb:.1f}MB). '
                f"Maximum file size is {MAX_FILE_SIZE // (1024 * 1024)}MB."
            ),
        )

    if resolve_mime_type(file) is None:
        return ValidationResult(
            is_valid=False,
            name=file.name,
            error=(
                f'File format of "{file.name}" is not supported. '
                f"Supported formats: {SUPPORTED_FORMATS_LABEL}."
            ),
        )

    return ValidationResult(is_valid=True, name=file.name)


def validate_many(
    files: Iterable[FileCandidate],
) -> tuple[list[FileCandidate], list[ValidationResult]]:
    """Validate files independently.

    Accepted files keep going even when siblings are rejected.

    Args:
        files: Candidate files in selection order.

    Returns:
        Tuple of (accepted files, verdicts of rejected files).
    """
    accepted: list[FileCandidate] = []
    rejected: list[ValidationResult] = []
    for file in files:
        result = validate(file)
        if result.is_valid:
            accepted.append(file)
        else:
            logger.warning(f"Rejected attachment {file.name}: {result.error}")
            rejected.append(result)
    return accepted, rejected
