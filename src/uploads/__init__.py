"""Attachment validation for chat uploads.

Checks size and format before anything reaches the network.
"""

from src.uploads.validator import (
    MAX_FILE_SIZE,
    format_file_size,
    resolve_mime_type,
    validate,
    validate_many,
)

__all__ = [
    "MAX_FILE_SIZE",
    "format_file_size",
    "resolve_mime_type",
    "validate",
    "validate_many",
]
