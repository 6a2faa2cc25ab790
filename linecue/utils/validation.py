"""
Input validation utilities.
"""

from typing import Tuple, Optional

from .. import config


def validate_split_time(split_seconds: float, duration: float) -> Tuple[bool, Optional[str]]:
    """
    Validate a split point against the audio it cuts.

    Args:
        split_seconds: Split point in seconds
        duration: Duration of the audio in seconds

    Returns:
        Tuple of (is_valid, error_message)
    """
    if split_seconds <= 0:
        return False, "Split time must be greater than zero"

    if split_seconds >= duration:
        return False, (
            f"Split time {split_seconds:.3f}s is at or after the end of the audio ({duration:.3f}s)"
        )

    return True, None


def validate_upload(payload: bytes, max_bytes: int = config.MAX_UPLOAD_BYTES) -> Tuple[bool, Optional[str]]:
    """
    Validate an uploaded audio payload's size.

    Args:
        payload: Uploaded bytes
        max_bytes: Maximum size

    Returns:
        Tuple of (is_valid, error_message)
    """
    if not payload:
        return False, "Uploaded file is empty"

    if len(payload) > max_bytes:
        return False, f"File too large (maximum {max_bytes // (1024 * 1024)} MB)"

    return True, None
