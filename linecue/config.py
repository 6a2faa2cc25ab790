"""
Configuration module for linecue.

Handles data directory configuration and the audio constants shared by the
timeline and export modules.
"""

import logging
import os
from pathlib import Path

logger = logging.getLogger(__name__)

# Canonical export format
EXPORT_SAMPLE_RATE = 44100
EXPORT_CHANNELS = 1  # Mono
EXPORT_BIT_DEPTH = 16

# Native asset format. Float samples keep split/merge sample-exact.
ASSET_FORMAT = "WAV"
ASSET_SUBTYPE = "FLOAT"
ASSET_EXTENSION = ".wav"

# Upload limit for direct assignment
MAX_UPLOAD_BYTES = 200 * 1024 * 1024  # 200MB

# Role meaning "nothing to record here"
SILENT_CHARACTER_NAME = "[静音]"

# Joins the text of two merged lines
MERGE_TEXT_SEPARATOR = "\n"

# Default data directory (used in development)
_data_dir = Path(os.environ.get("LINECUE_DATA_DIR", "data"))


def set_data_dir(path: str | Path):
    """
    Set the data directory path.

    Args:
        path: Path to the data directory
    """
    global _data_dir
    _data_dir = Path(path)
    _data_dir.mkdir(parents=True, exist_ok=True)
    logger.info("Data directory set to: %s", _data_dir.absolute())


def get_data_dir() -> Path:
    """
    Get the data directory path.

    Returns:
        Path to the data directory
    """
    return _data_dir


def get_db_path() -> Path:
    """Get database file path."""
    return _data_dir / "linecue.db"


def get_assets_dir() -> Path:
    """Get audio asset directory path."""
    path = _data_dir / "assets"
    path.mkdir(parents=True, exist_ok=True)
    return path
