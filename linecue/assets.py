"""
Audio asset storage.

Payloads are stored as files under the assets directory, one file per asset
id. Rows in the audio_assets table are written by the projects module.
"""

import logging
import uuid
from pathlib import Path
from typing import Iterable, List, Optional

from . import config
from .errors import NotFoundError, StoreIOError

logger = logging.getLogger(__name__)


def new_asset_id(prefix: str = "audio") -> str:
    """Generate a fresh asset id."""
    return f"{prefix}_{uuid.uuid4().hex}"


class AssetStore:
    """File-backed store for encoded audio payloads."""

    def __init__(self, root: Optional[Path] = None):
        self._root = Path(root) if root is not None else None

    @property
    def root(self) -> Path:
        if self._root is None:
            return config.get_assets_dir()
        self._root.mkdir(parents=True, exist_ok=True)
        return self._root

    def path_for(self, asset_id: str) -> Path:
        """Location of an asset's payload."""
        return self.root / f"{asset_id}{config.ASSET_EXTENSION}"

    def exists(self, asset_id: str) -> bool:
        return self.path_for(asset_id).exists()

    def get(self, asset_id: str) -> bytes:
        """
        Read an asset payload.

        Raises:
            NotFoundError: If no payload exists for the id
            StoreIOError: If the file can't be read
        """
        path = self.path_for(asset_id)
        if not path.exists():
            raise NotFoundError(f"Audio asset {asset_id} not found")
        try:
            return path.read_bytes()
        except OSError as e:
            raise StoreIOError(f"Failed to read audio asset {asset_id}: {e}") from e

    def put(self, asset_id: str, payload: bytes) -> Path:
        """
        Write an asset payload.

        Returns:
            Path the payload was written to
        """
        path = self.path_for(asset_id)
        tmp_path = path.with_suffix(path.suffix + ".tmp")
        try:
            tmp_path.write_bytes(payload)
            tmp_path.replace(path)
        except OSError as e:
            tmp_path.unlink(missing_ok=True)
            raise StoreIOError(f"Failed to write audio asset {asset_id}: {e}") from e
        return path

    def delete(self, asset_id: str) -> bool:
        """
        Delete an asset payload.

        Returns:
            True if a file was removed, False if it was already gone
        """
        path = self.path_for(asset_id)
        if not path.exists():
            return False
        try:
            path.unlink()
        except OSError as e:
            raise StoreIOError(f"Failed to delete audio asset {asset_id}: {e}") from e
        return True

    def bulk_delete(self, asset_ids: Iterable[str]) -> List[str]:
        """
        Delete several payloads.

        Returns:
            Ids whose files were removed
        """
        removed = []
        for asset_id in asset_ids:
            if self.delete(asset_id):
                removed.append(asset_id)
        return removed


_store: Optional[AssetStore] = None


def get_asset_store() -> AssetStore:
    """Get the shared asset store."""
    global _store
    if _store is None:
        _store = AssetStore()
    return _store


def set_asset_store(store: AssetStore) -> None:
    """Replace the shared asset store."""
    global _store
    _store = store
