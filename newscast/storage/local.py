import logging
from pathlib import Path
from typing import Optional, Union

from .base import BlobStore, to_bytes


logger = logging.getLogger("storage")


class LocalBlobStore(BlobStore):
    """A blob store backed by a directory on the local filesystem."""

    def __init__(self, root: Union[str, Path]):
        self.root = Path(root).resolve()
        self.root.mkdir(parents=True, exist_ok=True)

    def _get_absolute_filename(self, key: str) -> Path:
        """Map a blob key to a path under the root directory.

        Raises:
            ValueError: If the key escapes the root directory.
        """
        path = (self.root / key.lstrip("/")).resolve()
        if self.root != path and self.root not in path.parents:
            raise ValueError(f"Blob key escapes storage root: {key}")
        return path

    def get(self, key: str) -> Optional[bytes]:
        path = self._get_absolute_filename(key)
        if not path.is_file():
            return None
        return path.read_bytes()

    def put(self, key: str, data: Union[bytes, str], content_type: Optional[str] = None) -> str:
        path = self._get_absolute_filename(key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            # Write then rename so readers never see a partial blob
            tmp_path = path.with_name(path.name + ".part")
            tmp_path.write_bytes(to_bytes(data))
            tmp_path.replace(path)
        except OSError as e:
            raise RuntimeError(f"Error saving blob {key} to local storage: {e}") from e
        logger.debug(f"Saved blob {key} ({path.stat().st_size} bytes)")
        return key

    def delete(self, key: str) -> None:
        path = self._get_absolute_filename(key)
        try:
            path.unlink()
        except FileNotFoundError:
            return
        except OSError as e:
            raise RuntimeError(f"Error deleting blob {key}: {e}") from e

    def exists(self, key: str) -> bool:
        return self._get_absolute_filename(key).is_file()
