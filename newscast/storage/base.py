from abc import ABC, abstractmethod
from typing import Any, Optional, Union


class KeyValueStore(ABC):
    """
    Abstract key-value store for small JSON documents.

    Holds the per-job state record and the published episode records.
    """

    @abstractmethod
    def get_json(self, key: str) -> Optional[Any]:
        """
        Read and decode the JSON document stored under a key.

        Args:
            key (str): Document key.

        Returns:
            The decoded document, or None if the key does not exist.
        """

    @abstractmethod
    def put_json(self, key: str, value: Any) -> None:
        """
        Encode and store a JSON document, overwriting any existing value.

        Args:
            key (str): Document key.
            value (Any): JSON-serializable document.

        Raises:
            RuntimeError: If the write fails.
        """

    @abstractmethod
    def delete(self, key: str) -> None:
        """Delete a key. Deleting a missing key is a no-op."""


class BlobStore(ABC):
    """
    Abstract blob store for snapshots and audio artifacts.

    Keys are slash separated paths such as "workflow/jobs/<id>/summary.json".
    """

    @abstractmethod
    def get(self, key: str) -> Optional[bytes]:
        """
        Read a blob.

        Args:
            key (str): Blob key.

        Returns:
            Blob bytes, or None if the blob does not exist.
        """

    @abstractmethod
    def put(self, key: str, data: Union[bytes, str], content_type: Optional[str] = None) -> str:
        """
        Write a blob, overwriting any existing one.

        Args:
            key (str): Blob key.
            data (bytes | str): Content, strings are stored UTF-8 encoded.
            content_type (Optional[str]): MIME type hint for backends that keep one.

        Returns:
            str: The key that was written.

        Raises:
            RuntimeError: If the write fails.
        """

    @abstractmethod
    def delete(self, key: str) -> None:
        """Delete a blob. Deleting a missing blob is a no-op."""

    @abstractmethod
    def exists(self, key: str) -> bool:
        """Return True if a blob is stored under the key."""


def to_bytes(data: Union[bytes, str]) -> bytes:
    if isinstance(data, str):
        return data.encode("utf-8")
    return bytes(data)
