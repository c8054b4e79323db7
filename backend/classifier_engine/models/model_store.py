"""
Model artifact persistence.

Stores the serialized classifier weights as blobs keyed by storage key,
independently of the catalog metadata.
"""

import logging
import re
from datetime import datetime
from typing import List

from shared.errors import ArtifactNotFound, PersistenceFailed, QuotaExceeded, StorageArea
from shared.storage import KeyValueStore, StorageBackendError, StorageQuotaError

logger = logging.getLogger(__name__)


class ModelStore:
    """
    Manage model artifact persistence.

    Artifacts are immutable once saved; a storage key is never reused.
    """

    KEY_PREFIX = "artifact:"

    def __init__(self, backend: KeyValueStore):
        """
        Initialize model store.

        Args:
            backend: Key-value backend holding the artifact blobs
        """
        self.backend = backend

    @staticmethod
    def sanitize_name(name: str) -> str:
        """Replace characters unsafe in storage keys with underscores."""
        return re.sub(r"[^a-zA-Z0-9_-]", "_", name)

    @classmethod
    def make_storage_key(cls, model_name: str, created_at: datetime, suffix: str = "") -> str:
        """
        Build a storage key embedding the creation timestamp.

        Args:
            model_name: Display name of the model
            created_at: Creation time
            suffix: Extra disambiguator (e.g. part of the entry id)

        Returns:
            Storage key such as "model_MyModel_1718000000000_ab12cd34"
        """
        millis = int(created_at.timestamp() * 1000)
        key = f"model_{cls.sanitize_name(model_name)}_{millis}"
        return f"{key}_{suffix}" if suffix else key

    def _blob_key(self, storage_key: str) -> str:
        return f"{self.KEY_PREFIX}{storage_key}"

    def save(self, storage_key: str, artifact: bytes) -> None:
        """
        Save artifact blob.

        Raises:
            ValueError: Storage key already holds an artifact
            QuotaExceeded: Backend is out of space
            PersistenceFailed: Any other backend failure
        """
        try:
            if self.backend.exists(self._blob_key(storage_key)):
                raise ValueError(f"Storage key already in use: {storage_key}")
            self.backend.set(self._blob_key(storage_key), artifact)
        except StorageQuotaError as e:
            raise QuotaExceeded(StorageArea.ARTIFACTS, reason=str(e)) from e
        except StorageBackendError as e:
            raise PersistenceFailed(str(e), area=StorageArea.ARTIFACTS) from e

        logger.info(f"Model artifact saved to {storage_key} ({len(artifact)} bytes)")

    def load(self, storage_key: str) -> bytes:
        """
        Load artifact blob.

        Raises:
            ArtifactNotFound: No artifact under this key (or backend unreadable)
        """
        try:
            blob = self.backend.get(self._blob_key(storage_key))
        except StorageBackendError as e:
            logger.error(f"Failed to read model artifact {storage_key}: {e}")
            raise ArtifactNotFound(storage_key) from e

        if blob is None:
            raise ArtifactNotFound(storage_key)

        logger.info(f"Model artifact loaded from {storage_key}")
        return blob

    def delete(self, storage_key: str) -> bool:
        """
        Delete artifact blob.

        Returns:
            True if an artifact was removed

        Raises:
            PersistenceFailed: Backend failure
        """
        try:
            removed = self.backend.delete(self._blob_key(storage_key))
        except StorageBackendError as e:
            raise PersistenceFailed(str(e), area=StorageArea.ARTIFACTS) from e

        if removed:
            logger.info(f"Model artifact {storage_key} deleted")
        return removed

    def exists(self, storage_key: str) -> bool:
        try:
            return self.backend.exists(self._blob_key(storage_key))
        except StorageBackendError:
            return False

    def list_keys(self) -> List[str]:
        """Storage keys of every stored artifact."""
        return [k[len(self.KEY_PREFIX):] for k in self.backend.keys(self.KEY_PREFIX)]
