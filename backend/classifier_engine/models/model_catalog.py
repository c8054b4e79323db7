"""
Model catalog.

Lightweight metadata index over trained models, persisted as one blob
separate from the heavy artifacts held by the ModelStore. When the
metadata write runs out of space the catalog evicts its oldest entries
(and their artifacts) and retries once.
"""

import json
import logging
import uuid
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from shared.config import settings
from shared.errors import (
    DuplicateName,
    ModelNotFound,
    PersistenceFailed,
    QuotaExceeded,
    StorageArea,
)
from shared.storage import KeyValueStore, StorageBackendError, StorageQuotaError

from ..samples.label_codec import LabelCodec
from .model_store import ModelStore

logger = logging.getLogger(__name__)

CATALOG_KEY = "model_catalog"
SOFT_SIZE_LIMIT_MB = 4


class CatalogEntry(BaseModel):
    """Metadata describing one trained model."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    storage_key: str
    sample_count: int = Field(ge=0)
    labels: List[str]
    label_map: Dict[str, int]
    label_counts: Dict[str, int] = Field(default_factory=dict)
    created_at: datetime
    input_size: Optional[int] = Field(default=None, gt=0)
    metrics: Dict[str, float] = Field(default_factory=dict)

    @model_validator(mode="after")
    def check_label_consistency(self) -> "CatalogEntry":
        """Labels and label map must describe the same codec."""
        if not self.labels:
            raise ValueError("Catalog entry must have at least one label")
        LabelCodec.from_mapping(self.labels, self.label_map)
        return self

    @classmethod
    def create(
        cls,
        name: str,
        codec: LabelCodec,
        label_counts: Dict[str, int],
        sample_count: int,
        input_size: Optional[int] = None,
        metrics: Optional[Dict[str, float]] = None,
    ) -> "CatalogEntry":
        """
        Build a fresh entry with a new id, timestamp and storage key.

        Args:
            name: User-facing model name
            codec: Label codec the model was trained with
            label_counts: Samples per label
            sample_count: Total training samples
            input_size: Feature width F
            metrics: Final training metrics

        Returns:
            CatalogEntry
        """
        entry_id = uuid.uuid4().hex
        created_at = datetime.now(timezone.utc)
        return cls(
            id=entry_id,
            name=name,
            storage_key=ModelStore.make_storage_key(name, created_at, suffix=entry_id[:8]),
            sample_count=sample_count,
            labels=list(codec.labels),
            label_map=codec.label_map,
            label_counts=dict(label_counts),
            created_at=created_at,
            input_size=input_size,
            metrics=dict(metrics or {}),
        )

    @property
    def codec(self) -> LabelCodec:
        return LabelCodec(labels=tuple(self.labels))

    @property
    def is_single_class(self) -> bool:
        return len(self.labels) == 1


class ModelCatalog:
    """
    Ordered index of trained models.

    Entries are kept in insertion order. Every entry's storage key names
    exactly one artifact in the model store.
    """

    def __init__(
        self,
        backend: KeyValueStore,
        model_store: Optional[ModelStore] = None,
        retention_limit: Optional[int] = None,
        key: str = CATALOG_KEY,
        on_evict: Optional[Callable[[List[CatalogEntry]], None]] = None,
    ):
        """
        Initialize catalog and load persisted entries.

        Args:
            backend: Key-value backend holding the catalog blob
            model_store: Artifact store (default: ModelStore on the same backend)
            retention_limit: Entries kept on quota eviction (default from settings)
            key: Key the catalog blob is stored under
            on_evict: Callback receiving entries removed to free space
        """
        self.backend = backend
        self.model_store = model_store or ModelStore(backend)
        self.retention_limit = (
            retention_limit if retention_limit is not None else settings.catalog_retention_limit
        )
        self.key = key
        self.on_evict = on_evict
        self._entries: List[CatalogEntry] = self._read()

    def _read(self) -> List[CatalogEntry]:
        try:
            raw = self.backend.get(self.key)
        except StorageBackendError as e:
            logger.error(f"Error loading saved models list: {e}")
            return []

        if raw is None:
            return []

        try:
            records = json.loads(raw)
        except ValueError as e:
            logger.error(f"Saved models list is corrupt, ignoring it: {e}")
            return []

        entries = []
        for record in records if isinstance(records, list) else []:
            try:
                entries.append(CatalogEntry.model_validate(record))
            except ValidationError as e:
                logger.warning(f"Skipping invalid catalog record: {e}")

        logger.info(f"Loaded {len(entries)} catalog entries")
        return entries

    def _write(self, entries: List[CatalogEntry]) -> None:
        payload = json.dumps([e.model_dump(mode="json") for e in entries]).encode("utf-8")

        size_mb = len(payload) / (1024 * 1024)
        if size_mb > SOFT_SIZE_LIMIT_MB:
            logger.warning(f"Model metadata is large ({size_mb:.2f} MB). Consider deleting old models.")

        try:
            self.backend.set(self.key, payload)
        except StorageQuotaError as e:
            raise QuotaExceeded(StorageArea.CATALOG, reason=str(e)) from e
        except StorageBackendError as e:
            raise PersistenceFailed(str(e), area=StorageArea.CATALOG) from e

    def refresh(self) -> None:
        """Reload entries from the backend."""
        self._entries = self._read()

    def list_entries(self) -> List[CatalogEntry]:
        return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def get_entry(self, model_id: str) -> CatalogEntry:
        """
        Get entry by id.

        Raises:
            ModelNotFound: No entry with this id
        """
        for entry in self._entries:
            if entry.id == model_id:
                return entry
        raise ModelNotFound(model_id)

    def find_by_name(self, name: str) -> Optional[CatalogEntry]:
        """Case-insensitive name lookup."""
        wanted = name.strip().lower()
        for entry in self._entries:
            if entry.name.lower() == wanted:
                return entry
        return None

    def _split_for_retention(
        self, entries: List[CatalogEntry]
    ) -> Tuple[List[CatalogEntry], List[CatalogEntry]]:
        """Split entries into (kept, evicted) keeping the most recent ones."""
        newest_first = sorted(entries, key=lambda e: e.created_at, reverse=True)
        kept_ids = {e.id for e in newest_first[: self.retention_limit]}
        kept = [e for e in entries if e.id in kept_ids]
        evicted = [e for e in newest_first if e.id not in kept_ids]
        return kept, evicted

    def _discard_artifact(self, storage_key: str) -> None:
        try:
            self.model_store.delete(storage_key)
        except PersistenceFailed as e:
            logger.warning(f"Could not remove model artifact {storage_key}: {e}")

    def _evict(self, kept: List[CatalogEntry], evicted: List[CatalogEntry]) -> None:
        # Artifacts are already gone, so evicted entries leave the index even if the retry fails
        self._entries = kept
        if evicted and self.on_evict:
            self.on_evict(evicted)

    def put_entry(self, entry: CatalogEntry, artifact: bytes) -> CatalogEntry:
        """
        Store a new model: artifact first, then the catalog metadata.

        On a metadata quota error the oldest entries beyond the retention
        limit are evicted (artifacts removed best-effort) and the write is
        retried once with the reduced set plus the new entry. Evicted entries
        are handed to ``on_evict`` before the retry.

        Raises:
            DuplicateName: Name already used (caller must delete it first)
            ValueError: Id or storage key already present
            PersistenceFailed: Artifact or metadata could not be stored
        """
        if self.find_by_name(entry.name) is not None:
            raise DuplicateName(entry.name)
        if any(e.id == entry.id or e.storage_key == entry.storage_key for e in self._entries):
            raise ValueError(f"Catalog already holds id {entry.id} or key {entry.storage_key}")

        self.model_store.save(entry.storage_key, artifact)

        updated = self._entries + [entry]
        try:
            self._write(updated)
        except QuotaExceeded:
            logger.warning("Storage quota exceeded. Attempting to free space...")
            kept, evicted = self._split_for_retention(self._entries)

            for old in evicted:
                self._discard_artifact(old.storage_key)
            self._evict(kept, evicted)

            updated = kept + [entry]
            try:
                self._write(updated)
            except PersistenceFailed as e:
                self._discard_artifact(entry.storage_key)
                raise PersistenceFailed(
                    f"catalog write failed after evicting {len(evicted)} models: {e.reason}",
                    area=StorageArea.CATALOG,
                ) from e

            logger.info(
                f"Freed space by removing {len(evicted)} old models. "
                f"Kept {len(kept)} most recent models."
            )
        except PersistenceFailed:
            self._discard_artifact(entry.storage_key)
            raise

        self._entries = updated
        logger.info(
            f"Catalog entry '{entry.name}' saved ({entry.id}, labels={entry.labels}, "
            f"samples={entry.sample_count})"
        )
        return entry

    def delete_entry(self, model_id: str) -> CatalogEntry:
        """
        Remove an entry and (best-effort) its artifact.

        Returns:
            The deleted entry

        Raises:
            ModelNotFound: No entry with this id
            PersistenceFailed: Catalog could not be rewritten
        """
        entry = self.get_entry(model_id)
        remaining = [e for e in self._entries if e.id != model_id]

        self._write(remaining)
        self._entries = remaining
        self._discard_artifact(entry.storage_key)

        logger.info(f"Deleted model '{entry.name}' ({model_id})")
        return entry

    def get_artifact(self, storage_key: str) -> bytes:
        """
        Fetch the artifact for a storage key.

        Raises:
            ArtifactNotFound: Artifact missing (evicted or store corrupted)
        """
        return self.model_store.load(storage_key)
