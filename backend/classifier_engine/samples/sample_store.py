"""
Training sample store.

Holds the (features, label, timestamp) records collected for the model
being trained and persists the whole set after every mutation.
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, Iterator, List, Optional, Sequence

import numpy as np

from shared.errors import (
    DimensionMismatch,
    IndexOutOfRange,
    PersistenceFailed,
    QuotaExceeded,
    StorageArea,
)
from shared.storage import KeyValueStore, StorageBackendError, StorageQuotaError

logger = logging.getLogger(__name__)

SAMPLES_KEY = "training_samples"
SOFT_SIZE_LIMIT_MB = 5


@dataclass(frozen=True)
class Sample:
    """One labeled feature vector."""

    features: tuple
    label: str
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict:
        return {
            "features": list(self.features),
            "label": self.label,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "Sample":
        return cls(
            features=tuple(float(x) for x in data["features"]),
            label=str(data["label"]),
            created_at=datetime.fromisoformat(data["created_at"]),
        )


class SampleStore:
    """
    Ordered collection of training samples with a fixed feature width.

    The first sample fixes the width F; later samples must match it. The
    in-memory list is the source of truth: a failed save is reported
    through ``last_persist_error`` and ``on_persist_error`` but never undoes
    the mutation that triggered it.
    """

    def __init__(
        self,
        backend: Optional[KeyValueStore] = None,
        key: str = SAMPLES_KEY,
        on_persist_error: Optional[Callable[[PersistenceFailed], None]] = None,
    ):
        """
        Initialize sample store.

        Args:
            backend: Key-value backend for persistence (None keeps samples in memory only)
            key: Key the sample blob is stored under
            on_persist_error: Callback invoked when saving fails
        """
        self.backend = backend
        self.key = key
        self.on_persist_error = on_persist_error
        self.last_persist_error: Optional[PersistenceFailed] = None
        self._samples: List[Sample] = []

    @classmethod
    def load(
        cls,
        backend: KeyValueStore,
        key: str = SAMPLES_KEY,
        on_persist_error: Optional[Callable[[PersistenceFailed], None]] = None,
    ) -> "SampleStore":
        """
        Restore a sample store from its persisted blob.

        A missing or unreadable blob yields an empty store.
        """
        store = cls(backend=backend, key=key, on_persist_error=on_persist_error)

        try:
            raw = backend.get(key)
        except StorageBackendError as e:
            logger.error(f"Error loading training data: {e}")
            return store

        if raw is None:
            return store

        try:
            data = json.loads(raw)
            samples = [Sample.from_dict(item) for item in data.get("samples", [])]
        except (ValueError, KeyError, TypeError) as e:
            logger.error(f"Error loading training data, starting empty: {e}")
            return store

        widths = {len(s.features) for s in samples}
        if len(widths) > 1:
            logger.error(f"Stored samples have mixed feature widths {sorted(widths)}, starting empty")
            return store

        store._samples = samples
        logger.info(f"Loaded {len(samples)} training samples from storage")
        return store

    @property
    def feature_size(self) -> Optional[int]:
        """Established feature width F, or None while empty."""
        return len(self._samples[0].features) if self._samples else None

    @property
    def samples(self) -> List[Sample]:
        return list(self._samples)

    def __len__(self) -> int:
        return len(self._samples)

    def __iter__(self) -> Iterator[Sample]:
        return iter(list(self._samples))

    def __getitem__(self, index: int) -> Sample:
        self._check_index(index)
        return self._samples[index]

    def add(self, features: Sequence[float], label: str) -> Sample:
        """
        Append a labeled sample.

        Args:
            features: Feature vector (length must equal F once F is set)
            label: Class name

        Returns:
            The stored Sample

        Raises:
            DimensionMismatch: Wrong vector length or empty vector
            ValueError: Blank label or non-numeric features
        """
        vector = np.asarray(features, dtype=np.float64)
        if vector.ndim != 1:
            raise ValueError(f"Features must be a flat sequence, got shape {vector.shape}")

        expected = self.feature_size
        if expected is None and vector.size == 0:
            raise DimensionMismatch(expected=1, actual=0)
        if expected is not None and vector.size != expected:
            raise DimensionMismatch(expected=expected, actual=int(vector.size))

        label = (label or "").strip()
        if not label:
            raise ValueError("Sample label must not be empty")

        sample = Sample(features=tuple(float(x) for x in vector), label=label)
        self._samples.append(sample)
        logger.debug(f"Added sample #{len(self._samples)} with label '{label}'")

        self._persist()
        return sample

    def remove(self, index: int) -> Sample:
        """
        Delete one sample by position.

        Raises:
            IndexOutOfRange: Index does not address a sample
        """
        self._check_index(index)
        sample = self._samples.pop(index)
        logger.debug(f"Removed sample {index} with label '{sample.label}'")

        self._persist()
        return sample

    def clear(self) -> int:
        """
        Remove every sample.

        Returns:
            Number of samples removed
        """
        removed = len(self._samples)
        self._samples = []
        logger.info(f"Cleared {removed} training samples")

        self._persist()
        return removed

    def counts(self) -> Dict[str, int]:
        """Label -> sample count, ordered by label."""
        counts: Dict[str, int] = {}
        for sample in self._samples:
            counts[sample.label] = counts.get(sample.label, 0) + 1
        return dict(sorted(counts.items()))

    def to_arrays(self):
        """Feature matrix (N x F) and label list."""
        features = np.array([s.features for s in self._samples], dtype=np.float32)
        labels = [s.label for s in self._samples]
        return features, labels

    def _check_index(self, index: int) -> None:
        if not isinstance(index, int) or index < 0 or index >= len(self._samples):
            raise IndexOutOfRange(index=index, size=len(self._samples))

    def _persist(self) -> bool:
        """Write the full store; failures are recorded, not raised."""
        if self.backend is None:
            return True

        payload = json.dumps(
            {
                "samples": [s.to_dict() for s in self._samples],
                "timestamp": datetime.now(timezone.utc).isoformat(),
            }
        ).encode("utf-8")

        size_mb = len(payload) / (1024 * 1024)
        if size_mb > SOFT_SIZE_LIMIT_MB:
            logger.warning(
                f"Training data is large ({size_mb:.2f} MB); storage may run out of space"
            )

        try:
            if self._samples:
                self.backend.set(self.key, payload)
            else:
                self.backend.delete(self.key)
        except StorageQuotaError as e:
            self._report(QuotaExceeded(StorageArea.SAMPLES, reason=str(e)))
            return False
        except StorageBackendError as e:
            self._report(PersistenceFailed(str(e), area=StorageArea.SAMPLES))
            return False

        self.last_persist_error = None
        logger.debug(f"Training data saved ({len(self._samples)} samples, {size_mb:.2f} MB)")
        return True

    def _report(self, error: PersistenceFailed) -> None:
        self.last_persist_error = error
        logger.error(f"Error saving training data: {error}")
        if self.on_persist_error:
            self.on_persist_error(error)
