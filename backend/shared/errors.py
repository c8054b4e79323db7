"""
Error taxonomy for sample collection, training, storage and inference.

Data-integrity errors reject a call without partial mutation, persistence
errors are recoverable, and inference errors are per-call.
"""

from enum import Enum
from typing import Optional


class StorageArea(str, Enum):
    """Persisted resource a storage failure belongs to."""

    SAMPLES = "samples"
    CATALOG = "catalog"
    ARTIFACTS = "artifacts"


class ClassifierError(Exception):
    """Base class for every error raised by the classifier engine."""

    kind = "classifier_error"


class DimensionMismatch(ClassifierError):
    """Feature vector length differs from the established width."""

    kind = "dimension_mismatch"

    def __init__(self, expected: int, actual: int):
        self.expected = expected
        self.actual = actual
        super().__init__(f"Expected {expected} features, got {actual}")


class IndexOutOfRange(ClassifierError):
    """Sample index does not address an existing sample."""

    kind = "index_out_of_range"

    def __init__(self, index: int, size: int):
        self.index = index
        self.size = size
        super().__init__(f"Sample index {index} out of range (store holds {size} samples)")


class EmptyDataset(ClassifierError):
    """Training requested without any samples."""

    kind = "empty_dataset"

    def __init__(self, message: str = "No training samples available"):
        super().__init__(message)


class DuplicateName(ClassifierError):
    """A model with the same (case-insensitive) name already exists."""

    kind = "duplicate_name"

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"A model named '{name}' already exists")


class TrainingFailed(ClassifierError):
    """Model fitting failed; samples are left untouched."""

    kind = "training_failed"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Training failed: {reason}")


class TrainingInProgress(ClassifierError):
    """Another training run is still in flight."""

    kind = "training_in_progress"

    def __init__(self):
        super().__init__("A training run is already in progress")


class PersistenceFailed(ClassifierError):
    """Writing to a persisted store failed."""

    kind = "persistence_failed"

    def __init__(self, reason: str, area: Optional[StorageArea] = None):
        self.reason = reason
        self.area = area
        super().__init__(f"Persistence failed: {reason}")


class QuotaExceeded(PersistenceFailed):
    """A persisted store ran out of space."""

    kind = "quota_exceeded"

    def __init__(self, area: StorageArea, reason: str = "storage quota exceeded"):
        super().__init__(f"{area.value} {reason}", area=area)


class ArtifactNotFound(ClassifierError):
    """Catalog entry references an artifact the model store no longer has."""

    kind = "artifact_not_found"

    def __init__(self, storage_key: str):
        self.storage_key = storage_key
        super().__init__(f"Model artifact not found: {storage_key}")


class ModelNotFound(ClassifierError):
    """No catalog entry with the requested id."""

    kind = "model_not_found"

    def __init__(self, model_id: str):
        self.model_id = model_id
        super().__init__(f"Model not found: {model_id}")


class ArtifactLoadFailed(ClassifierError):
    """Artifact could not be deserialized or does not match its entry."""

    kind = "artifact_load_failed"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Could not load model artifact: {reason}")


class NotReady(ClassifierError):
    """Prediction requested before a model was selected."""

    kind = "not_ready"

    def __init__(self, message: str = "No model selected"):
        super().__init__(message)


class InferenceFailed(ClassifierError):
    """A single forward pass failed; the loaded model stays usable."""

    kind = "inference_failed"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Inference failed: {reason}")


class FeatureExtractionFailed(ClassifierError):
    """Raw input could not be turned into a feature vector."""

    kind = "feature_extraction_failed"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Feature extraction failed: {reason}")
