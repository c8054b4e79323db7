"""
Classifier studio service.

Wires sample collection, training, the model catalog and live inference
behind the operations a user interface calls.
"""

import logging
import threading
from typing import Any, Dict, List, Optional, Sequence

from shared.config import Settings, settings as default_settings
from shared.errors import DuplicateName, TrainingInProgress
from shared.storage import KeyValueStore, StorageBackendError, create_key_value_store

from ..models import (
    CatalogEntry,
    ClassifierTrainer,
    InferenceEngine,
    ModelCatalog,
    ModelStore,
    Prediction,
)
from ..samples import SampleStore, get_label_distribution
from ..validation import PredictionValidator, validated_predict

logger = logging.getLogger(__name__)


class ClassifierStudio:
    """
    Session facade over the classifier engine.

    User actions arrive one at a time; the only guard is a non-blocking
    training lock so a second train() or a delete while one is running
    fails fast.
    """

    def __init__(
        self,
        config: Optional[Settings] = None,
        backend: Optional[KeyValueStore] = None,
        trainer: Optional[ClassifierTrainer] = None,
        validator: Optional[PredictionValidator] = None,
    ):
        """
        Initialize studio.

        Args:
            config: Settings (default: module settings)
            backend: Key-value backend (default: built from settings)
            trainer: Trainer override (default: built from settings)
            validator: Optional validator applied after predict()
        """
        self.config = config or default_settings
        self.backend = backend or create_key_value_store(self.config)

        self.samples = SampleStore.load(self.backend)
        self.model_store = ModelStore(self.backend)
        self.catalog = ModelCatalog(
            self.backend,
            model_store=self.model_store,
            retention_limit=self.config.catalog_retention_limit,
            on_evict=self._handle_evicted,
        )
        self.trainer = trainer or ClassifierTrainer(
            epochs=self.config.training_epochs,
            max_batch_size=self.config.training_max_batch_size,
            validation_split=self.config.training_validation_split,
            hidden_sizes=self.config.get_hidden_units_list(),
            learning_rate=self.config.training_learning_rate,
            random_state=self.config.training_random_state,
        )
        self.trainer.catalog = self.catalog
        self.engine = InferenceEngine(
            self.catalog,
            confidence_threshold=self.config.confidence_threshold,
            debug_mode=self.config.debug_mode,
            log_interval_seconds=self.config.log_interval_seconds,
        )
        self.validator = validator

        self._training_lock = threading.Lock()

        # Stats
        self.predictions_made = 0
        self.predictions_accepted = 0
        self.errors = 0

        logger.info(
            f"Initialized ClassifierStudio with {len(self.samples)} samples "
            f"and {len(self.catalog)} saved models"
        )

    # Samples

    def _persist_warning(self) -> Optional[str]:
        error = self.samples.last_persist_error
        return str(error) if error else None

    def add_sample(self, features: Sequence[float], label: str) -> Dict:
        """
        Add a training sample.

        Returns:
            Dictionary with the sample index, label counts and any persistence warning
        """
        sample = self.samples.add(features, label)
        return {
            "index": len(self.samples) - 1,
            "label": sample.label,
            "counts": self.samples.counts(),
            "warning": self._persist_warning(),
        }

    def remove_sample(self, index: int) -> Dict:
        sample = self.samples.remove(index)
        return {
            "removed": sample.label,
            "counts": self.samples.counts(),
            "warning": self._persist_warning(),
        }

    def clear_samples(self) -> Dict:
        removed = self.samples.clear()
        return {"removed": removed, "warning": self._persist_warning()}

    def sample_stats(self) -> Dict:
        """Sample counts, distribution and feature width."""
        distribution = get_label_distribution(self.samples)
        distribution["feature_size"] = self.samples.feature_size
        return distribution

    # Models

    def train(
        self,
        name: str,
        overwrite: bool = False,
        clear_samples_after: bool = False,
    ) -> CatalogEntry:
        """
        Train a model on the current samples.

        Args:
            name: Model name
            overwrite: Replace an existing model with the same name
            clear_samples_after: Empty the sample store once the model is saved

        Returns:
            CatalogEntry of the new model

        Raises:
            TrainingInProgress: Another run is active
            DuplicateName: Name taken and overwrite not confirmed
        """
        name = (name or "").strip()
        if not name:
            raise ValueError("Please enter a model name before training")

        if not self._training_lock.acquire(blocking=False):
            raise TrainingInProgress()

        try:
            existing = self.catalog.find_by_name(name)
            if existing is not None:
                if not overwrite:
                    raise DuplicateName(name)
                logger.info(f"Overwriting model '{existing.name}' ({existing.id})")
                self._delete_model(existing.id)

            counts = self.samples.counts()
            if len(counts) == 1:
                logger.warning(
                    f"Training with only '{next(iter(counts))}' samples; "
                    "the model can only tell how closely inputs resemble that class"
                )

            entry = self.trainer.train(self.samples.samples, name)
        finally:
            self._training_lock.release()

        if clear_samples_after:
            self.samples.clear()
        return entry

    @property
    def is_training(self) -> bool:
        return self._training_lock.locked()

    def list_models(self) -> List[CatalogEntry]:
        return self.catalog.list_entries()

    def select_model(self, model_id: str) -> CatalogEntry:
        return self.engine.select(model_id)

    def delete_model(self, model_id: str) -> CatalogEntry:
        """
        Delete a model; the engine is cleared if it was using it.

        Raises:
            TrainingInProgress: A training run is writing the catalog
            ModelNotFound: No such model
            PersistenceFailed: Catalog could not be rewritten
        """
        if not self._training_lock.acquire(blocking=False):
            raise TrainingInProgress()

        try:
            return self._delete_model(model_id)
        finally:
            self._training_lock.release()

    def _delete_model(self, model_id: str) -> CatalogEntry:
        entry = self.catalog.delete_entry(model_id)
        if self.engine.handle_model_deleted(model_id):
            logger.info("Selected model was deleted. Inference disabled until another is selected.")
        return entry

    def _handle_evicted(self, entries: List[CatalogEntry]) -> None:
        for entry in entries:
            if self.engine.handle_model_deleted(entry.id):
                logger.warning(
                    f"Selected model '{entry.name}' was evicted to free space. "
                    "Inference disabled until another is selected."
                )

    # Inference

    def predict(self, features: Sequence[float], auxiliary_signal: Any = None) -> Optional[Prediction]:
        """
        Gated prediction, validated when a validator and auxiliary signal are set.
        """
        try:
            if self.validator is not None and auxiliary_signal is not None:
                prediction = validated_predict(
                    self.engine, features, self.validator, auxiliary_signal
                )
            else:
                prediction = self.engine.predict(features)
        except Exception:
            self.errors += 1
            raise

        self.predictions_made += 1
        if prediction is not None and prediction.accepted:
            self.predictions_accepted += 1
        return prediction

    def set_confidence_threshold(self, value: float) -> None:
        self.engine.set_confidence_threshold(value)

    def set_debug_mode(self, enabled: bool) -> None:
        self.engine.set_debug_mode(enabled)

    def _stored_bytes(self, key: str) -> Optional[int]:
        try:
            return self.backend.size_of(key)
        except StorageBackendError as e:
            logger.warning(f"Could not read stored size of {key}: {e}")
            return None

    def get_stats(self) -> Dict:
        """Get service statistics."""
        selected = self.engine.selected_entry
        return {
            "samples": len(self.samples),
            "sample_counts": self.samples.counts(),
            "models_saved": len(self.catalog),
            "stored_bytes": {
                "samples": self._stored_bytes(self.samples.key),
                "catalog": self._stored_bytes(self.catalog.key),
            },
            "selected_model": selected.name if selected else None,
            "engine_state": self.engine.state.value,
            "training": self.is_training,
            "confidence_threshold": self.engine.confidence_threshold,
            "debug_mode": self.engine.debug_mode,
            "predictions_made": self.predictions_made,
            "predictions_accepted": self.predictions_accepted,
            "errors": self.errors,
        }
