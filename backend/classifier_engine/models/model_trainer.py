"""
Model trainer for the feed-forward classifier.

Handles label encoding, validation split, training, evaluation and
hand-off of the trained artifact to the model catalog.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

import numpy as np
import torch
import torch.nn as nn
import torch.nn.functional as F
from sklearn.metrics import accuracy_score
from sklearn.model_selection import train_test_split
from torch.optim import Adam
from torch.utils.data import DataLoader, TensorDataset

from shared.config import settings
from shared.errors import DuplicateName, EmptyDataset, TrainingFailed

from ..samples.label_codec import LabelCodec
from ..samples.sample_store import Sample
from .model_catalog import CatalogEntry, ModelCatalog
from .network import FeedForwardClassifier, NetworkConfig, network_to_bytes

logger = logging.getLogger(__name__)

LOG_EVERY_EPOCHS = 20


@dataclass
class TrainingResult:
    """Outcome of one fit: the network plus the codec it was trained with."""

    network: FeedForwardClassifier
    codec: LabelCodec
    label_counts: Dict[str, int]
    sample_count: int
    input_size: int
    metrics: Dict[str, float] = field(default_factory=dict)


class ClassifierTrainer:
    """
    Train a shallow dense classifier on collected samples.

    One distinct label trains a single sigmoid output against all-positive
    targets (binary cross-entropy); K >= 2 labels train K softmax outputs
    against one-hot targets (categorical cross-entropy). Training always
    runs the full epoch budget.
    """

    def __init__(
        self,
        catalog: Optional[ModelCatalog] = None,
        epochs: Optional[int] = None,
        max_batch_size: Optional[int] = None,
        validation_split: Optional[float] = None,
        hidden_sizes: Optional[List[int]] = None,
        learning_rate: Optional[float] = None,
        random_state: Optional[int] = None,
    ):
        """
        Initialize classifier trainer.

        Args:
            catalog: Catalog receiving trained models (required for train())
            epochs: Number of training epochs (default 100)
            max_batch_size: Upper bound on batch size (default 32)
            validation_split: Fraction of samples held out (default 0.2)
            hidden_sizes: Hidden layer widths, 1 or 2 layers (default 16, 8)
            learning_rate: Adam learning rate (default 0.001)
            random_state: Random seed for reproducibility
        """
        self.catalog = catalog
        self.epochs = epochs if epochs is not None else settings.training_epochs
        self.max_batch_size = (
            max_batch_size if max_batch_size is not None else settings.training_max_batch_size
        )
        self.validation_split = (
            validation_split
            if validation_split is not None
            else settings.training_validation_split
        )
        self.hidden_sizes = list(hidden_sizes or settings.get_hidden_units_list())
        self.learning_rate = (
            learning_rate if learning_rate is not None else settings.training_learning_rate
        )
        self.random_state = (
            random_state if random_state is not None else settings.training_random_state
        )

        if self.epochs < 1:
            raise ValueError(f"Epochs must be at least 1: {self.epochs}")
        if self.max_batch_size < 1:
            raise ValueError(f"Batch size must be at least 1: {self.max_batch_size}")

    def train(self, samples: Iterable[Sample], model_name: str) -> CatalogEntry:
        """
        Train a model and store it under model_name.

        An existing model with the same name must be deleted by the caller
        beforehand; train() never overwrites.

        Args:
            samples: Training samples
            model_name: User-facing model name

        Returns:
            CatalogEntry of the stored model

        Raises:
            EmptyDataset: No samples
            DuplicateName: Name already in the catalog
            TrainingFailed: Malformed data or backend error during fit
            PersistenceFailed: Trained model could not be stored
        """
        if self.catalog is None:
            raise RuntimeError("ClassifierTrainer.train() requires a catalog")

        samples = list(samples)
        if not samples:
            raise EmptyDataset()

        model_name = (model_name or "").strip()
        if not model_name:
            raise ValueError("Model name must not be empty")
        if self.catalog.find_by_name(model_name) is not None:
            raise DuplicateName(model_name)

        result = self.fit(samples)

        entry = CatalogEntry.create(
            name=model_name,
            codec=result.codec,
            label_counts=result.label_counts,
            sample_count=result.sample_count,
            input_size=result.input_size,
            metrics=result.metrics,
        )
        self.catalog.put_entry(entry, network_to_bytes(result.network))

        logger.info(
            f"Model '{model_name}' trained and saved with {result.sample_count} samples "
            f"({entry.storage_key})"
        )
        return entry

    def fit(self, samples: Iterable[Sample]) -> TrainingResult:
        """
        Fit a network without persisting it.

        Raises:
            EmptyDataset: No samples
            TrainingFailed: Malformed feature vectors or backend error
        """
        samples = list(samples)
        if not samples:
            raise EmptyDataset()

        codec = LabelCodec.derive(samples)
        features, targets = self._prepare_arrays(samples, codec)

        logger.info(
            f"Training on {len(samples)} samples with {features.shape[1]} features, "
            f"labels={list(codec.labels)} ({'binary' if codec.is_single_class else 'multi-class'})"
        )

        try:
            network, metrics = self._fit_network(features, targets, codec)
        except (RuntimeError, ValueError) as e:
            logger.error(f"Error training model: {e}")
            raise TrainingFailed(str(e)) from e

        return TrainingResult(
            network=network,
            codec=codec,
            label_counts=codec.derive_counts(samples),
            sample_count=len(samples),
            input_size=int(features.shape[1]),
            metrics=metrics,
        )

    @staticmethod
    def _prepare_arrays(
        samples: List[Sample], codec: LabelCodec
    ) -> Tuple[np.ndarray, np.ndarray]:
        widths = {len(s.features) for s in samples}
        if len(widths) != 1:
            raise TrainingFailed(f"Inconsistent feature widths: {sorted(widths)}")
        if 0 in widths:
            raise TrainingFailed("Feature vectors are empty")

        try:
            features = np.array([s.features for s in samples], dtype=np.float32)
        except (TypeError, ValueError) as e:
            raise TrainingFailed(f"Malformed feature vectors: {e}") from e

        if not np.isfinite(features).all():
            raise TrainingFailed("Feature vectors contain NaN or infinite values")

        targets = np.array(codec.encode_all(s.label for s in samples), dtype=np.int64)
        return features, targets

    def _split(self, features: np.ndarray, targets: np.ndarray):
        """Hold out the validation fraction (no hold-out if it rounds to zero)."""
        n_val = int(len(features) * self.validation_split)
        if n_val == 0 or n_val >= len(features):
            return features, None, targets, None

        try:
            return train_test_split(
                features,
                targets,
                test_size=n_val,
                random_state=self.random_state,
                stratify=targets,
            )
        except ValueError:
            logger.warning("Stratification failed, using regular train/validation split")
            return train_test_split(
                features, targets, test_size=n_val, random_state=self.random_state
            )

    def _fit_network(
        self, features: np.ndarray, targets: np.ndarray, codec: LabelCodec
    ) -> Tuple[FeedForwardClassifier, Dict[str, float]]:
        torch.manual_seed(self.random_state)

        X_train, X_val, y_train, y_val = self._split(features, targets)
        logger.info(
            f"Train set: {len(X_train)}, Validation set: {0 if X_val is None else len(X_val)}"
        )

        binary = codec.is_single_class
        config = NetworkConfig(
            input_size=features.shape[1],
            output_size=1 if binary else codec.num_classes,
            hidden_sizes=self.hidden_sizes,
        )
        network = FeedForwardClassifier(config)

        if binary:
            criterion = nn.BCEWithLogitsLoss()
        else:
            criterion = nn.CrossEntropyLoss()

        batch_size = min(self.max_batch_size, len(features))
        loader = DataLoader(
            TensorDataset(
                torch.as_tensor(X_train), self._target_tensor(y_train, codec)
            ),
            batch_size=batch_size,
            shuffle=True,
            generator=torch.Generator().manual_seed(self.random_state),
        )
        optimizer = Adam(network.parameters(), lr=self.learning_rate)

        epoch_loss = float("nan")
        for epoch in range(self.epochs):
            network.train()
            total_loss = 0.0

            for batch_x, batch_y in loader:
                optimizer.zero_grad()
                loss = criterion(network(batch_x), batch_y)
                loss.backward()
                optimizer.step()
                total_loss += loss.item() * len(batch_x)

            epoch_loss = total_loss / len(X_train)
            if epoch % LOG_EVERY_EPOCHS == 0:
                logger.info(f"Epoch {epoch}: loss = {epoch_loss:.4f}")

        metrics = {"train_loss": epoch_loss}
        metrics.update(self._evaluate(network, criterion, X_train, y_train, codec, "train"))
        if X_val is not None:
            metrics.update(self._evaluate(network, criterion, X_val, y_val, codec, "val"))

        logger.info(f"Training complete. Metrics: {metrics}")
        return network, metrics

    @staticmethod
    def _target_tensor(y: np.ndarray, codec: LabelCodec) -> torch.Tensor:
        """All-ones column for one-class models, one-hot rows otherwise."""
        if codec.is_single_class:
            return torch.ones((len(y), 1), dtype=torch.float32)
        return F.one_hot(torch.as_tensor(y), num_classes=codec.num_classes).float()

    def _evaluate(
        self,
        network: FeedForwardClassifier,
        criterion: nn.Module,
        X: np.ndarray,
        y: np.ndarray,
        codec: LabelCodec,
        dataset_name: str,
    ) -> Dict[str, float]:
        """
        Evaluate model on dataset.

        Args:
            network: Trained network
            criterion: Loss function used for training
            X: Feature matrix
            y: Encoded labels
            codec: Label codec
            dataset_name: Metric prefix ("train" or "val")

        Returns:
            Dictionary with loss and accuracy
        """
        network.eval()
        with torch.no_grad():
            logits = network(torch.as_tensor(X))
            loss = criterion(logits, self._target_tensor(y, codec)).item()

        probabilities = network.predict_proba(X)
        if codec.is_single_class:
            y_true = np.ones(len(y), dtype=np.int64)
            y_pred = (probabilities[:, 0] >= 0.5).astype(np.int64)
        else:
            y_true = y
            y_pred = probabilities.argmax(axis=1)

        return {
            f"{dataset_name}_loss": float(loss),
            f"{dataset_name}_accuracy": float(accuracy_score(y_true, y_pred)),
        }
