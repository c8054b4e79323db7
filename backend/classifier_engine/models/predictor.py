"""
Live inference engine.

Loads one catalog entry plus its artifact and turns feature vectors into
gated (label, confidence) decisions. Uncertain outputs are suppressed:
binary models through an ambiguity band around 0.5, multi-class models
through margin and normalized-entropy checks.
"""

import logging
import math
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Dict, Optional, Sequence

import numpy as np

from shared.config import settings
from shared.errors import (
    ArtifactLoadFailed,
    ArtifactNotFound,
    ClassifierError,
    DimensionMismatch,
    InferenceFailed,
    NotReady,
)
from shared.logging_utils import RateLimitedLogger

from .model_catalog import CatalogEntry, ModelCatalog
from .network import FeedForwardClassifier, network_from_bytes

logger = logging.getLogger(__name__)


class EngineState(str, Enum):
    """Lifecycle of the selected model."""

    UNSELECTED = "unselected"
    LOADING = "loading"
    READY = "ready"


@dataclass(frozen=True)
class Prediction:
    """Accepted (or, in debug mode, tagged) prediction."""

    label: str
    confidence: float
    probabilities: Dict[str, float] = field(default_factory=dict)
    ambiguous: bool = False
    low_confidence: bool = False
    margin: Optional[float] = None
    entropy: Optional[float] = None

    @property
    def accepted(self) -> bool:
        return not (self.ambiguous or self.low_confidence)

    def to_dict(self) -> Dict:
        result = asdict(self)
        result["accepted"] = self.accepted
        return result


class InferenceEngine:
    """
    Gated prediction over the currently selected model.

    Every predict() call is independent: a failed forward pass raises
    InferenceFailed but leaves the loaded model in place.
    """

    BINARY_AMBIGUITY_BAND = 0.3
    ENTROPY_LIMIT = 0.7
    MARGIN_LIMIT = 0.3
    TWO_CLASS_MIN_THRESHOLD = 0.75
    PROBABILITY_FLOOR = 0.0001
    BACKGROUND_MARKERS = ("background", "none", "empty")

    LOW_CONFIDENCE_TAG = "low confidence"
    AMBIGUOUS_TAG = "ambiguous"

    def __init__(
        self,
        catalog: ModelCatalog,
        confidence_threshold: Optional[float] = None,
        debug_mode: Optional[bool] = None,
        log_interval_seconds: Optional[float] = None,
    ):
        """
        Initialize inference engine.

        Args:
            catalog: Catalog to load entries and artifacts from
            confidence_threshold: Min confidence for predictions (default from settings)
            debug_mode: Return tagged raw predictions instead of None (default from settings)
            log_interval_seconds: Spacing of per-frame diagnostics (default from settings)
        """
        self.catalog = catalog
        self.confidence_threshold = settings.confidence_threshold
        self.set_confidence_threshold(
            confidence_threshold
            if confidence_threshold is not None
            else settings.confidence_threshold
        )
        self.debug_mode = bool(debug_mode if debug_mode is not None else settings.debug_mode)
        self.diagnostics = RateLimitedLogger(
            logger,
            interval_seconds=(
                log_interval_seconds
                if log_interval_seconds is not None
                else settings.log_interval_seconds
            ),
        )

        self._state = EngineState.UNSELECTED
        self._entry: Optional[CatalogEntry] = None
        self._network: Optional[FeedForwardClassifier] = None

    @property
    def state(self) -> EngineState:
        return self._state

    @property
    def is_ready(self) -> bool:
        return self._state == EngineState.READY

    @property
    def selected_entry(self) -> Optional[CatalogEntry]:
        return self._entry

    @property
    def selected_model_id(self) -> Optional[str]:
        return self._entry.id if self._entry else None

    def set_confidence_threshold(self, value: float) -> None:
        value = float(value)
        if not 0.0 <= value <= 1.0:
            raise ValueError(f"Confidence threshold must be in [0, 1]: {value}")
        self.confidence_threshold = value
        logger.info(f"Confidence threshold set to {value}")

    def set_debug_mode(self, enabled: bool) -> None:
        self.debug_mode = bool(enabled)
        logger.info(f"Debug mode {'enabled' if self.debug_mode else 'disabled'}")

    def select(self, model_id: str) -> CatalogEntry:
        """
        Load a model for inference.

        Returns:
            The selected catalog entry

        Raises:
            ModelNotFound: No catalog entry with this id
            ArtifactLoadFailed: Artifact missing, corrupt or incompatible with its entry
        """
        self._state = EngineState.LOADING
        self._entry = None
        self._network = None

        try:
            entry = self.catalog.get_entry(model_id)
            try:
                blob = self.catalog.get_artifact(entry.storage_key)
            except ArtifactNotFound as e:
                raise ArtifactLoadFailed(f"artifact {entry.storage_key} is unavailable") from e

            network = network_from_bytes(blob)
            self._check_compatible(entry, network)
        except ClassifierError as e:
            self._state = EngineState.UNSELECTED
            logger.error(f"Error selecting model {model_id}: {e}")
            raise

        self._entry = entry
        self._network = network
        self._state = EngineState.READY
        self.diagnostics.reset()

        logger.info(
            f"Model '{entry.name}' ({entry.sample_count} samples, labels={entry.labels}) "
            f"loaded and ready"
        )
        return entry

    @staticmethod
    def _check_compatible(entry: CatalogEntry, network: FeedForwardClassifier) -> None:
        expected_outputs = 1 if entry.is_single_class else len(entry.labels)
        if network.config.output_size != expected_outputs:
            raise ArtifactLoadFailed(
                f"model has {network.config.output_size} outputs but entry lists "
                f"{len(entry.labels)} labels"
            )
        if entry.input_size is not None and network.config.input_size != entry.input_size:
            raise ArtifactLoadFailed(
                f"model expects {network.config.input_size} features but entry records "
                f"{entry.input_size}"
            )

    def unselect(self) -> None:
        """Drop the loaded model."""
        if self._entry is not None:
            logger.info(f"Model '{self._entry.name}' unselected")
        self._entry = None
        self._network = None
        self._state = EngineState.UNSELECTED

    def handle_model_deleted(self, model_id: str) -> bool:
        """
        Clear the selection if the deleted model was selected.

        Returns:
            True if the engine was unselected
        """
        if self._entry is not None and self._entry.id == model_id:
            self.unselect()
            return True
        return False

    @property
    def input_size(self) -> Optional[int]:
        return self._network.config.input_size if self._network else None

    def forward(self, features: Sequence[float]) -> np.ndarray:
        """
        Raw probability vector for one feature vector.

        Raises:
            NotReady: No model selected
            DimensionMismatch: Wrong feature vector length
            InferenceFailed: Forward pass failed or produced invalid output
        """
        if not self.is_ready:
            raise NotReady()

        try:
            vector = np.asarray(features, dtype=np.float32)
        except (TypeError, ValueError) as e:
            raise InferenceFailed(f"malformed feature vector: {e}") from e

        if vector.ndim != 1 or vector.size != self.input_size:
            raise DimensionMismatch(expected=self.input_size, actual=int(vector.size))

        try:
            probabilities = self._network.predict_proba(vector.reshape(1, -1))[0]
        except Exception as e:
            raise InferenceFailed(str(e)) from e

        if not np.isfinite(probabilities).all():
            raise InferenceFailed("model produced non-finite probabilities")
        return probabilities

    def predict(self, features: Sequence[float]) -> Optional[Prediction]:
        """
        Gated prediction for one feature vector.

        Returns:
            Prediction, or None when the decision is rejected (debug mode
            returns a tagged Prediction instead)
        """
        probabilities = self.forward(features)
        return self.decide(probabilities, self._entry.labels)

    @classmethod
    def normalized_entropy(cls, probabilities: Sequence[float]) -> float:
        """Shannon entropy in bits divided by log2(K), clamped to [0, 1]."""
        p = np.asarray(probabilities, dtype=np.float64)
        if p.size < 2:
            return 0.0
        p = p[p > cls.PROBABILITY_FLOOR]
        entropy = float(-(p * np.log2(p)).sum())
        return min(1.0, max(0.0, entropy / math.log2(len(probabilities))))

    @classmethod
    def has_background_label(cls, labels: Sequence[str]) -> bool:
        """True if any label names a catch-all class."""
        return any(marker in label.lower() for label in labels for marker in cls.BACKGROUND_MARKERS)

    def effective_threshold(self, labels: Sequence[str]) -> float:
        """
        Threshold applied to multi-class outputs.

        Two-class models without a catch-all label get a raised floor since
        neither output can express "neither".
        """
        if len(labels) == 2 and not self.has_background_label(labels):
            return max(self.confidence_threshold, self.TWO_CLASS_MIN_THRESHOLD)
        return self.confidence_threshold

    def decide(self, probabilities: Sequence[float], labels: Sequence[str]) -> Optional[Prediction]:
        """
        Apply the confidence and ambiguity gates to a probability vector.

        Args:
            probabilities: Model output (length 1 for binary models, K otherwise)
            labels: Codec labels of the model

        Returns:
            Prediction or None

        Raises:
            InferenceFailed: Output width does not match the labels
        """
        p = np.asarray(probabilities, dtype=np.float64).ravel()
        labels = list(labels)

        if p.size == 1 and len(labels) == 1:
            return self._decide_binary(float(p[0]), labels[0])
        if p.size >= 2 and p.size == len(labels):
            return self._decide_multiclass(p, labels)

        raise InferenceFailed(f"{p.size} outputs cannot be mapped onto labels {labels}")

    def _decide_binary(self, confidence: float, label: str) -> Optional[Prediction]:
        ambiguous = abs(confidence - 0.5) < self.BINARY_AMBIGUITY_BAND
        low_confidence = confidence < self.confidence_threshold

        self.diagnostics.debug(
            "binary",
            f"Binary prediction: label={label} confidence={confidence:.3f} "
            f"ambiguous={ambiguous} threshold={self.confidence_threshold}",
        )

        probabilities = {label: confidence}
        if not ambiguous and not low_confidence:
            return Prediction(label=label, confidence=confidence, probabilities=probabilities)

        if self.debug_mode:
            return Prediction(
                label=f"{label} ({self.LOW_CONFIDENCE_TAG})",
                confidence=confidence,
                probabilities=probabilities,
                ambiguous=ambiguous,
                low_confidence=True,
            )
        return None

    def _decide_multiclass(self, p: np.ndarray, labels: list) -> Optional[Prediction]:
        order = np.argsort(-p, kind="stable")
        top, second = int(order[0]), int(order[1])
        confidence = float(p[top])
        margin = confidence - float(p[second])
        entropy = self.normalized_entropy(p)

        # Entropy gate applies from three outputs up
        ambiguous = margin < self.MARGIN_LIMIT or (
            p.size > 2 and entropy > self.ENTROPY_LIMIT
        )
        threshold = self.effective_threshold(labels)
        low_confidence = confidence < threshold

        probabilities = {label: float(prob) for label, prob in zip(labels, p)}
        self.diagnostics.debug(
            "multiclass",
            f"Prediction: top={labels[top]} ({confidence:.3f}) margin={margin:.3f} "
            f"entropy={entropy:.3f} threshold={threshold:.2f} probabilities="
            + ", ".join(f"{k}:{v:.3f}" for k, v in probabilities.items()),
        )

        if not ambiguous and not low_confidence:
            return Prediction(
                label=labels[top],
                confidence=confidence,
                probabilities=probabilities,
                margin=margin,
                entropy=entropy,
            )

        if self.debug_mode:
            tag = self.AMBIGUOUS_TAG if ambiguous else self.LOW_CONFIDENCE_TAG
            return Prediction(
                label=f"{labels[top]} ({tag})",
                confidence=confidence,
                probabilities=probabilities,
                ambiguous=ambiguous,
                low_confidence=low_confidence,
                margin=margin,
                entropy=entropy,
            )
        return None
