"""
Feature extractors.

Turn raw upstream detector output into the fixed-length vectors the
sample store and inference engine consume. The classifier core only ever
sees the resulting vectors.
"""

import logging
import math
from abc import ABC, abstractmethod
from typing import Any, Callable, Iterable, List, Optional, Sequence, Tuple

import numpy as np

from shared.errors import FeatureExtractionFailed

logger = logging.getLogger(__name__)

# Hand landmark indices (21-point hand model)
WRIST = 0
INDEX_FINGER_MCP = 5
INDEX_FINGER_TIP = 8
NUM_HAND_LANDMARKS = 21


def landmark_xy(landmark: Any) -> Tuple[float, float]:
    """(x, y) of a landmark given as an object with .x/.y or a sequence."""
    if hasattr(landmark, "x") and hasattr(landmark, "y"):
        return float(landmark.x), float(landmark.y)
    return float(landmark[0]), float(landmark[1])


def _unit(dx: float, dy: float) -> Tuple[float, float, float]:
    distance = math.hypot(dx, dy)
    if distance > 0:
        return dx / distance, dy / distance, distance
    return 0.0, 0.0, 0.0


class FeatureExtractor(ABC):
    """Capability turning one raw input into a feature vector."""

    feature_size: Optional[int] = None

    @abstractmethod
    def extract(self, raw_input: Any) -> List[float]:
        """
        Extract a feature vector.

        Raises:
            FeatureExtractionFailed: Input could not be processed
        """


class HandLandmarkExtractor(FeatureExtractor):
    """
    Geometric features from hand landmarks.

    Produces 6 values: unit vector index MCP -> tip, unit vector index
    MCP -> wrist, MCP -> tip distance (scale) and the finger angle.
    """

    feature_size = 6

    def extract(self, raw_input: Sequence[Any]) -> List[float]:
        landmarks = list(raw_input or [])
        if len(landmarks) < NUM_HAND_LANDMARKS:
            raise FeatureExtractionFailed(
                f"expected {NUM_HAND_LANDMARKS} hand landmarks, got {len(landmarks)}"
            )

        try:
            wrist_x, wrist_y = landmark_xy(landmarks[WRIST])
            mcp_x, mcp_y = landmark_xy(landmarks[INDEX_FINGER_MCP])
            tip_x, tip_y = landmark_xy(landmarks[INDEX_FINGER_TIP])
        except (TypeError, ValueError, IndexError) as e:
            raise FeatureExtractionFailed(f"malformed landmark: {e}") from e

        dx, dy = tip_x - mcp_x, tip_y - mcp_y
        finger_dx, finger_dy, distance = _unit(dx, dy)
        wrist_dx, wrist_dy, _ = _unit(wrist_x - mcp_x, wrist_y - mcp_y)

        return [
            finger_dx,
            finger_dy,
            wrist_dx,
            wrist_dy,
            distance,
            math.atan2(dy, dx),
        ]


class EmbeddingExtractor(FeatureExtractor):
    """
    Features from an injected embedding model.

    The callable receives the raw input (an image, a frame) and returns
    anything numpy can flatten, e.g. a backbone's pooled activations.
    """

    def __init__(self, embed_fn: Callable[[Any], Any], feature_size: Optional[int] = None):
        """
        Initialize embedding extractor.

        Args:
            embed_fn: Embedding callable
            feature_size: Expected vector length (None accepts any non-empty length)
        """
        self.embed_fn = embed_fn
        self.feature_size = feature_size

    def extract(self, raw_input: Any) -> List[float]:
        try:
            embedding = np.asarray(self.embed_fn(raw_input), dtype=np.float64).ravel()
        except FeatureExtractionFailed:
            raise
        except Exception as e:
            raise FeatureExtractionFailed(f"embedding model failed: {e}") from e

        if embedding.size == 0:
            raise FeatureExtractionFailed("embedding model returned an empty vector")
        if self.feature_size is not None and embedding.size != self.feature_size:
            raise FeatureExtractionFailed(
                f"expected {self.feature_size} embedding values, got {embedding.size}"
            )
        if not np.isfinite(embedding).all():
            raise FeatureExtractionFailed("embedding contains NaN or infinite values")

        return embedding.tolist()


def extract_with_fallback(extractor: FeatureExtractor, representations: Iterable[Any]) -> List[float]:
    """
    Try alternate encodings of the same input until one extracts.

    Args:
        extractor: Extractor to apply
        representations: Candidate inputs in order of preference

    Returns:
        First successfully extracted feature vector

    Raises:
        FeatureExtractionFailed: Every representation failed
    """
    failures = []
    for position, representation in enumerate(representations):
        try:
            return extractor.extract(representation)
        except FeatureExtractionFailed as e:
            logger.debug(f"Representation {position} failed: {e.reason}")
            failures.append(e.reason)

    if not failures:
        raise FeatureExtractionFailed("no input representations given")
    raise FeatureExtractionFailed("all representations failed: " + "; ".join(failures))
