"""
Caller-side prediction validation.

Validators run after InferenceEngine.predict and decide whether an
accepted prediction agrees with an independent auxiliary signal. The
engine itself never consults them.
"""

import logging
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Optional, Sequence

from ..features.extractors import INDEX_FINGER_MCP, INDEX_FINGER_TIP, landmark_xy
from ..models.predictor import InferenceEngine, Prediction

logger = logging.getLogger(__name__)

DIRECTIONS = ("up", "down", "left", "right")


@dataclass(frozen=True)
class ValidationResult:
    accepted: bool
    reason: str


class PredictionValidator(ABC):
    """Accept/reject policy combining a prediction with an auxiliary signal."""

    @abstractmethod
    def validate(
        self,
        prediction: Optional[Prediction],
        auxiliary_signal: Any,
        labels: Sequence[str],
    ) -> ValidationResult:
        """Decide whether prediction should be kept."""


def detect_pointing_direction(
    landmarks: Sequence[Any],
    min_extension: float = 0.08,
    mirrored: bool = True,
) -> Optional[str]:
    """
    Direction the index finger points, from its MCP -> tip vector.

    Image y grows downward. With a mirrored display the x axis is flipped
    so directions match the user's view.

    Args:
        landmarks: 21 hand landmarks
        min_extension: Minimum MCP -> tip distance for an extended finger
        mirrored: Flip x for a mirrored preview

    Returns:
        "up", "down", "left", "right", or None if the finger is not extended
    """
    if landmarks is None or len(landmarks) <= INDEX_FINGER_TIP:
        return None

    tip_x, tip_y = landmark_xy(landmarks[INDEX_FINGER_TIP])
    mcp_x, mcp_y = landmark_xy(landmarks[INDEX_FINGER_MCP])
    dx = tip_x - mcp_x
    dy = tip_y - mcp_y

    if math.hypot(dx, dy) < min_extension:
        return None

    user_dx = -dx if mirrored else dx
    angle = math.degrees(math.atan2(dy, user_dx)) % 360

    if angle < 45 or angle >= 315:
        return "right"
    if angle < 135:
        return "down"
    if angle < 225:
        return "left"
    return "up"


class GeometricDirectionValidator(PredictionValidator):
    """
    Cross-check pointing-direction predictions against finger geometry.

    The auxiliary signal is either the raw hand landmarks or an already
    computed direction string.
    """

    def __init__(
        self,
        model_trust_threshold: float = 0.4,
        min_extension: float = 0.08,
        mirrored: bool = True,
    ):
        """
        Initialize validator.

        Args:
            model_trust_threshold: Confidence at which the model wins a disagreement
            min_extension: Minimum finger extension for a geometric reading
            mirrored: Landmarks come from a mirrored preview
        """
        self.model_trust_threshold = model_trust_threshold
        self.min_extension = min_extension
        self.mirrored = mirrored

    def _direction(self, auxiliary_signal: Any) -> Optional[str]:
        if auxiliary_signal is None:
            return None
        if isinstance(auxiliary_signal, str):
            direction = auxiliary_signal.strip().lower()
            return direction if direction in DIRECTIONS else None
        return detect_pointing_direction(
            auxiliary_signal, min_extension=self.min_extension, mirrored=self.mirrored
        )

    def validate(
        self,
        prediction: Optional[Prediction],
        auxiliary_signal: Any,
        labels: Sequence[str],
    ) -> ValidationResult:
        if prediction is None:
            return ValidationResult(False, "no prediction")

        direction = self._direction(auxiliary_signal)
        trained = [label.lower() for label in labels]
        predicted = prediction.label.lower()

        if len(trained) == 1:
            if direction == trained[0]:
                return ValidationResult(True, "geometry matches the single trained label")
            return ValidationResult(
                False, f"geometry reads {direction!r}, model only knows {trained[0]!r}"
            )

        if direction is None:
            return ValidationResult(True, "no geometric reading, model decision stands")
        if direction not in trained:
            return ValidationResult(False, f"geometry reads untrained direction {direction!r}")
        if direction == predicted:
            return ValidationResult(True, "geometry agrees with model")
        if prediction.confidence >= self.model_trust_threshold:
            return ValidationResult(
                True, f"model confidence {prediction.confidence:.3f} outweighs geometry {direction!r}"
            )
        return ValidationResult(
            False,
            f"model confidence {prediction.confidence:.3f} too low to override geometry {direction!r}",
        )


def validated_predict(
    engine: InferenceEngine,
    features: Sequence[float],
    validator: PredictionValidator,
    auxiliary_signal: Any,
) -> Optional[Prediction]:
    """
    Run engine.predict and then the validator.

    Debug-tagged predictions are returned untouched.
    """
    prediction = engine.predict(features)
    if prediction is None or not prediction.accepted:
        return prediction

    result = validator.validate(prediction, auxiliary_signal, engine.selected_entry.labels)
    if not result.accepted:
        engine.diagnostics.debug("validator", f"Prediction {prediction.label} rejected: {result.reason}")
        return None
    return prediction
