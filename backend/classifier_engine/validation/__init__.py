"""
Prediction validation policies layered above the inference engine.
"""

from .prediction_validator import (
    GeometricDirectionValidator,
    PredictionValidator,
    ValidationResult,
    detect_pointing_direction,
    validated_predict,
)

__all__ = [
    "PredictionValidator",
    "GeometricDirectionValidator",
    "ValidationResult",
    "detect_pointing_direction",
    "validated_predict",
]
