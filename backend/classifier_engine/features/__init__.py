"""
Feature extraction module.

Converts upstream detector output (hand landmarks, image embeddings) into
fixed-length feature vectors.
"""

from .extractors import (
    EmbeddingExtractor,
    FeatureExtractor,
    HandLandmarkExtractor,
    extract_with_fallback,
)

__all__ = ["FeatureExtractor", "HandLandmarkExtractor", "EmbeddingExtractor", "extract_with_fallback"]
