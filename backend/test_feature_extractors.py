#!/usr/bin/env python3
"""
Test feature extractors.
"""

import math
import sys
from pathlib import Path
from types import SimpleNamespace

import pytest

# Add backend to path
sys.path.insert(0, str(Path(__file__).parent))

from classifier_engine.features import (
    EmbeddingExtractor,
    HandLandmarkExtractor,
    extract_with_fallback,
)
from shared.errors import FeatureExtractionFailed


def make_hand(tip=(0.5, 0.4), mcp=(0.5, 0.6), wrist=(0.5, 0.9)):
    """21 landmarks with only wrist, index MCP and index tip placed."""
    landmarks = [(0.5, 0.5)] * 21
    landmarks[0] = wrist
    landmarks[5] = mcp
    landmarks[8] = tip
    return landmarks


def test_hand_landmark_features():
    features = HandLandmarkExtractor().extract(make_hand())

    assert len(features) == HandLandmarkExtractor.feature_size
    finger_dx, finger_dy, wrist_dx, wrist_dy, distance, angle = features
    assert finger_dx == pytest.approx(0.0)
    assert finger_dy == pytest.approx(-1.0)
    assert wrist_dx == pytest.approx(0.0)
    assert wrist_dy == pytest.approx(1.0)
    assert distance == pytest.approx(0.2)
    assert angle == pytest.approx(-math.pi / 2)


def test_hand_landmark_objects():
    """Landmarks may be objects exposing x and y."""
    points = [SimpleNamespace(x=x, y=y) for x, y in make_hand(tip=(0.8, 0.6))]
    features = HandLandmarkExtractor().extract(points)
    assert features[0] == pytest.approx(1.0)
    assert features[1] == pytest.approx(0.0)


def test_missing_landmarks():
    with pytest.raises(FeatureExtractionFailed):
        HandLandmarkExtractor().extract(make_hand()[:10])
    with pytest.raises(FeatureExtractionFailed):
        HandLandmarkExtractor().extract(None)


def test_embedding_extractor_flattens():
    extractor = EmbeddingExtractor(lambda image: [[1.0, 2.0], [3.0, 4.0]], feature_size=4)
    assert extractor.extract("frame") == [1.0, 2.0, 3.0, 4.0]


def test_embedding_extractor_wraps_failures():
    def broken(image):
        raise RuntimeError("backbone not loaded")

    with pytest.raises(FeatureExtractionFailed):
        EmbeddingExtractor(broken).extract("frame")

    with pytest.raises(FeatureExtractionFailed):
        EmbeddingExtractor(lambda image: [1.0, 2.0], feature_size=3).extract("frame")

    with pytest.raises(FeatureExtractionFailed):
        EmbeddingExtractor(lambda image: [float("nan")]).extract("frame")


def test_fallback_uses_first_working_representation():
    def embed(image):
        if image == "bitmap":
            raise ValueError("unsupported encoding")
        return [0.5, 0.5]

    extractor = EmbeddingExtractor(embed)
    assert extract_with_fallback(extractor, ["bitmap", "canvas"]) == [0.5, 0.5]


def test_fallback_all_fail():
    extractor = EmbeddingExtractor(lambda image: [])
    with pytest.raises(FeatureExtractionFailed) as exc:
        extract_with_fallback(extractor, ["bitmap", "canvas"])
    assert "all representations failed" in str(exc.value)

    with pytest.raises(FeatureExtractionFailed):
        extract_with_fallback(extractor, [])
