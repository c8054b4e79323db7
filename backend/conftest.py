"""
Shared pytest fixtures for the classifier engine tests.
"""

import sys
from pathlib import Path

import numpy as np
import pytest

# Add backend to path
sys.path.insert(0, str(Path(__file__).parent))

from classifier_engine.models import ClassifierTrainer, InferenceEngine, ModelCatalog
from classifier_engine.samples import Sample
from shared.config import Settings
from shared.storage import MemoryKeyValueStore

CENTERS = {
    "left": (-3.0, 0.0, 0.0),
    "right": (3.0, 0.0, 0.0),
    "up": (0.0, 3.0, 0.0),
}


def make_cluster_samples(labels=("left", "right", "up"), per_label=10, seed=0):
    """Well separated Gaussian clusters, one per label."""
    rng = np.random.default_rng(seed)
    samples = []
    for label in labels:
        center = np.array(CENTERS.get(label, (0.0, 0.0, 3.0)))
        for point in center + rng.normal(scale=0.2, size=(per_label, 3)):
            samples.append(Sample(features=tuple(float(x) for x in point), label=label))
    return samples


@pytest.fixture
def backend():
    return MemoryKeyValueStore()


@pytest.fixture
def catalog(backend):
    return ModelCatalog(backend, retention_limit=10)


@pytest.fixture
def trainer(catalog):
    return ClassifierTrainer(
        catalog=catalog,
        epochs=60,
        max_batch_size=8,
        validation_split=0.2,
        hidden_sizes=[8, 4],
        learning_rate=0.05,
        random_state=0,
    )


@pytest.fixture
def engine(catalog):
    return InferenceEngine(
        catalog, confidence_threshold=0.3, debug_mode=False, log_interval_seconds=0.0
    )


@pytest.fixture
def cluster_samples():
    return make_cluster_samples()


@pytest.fixture
def studio_settings():
    return Settings(
        storage_backend="memory",
        training_epochs=40,
        training_max_batch_size=8,
        training_hidden_units="8,4",
        training_learning_rate=0.05,
        training_random_state=0,
        log_interval_seconds=0.0,
    )
