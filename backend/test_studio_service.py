#!/usr/bin/env python3
"""
Test classifier studio service.

Tests:
1. Sample collection through the studio
2. Training, overwrite confirmation and sample clearing
3. Model deletion, overwrite and eviction while selected
4. Failed saves keep the samples
5. Prediction statistics
"""

import sys
from pathlib import Path

import pytest

# Add backend to path
sys.path.insert(0, str(Path(__file__).parent))

from conftest import make_cluster_samples

from classifier_engine.models import EngineState, ModelStore
from classifier_engine.models.model_catalog import CATALOG_KEY
from classifier_engine.samples.sample_store import SAMPLES_KEY
from classifier_engine.studio import ClassifierStudio
from classifier_engine.validation import GeometricDirectionValidator
from shared.errors import DuplicateName, NotReady, PersistenceFailed, TrainingInProgress
from shared.storage import MemoryKeyValueStore, StorageQuotaError


class FailingWritesStore(MemoryKeyValueStore):
    """Memory store whose next writes under a key prefix fail with a quota error."""

    def __init__(self):
        super().__init__()
        self.failing = {}

    def fail_next(self, prefix, times=1):
        self.failing[prefix] = times

    def set(self, key, value):
        for prefix, remaining in self.failing.items():
            if key.startswith(prefix) and remaining > 0:
                self.failing[prefix] = remaining - 1
                raise StorageQuotaError("quota exceeded")
        super().set(key, value)


@pytest.fixture
def studio(studio_settings):
    return ClassifierStudio(studio_settings, backend=MemoryKeyValueStore())


def add_clusters(studio, labels=("left", "right", "up"), per_label=8):
    for sample in make_cluster_samples(labels=labels, per_label=per_label):
        studio.add_sample(sample.features, sample.label)


def test_add_sample_reports_counts(studio):
    result = studio.add_sample([0.1, 0.2, 0.3], "left")
    assert result["index"] == 0
    assert result["counts"] == {"left": 1}
    assert result["warning"] is None

    stats = studio.sample_stats()
    assert stats["total"] == 1
    assert stats["feature_size"] == 3


def test_samples_survive_restart(studio_settings):
    backend = MemoryKeyValueStore()
    first = ClassifierStudio(studio_settings, backend=backend)
    first.add_sample([1.0, 2.0], "a")

    second = ClassifierStudio(studio_settings, backend=backend)
    assert len(second.samples) == 1


def test_train_select_predict(studio):
    add_clusters(studio)
    entry = studio.train("Directions")

    assert [m.id for m in studio.list_models()] == [entry.id]
    studio.select_model(entry.id)
    studio.set_debug_mode(True)

    prediction = studio.predict([-3.0, 0.0, 0.0])
    assert prediction is not None
    assert studio.get_stats()["predictions_made"] == 1
    assert studio.get_stats()["selected_model"] == "Directions"


def test_duplicate_requires_overwrite(studio):
    add_clusters(studio)
    first = studio.train("Directions")

    with pytest.raises(DuplicateName):
        studio.train("directions")

    second = studio.train("directions", overwrite=True)
    ids = [m.id for m in studio.list_models()]
    assert ids == [second.id]
    assert first.id not in ids


def test_blank_model_name(studio):
    add_clusters(studio)
    with pytest.raises(ValueError):
        studio.train("  ")


def test_clear_samples_after_training(studio):
    add_clusters(studio, labels=("left", "right"), per_label=5)
    studio.train("Two", clear_samples_after=True)
    assert len(studio.samples) == 0


def test_training_in_progress(studio):
    add_clusters(studio, labels=("left",), per_label=4)
    studio._training_lock.acquire()
    try:
        assert studio.is_training
        with pytest.raises(TrainingInProgress):
            studio.train("Busy")
    finally:
        studio._training_lock.release()


def test_delete_selected_model(studio):
    add_clusters(studio)
    entry = studio.train("Directions")
    studio.select_model(entry.id)

    studio.delete_model(entry.id)

    assert studio.engine.state.value == "unselected"
    with pytest.raises(NotReady):
        studio.predict([0.0, 0.0, 0.0])
    assert studio.get_stats()["errors"] == 1


def test_validator_applied_with_auxiliary_signal(studio_settings):
    studio = ClassifierStudio(
        studio_settings,
        backend=MemoryKeyValueStore(),
        validator=GeometricDirectionValidator(),
    )
    add_clusters(studio, labels=("up",), per_label=6)
    entry = studio.train("Up only")
    studio.select_model(entry.id)
    studio.set_confidence_threshold(0.0)

    # Geometry disagrees with the only trained label
    assert studio.predict([0.0, 3.0, 0.0], auxiliary_signal="down") is None


def test_delete_rejected_while_training(studio):
    add_clusters(studio, labels=("left", "right"), per_label=5)
    entry = studio.train("Two")

    studio._training_lock.acquire()
    try:
        with pytest.raises(TrainingInProgress):
            studio.delete_model(entry.id)
    finally:
        studio._training_lock.release()

    assert len(studio.list_models()) == 1
    studio.delete_model(entry.id)
    assert studio.list_models() == []


def test_overwriting_selected_model_unselects_engine(studio):
    add_clusters(studio)
    entry = studio.train("Directions")
    studio.select_model(entry.id)

    replacement = studio.train("Directions", overwrite=True)

    assert replacement.id != entry.id
    assert studio.engine.state == EngineState.UNSELECTED
    assert [e.id for e in studio.list_models()] == [replacement.id]
    with pytest.raises(NotReady):
        studio.predict([0.0, 0.0, 0.0])


def test_evicting_selected_model_unselects_engine(studio_settings):
    """A quota eviction of the selected model clears the engine."""
    backend = FailingWritesStore()
    studio = ClassifierStudio(
        studio_settings.model_copy(update={"catalog_retention_limit": 2}),
        backend=backend,
    )
    add_clusters(studio, labels=("left", "right"), per_label=5)

    first = studio.train("m0")
    studio.select_model(first.id)
    studio.train("m1")
    studio.train("m2")
    assert studio.engine.is_ready

    backend.fail_next(CATALOG_KEY)
    studio.train("m3")

    assert [e.name for e in studio.list_models()] == ["m1", "m2", "m3"]
    assert not studio.model_store.exists(first.storage_key)
    assert studio.engine.state == EngineState.UNSELECTED
    with pytest.raises(NotReady):
        studio.predict([0.0, 0.0, 0.0])


def test_artifact_quota_keeps_samples(studio_settings):
    backend = FailingWritesStore()
    studio = ClassifierStudio(studio_settings, backend=backend)
    add_clusters(studio)
    before = len(studio.samples)

    backend.fail_next(ModelStore.KEY_PREFIX)
    with pytest.raises(PersistenceFailed):
        studio.train("Directions", clear_samples_after=True)

    assert len(studio.samples) == before
    assert studio.list_models() == []
    assert not studio.is_training


def test_stats_report_stored_sizes(studio):
    assert studio.get_stats()["stored_bytes"] == {"samples": 0, "catalog": 0}

    studio.add_sample([0.1, 0.2, 0.3], "left")

    stored = studio.get_stats()["stored_bytes"]
    assert stored["samples"] == len(studio.backend.get(SAMPLES_KEY))
    assert stored["catalog"] == 0
