#!/usr/bin/env python3
"""
Test model catalog and artifact store.

Tests:
1. Entry persistence and reload
2. Quota eviction with a single retry
3. Deletion and missing artifacts
"""

import json
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

# Add backend to path
sys.path.insert(0, str(Path(__file__).parent))

from classifier_engine.models import CatalogEntry, ModelCatalog, ModelStore
from classifier_engine.models.model_catalog import CATALOG_KEY
from classifier_engine.samples import LabelCodec
from shared.errors import (
    ArtifactNotFound,
    DuplicateName,
    ModelNotFound,
    PersistenceFailed,
    QuotaExceeded,
    StorageArea,
)
from shared.storage import MemoryKeyValueStore, StorageQuotaError

BASE_TIME = datetime(2024, 6, 1, tzinfo=timezone.utc)


class CatalogQuotaStore(MemoryKeyValueStore):
    """Memory store whose next catalog writes fail with a quota error."""

    def __init__(self):
        super().__init__()
        self.failing_catalog_writes = 0

    def set(self, key, value):
        if key == CATALOG_KEY and self.failing_catalog_writes > 0:
            self.failing_catalog_writes -= 1
            raise StorageQuotaError("quota exceeded")
        super().set(key, value)


def make_entry(i: int) -> CatalogEntry:
    return CatalogEntry(
        id=f"id{i:02d}",
        name=f"model {i}",
        storage_key=f"key{i:02d}",
        sample_count=4,
        labels=["a", "b"],
        label_map={"a": 0, "b": 1},
        label_counts={"a": 2, "b": 2},
        created_at=BASE_TIME + timedelta(minutes=i),
        input_size=3,
    )


def fill_catalog(catalog: ModelCatalog, count: int) -> None:
    for i in range(count):
        catalog.put_entry(make_entry(i), b"artifact-%d" % i)


def test_put_and_reload(backend):
    catalog = ModelCatalog(backend)
    fill_catalog(catalog, 3)

    reloaded = ModelCatalog(backend)
    assert [e.id for e in reloaded.list_entries()] == ["id00", "id01", "id02"]
    assert reloaded.get_entry("id01").name == "model 1"
    assert reloaded.get_artifact("key02") == b"artifact-2"


def test_create_entry_from_codec():
    codec = LabelCodec.derive(["dog", "cat", "dog"])
    entry = CatalogEntry.create(
        name="Pets v1",
        codec=codec,
        label_counts={"cat": 1, "dog": 2},
        sample_count=3,
        input_size=128,
        metrics={"train_accuracy": 1.0},
    )

    assert entry.labels == ["cat", "dog"]
    assert entry.label_map == {"cat": 0, "dog": 1}
    assert entry.storage_key.startswith("model_Pets_v1_")
    assert entry.codec == codec


def test_inconsistent_entry_rejected():
    with pytest.raises(ValueError):
        CatalogEntry(
            id="x",
            name="bad",
            storage_key="k",
            sample_count=1,
            labels=["a", "b"],
            label_map={"a": 1, "b": 0},
            created_at=BASE_TIME,
        )


def test_duplicate_name(backend):
    catalog = ModelCatalog(backend)
    catalog.put_entry(make_entry(0), b"x")

    duplicate = make_entry(1).model_copy(update={"name": "MODEL 0"})
    with pytest.raises(DuplicateName):
        catalog.put_entry(duplicate, b"y")
    assert not catalog.model_store.exists("key01")


def test_quota_eviction_keeps_most_recent():
    """15 entries plus a failed metadata write leave 11 entries."""
    backend = CatalogQuotaStore()
    catalog = ModelCatalog(backend, retention_limit=10)
    fill_catalog(catalog, 15)

    backend.failing_catalog_writes = 1
    catalog.put_entry(make_entry(15), b"newest")

    ids = [e.id for e in catalog.list_entries()]
    assert len(ids) == 11
    assert ids == [f"id{i:02d}" for i in range(5, 16)]

    for i in range(5):
        assert not catalog.model_store.exists(f"key{i:02d}")
    for i in range(5, 16):
        assert catalog.model_store.exists(f"key{i:02d}")

    persisted = json.loads(backend.get(CATALOG_KEY))
    assert len(persisted) == 11


def test_eviction_reports_removed_entries():
    evicted = []
    backend = CatalogQuotaStore()
    catalog = ModelCatalog(backend, retention_limit=2, on_evict=evicted.extend)
    fill_catalog(catalog, 4)

    backend.failing_catalog_writes = 1
    catalog.put_entry(make_entry(4), b"newest")

    assert sorted(e.id for e in evicted) == ["id00", "id01"]


def test_failed_retry_still_reports_eviction():
    """Evicted artifacts are gone, so the entries leave the index too."""
    evicted = []
    backend = CatalogQuotaStore()
    catalog = ModelCatalog(backend, retention_limit=2, on_evict=evicted.extend)
    fill_catalog(catalog, 3)

    backend.failing_catalog_writes = 2
    with pytest.raises(PersistenceFailed):
        catalog.put_entry(make_entry(3), b"newest")

    assert [e.id for e in evicted] == ["id00"]
    assert [e.id for e in catalog.list_entries()] == ["id01", "id02"]


def test_failed_retry_discards_new_artifact():
    backend = CatalogQuotaStore()
    catalog = ModelCatalog(backend, retention_limit=10)
    fill_catalog(catalog, 12)

    backend.failing_catalog_writes = 2
    with pytest.raises(PersistenceFailed) as exc:
        catalog.put_entry(make_entry(12), b"newest")

    assert exc.value.area == StorageArea.CATALOG
    assert not catalog.model_store.exists("key12")
    with pytest.raises(ModelNotFound):
        catalog.get_entry("id12")


def test_artifact_quota_is_reported():
    backend = MemoryKeyValueStore(quota_bytes=64)
    catalog = ModelCatalog(backend)

    with pytest.raises(QuotaExceeded) as exc:
        catalog.put_entry(make_entry(0), b"x" * 128)
    assert exc.value.area == StorageArea.ARTIFACTS
    assert len(catalog) == 0


def test_delete_entry_removes_artifact(backend):
    catalog = ModelCatalog(backend)
    fill_catalog(catalog, 2)

    deleted = catalog.delete_entry("id00")
    assert deleted.name == "model 0"
    assert [e.id for e in catalog.list_entries()] == ["id01"]
    assert not catalog.model_store.exists("key00")

    with pytest.raises(ModelNotFound):
        catalog.delete_entry("id00")


def test_missing_artifact(backend):
    catalog = ModelCatalog(backend)
    catalog.put_entry(make_entry(0), b"x")
    ModelStore(backend).delete("key00")

    with pytest.raises(ArtifactNotFound):
        catalog.get_artifact("key00")


def test_corrupt_catalog_loads_empty(backend):
    backend.set(CATALOG_KEY, b"[{broken")
    assert len(ModelCatalog(backend)) == 0


def test_storage_key_sanitized():
    key = ModelStore.make_storage_key("my model/v2!", BASE_TIME, suffix="abc")
    millis = int(BASE_TIME.timestamp() * 1000)
    assert key == f"model_my_model_v2__{millis}_abc"


def test_storage_key_not_reused(backend):
    store = ModelStore(backend)
    store.save("model_a_1", b"one")
    with pytest.raises(ValueError):
        store.save("model_a_1", b"two")
    assert store.load("model_a_1") == b"one"
    assert store.list_keys() == ["model_a_1"]
