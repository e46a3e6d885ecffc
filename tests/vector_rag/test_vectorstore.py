"""Tests for ``VectorRAG.vectorstore``: storage, tombstones and rollback primitives."""

from __future__ import annotations

import numpy as np
import pytest

from VectorRAG.errors import DimensionMismatchError, RecordNotFoundError
from VectorRAG.types import DocumentEmbedding, DocumentMetadata
from VectorRAG.vectorstore import VectorStore, coerce_vector, normalize_vector


def _embedding(parent: str, index: int, vector, text: str = "") -> DocumentEmbedding:
    return DocumentEmbedding(
        external_id=parent,
        vector=vector,
        text=text,
        parent_external_id=parent,
        chunk_index=index,
        metadata=DocumentMetadata(department="Support"),
    )


def test_add_assigns_dense_ids_and_normalises() -> None:
    store = VectorStore(2, initial_capacity=4)

    first = store.add(_embedding("a", 0, [3.0, 4.0]))
    second = store.add(_embedding("a", 1, [0.0, 2.0]))

    assert (first, second) == (0, 1)
    assert np.allclose(store.get(first).vector, [0.6, 0.8])
    assert store.active_count == 2
    assert store.total_count == 2


def test_zero_vector_is_stored_unchanged() -> None:
    store = VectorStore(3)

    rid = store.add(_embedding("z", 0, [0.0, 0.0, 0.0]))

    assert store.get(rid).vector.tolist() == [0.0, 0.0, 0.0]
    assert store.norms([rid]).tolist() == [0.0]


def test_normalisation_can_be_disabled() -> None:
    store = VectorStore(2, normalize_on_add=False)

    rid = store.add(_embedding("a", 0, [3.0, 4.0]))

    assert store.get(rid).vector.tolist() == [3.0, 4.0]


def test_wrong_dimension_is_rejected_without_side_effects() -> None:
    store = VectorStore(3)

    with pytest.raises(DimensionMismatchError) as excinfo:
        store.add(_embedding("a", 0, [1.0, 2.0]))

    assert excinfo.value.expected == 3
    assert excinfo.value.actual == 2
    assert store.total_count == 0


def test_duplicate_active_key_requires_replace() -> None:
    store = VectorStore(2)
    store.add(_embedding("a", 0, [1.0, 0.0]))

    with pytest.raises(ValueError):
        store.add(_embedding("a", 0, [0.0, 1.0]))


def test_replace_keeps_id_and_updates_row() -> None:
    store = VectorStore(2)
    rid = store.add(_embedding("a", 0, [1.0, 0.0], text="old"))

    previous = store.replace(rid, _embedding("a", 0, [0.0, 1.0], text="new"))

    assert previous.text == "old"
    assert store.get(rid).text == "new"
    assert store.vectors([rid]).tolist() == [[0.0, 1.0]]
    assert store.find("a", 0) == rid


def test_tombstone_excludes_from_active_lookups() -> None:
    store = VectorStore(2)
    rid = store.add(_embedding("a", 0, [1.0, 0.0]))

    assert store.tombstone(rid) is True
    assert store.tombstone(rid) is False
    assert store.find("a", 0) is None
    assert store.ids_for_parent("a") == []
    assert store.active_count == 0
    assert store.total_count == 1
    assert store.get(rid).active is False


def test_tombstoned_key_can_be_reused() -> None:
    store = VectorStore(2)
    old = store.add(_embedding("a", 0, [1.0, 0.0]))
    store.tombstone(old)

    new = store.add(_embedding("a", 0, [0.0, 1.0]))

    assert new != old
    assert store.find("a", 0) == new


def test_unknown_id_raises_record_not_found() -> None:
    store = VectorStore(2)

    with pytest.raises(RecordNotFoundError):
        store.get(7)
    with pytest.raises(KeyError):
        store.tombstone(7)


def test_capacity_grows_by_doubling() -> None:
    store = VectorStore(2, initial_capacity=16)
    for index in range(40):
        store.add(_embedding("doc", index, [1.0, float(index)]))

    assert store.capacity >= 40
    assert store.vectors([0, 39]).shape == (2, 2)
    assert np.allclose(store.get(39).vector, normalize_vector(np.array([1.0, 39.0])))


def test_rollback_primitives_restore_previous_state() -> None:
    store = VectorStore(2)
    rid = store.add(_embedding("a", 0, [1.0, 0.0], text="original"))
    previous = store.replace(rid, _embedding("a", 0, [0.0, 1.0], text="updated"))
    extra = store.add(_embedding("a", 1, [1.0, 1.0]))

    store.discard_last(extra)
    store.restore(rid, previous)

    assert store.total_count == 1
    assert store.get(rid).text == "original"
    assert store.vectors([rid]).tolist() == [[1.0, 0.0]]

    store.tombstone(rid)
    store.reactivate(rid)
    assert store.find("a", 0) == rid
    assert store.active_count == 1


def test_compacted_store_renumbers_active_records() -> None:
    store = VectorStore(2)
    ids = [store.add(_embedding("doc", index, [1.0, float(index)])) for index in range(4)]
    store.tombstone(ids[1])

    fresh, remap = store.compacted()

    assert remap == {0: 0, 2: 1, 3: 2}
    assert fresh.total_count == 3
    assert [r.chunk_index for r in fresh.iterate_all()] == [0, 2, 3]
    assert np.array_equal(fresh.get(1).vector, store.get(2).vector)


def test_records_expose_tokens_and_readonly_vectors() -> None:
    store = VectorStore(2)
    rid = store.add(_embedding("a", 0, [1.0, 0.0], text="Reset your Password!"))
    record = store.get(rid)

    assert record.tokens == frozenset({"reset", "your", "password"})
    with pytest.raises(ValueError):
        record.vector[0] = 5.0


def test_coerce_vector_rejects_non_finite() -> None:
    with pytest.raises(ValueError):
        coerce_vector([1.0, float("nan")], 2)
    with pytest.raises(DimensionMismatchError):
        coerce_vector([[1.0, 2.0]], 2)
