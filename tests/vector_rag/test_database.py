"""End-to-end tests for ``VectorRAGDatabase``: ingestion, search, maintenance and metrics."""

from __future__ import annotations

import asyncio
import logging
import threading

import numpy as np
import pytest

from VectorRAG import (
    ChunkingOptions,
    DatabaseOptions,
    DimensionMismatchError,
    DocumentEmbedding,
    DocumentMetadata,
    IngestionCancelledError,
    InvalidConfigurationError,
    LshConfig,
    RecordNotFoundError,
    SearchOptions,
    VectorRAGConfig,
    VectorRAGDatabase,
    metadata_filter,
)


def test_password_reset_document_is_retrievable(support_corpus, hash_model) -> None:
    hits = support_corpus.search(
        hash_model.embed("How do I reset my password?"),
        SearchOptions(top_k=1, use_hybrid=True, text_query="How do I reset my password?"),
    )

    assert [hit.external_id for hit in hits] == ["kb-password"]
    assert hits[0].evidence_chunk_index == 0
    assert "reset your password" in hits[0].evidence_text
    assert hits[0].diagnostics.lexical_score > 0.0


def test_department_filter_returns_only_support(support_corpus, hash_model) -> None:
    hits = support_corpus.search(
        hash_model.embed("help"),
        SearchOptions(top_k=10, filter=lambda md: md.department == "Support"),
    )

    assert len(hits) == 2
    assert {hit.metadata.department for hit in hits} == {"Support"}


def test_cacheable_filter_matches_callable_filter(support_corpus, hash_model) -> None:
    query = hash_model.embed("enterprise billing")

    first = support_corpus.search(query, SearchOptions(top_k=10, filter=metadata_filter(department="Sales")))
    second = support_corpus.search(query, SearchOptions(top_k=10, filter=metadata_filter(department="Sales")))

    assert [hit.external_id for hit in first] == ["sales-pricing"]
    assert first == second
    assert support_corpus.observability.metrics.counter_value("search_cache", outcome="hit") == 1.0


def test_tombstone_updates_metrics_and_hides_record(support_corpus, hash_model) -> None:
    target = support_corpus.search(hash_model.embed("vpn client corporate account"))[0]
    before = support_corpus.get_metrics()

    assert support_corpus.tombstone(target.record_id) is True

    after = support_corpus.get_metrics()
    assert after.records_total == before.records_total
    assert after.records_active == before.records_active - 1
    support_corpus.clear_cache()
    ids = {hit.record_id for hit in support_corpus.search(hash_model.embed("vpn"), SearchOptions(top_k=10))}
    assert target.record_id not in ids
    assert support_corpus.tombstone(target.record_id) is False
    assert support_corpus.get_metrics().records_active == after.records_active


def test_tombstone_unknown_id_raises(make_database) -> None:
    with pytest.raises(RecordNotFoundError):
        make_database().tombstone(42)


def test_upsert_replaces_chunks_in_place_and_tombstones_extras(make_database, hash_model) -> None:
    db = make_database()
    chunking = ChunkingOptions(chunk_size=20, chunk_overlap=0)
    first = db.upsert_text_document(
        "doc", "a" * 20 + "b" * 20 + "c" * 20, {"department": "Support"}, hash_model, chunking=chunking
    )
    assert len(first) == 3

    second = db.upsert_text_document("doc", "x" * 20 + "y" * 5, None, hash_model, chunking=chunking)

    assert second == first[:2]
    assert db.get(first[0]).text == "x" * 20
    assert db.get(first[2]).active is False
    metrics = db.get_metrics()
    assert metrics.records_total == 3
    assert metrics.records_active == 2


def test_empty_text_tombstones_document(support_corpus, hash_model) -> None:
    assert support_corpus.upsert_text_document("kb-vpn", "", None, hash_model) == []

    hits = support_corpus.search(hash_model.embed("vpn client"), SearchOptions(top_k=10))
    assert "kb-vpn" not in {hit.external_id for hit in hits}
    assert support_corpus.get_metrics().records_active == 2


def test_metadata_mapping_extra_keys_become_attributes(make_database, hash_model) -> None:
    db = make_database()
    [rid] = db.upsert_text_document("doc", "hello world", {"department": "Support", "lang": "en"}, hash_model)

    metadata = db.get(rid).metadata
    assert metadata.department == "Support"
    assert metadata.attributes["lang"] == "en"


def test_cancel_event_aborts_before_commit(make_database, hash_model) -> None:
    db = make_database()
    cancel = threading.Event()
    calls = []

    class _CancellingModel:
        dimension = hash_model.dimension

        def embed(self, text):
            calls.append(text)
            cancel.set()
            return hash_model.embed(text)

    with pytest.raises(IngestionCancelledError):
        db.upsert_text_document(
            "doc",
            "z" * 50,
            None,
            _CancellingModel(),
            chunking=ChunkingOptions(chunk_size=10, chunk_overlap=0),
            cancel_event=cancel,
        )

    assert len(calls) == 1
    assert db.get_metrics().records_total == 0


def test_embedding_failure_leaves_database_untouched(support_corpus) -> None:
    class _Broken:
        dimension = 64

        def embed(self, text):
            raise RuntimeError("model offline")

    before = support_corpus.get_metrics()
    with pytest.raises(RuntimeError, match="model offline"):
        support_corpus.upsert_text_document("kb-password", "new text", None, _Broken())

    assert support_corpus.get_metrics() == before


def test_wrong_embedding_dimension_is_rejected(make_database) -> None:
    class _Short:
        dimension = 3

        def embed(self, text):
            return [1.0, 0.0, 0.0]

    db = make_database()
    with pytest.raises(DimensionMismatchError):
        db.upsert_text_document("doc", "text", None, _Short())
    assert db.get_metrics().records_total == 0


def test_add_batch_is_atomic(make_database) -> None:
    db = make_database(3)
    db.add(DocumentEmbedding(external_id="a", vector=[1.0, 0.0, 0.0]))

    with pytest.raises(DimensionMismatchError):
        db.add_batch(
            [
                DocumentEmbedding(external_id="b", vector=[0.0, 1.0, 0.0]),
                DocumentEmbedding(external_id="c", vector=[0.0, 1.0]),
            ]
        )

    assert db.get_metrics().records_total == 1
    assert [hit.external_id for hit in db.search([0.0, 1.0, 0.0], SearchOptions(top_k=5))] == ["a"]


def test_add_replaces_existing_parent_chunk(make_database) -> None:
    db = make_database(3)
    rid = db.add(DocumentEmbedding(external_id="a", vector=[1.0, 0.0, 0.0], text="v1"))

    again = db.add(DocumentEmbedding(external_id="a", vector=[0.0, 1.0, 0.0], text="v2"))

    assert again == rid
    assert db.get(rid).text == "v2"
    assert db.get_metrics().records_total == 1


def test_failed_commit_rolls_back_every_step(make_database, hash_model, monkeypatch, caplog) -> None:
    db = make_database()
    chunking = ChunkingOptions(chunk_size=10, chunk_overlap=0)
    original_ids = db.upsert_text_document("doc", "a" * 30, None, hash_model, chunking=chunking)
    original_texts = [db.get(rid).text for rid in original_ids]

    from VectorRAG.lsh import LshIndex

    real_insert = LshIndex.insert
    calls = {"n": 0}

    def _flaky_insert(self, record_id, vector):
        calls["n"] += 1
        if calls["n"] == 2:
            raise RuntimeError("index failure")
        return real_insert(self, record_id, vector)

    monkeypatch.setattr(LshIndex, "insert", _flaky_insert)
    caplog.set_level(logging.WARNING, logger="VectorRAG")
    with pytest.raises(RuntimeError, match="index failure"):
        db.upsert_text_document("doc", "b" * 20, None, hash_model, chunking=chunking)
    monkeypatch.setattr(LshIndex, "insert", real_insert)

    assert [db.get(rid).text for rid in original_ids] == original_texts
    assert all(db.get(rid).active for rid in original_ids)
    assert db.get_metrics().records_active == 3
    assert any(record.msg == "vectorrag-rollback" for record in caplog.records)


def test_delete_document_tombstones_all_chunks(make_database, hash_model) -> None:
    db = make_database()
    db.upsert_text_document("doc", "q" * 45, None, hash_model, chunking=ChunkingOptions(chunk_size=15, chunk_overlap=0))
    db.upsert_text_document("other", "keep this", None, hash_model)

    assert db.delete_document("doc") == 3
    assert db.delete_document("doc") == 0
    assert db.get_metrics().records_active == 1


def test_grouping_returns_unique_parents(make_database) -> None:
    db = make_database(2)
    db.add_batch(
        [
            DocumentEmbedding("p1", [1.0, 0.1], text="first", parent_external_id="p1", chunk_index=0),
            DocumentEmbedding("p1", [1.0, 0.0], text="best", parent_external_id="p1", chunk_index=1),
            DocumentEmbedding("p2", [0.5, 0.5], text="second", parent_external_id="p2", chunk_index=0),
        ]
    )

    hits = db.search([1.0, 0.0], SearchOptions(top_k=5, group_by_parent_document=True))

    assert [hit.parent_external_id for hit in hits] == ["p1", "p2"]
    assert hits[0].evidence_chunk_index == 1
    assert hits[0].evidence_text == "best"


def test_alpha_zero_ranks_by_lexical_overlap(make_database) -> None:
    db = make_database(2)
    db.add_batch(
        [
            DocumentEmbedding("near", [1.0, 0.0], text="unrelated words"),
            DocumentEmbedding("lexical", [0.0, 1.0], text="reset password steps"),
        ]
    )

    hits = db.search(
        [1.0, 0.0], SearchOptions(top_k=2, use_hybrid=True, text_query="reset password", alpha=0.0)
    )

    assert [hit.external_id for hit in hits] == ["lexical", "near"]
    assert hits[0].score == pytest.approx(2 / 3)


def test_top_k_and_tie_break_by_lower_id(make_database) -> None:
    db = make_database(2, options=DatabaseOptions(query_cache_capacity=0))
    ids = db.add_batch([DocumentEmbedding(f"d{i}", [1.0, 0.0]) for i in range(4)])

    hits = db.search([1.0, 0.0], SearchOptions(top_k=2))

    assert [hit.record_id for hit in hits] == ids[:2]


def test_search_rejects_wrong_query_dimension(make_database) -> None:
    db = make_database(3)

    with pytest.raises(DimensionMismatchError):
        db.search([1.0, 0.0])
    assert db.get_metrics().queries_total == 0


def test_empty_database_returns_no_results(make_database) -> None:
    assert make_database(3).search([1.0, 0.0, 0.0]) == []


def test_query_metrics_track_latency(support_corpus, hash_model) -> None:
    for text in ("vpn", "password", "pricing"):
        support_corpus.search(hash_model.embed(text))

    metrics = support_corpus.get_metrics()
    assert metrics.queries_total == 3
    assert metrics.avg_query_latency >= 0.0
    assert metrics.records_active <= metrics.records_total


def test_compact_renumbers_and_preserves_results(make_database, hash_model) -> None:
    db = make_database()
    db.upsert_text_document("a", "alpha document text", None, hash_model)
    db.upsert_text_document("b", "beta document text", None, hash_model)
    db.upsert_text_document("c", "gamma document text", None, hash_model)
    db.delete_document("a")

    remap = db.compact()

    assert remap == {1: 0, 2: 1}
    hits = db.search(hash_model.embed("gamma"), SearchOptions(top_k=1))
    assert hits[0].external_id == "c"
    assert hits[0].record_id == 1
    assert db.get_metrics().records_total == 3


def test_cache_is_not_invalidated_by_writes_until_cleared(make_database) -> None:
    db = make_database(2)
    db.add(DocumentEmbedding("first", [1.0, 0.0]))
    assert [h.external_id for h in db.search([1.0, 0.0], SearchOptions(top_k=5))] == ["first"]

    db.add(DocumentEmbedding("second", [1.0, 0.0]))
    assert [h.external_id for h in db.search([1.0, 0.0], SearchOptions(top_k=5))] == ["first"]

    db.clear_cache()
    assert [h.external_id for h in db.search([1.0, 0.0], SearchOptions(top_k=5))] == ["first", "second"]


def test_async_ingestion_uses_aembed(make_database, hash_model) -> None:
    db = make_database()

    ids = asyncio.run(db.upsert_text_document_async("doc", "async ingestion works", None, hash_model))

    assert len(ids) == 1
    hits = db.search(hash_model.embed("async ingestion"), SearchOptions(top_k=1))
    assert hits[0].external_id == "doc"


def test_async_ingestion_accepts_sync_model(make_database, hash_model) -> None:
    class _SyncOnly:
        dimension = hash_model.dimension

        def embed(self, text):
            return hash_model.embed(text)

    db = make_database()
    ids = asyncio.run(db.upsert_text_document_async("doc", "sync model", None, _SyncOnly()))

    assert db.get(ids[0]).text == "sync model"


def test_from_config_builds_equivalent_database() -> None:
    config = VectorRAGConfig.from_dict(
        {"dimension": 4, "lsh": {"bands": 2, "bits_per_band": 4}, "options": {"query_cache_capacity": 0}}
    )

    db = VectorRAGDatabase.from_config(config)

    assert db.dimension == 4
    assert db.config.lsh.bands == 2
    assert db.config.options.query_cache_capacity == 0


def test_invalid_construction_arguments() -> None:
    with pytest.raises(InvalidConfigurationError):
        VectorRAGDatabase(0)
    with pytest.raises(InvalidConfigurationError):
        VectorRAGDatabase(4, LshConfig(bands=0))
    with pytest.raises(InvalidConfigurationError):
        SearchOptions(top_k=0)
    with pytest.raises(InvalidConfigurationError):
        SearchOptions(alpha=1.5)


def test_unnormalised_storage_still_ranks_by_cosine(make_database) -> None:
    db = make_database(
        2, options=DatabaseOptions(normalize_vectors_on_add=False, normalize_query_on_search=False)
    )
    db.add_batch([DocumentEmbedding("long", [10.0, 1.0]), DocumentEmbedding("aligned", [0.5, 0.0])])

    hits = db.search(np.array([2.0, 0.0]), SearchOptions(top_k=2))

    assert [hit.external_id for hit in hits] == ["aligned", "long"]
    assert hits[0].score == pytest.approx(1.0)


def test_write_paths_publish_record_gauges(make_database, hash_model, tmp_path) -> None:
    db = make_database()
    db.upsert_text_document("a", "alpha handbook", None, hash_model)
    [rid] = db.upsert_text_document("b", "beta handbook", None, hash_model)

    def _gauges(database):
        return {sample.name: sample.value for sample in database.observability.metrics.export_gauges()}

    assert _gauges(db) == {"records_active": 2.0, "records_stored": 2.0, "lsh_indexed": 2.0}

    db.tombstone(rid)
    assert _gauges(db) == {"records_active": 1.0, "records_stored": 2.0, "lsh_indexed": 1.0}

    db.compact()
    assert _gauges(db)["records_stored"] == 1.0

    restored = make_database()
    restored.load(db.save(tmp_path / "gauges.json"))
    assert _gauges(restored) == {"records_active": 1.0, "records_stored": 1.0, "lsh_indexed": 1.0}


def test_metadata_fields_must_be_snapshot_safe() -> None:
    with pytest.raises(TypeError):
        DocumentMetadata(department=7)  # type: ignore[arg-type]
    with pytest.raises(TypeError):
        DocumentMetadata(attributes={"score": float("nan")})
    assert DocumentMetadata(attributes={"tags": ["a", "b"], "rank": 2}).get("rank") == 2
