"""
test_transform.py — Unit Tests for the Write Path Pipeline
============================================================
"""

import threading

import pytest
from proof_core.binding import check_chunk_bindings
from proof_core.chunker import reassemble_file
from proof_core.errors import ChunkPlanError, StorageConflictError, TransformCancelledError
from proof_core.models import ProtocolConfig
from proof_core.reversal import restore_original_data
from proof_core.vdf import chain_seed, derive_initial_state, verify_vdf_result
from storage_node.services.chunk_store import ChunkStore
from storage_node.services.transform import TransformJob, TransformPipeline


class TestTransformPipeline:
    """Tests for the TransformPipeline class."""

    def test_produces_one_artifact_per_chunk(self, identity, small_config):
        chunks = TransformPipeline(identity, small_config).transform_file(b"x" * 100)
        assert [c.chunk_index for c in chunks] == [0, 1, 2, 3]

    def test_chunks_chain_sequentially(self, identity, small_config):
        chunks = TransformPipeline(identity, small_config).transform_file(b"abcdefgh" * 10)
        previous = chain_seed(identity.public_key, identity.location, 0)
        for chunk in chunks:
            piece = restore_original_data(chunk.mutated_data, chunk.reversal_key)
            assert chunk.proof.initial_state == derive_initial_state(piece, chunk.binding, previous)
            previous = chunk.proof.final_state

    def test_copies_differ(self, identity, small_config):
        pipeline = TransformPipeline(identity, small_config)
        a = pipeline.transform_file(b"same file" * 4, copy_index=0)
        b = pipeline.transform_file(b"same file" * 4, copy_index=1)
        assert a[0].mutated_data != b[0].mutated_data

    def test_artifacts_verify_and_restore(self, identity, small_config):
        data = bytes(range(256))
        chunks = TransformPipeline(identity, small_config).transform_file(data)
        pieces = [restore_original_data(c.mutated_data, c.reversal_key) for c in chunks]
        assert reassemble_file(pieces) == data
        for chunk, piece in zip(chunks, pieces):
            check_chunk_bindings(piece, chunk.binding, identity.public_key, identity.location)
            verify_vdf_result(chunk.proof, identity.public_key, 200, 50, segments=range(5))

    def test_small_file_transforms_empty_chunks(self, identity, small_config):
        chunks = TransformPipeline(identity, small_config).transform_file(b"ab")
        assert [len(c.mutated_data) for c in chunks] == [1, 1, 0, 0]
        assert all(len(c.proof.checkpoints) == 4 for c in chunks)

    def test_stores_when_store_given(self, tmp_path, identity, small_config):
        store = ChunkStore(str(tmp_path))
        TransformPipeline(identity, small_config, store=store).transform_file(b"data" * 10)
        assert store.list_chunks(identity.node_id) == [0, 1, 2, 3]

    def test_progress_callback(self, identity, small_config):
        seen = []
        TransformPipeline(identity, small_config).transform_file(
            b"data" * 10, progress_callback=lambda done, total: seen.append((done, total))
        )
        assert seen == [(1, 4), (2, 4), (3, 4), (4, 4)]

    def test_empty_file_raises(self, identity, small_config):
        with pytest.raises(ChunkPlanError):
            TransformPipeline(identity, small_config).transform_file(b"")

    def test_cancel_before_start(self, identity, small_config):
        cancel = threading.Event()
        cancel.set()
        with pytest.raises(TransformCancelledError):
            TransformPipeline(identity, small_config).transform_file(b"data", cancel_event=cancel)

    def test_cancel_midway_frees_slots(self, tmp_path, identity, small_config):
        """A run cancelled after two chunks leaves nothing behind and can be redone."""
        store = ChunkStore(str(tmp_path))
        pipeline = TransformPipeline(identity, small_config, store=store)
        cancel = threading.Event()

        def stop_after_two(done, total):
            if done == 2:
                cancel.set()

        with pytest.raises(TransformCancelledError):
            pipeline.transform_file(
                b"data" * 10, cancel_event=cancel, progress_callback=stop_after_two
            )
        assert store.list_chunks(identity.node_id) == []

        pipeline.transform_file(b"data" * 10)
        assert store.list_chunks(identity.node_id) == [0, 1, 2, 3]

    def test_failed_run_frees_slots(self, tmp_path, identity, small_config):
        """Any error mid-run discards the chunks that run stored."""
        store = ChunkStore(str(tmp_path))

        def explode(done, total):
            raise RuntimeError("disk full")

        with pytest.raises(RuntimeError):
            TransformPipeline(identity, small_config, store=store).transform_file(
                b"data" * 10, progress_callback=explode
            )
        assert store.list_chunks(identity.node_id) == []

    def test_complete_copy_survives_rerun(self, tmp_path, identity, small_config):
        """Transforming an already stored copy again conflicts without deleting it."""
        store = ChunkStore(str(tmp_path))
        pipeline = TransformPipeline(identity, small_config, store=store)
        pipeline.transform_file(b"data" * 10)
        with pytest.raises(StorageConflictError):
            pipeline.transform_file(b"data" * 10)
        assert store.list_chunks(identity.node_id) == [0, 1, 2, 3]


class TestTransformJob:
    """Tests for background transform jobs."""

    def test_job_completes(self, identity, small_config):
        job = TransformJob(TransformPipeline(identity, small_config), b"job data" * 5)
        chunks = job.result(timeout=30)
        assert len(chunks) == 4
        assert job.done()
        assert job.status == "completed"
        assert job.chunks_done == 4

    def test_job_cancel(self, identity):
        config = ProtocolConfig(
            standard_chunk_count=4, min_iterations=2_000_000, checkpoint_interval=1_000
        )
        job = TransformJob(TransformPipeline(identity, config), b"long job" * 5)
        job.cancel()
        with pytest.raises(TransformCancelledError):
            job.result(timeout=30)
        assert job.status == "cancelled"
