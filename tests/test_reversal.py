"""
test_reversal.py — Unit Tests for Reversal Keys and Fast Restoration
======================================================================
"""

import os
from dataclasses import replace

import pytest
from proof_core import vdf
from proof_core.binding import create_chunk_bindings
from proof_core.errors import RestorationVerificationError
from proof_core.models import NodeIdentity, ReversalKey
from proof_core.reversal import (
    apply_transform,
    generate_reversal_key,
    restore_original_data,
)
from proof_core.vdf import VDFEngine


def completed_state(identity, data):
    engine = VDFEngine(min_iterations=200, checkpoint_interval=50)
    binding = create_chunk_bindings(data, identity)
    state = engine.initialize(0, data, binding, b"\x00" * 32)
    return engine.run(state)


class TestReversalKey:
    """Tests for reversal key generation."""

    def test_requires_completed_transform(self, identity):
        engine = VDFEngine(min_iterations=200, checkpoint_interval=50)
        binding = create_chunk_bindings(b"data", identity)
        state = engine.initialize(0, b"data", binding, b"\x00" * 32)
        with pytest.raises(ValueError, match="not completed"):
            generate_reversal_key(b"data", state)

    def test_key_fields(self, identity):
        state = completed_state(identity, b"data")
        key = generate_reversal_key(b"data", state)
        assert len(key.transform_key) == 32
        assert len(key.reversal_matrix) == 32
        assert len(key.parameters.nonce) == 8
        assert key.parameters.iterations == 200
        assert key.parameters.seed == state.initial_state

    def test_size_independent_of_chunk_size(self, identity):
        small = generate_reversal_key(b"a", completed_state(identity, b"a"))
        big_data = os.urandom(64 * 1024)
        big = generate_reversal_key(big_data, completed_state(identity, big_data))
        assert small.size_bytes == big.size_bytes

    def test_serialization(self, identity):
        key = generate_reversal_key(b"data", completed_state(identity, b"data"))
        assert ReversalKey.from_dict(key.to_dict()) == key


class TestTransformAndRestore:
    """Tests for applying and undoing the reversal transform."""

    def test_restore_returns_original(self, identity):
        data = os.urandom(4096)
        key = generate_reversal_key(data, completed_state(identity, data))
        mutated = apply_transform(data, key)
        assert mutated != data
        assert len(mutated) == len(data)
        assert restore_original_data(mutated, key) == data

    def test_empty_chunk(self, identity):
        key = generate_reversal_key(b"", completed_state(identity, b""))
        assert apply_transform(b"", key) == b""
        assert restore_original_data(b"", key) == b""

    def test_single_byte_chunk(self, identity):
        key = generate_reversal_key(b"z", completed_state(identity, b"z"))
        assert restore_original_data(apply_transform(b"z", key), key) == b"z"

    def test_identical_data_differs_per_identity(self, identity, location):
        data = b"same content for both nodes"
        other = NodeIdentity.generate(location)
        a = apply_transform(data, generate_reversal_key(data, completed_state(identity, data)))
        b = apply_transform(data, generate_reversal_key(data, completed_state(other, data)))
        assert a != b

    def test_corrupt_mutated_data_rejected(self, identity):
        data = b"important bytes" * 10
        key = generate_reversal_key(data, completed_state(identity, data))
        mutated = bytearray(apply_transform(data, key))
        mutated[3] ^= 0xFF
        with pytest.raises(RestorationVerificationError):
            restore_original_data(bytes(mutated), key)

    def test_wrong_checksum_rejected(self, identity):
        data = b"important bytes"
        key = generate_reversal_key(data, completed_state(identity, data))
        mutated = apply_transform(data, key)
        forged = replace(key, original_checksum=b"\x00" * 32)
        with pytest.raises(RestorationVerificationError):
            restore_original_data(mutated, forged)

    def test_restore_never_iterates(self, identity, monkeypatch):
        """Restoration must not re-run the sequential transform."""
        data = os.urandom(512)
        key = generate_reversal_key(data, completed_state(identity, data))
        mutated = apply_transform(data, key)

        def forbidden(*args, **kwargs):
            raise AssertionError("sequential transform invoked during restore")

        monkeypatch.setattr(vdf, "iterate", forbidden)
        assert restore_original_data(mutated, key) == data
