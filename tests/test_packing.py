"""Tests for band key packing."""

from __future__ import annotations

import numpy as np
import pytest

from lshforest import HashKeyPacker, SignatureLengthError, pack
from tests.conftest import random_signature

# ---------------------------------------------------------------------------
# pack()
# ---------------------------------------------------------------------------


class TestPack:
    @pytest.mark.parametrize("hash_value_size", [2, 4, 8])
    def test_length_is_value_size_times_k(self, hash_value_size):
        sig = random_signature(5, seed=1)
        assert len(pack(sig, hash_value_size)) == hash_value_size * 5

    def test_deterministic(self):
        sig = random_signature(16, seed=7)
        assert pack(sig, 4) == pack(sig, 4)
        assert pack(list(int(v) for v in sig), 4) == pack(sig, 4)

    def test_keeps_low_order_bytes_little_endian(self):
        value = 0x0102030405060708
        assert pack([value], 8) == bytes([8, 7, 6, 5, 4, 3, 2, 1])
        assert pack([value], 4) == bytes([8, 7, 6, 5])
        assert pack([value], 2) == bytes([8, 7])

    def test_concatenates_in_signature_order(self):
        assert pack([1, 2], 2) == b"\x01\x00\x02\x00"
        assert pack([2, 1], 2) == b"\x02\x00\x01\x00"

    def test_values_equal_in_kept_bytes_collide(self):
        low = 0xBEEF
        assert pack([low, 0x1234], 2) == pack([(0xFFFF << 16) | low, 0x1234], 2)
        assert pack([low, 0x1234], 8) != pack([(0xFFFF << 16) | low, 0x1234], 8)

    def test_full_width_values(self):
        assert pack([2**64 - 1], 8) == b"\xff" * 8

    def test_float_values_rejected(self):
        with pytest.raises(ValueError, match="integer hash values"):
            pack([1.7, 2.0], 4)

    @pytest.mark.parametrize("hash_value_size", [0, 1, 3, 16])
    def test_unsupported_value_size_rejected(self, hash_value_size):
        with pytest.raises(ValueError, match="hash_value_size"):
            pack([1, 2], hash_value_size)


# ---------------------------------------------------------------------------
# HashKeyPacker
# ---------------------------------------------------------------------------


class TestHashKeyPacker:
    def test_constructor_validation(self):
        with pytest.raises(ValueError, match="k must be > 0"):
            HashKeyPacker(k=0, l=2)
        with pytest.raises(ValueError, match="l must be > 0"):
            HashKeyPacker(k=2, l=0)
        with pytest.raises(ValueError, match="hash_value_size"):
            HashKeyPacker(k=2, l=2, hash_value_size=5)
        with pytest.raises(ValueError, match="num_hash must be >= k"):
            HashKeyPacker(k=4, l=4, num_hash=10)

    def test_bands_match_packed_slices(self):
        packer = HashKeyPacker(k=3, l=4, hash_value_size=4)
        sig = random_signature(12, seed=3)
        keys = packer.hash_signature(sig)

        assert len(keys) == 4
        for band in range(4):
            assert keys[band] == pack(sig[band * 3 : (band + 1) * 3], 4)
            assert len(keys[band]) == packer.key_size == 12

    def test_trailing_values_past_k_times_l_are_ignored(self):
        packer = HashKeyPacker(k=3, l=4, hash_value_size=2, num_hash=14)
        sig = random_signature(14, seed=5)
        other = sig.copy()
        other[12:] = 0

        assert packer.hash_signature(sig).bands == packer.hash_signature(other).bands
        # The banded prefix alone is accepted too
        assert packer.hash_signature(sig[:12]).bands == packer.hash_signature(sig).bands

    @pytest.mark.parametrize("length", [0, 11, 13, 15])
    def test_wrong_length_rejected(self, length):
        packer = HashKeyPacker(k=3, l=4, num_hash=14)
        with pytest.raises(SignatureLengthError) as excinfo:
            packer.hash_signature(random_signature(length, seed=1))
        assert excinfo.value.received == length
        assert isinstance(excinfo.value, ValueError)

    def test_hash_batch_matches_single(self):
        packer = HashKeyPacker(k=4, l=8, hash_value_size=8)
        batch = np.stack([random_signature(32, seed=s) for s in range(5)])

        batched = packer.hash_batch(batch)
        assert len(batched) == 5
        for row, keys in zip(batch, batched):
            assert keys.bands == packer.hash_signature(row).bands

    def test_hash_batch_requires_2d(self):
        packer = HashKeyPacker(k=2, l=2)
        with pytest.raises(ValueError, match="2D"):
            packer.hash_batch(random_signature(4, seed=1))

    def test_hash_batch_checks_row_length(self):
        packer = HashKeyPacker(k=2, l=2)
        with pytest.raises(SignatureLengthError):
            packer.hash_batch(np.zeros((3, 5), dtype=np.uint64))

    def test_accepts_objects_with_hashvalues(self):
        class FakeMinHash:
            def __init__(self, values):
                self.hashvalues = values

        packer = HashKeyPacker(k=2, l=3)
        sig = random_signature(6, seed=9)
        assert packer.hash_signature(FakeMinHash(sig)).bands == packer.hash_signature(sig).bands
