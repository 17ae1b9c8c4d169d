"""Shared test fixtures."""

from __future__ import annotations

import numpy as np
import pytest

from lshforest import MinHashLSH

UINT64_MAX = np.iinfo(np.uint64).max


def random_signature(size: int, seed: int) -> np.ndarray:
    """Independent random uint64 signature, reproducible from ``seed``."""
    gen = np.random.default_rng(seed)
    return gen.integers(0, UINT64_MAX, size=size, dtype=np.uint64, endpoint=True)


@pytest.fixture
def rng() -> np.random.Generator:
    """Seeded random generator for deterministic tests."""
    return np.random.default_rng(12345)


@pytest.fixture
def make_signature():
    """Factory for seeded random signatures."""
    return random_signature


@pytest.fixture
def make_lsh():
    """Factory for creating MinHashLSH with sensible test defaults."""

    def _make(
        num_hash: int = 64,
        threshold: float = 0.5,
        hash_value_size: int = 4,
        initial_capacity: int = 0,
    ) -> MinHashLSH:
        return MinHashLSH(
            num_hash,
            threshold,
            hash_value_size=hash_value_size,
            initial_capacity=initial_capacity,
        )

    return _make
