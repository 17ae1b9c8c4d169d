"""MinHash LSH Forest: approximate Jaccard candidate search over MinHash signatures."""

from __future__ import annotations

from lshforest._config.config import (
    DEFAULT_HASH_VALUE_SIZE,
    INTEGRATION_PRECISION,
    SUPPORTED_HASH_VALUE_SIZES,
    BandKeys,
    Entry,
    LSHParams,
)
from lshforest._config.errors import (
    IndexDecodeError,
    InfeasibleConfigError,
    LSHForestError,
    SignatureLengthError,
)
from lshforest.core.main import (
    MinHashLSH,
    new_minhash_lsh,
    new_minhash_lsh16,
    new_minhash_lsh32,
    new_minhash_lsh64,
)
from lshforest.hash.lsh import HashKeyPacker, pack
from lshforest.utils.br import KLOptimizer, optimal_kl

__version__ = "0.1.0"

__all__ = [
    "MinHashLSH",
    "new_minhash_lsh",
    "new_minhash_lsh16",
    "new_minhash_lsh32",
    "new_minhash_lsh64",
    "HashKeyPacker",
    "pack",
    "KLOptimizer",
    "optimal_kl",
    "BandKeys",
    "Entry",
    "LSHParams",
    "LSHForestError",
    "SignatureLengthError",
    "InfeasibleConfigError",
    "IndexDecodeError",
    "DEFAULT_HASH_VALUE_SIZE",
    "INTEGRATION_PRECISION",
    "SUPPORTED_HASH_VALUE_SIZES",
]
