"""
MinHash LSH Forest Index

This module provides the MinHashLSH class that ties the index components
together:
- K/L selection for a target Jaccard threshold (KLOptimizer)
- Band key packing of MinHash signatures (HashKeyPacker)
- Sorted in-memory band tables with binary-search lookup (BandStorage)
- Index persistence and restoration (lshforest.io.persistence)

Architecture overview:
    1. Signature → HashKeyPacker → L band keys (one per band)
    2. Band keys → BandStorage → appended to the L band tables
    3. index() → every table sorted, current rows frozen as queryable
    4. Query → binary search per band → union of matching keys

Signatures come from an external MinHash implementation; anything that
converts to a flat uint64 array works, including ``datasketch.MinHash``.
The index is single-threaded: callers must serialise ``add``/``index`` against
any other call on the same instance.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Callable, Dict, Hashable, Iterable, Sequence, Set, Tuple, Union

import numpy as np

from lshforest._config.config import (
    DEFAULT_HASH_VALUE_SIZE,
    INTEGRATION_PRECISION,
    LSHParams,
)
from lshforest.hash.lsh import (
    HashKeyPacker,
    SignatureLike,
    as_uint64_array,
    validate_hash_value_size,
)
from lshforest.io.persistence import PersistedIndex, load_index, save_index
from lshforest.storage import BandStorage
from lshforest.utils.br import optimal_kl

logger = logging.getLogger(__name__)

# Generic loader function that yields (keys, signatures) batches
Loader = Callable[..., Iterable[Tuple[Sequence[Hashable], np.ndarray]]]


class MinHashLSH:
    """
    MinHash LSH index implemented as an LSH Forest of sorted band tables.

    Each signature is split into L bands of K hash values. Every band is packed
    into a fixed-width byte key and appended to that band's table; a query
    returns every key that shares at least one full band with it.

    Added keys are not searchable until :meth:`index` sorts the tables and
    freezes the current rows. Rows added afterwards stay invisible until the
    next :meth:`index` call.

    Parameters
    ----------
    num_hash : int
        Length of the MinHash signatures (number of permutations).

    threshold : float
        Jaccard similarity threshold in ``[0, 1]`` used to choose K and L.

    hash_value_size : int, default=4
        Bytes kept from every 64-bit hash value when packing band keys: 2, 4
        or 8. Smaller sizes shrink the tables and collide more often.

    initial_capacity : int, default=0
        Expected number of signatures. Recorded for introspection; tables grow
        on demand.

    integration_precision : float, default=0.01
        Step size of the numeric integration used by the K/L optimiser.

    Examples
    --------
    >>> lsh = MinHashLSH(num_hash=256, threshold=0.6)
    >>> lsh.add("doc-1", signature_1)
    >>> lsh.add("doc-2", signature_2)
    >>> lsh.index()
    >>> lsh.query(signature_1)
    {'doc-1', 'doc-2'}
    """

    def __init__(
        self,
        num_hash: int,
        threshold: float,
        *,
        hash_value_size: int = DEFAULT_HASH_VALUE_SIZE,
        initial_capacity: int = 0,
        integration_precision: float = INTEGRATION_PRECISION,
    ) -> None:
        validate_hash_value_size(hash_value_size)
        if initial_capacity < 0:
            raise ValueError("initial_capacity must be >= 0")

        # Runs once per index; the dominant construction cost
        params = optimal_kl(num_hash, threshold, integration_precision)

        self._setup(
            num_hash=num_hash,
            threshold=threshold,
            integration_precision=integration_precision,
            params=params,
            hash_value_size=hash_value_size,
            storage=BandStorage(params.l, initial_capacity=initial_capacity),
        )

    def _setup(
        self,
        *,
        num_hash: int,
        threshold: float,
        integration_precision: float,
        params: LSHParams,
        hash_value_size: int,
        storage: BandStorage,
    ) -> None:
        self._params = params
        self._packer = HashKeyPacker(
            k=params.k,
            l=params.l,
            hash_value_size=hash_value_size,
            num_hash=num_hash,
        )
        self._storage = storage

        # Store configuration for persistence and introspection
        self._config: Dict[str, Any] = {
            "num_hash": num_hash,
            "threshold": threshold,
            "hash_value_size": hash_value_size,
            "initial_capacity": storage.initial_capacity,
            "integration_precision": integration_precision,
        }

    def __repr__(self) -> str:  # pragma: no cover - convenience
        return (
            "MinHashLSH("
            f"num_hash={self._config['num_hash']}, "
            f"threshold={self._config['threshold']}, "
            f"k={self.k}, l={self.l}, "
            f"hash_value_size={self.hash_value_size}"
            ")"
        )

    def __len__(self) -> int:
        """Number of signatures added, indexed or not."""
        return len(self._storage)

    def __contains__(self, key: Hashable) -> bool:
        """Whether ``key`` is among the searchable (indexed) keys."""
        return any(key == indexed for indexed in self._storage.indexed_keys())

    # ---------------------------------------------------------------------
    # Parameters
    # ---------------------------------------------------------------------

    @property
    def k(self) -> int:
        return self._params.k

    @property
    def l(self) -> int:
        return self._params.l

    @property
    def hash_value_size(self) -> int:
        return self._packer.hash_value_size

    @property
    def num_indexed_keys(self) -> int:
        return self._storage.num_indexed_keys

    @property
    def false_positive(self) -> float:
        return self._params.false_positive

    @property
    def false_negative(self) -> float:
        return self._params.false_negative

    def params(self) -> Tuple[int, int]:
        """Return the banding parameters ``(K, L)``."""
        return self._params.k, self._params.l

    # ---------------------------------------------------------------------
    # Public ingestion API
    # ---------------------------------------------------------------------

    def add(self, key: Hashable, signature: SignatureLike) -> None:
        """
        Add a key with its MinHash signature to the index.

        The key won't be searchable until :meth:`index` is called.

        Parameters:
            key: Hashable identifier returned by queries. The index never
                inspects it beyond equality and hashing.
            signature: ``num_hash`` hash values (or exactly ``K * L``).

        Raises:
            SignatureLengthError: If the signature length is invalid.
            TypeError: If ``key`` is not hashable.
        """
        _require_hashable(key)
        band_keys = self._packer.hash_signature(signature)
        self._storage.add(key, band_keys)

    def add_batch(self, keys: Sequence[Hashable], signatures: np.ndarray) -> None:
        """
        Add many keys at once, packing their signatures in a single numpy pass.

        Parameters:
            keys: Identifiers, one per signature row.
            signatures: 2D array of shape ``(len(keys), num_hash)``.

        Raises:
            ValueError: If the number of keys and signatures differ.
            SignatureLengthError: If the signature rows have an invalid length.
        """
        key_list = list(keys)
        if not key_list:
            return

        arr = as_uint64_array(signatures)
        if arr.ndim != 2 or arr.shape[0] != len(key_list):
            raise ValueError(
                f"Number of keys ({len(key_list)}) does not match "
                f"signature batch of shape {arr.shape}"
            )
        for key in key_list:
            _require_hashable(key)

        band_keys = self._packer.hash_batch(arr)
        self._storage.batch_add(list(zip(key_list, band_keys)))

    def index(self) -> None:
        """
        Make all added keys searchable.

        Sorts every band table by band key and freezes the current row count.
        Calling it again without new additions changes nothing.
        """
        self._storage.freeze()
        logger.debug(
            "Indexed %d keys across %d band tables",
            self._storage.num_indexed_keys,
            self.l,
        )

    def create_signatures(self, *, format: str = "parquet", **loader_kwargs: Any) -> None:
        """
        Bulk-ingest signatures using one of the built-in IO helpers, then index.

        Supported formats:
            - "parquet" / "pq": Load from Parquet files (requires pyarrow)

        Parameters
        ----------
        format : str, default="parquet"
            Data source identifier. Case-insensitive.

        **loader_kwargs : Any
            Format-specific parameters passed to the loader, for Parquet:
            ``source``, ``key_column``, ``signature_column``, ``batch_size``.

        Raises
        ------
        ValueError
            If format is not supported.
        ImportError
            If required dependencies for format are not installed.
        """
        loader = self._resolve_loader(format)

        for keys, signatures in loader(**loader_kwargs):
            self.add_batch(keys, signatures)
        self.index()

    # ---------------------------------------------------------------------
    # Query API
    # ---------------------------------------------------------------------

    def query(self, signature: SignatureLike) -> Set[Hashable]:
        """
        Return the candidate keys sharing at least one band with ``signature``.

        Only keys frozen by the last :meth:`index` call are considered. The
        result is an unordered candidate set; verifying actual similarity is
        left to the caller.

        Raises:
            SignatureLengthError: If the signature length is invalid.
        """
        band_keys = self._packer.hash_signature(signature)
        candidates: Set[Hashable] = set()
        for band_id, hash_key in enumerate(band_keys):
            candidates.update(self._storage.get_bucket(band_id, hash_key))
        return candidates

    # ---------------------------------------------------------------------
    # Introspection
    # ---------------------------------------------------------------------

    def stats(self) -> Dict[str, Any]:
        """
        Return current configuration snapshot for monitoring and debugging.

        Returns
        -------
        Dict[str, Any]
            num_hash, threshold, k, l, hash_value_size, false_positive,
            false_negative, num_entries, num_indexed_keys, initial_capacity.
        """
        return {
            "num_hash": self._config["num_hash"],
            "threshold": self._config["threshold"],
            "k": self.k,
            "l": self.l,
            "hash_value_size": self.hash_value_size,
            "false_positive": self.false_positive,
            "false_negative": self.false_negative,
            "num_entries": len(self._storage),
            "num_indexed_keys": self._storage.num_indexed_keys,
            "initial_capacity": self._config["initial_capacity"],
        }

    # ---------------------------------------------------------------------
    # Persistence helpers
    # ---------------------------------------------------------------------

    def save_to_disk(self, path: Union[str, Path]) -> None:
        """
        Persist the full index, including rows not yet indexed, to one file.

        Examples
        --------
        >>> lsh.save_to_disk("index.npz")
        >>> restored = MinHashLSH.load_from_disk("index.npz")
        """
        save_index(
            PersistedIndex(
                num_hash=self._config["num_hash"],
                threshold=self._config["threshold"],
                integration_precision=self._config["integration_precision"],
                false_positive=self.false_positive,
                false_negative=self.false_negative,
                k=self.k,
                l=self.l,
                hash_value_size=self.hash_value_size,
                initial_capacity=self._config["initial_capacity"],
                storage=self._storage,
            ),
            path,
        )

    @classmethod
    def load_from_disk(cls, path: Union[str, Path]) -> "MinHashLSH":
        """
        Restore an index saved via :meth:`save_to_disk`.

        The restored index is queryable right away with the same frozen prefix
        as the saved one; K and L are read back rather than re-optimised.

        Raises
        ------
        FileNotFoundError
            If the file does not exist.
        IndexDecodeError
            If the file is truncated, corrupt or of an unsupported version.
        """
        state = load_index(path)

        instance = cls.__new__(cls)
        instance._setup(
            num_hash=state.num_hash,
            threshold=state.threshold,
            integration_precision=state.integration_precision,
            params=LSHParams(
                k=state.k,
                l=state.l,
                false_positive=state.false_positive,
                false_negative=state.false_negative,
            ),
            hash_value_size=state.hash_value_size,
            storage=state.storage,
        )
        return instance

    # ---------------------------------------------------------------------
    # Internal helpers
    # ---------------------------------------------------------------------

    def _resolve_loader(self, format: str) -> Loader:
        """
        Map format string to appropriate data loader function.

        Dynamically imports loader modules to avoid unnecessary dependencies.
        """
        fmt = format.lower()

        if fmt in {"parquet", "pq"}:
            from lshforest.io.parquet import iter_parquet_signatures

            return iter_parquet_signatures

        raise ValueError(f"Unsupported signature creation format '{format}'")


def _require_hashable(key: Hashable) -> None:
    try:
        hash(key)
    except TypeError as exc:
        raise TypeError(f"Index keys must be hashable, received {type(key).__name__}") from exc


def new_minhash_lsh(
    num_hash: int,
    threshold: float,
    hash_value_size: int = DEFAULT_HASH_VALUE_SIZE,
    initial_capacity: int = 0,
) -> MinHashLSH:
    """Create an index; 32-bit packing (``hash_value_size=4``) is the recommended default."""
    return MinHashLSH(
        num_hash,
        threshold,
        hash_value_size=hash_value_size,
        initial_capacity=initial_capacity,
    )


def new_minhash_lsh64(num_hash: int, threshold: float, initial_capacity: int = 0) -> MinHashLSH:
    """Index keeping the full 64-bit hash values."""
    return new_minhash_lsh(num_hash, threshold, 8, initial_capacity)


def new_minhash_lsh32(num_hash: int, threshold: float, initial_capacity: int = 0) -> MinHashLSH:
    """Index trimming hash values to their low 32 bits."""
    return new_minhash_lsh(num_hash, threshold, 4, initial_capacity)


def new_minhash_lsh16(num_hash: int, threshold: float, initial_capacity: int = 0) -> MinHashLSH:
    """Index trimming hash values to their low 16 bits."""
    return new_minhash_lsh(num_hash, threshold, 2, initial_capacity)
