from __future__ import annotations

from bisect import bisect_left
from typing import Hashable, Iterator, List, Sequence, Tuple

from lshforest._config.config import BandKeys, Entry

BucketOperation = Tuple[Hashable, BandKeys]


class BandTable:
    """
    Look-up table for one band, kept as parallel lists sorted by hash key.

    Entries are appended unsorted; ``sort`` orders them by hash key so that a
    lower-bound binary search finds the run of entries sharing a key.
    """

    __slots__ = ("hash_keys", "keys")

    def __init__(self) -> None:
        self.hash_keys: List[bytes] = []
        self.keys: List[Hashable] = []

    def __len__(self) -> int:
        return len(self.hash_keys)

    def append(self, hash_key: bytes, key: Hashable) -> None:
        self.hash_keys.append(hash_key)
        self.keys.append(key)

    def sort(self) -> None:
        """Sort entries ascending by hash key."""
        order = sorted(range(len(self.hash_keys)), key=self.hash_keys.__getitem__)
        self.hash_keys = [self.hash_keys[i] for i in order]
        self.keys = [self.keys[i] for i in order]

    def lookup(self, hash_key: bytes, limit: int) -> List[Hashable]:
        """Return the keys stored under ``hash_key`` among the first ``limit`` entries."""
        start = bisect_left(self.hash_keys, hash_key, 0, limit)
        end = start
        while end < limit and self.hash_keys[end] == hash_key:
            end += 1
        return self.keys[start:end]

    def entries(self) -> Iterator[Entry]:
        for hash_key, key in zip(self.hash_keys, self.keys):
            yield Entry(hash_key, key)


class BandStorage:
    """In-memory storage of the L band tables behind a MinHash LSH index."""

    def __init__(self, num_bands: int, *, initial_capacity: int = 0) -> None:
        if num_bands <= 0:
            raise ValueError("num_bands must be > 0")
        if initial_capacity < 0:
            raise ValueError("initial_capacity must be >= 0")
        self.num_bands = num_bands
        # Python lists grow on demand; the hint is kept for stats only.
        self.initial_capacity = initial_capacity
        self.tables: List[BandTable] = [BandTable() for _ in range(num_bands)]
        self.num_indexed_keys = 0

    def __len__(self) -> int:
        return len(self.tables[0])

    def add(self, key: Hashable, band_keys: BandKeys) -> None:
        """Append one entry per band; all tables grow by exactly one row."""
        if len(band_keys) != self.num_bands:
            raise ValueError(
                f"Expected {self.num_bands} band keys, received {len(band_keys)}"
            )
        for table, hash_key in zip(self.tables, band_keys):
            table.append(hash_key, key)

    def batch_add(self, operations: Sequence[BucketOperation]) -> None:
        """Append a batch of ``(key, band_keys)`` operations in order."""
        for key, band_keys in operations:
            self.add(key, band_keys)

    def freeze(self) -> None:
        """Sort every band table and make all current entries queryable."""
        for table in self.tables:
            table.sort()
        self.num_indexed_keys = len(self.tables[0])

    def get_bucket(self, band_id: int, hash_key: bytes) -> List[Hashable]:
        """Fetch the indexed keys stored under ``hash_key`` in one band."""
        return self.tables[band_id].lookup(hash_key, self.num_indexed_keys)

    def indexed_keys(self) -> Iterator[Hashable]:
        """Iterate the keys of the queryable prefix of the first band table."""
        return iter(self.tables[0].keys[: self.num_indexed_keys])

    @classmethod
    def from_tables(
        cls,
        tables: Sequence[BandTable],
        num_indexed_keys: int,
        *,
        initial_capacity: int = 0,
    ) -> "BandStorage":
        """Rebuild storage from already populated tables (used when loading)."""
        if not tables:
            raise ValueError("At least one band table is required")
        sizes = {len(table) for table in tables}
        if len(sizes) != 1:
            raise ValueError(f"Band tables differ in length: {sorted(sizes)}")
        if not 0 <= num_indexed_keys <= len(tables[0]):
            raise ValueError(
                f"num_indexed_keys {num_indexed_keys} outside [0, {len(tables[0])}]"
            )
        storage = cls(len(tables), initial_capacity=initial_capacity)
        storage.tables = list(tables)
        storage.num_indexed_keys = num_indexed_keys
        return storage
