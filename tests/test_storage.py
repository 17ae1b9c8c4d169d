"""Tests for the in-memory band tables."""

from __future__ import annotations

import pytest

from lshforest import BandKeys, Entry
from lshforest.storage import BandStorage, BandTable


def _table(*rows):
    table = BandTable()
    for hash_key, key in rows:
        table.append(hash_key, key)
    return table


class TestBandTable:
    def test_sort_orders_by_hash_key(self):
        table = _table((b"\x03", "c"), (b"\x01", "a"), (b"\x02", "b"))
        table.sort()
        assert table.hash_keys == [b"\x01", b"\x02", b"\x03"]
        assert table.keys == ["a", "b", "c"]

    def test_lookup_collects_equal_run(self):
        table = _table((b"\x02", "x"), (b"\x01", "a"), (b"\x02", "y"), (b"\x03", "z"))
        table.sort()
        assert sorted(table.lookup(b"\x02", len(table))) == ["x", "y"]

    def test_lookup_missing_key(self):
        table = _table((b"\x01", "a"), (b"\x03", "c"))
        table.sort()
        assert table.lookup(b"\x02", len(table)) == []
        assert table.lookup(b"\x04", len(table)) == []
        assert table.lookup(b"\x00", len(table)) == []

    def test_lookup_respects_limit(self):
        table = _table((b"\x01", "a"), (b"\x01", "b"))
        assert table.lookup(b"\x01", 1) == ["a"]
        assert table.lookup(b"\x01", 0) == []

    def test_entries(self):
        table = _table((b"\x01", "a"))
        assert list(table.entries()) == [Entry(b"\x01", "a")]


class TestBandStorage:
    def test_add_grows_every_table(self):
        storage = BandStorage(3)
        storage.add("k", BandKeys([b"a", b"b", b"c"]))
        assert [len(t) for t in storage.tables] == [1, 1, 1]
        assert len(storage) == 1

    def test_add_rejects_wrong_band_count_without_partial_append(self):
        storage = BandStorage(3)
        with pytest.raises(ValueError, match="Expected 3 band keys"):
            storage.add("k", BandKeys([b"a", b"b"]))
        assert [len(t) for t in storage.tables] == [0, 0, 0]

    def test_unfrozen_rows_are_invisible(self):
        storage = BandStorage(1)
        storage.add("a", BandKeys([b"x"]))
        assert storage.get_bucket(0, b"x") == []
        storage.freeze()
        assert storage.get_bucket(0, b"x") == ["a"]
        storage.add("b", BandKeys([b"x"]))
        assert storage.get_bucket(0, b"x") == ["a"]
        assert list(storage.indexed_keys()) == ["a"]

    def test_constructor_validation(self):
        with pytest.raises(ValueError, match="num_bands"):
            BandStorage(0)
        with pytest.raises(ValueError, match="initial_capacity"):
            BandStorage(2, initial_capacity=-1)

    def test_from_tables_validation(self):
        with pytest.raises(ValueError, match="differ in length"):
            BandStorage.from_tables([_table((b"a", 1)), BandTable()], 0)
        with pytest.raises(ValueError, match="num_indexed_keys"):
            BandStorage.from_tables([_table((b"a", 1))], 2)
        with pytest.raises(ValueError, match="At least one"):
            BandStorage.from_tables([], 0)

        storage = BandStorage.from_tables([_table((b"a", 1)), _table((b"b", 1))], 1)
        assert storage.num_bands == 2
        assert storage.get_bucket(1, b"b") == [1]

    def test_from_tables_keeps_capacity_hint(self):
        storage = BandStorage.from_tables([_table((b"a", 1))], 1, initial_capacity=64)
        assert storage.initial_capacity == 64
        with pytest.raises(ValueError, match="initial_capacity"):
            BandStorage.from_tables([_table((b"a", 1))], 1, initial_capacity=-1)
