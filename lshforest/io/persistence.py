"""
Persistence for MinHash LSH indices.

An index is written as ONE compressed NumPy archive (``numpy.savez_compressed``)
with an explicit, versioned layout, and read back with ``allow_pickle=False``
so loading never executes code from the file:

    format_version        int64 scalar
    params                int64 [num_hash, k, l, hash_value_size,
                                 num_indexed_keys, initial_capacity]
    config                float64 [threshold, integration_precision,
                                   false_positive, false_negative]
    keys                  uint8, UTF-8 JSON list of tagged unique keys
    band_{i}_hash_keys    uint8 (n, k * hash_value_size), table order
    band_{i}_key_refs     int64 (n,), positions into ``keys``

Hash keys are stored byte for byte and every entry is kept, including those
added after the last ``index()`` call.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
import zipfile
import zlib
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Hashable, List, Union

import numpy as np

from lshforest._config.config import FORMAT_VERSION, SUPPORTED_HASH_VALUE_SIZES
from lshforest._config.errors import IndexDecodeError
from lshforest.storage import BandStorage, BandTable

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

_DECODE_ERRORS = (
    ValueError,
    KeyError,
    TypeError,
    EOFError,
    zipfile.BadZipFile,
    zlib.error,
    UnicodeDecodeError,
    binascii.Error,
)


@dataclass
class PersistedIndex:
    """Everything needed to rebuild a queryable index."""

    num_hash: int
    threshold: float
    integration_precision: float
    false_positive: float
    false_negative: float
    k: int
    l: int
    hash_value_size: int
    initial_capacity: int
    storage: BandStorage


def save_index(state: PersistedIndex, path: PathLike) -> None:
    """
    Write ``state`` to ``path`` as a single compressed archive.

    Raises
    ------
    TypeError
        If an indexed key is not a str, int, float or bytes value.
    OSError
        If the file cannot be created or written.
    """
    # Keyed by the encoded record: 1 and 1.0 (or 0.0 and -0.0) hash alike.
    key_positions: Dict[str, int] = {}
    encoded_keys: List[List[Any]] = []
    arrays: Dict[str, np.ndarray] = {
        "format_version": np.asarray(FORMAT_VERSION, dtype=np.int64),
        "params": np.asarray(
            [
                state.num_hash,
                state.k,
                state.l,
                state.hash_value_size,
                state.storage.num_indexed_keys,
                state.initial_capacity,
            ],
            dtype=np.int64,
        ),
        "config": np.asarray(
            [
                state.threshold,
                state.integration_precision,
                state.false_positive,
                state.false_negative,
            ],
            dtype=np.float64,
        ),
    }

    width = state.k * state.hash_value_size
    for band_id, table in enumerate(state.storage.tables):
        refs = []
        for entry in table.entries():
            record = _encode_key(entry.key)
            slot = json.dumps(record)
            position = key_positions.get(slot)
            if position is None:
                position = len(encoded_keys)
                key_positions[slot] = position
                encoded_keys.append(record)
            refs.append(position)
        arrays[f"band_{band_id}_hash_keys"] = _pack_hash_keys(table.hash_keys, width)
        arrays[f"band_{band_id}_key_refs"] = np.asarray(refs, dtype=np.int64)

    arrays["keys"] = np.frombuffer(
        json.dumps(encoded_keys).encode("utf-8"), dtype=np.uint8
    )

    output = Path(path)
    # Passing a file object keeps numpy from appending ".npz" to the name.
    with open(output, "wb") as fh:
        np.savez_compressed(fh, **arrays)

    logger.info(
        "Saved MinHash LSH index to %s (%d entries, %d bands)",
        output,
        len(state.storage),
        state.l,
    )


def load_index(path: PathLike) -> PersistedIndex:
    """
    Read an index archive written by :func:`save_index`.

    Raises
    ------
    FileNotFoundError
        If ``path`` does not exist.
    IndexDecodeError
        If the archive is truncated, corrupt or uses another format version.
    OSError
        For any other failure opening or reading the file.
    """
    source = Path(path)
    if not source.exists():
        raise FileNotFoundError(f"Index file not found: {source}")

    with open(source, "rb") as fh:
        try:
            data = np.load(fh, allow_pickle=False)
            if not hasattr(data, "files"):
                raise IndexDecodeError(f"{source} is not an index archive", str(source))
            try:
                state = _decode(data, source)
            finally:
                data.close()
        except IndexDecodeError as exc:
            logger.error("Failed to decode index %s: %s", source, exc)
            raise
        except _DECODE_ERRORS as exc:
            logger.error("Failed to decode index %s: %s", source, exc)
            raise IndexDecodeError(
                f"Corrupt or truncated index file {source}: {exc}", str(source)
            ) from exc

    logger.info(
        "Loaded MinHash LSH index from %s (%d entries, %d bands)",
        source,
        len(state.storage),
        state.l,
    )
    return state


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _decode(data: Any, source: Path) -> PersistedIndex:
    version = int(data["format_version"])
    if version != FORMAT_VERSION:
        raise IndexDecodeError(
            f"Unsupported index format version {version} (expected {FORMAT_VERSION})",
            str(source),
        )

    params = data["params"]
    if params.shape != (6,):
        raise IndexDecodeError(f"Malformed params block in {source}", str(source))
    num_hash, k, l, hash_value_size, num_indexed_keys, initial_capacity = (
        int(value) for value in params
    )
    if num_hash < 1 or k < 1 or l < 1 or k * l > num_hash:
        raise IndexDecodeError(
            f"Invalid banding k={k} l={l} num_hash={num_hash} in {source}", str(source)
        )
    if hash_value_size not in SUPPORTED_HASH_VALUE_SIZES:
        raise IndexDecodeError(
            f"Unsupported hash_value_size {hash_value_size} in {source}", str(source)
        )

    config = data["config"]
    if config.shape != (4,):
        raise IndexDecodeError(f"Malformed config block in {source}", str(source))
    threshold, integration_precision, false_positive, false_negative = (
        float(value) for value in config
    )

    keys = [_decode_key(item) for item in json.loads(data["keys"].tobytes().decode("utf-8"))]

    width = k * hash_value_size
    tables = []
    for band_id in range(l):
        hash_keys = data[f"band_{band_id}_hash_keys"]
        refs = data[f"band_{band_id}_key_refs"]
        if hash_keys.dtype != np.uint8 or hash_keys.ndim != 2 or hash_keys.shape[1] != width:
            raise IndexDecodeError(
                f"Band {band_id} hash keys have unexpected shape {hash_keys.shape}",
                str(source),
            )
        if refs.ndim != 1 or refs.shape[0] != hash_keys.shape[0]:
            raise IndexDecodeError(
                f"Band {band_id} key references do not match its hash keys",
                str(source),
            )
        if refs.size and (refs.min() < 0 or refs.max() >= len(keys)):
            raise IndexDecodeError(
                f"Band {band_id} references unknown keys", str(source)
            )

        table = BandTable()
        table.hash_keys = [row.tobytes() for row in hash_keys]
        table.keys = [keys[int(ref)] for ref in refs]
        tables.append(table)

    return PersistedIndex(
        num_hash=num_hash,
        threshold=threshold,
        integration_precision=integration_precision,
        false_positive=false_positive,
        false_negative=false_negative,
        k=k,
        l=l,
        hash_value_size=hash_value_size,
        initial_capacity=initial_capacity,
        storage=BandStorage.from_tables(
            tables, num_indexed_keys, initial_capacity=initial_capacity
        ),
    )


def _pack_hash_keys(hash_keys: List[bytes], width: int) -> np.ndarray:
    if not hash_keys:
        return np.zeros((0, width), dtype=np.uint8)
    return np.frombuffer(b"".join(hash_keys), dtype=np.uint8).reshape(-1, width)


def _encode_key(key: Hashable) -> List[Any]:
    if isinstance(key, np.generic):
        key = key.item()
    # bool is an int subclass but would not round-trip as one
    if isinstance(key, bool):
        raise TypeError("bool keys cannot be persisted")
    if isinstance(key, str):
        return ["s", key]
    if isinstance(key, int):
        return ["i", key]
    if isinstance(key, float):
        return ["f", key]
    if isinstance(key, bytes):
        return ["b", base64.b64encode(key).decode("ascii")]
    raise TypeError(
        f"Cannot persist key of type {type(key).__name__}; "
        "use str, int, float or bytes keys"
    )


def _decode_key(item: Any) -> Hashable:
    if not isinstance(item, list) or len(item) != 2:
        raise ValueError(f"Malformed key record {item!r}")
    tag, value = item
    if tag == "s" and isinstance(value, str):
        return value
    if tag == "i" and isinstance(value, int):
        return value
    if tag == "f" and isinstance(value, (int, float)):
        return float(value)
    if tag == "b" and isinstance(value, str):
        return base64.b64decode(value, validate=True)
    raise ValueError(f"Unknown key record {item!r}")
