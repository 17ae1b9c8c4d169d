"""
Bulk signature ingestion from Parquet.

Signatures are expected in a list column of integers (``list<uint64>``,
``large_list`` or ``fixed_size_list`` all work). Each record batch is decoded
straight from its Arrow buffers: the list values are flattened once and
reshaped by the per-row list lengths, so no row ever becomes a Python list.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Hashable, Iterator, List, Tuple

import numpy as np
from numpy.typing import NDArray

try:
    import pyarrow as pa  # type: ignore[import-not-found]
    import pyarrow.compute as pc  # type: ignore[import-not-found]
    import pyarrow.parquet as pq  # type: ignore[import-not-found]
except ImportError:  # pragma: no cover - optional dependency
    pa = pc = pq = None  # type: ignore[assignment]

DEFAULT_PARQUET_BATCH_SIZE = 10_000


def iter_parquet_signatures(
    source: Path | str,
    *,
    key_column: str = "key",
    signature_column: str = "signature",
    batch_size: int = DEFAULT_PARQUET_BATCH_SIZE,
) -> Iterator[Tuple[List[Hashable], NDArray[np.uint64]]]:
    """
    Yield ``(keys, signatures)`` batches from a Parquet file.

    ``signatures`` is an ``(n, num_hash)`` uint64 matrix aligned with ``keys``.

    Raises
    ------
    ImportError
        If ``pyarrow`` is not installed.
    FileNotFoundError
        If ``source`` does not exist.
    ValueError
        If a column is missing, the signature column is not a list of
        integers, or a batch holds null, empty, negative or ragged signatures.
    """
    if pq is None:
        raise ImportError(
            "Reading signatures from Parquet requires pyarrow "
            "(pip install 'lshforest[parquet]')"
        )
    if batch_size <= 0:
        raise ValueError("batch_size must be greater than zero")

    path = Path(source).expanduser()
    if not path.is_file():
        raise FileNotFoundError(f"Parquet source '{path}' does not exist")

    parquet_file = pq.ParquetFile(path)
    schema = parquet_file.schema_arrow
    missing = [name for name in (key_column, signature_column) if name not in schema.names]
    if missing:
        raise ValueError(f"Columns {missing} not present in {path} (has {schema.names})")
    _check_signature_type(schema.field(signature_column).type, signature_column)

    for batch in parquet_file.iter_batches(
        batch_size=batch_size, columns=[key_column, signature_column]
    ):
        if batch.num_rows == 0:
            continue
        keys = batch.column(key_column).to_pylist()
        yield keys, signature_matrix(batch.column(signature_column))


def signature_matrix(column: Any) -> NDArray[np.uint64]:
    """
    Turn an Arrow list array of equal-length integer lists into a uint64 matrix.

    Raises
    ------
    ValueError
        On null rows, empty or ragged lists, or negative hash values.
    """
    if column.null_count:
        raise ValueError(f"{column.null_count} null signature(s) in batch")

    lengths = pc.list_value_length(column).to_numpy(zero_copy_only=False)
    width = int(lengths[0]) if len(lengths) else 0
    if width == 0:
        raise ValueError("Signatures must not be empty")
    if (lengths != width).any():
        bad = int(lengths[np.argmax(lengths != width)])
        raise ValueError(
            f"All signatures must have the same length; expected {width}, found {bad}"
        )

    values = column.flatten()
    if values.null_count:
        raise ValueError("Signatures must not contain null hash values")
    flat = values.to_numpy(zero_copy_only=False)
    if flat.dtype.kind == "i" and (flat < 0).any():
        raise ValueError("Signatures must not contain negative hash values")
    return flat.astype(np.uint64, copy=False).reshape(len(column), width)


def _check_signature_type(dtype: Any, name: str) -> None:
    is_list = (
        pa.types.is_list(dtype)
        or pa.types.is_large_list(dtype)
        or pa.types.is_fixed_size_list(dtype)
    )
    if not is_list or not pa.types.is_integer(dtype.value_type):
        raise ValueError(f"Column '{name}' must be a list of integers, found {dtype}")
