"""
Band Key Packing for MinHash LSH

This module turns MinHash signatures into the fixed-width byte strings used as
lookup keys by the band tables. A signature of ``K * L`` unsigned 64-bit hash
values is cut into ``L`` contiguous bands of ``K`` values; each value is
written little-endian and truncated to its ``hash_value_size`` low-order bytes,
and the truncated values of one band are concatenated in signature order.

Truncation is a deliberate coarsening knob: 2-byte packing collides more often
than 8-byte packing, which trades precision for smaller tables.
"""

from __future__ import annotations

from typing import Any, List, Optional, Sequence

import numpy as np
from numpy.typing import NDArray

from lshforest._config.config import (
    DEFAULT_HASH_VALUE_SIZE,
    SUPPORTED_HASH_VALUE_SIZES,
    BandKeys,
)
from lshforest._config.errors import SignatureLengthError

# Anything numpy can turn into a 1-D uint64 array, or an object exposing
# ``hashvalues`` (e.g. ``datasketch.MinHash``).
SignatureLike = Any


def validate_hash_value_size(hash_value_size: int) -> int:
    """Return ``hash_value_size`` if it is one of the supported byte widths."""
    if hash_value_size not in SUPPORTED_HASH_VALUE_SIZES:
        raise ValueError(
            f"hash_value_size must be one of {SUPPORTED_HASH_VALUE_SIZES}, "
            f"received {hash_value_size!r}"
        )
    return hash_value_size


def as_uint64(signature: SignatureLike) -> NDArray[np.uint64]:
    """
    Convert a signature into a flat ``uint64`` array.

    Accepts plain sequences of ints, numpy arrays, and MinHash objects that
    carry their values in a ``hashvalues`` attribute.
    """
    values = getattr(signature, "hashvalues", signature)
    return as_uint64_array(values).reshape(-1)


def as_uint64_array(values: Any) -> NDArray[np.uint64]:
    """
    Convert hash values of any shape to ``uint64``.

    Raises:
        ValueError: If the values are floating point; truncating them would
            make distinct signatures collide.
    """
    arr = np.asarray(values)
    if arr.dtype.kind == "f" and arr.size:
        raise ValueError(
            "MinHash signatures must hold integer hash values, "
            f"received {arr.dtype} data"
        )
    if arr.dtype.kind == "O":
        # Python ints spanning the int64 and uint64 ranges
        return np.asarray(values, dtype=np.uint64)
    return arr.astype(np.uint64, copy=False)


def pack(sub_signature: Sequence[int], hash_value_size: int) -> bytes:
    """
    Pack a sub-signature into a fixed-width hash key.

    Args:
        sub_signature: Ordered hash values of one band.
        hash_value_size: Number of low-order bytes kept per value (2, 4 or 8).

    Returns:
        Byte string of length ``hash_value_size * len(sub_signature)``.

    Example:
        >>> pack([1, 2], 2)
        b'\\x01\\x00\\x02\\x00'
    """
    validate_hash_value_size(hash_value_size)
    values = as_uint64(sub_signature)
    as_bytes = values.astype("<u8").view(np.uint8).reshape(-1, 8)
    return as_bytes[:, :hash_value_size].tobytes()


class HashKeyPacker:
    """
    Splits MinHash signatures into bands and packs each band into a hash key.

    The packer is fully determined by ``k``, ``l`` and ``hash_value_size``, so
    it is never persisted; a loaded index simply builds a new one.

    Typical usage:
        >>> packer = HashKeyPacker(k=4, l=32, hash_value_size=4)
        >>> keys = packer.hash_signature(signature)  # 128 uint64 values
        >>> len(keys)  # one key per band
        32
        >>> len(keys[0])  # 4 values * 4 bytes
        16

    Attributes:
        k: Hash values per band.
        l: Number of bands.
        hash_value_size: Bytes kept from every 64-bit value.
        num_hash: Full signature length produced by the caller's MinHash.
            Must be at least ``k * l``; positions past ``k * l`` are not banded.
        key_size: Length in bytes of every packed band key.
    """

    def __init__(
        self,
        k: int,
        l: int,
        hash_value_size: int = DEFAULT_HASH_VALUE_SIZE,
        num_hash: Optional[int] = None,
    ) -> None:
        if k <= 0:
            raise ValueError("k must be > 0")
        if l <= 0:
            raise ValueError("l must be > 0")
        validate_hash_value_size(hash_value_size)
        if num_hash is None:
            num_hash = k * l
        if num_hash < k * l:
            raise ValueError(
                f"num_hash must be >= k * l (received {num_hash} < {k} * {l})"
            )

        self.k = k
        self.l = l
        self.hash_value_size = hash_value_size
        self.num_hash = num_hash
        self.key_size = k * hash_value_size

    def hash_signature(self, signature: SignatureLike) -> BandKeys:
        """
        Pack one signature into ``l`` band keys.

        Args:
            signature: ``num_hash`` (or exactly ``k * l``) hash values.

        Returns:
            BandKeys with one ``key_size``-byte string per band.

        Raises:
            SignatureLengthError: If the signature length is neither
                ``num_hash`` nor ``k * l``.
        """
        values = self._validate_signature(as_uint64(signature))
        packed = self._pack_bands(values.reshape(1, -1))
        return BandKeys([packed[0, band].tobytes() for band in range(self.l)])

    def hash_batch(self, signatures: NDArray[Any]) -> List[BandKeys]:
        """
        Pack a batch of signatures efficiently.

        Args:
            signatures: 2D array of shape ``(num_signatures, num_hash)``.

        Returns:
            List of BandKeys, one per input row, in the same order.

        Raises:
            ValueError: If the input is not 2D or holds floats.
            SignatureLengthError: If the row length is invalid.
        """
        arr = as_uint64_array(signatures)
        if arr.ndim != 2:
            raise ValueError("Batch input must be a 2D array")
        self._check_length(arr.shape[1])

        packed = self._pack_bands(arr)
        return [
            BandKeys([packed[row, band].tobytes() for band in range(self.l)])
            for row in range(arr.shape[0])
        ]

    def _pack_bands(self, arr: NDArray[np.uint64]) -> NDArray[np.uint8]:
        # (n, k*l) uint64 -> (n, l, k, 8) little-endian bytes -> keep low bytes
        banded = np.ascontiguousarray(arr[:, : self.k * self.l], dtype="<u8")
        as_bytes = banded.view(np.uint8).reshape(arr.shape[0], self.l, self.k, 8)
        return as_bytes[:, :, :, : self.hash_value_size]

    def _validate_signature(self, values: NDArray[np.uint64]) -> NDArray[np.uint64]:
        self._check_length(values.shape[0])
        return values

    def _check_length(self, length: int) -> None:
        if length != self.num_hash and length != self.k * self.l:
            raise SignatureLengthError(
                expected=self.num_hash, received=length, banded=self.k * self.l
            )
