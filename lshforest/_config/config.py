"""
The config module holds package-wide configurables and the small value types
shared between the hashing, optimisation and storage layers.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Hashable, Iterator, List, Tuple

# Byte widths a packed hash value may be truncated to (16, 32 or 64 bits).
SUPPORTED_HASH_VALUE_SIZES: Tuple[int, ...] = (2, 4, 8)

# Recommended default (32-bit packing).
DEFAULT_HASH_VALUE_SIZE = 4

# Step size of the midpoint quadrature used by the K/L optimiser.
INTEGRATION_PRECISION = 0.01

# Version tag written into persisted containers.
FORMAT_VERSION = 1


@dataclass(frozen=True)
class BandKeys:
    """
    Container for the packed band keys produced by a single signature.

    A signature of ``K * L`` hash values is split into ``L`` contiguous bands of
    ``K`` values each. Every band is packed into one fixed-width byte string, and
    two signatures whose packed bytes agree in ANY band become candidates for
    each other.

    Attributes:
        bands: List of byte strings, one per band, in band order.

    Example:
        >>> keys = BandKeys([b'\x01\x00\x02\x00', b'\xff\x00\x00\x00'])
        >>> len(keys)  # Number of bands
        2
    """

    bands: List[bytes]

    def __iter__(self) -> Iterator[bytes]:
        return iter(self.bands)

    def __len__(self) -> int:  # pragma: no cover - trivial
        return len(self.bands)

    def __getitem__(self, band_id: int) -> bytes:
        return self.bands[band_id]


@dataclass(frozen=True)
class Entry:
    """A single row of a band table: packed band key plus the caller's key."""

    hash_key: bytes
    key: Hashable


@dataclass(frozen=True)
class LSHParams:
    """
    Banding parameters chosen by the optimiser.

    Attributes:
        k: Number of hash values per band.
        l: Number of bands (independent band tables).
        false_positive: Integrated probability of reporting a pair whose
            similarity is below the threshold.
        false_negative: Integrated probability of missing a pair whose
            similarity is at or above the threshold.
    """

    k: int
    l: int
    false_positive: float
    false_negative: float

    @property
    def error(self) -> float:
        return self.false_positive + self.false_negative
