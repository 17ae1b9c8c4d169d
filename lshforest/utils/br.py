"""
Optimal Band/Row (K/L) Calculator for MinHash LSH

Searches every (K, L) pair with ``K * L <= num_hash`` for the banding that
minimises the summed false-positive and false-negative probability at a
given Jaccard threshold. Probabilities are integrated numerically with a
fixed-step midpoint rule; the pairs are evaluated in vectorised numpy chunks.
"""

import logging
import math
from typing import Iterator, List, Tuple

import numpy as np

from lshforest._config.config import INTEGRATION_PRECISION, LSHParams
from lshforest._config.errors import InfeasibleConfigError

logger = logging.getLogger(__name__)

# Number of (K, L) pairs evaluated per numpy batch.
_CHUNK_SIZE = 4096


def match_probability(j, k, l):
    """
    Probability that two sets with Jaccard ``j`` agree fully in at least one band.

    Broadcasts over numpy arrays as well as plain floats.
    """
    return 1.0 - (1.0 - j**k) ** l


class KLOptimizer:
    """
    Exhaustive K/L optimiser for MinHash LSH banding.

    For a candidate pair the S-curve ``P(j) = 1 - (1 - j^K)^L`` gives the
    probability that a pair with similarity ``j`` becomes a candidate. The
    false-positive mass is ``P`` integrated over ``[0, t]`` and the
    false-negative mass is ``1 - P`` integrated over ``[t, 1]``.

    Enumeration runs L in the outer loop and K in the inner loop, and only a
    strictly smaller error replaces the current best, so among equal-error
    pairs the first one found is kept.
    """

    @staticmethod
    def find_optimal_kl(
        num_hash: int,
        threshold: float,
        precision: float = INTEGRATION_PRECISION,
    ) -> LSHParams:
        """
        Find the (K, L) pair with the smallest combined error.

        Args:
            num_hash: Length of the MinHash signatures (number of permutations).
            threshold: Target Jaccard similarity in ``[0, 1]``.
            precision: Quadrature step size; ``0.01`` unless a caller trades
                accuracy for speed.

        Returns:
            LSHParams with the selected K, L and their error probabilities.

        Raises:
            InfeasibleConfigError: If ``num_hash < 1`` or the threshold is not a
                number in ``[0, 1]``.
            ValueError: If ``precision`` is not a positive number.
        """
        KLOptimizer._validate(num_hash, threshold, precision)

        below = KLOptimizer._midpoints(0.0, threshold, precision)
        above = KLOptimizer._midpoints(threshold, 1.0, precision)

        best: Tuple[float, int, int, float, float] = (math.inf, 0, 0, 0.0, 0.0)
        for ks, ls in KLOptimizer._candidate_chunks(num_hash):
            fp = KLOptimizer._integrate_match(below, ks, ls, precision)
            fn = KLOptimizer._integrate_miss(above, ks, ls, precision)
            errors = fp + fn
            idx = int(np.argmin(errors))
            if best[0] > errors[idx]:
                best = (
                    float(errors[idx]),
                    int(ks[idx]),
                    int(ls[idx]),
                    float(fp[idx]),
                    float(fn[idx]),
                )

        _, k, l, fp_best, fn_best = best
        params = LSHParams(k=k, l=l, false_positive=fp_best, false_negative=fn_best)
        logger.debug(
            "Optimal banding for num_hash=%d threshold=%.3f: k=%d l=%d fp=%.5f fn=%.5f",
            num_hash,
            threshold,
            k,
            l,
            fp_best,
            fn_best,
        )
        return params

    @staticmethod
    def estimate_rates(
        k: int,
        l: int,
        threshold: float,
        precision: float = INTEGRATION_PRECISION,
    ) -> Tuple[float, float]:
        """Return the (false positive, false negative) probabilities of one pair."""
        ks = np.asarray([k], dtype=np.float64)
        ls = np.asarray([l], dtype=np.float64)
        fp = KLOptimizer._integrate_match(
            KLOptimizer._midpoints(0.0, threshold, precision), ks, ls, precision
        )
        fn = KLOptimizer._integrate_miss(
            KLOptimizer._midpoints(threshold, 1.0, precision), ks, ls, precision
        )
        return float(fp[0]), float(fn[0])

    @staticmethod
    def _validate(num_hash: int, threshold: float, precision: float) -> None:
        if num_hash < 1:
            raise InfeasibleConfigError(
                f"num_hash must be at least 1 (received {num_hash})",
                {"num_hash": num_hash},
            )
        if not math.isfinite(threshold) or not 0.0 <= threshold <= 1.0:
            raise InfeasibleConfigError(
                f"threshold must be within [0, 1] (received {threshold})",
                {"threshold": threshold},
            )
        if not math.isfinite(precision) or precision <= 0:
            raise ValueError("precision must be greater than zero")

    @staticmethod
    def _midpoints(a: float, b: float, precision: float) -> np.ndarray:
        # Accumulate x rather than multiplying; the step count follows float rounding.
        points: List[float] = []
        x = a
        while x < b:
            points.append(x + 0.5 * precision)
            x += precision
        return np.asarray(points, dtype=np.float64)

    @staticmethod
    def _candidate_chunks(num_hash: int) -> Iterator[Tuple[np.ndarray, np.ndarray]]:
        ks: List[int] = []
        ls: List[int] = []
        for l in range(1, num_hash + 1):
            for k in range(1, num_hash // l + 1):
                ks.append(k)
                ls.append(l)
                if len(ks) == _CHUNK_SIZE:
                    yield np.asarray(ks, dtype=np.float64), np.asarray(ls, dtype=np.float64)
                    ks, ls = [], []
        if ks:
            yield np.asarray(ks, dtype=np.float64), np.asarray(ls, dtype=np.float64)

    @staticmethod
    def _match_curve(xs: np.ndarray, ks: np.ndarray, ls: np.ndarray) -> np.ndarray:
        # (pairs, samples) matrix of P(j) for every candidate pair
        return match_probability(xs[np.newaxis, :], ks[:, np.newaxis], ls[:, np.newaxis])

    @staticmethod
    def _integrate_match(
        xs: np.ndarray, ks: np.ndarray, ls: np.ndarray, precision: float
    ) -> np.ndarray:
        curve = KLOptimizer._match_curve(xs, ks, ls)
        return (curve * precision).sum(axis=1)

    @staticmethod
    def _integrate_miss(
        xs: np.ndarray, ks: np.ndarray, ls: np.ndarray, precision: float
    ) -> np.ndarray:
        curve = 1.0 - KLOptimizer._match_curve(xs, ks, ls)
        return (curve * precision).sum(axis=1)


def optimal_kl(
    num_hash: int,
    threshold: float,
    precision: float = INTEGRATION_PRECISION,
) -> LSHParams:
    """
    Compute the optimal K (hash values per band) and L (bands) for MinHash LSH.

    Args:
        num_hash: Total number of MinHash permutations.
        threshold: Jaccard similarity threshold in ``[0, 1]``.
        precision: Integration step size (default ``0.01``).

    Returns:
        LSHParams(k, l, false_positive, false_negative) with ``k * l <= num_hash``.

    Examples:
        >>> params = optimal_kl(256, 0.6)
        >>> params.k * params.l <= 256
        True
    """
    return KLOptimizer.find_optimal_kl(num_hash, threshold, precision)


# Export main interfaces
__all__ = ["optimal_kl", "match_probability", "KLOptimizer"]
