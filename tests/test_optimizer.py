"""Tests for the K/L banding optimiser."""

from __future__ import annotations

import math

import pytest

from lshforest import InfeasibleConfigError, KLOptimizer, LSHParams, optimal_kl
from lshforest.utils.br import match_probability


def _reference_error(k: int, l: int, threshold: float, precision: float = 0.01) -> float:
    """Plain-Python midpoint integration of the combined error for one pair."""
    area = 0.0
    x = 0.0
    while x < threshold:
        area += match_probability(x + 0.5 * precision, k, l) * precision
        x += precision
    x = threshold
    while x < 1.0:
        area += (1.0 - match_probability(x + 0.5 * precision, k, l)) * precision
        x += precision
    return area


# ---------------------------------------------------------------------------
# Result sanity
# ---------------------------------------------------------------------------


class TestOptimalKL:
    def test_sanity_for_256_hashes_at_0_6(self):
        params = optimal_kl(256, 0.6)

        assert isinstance(params, LSHParams)
        assert params.k >= 1 and params.l >= 1
        assert params.k * params.l <= 256

        baseline_fp, baseline_fn = KLOptimizer.estimate_rates(1, 1, 0.6)
        assert params.error <= baseline_fp + baseline_fn

    @pytest.mark.parametrize("num_hash,threshold", [(16, 0.3), (32, 0.5), (64, 0.8), (128, 0.9)])
    def test_respects_hash_budget(self, num_hash, threshold):
        params = optimal_kl(num_hash, threshold)
        assert 1 <= params.k <= num_hash
        assert 1 <= params.l <= num_hash
        assert params.k * params.l <= num_hash

    def test_matches_brute_force_minimum(self):
        num_hash, threshold = 24, 0.55
        params = optimal_kl(num_hash, threshold)

        best = min(
            _reference_error(k, l, threshold)
            for l in range(1, num_hash + 1)
            for k in range(1, num_hash // l + 1)
        )
        assert params.error == pytest.approx(best, abs=1e-9)
        assert _reference_error(params.k, params.l, threshold) == pytest.approx(best, abs=1e-9)

    def test_reported_rates_match_estimate(self):
        params = optimal_kl(64, 0.7)
        fp, fn = KLOptimizer.estimate_rates(params.k, params.l, 0.7)
        assert params.false_positive == pytest.approx(fp)
        assert params.false_negative == pytest.approx(fn)

    def test_single_hash_yields_single_band(self):
        params = optimal_kl(1, 0.5)
        assert (params.k, params.l) == (1, 1)

    def test_higher_threshold_prefers_longer_bands(self):
        low = optimal_kl(128, 0.3)
        high = optimal_kl(128, 0.9)
        assert high.k >= low.k

    def test_threshold_bounds_are_feasible(self):
        zero = optimal_kl(32, 0.0)
        one = optimal_kl(32, 1.0)
        assert zero.false_positive == 0.0
        assert one.false_negative == 0.0

    def test_precision_is_configurable(self):
        coarse = optimal_kl(64, 0.6, precision=0.1)
        assert coarse.k * coarse.l <= 64
        fp, fn = KLOptimizer.estimate_rates(coarse.k, coarse.l, 0.6, precision=0.1)
        assert coarse.error == pytest.approx(fp + fn)


# ---------------------------------------------------------------------------
# Infeasible configurations
# ---------------------------------------------------------------------------


class TestInfeasibleConfig:
    @pytest.mark.parametrize("num_hash", [0, -1])
    def test_num_hash_must_be_positive(self, num_hash):
        with pytest.raises(InfeasibleConfigError, match="num_hash"):
            optimal_kl(num_hash, 0.5)

    @pytest.mark.parametrize("threshold", [-0.01, 1.01, math.nan, math.inf])
    def test_threshold_must_be_in_unit_interval(self, threshold):
        with pytest.raises(InfeasibleConfigError, match="threshold"):
            optimal_kl(16, threshold)

    def test_infeasible_is_value_error(self):
        with pytest.raises(ValueError):
            optimal_kl(0, 0.5)

    @pytest.mark.parametrize("precision", [0.0, -0.01])
    def test_precision_must_be_positive(self, precision):
        with pytest.raises(ValueError, match="precision"):
            optimal_kl(16, 0.5, precision=precision)
