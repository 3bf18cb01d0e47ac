"""Tests for quantized histograms, quadrant signatures and FAISS shortlisting."""

import numpy as np
import pytest

from otic_vision.histograms import (
    compute_histogram, dominant_bin, quantize_pixels, range_search_histogram_index,
    search_histogram_index, spatial_signature,
)

from conftest import BLUE_BIN, GREEN_BIN, RED_BIN, WHITE_BIN


class TestQuantizePixels:
    """Tests for per-pixel bin assignment."""

    def test_flat_index_layout(self):
        rgb = np.array([[[255, 0, 128]]], dtype=np.uint8)
        # r=3, g=0, b=2 at 4 bins per channel
        assert quantize_pixels(rgb, 4)[0, 0] == 3 * 16 + 0 + 2

    def test_extremes(self):
        rgb = np.array([[[0, 0, 0], [255, 255, 255]]], dtype=np.uint8)
        bins = quantize_pixels(rgb, 8)
        assert bins[0, 0] == 0
        assert bins[0, 1] == 8 ** 3 - 1

    def test_bin_boundaries(self):
        rgb = np.array([[[63, 0, 0], [64, 0, 0]]], dtype=np.uint8)
        bins = quantize_pixels(rgb, 4)
        assert bins[0, 0] == 0
        assert bins[0, 1] == 16


class TestComputeHistogram:
    """Tests for histogram accumulation."""

    def test_sums_to_one(self, noise_image):
        hist = compute_histogram(quantize_pixels(noise_image, 4), 64)
        assert hist.shape == (64,)
        assert hist.sum() == pytest.approx(1.0)
        assert np.all(hist >= 0)

    def test_mask_excludes_pixels(self):
        bin_map = np.array([[1, 2], [2, 2]])
        mask = np.array([[True, False], [False, False]])
        hist = compute_histogram(bin_map, 4, mask)
        assert hist[1] == 1.0
        assert hist[2] == 0.0


class TestSpatialSignature:
    """Tests for quadrant dominant-bin signatures."""

    def test_quadrant_order(self, quadrant_image):
        bin_map = quantize_pixels(quadrant_image, 4)
        signature = spatial_signature(bin_map, 64)
        assert signature.tolist() == [RED_BIN, GREEN_BIN, BLUE_BIN, WHITE_BIN]

    def test_dominant_bin_tie_goes_to_lowest(self):
        assert dominant_bin(np.array([[5, 2], [5, 2]]), 8) == 2

    def test_dominant_bin_empty_region(self):
        bin_map = np.array([[1, 1]])
        assert dominant_bin(bin_map, 4, np.zeros_like(bin_map, dtype=bool)) is None

    def test_empty_quadrant_uses_global_dominant(self):
        bin_map = np.full((4, 4), 7)
        mask = np.zeros((4, 4), dtype=bool)
        mask[:2, :2] = True  # only top-left is opaque
        signature = spatial_signature(bin_map, 8, mask)
        assert signature.tolist() == [7, 7, 7, 7]


class TestSearchHistogramIndex:
    """Tests for FAISS nearest-neighbour preselection."""

    def test_self_match_is_nearest(self):
        rng = np.random.RandomState(0)
        histograms = [rng.dirichlet(np.ones(64)) for _ in range(10)]
        distances, indices = search_histogram_index(histograms, histograms[3], k=3)
        assert indices[0] == 3
        assert distances[0] == pytest.approx(0.0, abs=1e-6)
        assert len(indices) == 3

    def test_k_clamped_to_catalogue(self):
        histograms = [np.eye(64)[0], np.eye(64)[1]]
        _, indices = search_histogram_index(histograms, np.eye(64)[1], k=50)
        assert sorted(indices.tolist()) == [0, 1]

    def test_dimension_mismatch_raises(self):
        histograms = [np.ones(64) / 64]
        with pytest.raises(ValueError, match="dimension"):
            search_histogram_index(histograms, np.ones(128) / 128, k=1)


class TestRangeSearchHistogramIndex:
    """Tests for FAISS radius queries."""

    def test_returns_only_histograms_within_radius(self):
        histograms = [np.eye(64)[0], np.eye(64)[1], 0.9 * np.eye(64)[0] + 0.1 * np.eye(64)[1]]
        found = range_search_histogram_index(histograms, np.eye(64)[0], radius=0.5)
        assert sorted(found.tolist()) == [0, 2]

    def test_zero_hits(self):
        histograms = [np.eye(64)[1], np.eye(64)[2]]
        found = range_search_histogram_index(histograms, np.eye(64)[0], radius=0.1)
        assert len(found) == 0

    def test_dimension_mismatch_raises(self):
        with pytest.raises(ValueError, match="dimension"):
            range_search_histogram_index([np.ones(64) / 64], np.ones(128) / 128, radius=1.0)
