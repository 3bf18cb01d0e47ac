"""
Quantized RGB histograms, quadrant signatures and FAISS shortlisting.

Each pixel's RGB channels are split into BINS bins apiece, giving a
BINS^3 colour histogram normalized to sum to 1.0. Four quadrant entries
record which bin dominates each corner of the frame, a coarse layout
signal that survives small shifts and scale changes.

For large catalogues, search_histogram_index() narrows the set of
registered products to the nearest neighbours in histogram space before
the exact similarity score is computed.
"""

import logging
from typing import Optional, Sequence, Tuple

import faiss
import numpy as np

logger = logging.getLogger(__name__)


def quantize_pixels(rgb: np.ndarray, bins_per_channel: int) -> np.ndarray:
    """
    Map every pixel to its flat histogram bin index.

    Args:
        rgb: H x W x 3 uint8 image.
        bins_per_channel: Bins per colour channel.

    Returns:
        H x W int64 array of indices r * B^2 + g * B + b in [0, B^3).
    """
    q = rgb.astype(np.int64) * bins_per_channel // 256
    return (q[:, :, 0] * bins_per_channel + q[:, :, 1]) * bins_per_channel + q[:, :, 2]


def compute_histogram(bin_map: np.ndarray,
                      n_bins: int,
                      mask: Optional[np.ndarray] = None) -> np.ndarray:
    """
    Build a histogram over flat bin indices, normalized to sum to 1.0.

    Only pixels where mask is True are counted. Caller guarantees at
    least one pixel is counted.
    """
    values = bin_map[mask] if mask is not None else bin_map.ravel()
    counts = np.bincount(values, minlength=n_bins).astype(np.float64)
    return counts / counts.sum()


def dominant_bin(bin_map: np.ndarray,
                 n_bins: int,
                 mask: Optional[np.ndarray] = None) -> Optional[int]:
    """Most frequent bin in the region, lowest index on ties; None if empty."""
    values = bin_map[mask] if mask is not None else bin_map.ravel()
    if values.size == 0:
        return None
    # argmax returns the first maximum, i.e. the lowest bin index
    return int(np.argmax(np.bincount(values, minlength=n_bins)))


def spatial_signature(bin_map: np.ndarray,
                      n_bins: int,
                      mask: Optional[np.ndarray] = None) -> np.ndarray:
    """
    Dominant bin of each quadrant: top-left, top-right, bottom-left, bottom-right.

    A quadrant with no counted pixels inherits the frame-wide dominant bin
    so every entry stays a valid bin index.
    """
    h, w = bin_map.shape
    hh, hw = h // 2, w // 2
    regions = [
        (slice(0, hh), slice(0, hw)),
        (slice(0, hh), slice(hw, w)),
        (slice(hh, h), slice(0, hw)),
        (slice(hh, h), slice(hw, w)),
    ]

    fallback = dominant_bin(bin_map, n_bins, mask)
    signature = []
    for rows, cols in regions:
        region_mask = mask[rows, cols] if mask is not None else None
        entry = dominant_bin(bin_map[rows, cols], n_bins, region_mask)
        signature.append(fallback if entry is None else entry)

    return np.array(signature, dtype=np.int64)


def _flat_index(histograms: Sequence[np.ndarray], query_histogram: np.ndarray):
    data = np.vstack(histograms).astype(np.float32)
    query = np.asarray(query_histogram, dtype=np.float32).reshape(1, -1)

    if query.shape[1] != data.shape[1]:
        raise ValueError(
            f"Query dimension {query.shape[1]} doesn't match "
            f"index dimension {data.shape[1]}"
        )

    index = faiss.IndexFlatL2(data.shape[1])
    index.add(data)
    return index, query


def search_histogram_index(histograms: Sequence[np.ndarray],
                           query_histogram: np.ndarray,
                           k: int) -> Tuple[np.ndarray, np.ndarray]:
    """
    Find the k registered histograms nearest to the query (L2 distance).

    Builds an exact FlatL2 index over the given vectors; the caller
    decides when the catalogue is large enough for this preselection
    to pay off.

    Args:
        histograms: Registered histogram vectors, all the query's length.
        query_histogram: Query histogram vector.
        k: Number of neighbours to return (clamped to the catalogue size).

    Returns:
        Tuple of (distances, indices) 1-D arrays, nearest first.

    Raises:
        ValueError: If query dimensions don't match the registered vectors.
    """
    index, query = _flat_index(histograms, query_histogram)

    k = min(k, index.ntotal)
    distances, indices = index.search(query, k)
    logger.debug(f"FAISS shortlist: {k} of {index.ntotal} histograms")

    return distances[0], indices[0]


def range_search_histogram_index(histograms: Sequence[np.ndarray],
                                 query_histogram: np.ndarray,
                                 radius: float) -> np.ndarray:
    """
    Indices of the registered histograms within an L2 radius of the query.

    The radius is a plain (not squared) L2 distance. The result is in
    no particular order.

    Raises:
        ValueError: If query dimensions don't match the registered vectors.
    """
    index, query = _flat_index(histograms, query_histogram)

    lims, _, indices = index.range_search(query, float(radius) ** 2)
    found = indices[lims[0]:lims[1]]
    logger.debug(f"FAISS range search: {len(found)} of {index.ntotal} histograms "
                 f"within {radius:.3f}")
    return found
