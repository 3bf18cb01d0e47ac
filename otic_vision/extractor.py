"""
Colour/spatial descriptor extraction.

Pipeline:
    1. Validate the buffer and area-average it to the analysis resolution
    2. Quantize every pixel to a flat RGB bin
    3. Accumulate a normalized histogram over the opaque pixels
    4. Record the dominant bin of each quadrant

The output length depends only on the configured bin count, never on
the size of the input frame.
"""

import logging
from typing import Optional

from .config import RecognitionConfig
from .histograms import compute_histogram, quantize_pixels, spatial_signature
from .models import ColorDescriptor, PixelBuffer
from .preprocessing import prepare_frame

logger = logging.getLogger(__name__)


class FeatureExtractor:
    """Pure, stateless buffer -> ColorDescriptor conversion."""

    def __init__(self, config: Optional[RecognitionConfig] = None):
        self.config = config or RecognitionConfig()

    @property
    def n_bins(self) -> int:
        return self.config.histogram_bins

    def extract(self, buffer: PixelBuffer) -> ColorDescriptor:
        """
        Extract a ColorDescriptor from a capture buffer.

        Raises:
            InvalidInput: zero-size frame, unsupported channel count,
                length mismatch, or a fully transparent RGBA frame.
        """
        rgb, mask = prepare_frame(buffer, self.config.analysis_size)
        bin_map = quantize_pixels(rgb, self.config.bins_per_channel)

        histogram = compute_histogram(bin_map, self.n_bins, mask)
        spatial = spatial_signature(bin_map, self.n_bins, mask)

        logger.debug(
            f"Extracted descriptor from {buffer.width}x{buffer.height}x"
            f"{buffer.channels} frame, quadrants={spatial.tolist()}"
        )
        return ColorDescriptor(histogram=histogram, spatial=spatial)
