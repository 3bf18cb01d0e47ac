"""
Frame preprocessing for descriptor extraction.

Validates the raw buffer handed over by the capture source, views it as
an image array, and area-averages it down to the fixed analysis
resolution. Working at a fixed resolution makes descriptors independent
of camera resolution and smooths out sensor noise.
"""

import logging
from typing import Optional, Tuple

import cv2
import numpy as np

from .errors import InvalidInput
from .models import PixelBuffer, SUPPORTED_CHANNELS

logger = logging.getLogger(__name__)

# Averaged alpha at or below this value counts as transparent
ALPHA_CUTOFF = 128


def validate_buffer(buffer: PixelBuffer) -> None:
    """Raise InvalidInput unless the buffer is a well-formed 8-bit RGB(A) frame."""
    if buffer.width <= 0 or buffer.height <= 0:
        raise InvalidInput(f"Empty frame: {buffer.width}x{buffer.height}")
    if buffer.channels not in SUPPORTED_CHANNELS:
        raise InvalidInput(
            f"Unsupported pixel format: {buffer.channels} channels "
            f"(expected one of {SUPPORTED_CHANNELS})"
        )
    expected = buffer.width * buffer.height * buffer.channels
    if len(buffer.data) != expected:
        raise InvalidInput(
            f"Buffer holds {len(buffer.data)} bytes, expected {expected} "
            f"for {buffer.width}x{buffer.height}x{buffer.channels}"
        )


def buffer_to_array(buffer: PixelBuffer) -> np.ndarray:
    """Copy a validated buffer into a writable H x W x C uint8 array."""
    validate_buffer(buffer)
    flat = np.frombuffer(buffer.data, dtype=np.uint8)
    return flat.reshape(buffer.height, buffer.width, buffer.channels).copy()


def downsample(image_np: np.ndarray, size: int) -> np.ndarray:
    """
    Resize to size x size using area averaging.

    INTER_AREA averages every source pixel that falls into a target
    pixel when shrinking, and degrades to bilinear when the frame is
    smaller than the analysis resolution.
    """
    h, w = image_np.shape[:2]
    if (h, w) == (size, size):
        return image_np
    return cv2.resize(image_np, (size, size), interpolation=cv2.INTER_AREA)


def prepare_frame(buffer: PixelBuffer,
                  size: int) -> Tuple[np.ndarray, Optional[np.ndarray]]:
    """
    Turn a capture buffer into an analysis-resolution RGB image.

    Args:
        buffer: RGB or RGBA capture.
        size: Analysis resolution (square).

    Returns:
        Tuple of (rgb, opaque_mask). rgb is size x size x 3 uint8.
        opaque_mask is a boolean size x size array for RGBA input, or
        None when every pixel counts.

    Raises:
        InvalidInput: malformed buffer, or an RGBA frame that is fully
            transparent after downsampling.
    """
    image_np = buffer_to_array(buffer)
    small = downsample(image_np, size)

    if buffer.channels == 3:
        return small, None

    rgb = cv2.cvtColor(small, cv2.COLOR_RGBA2RGB)
    opaque = small[:, :, 3] > ALPHA_CUTOFF
    if not np.any(opaque):
        raise InvalidInput("Frame is fully transparent")

    logger.debug(f"Alpha mask keeps {int(opaque.sum())}/{opaque.size} pixels")
    return rgb, opaque
