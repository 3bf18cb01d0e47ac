"""
Visual token encoding and fixed-size serialization.

Byte layout (little-endian):

    magic       4 bytes   b"OTV1"
    histogram   8 * N     float64 bins
    spatial     2 * 4     uint16 quadrant bins
    checksum    8         uint64
    created_at  8         float64 unix seconds

The checksum is computed over the histogram quantized to integers rather
than over the raw floats, so it is a stable fast pre-filter for exact
repeats.
"""

import hashlib
import logging
import struct
import time
from typing import Optional

import numpy as np

from .config import RecognitionConfig
from .errors import CorruptToken, InvalidInput
from .models import ColorDescriptor, QUADRANTS, VisualToken

logger = logging.getLogger(__name__)

MAGIC = b"OTV1"
CHECKSUM_SCALE = 1 << 20
_TRAILER = struct.Struct("<Qd")


def descriptor_checksum(descriptor: ColorDescriptor) -> int:
    """64-bit blake2b digest of the quantized histogram and quadrant bins."""
    quantized = np.rint(descriptor.histogram * CHECKSUM_SCALE).astype("<u4")
    digest = hashlib.blake2b(digest_size=8)
    digest.update(quantized.tobytes())
    digest.update(descriptor.spatial.astype("<u2").tobytes())
    return int.from_bytes(digest.digest(), "little")


class TokenCodec:
    """Encodes descriptors into VisualTokens and (de)serializes them."""

    def __init__(self, config: Optional[RecognitionConfig] = None):
        self.config = config or RecognitionConfig()
        self.n_bins = self.config.histogram_bins
        self.token_size = len(MAGIC) + 8 * self.n_bins + 2 * QUADRANTS + _TRAILER.size

    def checksum(self, descriptor: ColorDescriptor) -> int:
        return descriptor_checksum(descriptor)

    def encode(self, descriptor: ColorDescriptor,
               token_id: Optional[str] = None) -> VisualToken:
        """Stamp a descriptor with its checksum and creation time."""
        if descriptor.n_bins != self.n_bins:
            raise InvalidInput(
                f"Descriptor has {descriptor.n_bins} bins, codec expects {self.n_bins}"
            )
        return VisualToken(
            descriptor=descriptor,
            checksum=descriptor_checksum(descriptor),
            created_at=time.time(),
            id=token_id,
        )

    def serialize(self, token: VisualToken) -> bytes:
        d = token.descriptor
        return b"".join([
            MAGIC,
            d.histogram.astype("<f8").tobytes(),
            d.spatial.astype("<u2").tobytes(),
            _TRAILER.pack(token.checksum, token.created_at),
        ])

    def decode(self, data: bytes, token_id: Optional[str] = None) -> VisualToken:
        """
        Rebuild a token from stored bytes.

        Raises:
            CorruptToken: wrong length, wrong magic, a descriptor that
                breaks its invariants, or a checksum mismatch.
        """
        if len(data) != self.token_size:
            raise CorruptToken(
                f"Token is {len(data)} bytes, expected {self.token_size}"
            )
        if data[:len(MAGIC)] != MAGIC:
            raise CorruptToken("Bad token magic")

        offset = len(MAGIC)
        histogram = np.frombuffer(data, dtype="<f8", count=self.n_bins, offset=offset)
        offset += 8 * self.n_bins
        spatial = np.frombuffer(data, dtype="<u2", count=QUADRANTS, offset=offset)
        offset += 2 * QUADRANTS
        checksum, created_at = _TRAILER.unpack_from(data, offset)

        try:
            descriptor = ColorDescriptor(histogram=histogram, spatial=spatial)
        except InvalidInput as e:
            raise CorruptToken(f"Stored descriptor is invalid: {e}") from e

        actual = descriptor_checksum(descriptor)
        if actual != checksum:
            raise CorruptToken(
                f"Checksum mismatch: stored {checksum:016x}, computed {actual:016x}"
            )

        return VisualToken(descriptor=descriptor, checksum=checksum,
                           created_at=created_at, id=token_id)
