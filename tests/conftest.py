"""Shared test fixtures for recognition engine tests."""

import numpy as np
import pytest

from otic_vision.codec import TokenCodec
from otic_vision.config import RecognitionConfig
from otic_vision.engine import RecognitionOrchestrator
from otic_vision.models import ColorDescriptor
from otic_vision.store import InMemoryTokenStore

RED = (200, 30, 30)
GREEN = (30, 180, 30)
BLUE = (30, 30, 200)
WHITE = (255, 255, 255)

# Flat bin indices for the colours above at 4 bins per channel
RED_BIN = 48
GREEN_BIN = 8
BLUE_BIN = 3
WHITE_BIN = 63


def packaging_image(color, stripe_rows=20, height=120, width=160):
    """Product-like frame: a solid colour with a white label stripe."""
    img = np.empty((height, width, 3), dtype=np.uint8)
    img[:] = color
    top = height // 2 - stripe_rows // 2
    img[top:top + stripe_rows, 20:width - 20] = WHITE
    return img


def brighten(image_np, amount=8):
    return np.clip(image_np.astype(int) + amount, 0, 255).astype(np.uint8)


@pytest.fixture
def red_packaging():
    return packaging_image(RED)


@pytest.fixture
def green_packaging():
    return packaging_image(GREEN)


@pytest.fixture
def blue_packaging():
    return packaging_image(BLUE)


@pytest.fixture
def quadrant_image():
    """64x64 frame with a different solid colour in each quadrant."""
    img = np.empty((64, 64, 3), dtype=np.uint8)
    img[:32, :32] = RED
    img[:32, 32:] = GREEN
    img[32:, :32] = BLUE
    img[32:, 32:] = WHITE
    return img


@pytest.fixture
def noise_image():
    """Generate a 200x200 random noise image."""
    rng = np.random.RandomState(42)
    return rng.randint(0, 255, (200, 200, 3), dtype=np.uint8)


@pytest.fixture
def make_descriptor():
    """Build a descriptor from {bin: weight} and an optional quadrant signature."""
    def _make(weights, spatial=None, n_bins=64):
        hist = np.zeros(n_bins, dtype=np.float64)
        for b, w in weights.items():
            hist[b] = w
        hist = hist / hist.sum()
        if spatial is None:
            spatial = [int(np.argmax(hist))] * 4
        return ColorDescriptor(histogram=hist, spatial=spatial)
    return _make


@pytest.fixture
def config():
    return RecognitionConfig(scan_timeout=2.0)


@pytest.fixture
def codec(config):
    return TokenCodec(config)


@pytest.fixture
def store():
    return InMemoryTokenStore()


@pytest.fixture
def orchestrator(store, config):
    engine = RecognitionOrchestrator(store, config=config)
    yield engine
    engine.close()
