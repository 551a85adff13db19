"""Shared fixtures for the fusion_pipeline test suite.

All scenes are synthetic: a high resolution image made of a few land
cover classes plus noise, a blocky low resolution counterpart with a
sensor offset, and low resolution images at later dates with a
class-dependent change.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np
import pytest

from fusion_pipeline.image_set import ImageSet
from fusion_pipeline.options import StarfmOptions

HIGH = "high"
LOW = "low"


# ---------------------------------------------------------------------------
# Data-classes
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class Scene:
    """Rasters of a synthetic two-pair scene at dates 1, 2 and 3."""

    high1: np.ndarray
    low1: np.ndarray
    low2: np.ndarray
    high3: np.ndarray
    low3: np.ndarray

    def image_set(self, *, double: bool = False) -> ImageSet:
        images = make_images(self.high1, self.low1, self.low2)
        if double:
            images.set(HIGH, 3, self.high3)
            images.set(LOW, 3, self.low3)
        return images


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def make_images(
    high1: np.ndarray,
    low1: np.ndarray,
    low2: np.ndarray,
    high3: np.ndarray | None = None,
    low3: np.ndarray | None = None,
) -> ImageSet:
    """Image set with pairs at dates 1 (and 3) and a prediction at 2."""
    images = ImageSet()
    images.set(HIGH, 1, high1)
    images.set(LOW, 1, low1)
    images.set(LOW, 2, low2)
    if high3 is not None:
        images.set(HIGH, 3, high3)
    if low3 is not None:
        images.set(LOW, 3, low3)
    return images


def single_pair_options(**changes: object) -> StarfmOptions:
    return StarfmOptions(date1=1, high_tag=HIGH, low_tag=LOW).replace(
        **changes
    )


def double_pair_options(**changes: object) -> StarfmOptions:
    return StarfmOptions(
        date1=1, date3=3, high_tag=HIGH, low_tag=LOW
    ).replace(**changes)


def _blocky(image: np.ndarray, block: int) -> np.ndarray:
    """Replace each ``block x block`` tile by its mean (coarse sensor)."""
    out = image.astype(np.float64).copy()
    h, w = image.shape[:2]
    for y in range(0, h, block):
        for x in range(0, w, block):
            tile = out[y : y + block, x : x + block]
            tile[...] = tile.mean(axis=(0, 1))
    return out


def make_scene(
    rng: np.random.Generator,
    shape: tuple[int, int] = (15, 17),
    n_chans: int | None = None,
    dtype: type = np.uint16,
) -> Scene:
    """Synthetic scene with three land cover classes."""
    h, w = shape
    chans = 1 if n_chans is None else n_chans
    classes = rng.integers(0, 3, size=(h, w))
    base = np.array([300.0, 900.0, 1800.0])[classes]
    change = np.array([40.0, -60.0, 120.0])[classes]

    def stack(values: np.ndarray, scale: np.ndarray) -> np.ndarray:
        return values[:, :, np.newaxis] * scale[np.newaxis, np.newaxis, :]

    scale = np.linspace(1.0, 1.3, chans)
    high1 = stack(base, scale) + rng.normal(0, 15, (h, w, chans))
    high3 = stack(base + 2 * change, scale) + rng.normal(0, 15, (h, w, chans))
    low1 = _blocky(high1, 3) + 25.0
    low2 = _blocky(stack(base + change, scale), 3) + 25.0
    low3 = _blocky(high3, 3) + 25.0

    def finish(values: np.ndarray) -> np.ndarray:
        values = np.clip(np.rint(values), 0, None).astype(dtype)
        return values[:, :, 0] if n_chans is None else values

    return Scene(
        high1=finish(high1),
        low1=finish(low1),
        low2=finish(low2),
        high3=finish(high3),
        low3=finish(low3),
    )


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------
@pytest.fixture
def rng() -> np.random.Generator:
    return np.random.default_rng(42)


@pytest.fixture
def scene(rng: np.random.Generator) -> Scene:
    """Single-channel uint16 scene."""
    return make_scene(rng)


@pytest.fixture
def multichannel_scene(rng: np.random.Generator) -> Scene:
    """Three-channel uint16 scene."""
    return make_scene(rng, n_chans=3)


@pytest.fixture
def constant_images() -> ImageSet:
    """5x5 uint8 scene: high(1) = low(1) = 10, low(2) = 20."""
    return make_images(
        np.full((5, 5), 10, dtype=np.uint8),
        np.full((5, 5), 10, dtype=np.uint8),
        np.full((5, 5), 20, dtype=np.uint8),
    )
