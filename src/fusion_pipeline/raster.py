"""Raster primitives shared by the fusion algorithms.

Rasters are plain numpy arrays of shape ``(H, W)`` or ``(H, W, C)``.
Cropping is done with :class:`Rectangle`, which turns a pixel region
into a pair of slices so that every crop is a view on the owning array
(no copy, nestable). The element-wise helpers reproduce the saturating
arithmetic of integer image libraries: results are computed in a wider
type and clamped back into the storage type.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

import numpy as np

from fusion_pipeline.exceptions import ImageTypeError, SizeError

SUPPORTED_DTYPES: frozenset[np.dtype] = frozenset(
    np.dtype(t)
    for t in (
        np.uint8,
        np.int8,
        np.uint16,
        np.int16,
        np.int32,
        np.float32,
        np.float64,
    )
)
"""Element types the fusion kernels are instantiated for."""

MASK_DTYPES: frozenset[np.dtype] = frozenset(
    {np.dtype(np.uint8), np.dtype(bool)}
)
"""Element types accepted for boolean masks (0/255 or False/True)."""


@dataclass(frozen=True)
class Rectangle:
    """Axis-aligned pixel region, ``x``/``y`` being the top-left corner."""

    x: int
    y: int
    width: int
    height: int

    @classmethod
    def full(cls, shape: tuple[int, ...]) -> Rectangle:
        """Rectangle covering an image of the given numpy *shape*."""
        return cls(0, 0, int(shape[1]), int(shape[0]))

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> Rectangle:
        return cls(
            x=int(raw["x"]),
            y=int(raw["y"]),
            width=int(raw["width"]),
            height=int(raw["height"]),
        )

    @property
    def shape(self) -> tuple[int, int]:
        """Numpy-style ``(height, width)``."""
        return (self.height, self.width)

    @property
    def is_empty(self) -> bool:
        return self.width <= 0 or self.height <= 0

    @property
    def slices(self) -> tuple[slice, slice]:
        return (
            slice(self.y, self.y + self.height),
            slice(self.x, self.x + self.width),
        )

    def intersect(self, other: Rectangle) -> Rectangle:
        x0 = max(self.x, other.x)
        y0 = max(self.y, other.y)
        x1 = min(self.x + self.width, other.x + other.width)
        y1 = min(self.y + self.height, other.y + other.height)
        return Rectangle(x0, y0, max(0, x1 - x0), max(0, y1 - y0))

    def expand(self, margin: int) -> Rectangle:
        """Grow the rectangle by *margin* pixels on all four sides."""
        return Rectangle(
            self.x - margin,
            self.y - margin,
            self.width + 2 * margin,
            self.height + 2 * margin,
        )

    def translate(self, dx: int, dy: int) -> Rectangle:
        return Rectangle(self.x + dx, self.y + dy, self.width, self.height)

    def contains(self, other: Rectangle) -> bool:
        return (
            other.x >= self.x
            and other.y >= self.y
            and other.x + other.width <= self.x + self.width
            and other.y + other.height <= self.y + self.height
        )

    def crop(self, array: np.ndarray) -> np.ndarray:
        """Return a view of *array* restricted to this rectangle.

        Raises:
            SizeError: If the rectangle starts left of or above the array
                (numpy would silently wrap negative indices).
        """
        if self.x < 0 or self.y < 0:
            msg = f"Cannot crop {self} from an array: negative offset"
            raise SizeError(msg)
        return array[self.slices]


def as_channels(image: np.ndarray) -> np.ndarray:
    """Return a 3D ``(H, W, C)`` view of a 2D or 3D array.

    Raises:
        ImageTypeError: If *image* is neither 2D nor 3D.
    """
    if image.ndim == 2:
        return image[:, :, np.newaxis]
    if image.ndim == 3:
        return image
    msg = (
        "Rasters must be 2D (H, W) or 3D (H, W, C), "
        f"got ndim={image.ndim}, shape={image.shape}"
    )
    raise ImageTypeError(msg)


def channels(image: np.ndarray) -> int:
    return 1 if image.ndim == 2 else int(image.shape[2])


def image_shape(image: np.ndarray) -> tuple[int, int]:
    """Spatial ``(height, width)`` of a raster."""
    return (int(image.shape[0]), int(image.shape[1]))


def type_name(image: np.ndarray) -> str:
    """Human-readable full type, e.g. ``uint16x3``."""
    return f"{image.dtype.name}x{channels(image)}"


def is_integer_dtype(dtype: np.dtype) -> bool:
    return np.issubdtype(dtype, np.integer)


def promoted_dtype(dtype: np.dtype) -> np.dtype:
    """Wide type in which sums and differences of *dtype* cannot overflow."""
    if is_integer_dtype(dtype):
        return np.dtype(np.int64)
    return np.dtype(np.float64)


def saturate_cast(values: Any, dtype: np.dtype | type) -> np.ndarray:
    """Convert *values* to *dtype*, clamping instead of wrapping.

    Integer targets round to the nearest value (ties to even) and clamp
    to the representable range; ``NaN`` becomes ``0``. Floating targets
    are a plain cast.
    """
    dtype = np.dtype(dtype)
    arr = np.asarray(values)
    if not is_integer_dtype(dtype):
        return arr.astype(dtype)
    info = np.iinfo(dtype)
    if not is_integer_dtype(arr.dtype):
        arr = np.rint(np.nan_to_num(arr, nan=0.0))
    return np.clip(arr, info.min, info.max).astype(dtype)


def absdiff(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    """Saturated ``|a - b|`` in the type of *a*."""
    wide = promoted_dtype(a.dtype)
    diff = np.abs(a.astype(wide) - b.astype(wide))
    return saturate_cast(diff, a.dtype)


def local_values(
    high: np.ndarray,
    low_pair: np.ndarray,
    low_pred: np.ndarray,
) -> np.ndarray:
    """Per-pair candidate values ``high + low_pred - low_pair``.

    Computed in the promoted type and saturated into the type of
    *low_pred*.
    """
    wide = promoted_dtype(low_pred.dtype)
    values = high.astype(wide) + low_pred.astype(wide) - low_pair.astype(wide)
    return saturate_cast(values, low_pred.dtype)


def mean_std_dev(
    image: np.ndarray,
    mask: np.ndarray | None = None,
) -> tuple[np.ndarray, np.ndarray]:
    """Per-channel mean and population standard deviation.

    Args:
        image: Raster of shape ``(H, W)`` or ``(H, W, C)``.
        mask: Optional mask, nonzero marking pixels to include. A
            single-channel mask applies to every channel; otherwise
            channel ``c`` of the mask selects pixels for channel ``c``.

    Returns:
        Tuple ``(means, stds)`` of ``float64`` arrays of length ``C``.
        Channels without any selected pixel get ``0`` for both.
    """
    img = as_channels(image)
    n_chans = img.shape[2]
    means = np.zeros(n_chans, dtype=np.float64)
    stds = np.zeros(n_chans, dtype=np.float64)
    if img.shape[0] == 0 or img.shape[1] == 0:
        return means, stds

    if mask is None:
        flat = img.reshape(-1, n_chans).astype(np.float64)
        return flat.mean(axis=0), flat.std(axis=0)

    mask_3d = as_channels(np.asarray(mask) != 0)
    for c in range(n_chans):
        m = mask_3d[:, :, c if mask_3d.shape[2] > 1 else 0]
        selected = img[:, :, c][m].astype(np.float64)
        if selected.size:
            means[c] = selected.mean()
            stds[c] = selected.std()
    return means, stds
