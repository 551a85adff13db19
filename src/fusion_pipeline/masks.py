"""Validity masks for fusion inputs and outputs.

Masks follow the usual image library convention: ``uint8`` with ``255``
for valid and ``0`` for invalid pixels, either single-channel ``(H, W)``
or one channel per image channel ``(H, W, C)``. Boolean arrays are
accepted wherever a mask is read.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence

import numpy as np

from fusion_pipeline.exceptions import (
    ImageTypeError,
    InvalidArgumentError,
    SizeError,
)
from fusion_pipeline.raster import (
    as_channels,
    channels,
    image_shape,
    is_integer_dtype,
)

logger = logging.getLogger(__name__)

Range = tuple[float, float]

# Nodata values that are tried first for these types.
_PREFERRED_NODATA: dict[np.dtype, int] = {
    np.dtype(np.int16): -9999,
    np.dtype(np.int8): -99,
}
_FLOAT_NODATA = -9999.0
_INT32_NODATA = -999999


def _check_ranges(ranges: Sequence[Range], kind: str) -> list[Range]:
    checked: list[Range] = []
    for lo, hi in ranges:
        if lo > hi:
            msg = f"Invalid {kind} range [{lo}, {hi}]: lower bound > upper"
            raise InvalidArgumentError(msg)
        checked.append((float(lo), float(hi)))
    return checked


def _in_ranges(image: np.ndarray, ranges: Iterable[Range]) -> np.ndarray:
    hit = np.zeros(image.shape, dtype=bool)
    for lo, hi in ranges:
        hit |= (image >= lo) & (image <= hi)
    return hit


def mask_from_ranges(
    image: np.ndarray,
    valid_ranges: Sequence[Range] | None = None,
    invalid_ranges: Sequence[Range] | None = None,
    nodata: float | None = None,
) -> np.ndarray:
    """Build a single-channel mask from value ranges of *image*.

    A channel value is valid if it lies in any of the closed
    *valid_ranges* (or no valid ranges are given), lies in none of the
    *invalid_ranges* and differs from *nodata*. A pixel is valid only if
    all of its channels are valid.

    Args:
        image: Raster of shape ``(H, W)`` or ``(H, W, C)``.
        valid_ranges: Closed ``(lo, hi)`` intervals of valid values.
        invalid_ranges: Closed ``(lo, hi)`` intervals of invalid values.
        nodata: Value marking missing data; ``NaN`` matches ``NaN``.

    Returns:
        ``uint8`` mask of shape ``(H, W)`` with values ``0`` and ``255``.

    Raises:
        InvalidArgumentError: If a range has its bounds swapped.
    """
    img = as_channels(np.asarray(image))
    valid_ranges = _check_ranges(valid_ranges or [], "valid")
    invalid_ranges = _check_ranges(invalid_ranges or [], "invalid")

    if valid_ranges:
        valid = _in_ranges(img, valid_ranges)
    else:
        valid = np.ones(img.shape, dtype=bool)
    if invalid_ranges:
        valid &= ~_in_ranges(img, invalid_ranges)

    if nodata is not None and not np.isnan(nodata):
        valid &= img != nodata

    # NaN is always invalid, also without ranges or a NaN nodata value.
    if not is_integer_dtype(img.dtype):
        valid &= ~np.isnan(img)

    mask = np.where(valid.all(axis=2), 255, 0).astype(np.uint8)
    logger.debug(
        "Mask from ranges: %d of %d pixels valid",
        int(np.count_nonzero(mask)),
        mask.size,
    )
    return mask


def combine_masks(*masks: np.ndarray | None) -> np.ndarray | None:
    """Logical AND of several masks, ignoring ``None`` entries.

    Single-channel masks are broadcast to the channel count of
    multi-channel ones.

    Returns:
        ``uint8`` 0/255 mask, ``(H, W)`` when all inputs are single-channel
        and ``(H, W, C)`` otherwise; ``None`` if no mask was given.

    Raises:
        SizeError: If the masks differ in size.
        ImageTypeError: If two multi-channel masks differ in channel count.
    """
    present = [np.asarray(m) for m in masks if m is not None]
    if not present:
        return None

    shape = image_shape(present[0])
    n_chans = 1
    for m in present:
        if image_shape(m) != shape:
            msg = (
                f"Cannot combine masks of different sizes: "
                f"{[p.shape for p in present]}"
            )
            raise SizeError(msg)
        c = channels(m)
        if c != 1 and n_chans != 1 and c != n_chans:
            msg = (
                "Cannot combine multi-channel masks with different channel "
                f"counts: {[channels(p) for p in present]}"
            )
            raise ImageTypeError(msg)
        n_chans = max(n_chans, c)

    combined = np.ones((*shape, n_chans), dtype=bool)
    for m in present:
        combined &= as_channels(m != 0)

    out = np.where(combined, 255, 0).astype(np.uint8)
    return out[:, :, 0] if n_chans == 1 else out


def fill_masked(
    output: np.ndarray,
    mask: np.ndarray,
    value: float,
) -> np.ndarray:
    """Set *output* to *value* wherever *mask* is zero, in place.

    Returns:
        *output*, for chaining.
    """
    out = as_channels(output)
    invalid = as_channels(np.asarray(mask) == 0)
    if image_shape(out) != image_shape(invalid):
        msg = (
            f"Mask shape {np.asarray(mask).shape} does not match output "
            f"shape {output.shape}"
        )
        raise SizeError(msg)
    invalid = np.broadcast_to(invalid, out.shape)
    out[invalid] = value
    return output


def find_nodata_value(
    output: np.ndarray,
    mask: np.ndarray | None = None,
) -> float | None:
    """Pick a nodata value that no valid pixel of *output* uses.

    Floating point images get ``-9999`` and ``int32`` images ``-999999``.
    For smaller integer types the common values ``-9999`` (int16) and
    ``-99`` (int8) are preferred; otherwise the most negative (signed) or
    most positive (unsigned) unused value is taken.

    Args:
        output: Raster to find a nodata value for.
        mask: Optional mask; only values at nonzero mask locations count
            as used.

    Returns:
        The nodata value, or ``None`` if every value of the type is used.
    """
    dtype = output.dtype
    if not is_integer_dtype(dtype):
        return _FLOAT_NODATA
    if dtype == np.dtype(np.int32):
        return float(_INT32_NODATA)

    values = as_channels(output)
    if mask is not None:
        valid = as_channels(np.asarray(mask) != 0)
        values = values[np.broadcast_to(valid, values.shape)]
    used = np.unique(values)

    preferred = _PREFERRED_NODATA.get(dtype)
    if preferred is not None and preferred not in used:
        return float(preferred)

    info = np.iinfo(dtype)
    candidates = np.arange(info.min, int(info.max) + 1, dtype=np.int64)
    if info.min == 0:
        candidates = candidates[::-1]
    free = candidates[~np.isin(candidates, used)]
    if free.size == 0:
        return None
    return float(free[0])
