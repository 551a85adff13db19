"""STARFM: Spatial and Temporal Adaptive Reflectance Fusion Model.

Predicts a high resolution image at ``date2`` from a low resolution image
at ``date2`` and one or two pairs of high and low resolution images at
other dates. Each output pixel is a weighted mean of the local values
``high + low_pred - low_pair`` of spectrally similar neighbours inside a
moving window, see :mod:`fusion_pipeline.fusors._candidate_search`.

Usage::

    fusor = StarfmFusor(images).process_options(
        StarfmOptions(date1=1, high_tag="high", low_tag="low", win_size=31)
    )
    prediction = fusor.predict(2, mask=valid)

References:
    Gao, F., Masek, J., Schwaller, M., & Hall, F. (2006). On the
    blending of the Landsat and MODIS surface reflectance: predicting
    daily Landsat surface reflectance. IEEE TGRS, 44(8), 2207-2218.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Sequence
from typing import NamedTuple

import numpy as np

from fusion_pipeline.exceptions import (
    ConfigurationError,
    ImageTypeError,
    NotFoundError,
    SizeError,
)
from fusion_pipeline.fusors._candidate_search import CandidateSearch, PairData
from fusion_pipeline.fusors.base import BaseFusor
from fusion_pipeline.image_set import ImageSet
from fusion_pipeline.options import StarfmOptions
from fusion_pipeline.raster import (
    MASK_DTYPES,
    SUPPORTED_DTYPES,
    Rectangle,
    absdiff,
    as_channels,
    channels,
    image_shape,
    local_values,
    mean_std_dev,
    saturate_cast,
    type_name,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Geometry helpers
# ---------------------------------------------------------------------------


def find_sample_area(
    full_shape: tuple[int, ...],
    prediction_area: Rectangle,
    win_size: int,
) -> Rectangle:
    """Prediction area grown by half a window, clipped to the image.

    Args:
        full_shape: Numpy shape of the full images.
        prediction_area: Region to predict, in full-image coordinates.
        win_size: Odd window edge length.

    Returns:
        The region whose pixels can appear in any search window.
    """
    full = Rectangle.full(full_shape)
    return prediction_area.expand(win_size // 2).intersect(full)


def compute_distance_weights(win_size: int) -> np.ndarray:
    """Relative distance ``d = 1 + 2 sqrt(x^2 + y^2) / win_size``.

    ``x`` and ``y`` are offsets from the window center. Only one octant
    is computed; the rest follows from the 8-fold symmetry.

    Returns:
        ``(win_size, win_size)`` float64 array, ``1`` at the center.
    """
    weights = np.empty((win_size, win_size), dtype=np.float64)
    c = win_size // 2
    for x in range(c + 1):
        for y in range(x + 1):
            d = math.sqrt(x * x + y * y) * 2.0 / win_size + 1.0
            for a, b in ((x, y), (y, x)):
                for row in (c + a, c - a):
                    for col in (c + b, c - b):
                        weights[row, col] = d
    return weights


def resolve_trivial_pixels(
    pairs: Sequence[PairData],
    low_pred: np.ndarray,
    out: np.ndarray,
) -> np.ndarray:
    """Set outputs that need no candidate search.

    In order of increasing priority:

    * zero spectral difference in any pair: copy ``low_pred``,
    * zero temporal difference in a pair: copy that pair's ``high``,
    * zero temporal difference in both pairs: their rounded mean.

    The mask is not consulted here.

    Args:
        pairs: Pair rasters cropped to the prediction area.
        low_pred: Low resolution image at the prediction date, cropped to
            the prediction area.
        out: ``(h, w, C)`` output view, written in place.

    Returns:
        Boolean ``(h, w, C)`` array marking every resolved pixel-channel.
    """
    resolved = np.zeros(out.shape, dtype=bool)

    for pair in pairs:
        zero_spectral = pair.diff_spectral == 0
        out[zero_spectral] = low_pred[zero_spectral]
        resolved |= zero_spectral

    zero_temporal = [pair.diff_temporal == 0 for pair in pairs]
    for pair, zero in zip(pairs, zero_temporal):
        out[zero] = pair.high[zero]
        resolved |= zero

    if len(pairs) == 2:
        both = zero_temporal[0] & zero_temporal[1]
        mean = saturate_cast(
            pairs[0].high.astype(np.float64) * 0.5
            + pairs[1].high.astype(np.float64) * 0.5,
            out.dtype,
        )
        out[both] = mean[both]

    return resolved


class _RequiredImage(NamedTuple):
    label: str
    tag: str
    date: int


# ---------------------------------------------------------------------------
# Fusor
# ---------------------------------------------------------------------------


class StarfmFusor(BaseFusor):
    """STARFM fusor with single- and double-pair prediction.

    Args:
        images: Image set holding the pair and prediction images.
        options: Options to process right away, see
            :meth:`process_options`.
    """

    name = "starfm"

    def __init__(
        self,
        images: ImageSet | None = None,
        options: StarfmOptions | None = None,
    ) -> None:
        super().__init__(images)
        self.options: StarfmOptions | None = None
        if options is not None:
            self.process_options(options)

    def process_options(self, options: StarfmOptions) -> StarfmFusor:
        """Validate and store *options* for subsequent predictions.

        Raises:
            ConfigurationError: If no pair date is set or the resolution
                tags are equal.
        """
        self.options = options.validate()
        logger.debug(
            "%s: options set (pairs=%s, win_size=%d)",
            self.name,
            options.pair_dates,
            options.win_size,
        )
        return self

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def check_input_images(
        self,
        mask: np.ndarray | None,
        date2: int,
    ) -> None:
        """Check presence, types and sizes of the rasters for *date2*.

        Raises:
            NotFoundError: If a required raster is missing.
            ImageTypeError: If element types or channel counts disagree,
                or the mask has an unsupported type or channel count.
            SizeError: If the image or mask sizes disagree.
        """
        opts = self._require_options()
        images = self._require_images()

        required = self._required_images(date2)
        if not all(images.has(r.tag, r.date) for r in required):
            lines = [
                f" * {r.label} "
                f"[{'' if images.has(r.tag, r.date) else 'NOT '}available]"
                for r in required
            ]
            msg = (
                "Not all required images are available. "
                "For STARFM you need to provide:\n" + "\n".join(lines)
            )
            raise NotFoundError(msg)

        rasters = {r: images.get(r.tag, r.date) for r in required}
        for r, img in rasters.items():
            if img.ndim not in (2, 3):
                msg = (
                    f"{r.label} must be 2D or 3D, "
                    f"got shape {img.shape}"
                )
                raise ImageTypeError(msg)
            if img.dtype not in SUPPORTED_DTYPES:
                supported = sorted(d.name for d in SUPPORTED_DTYPES)
                msg = (
                    f"{r.label} has unsupported element type "
                    f"{img.dtype.name}. Supported: {supported}"
                )
                raise ImageTypeError(msg)

        high = [img for r, img in rasters.items() if r.tag == opts.high_tag]
        low = [img for r, img in rasters.items() if r.tag == opts.low_tag]
        if len({type_name(img) for img in high}) > 1:
            msg = (
                "The high resolution images must have the same type. "
                f"Got: {[type_name(img) for img in high]}"
            )
            raise ImageTypeError(msg)
        if len({type_name(img) for img in low}) > 1:
            msg = (
                "The low resolution images must have the same type. "
                f"Got: {[type_name(img) for img in low]}"
            )
            raise ImageTypeError(msg)

        h0, l0 = high[0], low[0]
        if h0.dtype != l0.dtype:
            msg = (
                "The high and low resolution images must have the same "
                f"element type. High: {h0.dtype.name}, low: {l0.dtype.name}"
            )
            raise ImageTypeError(msg)
        if channels(h0) != channels(l0):
            msg = (
                "The high and low resolution images must have the same "
                f"number of channels. High: {channels(h0)}, "
                f"low: {channels(l0)}"
            )
            raise ImageTypeError(msg)

        shapes = {image_shape(img) for img in rasters.values()}
        if len(shapes) > 1:
            lines = [
                f" * {r.label}: {img.shape[1]} x {img.shape[0]}"
                for r, img in rasters.items()
            ]
            msg = (
                "The input images must have the same size:\n"
                + "\n".join(lines)
            )
            raise SizeError(msg)

        if mask is not None:
            self._check_mask(mask, h0)

    def _check_mask(self, mask: np.ndarray, reference: np.ndarray) -> None:
        mask = np.asarray(mask)
        if mask.ndim not in (2, 3) or image_shape(mask) != image_shape(
            reference
        ):
            msg = (
                f"The mask has shape {mask.shape} but the images have size "
                f"{reference.shape[1]} x {reference.shape[0]}"
            )
            raise SizeError(msg)
        if mask.dtype not in MASK_DTYPES:
            msg = (
                "The mask must be a single-channel or multi-channel uint8 "
                f"or bool array, got {mask.dtype.name}"
            )
            raise ImageTypeError(msg)
        if channels(mask) not in (1, channels(reference)):
            msg = (
                f"The mask has {channels(mask)} channels, expected 1 or "
                f"{channels(reference)} like the images"
            )
            raise ImageTypeError(msg)

    def _required_images(self, date2: int) -> list[_RequiredImage]:
        opts = self._require_options()
        hi, lo = opts.high_tag, opts.low_tag

        def entry(kind: str, tag: str, which: str, date: int) -> _RequiredImage:
            return _RequiredImage(
                f"{kind} resolution image (tag: {tag}) at {which} "
                f"(date: {date})",
                tag,
                date,
            )

        required = [
            entry("High", hi, "date 1", opts.date1),
            entry("Low", lo, "date 1", opts.date1),
        ]
        if opts.date3 is not None:
            required += [
                entry("High", hi, "date 3", opts.date3),
                entry("Low", lo, "date 3", opts.date3),
            ]
        required.append(entry("Low", lo, "date 2", date2))
        return required

    def _require_options(self) -> StarfmOptions:
        if self.options is None:
            msg = (
                f"{self.name}: no options set. "
                "Call process_options() before predict()."
            )
            raise ConfigurationError(msg)
        return self.options

    # ------------------------------------------------------------------
    # Prediction
    # ------------------------------------------------------------------

    def predict(
        self,
        date2: int,
        mask: np.ndarray | None = None,
    ) -> np.ndarray:
        """Predict the high resolution image at *date2*.

        Only the prediction area of the options is written. The output is
        reused between calls as long as size and type stay the same, so
        masked-out pixels keep the values of a previous prediction.

        Args:
            date2: Date of the low resolution image to predict from.
            mask: Optional uint8 or bool mask with 1 or ``C`` channels,
                nonzero marking valid pixels.

        Returns:
            The output raster, sized like the prediction area, with the
            type and channel layout of the high resolution images.

        Raises:
            NotFoundError: If a required raster is missing.
            ImageTypeError: On inconsistent element types or channels.
            SizeError: On inconsistent sizes, or if the prediction area
                is empty or exceeds the images.
        """
        opts = self._require_options()
        images = self._require_images()
        self.check_input_images(mask, date2)

        high1 = images.get(opts.high_tag, opts.date1)
        full_shape = image_shape(high1)
        full_area = Rectangle.full(full_shape)
        pred_area = opts.prediction_area or full_area
        if pred_area.is_empty or not full_area.contains(pred_area):
            msg = (
                f"The prediction area {pred_area} must be non-empty and lie "
                f"within the images of size {full_shape[1]} x {full_shape[0]}"
            )
            raise SizeError(msg)

        sample_area = find_sample_area(full_shape, pred_area, opts.win_size)
        local_pred_area = pred_area.translate(-sample_area.x, -sample_area.y)

        output = self._prepare_output(
            pred_area.shape + high1.shape[2:], high1.dtype
        )
        out = as_channels(output)

        full_mask = None
        if mask is not None:
            full_mask = as_channels(np.asarray(mask) != 0)
        sample_mask = None if full_mask is None else sample_area.crop(full_mask)

        low_pred = sample_area.crop(
            as_channels(images.get(opts.low_tag, date2))
        )
        pairs = [
            self._prepare_pair(date, low_pred, sample_area, full_mask)
            for date in opts.pair_dates
        ]

        resolved = None
        if opts.do_copy_on_zero_diff:
            resolved = resolve_trivial_pixels(
                [pair.crop(local_pred_area) for pair in pairs],
                local_pred_area.crop(low_pred),
                out,
            )
            logger.debug(
                "%s: %d pixel-channels resolved without search",
                self.name,
                int(resolved.sum()),
            )

        search = CandidateSearch(opts, high1.dtype)
        n_searched = search.run(
            pairs,
            local_pred_area,
            out,
            compute_distance_weights(opts.win_size),
            mask=sample_mask,
            resolved=resolved,
        )
        logger.info(
            "%s: predicted date %d from pair(s) %s, area %s, "
            "%d pixel-channels searched",
            self.name,
            date2,
            opts.pair_dates,
            pred_area,
            n_searched,
        )
        return output

    def _prepare_pair(
        self,
        date: int,
        low_pred: np.ndarray,
        sample_area: Rectangle,
        full_mask: np.ndarray | None,
    ) -> PairData:
        opts = self._require_options()
        images = self._require_images()

        high_full = as_channels(images.get(opts.high_tag, date))
        high = sample_area.crop(high_full)
        low = sample_area.crop(as_channels(images.get(opts.low_tag, date)))

        _, stds = mean_std_dev(high_full, full_mask)
        tolerance = stds * 2.0 / opts.number_classes
        logger.debug(
            "%s: pair %d tolerance per channel %s", self.name, date, tolerance
        )

        return PairData(
            high=high,
            diff_spectral=absdiff(low, high),
            diff_temporal=absdiff(low, low_pred),
            local_values=local_values(high, low, low_pred),
            tolerance=tolerance,
        )
