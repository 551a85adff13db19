"""Per-pixel candidate search and weighted prediction of STARFM.

For every pixel of the prediction area the moving window is scanned in
each input pair. A window location is a candidate if it is valid in the
mask, spectrally similar to the window center in the high resolution
image and has a temporal and/or spectral difference below the one of the
center. Candidates contribute their local value
``high + low_pred - low_pair`` weighted by the inverse of the combined
spectral, temporal and spatial distance:

$$C = (1 + S)(1 + T) D, \\qquad w = 1 / C$$

or, with a positive logarithmic scale factor ``b``,

$$C = \\ln(2 + S b) \\ln(2 + T b) D.$$

When no candidate is found, the mean of the center local values of the
pairs is used. Every channel is predicted independently.

All rasters handed to :class:`CandidateSearch` are ``(H, W, C)`` views on
the sample area, i.e. the prediction area extended by half a window.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Sequence
from dataclasses import dataclass

import numpy as np

from fusion_pipeline.logging_utils import StreamProgress
from fusion_pipeline.options import StarfmOptions
from fusion_pipeline.raster import Rectangle, mean_std_dev, saturate_cast

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PairData:
    """Rasters derived from one input pair, all of shape ``(H, W, C)``.

    Attributes:
        high: High resolution image at the pair date.
        diff_spectral: ``|low_pair - high|``.
        diff_temporal: ``|low_pair - low_pred|``.
        local_values: ``high + low_pred - low_pair``, saturated.
        tolerance: Per-channel similarity tolerance ``2 s / n`` from the
            whole (masked) high resolution image.
    """

    high: np.ndarray
    diff_spectral: np.ndarray
    diff_temporal: np.ndarray
    local_values: np.ndarray
    tolerance: np.ndarray

    def crop(self, area: Rectangle) -> PairData:
        """Views of all rasters restricted to *area*."""
        return PairData(
            high=area.crop(self.high),
            diff_spectral=area.crop(self.diff_spectral),
            diff_temporal=area.crop(self.diff_temporal),
            local_values=area.crop(self.local_values),
            tolerance=self.tolerance,
        )


class CandidateSearch:
    """Moving-window candidate search for one element type.

    An instance is created once per prediction for the storage type of
    the images, so the saturation and rounding rules are fixed before
    the per-pixel loop starts.

    Args:
        options: Validated STARFM options of the prediction.
        dtype: Element type of the input and output rasters.
    """

    def __init__(self, options: StarfmOptions, dtype: np.dtype) -> None:
        self.dtype = np.dtype(dtype)
        self.win_size = options.win_size
        self.number_classes = options.number_classes
        self.use_strict_filtering = options.use_strict_filtering
        self.use_temp_diff = options.use_temp_diff
        self.use_local_tol = options.use_local_tol
        self.log_scale = options.log_scale_factor
        self.data_range = options.data_range

        sigma_t = options.temporal_uncertainty
        sigma_s = options.spectral_uncertainty
        self.sigma_dt = sigma_t * math.sqrt(2.0)
        self.sigma_ds = math.hypot(sigma_t, sigma_s)
        self.sigma_combined = math.hypot(self.sigma_ds, self.sigma_dt)

    def run(
        self,
        pairs: Sequence[PairData],
        prediction_area: Rectangle,
        out: np.ndarray,
        distance_weights: np.ndarray,
        *,
        mask: np.ndarray | None = None,
        resolved: np.ndarray | None = None,
    ) -> int:
        """Predict every open pixel-channel of the prediction area.

        Args:
            pairs: One or two pairs, rasters on the sample area.
            prediction_area: Region to predict, relative to the sample
                area.
            out: ``(h, w, C)`` output view sized to *prediction_area*.
            distance_weights: ``win_size x win_size`` table from
                :func:`~fusion_pipeline.fusors.starfm.compute_distance_weights`.
            mask: Optional boolean ``(H, W, 1)`` or ``(H, W, C)`` mask on
                the sample area; ``False`` pixels are neither used as
                candidates nor predicted.
            resolved: Optional boolean ``(h, w, C)`` marker of outputs
                already set by the trivial-pixel pass.

        Returns:
            Number of pixel-channels written.
        """
        half = self.win_size // 2
        sample_bounds = Rectangle.full(pairs[0].high.shape)
        n_chans = pairs[0].high.shape[2]
        n_written = 0

        area = prediction_area
        rows = range(area.y, area.y + area.height)
        cols = range(area.x, area.x + area.width)
        for y in StreamProgress(
            rows, desc="STARFM", unit="rows", logger=logger
        ):
            y_out = y - prediction_area.y
            for x in cols:
                x_out = x - prediction_area.x

                todo = np.ones(n_chans, dtype=bool)
                if resolved is not None:
                    todo &= ~resolved[y_out, x_out]
                if mask is not None:
                    todo &= mask[y, x]
                if not todo.any():
                    continue

                full_window = Rectangle(
                    x - half, y - half, self.win_size, self.win_size
                )
                window = full_window.intersect(sample_bounds)
                dw_window = Rectangle(
                    window.x - full_window.x,
                    window.y - full_window.y,
                    window.width,
                    window.height,
                )
                values = self.predict_pixel(
                    pairs,
                    window,
                    (y - window.y, x - window.x),
                    dw_window.crop(distance_weights),
                    mask=mask,
                )
                out[y_out, x_out, todo] = values[todo]
                n_written += int(todo.sum())

        return n_written

    def predict_pixel(
        self,
        pairs: Sequence[PairData],
        window: Rectangle,
        center: tuple[int, int],
        distance_weights: np.ndarray,
        *,
        mask: np.ndarray | None = None,
    ) -> np.ndarray:
        """Weighted prediction of all channels of one window center.

        Args:
            pairs: One or two pairs, rasters on the sample area.
            window: Search window, already clipped to the sample area.
            center: ``(row, col)`` of the center pixel inside *window*.
            distance_weights: Distance weights cropped like *window*.
            mask: Optional boolean mask on the sample area.

        Returns:
            Predicted values of shape ``(C,)`` in the storage type.
        """
        cy, cx = center
        mask_win = None if mask is None else window.crop(mask)
        dt_center, ds_center = self._center_thresholds(pairs, window, center)

        n_chans = pairs[0].high.shape[2]
        sum_weights = np.zeros(n_chans, dtype=np.float64)
        weighted_sum = np.zeros(n_chans, dtype=np.float64)
        has_candidate = np.zeros(n_chans, dtype=bool)

        for pair in pairs:
            high = window.crop(pair.high).astype(np.float64)
            dt = window.crop(pair.diff_temporal)
            ds = window.crop(pair.diff_spectral)
            lv = window.crop(pair.local_values)

            similar = np.abs(high[cy, cx] - high) < self._tolerance(
                pair, high, mask_win
            )
            if self.use_strict_filtering:
                valid = (dt < dt_center) & (ds < ds_center)
            else:
                valid = (dt < dt_center) | (ds < ds_center)

            accepted = similar & valid
            if mask_win is not None:
                accepted &= mask_win

            weights = np.where(
                accepted, self._weights(dt, ds, distance_weights), 0.0
            )
            sum_weights += weights.sum(axis=(0, 1))
            weighted_sum += (weights * lv).sum(axis=(0, 1))
            has_candidate |= accepted.any(axis=(0, 1))

        first = window.crop(pairs[0].local_values)[cy, cx].astype(np.float64)
        last = window.crop(pairs[-1].local_values)[cy, cx].astype(np.float64)
        fallback = first * 0.5 + last * 0.5

        safe_sum = np.where(has_candidate, sum_weights, 1.0)
        values = np.where(has_candidate, weighted_sum / safe_sum, fallback)
        if self.data_range is not None:
            values = np.clip(values, *self.data_range)
        return saturate_cast(values, self.dtype)

    def _center_thresholds(
        self,
        pairs: Sequence[PairData],
        window: Rectangle,
        center: tuple[int, int],
    ) -> tuple[np.ndarray, np.ndarray]:
        """Temporal and spectral acceptance thresholds of the center.

        With two pairs the smaller threshold of both pairs is used.
        """
        cy, cx = center
        dt_centers = []
        ds_centers = []
        for pair in pairs:
            dt = window.crop(pair.diff_temporal)[cy, cx].astype(np.float64)
            ds = window.crop(pair.diff_spectral)[cy, cx].astype(np.float64)
            dt = saturate_cast(dt + self.sigma_dt, self.dtype)
            ds = saturate_cast(ds + self.sigma_ds, self.dtype)
            dt_centers.append(dt)
            ds_centers.append(ds)
        return np.min(dt_centers, axis=0), np.min(ds_centers, axis=0)

    def _tolerance(
        self,
        pair: PairData,
        high_window: np.ndarray,
        mask_window: np.ndarray | None,
    ) -> np.ndarray:
        if not self.use_local_tol:
            return pair.tolerance
        _, stds = mean_std_dev(high_window, mask_window)
        return stds * 2.0 / self.number_classes

    def _weights(
        self,
        dt: np.ndarray,
        ds: np.ndarray,
        distance_weights: np.ndarray,
    ) -> np.ndarray:
        """Candidate weights ``1 / C`` for every window location."""
        ds_f = ds.astype(np.float64)
        if self.use_temp_diff:
            dt_f = dt.astype(np.float64)
        else:
            dt_f = np.zeros_like(ds_f)
        dw = distance_weights[:, :, np.newaxis]

        if self.log_scale > 0:
            k = self.log_scale
            return 1.0 / (np.log(2.0 + dt_f * k) * np.log(2.0 + ds_f * k) * dw)

        # Candidates closer than sigma_combined get weight 1.
        dts = (1.0 + dt_f) * (1.0 + ds_f)
        return np.where(dts >= self.sigma_combined, 1.0 / (dw * dts), 1.0)
