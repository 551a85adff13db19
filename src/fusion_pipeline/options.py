"""Options for the STARFM fusion algorithm.

:class:`StarfmOptions` is an immutable snapshot of everything a
prediction needs apart from the images. Values that are invalid on
their own (an even window size, fewer than one class, ...) are rejected
when the object is built. Whether the snapshot is complete enough to
predict with (a pair date is set, the resolution tags differ) is checked
by :meth:`StarfmOptions.validate`, which the fusor calls when the
options are handed to it.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from enum import Enum
from typing import Any

from fusion_pipeline.exceptions import ConfigurationError, InvalidArgumentError
from fusion_pipeline.raster import Rectangle


class TempDiffWeighting(str, Enum):
    """Whether the temporal difference enters the candidate weights.

    ``ENABLE`` uses ``C = (S + 1) (T + 1) D`` like the STARFM paper,
    ``DISABLE`` uses ``C = (S + 1) D`` and ``ON_DOUBLE_PAIR`` uses the
    temporal difference only when predicting from two pairs.
    """

    DISABLE = "disable"
    ENABLE = "enable"
    ON_DOUBLE_PAIR = "on_double_pair"

    def resolve(self, double_pair: bool) -> bool:
        """Return whether to use the temporal difference for this run."""
        if self is TempDiffWeighting.ON_DOUBLE_PAIR:
            return double_pair
        return self is TempDiffWeighting.ENABLE


@dataclass(frozen=True)
class StarfmOptions:
    """Configuration of a single STARFM prediction.

    Attributes:
        date1: Date of the first (or only) input pair.
        date3: Date of the second input pair; selects double-pair mode.
        high_tag: Resolution tag of the high resolution images.
        low_tag: Resolution tag of the low resolution images.
        win_size: Odd edge length of the moving search window.
        number_classes: Divisor of the doubled standard deviation that
            gives the similarity tolerance, ``tol = 2 s / n``.
        temporal_uncertainty: ``sigma_t``, uncertainty of low resolution
            pixels. Must be non-negative.
        spectral_uncertainty: ``sigma_s``, uncertainty of high resolution
            pixels. Must be non-negative.
        uncertainty_factor: ESTARFM uncertainty factor (stored only).
        prediction_area: Region to predict; ``None`` means the full image.
        use_local_tol: Use the standard deviation of each window instead
            of the whole image for the similarity tolerance.
        use_quality_weighted_regression: ESTARFM setting (stored only).
        use_strict_filtering: Require candidates to beat the center in
            both temporal and spectral difference instead of either one.
        use_temp_diff_for_weights: See :class:`TempDiffWeighting`.
        log_scale_factor: When positive, use the logarithmic weighting
            ``C = ln(S b + 2) ln(T b + 2) D``.
        do_copy_on_zero_diff: Copy the new low resolution value on zero
            spectral difference and the high resolution value on zero
            temporal difference instead of searching candidates.
        data_range: Optional ``(min, max)`` the predicted values are
            clipped to.
    """

    date1: int | None = None
    date3: int | None = None
    high_tag: str = ""
    low_tag: str = ""
    win_size: int = 51
    number_classes: float = 4.0
    temporal_uncertainty: float = 1.0
    spectral_uncertainty: float = 1.0
    uncertainty_factor: float = 0.002
    prediction_area: Rectangle | None = None
    use_local_tol: bool = False
    use_quality_weighted_regression: bool = False
    use_strict_filtering: bool = False
    use_temp_diff_for_weights: TempDiffWeighting = TempDiffWeighting.ENABLE
    log_scale_factor: float = 0.0
    do_copy_on_zero_diff: bool = True
    data_range: tuple[float, float] | None = None

    def __post_init__(self) -> None:
        if self.win_size < 1 or self.win_size % 2 == 0:
            msg = (
                "The window size must be a positive odd number. "
                f"You tried {self.win_size}"
            )
            raise InvalidArgumentError(msg)

        if self.number_classes < 1:
            msg = (
                "The number of classes must be at least 1. "
                f"You tried {self.number_classes}"
            )
            raise InvalidArgumentError(msg)

        for name in ("temporal_uncertainty", "spectral_uncertainty"):
            value = getattr(self, name)
            if value < 0:
                msg = (
                    f"The {name.replace('_', ' ')} must be a non-negative "
                    f"number. You tried {value}"
                )
                raise InvalidArgumentError(msg)

        if self.uncertainty_factor < 0:
            msg = (
                "The uncertainty factor must be non-negative. "
                f"You tried {self.uncertainty_factor}"
            )
            raise InvalidArgumentError(msg)

        if (
            self.date1 is not None
            and self.date3 is not None
            and self.date1 == self.date3
        ):
            msg = (
                "Double pair mode requires two different pair dates. "
                f"You gave date {self.date1} for both pairs."
            )
            raise InvalidArgumentError(msg)

        if self.data_range is not None:
            lo, hi = self.data_range
            if lo > hi:
                msg = f"Invalid data range: min {lo} is greater than max {hi}"
                raise InvalidArgumentError(msg)
            object.__setattr__(self, "data_range", (float(lo), float(hi)))

        # Accept plain strings, e.g. from YAML.
        try:
            weighting = TempDiffWeighting(self.use_temp_diff_for_weights)
        except ValueError:
            valid = [w.value for w in TempDiffWeighting]
            msg = (
                "Unknown temporal weighting "
                f"{self.use_temp_diff_for_weights!r}. Valid: {valid}"
            )
            raise InvalidArgumentError(msg) from None
        object.__setattr__(self, "use_temp_diff_for_weights", weighting)
        object.__setattr__(self, "win_size", int(self.win_size))

    @property
    def is_double_pair_mode(self) -> bool:
        return self.date1 is not None and self.date3 is not None

    @property
    def pair_dates(self) -> tuple[int, ...]:
        """Dates of the configured pairs (one or two, empty if unset)."""
        return tuple(d for d in (self.date1, self.date3) if d is not None)

    @property
    def use_temp_diff(self) -> bool:
        """Resolved temporal weighting for the configured pair mode."""
        return self.use_temp_diff_for_weights.resolve(self.is_double_pair_mode)

    def validate(self) -> StarfmOptions:
        """Check that the options are complete enough to predict.

        Returns:
            ``self``, so calls can be chained.

        Raises:
            ConfigurationError: If no pair date is set or the resolution
                tags are equal.
        """
        if self.date1 is None:
            msg = (
                "No input pair date has been set. At least one pair date "
                "is required for prediction"
            )
            raise ConfigurationError(msg)

        if self.high_tag == self.low_tag:
            msg = (
                "The resolution tags for the input pairs have to be "
                f"different. You chose {self.high_tag!r} for both."
            )
            raise ConfigurationError(msg)

        return self

    def replace(self, **changes: Any) -> StarfmOptions:
        """Return a copy with *changes* applied (and re-checked)."""
        return dataclasses.replace(self, **changes)

    def with_single_pair(self, date: int) -> StarfmOptions:
        return self.replace(date1=date, date3=None)

    def with_double_pair(self, date1: int, date3: int) -> StarfmOptions:
        return self.replace(date1=date1, date3=date3)
