"""Planning of prediction jobs from the dates present in an image set.

Dates with both a high and a low resolution image are *pair dates*,
dates with only a low resolution image are *prediction dates*. The
prediction dates are grouped into intervals between consecutive pair
dates, e.g. for pairs at 1, 7 and 14 and predictions at 3, 4, 10 and 15::

    [(1) 3 4 (7)] [(7) 10 (14)] [(14) 15]

Each interval can be predicted in double-pair mode from both of its pairs
or twice in single-pair mode, once from each side.
"""

from __future__ import annotations

import bisect
import logging
from dataclasses import dataclass

from fusion_pipeline.exceptions import NotFoundError
from fusion_pipeline.image_set import ImageSet
from fusion_pipeline.options import StarfmOptions

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PredictionJob:
    """Prediction dates sharing the same one or two pair dates."""

    pair_dates: tuple[int, ...]
    prediction_dates: tuple[int, ...]

    @property
    def is_interval(self) -> bool:
        return len(self.pair_dates) == 2

    def __str__(self) -> str:
        entries = [(d, f"({d})") for d in self.pair_dates]
        entries += [(d, str(d)) for d in self.prediction_dates]
        return "[" + " ".join(text for _, text in sorted(entries)) + "]"


def plan_jobs(
    images: ImageSet,
    high_tag: str,
    low_tag: str,
) -> list[PredictionJob]:
    """Group the prediction dates of *images* by their surrounding pairs.

    Prediction dates before the first or after the last pair date get a
    single-pair job with the nearest pair.

    Returns:
        Jobs ordered by date. Intervals without prediction dates are
        omitted.

    Raises:
        NotFoundError: If *images* holds no image with one of the tags,
            or there are prediction dates but no pair date.
    """
    available = images.tags()
    missing = [t for t in (high_tag, low_tag) if t not in available]
    if missing:
        msg = (
            f"No images with tag(s) {missing} in the image set. "
            f"Available tags: {available}"
        )
        raise NotFoundError(msg)

    high_dates = set(images.dates(high_tag))
    low_dates = images.dates(low_tag)
    pair_dates = [d for d in low_dates if d in high_dates]
    pred_dates = [d for d in low_dates if d not in high_dates]

    if not pred_dates:
        logger.info("Nothing to predict: every low resolution date has a pair")
        return []
    if not pair_dates:
        msg = (
            f"No image pairs found: no date has both a {high_tag!r} and a "
            f"{low_tag!r} image"
        )
        raise NotFoundError(msg)

    groups: dict[tuple[int, ...], list[int]] = {}
    for date in pred_dates:
        idx = bisect.bisect_left(pair_dates, date)
        if idx == 0:
            key: tuple[int, ...] = (pair_dates[0],)
        elif idx == len(pair_dates):
            key = (pair_dates[-1],)
        else:
            key = (pair_dates[idx - 1], pair_dates[idx])
        groups.setdefault(key, []).append(date)

    jobs = [
        PredictionJob(pair_dates=key, prediction_dates=tuple(dates))
        for key, dates in groups.items()
    ]
    jobs.sort(key=lambda j: j.prediction_dates[0])
    logger.info("Planned jobs: %s", " ".join(str(j) for j in jobs))
    return jobs


def job_options(
    job: PredictionJob,
    base: StarfmOptions,
    *,
    double_pair: bool = True,
) -> list[StarfmOptions]:
    """Options to predict every date of *job* with.

    Args:
        job: The job to run.
        base: Options without pair dates (tags, window size, ...).
        double_pair: Predict interval jobs from both pairs at once instead
            of once from each pair.

    Returns:
        One options object per prediction run over the job's dates.
    """
    if job.is_interval and double_pair:
        return [base.with_double_pair(*job.pair_dates)]
    return [base.with_single_pair(d) for d in job.pair_dates]
