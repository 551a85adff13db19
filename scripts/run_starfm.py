"""Run STARFM predictions for a YAML job file.

Reads every image of the job with rasterio, plans the predictions from
the pair and prediction dates, and writes one GeoTIFF per prediction:
``<prefix><date2>_from_<date1>[_and_<date3>].tif``. Pixels that are
invalid in the prediction mask are set to a nodata value that no valid
predicted pixel uses.

Usage:
    uv run python scripts/run_starfm.py --config config/starfm_example.yaml
    uv run python scripts/run_starfm.py --config job.yaml --dry-run
    uv run python scripts/run_starfm.py --config job.yaml --single-pair
"""

from __future__ import annotations

import argparse
import logging
import time
from pathlib import Path
from typing import Any

import numpy as np
import rasterio
import rasterio.windows

from fusion_pipeline.config import FusionConfig, build_options, load_config
from fusion_pipeline.fusors import StarfmFusor
from fusion_pipeline.image_set import ImageSet
from fusion_pipeline.jobs import PredictionJob, job_options, plan_jobs
from fusion_pipeline.logging_utils import (
    get_project_root,
    setup_file_logging,
    setup_logging,
)
from fusion_pipeline.masks import (
    combine_masks,
    fill_masked,
    find_nodata_value,
    mask_from_ranges,
)
from fusion_pipeline.options import StarfmOptions
from fusion_pipeline.raster import Rectangle, channels

setup_logging()
log = logging.getLogger(__name__)

PROJECT_ROOT = get_project_root()

Profiles = dict[tuple[str, int], dict[str, Any]]


# ---------------------------------------------------------------------------
# Raster I/O
# ---------------------------------------------------------------------------


def read_raster(path: Path) -> tuple[np.ndarray, dict[str, Any]]:
    """Read a raster as ``(H, W)`` or ``(H, W, C)`` plus its profile."""
    with rasterio.open(path) as src:
        data = src.read()
        profile = dict(src.profile)
    image = data[0] if data.shape[0] == 1 else np.transpose(data, (1, 2, 0))
    return np.ascontiguousarray(image), profile


def write_raster(
    path: Path,
    image: np.ndarray,
    profile: dict[str, Any],
    *,
    area: Rectangle | None = None,
    nodata: float | None = None,
) -> None:
    """Write *image* as GeoTIFF, reusing the georeferencing of *profile*."""
    out_profile = dict(profile)
    out_profile.update(
        driver="GTiff",
        dtype=image.dtype.name,
        count=channels(image),
        height=image.shape[0],
        width=image.shape[1],
        nodata=nodata,
    )
    if area is not None and "transform" in profile:
        window = rasterio.windows.Window(
            area.x, area.y, area.width, area.height
        )
        out_profile["transform"] = rasterio.windows.transform(
            window, profile["transform"]
        )

    if image.ndim == 2:
        bands = image[np.newaxis]
    else:
        bands = np.transpose(image, (2, 0, 1))
    path.parent.mkdir(parents=True, exist_ok=True)
    with rasterio.open(path, "w", **out_profile) as dst:
        dst.write(bands)


def load_images(config: FusionConfig) -> tuple[ImageSet, Profiles]:
    """Read all images of *config* into an :class:`ImageSet`."""
    images = ImageSet()
    profiles: Profiles = {}
    for entry in config.images:
        if not entry.file.exists():
            msg = f"Image file not found: {entry.file}"
            raise FileNotFoundError(msg)
        image, profile = read_raster(entry.file)
        images.set(entry.tag, entry.date, image)
        profiles[(entry.tag, entry.date)] = profile
        log.info(
            "Loaded %s (tag=%s, date=%d, shape=%s, dtype=%s)",
            entry.file.name,
            entry.tag,
            entry.date,
            image.shape,
            image.dtype,
        )
    return images, profiles


# ---------------------------------------------------------------------------
# Masks
# ---------------------------------------------------------------------------


def load_base_mask(config: FusionConfig) -> np.ndarray | None:
    if config.mask.file is None:
        return None
    mask, _ = read_raster(config.mask.file)
    return np.where(mask != 0, 255, 0).astype(np.uint8)


def prediction_mask(
    config: FusionConfig,
    images: ImageSet,
    profiles: Profiles,
    keys: list[tuple[str, int]],
    base_mask: np.ndarray | None,
) -> np.ndarray | None:
    """Combine the base mask with range and nodata masks of *keys*."""
    settings = config.mask
    masks = [base_mask]
    for tag, date in keys:
        nodata = None
        if settings.use_nodata:
            nodata = profiles[(tag, date)].get("nodata")
        has_ranges = bool(settings.valid_ranges or settings.invalid_ranges)
        if not has_ranges and nodata is None:
            continue
        masks.append(
            mask_from_ranges(
                images.get(tag, date),
                settings.valid_ranges,
                settings.invalid_ranges,
                nodata,
            )
        )
    return combine_masks(*masks)


# ---------------------------------------------------------------------------
# Prediction
# ---------------------------------------------------------------------------


def output_filename(prefix: str, date2: int, options: StarfmOptions) -> str:
    name = f"{prefix}{date2}_from_{options.date1}"
    if options.date3 is not None:
        name += f"_and_{options.date3}"
    return f"{name}.tif"


def run_job(
    job: PredictionJob,
    config: FusionConfig,
    fusor: StarfmFusor,
    images: ImageSet,
    base_options: StarfmOptions,
    profiles: Profiles,
    base_mask: np.ndarray | None,
    *,
    double_pair: bool,
) -> int:
    """Predict every date of *job*. Returns the number of files written."""
    n_written = 0
    for options in job_options(job, base_options, double_pair=double_pair):
        fusor.process_options(options)
        pair_keys = [
            (tag, date)
            for date in options.pair_dates
            for tag in (config.high_tag, config.low_tag)
        ]
        for date2 in job.prediction_dates:
            keys = [*pair_keys, (config.low_tag, date2)]
            mask = prediction_mask(config, images, profiles, keys, base_mask)

            t0 = time.monotonic()
            prediction = fusor.predict(date2, mask).copy()
            elapsed = time.monotonic() - t0

            area = options.prediction_area
            nodata = None
            if mask is not None:
                area_mask = (area or Rectangle.full(mask.shape)).crop(mask)
                nodata = find_nodata_value(prediction, area_mask)
                if nodata is None:
                    log.warning(
                        "No free nodata value for date %d; invalid pixels "
                        "keep their predicted values",
                        date2,
                    )
                else:
                    fill_masked(prediction, area_mask, nodata)

            out_path = config.output_path / output_filename(
                config.output_prefix, date2, options
            )
            write_raster(
                out_path,
                prediction,
                profiles[(config.low_tag, date2)],
                area=area,
                nodata=nodata,
            )
            n_written += 1
            log.info("Wrote %s (%.1fs)", out_path, elapsed)
    return n_written


def run_starfm(
    config: FusionConfig,
    *,
    double_pair: bool | None = None,
    dry_run: bool = False,
) -> int:
    """Plan and run all predictions of *config*.

    Returns:
        Number of predicted images written.
    """
    if double_pair is None:
        double_pair = config.double_pair_mode

    images, profiles = load_images(config)
    jobs = plan_jobs(images, config.high_tag, config.low_tag)
    if dry_run:
        for job in jobs:
            log.info("Job %s", job)
        log.info("Dry run: %d job(s) planned, nothing predicted", len(jobs))
        return 0

    setup_file_logging(config.output_path, name="starfm")
    dtype = images.get_any().dtype
    base_options = build_options(config, dtype)
    base_mask = load_base_mask(config)
    fusor = StarfmFusor(images)

    n_written = 0
    for job in jobs:
        n_written += run_job(
            job,
            config,
            fusor,
            images,
            base_options,
            profiles,
            base_mask,
            double_pair=double_pair,
        )
    log.info("--- STARFM Complete ---")
    log.info("Predicted images: %d", n_written)
    log.info("Output: %s", config.output_path)
    return n_written


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Predict high resolution images with STARFM.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to the fusion job YAML config.",
    )
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument(
        "--double-pair",
        dest="double_pair",
        action="store_true",
        default=None,
        help="Predict dates between two pairs from both pairs at once.",
    )
    mode.add_argument(
        "--single-pair",
        dest="double_pair",
        action="store_false",
        help="Predict dates between two pairs once from each pair.",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Print the job plan without predicting.",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)

    config_path = args.config
    if config_path is None:
        config_path = PROJECT_ROOT / "config" / "starfm_example.yaml"

    log.info("Loading config: %s", config_path)
    config = load_config(config_path)
    run_starfm(config, double_pair=args.double_pair, dry_run=args.dry_run)


if __name__ == "__main__":
    main()
