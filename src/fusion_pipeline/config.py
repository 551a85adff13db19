"""Fusion job configuration loader.

Reads a YAML job file and exposes it as frozen dataclasses. A job file
lists the input images and the STARFM settings::

    fusion:
      high_tag: high            # optional, inferred from the images
      low_tag: low
      double_pair_mode: true
      output_dir: results/starfm
      output_prefix: predicted_
    images:
      - {file: landsat_1.tif, date: 1, tag: high}
      - {file: modis_1.tif,   date: 1, tag: low}
      - {file: modis_2.tif,   date: 2, tag: low}
    options:
      win_size: 31
      number_classes: 40
      prediction_area: {x: 0, y: 0, width: 100, height: 100}
    mask:
      file: null
      valid_ranges: [[0, 10000]]
      invalid_ranges: []
      use_nodata: true

Relative image and mask paths are resolved against the directory of the
job file. ``config/starfm_example.yaml`` ships as a template.
"""

from __future__ import annotations

import dataclasses
import logging
from collections import Counter
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import numpy as np
import yaml

from fusion_pipeline.exceptions import ConfigurationError
from fusion_pipeline.options import StarfmOptions
from fusion_pipeline.raster import Rectangle

logger = logging.getLogger(__name__)

# Option fields that come from the job plan or the fusion section.
_MANAGED_OPTIONS = frozenset({"date1", "date3", "high_tag", "low_tag"})

CONFIGURABLE_OPTIONS = frozenset(
    f.name for f in dataclasses.fields(StarfmOptions)
) - _MANAGED_OPTIONS
"""Keys accepted in the ``options`` section."""


@dataclass(frozen=True)
class ImageEntry:
    """One input image of the job."""

    file: Path
    date: int
    tag: str


@dataclass(frozen=True)
class MaskConfig:
    """How prediction masks are built.

    Attributes:
        file: Optional mask image (nonzero = valid) applied to all dates.
        valid_ranges: Closed value ranges marking valid image values.
        invalid_ranges: Closed value ranges marking invalid image values.
        use_nodata: Treat the nodata value of each image as invalid.
    """

    file: Path | None = None
    valid_ranges: list[tuple[float, float]] = field(default_factory=list)
    invalid_ranges: list[tuple[float, float]] = field(default_factory=list)
    use_nodata: bool = True


@dataclass(frozen=True)
class FusionConfig:
    """Top-level job configuration."""

    images: list[ImageEntry]
    high_tag: str
    low_tag: str
    double_pair_mode: bool = True
    output_dir: str = "results/starfm"
    output_prefix: str = "predicted_"
    options: dict[str, Any] = field(default_factory=dict)
    mask: MaskConfig = field(default_factory=MaskConfig)

    @property
    def output_path(self) -> Path:
        return Path(self.output_dir)


def _require_mapping(value: Any, name: str) -> dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        msg = f"Config {name!r} must be a mapping"
        raise ConfigurationError(msg)
    return value


def _parse_ranges(value: Any, name: str) -> list[tuple[float, float]]:
    """Parse ``[[lo, hi], ...]`` into a list of float tuples."""
    if value is None:
        return []
    if not isinstance(value, list):
        msg = f"mask.{name} must be a list of [lo, hi] pairs"
        raise ConfigurationError(msg)
    ranges = []
    for item in value:
        if (
            not isinstance(item, (list, tuple))
            or len(item) != 2
            or not all(isinstance(v, (int, float)) for v in item)
        ):
            msg = (
                f"mask.{name} entries must be [lo, hi] number pairs, "
                f"got {item!r}"
            )
            raise ConfigurationError(msg)
        ranges.append((float(item[0]), float(item[1])))
    return ranges


def _resolve(base_dir: Path, file: Any) -> Path:
    path = Path(str(file))
    return path if path.is_absolute() else base_dir / path


def _parse_images(raw: Any, base_dir: Path) -> list[ImageEntry]:
    if not isinstance(raw, list) or not raw:
        msg = "Config 'images' must be a non-empty list"
        raise ConfigurationError(msg)

    images: list[ImageEntry] = []
    seen: set[tuple[str, int]] = set()
    for item in raw:
        if not isinstance(item, dict):
            msg = f"Each image must be a mapping, got {type(item).__name__}"
            raise ConfigurationError(msg)
        for key in ("file", "date", "tag"):
            if key not in item:
                msg = f"Image entry {item!r} missing required key: {key!r}"
                raise ConfigurationError(msg)
        if not isinstance(item["date"], int) or isinstance(item["date"], bool):
            msg = f"Image date must be an integer, got {item['date']!r}"
            raise ConfigurationError(msg)
        tag = str(item["tag"])
        if (tag, item["date"]) in seen:
            msg = f"Duplicate image for tag {tag!r} at date {item['date']}"
            raise ConfigurationError(msg)
        seen.add((tag, item["date"]))
        images.append(
            ImageEntry(
                file=_resolve(base_dir, item["file"]),
                date=item["date"],
                tag=tag,
            )
        )
    return images


def _parse_mask(raw: Any, base_dir: Path) -> MaskConfig:
    mask = _require_mapping(raw, "mask")
    file = mask.get("file")
    return MaskConfig(
        file=None if file is None else _resolve(base_dir, file),
        valid_ranges=_parse_ranges(mask.get("valid_ranges"), "valid_ranges"),
        invalid_ranges=_parse_ranges(
            mask.get("invalid_ranges"), "invalid_ranges"
        ),
        use_nodata=bool(mask.get("use_nodata", True)),
    )


def _validate_options(options: dict[str, Any]) -> None:
    unknown = set(options) - CONFIGURABLE_OPTIONS
    if unknown:
        msg = (
            f"Unknown option(s) {sorted(unknown)}. "
            f"Valid: {sorted(CONFIGURABLE_OPTIONS)}"
        )
        raise ConfigurationError(msg)


def infer_resolution_tags(images: list[ImageEntry]) -> tuple[str, str]:
    """Guess ``(high_tag, low_tag)`` from the image list.

    Exactly two tags must be used. High resolution images are the rarer
    ones, so the tag with fewer images is taken as high resolution.

    Raises:
        ConfigurationError: If not exactly two tags are present or both
            have the same number of images.
    """
    counts = Counter(entry.tag for entry in images)
    if len(counts) != 2:
        msg = (
            "Cannot infer the resolution tags: exactly two tags are "
            f"required, found {sorted(counts)}"
        )
        raise ConfigurationError(msg)
    (low, n_low), (high, n_high) = counts.most_common()
    if n_low == n_high:
        msg = (
            f"Cannot infer the resolution tags: {high!r} and {low!r} have "
            f"the same number of images ({n_low}). Set fusion.high_tag and "
            "fusion.low_tag."
        )
        raise ConfigurationError(msg)
    logger.info("Inferred resolution tags: high=%r, low=%r", high, low)
    return high, low


def load_config(path: str | Path) -> FusionConfig:
    """Load a fusion job configuration from a YAML file.

    Args:
        path: Path to the YAML config file.

    Returns:
        Parsed FusionConfig.

    Raises:
        FileNotFoundError: If the config file does not exist.
        ConfigurationError: If required keys are missing or types are wrong.
    """
    path = Path(path)
    if not path.exists():
        msg = f"Config file not found: {path}"
        raise FileNotFoundError(msg)

    with path.open() as fh:
        raw = yaml.safe_load(fh)

    if not isinstance(raw, dict) or "images" not in raw:
        msg = "Config missing required top-level key: 'images'"
        raise ConfigurationError(msg)

    base_dir = path.parent
    fusion = _require_mapping(raw.get("fusion"), "fusion")
    options = _require_mapping(raw.get("options"), "options")
    _validate_options(options)
    images = _parse_images(raw["images"], base_dir)

    high_tag = fusion.get("high_tag")
    low_tag = fusion.get("low_tag")
    if high_tag is None or low_tag is None:
        inferred_high, inferred_low = infer_resolution_tags(images)
        high_tag = inferred_high if high_tag is None else high_tag
        low_tag = inferred_low if low_tag is None else low_tag

    return FusionConfig(
        images=images,
        high_tag=str(high_tag),
        low_tag=str(low_tag),
        double_pair_mode=bool(fusion.get("double_pair_mode", True)),
        output_dir=str(fusion.get("output_dir", "results/starfm")),
        output_prefix=str(fusion.get("output_prefix", "predicted_")),
        options=dict(options),
        mask=_parse_mask(raw.get("mask"), base_dir),
    )


def default_uncertainty(dtype: np.dtype) -> float:
    """Default sigma for images of *dtype*: 1 for 8-bit, 50 otherwise."""
    return 1.0 if np.dtype(dtype).itemsize == 1 else 50.0


def build_options(config: FusionConfig, dtype: np.dtype) -> StarfmOptions:
    """Options for *config* without pair dates.

    Uncertainties that are not configured get :func:`default_uncertainty`
    for the image type.

    Raises:
        ConfigurationError: If an option value has the wrong shape.
        InvalidArgumentError: If an option value is out of range.
    """
    opts = dict(config.options)

    area = opts.get("prediction_area")
    if area is not None:
        try:
            opts["prediction_area"] = Rectangle.from_mapping(area)
        except (KeyError, TypeError, ValueError) as exc:
            msg = (
                "options.prediction_area must be a mapping with integer "
                f"x, y, width and height, got {area!r}"
            )
            raise ConfigurationError(msg) from exc

    data_range = opts.get("data_range")
    if data_range is not None:
        if not isinstance(data_range, (list, tuple)) or len(data_range) != 2:
            msg = f"options.data_range must be [min, max], got {data_range!r}"
            raise ConfigurationError(msg)
        opts["data_range"] = (float(data_range[0]), float(data_range[1]))

    sigma = default_uncertainty(dtype)
    opts.setdefault("temporal_uncertainty", sigma)
    opts.setdefault("spectral_uncertainty", sigma)

    return StarfmOptions(
        high_tag=config.high_tag, low_tag=config.low_tag, **opts
    )
