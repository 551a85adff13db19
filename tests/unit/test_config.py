"""Unit tests for the configuration module.

All tests use synthetic YAML via tmp_path - no dependency on real config files.
"""

from __future__ import annotations

from pathlib import Path

import numpy as np
import pytest
import yaml

from fusion_pipeline.config import (
    FusionConfig,
    ImageEntry,
    build_options,
    default_uncertainty,
    infer_resolution_tags,
    load_config,
)
from fusion_pipeline.exceptions import ConfigurationError, InvalidArgumentError
from fusion_pipeline.options import TempDiffWeighting
from fusion_pipeline.raster import Rectangle


def _write_yaml(data: dict, path: Path) -> None:
    path.write_text(yaml.dump(data, default_flow_style=False))


def _minimal_config() -> dict:
    return {
        "images": [
            {"file": "h1.tif", "date": 1, "tag": "high"},
            {"file": "l1.tif", "date": 1, "tag": "low"},
            {"file": "l2.tif", "date": 2, "tag": "low"},
        ],
    }


def _full_config() -> dict:
    """A richer config with all sections."""
    return {
        "fusion": {
            "high_tag": "landsat",
            "low_tag": "modis",
            "double_pair_mode": False,
            "output_dir": "out/",
            "output_prefix": "pred_",
        },
        "images": [
            {"file": "/data/h1.tif", "date": 1, "tag": "landsat"},
            {"file": "l1.tif", "date": 1, "tag": "modis"},
            {"file": "l2.tif", "date": 2, "tag": "modis"},
        ],
        "options": {
            "win_size": 31,
            "number_classes": 40,
            "use_temp_diff_for_weights": "on_double_pair",
            "prediction_area": {"x": 1, "y": 2, "width": 3, "height": 4},
            "data_range": [0, 10000],
            "temporal_uncertainty": 3,
        },
        "mask": {
            "file": "mask.tif",
            "valid_ranges": [[0, 10000]],
            "invalid_ranges": [[-1, -1]],
            "use_nodata": False,
        },
    }


def _load(data: dict, tmp_path: Path) -> FusionConfig:
    cfg_path = tmp_path / "job.yaml"
    _write_yaml(data, cfg_path)
    return load_config(cfg_path)


# -- Loading and parsing ------------------------------------------------------


class TestLoadConfig:
    def test_load_minimal(self, tmp_path: Path) -> None:
        cfg = _load(_minimal_config(), tmp_path)
        assert isinstance(cfg, FusionConfig)
        assert len(cfg.images) == 3
        assert cfg.double_pair_mode is True
        assert cfg.output_prefix == "predicted_"
        assert cfg.mask.file is None
        assert cfg.mask.use_nodata is True

    def test_minimal_infers_tags(self, tmp_path: Path) -> None:
        cfg = _load(_minimal_config(), tmp_path)
        assert (cfg.high_tag, cfg.low_tag) == ("high", "low")

    def test_relative_paths_resolved(self, tmp_path: Path) -> None:
        cfg = _load(_full_config(), tmp_path)
        assert cfg.images[0].file == Path("/data/h1.tif")
        assert cfg.images[1].file == tmp_path / "l1.tif"
        assert cfg.mask.file == tmp_path / "mask.tif"

    def test_load_full(self, tmp_path: Path) -> None:
        cfg = _load(_full_config(), tmp_path)
        assert cfg.high_tag == "landsat"
        assert cfg.double_pair_mode is False
        assert cfg.output_path == Path("out/")
        assert cfg.mask.valid_ranges == [(0.0, 10000.0)]
        assert cfg.mask.invalid_ranges == [(-1.0, -1.0)]
        assert cfg.mask.use_nodata is False
        assert cfg.options["win_size"] == 31

    def test_file_not_found(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "nonexistent.yaml")


class TestValidation:
    def test_missing_images(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigurationError, match="images"):
            _load({"fusion": {}}, tmp_path)

    def test_empty_images(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigurationError, match="non-empty"):
            _load({"images": []}, tmp_path)

    def test_image_missing_key(self, tmp_path: Path) -> None:
        data = _minimal_config()
        del data["images"][0]["tag"]
        with pytest.raises(ConfigurationError, match="'tag'"):
            _load(data, tmp_path)

    def test_date_not_int(self, tmp_path: Path) -> None:
        data = _minimal_config()
        data["images"][0]["date"] = "one"
        with pytest.raises(ConfigurationError, match="integer"):
            _load(data, tmp_path)

    def test_duplicate_image(self, tmp_path: Path) -> None:
        data = _minimal_config()
        data["images"].append({"file": "x.tif", "date": 1, "tag": "high"})
        with pytest.raises(ConfigurationError, match="Duplicate"):
            _load(data, tmp_path)

    def test_unknown_option(self, tmp_path: Path) -> None:
        data = _minimal_config()
        data["options"] = {"window": 5}
        with pytest.raises(ConfigurationError, match="Unknown option"):
            _load(data, tmp_path)

    def test_managed_option_rejected(self, tmp_path: Path) -> None:
        data = _minimal_config()
        data["options"] = {"date1": 1}
        with pytest.raises(ConfigurationError, match="Unknown option"):
            _load(data, tmp_path)

    def test_bad_range(self, tmp_path: Path) -> None:
        data = _minimal_config()
        data["mask"] = {"valid_ranges": [[0, 1, 2]]}
        with pytest.raises(ConfigurationError, match="valid_ranges"):
            _load(data, tmp_path)

    def test_options_not_mapping(self, tmp_path: Path) -> None:
        data = _minimal_config()
        data["options"] = [1, 2]
        with pytest.raises(ConfigurationError, match="mapping"):
            _load(data, tmp_path)


# -- Tag inference ------------------------------------------------------------


class TestInferResolutionTags:
    def _entries(self, tags: list[str]) -> list[ImageEntry]:
        return [
            ImageEntry(file=Path(f"{i}.tif"), date=i, tag=t)
            for i, t in enumerate(tags)
        ]

    def test_fewer_images_is_high(self) -> None:
        entries = self._entries(["a", "b", "b", "a", "b"])
        assert infer_resolution_tags(entries) == ("a", "b")

    def test_three_tags(self) -> None:
        with pytest.raises(ConfigurationError, match="exactly two"):
            infer_resolution_tags(self._entries(["a", "b", "c"]))

    def test_tie(self) -> None:
        with pytest.raises(ConfigurationError, match="same number"):
            infer_resolution_tags(self._entries(["a", "b"]))


# -- Building options ---------------------------------------------------------


class TestBuildOptions:
    def test_full_options(self, tmp_path: Path) -> None:
        cfg = _load(_full_config(), tmp_path)
        opts = build_options(cfg, np.dtype(np.int16))
        assert opts.high_tag == "landsat"
        assert opts.low_tag == "modis"
        assert opts.date1 is None
        assert opts.win_size == 31
        assert opts.number_classes == 40
        assert opts.prediction_area == Rectangle(1, 2, 3, 4)
        assert opts.data_range == (0.0, 10000.0)
        assert (
            opts.use_temp_diff_for_weights is TempDiffWeighting.ON_DOUBLE_PAIR
        )
        assert opts.temporal_uncertainty == 3
        assert opts.spectral_uncertainty == 50

    @pytest.mark.parametrize(
        ("dtype", "expected"),
        [
            (np.uint8, 1.0),
            (np.int8, 1.0),
            (np.uint16, 50.0),
            (np.float32, 50.0),
        ],
    )
    def test_default_uncertainty(self, dtype: type, expected: float) -> None:
        assert default_uncertainty(np.dtype(dtype)) == expected

    def test_uint8_defaults(self, tmp_path: Path) -> None:
        cfg = _load(_minimal_config(), tmp_path)
        opts = build_options(cfg, np.dtype(np.uint8))
        assert opts.temporal_uncertainty == 1.0
        assert opts.spectral_uncertainty == 1.0

    def test_bad_prediction_area(self, tmp_path: Path) -> None:
        data = _minimal_config()
        data["options"] = {"prediction_area": {"x": 1}}
        cfg = _load(data, tmp_path)
        with pytest.raises(ConfigurationError, match="prediction_area"):
            build_options(cfg, np.dtype(np.uint8))

    def test_invalid_value_propagates(self, tmp_path: Path) -> None:
        data = _minimal_config()
        data["options"] = {"win_size": 4}
        cfg = _load(data, tmp_path)
        with pytest.raises(InvalidArgumentError):
            build_options(cfg, np.dtype(np.uint8))
