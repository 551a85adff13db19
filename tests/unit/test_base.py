"""Unit tests for BaseFusor shared helpers."""

from __future__ import annotations

import numpy as np
import pytest

from fusion_pipeline.exceptions import FusionError
from fusion_pipeline.fusors.base import BaseFusor
from fusion_pipeline.image_set import ImageSet


# We cannot instantiate BaseFusor directly; create a trivial concrete subclass.
class _Stub(BaseFusor):
    name = "stub"

    def process_options(self, options):
        return self

    def predict(self, date2, mask=None):
        images = self._require_images()
        source = images.get("low", date2)
        out = self._prepare_output(source.shape, source.dtype)
        out[...] = source
        return out


def _images(*dates: int) -> ImageSet:
    images = ImageSet()
    for d in dates:
        images.set("low", d, np.full((3, 4), d, dtype=np.uint8))
    return images


# -- output -------------------------------------------------------------------


class TestOutput:
    def test_before_predict_raises(self) -> None:
        with pytest.raises(FusionError, match="stub"):
            _ = _Stub().output

    def test_set_by_predict(self) -> None:
        fusor = _Stub(_images(1))
        result = fusor.predict(1)
        assert fusor.output is result
        assert np.all(result == 1)


# -- _prepare_output ----------------------------------------------------------


class TestPrepareOutput:
    def test_reused_for_same_shape_and_type(self) -> None:
        fusor = _Stub()
        first = fusor._prepare_output((3, 4), np.dtype(np.uint8))
        first[0, 0] = 9
        second = fusor._prepare_output((3, 4), np.dtype(np.uint8))
        assert second is first
        assert second[0, 0] == 9

    def test_new_shape_reallocates(self) -> None:
        fusor = _Stub()
        first = fusor._prepare_output((3, 4), np.dtype(np.uint8))
        second = fusor._prepare_output((3, 4, 2), np.dtype(np.uint8))
        assert second is not first
        assert second.shape == (3, 4, 2)

    def test_new_type_reallocates_zeroed(self) -> None:
        fusor = _Stub()
        first = fusor._prepare_output((3, 4), np.dtype(np.uint8))
        first[...] = 5
        second = fusor._prepare_output((3, 4), np.dtype(np.float32))
        assert second.dtype == np.float32
        assert np.all(second == 0)


# -- src_images ---------------------------------------------------------------


class TestSrcImages:
    def test_chaining(self) -> None:
        fusor = _Stub()
        images = _images(2)
        assert fusor.src_images(images) is fusor
        assert fusor.images is images

    def test_predict_without_images(self) -> None:
        with pytest.raises(FusionError, match="src_images"):
            _Stub().predict(1)
