"""Base interface for data fusion algorithms.

Every fusion algorithm in the pipeline inherits from :class:`BaseFusor`
and implements :meth:`process_options` and :meth:`predict`. The base
class holds the source :class:`~fusion_pipeline.image_set.ImageSet` and
the output raster, which is kept between predictions so that pixels a
prediction does not touch keep their previous values.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any

import numpy as np

from fusion_pipeline.exceptions import FusionError
from fusion_pipeline.image_set import ImageSet

logger = logging.getLogger(__name__)


class BaseFusor(ABC):
    """Abstract base for all fusion algorithms.

    Attributes:
        name: Human-readable algorithm identifier used in logs.
    """

    name: str

    def __init__(self, images: ImageSet | None = None) -> None:
        self.images = images
        self._output: np.ndarray | None = None

    def src_images(self, images: ImageSet) -> BaseFusor:
        """Set the image set to read from.

        Returns:
            ``self`` for method chaining.
        """
        self.images = images
        return self

    @abstractmethod
    def process_options(self, options: Any) -> BaseFusor:
        """Validate and store the options for the next predictions.

        Returns:
            ``self`` for method chaining.
        """

    @abstractmethod
    def predict(
        self,
        date2: int,
        mask: np.ndarray | None = None,
    ) -> np.ndarray:
        """Predict the high resolution image at *date2*.

        Args:
            date2: Date of the low resolution image to predict from.
            mask: Optional mask (nonzero = valid) restricting which
                pixels are used and predicted.

        Returns:
            The output raster, also available as :attr:`output`.
        """

    @property
    def output(self) -> np.ndarray:
        """Raster written by the last :meth:`predict` call.

        Raises:
            FusionError: If nothing has been predicted yet.
        """
        if self._output is None:
            msg = f"{self.name}: no prediction has been made yet"
            raise FusionError(msg)
        return self._output

    # ------------------------------------------------------------------
    # Shared helpers
    # ------------------------------------------------------------------

    def _require_images(self) -> ImageSet:
        if self.images is None:
            msg = (
                f"{self.name}: no image set attached. "
                "Call src_images() before predict()."
            )
            raise FusionError(msg)
        return self.images

    def _prepare_output(
        self,
        shape: tuple[int, ...],
        dtype: np.dtype,
    ) -> np.ndarray:
        """Return the output raster, re-allocating it only when needed.

        An output of matching shape and type is reused as-is, so pixels
        that a prediction skips keep their previous values.
        """
        out = self._output
        if out is None or out.shape != shape or out.dtype != dtype:
            logger.debug(
                "Allocating new %s output of shape %s", np.dtype(dtype), shape
            )
            out = np.zeros(shape, dtype=dtype)
            self._output = out
        return out
