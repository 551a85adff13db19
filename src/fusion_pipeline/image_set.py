"""Keyed collection of rasters at different resolutions and dates.

An :class:`ImageSet` maps ``(resolution tag, date)`` to a raster. The
fusion algorithms only read from it; callers add the observations they
have and remove the ones they no longer need between predictions.
"""

from __future__ import annotations

import logging

import numpy as np

from fusion_pipeline.exceptions import NotFoundError

logger = logging.getLogger(__name__)


class ImageSet:
    """Rasters indexed by resolution tag and date.

    Example:
        >>> images = ImageSet()
        >>> images.set("high", 1, np.zeros((4, 4), dtype=np.uint8))
        >>> images.has("high", 1)
        True
    """

    def __init__(self) -> None:
        self._images: dict[tuple[str, int], np.ndarray] = {}

    def set(self, tag: str, date: int, image: np.ndarray) -> None:
        """Store *image* under ``(tag, date)``, replacing any previous one."""
        self._images[(tag, int(date))] = np.asarray(image)

    def has(self, tag: str, date: int) -> bool:
        return (tag, int(date)) in self._images

    def get(self, tag: str, date: int) -> np.ndarray:
        """Return the raster stored under ``(tag, date)``.

        Raises:
            NotFoundError: If no raster is stored under that key.
        """
        try:
            return self._images[(tag, int(date))]
        except KeyError:
            msg = f"No image with tag {tag!r} at date {date} in the image set"
            raise NotFoundError(msg) from None

    def remove(self, tag: str, date: int) -> None:
        """Remove the raster under ``(tag, date)``.

        Raises:
            NotFoundError: If no raster is stored under that key.
        """
        if not self.has(tag, date):
            msg = f"Cannot remove missing image with tag {tag!r} at date {date}"
            raise NotFoundError(msg)
        del self._images[(tag, int(date))]
        logger.debug("Removed image (%s, %d)", tag, date)

    def get_any(self) -> np.ndarray:
        """Return an arbitrary stored raster, e.g. to query its size.

        Raises:
            NotFoundError: If the set is empty.
        """
        for image in self._images.values():
            return image
        msg = "The image set is empty"
        raise NotFoundError(msg)

    def tags(self) -> list[str]:
        return sorted({tag for tag, _ in self._images})

    def dates(self, tag: str | None = None) -> list[int]:
        """Sorted dates, either for one *tag* or across all tags."""
        return sorted(
            {d for t, d in self._images if tag is None or t == tag}
        )

    def __len__(self) -> int:
        return len(self._images)

    def __contains__(self, key: object) -> bool:
        return key in self._images
