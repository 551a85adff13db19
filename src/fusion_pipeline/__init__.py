"""Fusion Pipeline - STARFM spatiotemporal image fusion.

Public API exports for the core fusion library.
"""

from fusion_pipeline.exceptions import (
    ConfigurationError,
    FusionError,
    ImageTypeError,
    InvalidArgumentError,
    NotFoundError,
    SizeError,
)
from fusion_pipeline.fusors.base import BaseFusor
from fusion_pipeline.fusors.starfm import StarfmFusor
from fusion_pipeline.image_set import ImageSet
from fusion_pipeline.options import StarfmOptions, TempDiffWeighting
from fusion_pipeline.raster import Rectangle

__all__ = [
    "BaseFusor",
    "ConfigurationError",
    "FusionError",
    "ImageSet",
    "ImageTypeError",
    "InvalidArgumentError",
    "NotFoundError",
    "Rectangle",
    "SizeError",
    "StarfmFusor",
    "StarfmOptions",
    "TempDiffWeighting",
]
