"""Fusion algorithms."""

from fusion_pipeline.fusors.base import BaseFusor
from fusion_pipeline.fusors.starfm import StarfmFusor

__all__ = ["BaseFusor", "StarfmFusor"]
