"""Custom exception hierarchy for the fusion pipeline.

All domain-specific exceptions inherit from :class:`FusionError`, which
itself inherits from :class:`Exception`. This enables callers to catch
broad (``except FusionError``) or narrow (``except SizeError``)
depending on context.

Every error is deterministic: it is raised while checking options or
inputs, before any output is written, and retrying with the same inputs
fails the same way.
"""

from __future__ import annotations


class FusionError(Exception):
    """Base exception for all fusion pipeline errors."""


class ConfigurationError(FusionError, ValueError):
    """Raised when options or a job configuration are invalid.

    Inherits from both :class:`FusionError` and :class:`ValueError` so
    callers who catch generic ``ValueError`` still see these.
    """


class InvalidArgumentError(ConfigurationError):
    """Raised immediately when a single option gets an invalid value.

    Examples are an even window size or fewer than one class.
    """


class NotFoundError(FusionError, LookupError):
    """Raised when a required raster is not available.

    Inherits from both :class:`FusionError` and :class:`LookupError`.
    """


class ImageTypeError(FusionError, TypeError):
    """Raised when element types or channel counts do not fit.

    Covers mismatching types between rasters, unsupported element
    types and invalid mask types or channel counts.
    """


class SizeError(FusionError, ValueError):
    """Raised when raster, mask or prediction area sizes do not fit."""
