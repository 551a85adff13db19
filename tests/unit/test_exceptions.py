"""Unit tests for the custom exception hierarchy."""

from __future__ import annotations

import pytest

from fusion_pipeline.exceptions import (
    ConfigurationError,
    FusionError,
    ImageTypeError,
    InvalidArgumentError,
    NotFoundError,
    SizeError,
)


class TestFusionError:
    def test_is_exception(self) -> None:
        assert issubclass(FusionError, Exception)

    def test_can_be_raised_and_caught(self) -> None:
        with pytest.raises(FusionError):
            raise FusionError("base error")


class TestConfigurationError:
    def test_is_fusion_error(self) -> None:
        assert issubclass(ConfigurationError, FusionError)

    def test_caught_by_value_error(self) -> None:
        with pytest.raises(ValueError):
            raise ConfigurationError("equal tags")


class TestInvalidArgumentError:
    def test_is_configuration_error(self) -> None:
        assert issubclass(InvalidArgumentError, ConfigurationError)

    def test_caught_by_configuration_error(self) -> None:
        with pytest.raises(ConfigurationError):
            raise InvalidArgumentError("even window")


class TestNotFoundError:
    def test_is_lookup_error(self) -> None:
        assert issubclass(NotFoundError, LookupError)

    def test_caught_by_fusion_error(self) -> None:
        with pytest.raises(FusionError):
            raise NotFoundError("missing image")


class TestImageTypeError:
    def test_is_type_error(self) -> None:
        assert issubclass(ImageTypeError, TypeError)

    def test_is_fusion_error(self) -> None:
        assert issubclass(ImageTypeError, FusionError)


class TestSizeError:
    def test_is_value_error(self) -> None:
        assert issubclass(SizeError, ValueError)

    def test_not_a_configuration_error(self) -> None:
        assert not issubclass(SizeError, ConfigurationError)


class TestHierarchy:
    @pytest.mark.parametrize(
        "exc_class",
        [
            ConfigurationError,
            InvalidArgumentError,
            NotFoundError,
            ImageTypeError,
            SizeError,
        ],
    )
    def test_all_inherit_from_fusion_error(
        self, exc_class: type[FusionError]
    ) -> None:
        assert issubclass(exc_class, FusionError)

    def test_message_preserved(self) -> None:
        err = SizeError("images differ in size")
        assert str(err) == "images differ in size"
