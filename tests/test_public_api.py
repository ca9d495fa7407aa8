"""Tests for the package's public surface."""

from __future__ import annotations

import pytest

import observekit
from observekit.errors import ErrorCodes


class TestPublicApi:
    @pytest.mark.parametrize("name", observekit.__all__)
    def test_exported_name_resolves(self, name):
        assert getattr(observekit, name) is not None

    def test_version(self):
        assert observekit.__version__ == "0.1.0"


class TestErrorCodes:
    def test_codes_match_errors(self):
        assert observekit.ConfigNotFoundError("x.yaml").code == ErrorCodes.CONFIG_NOT_FOUND
        assert observekit.ConfigError("bad").code == ErrorCodes.CONFIG_INVALID
        assert observekit.RegistryRequiredError("x").code == ErrorCodes.REGISTRY_REQUIRED
        assert observekit.InvalidInputError().code == ErrorCodes.GENERAL_INVALID_INPUT
        assert observekit.ObservationStateError("x", "stopped", "tag").code == ErrorCodes.OBSERVATION_STATE

    def test_codes_are_immutable(self):
        with pytest.raises(AttributeError):
            ErrorCodes().CONFIG_INVALID = "OTHER"

    def test_str_includes_code(self):
        assert str(observekit.ConfigError("bad value")) == "[CONFIG_INVALID] bad value"
