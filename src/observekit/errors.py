"""Error hierarchy for observekit."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

__all__ = [
    "ObservationError",
    "ConfigNotFoundError",
    "ConfigError",
    "RegistryRequiredError",
    "InvalidInputError",
    "ObservationStateError",
    "ErrorCodes",
]


class ObservationError(Exception):
    """Base error for all observekit errors."""

    def __init__(
        self,
        code: str,
        message: str,
        details: dict[str, Any] | None = None,
        cause: Exception | None = None,
        trace_id: str | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.details: dict[str, Any] = details or {}
        self.cause = cause
        self.trace_id = trace_id
        self.timestamp = datetime.now(timezone.utc).isoformat()

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"


class ConfigNotFoundError(ObservationError):
    """Raised when a configuration file cannot be found."""

    def __init__(self, config_path: str, **kwargs: Any) -> None:
        super().__init__(
            code="CONFIG_NOT_FOUND",
            message=f"Configuration file not found: {config_path}",
            details={"config_path": config_path},
            **kwargs,
        )


class ConfigError(ObservationError):
    """Raised when configuration is invalid."""

    def __init__(self, message: str, **kwargs: Any) -> None:
        super().__init__(code="CONFIG_INVALID", message=message, **kwargs)


class RegistryRequiredError(ObservationError):
    """Raised when an observation is created without a registry."""

    def __init__(self, technical_name: str, **kwargs: Any) -> None:
        super().__init__(
            code="REGISTRY_REQUIRED",
            message=f"Observation '{technical_name}' requires an ObservationRegistry",
            details={"technical_name": technical_name},
            **kwargs,
        )


class InvalidInputError(ObservationError):
    """Raised for invalid arguments."""

    def __init__(self, message: str = "Invalid input", **kwargs: Any) -> None:
        super().__init__(code="GENERAL_INVALID_INPUT", message=message, **kwargs)


class ObservationStateError(ObservationError):
    """Raised when an operation is not allowed in the observation's current state."""

    def __init__(self, technical_name: str, state: str, operation: str, **kwargs: Any) -> None:
        super().__init__(
            code="OBSERVATION_STATE",
            message=f"Cannot {operation} observation '{technical_name}' in state {state}",
            details={"technical_name": technical_name, "state": state, "operation": operation},
            **kwargs,
        )

    @property
    def state(self) -> str:
        """The lifecycle state the observation was in."""
        return self.details["state"]

    @property
    def operation(self) -> str:
        """The rejected operation."""
        return self.details["operation"]


class ErrorCodes:
    """All observekit error codes as constants.

    Example:
        if error.code == ErrorCodes.OBSERVATION_STATE:
            handle_misuse()
    """

    CONFIG_NOT_FOUND = "CONFIG_NOT_FOUND"
    CONFIG_INVALID = "CONFIG_INVALID"
    REGISTRY_REQUIRED = "REGISTRY_REQUIRED"
    GENERAL_INVALID_INPUT = "GENERAL_INVALID_INPUT"
    OBSERVATION_STATE = "OBSERVATION_STATE"

    def __setattr__(self, name: str, value: object) -> None:
        raise AttributeError("ErrorCodes is immutable")
