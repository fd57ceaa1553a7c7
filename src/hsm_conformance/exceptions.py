from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .status import ReturnValue


class HsmConformanceError(RuntimeError):
    """Base harness error."""


class HsmConfigurationError(HsmConformanceError):
    """Configuration is invalid or incomplete."""


class HsmOperationError(HsmConformanceError):
    """The module binding could not be set up or used."""


class TemplateError(HsmConformanceError, ValueError):
    """An attribute template was built incorrectly by the caller."""


class KeyPairError(HsmConformanceError):
    """A key-pair fixture was used outside its lifetime."""


class KeyPairGenerationError(HsmConformanceError):
    """The module refused to generate a fixture's key pair."""

    def __init__(self, status: "ReturnValue", message: str | None = None) -> None:
        self.status = status
        super().__init__(
            message or f"Key-pair generation failed: {status.name} (0x{status.value:x})"
        )


class ConformanceError(HsmConformanceError, AssertionError):
    """The module's behaviour did not match the expected outcome."""
