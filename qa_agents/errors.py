"""Failure conditions raised across the plan/resolve/execute pipeline."""

from __future__ import annotations


class AutomationError(Exception):
    """Base class for every pipeline failure."""


class PlanningFailed(AutomationError):
    """The text oracle produced no usable actions."""


class DriverSessionError(AutomationError):
    """The device session could not be started."""


class ResolutionDegraded(AutomationError):
    """The resolver fell back to a fixed default locator. Logged, never raised."""


class ElementNotFound(AutomationError):
    """A locator lookup timed out on the device."""

    def __init__(self, locator: str, timeout: float) -> None:
        super().__init__(f"Element not found after {timeout:g}s: {locator}")
        self.locator = locator
        self.timeout = timeout


class InvalidActionValue(AutomationError):
    """An action carries a malformed numeric/enum/identifier value."""


class DriverOperationFailed(AutomationError):
    """Any other driver-level failure."""


class EvidenceCaptureFailed(AutomationError):
    """A screenshot could not be captured or stored."""


class OracleError(AutomationError):
    """The text or vision oracle could not be reached or answered with an error."""
