"""
Exception types shared by the booking core and its collaborators.
"""

from __future__ import annotations


class TargetValidationError(Exception):
    """Raised when a reservation target fails validation.

    Carries every violated constraint, not just the first one.
    """

    def __init__(self, errors: list[str]):
        self.errors = list(errors)
        super().__init__("Invalid target: " + "; ".join(self.errors))


class GatewayError(Exception):
    """Base class for failures talking to the reservation API."""

    pass


class TransientGatewayError(GatewayError):
    """Network, timeout or non-auth HTTP failure. The attempt had no effect."""

    pass


class AuthenticationError(GatewayError):
    """Custom exception for authentication failures (401/403 from the API)."""

    pass


class PersistenceError(Exception):
    """Campaign state could not be loaded or durably saved."""

    pass


class SchedulingInvariantError(Exception):
    """Internal scheduling bookkeeping is inconsistent for a target."""

    pass
