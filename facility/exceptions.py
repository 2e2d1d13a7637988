"""
Exception types raised by the facility status service.

File-system problems never surface through these: missing or unreadable
logs are reported as "no data" by the services that read them.
"""


class FacilityError(Exception):
    """Base class for facility service errors."""


class ConfigError(FacilityError):
    """Raised when environment or identity configuration is invalid."""


class RegistrationError(FacilityError):
    """
    Raised when a registration request cannot be applied.

    Typically a missing agent name or session id on a "start" request.
    Route handlers turn this into a 400 response.
    """


class RegistryCorruptedError(FacilityError):
    """Raised when the registration registry file is not a JSON object."""

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Registry file {path} is corrupted: {reason}")
