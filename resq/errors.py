"""Error taxonomy shared by the store, the sequencer and the HTTP layer."""

from typing import Optional


class ResQError(Exception):
    kind = "error"
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(ResQError):
    """User-correctable input problem. ``field`` names the offending input."""

    kind = "validation_error"
    status_code = 422

    def __init__(self, field: str, message: str):
        super().__init__(message)
        self.field = field


class NotFound(ResQError):
    kind = "not_found"
    status_code = 404


class InvalidTransition(ResQError):
    kind = "invalid_transition"
    status_code = 409

    def __init__(self, message: str, current: Optional[str] = None, requested: Optional[str] = None):
        super().__init__(message)
        self.current = current
        self.requested = requested


class AlreadyTerminal(InvalidTransition):
    kind = "already_terminal"


class GeolocationUnavailable(ResQError):
    kind = "geolocation_unavailable"


class ProviderInitError(ResQError):
    kind = "provider_init_error"
    status_code = 503


class TransportError(ResQError):
    kind = "transport_error"
    status_code = 503


class FeatureDisabled(ResQError):
    kind = "feature_disabled"
    status_code = 503
