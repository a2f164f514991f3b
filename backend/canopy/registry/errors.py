# Overview: Exception hierarchy for registry API failures.


class RegistryError(Exception):
    """Base class for every failure talking to the registry."""

    status_code = 0

    def __init__(self, message: str, status_code: int = 0):
        super().__init__(message)
        self.message = message
        self.status_code = status_code

    def to_dict(self) -> dict:
        return {"status": self.status_code, "message": self.message}


class RegistryApiError(RegistryError):
    """Registry answered with a non-2xx status (validation, auth, rate limit)."""

    @property
    def is_auth_error(self) -> bool:
        return self.status_code in (401, 403)

    @property
    def is_validation_error(self) -> bool:
        return self.status_code in (400, 422)


class RegistryTransportError(RegistryError):
    """Network failure: the request never produced a registry response."""
    pass


class RegistryTimeoutError(RegistryTransportError):
    """Request exceeded the configured timeout."""
    pass


def is_transport_failure(exc: Exception) -> bool:
    """
    True when a failure must abort the whole routine rather than one item.

    Auth failures and server errors on a listing call count as transport
    failures; item-level validation responses do not.
    """
    if isinstance(exc, RegistryTransportError):
        return True
    if isinstance(exc, RegistryApiError):
        return exc.is_auth_error or exc.status_code >= 500 or exc.status_code == 429
    return False
