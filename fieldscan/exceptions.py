"""Exceptions raised by the FieldScan core."""


class FieldScanError(Exception):
    """Base error for the FieldScan core."""


class ApiError(FieldScanError):
    """Backend call failed."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class NetworkError(ApiError):
    """Backend unreachable or timed out."""


class ServerError(ApiError):
    """Backend answered with 5xx."""


class EndpointNotFoundError(ApiError):
    """Route is missing on this backend (404/405/501)."""


class MalformedResponseError(ApiError):
    """Payload could not be decoded into the expected shape."""


class AuthenticationError(ApiError):
    """Token rejected (401)."""


class ReauthenticationRequired(FieldScanError):
    """Silent refresh failed; the technician has to sign in again."""


class ChecklistUnavailableError(FieldScanError):
    """Neither the cache nor the network could provide a checklist."""

    def __init__(self, code: str, reason: str = "") -> None:
        message = f"Checklist for {code} is unavailable"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)
        self.code = code


class RecognitionError(FieldScanError):
    """Image could not be processed by the recognizer."""


# Any non-auth backend failure degrades to cache or queue instead of crashing.
TRANSIENT_ERRORS = (ApiError,)
