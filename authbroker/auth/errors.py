"""
Auth service error taxonomy.

Every error raised by the broker, its stores and the provider registry is an
AuthServiceError. The HTTP layer maps the ``code`` attribute to a status code.
"""

from typing import Optional


class AuthServiceError(Exception):
    """Base exception for the auth service"""

    code = "auth_error"
    service = "auth-service"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message()
        super().__init__(f"{self.service}: {self.message}")

    @classmethod
    def default_message(cls) -> str:
        return "authentication error"


class ProviderNotFoundError(AuthServiceError):
    code = "provider_not_found"

    @classmethod
    def default_message(cls) -> str:
        return "provider not found"


class RequestAlreadyExistsError(AuthServiceError):
    code = "request_already_exists"

    @classmethod
    def default_message(cls) -> str:
        return "request already exists"


class RequestNotFoundError(AuthServiceError):
    """
    Raised for unknown request ids / codes.

    Also raised when a challenge does not match, so a caller guessing
    challenges learns nothing about which codes exist.
    """

    code = "request_not_found"

    @classmethod
    def default_message(cls) -> str:
        return "request not found"


class RequestExpiredError(AuthServiceError):
    code = "request_expired"

    @classmethod
    def default_message(cls) -> str:
        return "request is expired"


class RequestNotReadyError(AuthServiceError):
    code = "request_not_ready"

    @classmethod
    def default_message(cls) -> str:
        return "request is not ready"


class RequestInvalidError(AuthServiceError):
    code = "request_invalid"

    @classmethod
    def default_message(cls) -> str:
        return "request is invalid"


class ProviderInitError(AuthServiceError):
    """Provider discovery failed. Not cached, the next call retries."""

    code = "provider_init_failed"

    def __init__(self, provider_id: str, cause: Exception):
        self.provider_id = provider_id
        self.cause = cause
        super().__init__(f"initialize AuthProvider({provider_id}): {cause}")


class ProviderClaimError(AuthServiceError):
    """Code exchange or ID token verification failed."""

    code = "provider_claim_failed"

    def __init__(self, provider_id: str, cause: Exception):
        self.provider_id = provider_id
        self.cause = cause
        super().__init__(f"provider claim ({provider_id}): {cause}")


__all__ = [
    "AuthServiceError",
    "ProviderNotFoundError",
    "RequestAlreadyExistsError",
    "RequestNotFoundError",
    "RequestExpiredError",
    "RequestNotReadyError",
    "RequestInvalidError",
    "ProviderInitError",
    "ProviderClaimError",
]
