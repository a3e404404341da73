"""
Authentication Package

This package holds the authentication request broker: the in-memory request
stores for both login flows, the OIDC provider registry, user resolution,
session token signing, the periodic cleaner and the HTTP routes.

Modules:
- errors: Typed auth service errors
- utils: Id, code and challenge generation
- providers: Lazily initialized OIDC providers (discovery, exchange, verify)
- requests: Provider flow request store
- quick_connect: Quick-connect (device pairing) request store
- users: Maps verified provider claims to local users
- session: Session JWT signing and verification
- cleaner: Background purge of old requests
- service: The AuthBroker tying everything together
- routes: FastAPI router exposing the broker

The provider flow:
1. Client calls /auth/providers/initiate and opens the returned authUrl
2. User authenticates with the identity provider
3. Provider redirects to /auth/providers/callback, completing the request
4. Client polls /auth/providers/status, then redeems via /auth/providers/finish

The quick-connect flow:
1. Device calls /auth/quick-connect/initiate and displays the code
2. A signed-in session posts the code to /auth/quick-connect/claim
3. Device polls /auth/quick-connect/status, then redeems via /auth/quick-connect/finish
"""

from .errors import (
    AuthServiceError,
    ProviderClaimError,
    ProviderInitError,
    ProviderNotFoundError,
    RequestAlreadyExistsError,
    RequestExpiredError,
    RequestInvalidError,
    RequestNotFoundError,
    RequestNotReadyError,
)

__all__ = [
    "AuthServiceError",
    "ProviderClaimError",
    "ProviderInitError",
    "ProviderNotFoundError",
    "RequestAlreadyExistsError",
    "RequestExpiredError",
    "RequestInvalidError",
    "RequestNotFoundError",
    "RequestNotReadyError",
]
