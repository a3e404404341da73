"""
OIDC provider registry.

This module handles:
- Lazy, retryable initialization of each configured provider
  (discovery document + JWKS)
- Building the authorization URL for a login request
- Exchanging an authorization code and verifying the returned ID token
- Decoding the verified claims into ProviderClaims
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from enum import Enum
from typing import Any, AsyncIterator, Dict, List, Optional
from urllib.parse import urlencode

import httpx
from jose import jwk, jwt
from jose.exceptions import JOSEError, JWTError
from pydantic import BaseModel, ConfigDict

from ..config import OidcProviderConfig
from .errors import ProviderClaimError, ProviderInitError, ProviderNotFoundError
from .utils import natural_sort_key

logger = logging.getLogger(__name__)

OIDC_SCOPES = "openid profile email"
HTTP_TIMEOUT_SECONDS = 10.0
CLOCK_SKEW_SECONDS = 10


class ProviderState(str, Enum):
    UNINITIALIZED = "uninitialized"
    READY = "ready"
    FAILED = "failed"


class ProviderClaims(BaseModel):
    """Verified identity attributes taken from a provider's ID token."""

    model_config = ConfigDict(extra="ignore")

    sub: str
    email: str = ""
    name: str = ""
    display_name: str = ""
    picture: str = ""


@dataclass(frozen=True)
class ProviderInfo:
    id: str
    display_name: str


# =============================================================================
# Provider
# =============================================================================

class AuthProvider:
    """
    A single configured OIDC provider.

    Discovery runs on first use. A failed discovery leaves the provider in
    the FAILED state and the next call tries again.
    """

    def __init__(
        self,
        provider_id: str,
        config: OidcProviderConfig,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.id = provider_id
        self.display_name = config.name
        self.config = config
        self.state = ProviderState.UNINITIALIZED
        self.last_error: Optional[Exception] = None

        self._http_client = http_client
        self._metadata: Dict[str, Any] = {}
        self._jwks: Dict[str, Any] = {}
        self._lock = asyncio.Lock()

    @asynccontextmanager
    async def _client(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._http_client is not None:
            yield self._http_client
        else:
            async with httpx.AsyncClient(timeout=HTTP_TIMEOUT_SECONDS) as client:
                yield client

    # -------------------------------------------------------------------------
    # Initialization
    # -------------------------------------------------------------------------

    async def ensure_ready(self) -> None:
        """
        Run discovery unless the provider is already initialized.

        Raises:
            ProviderInitError: If the discovery document or JWKS cannot be loaded
        """
        if self.state is ProviderState.READY:
            return

        async with self._lock:
            if self.state is ProviderState.READY:
                return

            try:
                metadata = await self._fetch_metadata()
                jwks = await self._fetch_jwks(metadata["jwks_uri"])
            except (httpx.HTTPError, ValueError) as e:
                self.state = ProviderState.FAILED
                self.last_error = e
                logger.warning(f"Initializing provider {self.id} failed: {e}")
                raise ProviderInitError(self.id, e) from e

            self._metadata = metadata
            self._jwks = jwks
            self.state = ProviderState.READY
            self.last_error = None
            logger.info(f"Initialized provider {self.id}")

    async def _fetch_metadata(self) -> Dict[str, Any]:
        url = f"{self.config.issuer_url}/.well-known/openid-configuration"

        async with self._client() as client:
            response = await client.get(url)
            response.raise_for_status()
            metadata = response.json()

        for field in ("issuer", "authorization_endpoint", "token_endpoint", "jwks_uri"):
            if not metadata.get(field):
                raise ValueError(f"Invalid discovery document: missing '{field}'")

        if metadata["issuer"].rstrip("/") != self.config.issuer_url:
            raise ValueError(
                f"Issuer mismatch: expected {self.config.issuer_url}, "
                f"got {metadata['issuer']}"
            )

        return metadata

    async def _fetch_jwks(self, jwks_uri: str) -> Dict[str, Any]:
        async with self._client() as client:
            response = await client.get(jwks_uri)
            response.raise_for_status()
            jwks = response.json()

        if "keys" not in jwks:
            raise ValueError("Invalid JWKS response: missing 'keys' field")

        return jwks

    # -------------------------------------------------------------------------
    # Authorization
    # -------------------------------------------------------------------------

    def authorization_url(self, state: str) -> str:
        """
        Build the URL the user is sent to, carrying ``state`` back to the callback.

        The provider must be initialized first.
        """
        if self.state is not ProviderState.READY:
            raise RuntimeError(f"provider {self.id} is not initialized")

        params = {
            "client_id": self.config.client_id,
            "response_type": "code",
            "redirect_uri": self.config.redirect_url,
            "scope": OIDC_SCOPES,
            "state": state,
        }

        endpoint = self._metadata["authorization_endpoint"]
        separator = "&" if "?" in endpoint else "?"
        return f"{endpoint}{separator}{urlencode(params)}"

    async def claim(self, code: str) -> ProviderClaims:
        """
        Exchange an authorization code and return the verified claims.

        Args:
            code: Authorization code delivered to the callback

        Returns:
            ProviderClaims decoded from the verified ID token

        Raises:
            ProviderInitError: If the provider cannot be initialized
            ProviderClaimError: If the exchange or verification fails
        """
        await self.ensure_ready()

        try:
            token_response = await self._exchange_code(code)

            id_token = token_response.get("id_token")
            if not id_token:
                raise ValueError("oauth2 token is missing id_token")

            claims = await self._verify_id_token(id_token)
            return ProviderClaims.model_validate(claims)
        except (httpx.HTTPError, JOSEError, ValueError) as e:
            logger.warning(f"Claim with provider {self.id} failed: {e}")
            raise ProviderClaimError(self.id, e) from e

    async def _exchange_code(self, code: str) -> Dict[str, Any]:
        payload = {
            "client_id": self.config.client_id,
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self.config.redirect_url,
        }

        # Confidential client
        if self.config.client_secret:
            payload["client_secret"] = self.config.client_secret

        async with self._client() as client:
            response = await client.post(
                self._metadata["token_endpoint"],
                data=payload,
                headers={"Accept": "application/json"},
            )

        if not response.is_success:
            error_data = {}
            if response.headers.get("content-type", "").startswith("application/json"):
                error_data = response.json()
            error_msg = (
                error_data.get("error_description")
                or error_data.get("error")
                or f"status {response.status_code}"
            )
            raise httpx.HTTPError(f"Token exchange failed: {error_msg}")

        return response.json()

    def _allowed_algorithms(self) -> List[str]:
        advertised = self._metadata.get("id_token_signing_alg_values_supported") or []
        algorithms = [
            alg for alg in advertised
            if alg != "none" and not alg.startswith("HS")
        ]
        return algorithms or ["RS256"]

    def _find_key(self, kid: Optional[str]) -> Optional[Dict[str, Any]]:
        keys = self._jwks.get("keys", [])
        if kid is None:
            return keys[0] if len(keys) == 1 else None
        for key in keys:
            if key.get("kid") == kid:
                return key
        return None

    async def _verify_id_token(self, id_token: str) -> Dict[str, Any]:
        header = jwt.get_unverified_header(id_token)
        algorithm = header.get("alg")
        algorithms = self._allowed_algorithms()
        if algorithm not in algorithms:
            raise JWTError(f"ID token algorithm {algorithm!r} is not allowed")

        kid = header.get("kid")
        signing_key = self._find_key(kid)
        if signing_key is None:
            # Keys may have rotated since discovery
            self._jwks = await self._fetch_jwks(self._metadata["jwks_uri"])
            signing_key = self._find_key(kid)
            if signing_key is None:
                raise JWTError("Unable to find matching signing key in JWKS")

        public_key = jwk.construct(signing_key, algorithm=algorithm)

        return jwt.decode(
            id_token,
            public_key.to_pem().decode("utf-8"),
            algorithms=algorithms,
            audience=self.config.client_id,
            issuer=self._metadata["issuer"],
            options={
                "verify_signature": True,
                "verify_aud": True,
                "verify_iat": True,
                "verify_exp": True,
                "verify_nbf": True,
                "verify_iss": True,
                "verify_sub": True,
                "verify_at_hash": False,
                "leeway": CLOCK_SKEW_SECONDS,
            },
        )


# =============================================================================
# Registry
# =============================================================================

class ProviderRegistry:
    """All configured providers, keyed by provider id."""

    def __init__(
        self,
        configs: Dict[str, OidcProviderConfig],
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self._providers: Dict[str, AuthProvider] = {
            provider_id: AuthProvider(provider_id, config, http_client)
            for provider_id, config in configs.items()
        }

    def get(self, provider_id: str) -> AuthProvider:
        provider = self._providers.get(provider_id)
        if provider is None:
            raise ProviderNotFoundError()
        return provider

    def list(self) -> List[ProviderInfo]:
        """Providers naturally sorted by display name."""
        infos = [
            ProviderInfo(id=p.id, display_name=p.display_name)
            for p in self._providers.values()
        ]
        return sorted(infos, key=lambda info: (natural_sort_key(info.display_name), info.id))

    async def claim(self, provider_id: str, code: str) -> ProviderClaims:
        return await self.get(provider_id).claim(code)
