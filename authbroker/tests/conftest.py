"""
Shared fixtures: a controllable clock, a fake OIDC identity provider served
through httpx.MockTransport, and a broker wired to both.
"""

import json
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List
from urllib.parse import parse_qs

import httpx
import jwt
import pytest
from cryptography.hazmat.primitives.asymmetric import rsa
from jwt.algorithms import RSAAlgorithm

from authbroker.auth.service import AuthBroker
from authbroker.config import Settings
from authbroker.database import InMemoryDatabase

ISSUER = "https://idp.example.com"
CLIENT_ID = "acme-client"
CLIENT_SECRET = "acme-client-secret"
REDIRECT_URL = "http://localhost:8080/auth/providers/callback"
TEST_KID = "test-key-id-2024"
JWT_SECRET = "test-session-secret-0123456789abcdef"


class FakeClock:
    """Manually advanced clock for expiry tests."""

    def __init__(self):
        self.now = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


def generate_rsa_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


# Generate test keys once for reuse
TEST_PRIVATE_KEY = generate_rsa_key()


def public_jwk(private_key, kid: str = TEST_KID) -> Dict[str, Any]:
    key = json.loads(RSAAlgorithm.to_jwk(private_key.public_key()))
    key.update({"kid": kid, "use": "sig", "alg": "RS256"})
    return key


class FakeIdentityProvider:
    """
    Minimal OIDC provider: discovery, JWKS and token endpoints.

    Authorization codes are registered with ``issue_code`` together with the
    claims the resulting ID token should carry.
    """

    def __init__(self, issuer: str = ISSUER):
        self.issuer = issuer
        self.signing_key = TEST_PRIVATE_KEY
        self.kid = TEST_KID
        self.jwks_keys: List[Dict[str, Any]] = [public_jwk(TEST_PRIVATE_KEY)]
        self.discovery_failures = 0
        self.discovery_requests = 0
        self.token_requests: List[Dict[str, List[str]]] = []
        self._codes: Dict[str, Dict[str, Any]] = {}

    def issue_code(self, code: str, **claims) -> None:
        self._codes[code] = claims

    def id_token(self, claims: Dict[str, Any]) -> str:
        now = datetime.now(timezone.utc)
        payload = {
            "iss": self.issuer,
            "aud": CLIENT_ID,
            "iat": now,
            "exp": now + timedelta(minutes=5),
            **claims,
        }
        return jwt.encode(payload, self.signing_key, algorithm="RS256", headers={"kid": self.kid})

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path

        if path == "/.well-known/openid-configuration":
            self.discovery_requests += 1
            if self.discovery_failures:
                self.discovery_failures -= 1
                return httpx.Response(503, text="unavailable")
            return httpx.Response(200, json={
                "issuer": self.issuer,
                "authorization_endpoint": f"{ISSUER}/authorize",
                "token_endpoint": f"{ISSUER}/token",
                "jwks_uri": f"{ISSUER}/jwks",
                "id_token_signing_alg_values_supported": ["RS256"],
            })

        if path == "/jwks":
            return httpx.Response(200, json={"keys": self.jwks_keys})

        if path == "/token":
            form = parse_qs(request.content.decode("utf-8"))
            self.token_requests.append(form)
            claims = self._codes.get(form.get("code", [""])[0])
            if claims is None:
                return httpx.Response(400, json={
                    "error": "invalid_grant",
                    "error_description": "Authorization code is invalid",
                })
            return httpx.Response(200, json={
                "access_token": "provider-access-token",
                "token_type": "Bearer",
                "expires_in": 3600,
                "id_token": self.id_token(claims),
            })

        return httpx.Response(404)


def provider_config(name: str = "Acme") -> Dict[str, str]:
    return {
        "name": name,
        "clientId": CLIENT_ID,
        "clientSecret": CLIENT_SECRET,
        "issuerUrl": ISSUER,
        "redirectUrl": REDIRECT_URL,
    }


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fake_idp():
    return FakeIdentityProvider()


@pytest.fixture
def http_client(fake_idp):
    return httpx.AsyncClient(transport=httpx.MockTransport(fake_idp.handler))


@pytest.fixture
def settings():
    return Settings(
        OIDC_PROVIDERS={"acme": provider_config()},
        SESSION_JWT_SECRET=JWT_SECRET,
        QUICK_CONNECT_URL="http://localhost:8080/quick-connect",
    )


@pytest.fixture
def db():
    return InMemoryDatabase()


@pytest.fixture
def broker(settings, db, http_client, clock):
    return AuthBroker.from_settings(settings, db, http_client=http_client, clock=clock)
