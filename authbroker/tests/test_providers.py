"""
Provider Registry Tests

Discovery, authorization URL construction, code exchange and ID token
verification against the fake identity provider from conftest.
"""

from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from authbroker.auth.errors import ProviderClaimError, ProviderInitError, ProviderNotFoundError
from authbroker.auth.providers import ProviderRegistry, ProviderState
from authbroker.config import OidcProviderConfig

from .conftest import (
    CLIENT_ID,
    CLIENT_SECRET,
    REDIRECT_URL,
    FakeIdentityProvider,
    generate_rsa_key,
    provider_config,
    public_jwk,
)


def make_registry(http_client, **names):
    configs = {
        provider_id: OidcProviderConfig.model_validate(provider_config(name))
        for provider_id, name in names.items()
    }
    return ProviderRegistry(configs, http_client=http_client)


@pytest.fixture
def registry(http_client):
    return make_registry(http_client, acme="Acme")


class TestRegistry:

    def test_list_is_naturally_sorted(self, http_client):
        registry = make_registry(
            http_client,
            p10="Provider 10",
            p2="Provider 2",
            acme="acme",
        )

        assert [p.id for p in registry.list()] == ["acme", "p2", "p10"]

    def test_list_does_not_initialize(self, registry, fake_idp):
        registry.list()

        assert fake_idp.discovery_requests == 0
        assert registry.get("acme").state is ProviderState.UNINITIALIZED

    def test_unknown_provider(self, registry):
        with pytest.raises(ProviderNotFoundError):
            registry.get("nope")


class TestInitialization:

    @pytest.mark.asyncio
    async def test_discovery_runs_once(self, registry, fake_idp):
        provider = registry.get("acme")

        await provider.ensure_ready()
        await provider.ensure_ready()

        assert provider.state is ProviderState.READY
        assert fake_idp.discovery_requests == 1

    @pytest.mark.asyncio
    async def test_failed_discovery_is_retried(self, registry, fake_idp):
        provider = registry.get("acme")
        fake_idp.discovery_failures = 1

        with pytest.raises(ProviderInitError) as exc_info:
            await provider.ensure_ready()

        assert provider.state is ProviderState.FAILED
        assert provider.last_error is not None
        assert exc_info.value.provider_id == "acme"

        await provider.ensure_ready()

        assert provider.state is ProviderState.READY
        assert provider.last_error is None
        assert fake_idp.discovery_requests == 2

    @pytest.mark.asyncio
    async def test_issuer_mismatch_rejected(self):
        idp = FakeIdentityProvider(issuer="https://impostor.example.com")
        client = httpx.AsyncClient(transport=httpx.MockTransport(idp.handler))
        provider = make_registry(client, acme="Acme").get("acme")

        with pytest.raises(ProviderInitError, match="Issuer mismatch"):
            await provider.ensure_ready()

        await client.aclose()

    def test_authorization_url_requires_initialization(self, registry):
        with pytest.raises(RuntimeError):
            registry.get("acme").authorization_url("state-1")

    @pytest.mark.asyncio
    async def test_authorization_url(self, registry):
        provider = registry.get("acme")
        await provider.ensure_ready()

        url = urlparse(provider.authorization_url("request-123"))
        params = parse_qs(url.query)

        assert f"{url.scheme}://{url.netloc}{url.path}" == "https://idp.example.com/authorize"
        assert params["state"] == ["request-123"]
        assert params["client_id"] == [CLIENT_ID]
        assert params["redirect_uri"] == [REDIRECT_URL]
        assert params["response_type"] == ["code"]
        assert params["scope"] == ["openid profile email"]


class TestClaim:

    @pytest.mark.asyncio
    async def test_claim_returns_verified_claims(self, registry, fake_idp):
        fake_idp.issue_code(
            "auth-code",
            sub="acme|42",
            email="alice@example.com",
            name="Alice Example",
            picture="https://idp.example.com/alice.png",
        )

        claims = await registry.claim("acme", "auth-code")

        assert claims.sub == "acme|42"
        assert claims.email == "alice@example.com"
        assert claims.name == "Alice Example"
        assert claims.display_name == ""
        assert claims.picture == "https://idp.example.com/alice.png"

        form = fake_idp.token_requests[0]
        assert form["grant_type"] == ["authorization_code"]
        assert form["client_secret"] == [CLIENT_SECRET]
        assert form["redirect_uri"] == [REDIRECT_URL]

    @pytest.mark.asyncio
    async def test_claim_initializes_provider(self, registry, fake_idp):
        fake_idp.issue_code("auth-code", sub="acme|42")

        await registry.claim("acme", "auth-code")

        assert registry.get("acme").state is ProviderState.READY

    @pytest.mark.asyncio
    async def test_rejected_code(self, registry):
        with pytest.raises(ProviderClaimError, match="Authorization code is invalid"):
            await registry.claim("acme", "unknown-code")

    @pytest.mark.asyncio
    async def test_forged_signature_rejected(self, registry, fake_idp):
        fake_idp.issue_code("auth-code", sub="acme|42")
        await registry.get("acme").ensure_ready()

        # Same kid, different key
        fake_idp.signing_key = generate_rsa_key()

        with pytest.raises(ProviderClaimError):
            await registry.claim("acme", "auth-code")

    @pytest.mark.asyncio
    async def test_rotated_key_fetched(self, registry, fake_idp):
        fake_idp.issue_code("auth-code", sub="acme|42")
        await registry.get("acme").ensure_ready()

        rotated = generate_rsa_key()
        fake_idp.signing_key = rotated
        fake_idp.kid = "rotated-key"
        fake_idp.jwks_keys = [public_jwk(rotated, kid="rotated-key")]

        claims = await registry.claim("acme", "auth-code")

        assert claims.sub == "acme|42"

    @pytest.mark.asyncio
    async def test_unknown_kid_rejected(self, registry, fake_idp):
        fake_idp.issue_code("auth-code", sub="acme|42")
        fake_idp.kid = "not-published"

        with pytest.raises(ProviderClaimError, match="signing key"):
            await registry.claim("acme", "auth-code")

    @pytest.mark.asyncio
    async def test_claim_when_discovery_fails(self, registry, fake_idp):
        fake_idp.discovery_failures = 1

        with pytest.raises(ProviderInitError):
            await registry.claim("acme", "auth-code")
