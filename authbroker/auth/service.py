"""
Auth Broker Service
===================

The AuthBroker owns both request stores and their collaborators and exposes
the operations the HTTP layer calls. It is created once per application (in
the lifespan) and handed to the routes through ``app.state.broker``.

Network calls (provider discovery, code exchange, ID token verification) and
data-access calls are never made while a store lock is held: the stores only
commit status transitions.
"""

import logging
from datetime import timedelta
from typing import List, Optional
from urllib.parse import urlencode

import httpx

from ..config import Settings
from ..database import Database
from .cleaner import CLEANUP_INTERVAL_SECONDS, RequestCleaner
from .providers import ProviderInfo, ProviderRegistry
from .quick_connect import QuickConnectRequestResult, QuickConnectStore
from .requests import (
    REQUEST_DELETION_GRACE,
    REQUEST_EXPIRE_DURATION,
    ProviderRequestResult,
    ProviderRequestStore,
    RequestStatus,
)
from .session import TokenSigner
from .users import UserResolver
from .utils import Clock, utc_now

logger = logging.getLogger(__name__)


class AuthBroker:
    """Mediates the provider and quick-connect login flows."""

    def __init__(
        self,
        db: Database,
        providers: ProviderRegistry,
        signer: TokenSigner,
        clock: Clock = utc_now,
        expire_after: timedelta = REQUEST_EXPIRE_DURATION,
        delete_grace: timedelta = REQUEST_DELETION_GRACE,
        cleanup_interval: float = CLEANUP_INTERVAL_SECONDS,
        quick_connect_url: Optional[str] = None,
    ):
        self.db = db
        self.providers = providers
        self.signer = signer
        self.users = UserResolver(db)

        self.provider_requests = ProviderRequestStore(
            clock=clock, expire_after=expire_after, delete_grace=delete_grace,
        )
        self.quick_connect_requests = QuickConnectStore(
            clock=clock, expire_after=expire_after, delete_grace=delete_grace,
        )
        self.cleaner = RequestCleaner(
            [self.provider_requests, self.quick_connect_requests],
            interval=cleanup_interval,
        )
        self._quick_connect_url = quick_connect_url

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        db: Database,
        http_client: Optional[httpx.AsyncClient] = None,
        clock: Clock = utc_now,
    ) -> "AuthBroker":
        """Build a broker from application settings."""
        return cls(
            db=db,
            providers=ProviderRegistry(settings.OIDC_PROVIDERS, http_client=http_client),
            signer=TokenSigner(
                db,
                settings.SESSION_JWT_SECRET,
                algorithm=settings.SESSION_JWT_ALGORITHM,
                expiry_minutes=settings.SESSION_JWT_EXPIRY_MINUTES,
            ),
            clock=clock,
            expire_after=timedelta(seconds=settings.REQUEST_EXPIRY_SECONDS),
            delete_grace=timedelta(seconds=settings.REQUEST_DELETION_GRACE_SECONDS),
            cleanup_interval=settings.CLEANUP_INTERVAL_SECONDS,
            quick_connect_url=settings.QUICK_CONNECT_URL,
        )

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def start(self) -> None:
        self.cleaner.start()

    async def stop(self) -> None:
        await self.cleaner.stop()

    async def remove_unused_entries(self) -> int:
        return await self.cleaner.run_once()

    # =========================================================================
    # Provider Flow
    # =========================================================================

    def list_providers(self) -> List[ProviderInfo]:
        return self.providers.list()

    async def create_provider_request(self, provider_id: str) -> ProviderRequestResult:
        """
        Start a provider login.

        Raises:
            ProviderNotFoundError: Unknown provider id
            ProviderInitError: Provider discovery failed (retried on next call)
            RequestAlreadyExistsError: Generated request id collided
        """
        provider = self.providers.get(provider_id)
        await provider.ensure_ready()

        return await self.provider_requests.create(provider.id, provider.authorization_url)

    async def complete_provider_request(self, request_id: str, code: str) -> None:
        await self.provider_requests.complete(request_id, code)

    async def peek_provider_code(self, request_id: str) -> Optional[str]:
        return await self.provider_requests.peek_code(request_id)

    async def check_provider_request_status(self, request_id: str, challenge: str) -> RequestStatus:
        return await self.provider_requests.check_status(request_id, challenge)

    async def redeem_provider_request(self, request_id: str, challenge: str) -> str:
        """
        Exchange a completed provider request for a session token.

        Succeeds at most once per request. Any failure after the request was
        consumed leaves it ``failed``.

        Returns:
            Signed session JWT
        """
        provider_id, code = await self.provider_requests.begin_redeem(request_id, challenge)

        try:
            claims = await self.providers.claim(provider_id, code)
            user_id = await self.users.resolve(provider_id, claims)
            token = await self.signer.sign(user_id)
        except Exception as e:
            await self.provider_requests.mark_failed(request_id)
            logger.warning(
                f"Redeeming provider request {request_id} failed: {e}",
                extra={"request_id": request_id, "provider_id": provider_id},
            )
            raise

        logger.info(
            f"Redeemed provider request {request_id}",
            extra={"request_id": request_id, "user_id": user_id},
        )
        return token

    # =========================================================================
    # Quick-Connect Flow
    # =========================================================================

    async def create_quick_connect_request(self) -> QuickConnectRequestResult:
        return await self.quick_connect_requests.create()

    def quick_connect_url(self, code: str) -> Optional[str]:
        """URL of the page where a signed-in user enters ``code``."""
        if not self._quick_connect_url:
            return None
        separator = "&" if "?" in self._quick_connect_url else "?"
        return f"{self._quick_connect_url}{separator}{urlencode({'code': code})}"

    async def claim_quick_connect_request(self, code: str, user_id: str) -> None:
        await self.quick_connect_requests.claim(code, user_id)

    async def check_quick_connect_request_status(self, code: str, challenge: str) -> RequestStatus:
        return await self.quick_connect_requests.check_status(code, challenge)

    async def redeem_quick_connect_request(self, code: str, challenge: str) -> str:
        user_id = await self.quick_connect_requests.begin_redeem(code, challenge)

        try:
            token = await self.signer.sign(user_id)
        except Exception:
            await self.quick_connect_requests.mark_failed(code)
            raise

        logger.info("Redeemed quick-connect request", extra={"user_id": user_id})
        return token

    async def sign_user_token(self, user_id: str) -> str:
        return await self.signer.sign(user_id)
