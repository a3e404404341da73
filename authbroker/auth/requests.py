"""
Provider flow request store.

Holds the short-lived login requests of the OIDC provider flow, keyed by
request id (which doubles as the OAuth2 ``state``). All reads and writes go
through a single asyncio.Lock per store; nothing awaits network I/O while
holding it.

Status transitions only move forward:

    pending -> completed -> expired -> failed
    pending -> expired   -> failed

Expiry is enforced lazily on every access. Entries stay in the map until
their deletion time so late status polls still get an answer; the cleaner
purges them afterwards.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Dict, Generic, Optional, Tuple, TypeVar

from .errors import (
    RequestAlreadyExistsError,
    RequestExpiredError,
    RequestInvalidError,
    RequestNotFoundError,
    RequestNotReadyError,
)
from .utils import Clock, challenges_match, create_id, generate_auth_challenge, utc_now

logger = logging.getLogger(__name__)

REQUEST_EXPIRE_DURATION = timedelta(minutes=5)
REQUEST_DELETION_GRACE = timedelta(minutes=10)


class RequestStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    EXPIRED = "expired"
    FAILED = "failed"


T = TypeVar("T")


class BaseRequestStore(Generic[T]):
    """
    Lock-guarded map of login requests with shared expiry handling.

    Entries must expose ``status``, ``expires`` and ``delete_at``.
    """

    def __init__(
        self,
        clock: Clock = utc_now,
        expire_after: timedelta = REQUEST_EXPIRE_DURATION,
        delete_grace: timedelta = REQUEST_DELETION_GRACE,
    ):
        self._requests: Dict[str, T] = {}
        self._lock = asyncio.Lock()
        self._clock = clock
        self._expire_after = expire_after
        self._delete_grace = delete_grace

    def __len__(self) -> int:
        return len(self._requests)

    def _deadlines(self) -> Tuple[datetime, datetime]:
        expires = self._clock() + self._expire_after
        return expires, expires + self._delete_grace

    @staticmethod
    def _expire_if_due(request, now: datetime) -> bool:
        """Flip a live request to expired once its deadline passed."""
        if now <= request.expires:
            return False
        if request.status in (RequestStatus.PENDING, RequestStatus.COMPLETED):
            request.status = RequestStatus.EXPIRED
        return True

    async def remove_unused(self, now: Optional[datetime] = None) -> int:
        """
        Delete every entry whose deletion time has passed, whatever its status.

        Returns:
            Number of removed entries
        """
        now = now or self._clock()

        async with self._lock:
            stale = [key for key, request in self._requests.items() if now > request.delete_at]
            for key in stale:
                del self._requests[key]

        return len(stale)


# =============================================================================
# Provider Requests
# =============================================================================

@dataclass
class ProviderRequest:
    id: str
    provider_id: str
    challenge: str
    expires: datetime
    delete_at: datetime
    auth_url: str = ""
    status: RequestStatus = RequestStatus.PENDING
    # Set by the provider callback
    oauth2_code: str = ""


@dataclass(frozen=True)
class ProviderRequestResult:
    request_id: str
    auth_url: str
    challenge: str
    expires: datetime


class ProviderRequestStore(BaseRequestStore[ProviderRequest]):
    """In-flight provider flow requests keyed by request id."""

    def __init__(self, *args, id_factory: Callable[[], str] = create_id, **kwargs):
        super().__init__(*args, **kwargs)
        self._id_factory = id_factory

    async def create(
        self,
        provider_id: str,
        build_auth_url: Callable[[str], str],
    ) -> ProviderRequestResult:
        """
        Store a new pending request.

        Args:
            provider_id: Id of an initialized provider
            build_auth_url: Builds the provider URL from the request id (OAuth2 state)

        Returns:
            ProviderRequestResult for the client

        Raises:
            RequestAlreadyExistsError: If the generated id is already in use
        """
        request_id = self._id_factory()
        expires, delete_at = self._deadlines()
        request = ProviderRequest(
            id=request_id,
            provider_id=provider_id,
            challenge=generate_auth_challenge(),
            expires=expires,
            delete_at=delete_at,
            auth_url=build_auth_url(request_id),
        )

        async with self._lock:
            if request_id in self._requests:
                raise RequestAlreadyExistsError()
            self._requests[request_id] = request

        logger.info(
            f"Created provider request {request_id}",
            extra={"request_id": request_id, "provider_id": provider_id},
        )

        return ProviderRequestResult(
            request_id=request.id,
            auth_url=request.auth_url,
            challenge=request.challenge,
            expires=request.expires,
        )

    async def complete(self, request_id: str, code: str) -> None:
        """
        Record the authorization code delivered by the provider callback.

        Only the first callback is stored; later ones are ignored.

        Raises:
            RequestNotFoundError: Unknown request id
            RequestExpiredError: The request deadline has passed
        """
        async with self._lock:
            request = self._requests.get(request_id)
            if request is None:
                raise RequestNotFoundError()

            if self._expire_if_due(request, self._clock()):
                raise RequestExpiredError()

            if request.status is RequestStatus.PENDING:
                request.status = RequestStatus.COMPLETED
                request.oauth2_code = code
                logger.info(f"Completed provider request {request_id}")

    async def peek_code(self, request_id: str) -> Optional[str]:
        """
        Return the stored authorization code, or None while not completed.

        Raises:
            RequestNotFoundError: Unknown request id
        """
        async with self._lock:
            request = self._requests.get(request_id)
            if request is None:
                raise RequestNotFoundError()

            self._expire_if_due(request, self._clock())

            if request.status is RequestStatus.COMPLETED and request.oauth2_code:
                return request.oauth2_code
            return None

    def _lookup(self, request_id: str, challenge: str) -> ProviderRequest:
        request = self._requests.get(request_id)
        if request is None or not challenges_match(request.challenge, challenge):
            raise RequestNotFoundError()
        return request

    async def check_status(self, request_id: str, challenge: str) -> RequestStatus:
        """
        Current status of a request, expiring it first if its deadline passed.

        Raises:
            RequestNotFoundError: Unknown request id or wrong challenge
        """
        async with self._lock:
            request = self._lookup(request_id, challenge)
            self._expire_if_due(request, self._clock())
            return request.status

    async def begin_redeem(self, request_id: str, challenge: str) -> Tuple[str, str]:
        """
        Consume a completed request.

        The request is moved to ``expired`` inside the same critical section
        that validated it, so only one caller ever gets past this point.

        Returns:
            (provider_id, authorization code)

        Raises:
            RequestNotFoundError: Unknown request id or wrong challenge
            RequestExpiredError: The request deadline has passed
            RequestNotReadyError: The request is not completed (or already used)
            RequestInvalidError: Completed without an authorization code
        """
        async with self._lock:
            request = self._lookup(request_id, challenge)

            if self._expire_if_due(request, self._clock()):
                raise RequestExpiredError()

            if request.status is not RequestStatus.COMPLETED:
                raise RequestNotReadyError()

            if not request.oauth2_code:
                request.status = RequestStatus.FAILED
                raise RequestInvalidError()

            request.status = RequestStatus.EXPIRED
            return request.provider_id, request.oauth2_code

    async def mark_failed(self, request_id: str) -> None:
        """Move a request to the terminal ``failed`` state."""
        async with self._lock:
            request = self._requests.get(request_id)
            if request is not None:
                request.status = RequestStatus.FAILED
