"""
Quick-connect request store.

A device that cannot easily sign in shows a short code. Another session that
is already signed in claims the code, after which the device redeems it for
a session token.

The code is meant to be typed by a human, so it is guessable in principle.
Every read made by the device therefore also requires the challenge that was
returned only to the device when the request was created. A wrong challenge
is reported exactly like an unknown code.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from .errors import (
    RequestAlreadyExistsError,
    RequestExpiredError,
    RequestInvalidError,
    RequestNotFoundError,
    RequestNotReadyError,
)
from .requests import BaseRequestStore, RequestStatus
from .utils import challenges_match, generate_auth_challenge, generate_code

logger = logging.getLogger(__name__)

MAX_CODE_ATTEMPTS = 16


@dataclass
class QuickConnectRequest:
    code: str
    challenge: str
    expires: datetime
    delete_at: datetime
    status: RequestStatus = RequestStatus.PENDING
    # Set when a signed-in user claims the code
    user_id: str = ""


@dataclass(frozen=True)
class QuickConnectRequestResult:
    code: str
    challenge: str
    expires: datetime


class QuickConnectStore(BaseRequestStore[QuickConnectRequest]):
    """In-flight quick-connect requests keyed by code."""

    def __init__(self, *args, code_factory: Callable[[], str] = generate_code, **kwargs):
        super().__init__(*args, **kwargs)
        self._code_factory = code_factory

    async def create(self) -> QuickConnectRequestResult:
        """
        Store a new pending request under a code not currently in use.

        Raises:
            RequestAlreadyExistsError: If no free code was found
        """
        challenge = generate_auth_challenge()
        expires, delete_at = self._deadlines()

        async with self._lock:
            for _ in range(MAX_CODE_ATTEMPTS):
                code = self._code_factory()
                if code not in self._requests:
                    break
            else:
                raise RequestAlreadyExistsError()

            self._requests[code] = QuickConnectRequest(
                code=code,
                challenge=challenge,
                expires=expires,
                delete_at=delete_at,
            )

        logger.info("Created quick-connect request")

        return QuickConnectRequestResult(code=code, challenge=challenge, expires=expires)

    async def claim(self, code: str, user_id: str) -> None:
        """
        Attach a signed-in user to a pending request.

        No challenge is needed: the caller only knows the code shown on the
        device. A request that was already claimed keeps its first user.

        Raises:
            RequestNotFoundError: Unknown code
            RequestExpiredError: The request deadline has passed
        """
        async with self._lock:
            request = self._requests.get(code)
            if request is None:
                raise RequestNotFoundError()

            if self._expire_if_due(request, self._clock()):
                raise RequestExpiredError()

            if request.status is RequestStatus.PENDING:
                request.status = RequestStatus.COMPLETED
                request.user_id = user_id
                logger.info("Quick-connect request claimed", extra={"user_id": user_id})

    def _lookup(self, code: str, challenge: str) -> QuickConnectRequest:
        request = self._requests.get(code)
        if request is None or not challenges_match(request.challenge, challenge):
            raise RequestNotFoundError()
        return request

    async def check_status(self, code: str, challenge: str) -> RequestStatus:
        """
        Raises:
            RequestNotFoundError: Unknown code or wrong challenge
        """
        async with self._lock:
            request = self._lookup(code, challenge)
            self._expire_if_due(request, self._clock())
            return request.status

    async def begin_redeem(self, code: str, challenge: str) -> str:
        """
        Consume a claimed request and return the claiming user's id.

        The request is forced to ``expired`` before returning so it can never
        be redeemed twice.

        Raises:
            RequestNotFoundError: Unknown code or wrong challenge
            RequestExpiredError: The request deadline has passed
            RequestNotReadyError: Not claimed yet, or already redeemed
            RequestInvalidError: Claimed without a user id
        """
        async with self._lock:
            request = self._lookup(code, challenge)

            if self._expire_if_due(request, self._clock()):
                raise RequestExpiredError()

            if request.status is not RequestStatus.COMPLETED:
                raise RequestNotReadyError()

            if not request.user_id:
                request.status = RequestStatus.FAILED
                raise RequestInvalidError()

            request.status = RequestStatus.EXPIRED
            return request.user_id

    async def mark_failed(self, code: str) -> None:
        async with self._lock:
            request = self._requests.get(code)
            if request is not None:
                request.status = RequestStatus.FAILED
