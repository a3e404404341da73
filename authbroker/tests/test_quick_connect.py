"""
Quick-Connect Store Tests
"""

import re

import pytest

from authbroker.auth.errors import (
    RequestAlreadyExistsError,
    RequestExpiredError,
    RequestInvalidError,
    RequestNotFoundError,
    RequestNotReadyError,
)
from authbroker.auth.quick_connect import QuickConnectStore
from authbroker.auth.requests import RequestStatus

CODE_PATTERN = re.compile(r"^[A-Z]{4}-[0-9]{4}-[A-Z]{4}$")


@pytest.fixture
def store(clock):
    return QuickConnectStore(clock=clock)


def fixed_codes(*codes):
    remaining = iter(codes)
    return lambda: next(remaining)


class TestCreate:

    @pytest.mark.asyncio
    async def test_code_format(self, store):
        result = await store.create()

        assert CODE_PATTERN.match(result.code)
        assert result.challenge
        assert await store.check_status(result.code, result.challenge) is RequestStatus.PENDING

    @pytest.mark.asyncio
    async def test_colliding_code_is_regenerated(self, clock):
        store = QuickConnectStore(
            clock=clock,
            code_factory=fixed_codes("AAAA-1111-AAAA", "AAAA-1111-AAAA", "BBBB-2222-BBBB"),
        )

        first = await store.create()
        second = await store.create()

        assert first.code == "AAAA-1111-AAAA"
        assert second.code == "BBBB-2222-BBBB"

    @pytest.mark.asyncio
    async def test_gives_up_when_no_free_code(self, clock):
        store = QuickConnectStore(clock=clock, code_factory=lambda: "AAAA-1111-AAAA")
        await store.create()

        with pytest.raises(RequestAlreadyExistsError):
            await store.create()

        assert len(store) == 1


class TestClaim:

    @pytest.mark.asyncio
    async def test_claim_completes_request(self, clock):
        store = QuickConnectStore(clock=clock, code_factory=lambda: "ABCD-1234-EFGH")
        result = await store.create()

        await store.claim("ABCD-1234-EFGH", "user-1")

        assert await store.check_status("ABCD-1234-EFGH", result.challenge) is RequestStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_first_claim_wins(self, store):
        result = await store.create()

        await store.claim(result.code, "user-1")
        await store.claim(result.code, "user-2")

        assert await store.begin_redeem(result.code, result.challenge) == "user-1"

    @pytest.mark.asyncio
    async def test_claim_unknown_code(self, store):
        with pytest.raises(RequestNotFoundError):
            await store.claim("ZZZZ-0000-ZZZZ", "user-1")

    @pytest.mark.asyncio
    async def test_claim_after_deadline(self, store, clock):
        result = await store.create()
        clock.advance(minutes=5, seconds=1)

        with pytest.raises(RequestExpiredError):
            await store.claim(result.code, "user-1")

        assert await store.check_status(result.code, result.challenge) is RequestStatus.EXPIRED


class TestRedeem:

    @pytest.mark.asyncio
    async def test_redeem_once(self, store):
        result = await store.create()
        await store.claim(result.code, "user-1")

        assert await store.begin_redeem(result.code, result.challenge) == "user-1"
        assert await store.check_status(result.code, result.challenge) is RequestStatus.EXPIRED

        with pytest.raises(RequestNotReadyError):
            await store.begin_redeem(result.code, result.challenge)

    @pytest.mark.asyncio
    async def test_redeem_unclaimed(self, store):
        result = await store.create()

        with pytest.raises(RequestNotReadyError):
            await store.begin_redeem(result.code, result.challenge)

    @pytest.mark.asyncio
    async def test_wrong_challenge_reported_as_not_found(self, store):
        result = await store.create()
        await store.claim(result.code, "user-1")

        with pytest.raises(RequestNotFoundError):
            await store.check_status(result.code, "guess")
        with pytest.raises(RequestNotFoundError):
            await store.begin_redeem(result.code, "guess")

        # The real owner can still finish
        assert await store.begin_redeem(result.code, result.challenge) == "user-1"

    @pytest.mark.asyncio
    async def test_redeem_after_deadline(self, store, clock):
        result = await store.create()
        await store.claim(result.code, "user-1")
        clock.advance(minutes=6)

        with pytest.raises(RequestExpiredError):
            await store.begin_redeem(result.code, result.challenge)

    @pytest.mark.asyncio
    async def test_claim_without_user_is_invalid(self, store):
        result = await store.create()
        await store.claim(result.code, "")

        with pytest.raises(RequestInvalidError):
            await store.begin_redeem(result.code, result.challenge)

        assert await store.check_status(result.code, result.challenge) is RequestStatus.FAILED

    @pytest.mark.asyncio
    async def test_mark_failed(self, store):
        result = await store.create()
        await store.claim(result.code, "user-1")
        await store.begin_redeem(result.code, result.challenge)

        await store.mark_failed(result.code)

        assert await store.check_status(result.code, result.challenge) is RequestStatus.FAILED


class TestRemoveUnused:

    @pytest.mark.asyncio
    async def test_code_reusable_after_purge(self, clock):
        store = QuickConnectStore(clock=clock, code_factory=lambda: "ABCD-1234-EFGH")
        await store.create()

        clock.advance(minutes=16)
        assert await store.remove_unused() == 1

        result = await store.create()
        assert result.code == "ABCD-1234-EFGH"
