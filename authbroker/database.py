"""
User and identity data access.

The broker only depends on the async methods below. ``InMemoryDatabase`` is
the implementation used for local runs and tests; a deployment backed by a
real database passes any object exposing the same methods to ``AuthBroker``.

Lookups that find nothing raise ``ItemNotFoundError``, which callers treat as
an expected outcome rather than a failure.
"""

import asyncio
import logging
import time
from typing import Dict, Optional, Protocol, Tuple

from pydantic import BaseModel, Field

from .auth.utils import create_id

logger = logging.getLogger(__name__)


class ItemNotFoundError(Exception):
    """Lookup matched no row"""
    pass


class ItemAlreadyExistsError(Exception):
    """Insert conflicted with an existing row"""
    pass


# =============================================================================
# Models
# =============================================================================

class User(BaseModel):
    id: str
    email: str
    display_name: str = ""
    role: str = "user"
    created: int = 0
    updated: int = 0


class UserIdentity(BaseModel):
    """Link between a local user and a (provider, subject) pair."""
    provider: str
    provider_id: str = Field(..., description="Subject identifier at the provider")
    user_id: str
    created: int = 0
    updated: int = 0


class CreateUserParams(BaseModel):
    email: str
    display_name: str = ""
    role: str = "user"
    id: Optional[str] = None


class CreateUserIdentityParams(BaseModel):
    provider: str
    provider_id: str
    user_id: str


class Database(Protocol):
    """Interface the broker expects from its data-access collaborator."""

    async def get_user_by_id(self, user_id: str) -> User: ...

    async def get_user_by_email(self, email: str) -> User: ...

    async def create_user(self, params: CreateUserParams) -> User: ...

    async def get_user_identity(self, provider: str, provider_id: str) -> UserIdentity: ...

    async def create_user_identity(self, params: CreateUserIdentityParams) -> None: ...


# =============================================================================
# In-memory implementation
# =============================================================================

def _now_ms() -> int:
    return int(time.time() * 1000)


class InMemoryDatabase:
    """
    Process-local user and identity tables.

    Thread-safe implementation using asyncio.Lock.
    """

    def __init__(self):
        self._users: Dict[str, User] = {}
        self._identities: Dict[Tuple[str, str], UserIdentity] = {}
        self._lock = asyncio.Lock()

    async def get_user_by_id(self, user_id: str) -> User:
        async with self._lock:
            user = self._users.get(user_id)
        if user is None:
            raise ItemNotFoundError(f"user {user_id!r}")
        return user

    async def get_user_by_email(self, email: str) -> User:
        wanted = email.strip().lower()
        async with self._lock:
            for user in self._users.values():
                if user.email.lower() == wanted:
                    return user
        raise ItemNotFoundError("user with email")

    async def create_user(self, params: CreateUserParams) -> User:
        t = _now_ms()
        user = User(
            id=params.id or create_id(),
            email=params.email,
            display_name=params.display_name,
            role=params.role,
            created=t,
            updated=t,
        )

        async with self._lock:
            if user.id in self._users:
                raise ItemAlreadyExistsError(f"user {user.id!r}")
            self._users[user.id] = user

        logger.info(f"Created user {user.id}", extra={"user_id": user.id})
        return user

    async def get_user_identity(self, provider: str, provider_id: str) -> UserIdentity:
        async with self._lock:
            identity = self._identities.get((provider, provider_id))
        if identity is None:
            raise ItemNotFoundError(f"identity {provider}/{provider_id}")
        return identity

    async def create_user_identity(self, params: CreateUserIdentityParams) -> None:
        t = _now_ms()
        key = (params.provider, params.provider_id)

        async with self._lock:
            if key in self._identities:
                raise ItemAlreadyExistsError(f"identity {params.provider}/{params.provider_id}")
            self._identities[key] = UserIdentity(
                provider=params.provider,
                provider_id=params.provider_id,
                user_id=params.user_id,
                created=t,
                updated=t,
            )
