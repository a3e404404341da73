"""
Resolve verified provider claims to a local user.
"""

import logging

from ..database import (
    CreateUserIdentityParams,
    CreateUserParams,
    Database,
    ItemNotFoundError,
)
from .errors import AuthServiceError
from .providers import ProviderClaims

logger = logging.getLogger(__name__)

DEFAULT_ROLE = "user"


class UserResolver:
    """
    Maps ``(provider, subject)`` to a local user id.

    Lookup order: existing identity link, then an existing user with the
    claimed email (which gets linked), then a brand new user (also linked).
    """

    def __init__(self, db: Database):
        self.db = db

    async def resolve(self, provider_id: str, claims: ProviderClaims) -> str:
        try:
            identity = await self.db.get_user_identity(provider_id, claims.sub)
            return identity.user_id
        except ItemNotFoundError:
            pass
        except Exception as e:
            raise AuthServiceError(f"get user identity: {e}") from e

        user_id = await self._get_or_create_user(claims)

        try:
            await self.db.create_user_identity(CreateUserIdentityParams(
                provider=provider_id,
                provider_id=claims.sub,
                user_id=user_id,
            ))
        except Exception as e:
            raise AuthServiceError(f"create user identity: {e}") from e

        logger.info(
            f"Linked {provider_id} identity to user {user_id}",
            extra={"provider_id": provider_id, "user_id": user_id},
        )
        return user_id

    async def _get_or_create_user(self, claims: ProviderClaims) -> str:
        # Without an email there is nothing safe to match an existing user on
        if claims.email:
            try:
                user = await self.db.get_user_by_email(claims.email)
                return user.id
            except ItemNotFoundError:
                pass
            except Exception as e:
                raise AuthServiceError(f"get user by email: {e}") from e

        display_name = claims.display_name or claims.name

        try:
            user = await self.db.create_user(CreateUserParams(
                email=claims.email,
                display_name=display_name,
                role=DEFAULT_ROLE,
            ))
        except Exception as e:
            raise AuthServiceError(f"create user: {e}") from e

        return user.id
