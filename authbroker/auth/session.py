"""
JWT Session Management Module
==============================

Handles creation and verification of the session JWTs handed out once a
login flow has been redeemed, plus the FastAPI dependency that turns a
Bearer token back into a user.

Tokens carry the user id and the issue time. An expiry is only added when
SESSION_JWT_EXPIRY_MINUTES is configured.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import jwt
from fastapi import Header, HTTPException, Request, status
from jwt.exceptions import ExpiredSignatureError, InvalidTokenError

from ..database import Database, ItemNotFoundError, User
from .errors import AuthServiceError

logger = logging.getLogger(__name__)

USER_ID_CLAIM = "userId"


# =============================================================================
# Token Signer
# =============================================================================

class TokenSigner:
    """
    Issues and verifies session tokens.

    The signing secret is kept private and never logged.
    """

    def __init__(
        self,
        db: Database,
        secret: str,
        algorithm: str = "HS256",
        expiry_minutes: Optional[int] = None,
    ):
        if not secret:
            raise ValueError("session signing secret is not configured")

        self.db = db
        self.algorithm = algorithm
        self.expiry_minutes = expiry_minutes
        self._secret = secret

    def __repr__(self) -> str:
        return f"TokenSigner(algorithm={self.algorithm!r})"

    async def sign(self, user_id: str) -> str:
        """
        Create a session JWT for an existing user.

        Args:
            user_id: Local user id

        Returns:
            Encoded JWT string

        Raises:
            AuthServiceError: If the user does not exist or signing fails
        """
        try:
            user = await self.db.get_user_by_id(user_id)
        except ItemNotFoundError as e:
            raise AuthServiceError(f"signing token: get user by id: {e}") from e

        now = datetime.now(timezone.utc)
        payload: Dict[str, Any] = {
            USER_ID_CLAIM: user.id,
            "iat": now,
        }
        if self.expiry_minutes:
            payload["exp"] = now + timedelta(minutes=self.expiry_minutes)

        try:
            token = jwt.encode(payload, self._secret, algorithm=self.algorithm)
        except Exception as e:
            logger.error(f"Failed to create session JWT: {e}", exc_info=True)
            raise AuthServiceError(f"signing token: jwt sign: {e}") from e

        logger.debug(f"Created session JWT for user {user.id}", extra={"user_id": user.id})
        return token

    def verify(self, token: str) -> Dict[str, Any]:
        """
        Verify and decode a session JWT.

        Raises:
            InvalidTokenError: If the token is malformed, expired or forged
        """
        required = [USER_ID_CLAIM, "iat"]
        if self.expiry_minutes:
            required.append("exp")

        return jwt.decode(
            token,
            self._secret,
            algorithms=[self.algorithm],
            options={
                "verify_signature": True,
                "verify_exp": True,
                "verify_iat": True,
                "require": required,
            },
        )


# =============================================================================
# Helper Functions
# =============================================================================

def extract_token_from_header(authorization: Optional[str]) -> str:
    """
    Extract Bearer token from Authorization header.

    Raises:
        HTTPException: If header is missing or malformed
    """
    if not authorization:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing Authorization header",
            headers={"WWW-Authenticate": "Bearer"},
        )

    parts = authorization.split()

    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid Authorization header format. Expected: 'Bearer <token>'",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return parts[1]


# =============================================================================
# FastAPI Dependencies
# =============================================================================

async def get_current_user(
    request: Request,
    authorization: Optional[str] = Header(None),
) -> User:
    """
    FastAPI dependency resolving the Bearer token to a stored user.

    Usage in routes:
        @router.get("/me")
        async def me(user: User = Depends(get_current_user)):
            return {"id": user.id}

    Raises:
        HTTPException: 401 if the token is missing, invalid or its user is gone
    """
    token = extract_token_from_header(authorization)
    broker = request.app.state.broker

    try:
        claims = broker.signer.verify(token)
    except ExpiredSignatureError:
        logger.warning("JWT token expired")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has expired",
            headers={"WWW-Authenticate": "Bearer"},
        )
    except InvalidTokenError as e:
        logger.warning(f"Invalid JWT token: {e}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        return await broker.db.get_user_by_id(claims[USER_ID_CLAIM])
    except ItemNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unknown user",
            headers={"WWW-Authenticate": "Bearer"},
        )
