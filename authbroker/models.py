"""
Data Models Module

Pydantic models for request/response validation of the auth HTTP surface.
Field names are camelCase because they are the wire format used by clients.
"""

from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from .auth.utils import normalize_code


# ============================================================================
# Provider Flow
# ============================================================================

class ProviderItem(BaseModel):
    id: str = Field(..., description="Provider identifier")
    displayName: str = Field(..., description="Name shown on the login screen")


class ProviderListResponse(BaseModel):
    providers: List[ProviderItem]


class ProviderInitiateRequest(BaseModel):
    providerId: str = Field(..., description="Configured provider id", min_length=1)


class ProviderInitiateResponse(BaseModel):
    requestId: str = Field(..., description="Login request id (also the OAuth2 state)")
    authUrl: str = Field(..., description="URL to open for the user to sign in")
    challenge: str = Field(..., description="Secret required for status and finish calls")
    expiresAt: str = Field(..., description="RFC 3339 expiry of the request")


class ProviderRequestBody(BaseModel):
    """Body of the provider status and finish calls."""
    requestId: str = Field(..., min_length=1)
    challenge: str = Field(..., min_length=1)


# ============================================================================
# Quick-Connect Flow
# ============================================================================

class QuickConnectInitiateResponse(BaseModel):
    code: str = Field(..., description="Code to display on the device")
    challenge: str = Field(..., description="Secret required for status and finish calls")
    authUrl: Optional[str] = Field(None, description="Page where the code can be claimed")
    expiresAt: str = Field(..., description="RFC 3339 expiry of the request")


class QuickConnectClaimRequest(BaseModel):
    code: str = Field(..., min_length=1)

    @field_validator("code")
    @classmethod
    def normalize(cls, v: str) -> str:
        v = normalize_code(v)
        if not v:
            raise ValueError("Code cannot be empty")
        return v


class QuickConnectRequestBody(QuickConnectClaimRequest):
    """Body of the quick-connect status and finish calls."""
    challenge: str = Field(..., min_length=1)


# ============================================================================
# Shared
# ============================================================================

class StatusResponse(BaseModel):
    status: str = Field(..., description="pending, completed, expired or failed")


class TokenResponse(BaseModel):
    token: str = Field(..., description="Session JWT")


class MeResponse(BaseModel):
    id: str
    email: str
    displayName: str
    role: str


class ErrorResponse(BaseModel):
    """Standardized error response model."""
    error: str = Field(..., description="Error type or code")
    message: str = Field(..., description="Human-readable error message")
