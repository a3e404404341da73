"""
Authentication routes for both login flows.

The routes are thin: they validate the body, call the AuthBroker held on
``app.state.broker`` and shape the response. AuthServiceError subclasses are
translated to JSON errors by ``auth_error_handler`` (registered in main).
"""

import html
import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.responses import HTMLResponse, JSONResponse

from ..database import User
from ..models import (
    MeResponse,
    ProviderInitiateRequest,
    ProviderInitiateResponse,
    ProviderItem,
    ProviderListResponse,
    ProviderRequestBody,
    QuickConnectClaimRequest,
    QuickConnectInitiateResponse,
    QuickConnectRequestBody,
    StatusResponse,
    TokenResponse,
)
from .errors import AuthServiceError, RequestExpiredError, RequestNotFoundError
from .service import AuthBroker
from .session import get_current_user

logger = logging.getLogger(__name__)


# =============================================================================
# Router Setup
# =============================================================================

auth_router = APIRouter(
    prefix="/auth",
    tags=["authentication"],
)

ERROR_STATUS_CODES = {
    "provider_not_found": status.HTTP_404_NOT_FOUND,
    "request_not_found": status.HTTP_404_NOT_FOUND,
    "request_already_exists": status.HTTP_409_CONFLICT,
    "request_expired": status.HTTP_410_GONE,
    "request_not_ready": status.HTTP_409_CONFLICT,
    "request_invalid": status.HTTP_400_BAD_REQUEST,
    "provider_init_failed": status.HTTP_502_BAD_GATEWAY,
    "provider_claim_failed": status.HTTP_502_BAD_GATEWAY,
}


def get_broker(request: Request) -> AuthBroker:
    return request.app.state.broker


async def auth_error_handler(request: Request, exc: AuthServiceError) -> JSONResponse:
    """Translate broker errors into JSON error responses."""
    status_code = ERROR_STATUS_CODES.get(exc.code, status.HTTP_500_INTERNAL_SERVER_ERROR)

    if status_code >= 500:
        logger.error(
            f"Auth service error: {exc}",
            extra={"path": request.url.path, "error_code": exc.code},
        )

    return JSONResponse(
        status_code=status_code,
        content={"error": exc.code, "message": exc.message},
    )


def _rfc3339(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


# =============================================================================
# Provider Flow
# =============================================================================

@auth_router.get("/providers", response_model=ProviderListResponse)
async def list_providers(broker: AuthBroker = Depends(get_broker)):
    return ProviderListResponse(providers=[
        ProviderItem(id=p.id, displayName=p.display_name)
        for p in broker.list_providers()
    ])


@auth_router.post("/providers/initiate", response_model=ProviderInitiateResponse)
async def initiate_provider_login(
    body: ProviderInitiateRequest,
    broker: AuthBroker = Depends(get_broker),
):
    """
    Start a provider login.

    The client opens ``authUrl`` and then polls the status endpoint with the
    returned requestId and challenge.
    """
    result = await broker.create_provider_request(body.providerId)

    return ProviderInitiateResponse(
        requestId=result.request_id,
        authUrl=result.auth_url,
        challenge=result.challenge,
        expiresAt=_rfc3339(result.expires),
    )


@auth_router.get("/providers/callback", response_class=HTMLResponse)
async def provider_callback(
    code: Optional[str] = Query(None, description="Authorization code from the provider"),
    state: Optional[str] = Query(None, description="Login request id"),
    error: Optional[str] = Query(None, description="Error code if authentication failed"),
    error_description: Optional[str] = Query(None, description="Error description"),
    broker: AuthBroker = Depends(get_broker),
):
    """
    Handle the OAuth callback from the provider.

    Completes the matching login request and renders a page telling the user
    to return to the application.
    """
    if error:
        return _render_error_page(
            title="Authentication Failed",
            message=f"Unable to authenticate: {error_description or error}",
        )

    if not code or not state:
        return _render_error_page(
            title="Invalid Request",
            message="Missing required parameters (code or state)",
        )

    try:
        await broker.complete_provider_request(state, code)
    except RequestExpiredError:
        return _render_expired_page()
    except RequestNotFoundError:
        return _render_error_page(
            title="Unknown Login Request",
            message="This login request does not exist. Please start again from the application.",
            status_code=status.HTTP_404_NOT_FOUND,
        )

    return _render_success_page()


@auth_router.post("/providers/status", response_model=StatusResponse)
@auth_router.post("/provider/status", response_model=StatusResponse, include_in_schema=False)
async def provider_status(
    body: ProviderRequestBody,
    broker: AuthBroker = Depends(get_broker),
):
    request_status = await broker.check_provider_request_status(body.requestId, body.challenge)
    return StatusResponse(status=request_status.value)


@auth_router.post("/providers/finish", response_model=TokenResponse)
async def finish_provider_login(
    body: ProviderRequestBody,
    broker: AuthBroker = Depends(get_broker),
):
    token = await broker.redeem_provider_request(body.requestId, body.challenge)
    return TokenResponse(token=token)


# =============================================================================
# Quick-Connect Flow
# =============================================================================

@auth_router.post("/quick-connect/initiate", response_model=QuickConnectInitiateResponse)
async def initiate_quick_connect(broker: AuthBroker = Depends(get_broker)):
    result = await broker.create_quick_connect_request()

    return QuickConnectInitiateResponse(
        code=result.code,
        challenge=result.challenge,
        authUrl=broker.quick_connect_url(result.code),
        expiresAt=_rfc3339(result.expires),
    )


@auth_router.post("/quick-connect/claim")
async def claim_quick_connect(
    body: QuickConnectClaimRequest,
    user: User = Depends(get_current_user),
    broker: AuthBroker = Depends(get_broker),
):
    """Claim a code shown on another device for the signed-in user."""
    await broker.claim_quick_connect_request(body.code, user.id)
    return {}


@auth_router.post("/quick-connect/status", response_model=StatusResponse)
async def quick_connect_status(
    body: QuickConnectRequestBody,
    broker: AuthBroker = Depends(get_broker),
):
    request_status = await broker.check_quick_connect_request_status(body.code, body.challenge)
    return StatusResponse(status=request_status.value)


@auth_router.post("/quick-connect/finish", response_model=TokenResponse)
async def finish_quick_connect(
    body: QuickConnectRequestBody,
    broker: AuthBroker = Depends(get_broker),
):
    token = await broker.redeem_quick_connect_request(body.code, body.challenge)
    return TokenResponse(token=token)


# =============================================================================
# Current User
# =============================================================================

@auth_router.get("/me", response_model=MeResponse)
async def get_me(user: User = Depends(get_current_user)):
    return MeResponse(
        id=user.id,
        email=user.email,
        displayName=user.display_name,
        role=user.role,
    )


# =============================================================================
# HTML Response Templates
# =============================================================================

_PAGE_TEMPLATE = """
<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>{title}</title>
    <style>
        * {{ margin: 0; padding: 0; box-sizing: border-box; }}
        body {{
            font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, Helvetica, Arial, sans-serif;
            background: linear-gradient(135deg, #667eea 0%, #764ba2 100%);
            min-height: 100vh;
            display: flex;
            align-items: center;
            justify-content: center;
            padding: 20px;
        }}
        .container {{
            background: white;
            border-radius: 12px;
            padding: 40px;
            max-width: 500px;
            width: 100%;
            box-shadow: 0 10px 40px rgba(0,0,0,0.2);
            text-align: center;
        }}
        .icon {{
            width: 80px;
            height: 80px;
            background: {color};
            border-radius: 50%;
            display: flex;
            align-items: center;
            justify-content: center;
            margin: 0 auto 24px;
            color: white;
            font-size: 48px;
            font-weight: bold;
        }}
        h1 {{
            color: #1f2937;
            font-size: 24px;
            margin-bottom: 16px;
        }}
        .message {{
            color: #6b7280;
            font-size: 16px;
            line-height: 1.6;
        }}
    </style>
</head>
<body>
    <div class="container">
        <div class="icon">{icon}</div>
        <h1>{title}</h1>
        <p class="message">{message}</p>
    </div>
</body>
</html>
"""


def _render_page(title: str, message: str, icon: str, color: str, status_code: int) -> HTMLResponse:
    content = _PAGE_TEMPLATE.format(
        title=html.escape(title),
        message=html.escape(message),
        icon=icon,
        color=color,
    )
    return HTMLResponse(content=content, status_code=status_code)


def _render_success_page() -> HTMLResponse:
    return _render_page(
        title="Login Successful",
        message="You are signed in. You can close this window and return to the application.",
        icon="&#10003;",
        color="#10b981",
        status_code=status.HTTP_200_OK,
    )


def _render_expired_page() -> HTMLResponse:
    return _render_page(
        title="Login Expired",
        message="This login request has expired. Please start again from the application.",
        icon="&#8987;",
        color="#f59e0b",
        status_code=status.HTTP_410_GONE,
    )


def _render_error_page(
    title: str,
    message: str,
    status_code: int = status.HTTP_400_BAD_REQUEST,
) -> HTMLResponse:
    """
    Render error page for authentication failures.

    Args:
        title: Error title
        message: Error message (no PII)
        status_code: HTTP status code
    """
    return _render_page(
        title=title,
        message=message,
        icon="!",
        color="#ef4444",
        status_code=status_code,
    )
