"""POS (ready2order) API Routes.

Endpoints:
- GET /pos/status - Check connection status
- POST /pos/connect - Start the grant-access flow
- GET /pos/callback - Provider redirect after approval
- POST /pos/disconnect - Remove the connection
- POST /pos/webhooks - Provider event receiver
- POST /pos/sync - Push inventory levels to the POS
"""
import hmac
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, Response
from fastapi.responses import RedirectResponse
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.dependencies import get_current_user, get_optional_user
from app.auth.entitlements import tier_allows_pos_integration
from app.config import settings
from app.database import get_db
from app.middleware.rate_limit import limiter
from app.models import ConnectionStatus, PosConnection, PosProductMapping, User
from app.pos import schemas
from app.pos.client import PosApiClient
from app.pos.crypto import get_credential_cipher
from app.pos.dependencies import get_pos_client
from app.pos.errors import BadRequestError, ForbiddenError
from app.pos.lifecycle import (
    ConnectionLifecycleManager,
    STATE_COOKIE_NAME,
    STATE_TTL_SECONDS,
)
from app.pos.sync import InventorySyncService
from app.pos.webhooks import WebhookProcessor, parse_webhook_event, verify_webhook_secret


router = APIRouter()
logger = logging.getLogger(__name__)

DENIED_STATUSES = {"denied", "abgelehnt"}


def get_lifecycle_manager(
    db: AsyncSession = Depends(get_db),
    client: PosApiClient = Depends(get_pos_client),
) -> ConnectionLifecycleManager:
    return ConnectionLifecycleManager(db, client, settings, get_credential_cipher)


def _settings_redirect(query: str) -> RedirectResponse:
    response = RedirectResponse(url=f"{settings.FRONTEND_URL}/settings?{query}", status_code=307)
    # The state is single-use whatever the outcome
    response.delete_cookie(STATE_COOKIE_NAME, path=settings.POS_CALLBACK_PATH)
    return response


def _error_redirect(reason: str) -> RedirectResponse:
    return _settings_redirect(f"r2o=error&reason={reason}")


# ============================================================================
# CONNECTION STATUS
# ============================================================================

@router.get("/status", response_model=schemas.PosConnectionStatus)
async def get_pos_status(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """
    Get the current POS connection status for the authenticated user.
    """
    result = await db.execute(
        select(PosConnection).where(PosConnection.user_id == current_user.id)
    )
    connection = result.scalar_one_or_none()

    if not connection:
        return schemas.PosConnectionStatus(is_connected=False)

    mapped = await db.scalar(
        select(func.count()).select_from(PosProductMapping).where(PosProductMapping.user_id == current_user.id)
    )

    return schemas.PosConnectionStatus(
        is_connected=connection.status == ConnectionStatus.CONNECTED.value,
        status=connection.status,
        webhook_registered=connection.webhook_registered,
        provider_account_id=connection.provider_account_id,
        product_group_id=connection.product_group_id,
        last_sync_at=connection.last_sync_at,
        mapped_products=mapped or 0,
    )


# ============================================================================
# GRANT-ACCESS FLOW
# ============================================================================

@router.post("/connect", response_model=schemas.AuthorizeResponse)
@limiter.limit(settings.RATE_LIMIT_STRICT)
async def connect_pos(
    request: Request,
    response: Response,
    current_user: User = Depends(get_current_user),
    manager: ConnectionLifecycleManager = Depends(get_lifecycle_manager),
):
    """
    Start linking the user's POS account.
    Returns the provider URI the user must visit to approve access.
    """
    start = await manager.start_authorization(current_user)

    # CSRF state, echoed back by the provider on the callback
    response.set_cookie(
        STATE_COOKIE_NAME,
        start.state,
        max_age=STATE_TTL_SECONDS,
        path=settings.POS_CALLBACK_PATH,
        httponly=True,
        secure=True,
        samesite="lax",
    )
    return schemas.AuthorizeResponse(grantAccessUri=start.grant_access_uri)


@router.get("/callback")
async def pos_callback(
    request: Request,
    accountToken: Optional[str] = Query(None),
    state: Optional[str] = Query(None),
    status: Optional[str] = Query(None),
    current_user: Optional[User] = Depends(get_optional_user),
    manager: ConnectionLifecycleManager = Depends(get_lifecycle_manager),
):
    """
    Provider redirect after the user approved (or denied) access.

    Always answers with a redirect to the settings page; failures carry a
    reason code, never the provider's error.
    """
    if status and status.lower() in DENIED_STATUSES:
        return _error_redirect("denied")

    if not accountToken:
        return _error_redirect("no_token")

    expected_state = request.cookies.get(STATE_COOKIE_NAME)
    if not state or not expected_state or not hmac.compare_digest(state, expected_state):
        logger.warning("POS callback with missing or mismatched state")
        return _error_redirect("auth")

    if current_user is None:
        return _error_redirect("auth")

    user_id = current_user.id
    try:
        await manager.complete_authorization(user_id, accountToken)
    except SQLAlchemyError as e:
        logger.error(f"POS connection upsert failed for user {user_id}: {e}")
        return _error_redirect("db")
    except Exception as e:
        logger.error(f"POS callback error for user {user_id}: {e}")
        return _error_redirect("unknown")

    return _settings_redirect("r2o=connected")


@router.post("/disconnect", response_model=schemas.DisconnectResponse)
@limiter.limit(settings.RATE_LIMIT_STRICT)
async def disconnect_pos(
    request: Request,
    current_user: User = Depends(get_current_user),
    manager: ConnectionLifecycleManager = Depends(get_lifecycle_manager),
):
    """
    Disconnect the POS for the authenticated user. Safe to repeat.
    """
    await manager.disconnect(current_user.id)
    return schemas.DisconnectResponse(disconnected=True)


# ============================================================================
# WEBHOOKS
# ============================================================================

@router.post("/webhooks", response_model=schemas.WebhookAck)
@limiter.exempt
async def receive_pos_webhook(
    request: Request,
    secret: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
):
    """
    Provider event receiver.

    Authenticated by the shared secret in the query string. Once
    authenticated and parsed, every request is acknowledged so that only
    transport or auth failures trigger provider redelivery.
    """
    verify_webhook_secret(settings.POS_WEBHOOK_SECRET, secret)

    try:
        payload = await request.json()
    except ValueError as exc:
        raise BadRequestError("Malformed JSON body") from exc

    event = parse_webhook_event(payload)
    await WebhookProcessor(db).process(event)
    return schemas.WebhookAck(received=True)


# ============================================================================
# INVENTORY SYNC
# ============================================================================

@router.post("/sync", response_model=schemas.PosSyncResult)
@limiter.limit(settings.RATE_LIMIT_STRICT)
async def sync_inventory_to_pos(
    request: Request,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    client: PosApiClient = Depends(get_pos_client),
):
    """
    Push the user's inventory levels to their POS products.
    """
    if not tier_allows_pos_integration(current_user):
        raise ForbiddenError("Your subscription does not include POS integration")

    service = InventorySyncService(db, client, get_credential_cipher())
    return await service.push_inventory(current_user.id)
