"""POS connection lifecycle: authorize, finalize, revoke.

States per tenant::

    NoConnection/Disconnected --connect--> Authorizing --callback--> Connected
    Connected --disconnect--> (row deleted)

Identity and entitlement failures raise. Provider-side enrichment during the
callback (account lookup, product group, webhook) is best-effort: each step
returns a ``StepResult`` and the connection is stored whatever they report.
"""
import logging
import secrets
import urllib.parse
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, Optional, TypeVar

from jose import jwt
from jose.exceptions import JOSEError
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.entitlements import tier_allows_pos_integration
from app.config import Settings
from app.models import ConnectionStatus, PosConnection, PosProductMapping, User
from app.pos.client import PosApiClient
from app.pos.crypto import CredentialCipher
from app.pos.errors import ConflictError, ForbiddenError, ServiceUnavailableError

logger = logging.getLogger(__name__)

T = TypeVar("T")

STATE_COOKIE_NAME = "pos_oauth_state"
STATE_TTL_SECONDS = 600


@dataclass
class StepResult(Generic[T]):
    """Outcome of a best-effort provider step."""
    name: str
    ok: bool
    value: Optional[T] = None
    error: Optional[Exception] = None


async def attempt(name: str, step: Callable[[], Awaitable[T]]) -> StepResult[T]:
    """Run ``step`` and capture its failure instead of raising it."""
    try:
        return StepResult(name=name, ok=True, value=await step())
    except Exception as exc:
        return StepResult(name=name, ok=False, error=exc)


def ignore_failure(result: StepResult) -> None:
    """Log a failed best-effort step. The caller carries on regardless."""
    if not result.ok:
        logger.warning(f"POS step '{result.name}' failed and was skipped: {result.error}")


def generate_state() -> str:
    """Generate a secure random CSRF state."""
    return secrets.token_hex(32)


def account_id_from_token(account_token: str) -> Optional[str]:
    """Read the company id from the account token's (unverified) JWT claims."""
    try:
        claims = jwt.get_unverified_claims(account_token)
    except JOSEError:
        return None

    data = claims.get("data")
    company_id = data.get("company_id") if isinstance(data, dict) else None
    if company_id is None:
        company_id = claims.get("company_id")
    return str(company_id) if company_id is not None else None


@dataclass
class AuthorizationStart:
    grant_access_uri: str
    state: str


@dataclass
class EnrichmentReport:
    provider_account_id: Optional[str] = None
    product_group_id: Optional[str] = None
    webhook_registered: bool = False


class ConnectionLifecycleManager:
    """Drives connect, callback and disconnect for one request."""

    def __init__(
        self,
        db: AsyncSession,
        client: PosApiClient,
        settings: Settings,
        cipher_factory: Callable[[], CredentialCipher],
    ):
        self.db = db
        self.client = client
        self.settings = settings
        self._cipher_factory = cipher_factory

    async def get_connection(self, user_id: str) -> Optional[PosConnection]:
        result = await self.db.execute(
            select(PosConnection).where(PosConnection.user_id == user_id)
        )
        return result.scalar_one_or_none()

    # =========================================================================
    # CONNECT
    # =========================================================================

    async def start_authorization(self, user: User) -> AuthorizationStart:
        """
        Begin linking a POS account.

        Raises:
            ServiceUnavailableError: developer credentials are not configured.
            ForbiddenError: the subscription does not include POS integration.
            ConflictError: the tenant is already connected.
            ExternalApiError: the provider refused the grant request.
        """
        if not self.settings.POS_DEVELOPER_TOKEN:
            raise ServiceUnavailableError("POS integration is not configured")

        if not tier_allows_pos_integration(user):
            raise ForbiddenError("Your subscription does not include POS integration")

        existing = await self.get_connection(user.id)
        if existing and existing.status == ConnectionStatus.CONNECTED.value:
            raise ConflictError("Already connected to the POS")

        state = generate_state()
        query = urllib.parse.urlencode({"state": state})
        redirect_uri = f"{self.settings.APP_URL}{self.settings.POS_CALLBACK_PATH}?{query}"

        grant = await self.client.grant_access_token(self.settings.POS_DEVELOPER_TOKEN, redirect_uri)
        logger.info(f"POS authorization started for user: {user.id}")

        return AuthorizationStart(grant_access_uri=grant.grantAccessUri, state=state)

    # =========================================================================
    # CALLBACK
    # =========================================================================

    def webhook_url(self) -> str:
        base = f"{self.settings.APP_URL}{self.settings.POS_WEBHOOK_PATH}"
        if not self.settings.POS_WEBHOOK_SECRET:
            return base
        return f"{base}?{urllib.parse.urlencode({'secret': self.settings.POS_WEBHOOK_SECRET})}"

    async def _lookup_account_id(self, account_token: str) -> Optional[str]:
        account_id = account_id_from_token(account_token)
        if account_id:
            return account_id
        info = await self.client.get_company_info(account_token)
        return info.get("company_id")

    async def _enrich(self, account_token: str) -> EnrichmentReport:
        """Sequential best-effort provider setup; never raises."""
        report = EnrichmentReport()

        account = await attempt("account_lookup", lambda: self._lookup_account_id(account_token))
        ignore_failure(account)
        if account.ok:
            report.provider_account_id = account.value

        group = await attempt(
            "product_group",
            lambda: self.client.create_product_group(account_token, self.settings.POS_PRODUCT_GROUP_NAME),
        )
        ignore_failure(group)
        if group.ok:
            report.product_group_id = group.value.get("id")

        webhook = await attempt(
            "webhook_registration",
            lambda: self.client.register_webhook(
                account_token, self.webhook_url(), list(self.settings.POS_WEBHOOK_EVENTS)
            ),
        )
        ignore_failure(webhook)
        report.webhook_registered = webhook.ok

        return report

    async def complete_authorization(self, user_id: str, account_token: str) -> PosConnection:
        """
        Store the approved account token and mark the tenant connected.

        Raises:
            CipherConfigurationError: no usable encryption key.
            SQLAlchemyError: the upsert failed.
        """
        sealed = self._cipher_factory().encrypt(account_token)
        report = await self._enrich(account_token)

        connection = await self.get_connection(user_id)
        if connection:
            connection.encrypted_token = sealed.ciphertext
            connection.token_iv = sealed.iv
            connection.status = ConnectionStatus.CONNECTED.value
            connection.webhook_registered = report.webhook_registered
            connection.product_group_id = report.product_group_id
            connection.provider_account_id = report.provider_account_id
        else:
            connection = PosConnection(
                user_id=user_id,
                encrypted_token=sealed.ciphertext,
                token_iv=sealed.iv,
                status=ConnectionStatus.CONNECTED.value,
                webhook_registered=report.webhook_registered,
                product_group_id=report.product_group_id,
                provider_account_id=report.provider_account_id,
            )
            self.db.add(connection)

        try:
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(
            f"POS connected for user: {user_id} (account={'yes' if report.provider_account_id else 'no'}, "
            f"group={'yes' if report.product_group_id else 'no'}, webhook={report.webhook_registered})"
        )
        return connection

    # =========================================================================
    # DISCONNECT
    # =========================================================================

    async def _deregister_webhook(self, connection: PosConnection) -> None:
        account_token = self._cipher_factory().decrypt(connection.encrypted_token, connection.token_iv)
        await self.client.delete_webhook(account_token)

    async def disconnect(self, user_id: str) -> bool:
        """
        Revoke the tenant's link. Returns False if there was nothing to remove.

        Provider-side webhook removal is best-effort since the token may
        already be stale; local mappings and the connection row are always
        deleted so the encrypted token does not outlive the link.
        """
        connection = await self.get_connection(user_id)
        if connection is None:
            return False

        if connection.webhook_registered:
            ignore_failure(await attempt("webhook_deregistration", lambda: self._deregister_webhook(connection)))

        try:
            await self.db.execute(delete(PosProductMapping).where(PosProductMapping.user_id == user_id))
            await self.db.execute(delete(PosConnection).where(PosConnection.user_id == user_id))
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(f"POS disconnected for user: {user_id}")
        return True
