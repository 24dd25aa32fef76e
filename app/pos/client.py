"""ready2order REST API client.

All calls go through ``PosApiClient.call``, which draws from a shared
``SlidingWindowRateLimiter`` before dispatch. The limiter belongs to the
application credential, so one instance is shared by every tenant.
"""
import logging
from typing import Any, Dict, List, Optional

import httpx
from pydantic import ValidationError

from app.pos.errors import ExternalApiError
from app.pos.rate_limiter import SlidingWindowRateLimiter
from app.pos.schemas import GrantAccessResponse

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.ready2order.com/v1"


class PosApiClient:
    """Bearer-authenticated, rate-limited client for the POS provider."""

    def __init__(
        self,
        rate_limiter: SlidingWindowRateLimiter,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 10.0,
    ):
        self.rate_limiter = rate_limiter
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    def _get_headers(self, token: str) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {token}",
            "Accept": "application/json",
            "Content-Type": "application/json",
        }

    async def call(
        self,
        path: str,
        token: str,
        method: str = "GET",
        body: Optional[Any] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """
        Issue one API request.

        Waits for rate-limit budget first. Returns the decoded JSON body, or
        None when the provider answers with an empty body.

        Raises:
            ExternalApiError: non-2xx status or an undecodable body
                (``upstream_status`` set), or a transport failure/timeout
                (``upstream_status`` None).
        """
        await self.rate_limiter.acquire()

        url = f"{self.base_url}{path}"
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.request(
                    method,
                    url,
                    headers=self._get_headers(token),
                    json=body,
                    params=params,
                )
        except httpx.HTTPError as exc:
            logger.warning(f"POS API transport error on {method} {path}: {type(exc).__name__}")
            raise ExternalApiError(None, str(exc)) from exc

        if not response.is_success:
            raise ExternalApiError(response.status_code, response.text)

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            logger.warning(f"POS API returned a non-JSON body on {method} {path}")
            raise ExternalApiError(response.status_code, response.text) from exc

    # -------------------------------------------------------------------------
    # Authorization
    # -------------------------------------------------------------------------

    async def grant_access_token(self, developer_token: str, redirect_uri: str) -> GrantAccessResponse:
        """Request a grant URI the tenant is sent to for approval."""
        data = await self.call(
            "/developerToken/grantAccessToken",
            developer_token,
            method="POST",
            body={"authorizationCallbackUri": redirect_uri},
        )
        try:
            return GrantAccessResponse.model_validate(data or {})
        except ValidationError as exc:
            raise ExternalApiError(200, f"Unexpected grant response: {data!r}") from exc

    # -------------------------------------------------------------------------
    # Company
    # -------------------------------------------------------------------------

    async def get_company_info(self, token: str) -> Dict[str, Optional[str]]:
        """Get the provider account (company) the token belongs to."""
        data = await self.call("/company", token) or {}
        company_id = data.get("company_id") or data.get("id")
        return {
            "company_id": str(company_id) if company_id is not None else None,
            "company_name": data.get("company_name") or data.get("company_businessName"),
        }

    # -------------------------------------------------------------------------
    # Product groups and products
    # -------------------------------------------------------------------------

    async def create_product_group(self, token: str, name: str) -> Dict[str, Any]:
        data = await self.call(
            "/productgroups",
            token,
            method="POST",
            body={"productgroup_name": name},
        ) or {}
        # The provider answers in lowercase keys
        group_id = data.get("productgroup_id") or data.get("productGroup_id")
        return {
            "id": str(group_id) if group_id is not None else None,
            "name": data.get("productgroup_name") or data.get("productGroup_name") or name,
        }

    async def get_products(self, token: str) -> List[Dict[str, Any]]:
        return await self.call("/products", token) or []

    async def create_product(self, token: str, product: Dict[str, Any]) -> Dict[str, Any]:
        return await self.call("/products", token, method="POST", body=product) or {}

    async def update_product(self, token: str, product_id: str, updates: Dict[str, Any]) -> Dict[str, Any]:
        return await self.call(f"/products/{product_id}", token, method="PUT", body=updates) or {}

    # -------------------------------------------------------------------------
    # Webhooks
    # -------------------------------------------------------------------------

    async def register_webhook(self, token: str, url: str, events: List[str]) -> None:
        """Point the account's webhook at ``url`` and subscribe to ``events``."""
        await self.call("/webhook", token, method="PUT", body={"webhookUrl": url})

        # The provider takes one event per request
        for event in events:
            await self.call("/webhook/events", token, method="PUT", body={"addEvent": event})

    async def delete_webhook(self, token: str) -> None:
        """Clear the webhook URL."""
        await self.call("/webhook", token, method="PUT", body={"webhookUrl": ""})
