"""FastAPI dependencies for the POS integration."""
from fastapi import Request

from app.config import settings
from app.pos.client import PosApiClient
from app.pos.rate_limiter import SlidingWindowRateLimiter


def build_pos_client() -> PosApiClient:
    """Construct the application's client and its shared outbound budget."""
    limiter = SlidingWindowRateLimiter(
        max_requests=settings.POS_RATE_LIMIT_MAX_REQUESTS,
        window_ms=settings.POS_RATE_LIMIT_WINDOW_MS,
    )
    return PosApiClient(
        rate_limiter=limiter,
        base_url=settings.POS_API_BASE_URL,
        timeout=settings.POS_HTTP_TIMEOUT_SECONDS,
    )


def get_pos_client(request: Request) -> PosApiClient:
    return request.app.state.pos_client
