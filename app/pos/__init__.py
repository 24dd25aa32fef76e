"""POS integration module.

Links a tenant's ready2order account, stores its token encrypted, and turns
provider sale webhooks into idempotent inventory decrements.
"""

from app.pos.client import PosApiClient
from app.pos.crypto import CredentialCipher
from app.pos.rate_limiter import SlidingWindowRateLimiter

__all__ = [
    "PosApiClient",
    "CredentialCipher",
    "SlidingWindowRateLimiter",
]
