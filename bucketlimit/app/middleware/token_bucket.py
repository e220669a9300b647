"""Token bucket admission middleware.

Spends tokens from the caller's bucket before the request reaches the
application. Buckets are keyed per API key if available, otherwise per IP.
"""

import hashlib
from typing import Callable, Optional

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from bucketlimit.app.core.config import settings
from bucketlimit.app.core.logging import get_log_context, get_logger
from bucketlimit.app.services.token_bucket.engine import TokenBucketLimiter, get_token_bucket_limiter
from bucketlimit.app.services.token_bucket.models import FailPolicy, LimitDecision

logger = get_logger(__name__)


class KeyTooLongError(ValueError):
    """Raised when a client-supplied key exceeds the configured length."""


def default_key_func(request: Request, max_key_length: Optional[int] = None) -> str:
    """Get the bucket identifier for a request.

    Uses the bearer token if present, otherwise the client IP. Both are
    hashed with SHA-256 so raw secrets and addresses never reach the store.

    Raises:
        KeyTooLongError: If the bearer token exceeds ``max_key_length``
    """
    max_key_length = max_key_length or settings.middleware_max_key_length

    auth = request.headers.get("Authorization", "")
    if auth.startswith("Bearer "):
        api_key = auth[7:].strip()
        if len(api_key) > max_key_length:
            raise KeyTooLongError(f"API key too long (max {max_key_length} characters)")
        key_hash = hashlib.sha256(api_key.encode()).hexdigest()[:32]
        return f"apikey:{key_hash}"

    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        client_ip = forwarded.split(",")[0].strip()
    else:
        client_ip = request.client.host if request.client else "unknown"
    ip_hash = hashlib.sha256(client_ip.encode()).hexdigest()[:32]
    return f"ip:{ip_hash}"


class TokenBucketMiddleware(BaseHTTPMiddleware):
    """Middleware to enforce token bucket limits on requests.

    Denied requests get a 429 response with ``Retry-After``. When the limiter
    itself is unavailable the configured fail policy decides.
    """

    def __init__(
        self,
        app,
        limiter: Optional[TokenBucketLimiter] = None,
        key_func: Optional[Callable[[Request], str]] = None,
        cost: int = 1,
        on_exhaustion: Optional[FailPolicy] = None,
    ):
        super().__init__(app)
        self._limiter = limiter
        self._key_func = key_func or default_key_func
        self._cost = cost
        self._on_exhaustion = on_exhaustion

    @property
    def limiter(self) -> TokenBucketLimiter:
        if self._limiter is None:
            self._limiter = get_token_bucket_limiter()
        return self._limiter

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        """Process request with rate limiting."""
        try:
            identifier = self._key_func(request)
        except KeyTooLongError as e:
            return JSONResponse(status_code=400, content={"error": "invalid_api_key", "message": str(e)})

        decision = await self.limiter.limit_or_fallback(identifier, self._cost, self._on_exhaustion)

        if not decision.allowed:
            logger.info(
                "Request rate limited",
                extra=get_log_context(
                    identifier=identifier,
                    outcome=decision.reason.value,
                    path=request.url.path,
                ),
            )
            return self._denied_response(decision)

        response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(decision.limit)
        response.headers["X-RateLimit-Remaining"] = str(decision.remaining_tokens)
        return response

    @staticmethod
    def _denied_response(decision: LimitDecision) -> JSONResponse:
        headers = {
            "X-RateLimit-Limit": str(decision.limit),
            "X-RateLimit-Remaining": str(decision.remaining_tokens),
        }
        if decision.retry_after is not None:
            headers["Retry-After"] = str(decision.retry_after)
        return JSONResponse(
            status_code=429,
            content={
                "error": "rate_limit_exceeded",
                "reason": decision.reason.value,
                "message": "Rate limit exceeded. Please try again later.",
                "retry_after": decision.retry_after,
            },
            headers=headers,
        )
