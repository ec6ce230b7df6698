"""Request throttling for the membership API."""

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from app.core.config import settings
from app.core.security import verify_token


def principal_or_address(request: Request) -> str:
    """Bucket signed-in callers by account so a shared farm network is not throttled as one."""
    scheme, _, credentials = request.headers.get("authorization", "").partition(" ")
    if scheme.lower() == "bearer" and credentials:
        principal = verify_token(credentials)
        if principal is not None:
            return f"user:{principal.user_id}"
    return get_remote_address(request)


limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[settings.RATE_LIMIT_BACKEND],
    enabled=settings.RATE_LIMIT_ENABLED,
)


def init_rate_limiter(app: FastAPI) -> None:
    app.state.limiter = limiter

    @app.exception_handler(RateLimitExceeded)
    async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
        return JSONResponse(
            status_code=429,
            content={
                "success": False,
                "code": "rate_limited",
                "message": f"Too many requests ({exc.detail}), try again shortly",
            },
        )
