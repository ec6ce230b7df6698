import logging
import time
from typing import Dict

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from app.api.v1 import account, farm, invitations, billing
from app.core.config import settings
from app.core.errors import MembershipError
from app.core.rate_limiter import init_rate_limiter
from app.database import engine

logger = logging.getLogger(__name__)

app = FastAPI(
    title="AgriAssist API",
    description="Farm membership, staff invitations and plan-driven roles",
    version="1.0.0",
)

# CORS middleware (configured via settings for production safety)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.BACKEND_CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

init_rate_limiter(app)


@app.exception_handler(MembershipError)
async def membership_error_handler(request: Request, exc: MembershipError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s on %s %s: %s", exc.code, request.method, request.url.path, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "code": exc.code, "message": exc.message},
    )


# Health check endpoint
@app.get("/health")
async def health_check():
    return {"status": "healthy", "service": "AgriAssist Backend"}


# Detailed health including DB
@app.get("/healthz")
async def health_detailed() -> Dict[str, object]:
    resp: Dict[str, object] = {"service": "AgriAssist Backend", "status": "healthy"}

    t0 = time.time()
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        resp["db"] = {"status": "ok", "elapsed_ms": round((time.time() - t0) * 1000.0, 2)}
    except SQLAlchemyError as e:
        resp["db"] = {"status": "error", "error": str(e), "elapsed_ms": round((time.time() - t0) * 1000.0, 2)}
        resp["status"] = "degraded"

    return resp


# Include API routers
app.include_router(account.router, prefix=settings.API_V1_STR, tags=["account"])
app.include_router(farm.router, prefix=settings.API_V1_STR, tags=["farm"])
app.include_router(invitations.router, prefix=settings.API_V1_STR, tags=["invitations"])
app.include_router(billing.router, prefix=settings.API_V1_STR, tags=["billing"])


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
