import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from taco_wallet.api.v1.api import router as api_router
from taco_wallet.config import Settings, settings as default_settings
from taco_wallet.container import ServiceContainer
from taco_wallet.errors import ErrorCode, WalletError

logger = logging.getLogger(__name__)


def _validation_message(error: dict) -> str:
    loc = [str(part) for part in error.get("loc", ()) if part not in ("body", "query")]
    field = ".".join(loc) or "body"
    if error.get("type") == "missing":
        return f"{field} is required"
    return f"{field}: {error.get('msg', 'invalid value')}"


def create_app(
    settings: Optional[Settings] = None,
    container: Optional[ServiceContainer] = None,
) -> FastAPI:
    settings = settings or default_settings

    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        if app.state.container is not None:
            await app.state.container.aclose()
            logger.info("Upstream clients closed")

    app = FastAPI(title="TACo Wallet API", version="1.0.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.container = container
    app.state.container_lock = asyncio.Lock()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(WalletError)
    async def wallet_error_handler(request: Request, exc: WalletError):
        if exc.status_code >= 500:
            logger.error("%s %s failed [%s]: %s", request.method, request.url.path, exc.code.value, exc.message)
        else:
            logger.warning("%s %s rejected [%s]: %s", request.method, request.url.path, exc.code.value, exc.message)
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        message = _validation_message(errors[0]) if errors else "Invalid request"
        logger.warning("%s %s rejected: %s", request.method, request.url.path, message)
        return JSONResponse(
            status_code=400,
            content={
                "error": message,
                "code": ErrorCode.VALIDATION_ERROR.value,
                "details": {"errors": [_validation_message(e) for e in errors]},
            },
        )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=500,
            content={"error": "Internal server error", "code": ErrorCode.INTERNAL_ERROR.value, "details": {}},
        )

    # Health check route
    @app.get("/health")
    def health_check():
        return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}

    app.include_router(api_router, prefix="/v1")
    return app


app = create_app()
