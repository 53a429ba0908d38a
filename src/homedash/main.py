"""Homedash application entrypoint."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from homedash.admin import ensure_admin
from homedash.config import Settings, load_config, settings
from homedash.dashboard import Backend, DashboardRegistry
from homedash.errors import (
    AuthError,
    AuthorizationError,
    HomedashError,
    RemoteError,
    ValidationError,
)

logging.basicConfig(level=settings.log_level.upper())
logger = logging.getLogger(__name__)

_STATUS_BY_ERROR: dict[type[HomedashError], int] = {
    AuthError: 401,
    AuthorizationError: 403,
    ValidationError: 400,
    RemoteError: 503,
}


def _create_backend(cfg: Settings) -> Backend | None:
    """Factory: instantiate the configured store and identity service."""
    if cfg.store_mode == "firebase":
        if not cfg.is_configured():
            logger.warning("Firebase mode selected but the project is not configured")
            return None
        from homedash.remote.firebase import FirebaseIdentity, FirebaseStore, init_firebase

        app = init_firebase(cfg)
        return Backend(
            store=FirebaseStore(app),
            identity=FirebaseIdentity(api_key=cfg.firebase_api_key or ""),
            mode="firebase",
        )

    from homedash.database import create_db_engine, init_db
    from homedash.remote.local import LocalIdentity, LocalStore

    engine = create_db_engine(cfg.db_path)
    init_db(engine)
    logger.info("Local store at %s", cfg.db_path)
    return Backend(store=LocalStore(engine), identity=LocalIdentity(engine), mode="local")


async def _start_backend(app: FastAPI) -> None:
    cfg = load_config()
    backend = _create_backend(cfg)
    app.state.config = cfg
    app.state.backend = backend
    app.state.dashboards = DashboardRegistry(backend, cfg) if backend else None

    if backend is None:
        logger.info("No backend configured, waiting for setup")
        return
    if backend.mode == "local" and cfg.bootstrap_admin_email and cfg.bootstrap_admin_password:
        await ensure_admin(
            backend.identity,
            backend.store,
            cfg.bootstrap_admin_email,
            cfg.bootstrap_admin_password,
        )
    app.state.dashboards.start()
    logger.info("Backend ready: %s", backend.mode)


async def _stop_backend(app: FastAPI) -> None:
    if getattr(app.state, "dashboards", None) is not None:
        await app.state.dashboards.close_all()
    if getattr(app.state, "backend", None) is not None:
        await app.state.backend.close()


async def restart_backend(app: FastAPI) -> None:
    """Close every session and rebuild the backend from fresh configuration."""
    await _stop_backend(app)
    await _start_backend(app)
    logger.info("Backend restarted")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application startup/shutdown lifecycle."""
    await _start_backend(app)

    yield

    await _stop_backend(app)
    logger.info("Backend stopped")


app = FastAPI(
    title="Homedash",
    description="Home automation dashboard for relays, dimmers and sensors",
    version="0.1.0",
    lifespan=lifespan,
)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request, call_next):
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Cache-Control"] = "no-store"
        return response


app.add_middleware(SecurityHeadersMiddleware)


@app.exception_handler(HomedashError)
async def homedash_error_handler(request: Request, exc: HomedashError) -> JSONResponse:
    status_code = next(
        (code for cls, code in _STATUS_BY_ERROR.items() if isinstance(exc, cls)), 500
    )
    if status_code >= 500:
        logger.warning("%s %s failed: %s", request.method, request.url.path, exc.message)
    content: dict[str, str | None] = {"message": exc.message, "error_code": exc.error_code}
    if isinstance(exc, AuthError):
        content["code"] = exc.code
    if isinstance(exc, ValidationError):
        content["field"] = exc.field
    return JSONResponse(status_code=status_code, content=content)


# Register routers
from homedash.api.routes import router as api_router  # noqa: E402

app.include_router(api_router)


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


def main() -> None:
    import uvicorn

    logger.info("Starting Homedash on %s:%d", settings.host, settings.port)
    uvicorn.run(app, host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
