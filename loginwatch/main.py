"""LoginWatch: login lockout and audit service.

FastAPI entry point with the app factory and lifespan management.
"""

from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from . import __version__
from .api.router import api_router
from .auth.credentials import DatabaseCredentialVerifier, ensure_user
from .config import DEFAULT_SECRET_KEY, LoginWatchConfig, get_config
from .database import build_engine, build_session_factory, create_tables
from .engine.audit_sink import DatabaseAuditSink
from .engine.auth_gate import AuthGate
from .engine.counter_store import create_counter_store
from .engine.rate_limiter import RateLimiter, RateLimitPolicy
from .middleware.error_handler import register_error_handlers
from .middleware.request_id import RequestIDMiddleware
from .utils.logging import get_logger, setup_logging

logger = get_logger("loginwatch.main")


def _check_secret_key(config: LoginWatchConfig) -> None:
    if config.secret_key != DEFAULT_SECRET_KEY:
        return
    if not config.debug:
        raise RuntimeError(
            "INSECURE_SECRET_KEY: default secret_key detected in production mode. "
            "Set a strong, unique SECRET_KEY in .env before deploying."
        )
    logger.warning("insecure_secret_key", hint="set SECRET_KEY before deploying to production")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: startup and shutdown."""
    config: LoginWatchConfig = app.state.config

    # --- Startup ---
    setup_logging(
        debug=config.debug,
        log_dir=config.log_dir,
        log_max_bytes=config.log_max_bytes,
        log_backup_count=config.log_backup_count,
    )
    logger.info("loginwatch_starting", host=config.host, port=config.port)
    _check_secret_key(config)

    await create_tables(app.state.engine)

    if config.bootstrap_admin_username and config.bootstrap_admin_password:
        created = await ensure_user(
            app.state.session_factory,
            config.bootstrap_admin_username,
            config.bootstrap_admin_password,
        )
        if created:
            logger.info("bootstrap_admin_created", username=config.bootstrap_admin_username)

    logger.info(
        "loginwatch_ready",
        counter_store=app.state.counter_store.backend,
        max_attempts=config.rate_limit_max_attempts,
        window_seconds=config.rate_limit_window_seconds,
        lockout_seconds=config.rate_limit_lockout_seconds,
    )

    yield

    # --- Shutdown ---
    logger.info("loginwatch_shutting_down")
    await app.state.counter_store.close()
    await app.state.engine.dispose()
    logger.info("loginwatch_stopped")


def create_app(config: LoginWatchConfig | None = None) -> FastAPI:
    """Build the application and every service it depends on."""
    config = config or get_config()

    app = FastAPI(
        title=config.app_name,
        description="Login lockout and audit log",
        version=__version__,
        lifespan=lifespan,
    )

    # Services live on app.state so each app (and each test) gets its own
    app.state.config = config
    app.state.engine = build_engine(config)
    app.state.session_factory = build_session_factory(app.state.engine)
    app.state.counter_store = create_counter_store(config)
    policy = RateLimitPolicy(
        max_attempts=config.rate_limit_max_attempts,
        window_seconds=config.rate_limit_window_seconds,
        lockout_seconds=config.rate_limit_lockout_seconds,
        key_prefix=config.rate_limit_key_prefix,
    )
    limiter = RateLimiter(app.state.counter_store, policy)
    app.state.auth_gate = AuthGate(limiter, DatabaseAuditSink(app.state.session_factory))
    app.state.credential_verifier = DatabaseCredentialVerifier(app.state.session_factory)

    register_error_handlers(app)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins_list,
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type"],
    )
    # Request ID is added LAST so it runs FIRST
    app.add_middleware(RequestIDMiddleware)

    app.include_router(api_router)

    @app.get("/")
    async def root():
        return {"name": config.app_name, "version": __version__, "status": "operational"}

    @app.get("/health")
    async def health(request: Request):
        """Service health including counter store reachability."""
        store = request.app.state.counter_store
        reachable = await store.ping()
        return {
            "status": "healthy" if reachable else "degraded",
            "version": __version__,
            "counter_store": {"backend": store.backend, "reachable": reachable},
        }

    return app


def run():
    """Run the LoginWatch server."""
    config = get_config()
    uvicorn.run(
        "loginwatch.main:create_app",
        factory=True,
        host=config.host,
        port=config.port,
        reload=config.debug,
        log_level="debug" if config.debug else "info",
    )


if __name__ == "__main__":
    run()
