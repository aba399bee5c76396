"""
Edge security service: FastAPI application factory.

``create_app`` is the composition root.  Every piece of mutable state (rate
counters, challenges, sessions) belongs to components built here and hung
off ``app.state``; nothing is a module-level singleton except ``app`` itself.
"""

from __future__ import annotations

import logging
import sys
import time
from collections.abc import Callable
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from edge_guard import __version__, config, db
from edge_guard.dependencies import verified_admin_predicate
from edge_guard.errors import EdgeGuardError
from edge_guard.middleware import EdgeSecurityMiddleware
from edge_guard.rate_limit import RateLimiter, build_skip_predicates, default_policies
from edge_guard.routers import auth, health, security
from edge_guard.security_headers import HeaderComposer
from edge_guard.services.channels import ChannelDispatcher, ContactDirectory
from edge_guard.services.two_factor import TwoFactorService
from edge_guard.sessions import SessionStore
from edge_guard.sweeper import StateSweeper

logger = logging.getLogger(__name__)


def configure_logging() -> None:
    """Send module loggers to stdout unless the host already configured logging."""
    if logging.getLogger().handlers:
        return
    logging.basicConfig(
        level=getattr(logging, config.LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stdout,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    await db.init_db()
    await app.state.sweeper.start()
    logger.info("Edge guard started (environment=%s)", config.ENVIRONMENT)
    try:
        yield
    finally:
        await app.state.sweeper.stop()
        await app.state.dispatcher.close()
        await db.close_db()


async def edge_guard_error_handler(request: Request, exc: EdgeGuardError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def create_app(
    *,
    clock: Callable[[], float] = time.time,
    dispatcher: ChannelDispatcher | None = None,
) -> FastAPI:
    """Build a fully wired application from the current configuration."""
    app = FastAPI(
        title="Edge Guard",
        description="Rate limiting, security headers and two-factor step-up for web APIs",
        version=__version__,
        lifespan=lifespan,
    )

    admin_user_ids = frozenset(config.ADMIN_USER_IDS)
    sessions = SessionStore(idle_timeout=config.SESSION_IDLE_TIMEOUT, clock=clock)
    directory = ContactDirectory(is_active=lambda user_id: sessions.get(user_id) is not None)
    dispatcher = dispatcher or ChannelDispatcher()

    limiter = RateLimiter(
        default_policies(),
        predicates=build_skip_predicates(
            config.ENVIRONMENT,
            is_admin=verified_admin_predicate(sessions, admin_user_ids),
        ),
        clock=clock,
        sweep_grace=config.RATE_LIMIT_SWEEP_GRACE,
    )
    composer = HeaderComposer(
        production=config.is_production(),
        cors_origins=config.CORS_ALLOWED_ORIGINS,
        cors_max_age=config.CORS_MAX_AGE,
        extra_script_src=config.CSP_EXTRA_SCRIPT_SRC,
        extra_style_src=config.CSP_EXTRA_STYLE_SRC,
        report_uri=config.CSP_REPORT_URI,
        trust_proxy=config.TRUST_PROXY_HEADERS,
    )
    two_factor = TwoFactorService(
        sessions,
        directory,
        dispatcher,
        secret=config.JWT_SECRET,
        token_expiry=config.TWO_FACTOR_TOKEN_EXPIRY,
        max_attempts=config.TWO_FACTOR_MAX_ATTEMPTS,
        backup_code_count=config.BACKUP_CODE_COUNT,
        channels=config.TWO_FACTOR_CHANNELS,
        clock=clock,
    )

    app.state.admin_user_ids = admin_user_ids
    app.state.sessions = sessions
    app.state.directory = directory
    app.state.dispatcher = dispatcher
    app.state.limiter = limiter
    app.state.composer = composer
    app.state.two_factor = two_factor
    app.state.sweeper = StateSweeper(
        {
            "rate_counters": limiter,
            "challenges": two_factor,
            "sessions": sessions,
            "contacts": directory,
        },
        interval=config.SWEEP_INTERVAL,
    )

    app.add_middleware(
        EdgeSecurityMiddleware,
        limiter=limiter,
        composer=composer,
        trust_proxy=config.TRUST_PROXY_HEADERS,
    )
    app.add_exception_handler(EdgeGuardError, edge_guard_error_handler)

    app.include_router(health.router)
    app.include_router(auth.router)
    app.include_router(security.router)
    return app


configure_logging()
app = create_app()
