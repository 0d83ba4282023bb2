"""
FastAPI application for federated (OAuth2) login.

This module wires dependencies and configures the application.
Business logic is in federated_login/core, adapters in
federated_login/infrastructure.
"""

import logging
import os
from contextlib import asynccontextmanager

# Configure logging FIRST, before other local imports
from federated_login.logging_config import setup_global_logging

setup_global_logging()

# Now import other modules (they will use the configured logging)
from fastapi import FastAPI, Request  # noqa: E402
from fastapi.responses import PlainTextResponse  # noqa: E402

from federated_login.core.exceptions import OAuthFlowError  # noqa: E402
from federated_login.infrastructure.seeds import DEFAULT_PROVIDERS  # noqa: E402
from federated_login.oauth import router as oauth_router  # noqa: E402
from federated_login.oauth.config import get_oauth_settings  # noqa: E402
from federated_login.oauth.dependencies import get_store  # noqa: E402

logger = logging.getLogger(__name__)


# ============================================================================
# Application Lifecycle
# ============================================================================


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan context manager.

    Validates settings, then creates the schema and seeds the standard
    (inactive) providers when DB_CREATE_SCHEMA is enabled.
    """
    logger.info("Application starting up...")
    settings = get_oauth_settings()
    settings.validate()

    if settings.create_schema:
        store = get_store()
        await store.create_tables()
        await store.seed_providers(DEFAULT_PROVIDERS)

    yield

    logger.info("Shutting down application...")
    try:
        await get_store().close()
    except Exception as e:
        logger.warning(f"Error closing store during shutdown: {e}")


app = FastAPI(
    title="Federated Login",
    description="OAuth2 provider login issuing first-party session tokens",
    version="1.0.0",
    lifespan=lifespan,
)


# ============================================================================
# Centralized Exception Handlers
# ============================================================================


@app.exception_handler(OAuthFlowError)
async def oauth_flow_error_handler(request: Request, exc: OAuthFlowError):
    """
    Render login flow failures as plain text with their status code.

    Client errors (bad provider, missing code, refused registration) are
    4xx; store outages are 503 and logged as errors.
    """
    if exc.status_code >= 500:
        logger.error(f"OAuth flow error on {request.url.path}: {exc.detail or exc.message}")
    return PlainTextResponse(content=exc.message, status_code=exc.status_code)


# ============================================================================
# Include Routers
# ============================================================================

app.include_router(oauth_router.router)


# ============================================================================
# Main Entry Point
# ============================================================================

if __name__ == "__main__":
    import uvicorn

    port = int(os.getenv("PORT", 8080))
    uvicorn.run(app, host="0.0.0.0", port=port)
