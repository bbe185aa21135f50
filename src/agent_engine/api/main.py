from __future__ import annotations

import time

from collections.abc import AsyncGenerator, Awaitable, Callable
from contextlib import asynccontextmanager

import httpx

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from agent_engine.api.middleware.exception_handlers import register_exception_handlers
from agent_engine.api.middleware.request_context import RequestContextMiddleware
from agent_engine.api.middleware.request_limits import RequestSizeLimitMiddleware
from agent_engine.api.routes.v1 import router as v1_router
from agent_engine.api.services.request_gate import RequestGate
from agent_engine.core.constants import Settings, _get_env_files, get_settings
from agent_engine.integrations.provider import ModelProvider, OpenAIChatProvider
from agent_engine.integrations.tool_registry import ToolRegistry
from agent_engine.models.session_models import PersistenceGateway, UsageRecorder
from agent_engine.services.conversation_store import InMemoryConversationStore, PostgresConversationStore
from agent_engine.services.usage_service import InMemoryUsageRecorder, PostgresUsageRecorder
from agent_engine.utils.client_factory import create_http_client, create_openai_client
from agent_engine.utils.db_utils import check_pool_health, create_database_pool, graceful_pool_close
from agent_engine.utils.logger import configure_uvicorn_logging, logger

# Configure uvicorn logging at module level to ensure workers use it
configure_uvicorn_logging()


def _create_provider(settings: Settings) -> tuple[ModelProvider, httpx.AsyncClient]:
    """OpenAI-backed provider plus the HTTP client to close on shutdown."""
    if not settings.openai_api_key:
        raise RuntimeError("OPENAI_API_KEY is not configured")

    logger.info("Configuring OpenAI client")
    http_client = create_http_client(
        enable_logging=settings.http_request_logging,
        read_timeout=settings.http_read_timeout,
    )
    client = create_openai_client(settings.openai_api_key, base_url=settings.openai_base_url, http_client=http_client)
    return OpenAIChatProvider(client), http_client


def create_app(
    *,
    settings: Settings | None = None,
    provider: ModelProvider | None = None,
    tool_registry: ToolRegistry | None = None,
    usage_recorder: UsageRecorder | None = None,
    conversation_store: PersistenceGateway | None = None,
    sleep: Callable[[float], Awaitable[None]] | None = None,
) -> FastAPI:
    """Build the API application.

    Collaborators that are not injected are created at startup: an OpenAI
    provider, and Postgres-backed usage/conversation stores when
    DATABASE_URL is set (in-memory ones otherwise).
    """
    settings = settings or get_settings()

    if settings.debug:
        logger.info(f"Env files: {[f.name for f in _get_env_files()]}")
        logger.info(f"Settings: app_env={settings.app_env}, database={'yes' if settings.database_url else 'in-memory'}")

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Application lifespan: build collaborators, then release them on shutdown."""
        app.state.started_at = time.monotonic()
        app.state.db_pool = None
        http_client: httpx.AsyncClient | None = None

        active_provider = provider
        if active_provider is None:
            active_provider, http_client = _create_provider(settings)

        usage = usage_recorder
        store = conversation_store
        if settings.database_url and (usage is None or store is None):
            app.state.db_pool = await create_database_pool(
                dsn=settings.database_url,
                min_size=settings.db_pool_min_size,
                max_size=settings.db_pool_max_size,
                command_timeout=settings.db_command_timeout,
                connection_timeout=settings.db_connection_timeout,
            )
            health = await check_pool_health(app.state.db_pool)
            if not health["healthy"]:
                logger.error("Database health check failed during startup")
                raise RuntimeError("Database connection failed")
            logger.info(f"Database pool healthy: {health}")

            usage = usage or PostgresUsageRecorder(app.state.db_pool, settings.monthly_budget_usd)
            store = store or PostgresConversationStore(app.state.db_pool)
        else:
            if usage is None or store is None:
                logger.warning("DATABASE_URL not set, usage and conversations are kept in memory")
            usage = usage or InMemoryUsageRecorder(settings.monthly_budget_usd)
            store = store or InMemoryConversationStore()

        app.state.tool_registry = tool_registry if tool_registry is not None else ToolRegistry()
        app.state.usage_recorder = usage
        app.state.conversation_store = store
        app.state.request_gate = RequestGate(
            active_provider,
            app.state.tool_registry,
            usage,
            store,
            settings,
            sleep=sleep,
        )
        logger.info(f"Agent engine ready ({len(app.state.tool_registry)} tools registered)")

        try:
            yield
        finally:
            logger.info("Initiating graceful shutdown sequence")
            if http_client is not None:
                await http_client.aclose()
            if app.state.db_pool is not None:
                await graceful_pool_close(app.state.db_pool)

    app = FastAPI(
        title="Agent Engine API",
        description="""
## Agent Engine API

Conversational agent for the commercial team: multi-round tool use over
the business catalog, PDF terms-of-reference analysis, and a monthly AI
spend ceiling.

### Streaming
`POST /api/v1/agent/chat` answers with Server-Sent Events. Pre-stream
failures (401, 400, 413, 429) are JSON errors; failures after the stream
started arrive as an `error` event followed by `done`.

### Authentication
All endpoints except health checks require a JWT Bearer token.
""",
        version="1.0.0",
        lifespan=lifespan,
        openapi_tags=[
            {"name": "Health", "description": "Health check endpoints for monitoring"},
            {"name": "Agent", "description": "Streaming agent chat"},
            {"name": "Usage", "description": "Monthly AI spend and ceiling"},
        ],
        openapi_url="/api/v1/openapi.json",
        docs_url="/api/v1/docs",
        redoc_url="/api/v1/redoc",
    )

    # Register global exception handlers for consistent error responses
    register_exception_handlers(app)

    # Middleware is executed in reverse order of registration:
    # size limit first, then CORS, then request context
    app.add_middleware(RequestContextMiddleware)

    origins = settings.cors_origins_list
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=origins != ["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_middleware(RequestSizeLimitMiddleware, max_body_size=settings.max_request_body_size)

    # Routes - API v1
    app.include_router(v1_router, prefix="/api/v1")

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("agent_engine.api.main:app", host="0.0.0.0", port=8000, reload=get_settings().is_development)
