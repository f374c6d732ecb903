"""
FastAPI Backend for the PoSH knowledge tool server

HTTP transport over the same dispatcher the MCP server uses: list the tool
catalog, call a tool, check health and read call metrics.

Run with: uvicorn execution.posh_knowledge.api:app --host 0.0.0.0 --port 8000
"""

import os
import logging
from typing import Optional
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from dotenv import load_dotenv

from .api_models import HealthResponse, ToolCallRequest, ToolCallResponse, ToolInfo
from .config import SERVER_NAME, SERVER_VERSION, ServerConfig
from .dispatcher import ToolDispatcher, build_dispatcher
from .knowledge_store import KnowledgeStore
from .metrics import get_metrics_collector

# Load environment variables
load_dotenv()
logger = logging.getLogger(__name__)


# =============================================================================
# Service Container - one store and dispatcher per process
# =============================================================================

class ServiceContainer:
    """Lazily builds and caches the knowledge store and dispatcher."""

    def __init__(self):
        self._config: Optional[ServerConfig] = None
        self._store: Optional[KnowledgeStore] = None
        self._dispatcher: Optional[ToolDispatcher] = None

    def get_config(self) -> ServerConfig:
        if self._config is None:
            self._config = ServerConfig.from_env()
        return self._config

    def get_store(self) -> KnowledgeStore:
        if self._store is None:
            self._store = KnowledgeStore(self.get_config().store)
        return self._store

    def get_dispatcher(self) -> ToolDispatcher:
        if self._dispatcher is None:
            self._dispatcher = build_dispatcher(self.get_config(), self.get_store())
        return self._dispatcher

    def close(self) -> None:
        if self._store is not None:
            self._store.close()


_container = ServiceContainer()


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"{SERVER_NAME} {SERVER_VERSION} HTTP API starting")
    yield
    _container.close()
    logger.info(f"{SERVER_NAME} HTTP API stopped")


app = FastAPI(
    title="PoSH Knowledge API",
    description="Tool-call API over the PoSH Act, Rules, case law, playbooks and templates",
    version=SERVER_VERSION,
    lifespan=lifespan,
)

# Configure CORS: use CORS_ORIGINS env var (comma-separated) or default to localhost
_cors_origins = os.getenv("CORS_ORIGINS", "http://localhost:5173,http://localhost:3000").split(",")
app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in _cors_origins],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# =============================================================================
# Endpoints
# =============================================================================

@app.get("/api/v1/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint."""
    store = _container.get_store()
    if await store.ping():
        db_status = "connected"
    else:
        logger.warning("Health check: database disconnected")
        db_status = "disconnected"

    return HealthResponse(
        status="ok",
        version=SERVER_VERSION,
        database=db_status,
    )


@app.get("/api/v1/tools", response_model=list[ToolInfo])
async def list_tools():
    """Return the tool catalog."""
    return _container.get_dispatcher().list_tools()


@app.post("/api/v1/tools/call", response_model=ToolCallResponse)
async def call_tool(request: ToolCallRequest):
    """
    Call a tool by name.

    Unknown tools, invalid arguments and backend failures come back as
    200 with isError=true, the same envelope MCP clients receive.
    """
    response = await _container.get_dispatcher().call_tool(request.name, request.arguments)
    return response.to_dict()


@app.get("/api/v1/metrics")
async def get_metrics():
    """Return aggregated tool-call metrics."""
    collector = get_metrics_collector()
    data = collector.get_metrics_dict()
    data["uptime_seconds"] = round(collector.get_uptime().total_seconds(), 1)
    return data
