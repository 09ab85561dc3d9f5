"""
AgentFlow - FastAPI Application Entry Point.

Compose AI agents into a directed graph and run a single input through it.
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import logging

from agentflow.config import settings
from agentflow.api.routes import flow, websocket
from agentflow.storage.memory import run_storage


# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")
    if not settings.GEMINI_API_KEY:
        logger.warning("GEMINI_API_KEY is not set; agent nodes will fail until it is configured")

    yield

    logger.info("Shutting down...")


# Create FastAPI application
app = FastAPI(
    title=settings.APP_NAME,
    description="""
## Agent Flow API

Run a text input through a graph of language-model agents.

### Features
- **Agents**: Each node hands the carried text to a model with its own role
- **Conditional agents**: Branch on keywords found in the agent's output
- **Safety**: Cycles, dead ends and unmatched branches stop the run with a classified failure
- **Search grounding**: Agents can cite web sources
- **Real-time Updates**: WebSocket streaming of run events

### Quick Start
1. Fetch a template: `GET /flow/templates/triage`
2. Check it: `POST /flow/validate`
3. Run it: `POST /flow/run`
4. Read the run record: `GET /flow/runs/{run_id}`
    """,
    version=settings.APP_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)


# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Include routers
app.include_router(flow.router)
app.include_router(websocket.router)


# ============================================================
# Root Endpoints
# ============================================================

@app.get("/", tags=["Root"])
async def root():
    """API root - returns basic info and links."""
    return {
        "name": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "description": "Run inputs through graphs of language-model agents",
        "docs": "/docs",
        "redoc": "/redoc",
        "endpoints": {
            "validate": "/flow/validate",
            "run": "/flow/run",
            "runs": "/flow/runs",
            "templates": "/flow/templates",
            "websocket_run": "/ws/run",
        },
    }


@app.get("/health", tags=["Root"])
async def health():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "version": settings.APP_VERSION,
        "model": settings.GEMINI_MODEL,
        "runs_count": len(run_storage),
    }


# ============================================================
# Error Handlers
# ============================================================

@app.exception_handler(Exception)
async def global_exception_handler(request, exc):
    """Global exception handler for unhandled errors."""
    logger.exception(f"Unhandled error: {exc}")
    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal Server Error",
            "detail": str(exc) if settings.DEBUG else "An unexpected error occurred",
        },
    )
