"""FastAPI application for the tool execution and validation engine."""

import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.infra.config import config
from app.infra.error_handler import ToolError, ToolValidationError
from app.infra.logging import app_logger


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the rate-limit sweeper on startup; release resources on shutdown."""
    from app.api.dependencies import get_rate_limiter, shutdown_services

    app_logger.info(
        "Application starting up",
        extra={
            "tool_store": config.TOOL_STORE_BACKEND,
            "rate_limit_backend": config.RATE_LIMIT_BACKEND,
        },
    )
    get_rate_limiter().start_sweeper(config.RATE_LIMIT_SWEEP_INTERVAL_SECONDS)

    yield

    app_logger.info("Application shutting down")
    await shutdown_services()

    from app.infra.database import dispose_engine
    dispose_engine()


app = FastAPI(
    title="Toolgate API",
    description="""
    Toolgate lets tenants register external HTTP APIs as tools that an LLM agent
    can call as functions.

    ## Features

    - **Tool Registry**: Register, update, deactivate and list tenant tools
    - **Validation**: Validate definitions, parameter schemas and endpoints before registering
    - **Execution**: Execute tools with domain allow-listing, rate limiting, timeouts and response mapping
    - **Schema Export**: Export active tools in LLM function-calling format
    - **Analytics**: Per-tool execution statistics and execution logs
    """,
    version="1.0.0",
    lifespan=lifespan,
    openapi_tags=[
        {
            "name": "Tools",
            "description": "Manage tenant tool definitions, schema export, analytics and logs",
        },
        {
            "name": "Tool Validation",
            "description": "Validate tool definitions, parameter schemas and endpoints",
        },
        {
            "name": "Tool Execution",
            "description": "Execute tools individually or in batches",
        },
        {
            "name": "Health",
            "description": "Health check and monitoring endpoints",
        },
    ],
)

# Setup middleware
from app.infra.middleware import RequestIDMiddleware, RequestLoggingMiddleware, setup_cors
from app.infra.timeout import TimeoutMiddleware, REQUEST_TIMEOUT

app.add_middleware(RequestIDMiddleware)
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(TimeoutMiddleware, timeout=REQUEST_TIMEOUT)
setup_cors(app)

# Register routers
from app.api.routers import health, tools

app.include_router(health.router)
app.include_router(tools.router)

MAX_REQUEST_SIZE = 1024 * 1024  # 1MB


@app.middleware("http")
async def request_size_limit_middleware(request: Request, call_next):
    """Enforce request size limits."""
    content_length = request.headers.get("content-length")
    if content_length and content_length.isdigit() and int(content_length) > MAX_REQUEST_SIZE:
        return JSONResponse(
            status_code=413,
            content={"detail": f"Request too large. Maximum size: {MAX_REQUEST_SIZE} bytes"},
        )
    return await call_next(request)


# Error handlers
@app.exception_handler(ToolValidationError)
async def tool_validation_exception_handler(request: Request, exc: ToolValidationError):
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "error_type": exc.category.value, "errors": exc.errors},
    )


@app.exception_handler(ToolError)
async def tool_exception_handler(request: Request, exc: ToolError):
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "error_type": exc.category.value},
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handle request validation errors."""
    return JSONResponse(
        status_code=422,
        content={"detail": exc.errors()},
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Handle HTTP exceptions."""
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail},
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Handle all other exceptions."""
    error_id = str(uuid.uuid4())
    app_logger.error(f"Unhandled exception: {exc}", exc_info=True, extra={"error_id": error_id})
    return JSONResponse(
        status_code=500,
        content={"detail": f"Internal server error. Error ID: {error_id}"},
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        app,
        host="0.0.0.0",
        port=8000,
        timeout_keep_alive=30,
        timeout_graceful_shutdown=30,
    )
