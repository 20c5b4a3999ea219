"""
FastAPI backend for the performance-test manual input dashboard.

This module serves the dashboard SPA and its API: manual input grids for
every tab of a performance test, validation, saving to the plant backend,
and WebSocket notifications of save results.
"""

import os
from pathlib import Path

import uvicorn
from fastapi import FastAPI, HTTPException, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse, ORJSONResponse
from fastapi.staticfiles import StaticFiles

from api.app_config import app_config
from api.shared.logger import get_logger, setup_logging
from api.shared.time_slots import set_display_timezone_name

_settings = app_config.get_settings()
setup_logging(_settings.log_level)
set_display_timezone_name(_settings.display_timezone)
logger = get_logger(__name__)

from api.manual_input import router as manual_input_router
from api.performances import router as performances_router
from api.settings import router as settings_router
from api.system import log_error
from api.system import router as system_router
from websocket import perf_channel, ws_manager

# Create FastAPI app
app = FastAPI(
    title="Performance Test Manual Input API",
    description="API for entering and saving manual performance-test readings",
    version="1.0.0",
    default_response_class=ORJSONResponse,
)
app.state.manual_input_service = None


# ============= Exception Handlers for Error Logging =============


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """Log HTTP exceptions and return JSON response."""
    # Only log 5xx errors (server errors)
    if exc.status_code >= 500:
        log_error(
            endpoint=str(request.url.path),
            message=str(exc.detail),
            level="error",
            details=f"Status code: {exc.status_code}",
        )
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail},
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Log unexpected exceptions and return JSON response."""
    log_error(
        endpoint=str(request.url.path),
        message=str(exc),
        level="critical",
        details=f"Unhandled exception: {type(exc).__name__}",
        exc=exc,
    )
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"},
    )


# Vite dev server runs on another port
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Include API routes
app.include_router(manual_input_router, prefix="/api")
app.include_router(performances_router, prefix="/api")
app.include_router(settings_router, prefix="/api")
app.include_router(system_router, prefix="/api", tags=["system"])


# ============= Startup Events =============


@app.on_event("startup")
async def startup_event():
    """Initialize services on application startup."""
    settings = app_config.get_settings()
    logger.info("Manual input backend starting...")
    logger.info("Config directory: %s", app_config.config_dir)
    logger.info("Plant backend: %s", settings.backend_url)


@app.on_event("shutdown")
async def shutdown_event():
    """Close the backend HTTP client."""
    service = getattr(app.state, "manual_input_service", None)
    if service is not None:
        await service.aclose()
        app.state.manual_input_service = None
    logger.info("Manual input backend stopped")


# ============= WebSocket Endpoints =============


async def _serve_websocket(websocket: WebSocket) -> None:
    try:
        while True:
            message_text = await websocket.receive_text()
            response = await ws_manager.handle_message(websocket, message_text)
            if response:
                await ws_manager.send_to_connection(websocket, response)

    except WebSocketDisconnect:
        await ws_manager.disconnect(websocket)
    except Exception as e:
        logger.error("WebSocket error: %s", e)
        await ws_manager.disconnect(websocket)


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket, client_id: str = None):
    """
    Main WebSocket endpoint for save notifications.

    Clients can subscribe to channels:
    - perf:{perf_id} - Save results of one performance test
    - system - System-wide notifications

    Message format (JSON):
    {
        "type": "subscribe" | "unsubscribe" | "ping",
        "channel": "channel_name",
        "data": {}
    }
    """
    await ws_manager.connect(websocket, client_id)
    await _serve_websocket(websocket)


@app.websocket("/ws/perf/{perf_id}")
async def perf_websocket_endpoint(websocket: WebSocket, perf_id: int):
    """
    WebSocket endpoint for one performance test.

    Automatically subscribes to the test's channel on connection.
    """
    await ws_manager.connect(websocket, f"perf-{perf_id}")
    await ws_manager.subscribe(websocket, perf_channel(perf_id))
    await _serve_websocket(websocket)


@app.get("/api/ws/stats")
async def get_websocket_stats():
    """Get WebSocket connection statistics."""
    return {
        "total_connections": ws_manager.get_connection_count(),
    }


# Serve built files in production
dist_path = Path(__file__).parent / "dist"

if (dist_path / "assets").exists():
    app.mount(
        "/assets", StaticFiles(directory=str(dist_path / "assets")), name="assets"
    )


@app.get("/")
async def serve_spa():
    """Serve the main SPA HTML file"""
    index_file = dist_path / "index.html"
    if index_file.exists():
        return FileResponse(str(index_file))
    return {"message": "dist/index.html not found. Run: npm run build"}


# Catch-all route for SPA client-side routing
@app.get("/{full_path:path}")
async def serve_spa_routes(full_path: str):
    """Serve SPA for all non-API routes"""
    if full_path.startswith("api/"):
        raise HTTPException(status_code=404, detail="Not found")

    index_file = dist_path / "index.html"
    if index_file.exists():
        return FileResponse(str(index_file))
    return {"message": "dist/index.html not found. Run: npm run build"}


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Performance-test manual input server")
    parser.add_argument(
        "--port",
        type=int,
        default=int(os.environ.get("PERFTEST_PORT", 8000)),
        help="Port to run the server on (default: 8000 or PERFTEST_PORT env var)",
    )
    parser.add_argument(
        "--host",
        type=str,
        default="127.0.0.1",
        help="Host to bind to (default: 127.0.0.1)",
    )
    parser.add_argument(
        "--reload",
        action=argparse.BooleanOptionalAction,
        default=False,
        help="Enable auto-reload",
    )
    args = parser.parse_args()

    uvicorn.run(
        "main:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_level="info",
    )
