"""
FastAPI server for the help-desk call intake bridge.

Endpoints:
- GET /, GET /health: Health check
- GET /metrics: JSON metrics
- GET|POST /incoming-call: TwiML for the Twilio voice webhook
- WS /media-stream: Twilio Media Streams WebSocket
"""

import asyncio
import sys

# Use uvloop for faster asyncio (Linux only)
try:
    import uvloop
    asyncio.set_event_loop_policy(uvloop.EventLoopPolicy())
except ImportError:
    pass  # uvloop not available on Windows

import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, Dict
from xml.sax.saxutils import quoteattr

from fastapi import FastAPI, Request, Response, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse
import structlog
import uvicorn

from src.intake.config import ConfigError, get_config, init_config


def configure_logging(log_level: str = "INFO") -> None:
    """Configure structured logging."""
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer() if log_level != "DEBUG" else structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        level=getattr(logging, log_level.upper(), logging.INFO),
    )

logger = structlog.get_logger(__name__)


@dataclass
class ServerMetrics:
    """Server-wide metrics."""
    start_time: float = field(default_factory=time.time)
    total_calls: int = 0
    active_calls: int = 0
    completed_intakes: int = 0
    errors: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "uptime_seconds": round(time.time() - self.start_time, 2),
            "total_calls": self.total_calls,
            "active_calls": self.active_calls,
            "completed_intakes": self.completed_intakes,
            "errors": self.errors,
        }


# Global metrics
metrics = ServerMetrics()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    logger.info("Starting call intake server...")

    try:
        config = init_config()
        configure_logging(config.log_level)
        logger.info("Server ready", port=config.port, public_host=config.public_host or None)
    except ConfigError as e:
        logger.error("Configuration error", error=str(e))
        sys.exit(1)

    yield

    logger.info("Shutting down server...")


app = FastAPI(
    title="Call Intake Bridge",
    description="Bridges Twilio phone calls to OpenAI Realtime and files help-desk requests in Slack",
    version="1.0.0",
    lifespan=lifespan,
)


@app.get("/")
async def root() -> JSONResponse:
    """Static acknowledgment."""
    return JSONResponse(content={"message": "AI Voice Call Server running!"})


@app.get("/health")
async def health_check() -> JSONResponse:
    """Health check endpoint."""
    return JSONResponse(
        content={
            "status": "healthy",
            "timestamp": time.time(),
            "active_calls": metrics.active_calls,
        }
    )


@app.get("/metrics")
async def get_metrics() -> JSONResponse:
    """Metrics endpoint."""
    return JSONResponse(content=metrics.to_dict())


def build_twiml(stream_url: str, voice: str) -> str:
    say_voice = quoteattr(voice)
    return f"""<?xml version="1.0" encoding="UTF-8"?>
<Response>
    <Say voice={say_voice}>Please wait while we connect you to the AI assistant.</Say>
    <Pause length="1"/>
    <Say voice={say_voice}>Okay, you can start talking now!</Say>
    <Connect>
        <Stream url={quoteattr(stream_url)} />
    </Connect>
</Response>"""


@app.post("/incoming-call")
@app.get("/incoming-call")
@app.post("/twiml")
@app.get("/twiml")
async def incoming_call(request: Request) -> Response:
    """
    Twilio voice webhook.

    Returns TwiML that greets the caller and connects the call to our
    media-stream WebSocket.
    """
    config = get_config()
    stream_url = config.media_stream_url(request.headers.get("host", ""))

    logger.info("Generated TwiML", stream_url=stream_url)

    return Response(
        content=build_twiml(stream_url, config.greeting_voice),
        media_type="text/xml",
    )


@app.websocket("/media-stream")
async def media_stream(websocket: WebSocket) -> None:
    """
    Twilio Media Streams WebSocket endpoint.

    Relays call audio to OpenAI Realtime and back for the life of the call.
    """
    await websocket.accept()

    metrics.total_calls += 1
    metrics.active_calls += 1

    call_id = f"call_{int(time.time() * 1000)}"
    log = logger.bind(call_id=call_id)
    log.info("Client connected to media-stream", active_calls=metrics.active_calls)

    # Import here to avoid circular imports and speed up startup
    from src.intake.bridge import create_bridge

    bridge = None

    async def send_message(message: str) -> None:
        await websocket.send_text(message)

    async def close_caller() -> None:
        await websocket.close()

    try:
        bridge = await create_bridge(send_message, close_caller)

        while True:
            try:
                message = await websocket.receive_text()
            except WebSocketDisconnect:
                log.info("Client disconnected from media-stream")
                break
            except RuntimeError:
                # Socket already closed by us (farewell hang-up).
                log.info("Media-stream closed")
                break

            await bridge.handle_message(message)

    except Exception as e:
        log.error("Media-stream handler error", error=str(e))
        metrics.errors += 1

    finally:
        if bridge:
            try:
                await bridge.stop()
            except Exception as e:
                log.error("Error stopping call bridge", error=str(e))
            if bridge.record.is_complete():
                metrics.completed_intakes += 1

        metrics.active_calls -= 1
        log.info("Call ended", active_calls=metrics.active_calls)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Global exception handler."""
    logger.error(
        "Unhandled exception",
        path=request.url.path,
        error=str(exc),
    )
    metrics.errors += 1

    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error"},
    )


def main() -> None:
    """Run the server."""
    config = get_config()
    configure_logging(config.log_level)

    try:
        config.validate()
    except ConfigError as e:
        logger.error("Configuration error", error=str(e))
        sys.exit(1)

    logger.info("Starting server", port=config.port)

    uvicorn.run(
        "server.app:app",
        host="0.0.0.0",
        port=config.port,
        log_level=config.log_level.lower(),
        reload=False,
    )


if __name__ == "__main__":
    main()
