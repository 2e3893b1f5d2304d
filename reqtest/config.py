"""Environment-sourced settings shared by the client, server and scripts."""

import logging
import os

# --- WebSocket client ---

WS_HOST = os.environ.get("REQTEST_WS_HOST", "localhost")
WS_URL = os.environ.get("REQTEST_WS_URL") or f"ws://{WS_HOST}:8080/ws"
WS_MAX_RECONNECT_ATTEMPTS = int(os.environ.get("REQTEST_WS_MAX_RECONNECT_ATTEMPTS", "5"))

# --- Server ---

SERVER_HOST = os.environ.get("REQTEST_HOST", "localhost")
SERVER_PORT = int(os.environ.get("REQTEST_PORT", "8080"))

LOG_LEVEL = os.environ.get("REQTEST_LOG_LEVEL", "INFO").upper()


def get_cors_origins() -> list[str]:
    """Get CORS origins from environment variable or use default."""
    cors_origins_str = os.environ.get("REQTEST_CORS_ORIGINS", "http://localhost:3000")
    origins = [origin.strip() for origin in cors_origins_str.split(",") if origin.strip()]
    return origins if origins else ["http://localhost:3000"]


def configure_logging(level: str | None = None) -> None:
    logging.basicConfig(
        level=getattr(logging, (level or LOG_LEVEL), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
