import logging
import os
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI

from conference_mailer.api import create_app
from conference_mailer.config_loader import load_settings
from conference_mailer.core import EmailQueue
from conference_mailer.keep_warm import build_pinger
from conference_mailer.transport import build_transport

# Configure logging level from environment
log_level = os.getenv("MAILQ_LOG_LEVEL", "INFO").upper()
logging.basicConfig(
    level=getattr(logging, log_level, logging.INFO),
    format='[%(asctime)s] [%(levelname)s] %(name)s: %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S',
    force=True  # Force reconfiguration to avoid duplicate handlers
)


def _setting(settings: dict[str, object], key: str, default):
    # explicit zeros are meaningful (no retry delay, no periodic sweep)
    value = settings.get(key)
    return default if value is None else value


def build_queue(settings: dict[str, object]) -> EmailQueue:
    """Create the process wide email queue from the loaded settings."""
    max_attempts = int(_setting(settings, "max_attempts", 3))
    if max_attempts < 1:
        raise ValueError(f"max_attempts must be at least 1, got {max_attempts}")
    return EmailQueue(
        build_transport(settings),
        max_attempts=max_attempts,
        retry_delay=float(_setting(settings, "retry_delay", 5.0)),
        cleanup_interval=float(_setting(settings, "cleanup_interval", 3600.0)),
        log_delivery_activity=bool(settings.get("log_delivery_activity")),
    )


def build_application(settings: dict[str, object]) -> FastAPI:
    queue = build_queue(settings)
    pinger = build_pinger(settings)

    # Define lifespan context manager for startup/shutdown events
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await queue.start()
        if pinger is not None:
            pinger.start()
        yield
        if pinger is not None:
            await pinger.stop()
        await queue.stop()
        await queue.transport.close()

    return create_app(queue, api_token=settings.get("api_token"), lifespan=lifespan, settings=settings)


if __name__ == "__main__":
    settings = load_settings()
    app = build_application(settings)
    uvicorn.run(app, host=str(settings["http_host"]), port=int(settings["http_port"]))
