"""Settings loader: an INI file with environment variables as fallbacks."""

from __future__ import annotations

import configparser
import os
from pathlib import Path
from typing import Any, Dict, Optional

from .logger import get_logger

logger = get_logger("ConferenceMailer.config")

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


def parse_bool(value: Any, default: Optional[bool] = None) -> Optional[bool]:
    """Interpret common textual booleans, returning ``default`` for anything else."""
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    normalized = str(value).strip().lower()
    if normalized in _TRUE:
        return True
    if normalized in _FALSE:
        return False
    return default


def load_settings(config_path: str | os.PathLike | None = None) -> Dict[str, Any]:
    """
    Load configuration from an INI file (default: config.ini) with environment variables as fallbacks.

    Environment variables:
      MAILQ_CONFIG - Path to the INI file (default: config.ini)
      MAILQ_HOST / MAILQ_PORT - HTTP bind address (default: 0.0.0.0:5000)
      MAILQ_API_TOKEN - Token required in the X-API-Token header
      MAILQ_MAX_ATTEMPTS - Delivery attempts per email (default: 3)
      MAILQ_RETRY_DELAY - Base retry delay in seconds, multiplied by the attempt number (default: 5)
      MAILQ_CLEANUP_INTERVAL - Seconds between sweeps of delivered jobs (default: 3600)
      MAILQ_SEND_TIMEOUT - Transport timeout in seconds (default: 15)
      MAILQ_LOG_DELIVERY_ACTIVITY - Log every enqueue/attempt at INFO (default: False)
      MAILQ_SENDER_NAME - Display name of the sender (default: ICCICT 2026)
      BREVO_API_KEY / BREVO_FROM_EMAIL - Brevo credentials and sender address
      MAILQ_SMTP_HOST / _PORT / _USER / _PASSWORD / _USE_TLS - SMTP relay used when Brevo is not configured
      KEEP_WARM_ENABLED / KEEP_WARM_URL / KEEP_WARM_PATH / KEEP_WARM_INTERVAL_MIN - Keep-warm pinger

    Config file sections/keys:
      [server] host, port, api_token
      [queue] max_attempts, retry_delay_seconds, cleanup_interval_seconds
      [transport] timeout_seconds
      [brevo] api_key
      [sender] email, name
      [smtp] host, port, user, password, use_tls
      [keep_warm] enabled, url, path, interval_minutes
      [logging] delivery_activity
    """
    path = Path(config_path or os.getenv("MAILQ_CONFIG", "config.ini"))
    parser = configparser.ConfigParser()
    if path.exists():
        parser.read(path)
        logger.debug("Loaded configuration file %s", path)

    def get(section: str, option: str, fallback: str | None = None) -> str | None:
        if parser.has_option(section, option):
            return parser.get(section, option)
        return fallback

    def get_int(section: str, option: str, fallback: str | None = None, default: int | None = None) -> int | None:
        value = get(section, option, fallback)
        if value is None or not str(value).strip():
            return default
        return int(value)

    def get_float(section: str, option: str, fallback: str | None = None, default: float | None = None) -> float | None:
        value = get(section, option, fallback)
        if value is None or not str(value).strip():
            return default
        return float(value)

    def get_bool(section: str, option: str, fallback: str | None = None, default: bool | None = None) -> bool | None:
        return parse_bool(get(section, option, fallback), default)

    keep_warm_url = get(
        "keep_warm",
        "url",
        os.getenv("KEEP_WARM_URL") or os.getenv("RENDER_EXTERNAL_URL") or os.getenv("PUBLIC_BASE_URL"),
    )

    settings: Dict[str, Any] = {
        "http_host": get("server", "host", os.getenv("MAILQ_HOST", "0.0.0.0")),
        "http_port": get_int("server", "port", os.getenv("MAILQ_PORT"), default=5000),
        "api_token": get("server", "api_token", os.getenv("MAILQ_API_TOKEN")),
        "max_attempts": get_int("queue", "max_attempts", os.getenv("MAILQ_MAX_ATTEMPTS"), default=3),
        "retry_delay": get_float("queue", "retry_delay_seconds", os.getenv("MAILQ_RETRY_DELAY"), default=5.0),
        "cleanup_interval": get_float(
            "queue",
            "cleanup_interval_seconds",
            os.getenv("MAILQ_CLEANUP_INTERVAL"),
            default=3600.0,
        ),
        "send_timeout": get_float("transport", "timeout_seconds", os.getenv("MAILQ_SEND_TIMEOUT"), default=15.0),
        "log_delivery_activity": get_bool(
            "logging",
            "delivery_activity",
            os.getenv("MAILQ_LOG_DELIVERY_ACTIVITY"),
            default=False,
        ),
        "brevo_api_key": get("brevo", "api_key", os.getenv("BREVO_API_KEY")),
        "sender_email": get("sender", "email", os.getenv("BREVO_FROM_EMAIL")),
        "sender_name": get("sender", "name", os.getenv("MAILQ_SENDER_NAME", "ICCICT 2026")),
        "smtp_host": get("smtp", "host", os.getenv("MAILQ_SMTP_HOST")),
        "smtp_port": get_int("smtp", "port", os.getenv("MAILQ_SMTP_PORT"), default=587),
        "smtp_user": get("smtp", "user", os.getenv("MAILQ_SMTP_USER")),
        "smtp_password": get("smtp", "password", os.getenv("MAILQ_SMTP_PASSWORD")),
        "smtp_use_tls": get_bool("smtp", "use_tls", os.getenv("MAILQ_SMTP_USE_TLS"), default=None),
        "keep_warm_enabled": get_bool("keep_warm", "enabled", os.getenv("KEEP_WARM_ENABLED"), default=True),
        "keep_warm_url": keep_warm_url,
        "keep_warm_path": get("keep_warm", "path", os.getenv("KEEP_WARM_PATH", "/health")),
        "keep_warm_interval_minutes": get_float(
            "keep_warm",
            "interval_minutes",
            os.getenv("KEEP_WARM_INTERVAL_MIN"),
            default=10.0,
        ),
    }

    for key in ("api_token", "brevo_api_key", "sender_email", "smtp_host", "keep_warm_url"):
        value = settings.get(key)
        if isinstance(value, str):
            value = value.strip() or None
        settings[key] = value
    return settings
