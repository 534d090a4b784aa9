"""
Unified Configuration Module for Maps Scraper

Environment-driven defaults plus the YAML session-config loader.
Import from this module: from core.config import config
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

from .error_handler import ConfigurationError
from .models import ProxyEndpoint, SessionConfig


@dataclass
class Settings:
    """Process-wide settings read from the environment."""

    # === Target ===
    MAPS_URL: str = os.getenv("MAPS_URL", "https://www.google.com/maps")

    # === Logging ===
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()
    LOG_DIR: str = os.getenv("LOG_DIR", "./logs")

    # === Browser ===
    HEADLESS: bool = os.getenv("HEADLESS", "true").lower() == "true"
    BROWSER_TIMEOUT_MS: int = int(os.getenv("BROWSER_TIMEOUT_MS", "30000"))

    # === Human-like Delays ===
    MIN_DELAY_MS: int = int(os.getenv("MIN_DELAY_MS", "1000"))
    MAX_DELAY_MS: int = int(os.getenv("MAX_DELAY_MS", "3000"))

    # === Scraping ===
    MAX_RESULTS: int = int(os.getenv("MAX_RESULTS", "100"))
    MAX_RETRY_ATTEMPTS: int = int(os.getenv("MAX_RETRY_ATTEMPTS", "3"))

    # === CAPTCHA ===
    TWOCAPTCHA_API_KEY: Optional[str] = os.getenv("TWOCAPTCHA_API_KEY")
    TWOCAPTCHA_URL: Optional[str] = os.getenv("TWOCAPTCHA_URL")

    # === Paths ===
    EXPORT_DIR: str = os.getenv("EXPORT_DIR", "./exports")

    def session_defaults(self) -> Dict[str, Any]:
        """SessionConfig keyword defaults taken from the environment."""
        return {
            "max_results": self.MAX_RESULTS,
            "min_delay_ms": self.MIN_DELAY_MS,
            "max_delay_ms": self.MAX_DELAY_MS,
            "navigation_timeout_ms": self.BROWSER_TIMEOUT_MS,
            "max_retry_attempts": self.MAX_RETRY_ATTEMPTS,
            "captcha_api_key": self.TWOCAPTCHA_API_KEY,
            "captcha_service_url": self.TWOCAPTCHA_URL,
            "headless": self.HEADLESS,
        }


# Global config instance
config = Settings()


def get_config() -> Settings:
    """Get the application configuration."""
    return config


# User agent list for local Chromium sessions
USER_AGENTS = [
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/130.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 14_0) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36 Edg/131.0.0.0",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36",
]


def parse_proxy(value: Union[str, Dict[str, Any]]) -> ProxyEndpoint:
    """
    Build a ProxyEndpoint from "host:port[:user:pass]" or a mapping.

    Raises:
        ConfigurationError: if the value cannot be parsed
    """
    if isinstance(value, dict):
        try:
            return ProxyEndpoint(
                host=str(value["host"]),
                port=int(value["port"]),
                username=value.get("username"),
                password=value.get("password"),
                active=bool(value.get("active", True)),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid proxy entry {value!r}: {e}") from e

    parts = str(value).strip().split(":")
    if len(parts) not in (2, 4):
        raise ConfigurationError(f"Invalid proxy {value!r}, expected host:port[:user:pass]")
    try:
        port = int(parts[1])
    except ValueError as e:
        raise ConfigurationError(f"Invalid proxy port in {value!r}") from e

    username, password = (parts[2], parts[3]) if len(parts) == 4 else (None, None)
    return ProxyEndpoint(host=parts[0], port=port, username=username, password=password)


def build_session_config(data: Dict[str, Any], **overrides) -> SessionConfig:
    """
    Build a SessionConfig from a plain mapping.

    Environment defaults apply first, then `data`, then non-None `overrides`.
    """
    values = config.session_defaults()
    values.update({k: v for k, v in (data or {}).items() if v is not None})
    values.update({k: v for k, v in overrides.items() if v is not None})

    proxies: List[Any] = values.pop("proxies", None) or []
    values["proxies"] = tuple(p if isinstance(p, ProxyEndpoint) else parse_proxy(p) for p in proxies)

    known = set(SessionConfig.__dataclass_fields__)
    unknown = set(values) - known
    if unknown:
        raise ConfigurationError(f"Unknown session settings: {', '.join(sorted(unknown))}")

    if "search_keyword" not in values:
        raise ConfigurationError("search_keyword is required")

    session_config = SessionConfig(**values)
    session_config.validate()
    return session_config


def load_session_config(path: Union[str, Path, None] = None, **overrides) -> SessionConfig:
    """Load a SessionConfig from a YAML file, with optional keyword overrides."""
    data: Dict[str, Any] = {}
    if path:
        path = Path(path)
        if not path.exists():
            raise ConfigurationError(f"Config file not found: {path}")
        with open(path) as f:
            loaded = yaml.safe_load(f) or {}
        if not isinstance(loaded, dict):
            raise ConfigurationError(f"Config file {path} must contain a mapping")
        data = loaded
    return build_session_config(data, **overrides)
