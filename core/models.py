#!/usr/bin/env python3
"""
Unified Data Models for Maps Scraper

All shared data models are defined here to ensure consistency across the codebase.
"""

from typing import List, Optional, Dict, Any, Tuple
from dataclasses import dataclass, field
from enum import Enum
from datetime import datetime, timezone

from .error_handler import ConfigurationError


# ============== Enums ==============

class SessionStatus(str, Enum):
    """Lifecycle status of a scrape session."""
    NOT_INITIALIZED = "not_initialized"
    READY = "ready"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    ERROR = "error"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionStatus.COMPLETED, SessionStatus.ERROR, SessionStatus.CANCELLED)


class CaptchaKind(str, Enum):
    """Supported bot-challenge shapes."""
    IMAGE = "image"
    INTERACTIVE = "interactive"


# ============== Data Models ==============

@dataclass
class ProxyEndpoint:
    """An egress proxy. `active` and `use_count` are the only mutable parts."""
    host: str
    port: int
    username: Optional[str] = None
    password: Optional[str] = None
    active: bool = True
    use_count: int = 0

    @property
    def address(self) -> str:
        return f"{self.host}:{self.port}"

    def to_url(self) -> str:
        """Convert to proxy URL format."""
        if self.username and self.password:
            return f"http://{self.username}:{self.password}@{self.host}:{self.port}"
        return f"http://{self.host}:{self.port}"

    def to_playwright_format(self) -> Dict[str, str]:
        """Convert to Playwright proxy format."""
        proxy = {
            "server": f"http://{self.host}:{self.port}"
        }
        if self.username:
            proxy["username"] = self.username
        if self.password:
            proxy["password"] = self.password
        return proxy


@dataclass(frozen=True)
class SessionConfig:
    """
    Configuration for one scrape session.

    Supplied once at initialize() and never changed afterwards. Delays are in
    milliseconds; max_results <= 0 means unbounded.
    """
    search_keyword: str
    geographic_area: Optional[str] = None
    max_results: int = 100
    min_delay_ms: int = 1000
    max_delay_ms: int = 3000
    phone_required: bool = False
    proxies: Tuple[ProxyEndpoint, ...] = ()
    use_proxy_rotation: bool = False
    captcha_api_key: Optional[str] = None
    captcha_service_url: Optional[str] = None
    navigation_timeout_ms: int = 30000
    max_retry_attempts: int = 3
    headless: bool = True

    def __post_init__(self):
        # Accept any sequence but always hold an immutable tuple
        if not isinstance(self.proxies, tuple):
            object.__setattr__(self, "proxies", tuple(self.proxies or ()))

    @property
    def query(self) -> str:
        """Search text submitted to the maps search box."""
        keyword = (self.search_keyword or "").strip()
        area = (self.geographic_area or "").strip()
        return f"{keyword} in {area}" if area else keyword

    @property
    def is_capped(self) -> bool:
        return self.max_results > 0

    def validate(self) -> None:
        """Raise ConfigurationError if the configuration cannot be used."""
        if not self.search_keyword or not self.search_keyword.strip():
            raise ConfigurationError("Search keyword cannot be empty")
        if self.min_delay_ms < 0 or self.max_delay_ms < 0:
            raise ConfigurationError("Delays cannot be negative")
        if self.min_delay_ms > self.max_delay_ms:
            raise ConfigurationError(
                f"min_delay_ms ({self.min_delay_ms}) exceeds max_delay_ms ({self.max_delay_ms})"
            )
        if self.navigation_timeout_ms <= 0:
            raise ConfigurationError("navigation_timeout_ms must be positive")
        if self.max_retry_attempts < 0:
            raise ConfigurationError("max_retry_attempts cannot be negative")
        for proxy in self.proxies:
            if not proxy.host or proxy.port <= 0:
                raise ConfigurationError(f"Invalid proxy endpoint: {proxy.address}")


@dataclass(frozen=True)
class BusinessRecord:
    """Represents a business listing extracted from a detail view."""
    name: str
    address: Optional[str] = None
    phone: Optional[str] = None
    website: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    rating: Optional[float] = None
    review_count: Optional[int] = None
    categories: Tuple[str, ...] = ()
    hours: Dict[str, str] = field(default_factory=dict)
    additional_details: Dict[str, str] = field(default_factory=dict)
    scraped_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def has_phone(self) -> bool:
        return bool(self.phone and self.phone.strip())

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "name": self.name,
            "address": self.address,
            "phone": self.phone,
            "website": self.website,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "rating": self.rating,
            "review_count": self.review_count,
            "categories": list(self.categories),
            "hours": dict(self.hours),
            "additional_details": dict(self.additional_details),
            "scraped_at": self.scraped_at.isoformat(),
        }


@dataclass
class ProgressSnapshot:
    """Progress of a scrape run, pushed to the progress callback."""
    found: int = 0
    processed: int = 0
    percent_complete: float = 0.0
    status_text: str = ""
    error_text: Optional[str] = None
    captcha_detected: bool = False
    captcha_solved: bool = False

    def update_percent(self, total: int) -> None:
        if total > 0:
            self.percent_complete = min(100.0, self.processed / total * 100)
        else:
            self.percent_complete = 0.0


@dataclass
class Challenge:
    """
    A bot-challenge found on the page.

    Interactive challenges carry a site key and page URL; image challenges
    carry the base64-encoded image.
    """
    kind: CaptchaKind
    site_key: Optional[str] = None
    page_url: Optional[str] = None
    image_base64: Optional[str] = None


@dataclass
class ResultHandle:
    """
    One discovered search result.

    `element` is only valid while the page epoch it was read in is current;
    after that the result is reopened through `href`.
    """
    position: int
    element: Any = None
    href: Optional[str] = None
    epoch: int = 0


def records_to_dicts(records: List[BusinessRecord]) -> List[Dict[str, Any]]:
    """Serialize a record list for exporters."""
    return [record.to_dict() for record in records]
