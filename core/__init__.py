"""
Core components for Google Maps business scraping.

Modules:
- scraper: ScrapeSession state machine tying everything together
- discovery: Infinite-scroll result discovery
- extractor: Business detail view extraction
- challenge: CAPTCHA detection and solution injection
- captcha_solver: 2captcha client and solving gateway
- proxy_manager: Round-robin proxy rotation
- pacing: Randomized human-like delays
- exporter: CSV / JSON / Excel output
- error_handler: Exception hierarchy and failure classification
"""

from .models import (
    BusinessRecord,
    CaptchaKind,
    Challenge,
    ProgressSnapshot,
    ProxyEndpoint,
    ResultHandle,
    SessionConfig,
    SessionStatus,
)
from .error_handler import (
    CaptchaSolverError,
    ChallengeDetectedError,
    ConfigurationError,
    NavigationError,
    ScrapeAbortedError,
    ScraperError,
    SessionStateError,
)
from .config import config, get_config, load_session_config, parse_proxy
from .pacing import PacingPolicy
from .proxy_manager import ProxyPool
from .captcha_solver import CaptchaFailure, CaptchaGateway, CaptchaResult, TwoCaptchaClient
from .challenge import ChallengeDetector
from .discovery import ResultDiscovery
from .extractor import DetailExtractor
from .exporter import DataExporter
from .scraper import ScrapeSession

__all__ = [
    "BusinessRecord",
    "CaptchaKind",
    "Challenge",
    "ProgressSnapshot",
    "ProxyEndpoint",
    "ResultHandle",
    "SessionConfig",
    "SessionStatus",
    "CaptchaSolverError",
    "ChallengeDetectedError",
    "ConfigurationError",
    "NavigationError",
    "ScrapeAbortedError",
    "ScraperError",
    "SessionStateError",
    "config",
    "get_config",
    "load_session_config",
    "parse_proxy",
    "PacingPolicy",
    "ProxyPool",
    "CaptchaFailure",
    "CaptchaGateway",
    "CaptchaResult",
    "TwoCaptchaClient",
    "ChallengeDetector",
    "ResultDiscovery",
    "DetailExtractor",
    "DataExporter",
    "ScrapeSession",
]
