"""
Error taxonomy and per-item failure classification.

Every failure inside the per-item scope is classified exactly once, at catch
time, into an ItemFailure. The orchestrator dispatches on its kind instead of
inspecting exception types.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, List, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from .models import BusinessRecord, Challenge

logger = logging.getLogger(__name__)


# ============== Exceptions ==============

class ScraperError(Exception):
    """Base class for all scraper errors."""


class ConfigurationError(ScraperError):
    """Session configuration is missing or invalid."""


class SessionStateError(ScraperError):
    """An operation was attempted in a status that does not allow it."""


class NavigationError(ScraperError):
    """The search surface itself could not be reached or queried."""


class ChallengeDetectedError(ScraperError):
    """A challenge page was shown where a detail view was expected."""


class CaptchaSolverError(ScraperError):
    """The CAPTCHA solving service rejected a request or could not be reached."""


class ScrapeAbortedError(ScraperError):
    """A run ended in ERROR. Carries whatever records were collected before the failure."""

    def __init__(self, message: str, records: Optional[List["BusinessRecord"]] = None):
        super().__init__(message)
        self.records = list(records or [])


# ============== Failure classification ==============

class FailureKind(str, Enum):
    """What went wrong while processing a single item."""
    PLAIN = "plain"
    CHALLENGE = "challenge"


class RecoveryAction(str, Enum):
    """What the orchestrator does with the current item after a failure."""
    RETRY = "retry"
    SKIP = "skip"


@dataclass
class ItemFailure:
    """
    Tagged failure variant.

    For CHALLENGE failures `challenge` holds the solvable payload, or None when
    challenge indicators are present but no supported shape was recognized.
    """
    kind: FailureKind
    message: str
    challenge: Optional["Challenge"] = None

    @property
    def is_challenge(self) -> bool:
        return self.kind == FailureKind.CHALLENGE


def describe_error(error: BaseException) -> str:
    """Short, never-empty description of an exception."""
    text = str(error).strip()
    if not text:
        return error.__class__.__name__
    # Playwright errors carry a multi-line call log
    return text.splitlines()[0]


async def classify_failure(error: Exception, driver: Any, detector: Any) -> ItemFailure:
    """
    Classify an item-level exception.

    A failure is a challenge failure only if challenge indicators are present
    on the page at catch time.
    """
    message = describe_error(error)
    try:
        present = await detector.is_present(driver)
    except Exception as e:
        logger.debug(f"[ErrorHandler] Challenge check failed: {e}")
        present = False

    if not present:
        return ItemFailure(kind=FailureKind.PLAIN, message=message)

    try:
        challenge = await detector.detect(driver)
    except Exception as e:
        logger.warning(f"[ErrorHandler] Could not read challenge payload: {e}")
        challenge = None

    return ItemFailure(kind=FailureKind.CHALLENGE, message=message, challenge=challenge)
