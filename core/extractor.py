"""
Detail Extractor - reads one business detail view into a BusinessRecord.

Every field except the name is optional: a field whose element is missing or
whose text does not parse is simply left empty.
"""

import logging
import re
from typing import Any, Dict, List, Optional, Tuple

from .models import BusinessRecord
from .pacing import PacingPolicy

logger = logging.getLogger(__name__)

NAME_SELECTOR = "xpath=//h1[contains(@class, 'fontHeadlineLarge')]"
ADDRESS_SELECTOR = "xpath=//button[contains(@aria-label, 'Address:')]"
PHONE_SELECTOR = "xpath=//button[contains(@aria-label, 'Phone:')]"
WEBSITE_SELECTOR = "xpath=//a[contains(@aria-label, 'Website:')]"
RATING_SELECTOR = "xpath=//div[@aria-label[contains(., 'stars')]]"
REVIEWS_SELECTOR = "xpath=//span[contains(text(), 'reviews')]"
CATEGORY_SELECTOR = "xpath=//button[contains(@jsaction, 'pane.rating.category')]"
HOURS_BUTTON_SELECTOR = "xpath=//button[contains(@aria-label, 'Hours')]"
HOURS_ROW_SELECTOR = "xpath=//tr[contains(@class, 'reverse-hours-row')]"
DETAIL_ROW_SELECTOR = "xpath=//div[contains(@class, 'mLhM4')]"

# Relative to a row element
FIRST_CELL_SELECTOR = "xpath=.//td[1]"
SECOND_CELL_SELECTOR = "xpath=.//td[2]"
FIRST_DIV_SELECTOR = "xpath=.//div[1]"
SECOND_DIV_SELECTOR = "xpath=.//div[2]"

NAME_WAIT_MS = 10000

RATING_PATTERN = re.compile(r"(\d+(?:\.\d+)?)")
REVIEW_COUNT_PATTERN = re.compile(r"(\d+(?:,\d+)*)")
COORDINATES_PATTERN = re.compile(r"@(-?\d+\.\d+),(-?\d+\.\d+)")


def parse_rating(text: Optional[str]) -> Optional[float]:
    """First decimal number in the text, if it is a valid 0-5 rating."""
    if not text:
        return None
    match = RATING_PATTERN.search(text)
    if not match:
        return None
    try:
        rating = float(match.group(1))
    except ValueError:
        return None
    if not 0.0 <= rating <= 5.0:
        return None
    return rating


def parse_review_count(text: Optional[str]) -> Optional[int]:
    """First comma-grouped integer in the text, e.g. "(1,234 reviews)" -> 1234."""
    if not text:
        return None
    match = REVIEW_COUNT_PATTERN.search(text)
    if not match:
        return None
    try:
        return int(match.group(1).replace(",", ""))
    except ValueError:
        return None


def parse_coordinates(url: Optional[str]) -> Tuple[Optional[float], Optional[float]]:
    """Latitude and longitude from the "@lat,lng" fragment of a maps URL."""
    if not url:
        return None, None
    match = COORDINATES_PATTERN.search(url)
    if not match:
        return None, None
    try:
        return float(match.group(1)), float(match.group(2))
    except ValueError:
        return None, None


def strip_label(value: Optional[str], label: str) -> Optional[str]:
    """Remove an aria-label prefix such as "Phone: "."""
    if value is None:
        return None
    value = value.replace(f"{label}: ", "", 1).strip()
    return value or None


class DetailExtractor:
    """Best-effort field reader for the business detail view."""

    def __init__(self, driver: Any, pacing: PacingPolicy):
        self.driver = driver
        self.pacing = pacing

    async def is_detail_view(self) -> bool:
        """True when the page shows a single business rather than a result list."""
        try:
            names = await self.driver.find_many(NAME_SELECTOR)
            addresses = await self.driver.find_many(ADDRESS_SELECTOR)
        except Exception as e:
            logger.debug(f"[Extractor] Detail view check failed: {e}")
            return False
        return bool(names) and bool(addresses)

    async def extract(self) -> Optional[BusinessRecord]:
        """
        Read the current detail view.

        Returns:
            BusinessRecord, or None if the business name cannot be found
        """
        name = await self._read_name()
        if not name:
            logger.warning("[Extractor] Business name not found, skipping item")
            return None

        latitude, longitude = parse_coordinates(self.driver.url)
        await self._expand_hours()

        record = BusinessRecord(
            name=name,
            address=strip_label(await self._read_attribute(ADDRESS_SELECTOR, "aria-label"), "Address"),
            phone=strip_label(await self._read_attribute(PHONE_SELECTOR, "aria-label"), "Phone"),
            website=await self._read_attribute(WEBSITE_SELECTOR, "href"),
            latitude=latitude,
            longitude=longitude,
            rating=parse_rating(await self._read_attribute(RATING_SELECTOR, "aria-label")),
            review_count=parse_review_count(await self._read_text(REVIEWS_SELECTOR)),
            categories=tuple(await self._read_categories()),
            hours=await self._read_pairs(HOURS_ROW_SELECTOR, FIRST_CELL_SELECTOR, SECOND_CELL_SELECTOR),
            additional_details=await self._read_pairs(DETAIL_ROW_SELECTOR, FIRST_DIV_SELECTOR, SECOND_DIV_SELECTOR),
        )
        logger.info(f"[Extractor] Extracted: {record.name}")
        return record

    async def _read_name(self) -> Optional[str]:
        try:
            element = await self.driver.find_one(NAME_SELECTOR, timeout_ms=NAME_WAIT_MS)
            if element is None:
                return None
            return (await self.driver.get_text(element)).strip() or None
        except Exception as e:
            logger.debug(f"[Extractor] Could not read name: {e}")
            return None

    async def _read_attribute(self, selector: str, attribute: str) -> Optional[str]:
        try:
            element = await self.driver.find_one(selector)
            if element is None:
                return None
            return await self.driver.get_attribute(element, attribute)
        except Exception as e:
            logger.debug(f"[Extractor] Could not read {attribute} of {selector}: {e}")
            return None

    async def _read_text(self, selector: str) -> Optional[str]:
        try:
            element = await self.driver.find_one(selector)
            if element is None:
                return None
            return await self.driver.get_text(element)
        except Exception as e:
            logger.debug(f"[Extractor] Could not read text of {selector}: {e}")
            return None

    async def _read_categories(self) -> List[str]:
        categories = []
        try:
            for element in await self.driver.find_many(CATEGORY_SELECTOR):
                text = (await self.driver.get_text(element)).strip()
                if text:
                    categories.append(text)
        except Exception as e:
            logger.debug(f"[Extractor] Could not read categories: {e}")
        return categories

    async def _read_pairs(self, row_selector: str, key_selector: str, value_selector: str) -> Dict[str, str]:
        """Label/value rows as a dict. A repeated label keeps its last value."""
        pairs: Dict[str, str] = {}
        try:
            rows = await self.driver.find_many(row_selector)
        except Exception as e:
            logger.debug(f"[Extractor] Could not read rows {row_selector}: {e}")
            return pairs

        for row in rows:
            try:
                key_el = await self.driver.find_one(key_selector, root=row)
                value_el = await self.driver.find_one(value_selector, root=row)
                if key_el is None or value_el is None:
                    continue
                key = (await self.driver.get_text(key_el)).strip()
                value = (await self.driver.get_text(value_el)).strip()
            except Exception as e:
                logger.debug(f"[Extractor] Skipping unreadable row: {e}")
                continue
            if key and value:
                pairs[key] = value
        return pairs

    async def _expand_hours(self):
        """Open the opening-hours table. Not finding it is fine."""
        try:
            button = await self.driver.find_one(HOURS_BUTTON_SELECTOR)
            if button is not None:
                await self.driver.click(button)
                await self.pacing.delay()
        except Exception as e:
            logger.debug(f"[Extractor] Could not expand hours: {e}")
