"""
Result Discovery - materializes the lazily loaded result list.

The result feed only renders more entries as it is scrolled, so discovery
alternates between counting result links and scrolling the feed until the
count stops growing, the cap is reached, or the attempt budget runs out.
"""

import logging
from typing import Any, Callable, List, Optional

from .models import ResultHandle
from .pacing import PacingPolicy

logger = logging.getLogger(__name__)

RESULT_LINK_SELECTOR = "xpath=//a[contains(@href, '/maps/place/')]"
FEED_SELECTOR = "xpath=//div[contains(@role, 'feed')]"

SCROLL_FEED_SCRIPT = "el => { el.scrollTop = el.scrollHeight; }"
SCROLL_WINDOW_SCRIPT = "() => window.scrollTo(0, document.body.scrollHeight)"

MAX_SCROLL_ATTEMPTS = 20
STABLE_READS = 3


class ResultDiscovery:
    """Scrolls the result surface and returns handles to every visible result."""

    def __init__(
        self,
        driver: Any,
        pacing: PacingPolicy,
        max_results: int = 0,
        max_scroll_attempts: int = MAX_SCROLL_ATTEMPTS,
        stable_reads: int = STABLE_READS
    ):
        self.driver = driver
        self.pacing = pacing
        self.max_results = max_results
        self.max_scroll_attempts = max_scroll_attempts
        self.stable_reads = stable_reads
        self.scroll_attempts = 0

    async def count_results(self) -> int:
        return len(await self.driver.find_many(RESULT_LINK_SELECTOR))

    async def _advance(self) -> bool:
        """
        Scroll the results feed, or the whole window if there is no feed.

        Returns:
            False if neither scroll worked
        """
        try:
            feed = await self.driver.find_one(FEED_SELECTOR)
            if feed is not None:
                await self.driver.execute_script(SCROLL_FEED_SCRIPT, feed)
                return True
        except Exception as e:
            logger.debug(f"[Discovery] Feed scroll failed, scrolling window: {e}")
        try:
            await self.driver.execute_script(SCROLL_WINDOW_SCRIPT)
        except Exception as e:
            logger.warning(f"[Discovery] Could not scroll results: {e}")
            return False
        return True

    async def discover(
        self,
        on_batch: Optional[Callable[[int], None]] = None,
        should_stop: Optional[Callable[[], bool]] = None,
        epoch: int = 0
    ) -> List[ResultHandle]:
        """
        Load results and return their handles in page order.

        Args:
            on_batch: Called with the materialized count after every read
            should_stop: Checked before every read; True ends discovery early
            epoch: Page epoch stamped on the returned handles
        """
        # Results render a moment after the search submits
        await self.pacing.delay(2000, 4000)

        last_count = -1
        unchanged = 0
        self.scroll_attempts = 0

        while self.scroll_attempts < self.max_scroll_attempts:
            if should_stop and should_stop():
                logger.info("[Discovery] Stop requested, ending discovery")
                break

            count = await self.count_results()
            logger.debug(f"[Discovery] {count} results after {self.scroll_attempts} scrolls")
            if on_batch:
                on_batch(count)

            if self.max_results > 0 and count >= self.max_results:
                logger.info(f"[Discovery] Reached result cap ({self.max_results})")
                break

            if count == last_count:
                unchanged += 1
                if unchanged >= self.stable_reads:
                    logger.info(f"[Discovery] Result count stable at {count}")
                    break
            else:
                unchanged = 0
                last_count = count

            if not await self._advance():
                break
            self.scroll_attempts += 1
            await self.pacing.delay(1000, 2000)

        elements = await self.driver.find_many(RESULT_LINK_SELECTOR)
        handles = []
        for position, element in enumerate(elements):
            try:
                href = await self.driver.get_attribute(element, "href")
            except Exception as e:
                logger.debug(f"[Discovery] Could not read href of result {position}: {e}")
                href = None
            handles.append(ResultHandle(position=position, element=element, href=href, epoch=epoch))

        logger.info(f"[Discovery] Found {len(handles)} results")
        return handles
