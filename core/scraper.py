"""
Scrape Session - orchestrates one maps search from query to records.

Usage:
    async with ScrapeSession() as session:
        if await session.initialize(config):
            records = await session.run(progress_callback=print)

pause(), resume() and cancel() may be called from another task or a signal
handler while run() is in flight. They only set flags; the run loop observes
them at the checkpoint before each item and inside the pause wait.
"""

import asyncio
import logging
from dataclasses import replace
from typing import Any, Awaitable, Callable, Dict, List, Optional

from .captcha_solver import CaptchaGateway
from .challenge import ChallengeDetector
from .config import config as settings
from .discovery import ResultDiscovery
from .error_handler import (
    ChallengeDetectedError,
    ItemFailure,
    NavigationError,
    RecoveryAction,
    ScrapeAbortedError,
    SessionStateError,
    classify_failure,
    describe_error,
)
from .extractor import DetailExtractor
from .logging_config import log_captcha_event, log_scrape_event
from .models import (
    BusinessRecord,
    ProgressSnapshot,
    ProxyEndpoint,
    ResultHandle,
    SessionConfig,
    SessionStatus,
)
from .pacing import PacingPolicy
from .proxy_manager import ProxyPool

logger = logging.getLogger(__name__)

PAUSE_POLL_INTERVAL = 0.5

SEARCH_BOX_SELECTORS = [
    "input[name='q']",
    "xpath=//input[@aria-label='Search Google Maps']",
]
SEARCH_BOX_WAIT_MS = 10000

DriverFactory = Callable[[SessionConfig, Optional[ProxyEndpoint]], Awaitable[Any]]
ProgressCallback = Callable[[ProgressSnapshot], Any]


class ScrapeSession:
    """
    State machine for a single scrape.

    NOT_INITIALIZED -> READY -> RUNNING <-> PAUSED -> COMPLETED | CANCELLED | ERROR
    """

    def __init__(
        self,
        captcha_gateway: Optional[CaptchaGateway] = None,
        driver_factory: Optional[DriverFactory] = None,
        pacing: Optional[PacingPolicy] = None,
        progress_callback: Optional[ProgressCallback] = None,
        detector: Optional[ChallengeDetector] = None,
        maps_url: Optional[str] = None
    ):
        if driver_factory is None:
            # browser.driver imports core.config, so bind it late
            from browser.driver import launch_driver
            driver_factory = launch_driver

        self.captcha_gateway = captcha_gateway
        self._owns_gateway = captcha_gateway is None
        self._driver_factory = driver_factory
        self._pacing_override = pacing
        self.progress_callback = progress_callback
        self.detector = detector or ChallengeDetector()
        self.maps_url = maps_url or settings.MAPS_URL

        self.pacing: Optional[PacingPolicy] = pacing
        self.proxy_pool = ProxyPool()
        self.driver: Any = None
        self.progress = ProgressSnapshot()

        self._config: Optional[SessionConfig] = None
        self._status = SessionStatus.NOT_INITIALIZED
        self._records: List[BusinessRecord] = []
        self._run_started = False
        self._running = False
        self._pause_requested = False
        self._cancel_requested = False
        self._resume_event = asyncio.Event()
        self._page_epoch = 0

        self._stats = {
            "items_failed": 0,
            "items_retried": 0,
            "filtered_no_phone": 0,
            "captchas_detected": 0,
            "captchas_solved": 0,
        }

    # ============== Public API ==============

    @property
    def status(self) -> SessionStatus:
        return self._status

    @property
    def records(self) -> List[BusinessRecord]:
        """Records collected by the current or most recent run."""
        return list(self._records)

    @property
    def config(self) -> Optional[SessionConfig]:
        return self._config

    @property
    def is_running(self) -> bool:
        return self._running

    async def initialize(self, config: SessionConfig) -> bool:
        """
        Validate the config, check the CAPTCHA credential and start the browser.

        Returns:
            True when the session is READY; False (status ERROR) otherwise

        Raises:
            SessionStateError: if a run has already started on this session
        """
        can_initialize = self._status == SessionStatus.NOT_INITIALIZED or (
            self._status == SessionStatus.ERROR and not self._run_started
        )
        if not can_initialize:
            raise SessionStateError(f"Cannot initialize a session in status {self._status.value}")

        try:
            config.validate()
            self._config = config
            self.pacing = self._pacing_override or PacingPolicy.from_config(config)
            self.proxy_pool = ProxyPool(config.proxies)

            if self.captcha_gateway is None and config.captcha_api_key:
                self.captcha_gateway = CaptchaGateway.for_api_key(
                    config.captcha_api_key, config.captcha_service_url
                )
                self._owns_gateway = True
            if self.captcha_gateway is not None:
                await self.captcha_gateway.initialize()

            await self._close_driver()
            self.driver = await self._driver_factory(config, self.proxy_pool.current)
        except Exception as e:
            logger.error(f"[ScrapeSession] Initialization failed: {e}")
            self._status = SessionStatus.ERROR
            self.progress.error_text = describe_error(e)
            return False

        self._status = SessionStatus.READY
        logger.info(f"[ScrapeSession] Ready to search for '{config.query}'")
        return True

    async def run(self, progress_callback: Optional[ProgressCallback] = None) -> List[BusinessRecord]:
        """
        Search, discover results and extract each one.

        Returns:
            The collected records (also on cancellation)

        Raises:
            SessionStateError: if the session is not READY or a run is in flight
            ScrapeAbortedError: if the search itself fails; carries partial records
        """
        if self._running:
            raise SessionStateError("A run is already in progress")
        if self._status not in (SessionStatus.READY, SessionStatus.PAUSED):
            raise SessionStateError(f"Cannot run a session in status {self._status.value}")

        if progress_callback is not None:
            self.progress_callback = progress_callback

        self._running = True
        self._run_started = True
        self._records = []
        self.progress = ProgressSnapshot()
        self._status = SessionStatus.RUNNING
        log_scrape_event(self._config.query, "started")
        self._emit("Starting scrape")

        try:
            await self._scrape()
        except asyncio.CancelledError:
            self._status = SessionStatus.CANCELLED
            log_scrape_event(self._config.query, "task cancelled")
            raise
        except Exception as e:
            message = describe_error(e)
            logger.error(f"[ScrapeSession] Scrape failed: {message}")
            self._status = SessionStatus.ERROR
            self.progress.error_text = message
            self._emit("Scraping failed")
            log_scrape_event(self._config.query, "failed", message)
            raise ScrapeAbortedError(f"Scrape aborted: {message}", self._records) from e
        finally:
            self._running = False

        return list(self._records)

    def pause(self) -> bool:
        """Request a pause at the next checkpoint."""
        if self._status != SessionStatus.RUNNING or self._pause_requested:
            return False
        logger.info("[ScrapeSession] Pause requested")
        self._pause_requested = True
        self._resume_event.clear()
        return True

    def resume(self) -> bool:
        """Resume a paused run, or withdraw a pause request not yet observed."""
        if self._status == SessionStatus.PAUSED or (
            self._status == SessionStatus.RUNNING and self._pause_requested
        ):
            logger.info("[ScrapeSession] Resuming")
            self._pause_requested = False
            self._resume_event.set()
            return True
        return False

    def cancel(self) -> bool:
        """Request cancellation; observed at the next checkpoint or immediately while paused."""
        if self._status.is_terminal or self._status == SessionStatus.NOT_INITIALIZED:
            return False
        if not self._cancel_requested:
            logger.info("[ScrapeSession] Cancellation requested")
        self._cancel_requested = True
        self._resume_event.set()
        return True

    async def close(self):
        """Release the browser and any solver this session created. Safe to call repeatedly."""
        await self._close_driver()
        if self.captcha_gateway is not None and self._owns_gateway:
            await self.captcha_gateway.close()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    def get_stats(self) -> Dict[str, Any]:
        """Get session statistics."""
        stats = {
            "status": self._status.value,
            "query": self._config.query if self._config else None,
            "found": self.progress.found,
            "processed": self.progress.processed,
            "records": len(self._records),
            "page_epoch": self._page_epoch,
            **self._stats,
            "proxies": self.proxy_pool.get_stats(),
        }
        if self.captcha_gateway is not None:
            stats["captcha"] = self.captcha_gateway.get_stats()
        return stats

    # ============== Run loop ==============

    async def _scrape(self):
        if not await self._checkpoint():
            self._finish_cancelled()
            return

        await self._navigate_and_search()

        extractor = DetailExtractor(self.driver, self.pacing)
        if await extractor.is_detail_view():
            logger.info("[ScrapeSession] Search opened a single business page")
            handles = [ResultHandle(position=0, href=self.driver.url, epoch=self._page_epoch)]
            self.progress.found = 1
        else:
            discovery = ResultDiscovery(self.driver, self.pacing, self._config.max_results)
            handles = await discovery.discover(
                on_batch=self._on_discovery_batch,
                should_stop=lambda: self._cancel_requested,
                epoch=self._page_epoch
            )
            self.progress.found = len(handles)
            if self._config.is_capped:
                handles = handles[:self._config.max_results]

        total = len(handles)
        self._emit(f"Found {self.progress.found} businesses")

        for handle in handles:
            if not await self._process_item(handle, total):
                self._finish_cancelled()
                return

        if self._cancel_requested:
            self._finish_cancelled()
            return

        self._status = SessionStatus.COMPLETED
        self.progress.percent_complete = 100.0
        self._emit(f"Scraping completed. Extracted {len(self._records)} businesses.")
        log_scrape_event(self._config.query, "completed", f"{len(self._records)} records")

    async def _process_item(self, handle: ResultHandle, total: int) -> bool:
        """
        Process one result, retrying it after a solved challenge or a rotation.

        Returns:
            False if the run was cancelled before the item finished
        """
        attempts = 0
        while True:
            if not await self._checkpoint():
                return False

            opened_by_click = False
            try:
                opened_by_click = await self._open_item(handle)
                record = await DetailExtractor(self.driver, self.pacing).extract()
                if record is None and await self.detector.is_present(self.driver):
                    raise ChallengeDetectedError("Challenge shown instead of the detail view")
            except Exception as e:
                failure = await classify_failure(e, self.driver, self.detector)
                logger.warning(f"[ScrapeSession] Item {handle.position} failed: {failure.message}")
                self.progress.error_text = failure.message
                self._emit()

                if attempts >= self._config.max_retry_attempts:
                    logger.warning(f"[ScrapeSession] Giving up on item {handle.position} after {attempts} retries")
                elif await self._recover(failure) == RecoveryAction.RETRY:
                    attempts += 1
                    self._stats["items_retried"] += 1
                    continue

                self._stats["items_failed"] += 1
                if opened_by_click and handle.epoch == self._page_epoch:
                    await self._return_to_results()
                self._item_done(total)
                return True

            self.progress.error_text = None
            self._accept(record)
            if opened_by_click:
                await self._return_to_results()
            self._item_done(total)
            return True

    async def _checkpoint(self) -> bool:
        """Observe pause and cancel. Returns False if the run should stop."""
        if self._cancel_requested:
            return False
        if not self._pause_requested:
            return True

        self._status = SessionStatus.PAUSED
        logger.info("[ScrapeSession] Paused")
        self._emit("Paused")

        while self._pause_requested and not self._cancel_requested:
            try:
                await asyncio.wait_for(self._resume_event.wait(), timeout=PAUSE_POLL_INTERVAL)
            except asyncio.TimeoutError:
                continue

        self._resume_event.clear()
        if self._cancel_requested:
            logger.info("[ScrapeSession] Cancelled while paused")
            return False

        self._status = SessionStatus.RUNNING
        self._emit("Resumed")
        return True

    async def _navigate_and_search(self):
        query = self._config.query
        try:
            await self.driver.goto(self.maps_url)
            await self.pacing.delay()
            await self._search(query)
        except Exception as e:
            raise NavigationError(f"Could not search for '{query}': {describe_error(e)}") from e

    async def _search(self, query: str):
        logger.info(f"[ScrapeSession] Searching for: {query}")
        search_box = None
        for selector in SEARCH_BOX_SELECTORS:
            search_box = await self.driver.find_one(selector, timeout_ms=SEARCH_BOX_WAIT_MS)
            if search_box is not None:
                break
        if search_box is None:
            raise NavigationError("Search box not found")

        await self.driver.fill(search_box, query)
        await self.pacing.delay(500, 1000)
        await self.driver.press(search_box, "Enter")
        # Results load asynchronously after submit
        await self.pacing.delay(2000, 4000)

    async def _open_item(self, handle: ResultHandle) -> bool:
        """
        Bring the handle's detail view on screen.

        Returns:
            True if opened by clicking in the result list
        """
        opened_by_click = False
        if handle.epoch == self._page_epoch and handle.element is not None:
            await self.driver.click(handle.element)
            opened_by_click = True
        elif handle.epoch != self._page_epoch:
            if not handle.href:
                raise NavigationError(f"Result {handle.position} is stale and has no link")
            logger.debug(f"[ScrapeSession] Reopening result {handle.position} by link")
            await self.driver.goto(handle.href)
        await self.pacing.delay()
        return opened_by_click

    async def _return_to_results(self):
        try:
            await self.driver.go_back()
            await self.pacing.delay()
        except Exception as e:
            logger.warning(f"[ScrapeSession] Could not go back to results: {describe_error(e)}")

    def _accept(self, record: Optional[BusinessRecord]):
        if record is None:
            return
        if self._config.phone_required and not record.has_phone:
            self._stats["filtered_no_phone"] += 1
            logger.info(f"[ScrapeSession] Skipping business '{record.name}' - no phone number")
            return
        self._records.append(record)

    def _item_done(self, total: int):
        self.progress.processed += 1
        self.progress.update_percent(total)
        self._emit(f"Processed {self.progress.processed} of {total} businesses")

    def _finish_cancelled(self):
        self._status = SessionStatus.CANCELLED
        self._emit(f"Scraping cancelled. Extracted {len(self._records)} businesses.")
        log_scrape_event(self._config.query, "cancelled", f"{len(self._records)} records")

    # ============== Recovery ==============

    async def _recover(self, failure: ItemFailure) -> RecoveryAction:
        """Decide whether the failed item is worth another attempt."""
        if not failure.is_challenge:
            return RecoveryAction.SKIP

        if await self._solve_challenge(failure):
            return RecoveryAction.RETRY

        if self._config.use_proxy_rotation and self.proxy_pool.can_rotate:
            await self._rotate_proxy()
            return RecoveryAction.RETRY

        return RecoveryAction.SKIP

    async def _solve_challenge(self, failure: ItemFailure) -> bool:
        self._stats["captchas_detected"] += 1
        self.progress.captcha_detected = True
        self._emit("CAPTCHA detected")

        challenge = failure.challenge
        if challenge is None:
            log_captcha_event("unknown", "unsupported")
            return False
        if self.captcha_gateway is None:
            log_captcha_event(challenge.kind.value, "skipped", "no solver configured")
            return False

        try:
            result = await self.captcha_gateway.solve(challenge)
        except Exception as e:
            log_captcha_event(challenge.kind.value, "provider_error", describe_error(e))
            self.progress.error_text = describe_error(e)
            return False
        if not result.success:
            log_captcha_event(challenge.kind.value, result.failure.value, result.error_message)
            self.progress.error_text = result.error_message
            return False

        try:
            await self.detector.inject_solution(self.driver, challenge, result.solution)
            await self.pacing.delay(2000, 4000)
            still_present = await self.detector.is_present(self.driver)
        except Exception as e:
            log_captcha_event(challenge.kind.value, "submit_failed", describe_error(e))
            self.progress.error_text = describe_error(e)
            return False

        if still_present:
            log_captcha_event(challenge.kind.value, "rejected", "challenge still present after submit")
            self.progress.error_text = "CAPTCHA still present after submitting the solution"
            return False

        self._page_epoch += 1
        self._stats["captchas_solved"] += 1
        self.progress.captcha_solved = True
        self.progress.error_text = None
        log_captcha_event(challenge.kind.value, "solved")
        self._emit("CAPTCHA solved, retrying")
        return True

    async def _rotate_proxy(self):
        """Switch to the next proxy with a fresh browser."""
        proxy = self.proxy_pool.rotate()
        await self._close_driver()
        self.driver = await self._driver_factory(self._config, proxy)
        self._page_epoch += 1
        self._emit("Changed proxy, retrying")

    async def _close_driver(self):
        if self.driver is None:
            return
        driver, self.driver = self.driver, None
        try:
            await driver.close()
        except Exception as e:
            logger.warning(f"[ScrapeSession] Error closing browser: {describe_error(e)}")

    # ============== Progress ==============

    def _on_discovery_batch(self, count: int):
        self.progress.found = count
        self._emit(f"Loading results: {count} found")

    def _emit(self, status_text: Optional[str] = None):
        if status_text is not None:
            self.progress.status_text = status_text
        if self.progress_callback is None:
            return
        try:
            self.progress_callback(replace(self.progress))
        except Exception as e:
            logger.warning(f"[ScrapeSession] Progress callback failed: {e}")
