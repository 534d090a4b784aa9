"""
Tests for infinite-scroll result discovery.
"""

import pytest

from core.discovery import SCROLL_WINDOW_SCRIPT, ResultDiscovery

from fake_maps import FakeMapsDriver, make_place


async def results_page(count, **kwargs):
    driver = FakeMapsDriver([make_place(i) for i in range(count)], **kwargs)
    await driver.goto("https://www.google.com/maps")
    await driver.fill(driver._search_box, "coffee shops in Seattle")
    await driver.press(driver._search_box, "Enter")
    return driver


@pytest.mark.asyncio
async def test_stops_after_three_stable_reads(instant_pacing):
    driver = await results_page(7, initial_visible=3, batch_size=2)
    discovery = ResultDiscovery(driver, instant_pacing)

    handles = await discovery.discover()

    assert len(handles) == 7
    # 3 -> 5 -> 7, then three unchanged reads
    assert discovery.scroll_attempts == 5


@pytest.mark.asyncio
async def test_attempt_budget_bounds_endless_feed(instant_pacing):
    driver = await results_page(100, initial_visible=1, batch_size=1)
    discovery = ResultDiscovery(driver, instant_pacing)

    handles = await discovery.discover()

    assert discovery.scroll_attempts == 20
    assert driver.scrolls == 20
    assert len(handles) == 21


@pytest.mark.asyncio
async def test_stops_at_cap(instant_pacing):
    driver = await results_page(30, initial_visible=2, batch_size=2)
    discovery = ResultDiscovery(driver, instant_pacing, max_results=4)

    handles = await discovery.discover()

    assert driver.scrolls == 1
    assert len(handles) == 4


@pytest.mark.asyncio
async def test_window_scroll_without_feed(instant_pacing):
    driver = await results_page(4, initial_visible=2, batch_size=2, has_feed=False)

    handles = await ResultDiscovery(driver, instant_pacing).discover()

    assert len(handles) == 4
    assert SCROLL_WINDOW_SCRIPT in driver.scripts


@pytest.mark.asyncio
async def test_should_stop_ends_early(instant_pacing):
    driver = await results_page(30, initial_visible=5, batch_size=5)
    reads = []

    handles = await ResultDiscovery(driver, instant_pacing).discover(
        on_batch=reads.append,
        should_stop=lambda: len(reads) >= 2
    )

    assert reads == [5, 10]
    assert len(handles) == 15


@pytest.mark.asyncio
async def test_handles_carry_position_href_and_epoch(instant_pacing):
    driver = await results_page(3)

    handles = await ResultDiscovery(driver, instant_pacing).discover(epoch=4)

    assert [h.position for h in handles] == [0, 1, 2]
    assert all("/maps/place/" in h.href for h in handles)
    assert {h.epoch for h in handles} == {4}
    assert handles[1].element is driver._links[1]


@pytest.mark.asyncio
async def test_no_results(instant_pacing):
    driver = await results_page(0)

    handles = await ResultDiscovery(driver, instant_pacing).discover()

    assert handles == []


class NoScrollDriver(FakeMapsDriver):
    """Results page whose window scroll fails, e.g. after a context teardown."""

    async def execute_script(self, script, arg=None):
        if script == SCROLL_WINDOW_SCRIPT:
            raise RuntimeError("Execution context was destroyed")
        return await super().execute_script(script, arg)


@pytest.mark.asyncio
async def test_failed_scroll_keeps_loaded_results(instant_pacing):
    driver = NoScrollDriver([make_place(i) for i in range(8)], initial_visible=5, has_feed=False)
    await driver.goto("https://www.google.com/maps")
    await driver.fill(driver._search_box, "coffee shops in Seattle")
    await driver.press(driver._search_box, "Enter")
    discovery = ResultDiscovery(driver, instant_pacing)

    handles = await discovery.discover()

    assert len(handles) == 5
    assert discovery.scroll_attempts == 0
    assert [h.position for h in handles] == [0, 1, 2, 3, 4]
