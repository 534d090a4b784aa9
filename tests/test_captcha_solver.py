"""
Tests for the 2captcha client and the submit/poll gateway.
"""

import json
from unittest.mock import AsyncMock, MagicMock

import aiohttp
import pytest

from core.captcha_solver import (
    CaptchaFailure,
    CaptchaGateway,
    PollResult,
    PollState,
    TwoCaptchaClient,
)
from core.error_handler import CaptchaSolverError
from core.models import CaptchaKind, Challenge

INTERACTIVE = Challenge(kind=CaptchaKind.INTERACTIVE, site_key="site-key", page_url="https://www.google.com/sorry/")
IMAGE = Challenge(kind=CaptchaKind.IMAGE, image_base64="aW1hZ2U=")


class FakeClock:
    """Monotonic clock advanced only by the gateway's sleeps."""

    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def __call__(self):
        return self.now

    async def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


def make_gateway(client, clock):
    return CaptchaGateway(client, poll_interval=5.0, sleep=clock.sleep, clock=clock)


def make_client(**poll_kwargs):
    client = MagicMock()
    client.submit = AsyncMock(return_value="job-1")
    client.poll = AsyncMock(**poll_kwargs)
    client.get_balance = AsyncMock(return_value=2.75)
    client.close = AsyncMock()
    return client


class TestCaptchaGateway:

    @pytest.mark.asyncio
    async def test_solved_after_pending_polls(self):
        clock = FakeClock()
        client = make_client(side_effect=[
            PollResult(PollState.PENDING),
            PollResult(PollState.PENDING),
            PollResult(PollState.SOLVED, "03AGdBq2"),
        ])
        gateway = make_gateway(client, clock)

        result = await gateway.solve(INTERACTIVE)

        assert result.success
        assert result.solution == "03AGdBq2"
        assert result.job_id == "job-1"
        assert result.solve_time_seconds == 15.0
        assert gateway.get_stats()["solved"] == 1

    @pytest.mark.asyncio
    async def test_timeout_polls_every_interval(self):
        clock = FakeClock()
        client = make_client(return_value=PollResult(PollState.PENDING))
        gateway = make_gateway(client, clock)

        result = await gateway.solve(IMAGE)

        assert not result.success
        assert result.failure == CaptchaFailure.TIMEOUT
        assert client.poll.await_count == 12
        assert set(clock.sleeps) == {5.0}
        assert gateway.get_stats()["timed_out"] == 1

    @pytest.mark.asyncio
    async def test_default_timeout_depends_on_kind(self):
        clock = FakeClock()
        client = make_client(return_value=PollResult(PollState.PENDING))
        gateway = make_gateway(client, clock)

        await gateway.solve(INTERACTIVE)

        assert client.poll.await_count == 36

    @pytest.mark.asyncio
    async def test_explicit_timeout(self):
        clock = FakeClock()
        client = make_client(return_value=PollResult(PollState.PENDING))
        gateway = make_gateway(client, clock)

        await gateway.solve(INTERACTIVE, timeout=20)

        assert client.poll.await_count == 4

    @pytest.mark.asyncio
    async def test_provider_failure_is_distinct_from_timeout(self):
        clock = FakeClock()
        client = make_client(return_value=PollResult(PollState.FAILED, "ERROR_CAPTCHA_UNSOLVABLE"))
        gateway = make_gateway(client, clock)

        result = await gateway.solve(IMAGE)

        assert result.failure == CaptchaFailure.PROVIDER_ERROR
        assert "ERROR_CAPTCHA_UNSOLVABLE" in result.error_message
        assert client.poll.await_count == 1
        assert gateway.get_stats() == {"solved": 0, "failed": 1, "timed_out": 0}

    @pytest.mark.asyncio
    async def test_submit_failure(self):
        clock = FakeClock()
        client = make_client()
        client.submit.side_effect = CaptchaSolverError("ERROR_ZERO_BALANCE")
        gateway = make_gateway(client, clock)

        result = await gateway.solve(IMAGE)

        assert result.failure == CaptchaFailure.PROVIDER_ERROR
        client.poll.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_network_error_while_polling(self):
        clock = FakeClock()
        client = make_client(side_effect=aiohttp.ClientConnectionError("reset"))
        gateway = make_gateway(client, clock)

        result = await gateway.solve(IMAGE)

        assert result.failure == CaptchaFailure.PROVIDER_ERROR

    @pytest.mark.asyncio
    async def test_initialize_checks_balance(self):
        client = make_client()
        gateway = make_gateway(client, FakeClock())

        assert await gateway.initialize() == 2.75

    @pytest.mark.asyncio
    async def test_initialize_bad_key_raises(self):
        client = make_client()
        client.get_balance.side_effect = CaptchaSolverError("ERROR_WRONG_USER_KEY")
        gateway = make_gateway(client, FakeClock())

        with pytest.raises(CaptchaSolverError):
            await gateway.initialize()


def json_response(payload):
    """Async context manager yielding a response whose json() returns payload."""
    response = MagicMock()
    response.json = AsyncMock(return_value=payload)
    manager = MagicMock()
    manager.__aenter__ = AsyncMock(return_value=response)
    manager.__aexit__ = AsyncMock(return_value=False)
    return manager


def mock_session(post=None, get=None):
    session = MagicMock()
    session.closed = False
    session.close = AsyncMock()
    if post is not None:
        session.post = MagicMock(return_value=json_response(post))
    if get is not None:
        session.get = MagicMock(side_effect=[json_response(p) for p in get])
    return session


@pytest.mark.network
class TestTwoCaptchaClient:

    def test_empty_key_rejected(self):
        with pytest.raises(CaptchaSolverError):
            TwoCaptchaClient("")

    def test_service_url_normalized(self):
        client = TwoCaptchaClient("key", service_url="http://solver.local")
        assert client.service_url == "http://solver.local/"

    @pytest.mark.asyncio
    async def test_submit_interactive(self):
        session = mock_session(post={"status": 1, "request": "2122988149"})
        client = TwoCaptchaClient("key", session=session)

        job_id = await client.submit(INTERACTIVE)

        assert job_id == "2122988149"
        url = session.post.call_args.args[0]
        data = session.post.call_args.kwargs["data"]
        assert url == "https://2captcha.com/in.php"
        assert data["method"] == "userrecaptcha"
        assert data["googlekey"] == "site-key"
        assert data["pageurl"] == "https://www.google.com/sorry/"
        assert data["json"] == 1

    @pytest.mark.asyncio
    async def test_submit_image(self):
        session = mock_session(post={"status": 1, "request": "77"})
        client = TwoCaptchaClient("key", session=session)

        await client.submit(IMAGE)

        data = session.post.call_args.kwargs["data"]
        assert data["method"] == "base64"
        assert data["body"] == "aW1hZ2U="

    @pytest.mark.asyncio
    async def test_submit_rejected(self):
        session = mock_session(post={"status": 0, "request": "ERROR_ZERO_BALANCE"})
        client = TwoCaptchaClient("key", session=session)

        with pytest.raises(CaptchaSolverError, match="ERROR_ZERO_BALANCE"):
            await client.submit(IMAGE)

    @pytest.mark.asyncio
    async def test_submit_incomplete_challenge(self):
        client = TwoCaptchaClient("key", session=mock_session())

        with pytest.raises(CaptchaSolverError):
            await client.submit(Challenge(kind=CaptchaKind.INTERACTIVE))

    @pytest.mark.asyncio
    async def test_poll_states(self):
        session = mock_session(get=[
            {"status": 0, "request": "CAPCHA_NOT_READY"},
            {"status": 1, "request": "w93bx"},
            {"status": 0, "request": "ERROR_CAPTCHA_UNSOLVABLE"},
        ])
        client = TwoCaptchaClient("key", session=session)

        assert (await client.poll("1")).state == PollState.PENDING
        solved = await client.poll("1")
        assert (solved.state, solved.text) == (PollState.SOLVED, "w93bx")
        assert (await client.poll("1")).state == PollState.FAILED

        params = session.get.call_args.kwargs["params"]
        assert params["action"] == "get"
        assert params["id"] == "1"

    @pytest.mark.asyncio
    async def test_balance(self):
        session = mock_session(get=[{"status": 1, "request": "3.50"}])
        client = TwoCaptchaClient("key", session=session)

        assert await client.get_balance() == 3.5
        assert session.get.call_args.kwargs["params"]["action"] == "getbalance"

    @pytest.mark.asyncio
    async def test_balance_bad_key(self):
        session = mock_session(get=[{"status": 0, "request": "ERROR_WRONG_USER_KEY"}])
        client = TwoCaptchaClient("key", session=session)

        with pytest.raises(CaptchaSolverError, match="ERROR_WRONG_USER_KEY"):
            await client.get_balance()

    @pytest.mark.asyncio
    async def test_close_leaves_borrowed_session_open(self):
        session = mock_session()
        async with TwoCaptchaClient("key", session=session):
            pass
        session.close.assert_not_awaited()


def html_response(status=502, body="<html>Bad Gateway</html>"):
    """Async context manager yielding an HTML error page instead of JSON."""
    response = MagicMock()
    response.status = status
    response.json = AsyncMock(side_effect=json.JSONDecodeError("Expecting value", body, 0))
    manager = MagicMock()
    manager.__aenter__ = AsyncMock(return_value=response)
    manager.__aexit__ = AsyncMock(return_value=False)
    return manager


@pytest.mark.network
class TestUnreadableReplies:

    @pytest.mark.asyncio
    async def test_submit_html_error_page(self):
        session = mock_session()
        session.post = MagicMock(return_value=html_response())
        client = TwoCaptchaClient("key", session=session)

        with pytest.raises(CaptchaSolverError, match="HTTP 502"):
            await client.submit(IMAGE)

    @pytest.mark.asyncio
    async def test_poll_html_error_page(self):
        session = mock_session()
        session.get = MagicMock(return_value=html_response(503))
        client = TwoCaptchaClient("key", session=session)

        with pytest.raises(CaptchaSolverError, match="HTTP 503"):
            await client.poll("1")

    @pytest.mark.asyncio
    async def test_reply_that_is_not_an_object(self):
        session = mock_session(get=[["unexpected"]])
        client = TwoCaptchaClient("key", session=session)

        with pytest.raises(CaptchaSolverError):
            await client.poll("1")

    @pytest.mark.asyncio
    async def test_accepted_without_job_id(self):
        session = mock_session(post={"status": 1})
        client = TwoCaptchaClient("key", session=session)

        with pytest.raises(CaptchaSolverError, match="without a job id"):
            await client.submit(IMAGE)

    @pytest.mark.asyncio
    async def test_gateway_reports_provider_error(self):
        session = mock_session()
        session.post = MagicMock(return_value=html_response())
        clock = FakeClock()
        gateway = make_gateway(TwoCaptchaClient("key", session=session), clock)

        result = await gateway.solve(INTERACTIVE)

        assert not result.success
        assert result.failure == CaptchaFailure.PROVIDER_ERROR
        assert "HTTP 502" in result.error_message
        assert gateway.get_stats()["failed"] == 1

    @pytest.mark.asyncio
    async def test_gateway_survives_value_error_from_poll(self):
        clock = FakeClock()
        client = make_client(side_effect=ValueError("Expecting value"))
        gateway = make_gateway(client, clock)

        result = await gateway.solve(IMAGE)

        assert result.failure == CaptchaFailure.PROVIDER_ERROR
        assert result.job_id == "job-1"
