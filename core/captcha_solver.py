"""
CAPTCHA Solving Service
2captcha client plus the submit/poll gateway used by the scrape session
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional

import aiohttp

from .error_handler import CaptchaSolverError
from .models import CaptchaKind, Challenge

logger = logging.getLogger(__name__)

TWOCAPTCHA_URL = "https://2captcha.com/"
NOT_READY = "CAPCHA_NOT_READY"

POLL_INTERVAL_SECONDS = 5.0
DEFAULT_TIMEOUTS = {
    CaptchaKind.IMAGE: 60.0,
    CaptchaKind.INTERACTIVE: 180.0,
}


class PollState(Enum):
    PENDING = "pending"
    SOLVED = "solved"
    FAILED = "failed"


@dataclass
class PollResult:
    """One poll response from the solving service."""
    state: PollState
    text: Optional[str] = None


class CaptchaFailure(Enum):
    """Why a solve attempt did not produce a solution."""
    PROVIDER_ERROR = "provider_error"
    TIMEOUT = "timeout"


@dataclass
class CaptchaResult:
    """Result of CAPTCHA solving attempt."""
    success: bool
    solution: Optional[str] = None
    failure: Optional[CaptchaFailure] = None
    error_message: Optional[str] = None
    solve_time_seconds: float = 0.0
    job_id: Optional[str] = None


class TwoCaptchaClient:
    """
    Thin client for the 2captcha in.php / res.php API.

    Usage:
        async with TwoCaptchaClient(api_key) as client:
            balance = await client.get_balance()
    """

    def __init__(
        self,
        api_key: str,
        service_url: Optional[str] = None,
        session: Optional[aiohttp.ClientSession] = None,
        request_timeout: float = 30.0
    ):
        if not api_key:
            raise CaptchaSolverError("API key cannot be empty")
        self.api_key = api_key
        url = service_url or TWOCAPTCHA_URL
        self.service_url = url if url.endswith("/") else url + "/"
        self.session = session
        self._owns_session = session is None
        self.request_timeout = request_timeout

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    def _get_session(self) -> aiohttp.ClientSession:
        if self.session is None or self.session.closed:
            self.session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.request_timeout)
            )
            self._owns_session = True
        return self.session

    async def close(self):
        if self.session and self._owns_session and not self.session.closed:
            await self.session.close()
        self.session = None

    @staticmethod
    async def _read_json(resp) -> Dict[str, Any]:
        """Decode a reply, turning HTML error pages and other junk into CaptchaSolverError."""
        try:
            # 2captcha answers JSON with a text/plain content type
            result = await resp.json(content_type=None)
        except ValueError as e:
            raise CaptchaSolverError(f"Unreadable reply from solving service (HTTP {resp.status})") from e
        if not isinstance(result, dict):
            raise CaptchaSolverError(f"Unexpected reply from solving service (HTTP {resp.status})")
        return result

    async def _get_json(self, params: Dict[str, Any]) -> Dict[str, Any]:
        session = self._get_session()
        async with session.get(f"{self.service_url}res.php", params=params) as resp:
            return await self._read_json(resp)

    async def submit(self, challenge: Challenge) -> str:
        """Submit a challenge and return the provider's job id."""
        data = {"key": self.api_key, "json": 1}
        if challenge.kind == CaptchaKind.INTERACTIVE:
            if not challenge.site_key or not challenge.page_url:
                raise CaptchaSolverError("Interactive challenge needs a site key and page URL")
            data.update({
                "method": "userrecaptcha",
                "googlekey": challenge.site_key,
                "pageurl": challenge.page_url,
            })
        else:
            if not challenge.image_base64:
                raise CaptchaSolverError("Image challenge needs image data")
            data.update({
                "method": "base64",
                "body": challenge.image_base64,
            })

        session = self._get_session()
        async with session.post(f"{self.service_url}in.php", data=data) as resp:
            result = await self._read_json(resp)

        if str(result.get("status")) != "1":
            raise CaptchaSolverError(f"Failed to submit CAPTCHA: {result.get('request')}")
        if not result.get("request"):
            raise CaptchaSolverError("Solving service accepted the CAPTCHA without a job id")

        job_id = str(result["request"])
        logger.info(f"[2captcha] {challenge.kind.value} CAPTCHA submitted. ID: {job_id}")
        return job_id

    async def poll(self, job_id: str) -> PollResult:
        """Ask for the result of a submitted job."""
        result = await self._get_json({
            "key": self.api_key,
            "action": "get",
            "id": job_id,
            "json": 1,
        })
        if str(result.get("status")) == "1":
            return PollResult(PollState.SOLVED, str(result.get("request")))
        if result.get("request") == NOT_READY:
            return PollResult(PollState.PENDING)
        return PollResult(PollState.FAILED, str(result.get("request")))

    async def get_balance(self) -> float:
        """Return the account balance; raises CaptchaSolverError on a bad key."""
        try:
            result = await self._get_json({
                "key": self.api_key,
                "action": "getbalance",
                "json": 1,
            })
        except aiohttp.ClientError as e:
            raise CaptchaSolverError(f"Error getting 2captcha balance: {e}") from e

        if str(result.get("status")) != "1":
            raise CaptchaSolverError(f"Failed to get balance: {result.get('request')}")
        try:
            return float(result["request"])
        except (TypeError, ValueError) as e:
            raise CaptchaSolverError(f"Unexpected balance value: {result.get('request')}") from e


class CaptchaGateway:
    """
    Submit-then-poll adapter around a solving client.

    Provider failures and timeouts are reported as distinct CaptchaFailure
    kinds; neither raises.
    """

    def __init__(
        self,
        client: Any,
        poll_interval: float = POLL_INTERVAL_SECONDS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic
    ):
        self.client = client
        self.poll_interval = poll_interval
        self._sleep = sleep
        self._clock = clock
        self.solved_count = 0
        self.failed_count = 0
        self.timeout_count = 0

    @classmethod
    def for_api_key(cls, api_key: str, service_url: Optional[str] = None, **kwargs) -> "CaptchaGateway":
        return cls(TwoCaptchaClient(api_key, service_url), **kwargs)

    async def initialize(self) -> float:
        """Check the credential by reading the balance. Raises CaptchaSolverError."""
        balance = await self.client.get_balance()
        logger.info(f"[CaptchaGateway] Solver initialized. Current balance: {balance}")
        return balance

    async def solve(self, challenge: Challenge, timeout: Optional[float] = None) -> CaptchaResult:
        """
        Solve a challenge.

        Args:
            challenge: Image or interactive challenge payload
            timeout: Seconds to wait for a solution (default depends on kind)
        """
        timeout = timeout if timeout is not None else DEFAULT_TIMEOUTS[challenge.kind]
        start_time = self._clock()

        try:
            job_id = await self.client.submit(challenge)
        except (CaptchaSolverError, aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            return self._provider_failure(f"Submit failed: {e}", start_time)

        while self._clock() - start_time < timeout:
            await self._sleep(self.poll_interval)

            try:
                poll = await self.client.poll(job_id)
            except (CaptchaSolverError, aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
                return self._provider_failure(f"Poll failed: {e}", start_time, job_id)

            if poll.state == PollState.SOLVED:
                self.solved_count += 1
                solve_time = self._clock() - start_time
                logger.info(f"[CaptchaGateway] CAPTCHA {job_id} solved in {solve_time:.1f}s")
                return CaptchaResult(
                    success=True,
                    solution=poll.text,
                    solve_time_seconds=solve_time,
                    job_id=job_id
                )

            if poll.state == PollState.FAILED:
                return self._provider_failure(f"Failed to solve CAPTCHA: {poll.text}", start_time, job_id)

            logger.debug(f"[CaptchaGateway] CAPTCHA {job_id} not ready yet, waiting...")

        self.timeout_count += 1
        logger.warning(f"[CaptchaGateway] CAPTCHA {job_id} timed out after {timeout:.0f}s")
        return CaptchaResult(
            success=False,
            failure=CaptchaFailure.TIMEOUT,
            error_message=f"CAPTCHA solving timed out after {timeout:.0f}s",
            solve_time_seconds=self._clock() - start_time,
            job_id=job_id
        )

    def _provider_failure(self, message: str, start_time: float, job_id: Optional[str] = None) -> CaptchaResult:
        self.failed_count += 1
        logger.error(f"[CaptchaGateway] Provider error: {message}")
        return CaptchaResult(
            success=False,
            failure=CaptchaFailure.PROVIDER_ERROR,
            error_message=message,
            solve_time_seconds=self._clock() - start_time,
            job_id=job_id
        )

    async def close(self):
        close = getattr(self.client, "close", None)
        if close is not None:
            await close()

    def get_stats(self) -> Dict[str, Any]:
        """Get CAPTCHA solving statistics."""
        return {
            "solved": self.solved_count,
            "failed": self.failed_count,
            "timed_out": self.timeout_count,
        }
