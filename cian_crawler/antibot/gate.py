"""Detection and single-flight solving of the CIAN anti-bot challenge."""
from __future__ import annotations

import asyncio
import logging
import re
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Hashable, TypeVar

import httpx

from ..errors import (
    ChallengeError,
    ChallengeKeyNotFoundError,
    ChallengeNotResolvedError,
    ChallengeSolveError,
    ChallengeVerifyError,
    TransportError,
    UnexpectedStatusError,
)
from .captcha import ChallengeSolver
from .session import CIAN_API_URL

CAPTCHA_URL = CIAN_API_URL + "/captcha/"
CHALLENGE_STATUS = 302
CHALLENGE_KEY = "captcha"
SITE_KEY_RE = re.compile(r"'sitekey': '(.*?)'")
DEFAULT_MAX_ATTEMPTS = 2

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


class GateState(str, Enum):
    """Challenge gate states."""

    CLEAR = "clear"  # Normal request flow
    CHALLENGED = "challenged"  # Solve in flight


class SingleFlight:
    """Collapse concurrent calls for the same key into one execution.

    The first caller for a key runs the work and publishes a future; callers
    arriving while it runs await that future and get the same result or
    exception. The entry is dropped once resolved, so a later call starts
    fresh work.
    """

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._calls: Dict[Hashable, asyncio.Future] = {}
        self.executions = 0

    def in_flight(self, key: Hashable) -> bool:
        return key in self._calls

    async def do(self, key: Hashable, func: Callable[[], Awaitable[T]]) -> T:
        async with self._lock:
            future = self._calls.get(key)
            leader = future is None or future.done()
            if leader:
                future = asyncio.get_running_loop().create_future()
                self._calls[key] = future
                self.executions += 1

        if not leader:
            return await asyncio.shield(future)

        try:
            result = await func()
        except asyncio.CancelledError:
            future.cancel()
            raise
        except Exception as exc:
            future.set_exception(exc)
            # Mark retrieved: followers may not exist.
            future.exception()
            raise
        else:
            future.set_result(result)
            return result
        finally:
            async with self._lock:
                if self._calls.get(key) is future:
                    del self._calls[key]


class ChallengeGate:
    """Send requests, solving the anti-bot challenge when the API redirects.

    All challenges share one single-flight key: however many workers hit the
    redirect at once, only one solve runs and its cookies are visible to every
    request made through the shared client.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        solver: ChallengeSolver,
        *,
        challenge_url: str = CAPTCHA_URL,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    ) -> None:
        """Initialize challenge gate.

        Parameters
        ----------
        client : httpx.AsyncClient
            Shared client; must not follow redirects
        solver : ChallengeSolver
            Blocking reCAPTCHA solver, run in a worker thread
        challenge_url : str
            Challenge page and verification form URL
        max_attempts : int
            Sends allowed per request, the first one included
        """
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {max_attempts}")
        self.client = client
        self.solver = solver
        self.challenge_url = challenge_url
        self.max_attempts = max_attempts
        self._flight = SingleFlight()

    @property
    def state(self) -> GateState:
        if self._flight.in_flight(CHALLENGE_KEY):
            return GateState.CHALLENGED
        return GateState.CLEAR

    @property
    def solves(self) -> int:
        """Number of solve sequences actually started."""
        return self._flight.executions

    @staticmethod
    def is_challenge(response: httpx.Response) -> bool:
        return response.status_code == CHALLENGE_STATUS

    async def _send(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            return await self.client.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            raise TransportError(f"can't do request {method} {url}: {exc}") from exc

    async def request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """Send a request, solving the challenge and replaying it when needed.

        Raises
        ------
        ChallengeNotResolvedError
            If the server still challenges after ``max_attempts`` sends
        ChallengeError
            If solving failed
        """
        for attempt in range(1, self.max_attempts + 1):
            response = await self._send(method, url, **kwargs)
            if not self.is_challenge(response):
                return response
            LOGGER.warning(
                "Challenge redirect on %s %s (attempt %d/%d, location=%s)",
                method,
                url,
                attempt,
                self.max_attempts,
                response.headers.get("location"),
            )
            if attempt == self.max_attempts:
                break
            await self.solve()
        raise ChallengeNotResolvedError(
            f"{method} {url} still challenged after {self.max_attempts} attempt(s)"
        )

    async def solve(self) -> None:
        """Solve the challenge, sharing one in-flight solve across callers."""
        await self._flight.do(CHALLENGE_KEY, self._solve)

    async def _solve(self) -> None:
        LOGGER.info("solving captcha...")
        site_key = await self._get_site_key()
        try:
            token, telemetry = await asyncio.to_thread(
                self.solver.solve, site_key, self.challenge_url
            )
        except ChallengeError:
            raise
        except Exception as exc:
            raise ChallengeSolveError(f"can't solve captcha: {exc}") from exc
        await self._send_token(token)
        LOGGER.info("captcha solved (%s)", telemetry.to_dict())

    async def _get_site_key(self) -> str:
        response = await self._send("GET", self.challenge_url)
        if response.status_code != 200:
            raise UnexpectedStatusError(response.status_code, response.text, self.challenge_url)
        match = SITE_KEY_RE.search(response.text)
        if match is None:
            raise ChallengeKeyNotFoundError(f"captcha site key not found on {self.challenge_url}")
        return match.group(1)

    async def _send_token(self, token: str) -> None:
        response = await self._send(
            "POST",
            self.challenge_url,
            data={"g-recaptcha-response": token, "redirect_url": ""},
        )
        if response.status_code != CHALLENGE_STATUS:
            raise ChallengeVerifyError(response.status_code, response.text)
