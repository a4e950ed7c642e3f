"""Anti-Captcha integration for the CIAN reCAPTCHA challenge, with telemetry."""
from __future__ import annotations

import logging
import os
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol, Tuple

import requests
from tenacity import RetryError, Retrying, retry_if_result, stop_after_delay, wait_fixed

from ..errors import ChallengeSolveError, ConfigError

API_URL = "https://api.anti-captcha.com"
TASK_TYPE = "RecaptchaV2TaskProxyless"
POLL_INTERVAL = 5
MAX_WAIT = 180
REQUEST_TIMEOUT = 30

LOGGER = logging.getLogger(__name__)


@dataclass
class CaptchaTelemetry:
    """Telemetry data for captcha solving operations."""

    task_id: Optional[int] = None
    site_key: str = ""
    page_url: str = ""
    solve_time_sec: float = 0.0
    status: str = "pending"  # pending, solving, solved, failed
    error_message: Optional[str] = None
    cost_estimate_usd: float = 0.002
    attempts: int = 0

    def to_dict(self) -> dict:
        """Convert telemetry to dictionary for logging/monitoring."""
        return {
            "task_id": self.task_id,
            "site_key": self.site_key,
            "page_url": self.page_url,
            "solve_time_sec": round(self.solve_time_sec, 2),
            "status": self.status,
            "error_message": self.error_message,
            "cost_estimate_usd": self.cost_estimate_usd,
            "attempts": self.attempts,
        }


class ChallengeSolver(Protocol):
    """Anything able to turn a reCAPTCHA site key into a response token."""

    def solve(self, site_key: str, page_url: str) -> Tuple[str, CaptchaTelemetry]:
        ...


def _is_processing(body: Dict[str, Any]) -> bool:
    return body.get("status") == "processing"


class CaptchaSolver:
    """Anti-Captcha API client with telemetry.

    The client is blocking (``requests`` + polling); async callers run
    :meth:`solve` in a worker thread.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        *,
        max_wait: float = MAX_WAIT,
        poll_interval: float = POLL_INTERVAL,
        api_url: str = API_URL,
    ) -> None:
        """Initialize captcha solver.

        Parameters
        ----------
        api_key : str, optional
            Anti-Captcha API key (defaults to ANTICAPTCHA_KEY env var)
        max_wait : float
            Maximum time to wait for solution (seconds)
        poll_interval : float
            Time between polling attempts (seconds)
        api_url : str
            Service base URL
        """
        self.api_key = api_key or os.getenv("ANTICAPTCHA_KEY")
        if not self.api_key:
            raise ConfigError("ANTICAPTCHA_KEY is not set")
        self.max_wait = max_wait
        self.poll_interval = poll_interval
        self.api_url = api_url.rstrip("/")
        self.telemetry_history: list[CaptchaTelemetry] = []

    def _call(self, method: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        try:
            resp = requests.post(f"{self.api_url}/{method}", json=payload, timeout=REQUEST_TIMEOUT)
            resp.raise_for_status()
            body = resp.json()
        except (requests.RequestException, ValueError) as exc:
            raise ChallengeSolveError(f"AntiCaptcha {method} request failed: {exc}") from exc
        if body.get("errorId"):
            raise ChallengeSolveError(f"AntiCaptcha {method} failed: {body}")
        return body

    def _create_task(self, site_key: str, page_url: str) -> int:
        data = self._call(
            "createTask",
            {
                "clientKey": self.api_key,
                "task": {
                    "type": TASK_TYPE,
                    "websiteURL": page_url,
                    "websiteKey": site_key,
                },
            },
        )
        return data["taskId"]

    def _wait_for_result(self, telemetry: CaptchaTelemetry) -> Dict[str, Any]:
        def poll() -> Dict[str, Any]:
            telemetry.attempts += 1
            return self._call(
                "getTaskResult",
                {"clientKey": self.api_key, "taskId": telemetry.task_id},
            )

        retryer = Retrying(
            retry=retry_if_result(_is_processing),
            stop=stop_after_delay(self.max_wait),
            wait=wait_fixed(self.poll_interval),
        )
        try:
            return retryer(poll)
        except RetryError as exc:
            raise ChallengeSolveError(
                f"Timed out waiting for captcha solution after {self.max_wait}s"
            ) from exc

    def solve(self, site_key: str, page_url: str) -> Tuple[str, CaptchaTelemetry]:
        """Solve captcha and return token with telemetry.

        Parameters
        ----------
        site_key : str
            Site key from captcha page
        page_url : str
            URL of the page containing captcha

        Returns
        -------
        tuple[str, CaptchaTelemetry]
            Captcha token and telemetry data

        Raises
        ------
        ChallengeSolveError
            If the service reports an error, returns no token or times out
        """
        telemetry = CaptchaTelemetry(site_key=site_key, page_url=page_url)
        start_time = time.time()

        try:
            telemetry.status = "solving"
            telemetry.task_id = self._create_task(site_key, page_url)
            LOGGER.debug("Created captcha task %s for %s", telemetry.task_id, page_url)

            body = self._wait_for_result(telemetry)
            solution = body.get("solution") or {}
            token = solution.get("gRecaptchaResponse") or solution.get("token")
            if not token:
                raise ChallengeSolveError(f"AntiCaptcha returned empty solution: {body}")
        except ChallengeSolveError as exc:
            telemetry.status = "failed"
            telemetry.error_message = str(exc)
            telemetry.solve_time_sec = time.time() - start_time
            self.telemetry_history.append(telemetry)
            LOGGER.error(
                "Failed to solve captcha: %s (time=%.2fs, attempts=%d)",
                exc,
                telemetry.solve_time_sec,
                telemetry.attempts,
            )
            raise

        telemetry.status = "solved"
        telemetry.solve_time_sec = time.time() - start_time
        self.telemetry_history.append(telemetry)
        LOGGER.info(
            "Solved captcha task %s in %.2fs (attempts=%d)",
            telemetry.task_id,
            telemetry.solve_time_sec,
            telemetry.attempts,
        )
        return token, telemetry

    def get_total_cost_estimate(self) -> float:
        """Calculate total estimated cost from telemetry history."""
        return sum(t.cost_estimate_usd for t in self.telemetry_history if t.status == "solved")

    def get_success_rate(self) -> float:
        """Calculate success rate from telemetry history."""
        if not self.telemetry_history:
            return 0.0
        solved = sum(1 for t in self.telemetry_history if t.status == "solved")
        return solved / len(self.telemetry_history)

    def get_avg_solve_time(self) -> float:
        """Calculate average solve time from successful solves."""
        solved = [t for t in self.telemetry_history if t.status == "solved"]
        if not solved:
            return 0.0
        return sum(t.solve_time_sec for t in solved) / len(solved)
