"""Exception hierarchy shared by the crawler components."""
from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional


class CrawlerError(Exception):
    """Base class for every error raised by the crawler."""


class ConfigError(CrawlerError):
    """Configuration file is missing or malformed."""


class GeometryError(CrawlerError):
    """Input polygon cannot be parsed or partitioned."""


class TransportError(CrawlerError):
    """Connection, timeout or protocol failure while talking to CIAN."""


class UnexpectedStatusError(CrawlerError):
    """Server answered with a status that is neither success nor challenge."""

    def __init__(self, status_code: int, body: str = "", url: Optional[str] = None) -> None:
        self.status_code = status_code
        self.body = body
        self.url = url
        super().__init__(f"server sent http error: {status_code}, {body[:200]}")


class ResponseDecodeError(CrawlerError):
    """Response body is not valid JSON or does not match the expected schema."""


class ChallengeError(CrawlerError):
    """Base class for anti-bot challenge failures."""


class ChallengeKeyNotFoundError(ChallengeError):
    """Challenge page did not contain a recognisable site key."""


class ChallengeSolveError(ChallengeError):
    """External solving service failed to produce a token."""


class ChallengeVerifyError(ChallengeError):
    """Challenge endpoint rejected the submitted token."""

    def __init__(self, status_code: int, body: str = "") -> None:
        self.status_code = status_code
        self.body = body
        super().__init__(
            f"server sent unexpected code: {status_code} (expected 302), {body[:200]}"
        )


class ChallengeNotResolvedError(ChallengeError):
    """Server kept challenging after the allowed number of solves."""


@dataclass
class WorkerFailure:
    """A single failed unit of work inside a worker pool."""

    worker_id: int
    index: int
    error: BaseException

    def __str__(self) -> str:
        return f"worker {self.worker_id} error (task #{self.index}): {self.error}"


class WorkerPoolError(CrawlerError):
    """Aggregate of every failure observed before a pool stopped."""

    def __init__(self, failures: List[WorkerFailure]) -> None:
        self.failures = list(failures)
        details = "; ".join(str(failure) for failure in self.failures)
        super().__init__(f"{len(self.failures)} task(s) failed: {details}")

    @property
    def errors(self) -> List[BaseException]:
        return [failure.error for failure in self.failures]


class CrawlError(CrawlerError):
    """A crawl phase failed as a whole."""

    def __init__(self, phase: str, message: str) -> None:
        self.phase = phase
        super().__init__(f"{phase}: {message}")
