"""Anti-bot toolkit for the CIAN API.

- Shared HTTP session (cookies carry the solved challenge)
- Challenge detection with single-flight solving
- Anti-Captcha integration with telemetry
"""

from .captcha import CaptchaSolver, CaptchaTelemetry, ChallengeSolver
from .gate import ChallengeGate, GateState, SingleFlight
from .session import create_client

__all__ = [
    "CaptchaSolver",
    "CaptchaTelemetry",
    "ChallengeSolver",
    "ChallengeGate",
    "GateState",
    "SingleFlight",
    "create_client",
]
