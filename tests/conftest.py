import json
import threading
import time
from typing import Dict, List, Optional
from urllib.parse import parse_qs

import httpx
import pytest

from cian_crawler.antibot.captcha import CaptchaTelemetry
from cian_crawler.antibot.gate import ChallengeGate
from cian_crawler.antibot.session import create_client
from cian_crawler.collector.client import CLUSTERS_PATH, OFFERS_PATH

CAPTCHA_PAGE = """
<html><body><div id="captcha"></div>
<script>grecaptcha.render('captcha', {'sitekey': 'site-key-123', 'callback': onSubmit});</script>
</body></html>
"""


class FakeSolver:
    """Thread-safe stand-in for the Anti-Captcha client."""

    def __init__(self, token: str = "solved-token", delay: float = 0.0, error: Optional[Exception] = None):
        self.token = token
        self.delay = delay
        self.error = error
        self.calls = 0
        self.site_keys: List[str] = []
        self._lock = threading.Lock()

    def solve(self, site_key, page_url):
        with self._lock:
            self.calls += 1
            self.site_keys.append(site_key)
        time.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.token, CaptchaTelemetry(site_key=site_key, page_url=page_url, status="solved")


class FakeCian:
    """In-memory CIAN API answering through ``httpx.MockTransport``.

    With ``challenge`` on, data endpoints redirect until the client presents
    the cookie set by a successful captcha verification.
    """

    def __init__(
        self,
        *,
        challenge: bool = False,
        always_challenge: bool = False,
        clusters: Optional[List[dict]] = None,
        captcha_page: str = CAPTCHA_PAGE,
        verify_status: int = 302,
        data_status: int = 200,
        data_body: Optional[bytes] = None,
    ):
        self.challenge = challenge
        self.always_challenge = always_challenge
        self.clusters = clusters or []
        self.captcha_page = captcha_page
        self.verify_status = verify_status
        self.data_status = data_status
        self.data_body = data_body
        self.data_requests: List[dict] = []
        self.verified_tokens: List[str] = []
        self.captcha_page_requests = 0
        self.challenged = 0

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)

    def _captcha(self, request: httpx.Request) -> httpx.Response:
        if request.method == "GET":
            self.captcha_page_requests += 1
            return httpx.Response(200, text=self.captcha_page)
        form = parse_qs(request.content.decode(), keep_blank_values=True)
        assert form["redirect_url"] == [""]
        self.verified_tokens.append(form["g-recaptcha-response"][0])
        if self.verify_status != 302:
            return httpx.Response(self.verify_status, text="bad token")
        return httpx.Response(
            302,
            headers={"location": "https://www.cian.ru/", "set-cookie": "captcha_passed=1; Path=/"},
        )

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if request.url.path == "/captcha/":
            return self._captcha(request)

        passed = "captcha_passed=1" in request.headers.get("cookie", "")
        if self.always_challenge or (self.challenge and not passed):
            self.challenged += 1
            return httpx.Response(302, headers={"location": "https://api.cian.ru/captcha/"})

        body = json.loads(request.content)
        self.data_requests.append({"path": request.url.path, "body": body})
        if self.data_body is not None or self.data_status != 200:
            return httpx.Response(self.data_status, content=self.data_body or b"oops")

        if request.url.path == CLUSTERS_PATH:
            return httpx.Response(200, json={"filtered": self.clusters, "offersCount": 0})
        if request.url.path == OFFERS_PATH:
            offers = [
                {
                    "cianOfferId": offer_id,
                    "category": "flatSale",
                    "roomsCount": 2,
                    "totalArea": "50.0",
                    "bargainTerms": {"priceRur": 10_000_000},
                    "geo": {"address": [{"fullName": "Москва", "geoType": "location"}]},
                }
                for offer_id in body["cianOfferIds"]
            ]
            return httpx.Response(200, json={"offersSerialized": offers})
        return httpx.Response(404, text="not found")


def make_gate(api: FakeCian, solver: FakeSolver, **kwargs) -> ChallengeGate:
    return ChallengeGate(create_client(transport=api.transport()), solver, **kwargs)


@pytest.fixture
def solver() -> FakeSolver:
    return FakeSolver(delay=0.05)


@pytest.fixture
def moscow_rectangle() -> Dict:
    return {
        "type": "Polygon",
        "coordinates": [
            [[37.50, 55.70], [37.60, 55.70], [37.60, 55.80], [37.50, 55.80], [37.50, 55.70]]
        ],
    }
