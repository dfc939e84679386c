"""
SASWeb mobile API client

The portal's mobile app books through a single JSONP endpoint (poster.php)
that takes the credentials on every request, so no browser session is needed.
Its answer is the same Spanish free text the web form shows and goes through
the same classifier.
"""
import hashlib
import json
import logging
import re
import time
from typing import Any, Dict, Optional

import httpx

from ..common.classifier import classify
from ..common.config import Config
from ..common.errors import APIError
from ..common.models import ClaimOutcome, ClaimRequest, ClaimStatus

logger = logging.getLogger(__name__)

JSONP = re.compile(r"poster_callback\s*\(\s*(\{.*\})\s*\)", re.DOTALL)
MD5_HEX = re.compile(r"^[a-f0-9]{32}$", re.IGNORECASE)

DEFAULT_HEADERS = {
    "Accept": "*/*",
    "User-Agent": "Mozilla/5.0 (Linux; Android 13) AppleWebKit/537.36 (KHTML, like Gecko) Mobile Safari/537.36",
}


def password_hash(password: str, pre_hashed: bool = False) -> str:
    """MD5 hex digest as the app sends it; 32-char hex input is taken as already hashed"""
    if pre_hashed or MD5_HEX.match(password):
        return password.lower()
    return hashlib.md5(password.encode("utf-8")).hexdigest()


def parse_jsonp(text: str) -> Dict[str, Any]:
    """Payload of poster_callback({...}); raises APIError on anything else"""
    match = JSONP.search(text or "")
    if not match:
        raise APIError("Invalid JSONP response format", response_body=text)
    try:
        data = json.loads(match.group(1))
    except json.JSONDecodeError as e:
        raise APIError(f"Invalid JSON in JSONP response: {e}", response_body=text) from e
    if not isinstance(data.get("poster"), dict):
        raise APIError("JSONP response has no poster object", response_body=text)
    return data


class MobileAPIClient:
    """
    Stateless reservation client.

    Use as an async context manager, or pass an httpx.AsyncClient to share
    one (tests pass one built on httpx.MockTransport).
    """

    def __init__(
        self,
        username: str,
        password: str,
        api_url: str = "https://www.sasweb.net/utilities/process/app/poster.php",
        condo_id: str = "16",
        pre_hashed: bool = False,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 15.0,
    ):
        self.username = username
        self.password_hash = password_hash(password, pre_hashed)
        self.api_url = api_url
        self.condo_id = condo_id
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(headers=DEFAULT_HEADERS, timeout=timeout)

    @classmethod
    def from_config(cls, config: Config, client: Optional[httpx.AsyncClient] = None) -> "MobileAPIClient":
        return cls(
            username=config.credentials.username,
            password=config.credentials.password,
            api_url=config.site.api_url,
            condo_id=config.site.condo_id,
            client=client,
        )

    async def __aenter__(self):
        return self

    async def __aexit__(self, *args):
        await self.close()

    async def close(self):
        if self._owns_client:
            await self.client.aclose()

    def reservation_params(self, area: str, day: str, schedule: str) -> Dict[str, str]:
        return {
            "lang": "null",
            "condo": self.condo_id,
            "app_user": self.username,
            "app_password": self.password_hash,
            "area": area,
            "day": day,
            "schedule": schedule,
            "from_full_time": "0",
            "time": "0",
            "people": "1",
            "comments": "",
            "app_action": "add_reservation",
            "fn_redirect": "reservations",
            "callback": "poster_callback",
            "_": str(int(time.time() * 1000)),
        }

    async def reserve(self, request: ClaimRequest) -> ClaimOutcome:
        """
        Book `request` and classify the answer.

        A `result` of 1 with wording the classifier doesn't know is still
        reported as SUCCESS; the endpoint's flag is authoritative there.
        """
        day = request.target_date.isoformat()
        params = self.reservation_params(request.resource_id, day, request.slot_id)
        logger.info(f"[API] Calling: area={request.resource_id}, day={day}, schedule={request.slot_id}")

        try:
            response = await self.client.get(self.api_url, params=params)
        except httpx.HTTPError as e:
            raise APIError(f"API request failed: {e}") from e

        if response.status_code != 200:
            raise APIError(
                f"API returned HTTP {response.status_code}",
                status_code=response.status_code,
                response_body=response.text,
            )

        poster = parse_jsonp(response.text)["poster"]
        message = str(poster.get("msg") or "")
        outcome = classify(message, source=self.api_url)
        logger.debug(f"[API] result={poster.get('result')} msg={message!r}")

        if poster.get("result") == 1 and outcome.status == ClaimStatus.UNKNOWN:
            outcome = ClaimOutcome(
                status=ClaimStatus.SUCCESS,
                message="Reservation successful",
                raw_message=message,
                source=self.api_url,
            )
        return outcome
