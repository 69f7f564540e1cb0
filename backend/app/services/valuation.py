"""Real-time fund valuation fetcher for the eastmoney fundgz JSONP feed."""

import json
import logging
import re
import time
from decimal import Decimal

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from app.config import FETCH_TIMEOUT, ORACLE_URL

logger = logging.getLogger(__name__)

# Response body: jsonpgz({"fundcode":"000001",...});
_JSONP_PATTERN = re.compile(r"jsonpgz\((.*)\)", re.DOTALL)

_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    ),
    "Referer": "https://fund.eastmoney.com/",
    "Cache-Control": "no-cache",
    "Pragma": "no-cache",
}


class ValuationParseError(ValueError):
    """The oracle body did not contain a usable estimate."""


class ValuationEstimate(BaseModel):
    """One intraday estimate as reported by the oracle."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    code: str = Field(alias="fundcode", min_length=1)
    name: str = ""
    nav_date: str = Field(default="", alias="jzrq")
    last_nav: Decimal = Field(alias="dwjz")
    est_nav: Decimal = Field(alias="gsz")
    est_change_pct: Decimal = Field(alias="gszzl")
    est_time: str = Field(default="", alias="gztime")


def parse_jsonp(text: str) -> ValuationEstimate:
    """Extract and validate the estimate embedded in a ``jsonpgz(...)`` body."""
    match = _JSONP_PATTERN.search(text)
    if match is None:
        raise ValuationParseError(f"jsonpgz wrapper not found: {text[:200]!r}")
    try:
        payload = json.loads(match.group(1))
    except json.JSONDecodeError as e:
        raise ValuationParseError(f"invalid JSON payload: {e}") from e
    if not isinstance(payload, dict):
        raise ValuationParseError(f"unexpected payload type: {type(payload).__name__}")
    try:
        return ValuationEstimate.model_validate(payload)
    except ValidationError as e:
        raise ValuationParseError(f"incomplete estimate: {e}") from e


class ValuationFetcher:
    """Fetches live estimates, one oracle request per fund code.

    Every failure (transport, status, envelope, payload) is logged and
    reported as ``None``; the poll loop retries on its next tick.
    """

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        url_template: str = ORACLE_URL,
        timeout: float = FETCH_TIMEOUT,
    ):
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = client is None
        self._url_template = url_template

    async def fetch(self, code: str) -> ValuationEstimate | None:
        url = self._url_template.format(code=code)
        # rt defeats any cache between us and the oracle
        params = {"rt": str(int(time.time() * 1000))}
        try:
            resp = await self._client.get(url, params=params, headers=_HEADERS)
        except httpx.HTTPError as e:
            logger.warning(f"Oracle request for {code} failed: {e!r}")
            return None

        if not resp.is_success:
            logger.warning(f"Oracle returned HTTP {resp.status_code} for {code}")
            return None

        try:
            return parse_jsonp(resp.text)
        except ValuationParseError as e:
            logger.warning(f"Failed to parse estimate for {code}: {e}")
            return None

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
