"""
Live exchange rate sources.

Every source exposes ``async fetch(base, target) -> float`` returning the
rate for 1 base in target units, or raises SourceUnavailable. Timeouts,
HTTP errors and malformed payloads are all reported as SourceUnavailable so
the resolver can move on to the next source. Sources that can look up past
dates set ``supports_history`` and implement ``fetch_historical``.
"""
import json
import math
import logging
from datetime import date, timedelta
from typing import Dict, Optional
import httpx
from app.core.config import settings
from app.core.exceptions import SourceUnavailable
from app.models.exchange_rate import RateSource

logger = logging.getLogger(__name__)

# Returned by list_supported_currencies when the provider can't be reached
FALLBACK_CURRENCIES: Dict[str, str] = {
    "IDR": "Indonesian Rupiah",
    "USD": "United States Dollar",
    "EUR": "Euro",
    "GBP": "British Pound",
    "JPY": "Japanese Yen",
    "SGD": "Singapore Dollar",
    "MYR": "Malaysian Ringgit",
    "AUD": "Australian Dollar",
    "CNY": "Chinese Yuan",
    "KRW": "South Korean Won",
}


class RateSourceAdapter:
    """Base class for a live rate source."""

    source: RateSource
    supports_history = False

    def __init__(self, timeout: float, ttl: timedelta, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.timeout = timeout
        self.ttl = ttl
        self._transport = transport  # Injected in tests

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

    async def fetch(self, base: str, target: str) -> float:
        raise NotImplementedError

    async def fetch_historical(self, base: str, target: str, as_of: date) -> float:
        raise self._unavailable("Historical rates are not supported")

    def _unavailable(self, message: str) -> SourceUnavailable:
        return SourceUnavailable(self.source.value, message)

    def _check_rate(self, value, base: str, target: str) -> float:
        try:
            rate = float(value)
        except (TypeError, ValueError):
            raise self._unavailable(f"Invalid rate {value!r} for {base}->{target}")
        if not math.isfinite(rate) or rate <= 0:
            raise self._unavailable(f"Invalid rate {rate} for {base}->{target}")
        return rate

    def _rate_from(self, rates, provider: str, base: str, target: str) -> float:
        """Pick ``target`` out of a provider's ``{code: rate}`` mapping."""
        if not isinstance(rates, dict):
            raise self._unavailable(f"{provider} returned malformed rates for {base}")
        if target not in rates:
            raise self._unavailable(f"{target} not in {provider} response for {base}")
        return self._check_rate(rates[target], base, target)


class ApiRateSource(RateSourceAdapter):
    """
    Market rates from ExchangeRate-API, with Frankfurter as a second provider.

    ExchangeRate-API uses the v6 endpoint when FX_API_KEY is configured and
    the open v4 endpoint otherwise. Frankfurter (ECB data) does not cover
    every currency, e.g. IDR, so it is only tried after ExchangeRate-API.
    Past dates come from Frankfurter alone.

    API Documentation:
    - https://www.exchangerate-api.com/docs/standard-requests
    - https://frankfurter.dev
    """

    source = RateSource.API
    supports_history = True

    def __init__(self, timeout: float = None, ttl: timedelta = None, transport=None):
        super().__init__(
            timeout=timeout or settings.FX_API_TIMEOUT,
            ttl=ttl or timedelta(hours=settings.FX_API_TTL_HOURS),
            transport=transport
        )

    async def fetch(self, base: str, target: str) -> float:
        async with self._client() as client:
            try:
                return await self._fetch_exchangerate_api(client, base, target)
            except SourceUnavailable as e:
                logger.warning(f"ExchangeRate-API failed for {base}->{target}: {e}. Trying Frankfurter.")
            return await self._fetch_frankfurter(client, "latest", base, target)

    async def fetch_historical(self, base: str, target: str, as_of: date) -> float:
        logger.info(f"Fetching historical rate for {base}->{target} on {as_of}")
        async with self._client() as client:
            return await self._fetch_frankfurter(client, as_of.isoformat(), base, target)

    async def list_currencies(self) -> Dict[str, str]:
        """Currency codes and names known to Frankfurter."""
        async with self._client() as client:
            data = await self._get_json(client, f"{settings.FRANKFURTER_API_URL}/currencies", "Frankfurter")
        if not all(isinstance(name, str) for name in data.values()):
            raise self._unavailable("Frankfurter returned a malformed currency list")
        return data

    async def _fetch_exchangerate_api(self, client: httpx.AsyncClient, base: str, target: str) -> float:
        if settings.FX_API_KEY:
            url = f"{settings.FX_API_URL}/{settings.FX_API_KEY}/latest/{base}"
        else:
            url = f"{settings.FX_OPEN_API_URL}/{base}"

        data = await self._get_json(client, url, "ExchangeRate-API")

        # v6 reports {"result": "error", "error-type": ...}; v4 has no result field
        if data.get("result", "success") != "success":
            raise self._unavailable(f"ExchangeRate-API error: {data.get('error-type', 'Unknown error')}")

        # v6: "conversion_rates", v4: "rates"
        rates = data.get("conversion_rates") or data.get("rates")
        return self._rate_from(rates, "ExchangeRate-API", base, target)

    async def _fetch_frankfurter(self, client: httpx.AsyncClient, path: str, base: str, target: str) -> float:
        url = f"{settings.FRANKFURTER_API_URL}/{path}"
        data = await self._get_json(client, url, "Frankfurter", params={"from": base, "to": target})
        return self._rate_from(data.get("rates"), "Frankfurter", base, target)

    async def _get_json(self, client: httpx.AsyncClient, url: str, provider: str, params: dict = None) -> dict:
        try:
            response = await client.get(url, params=params)
            response.raise_for_status()
            data = response.json()
        except httpx.TimeoutException:
            raise self._unavailable(f"{provider} request timed out")
        except httpx.HTTPStatusError as e:
            raise self._unavailable(f"{provider} HTTP error: {e.response.status_code}")
        except httpx.HTTPError as e:
            raise self._unavailable(f"{provider} network error: {e}")
        except ValueError:
            raise self._unavailable(f"{provider} returned invalid JSON")

        if settings.DEBUG:
            logger.debug(f"{provider} response: {data}")
        if not isinstance(data, dict):
            raise self._unavailable(f"{provider} returned {type(data).__name__}, expected an object")
        return data


class LlmRateSource(RateSourceAdapter):
    """
    Rate estimates from an OpenAI-compatible chat completion model.

    Lower trust than market data, so results get a short TTL. The model is
    asked for a JSON object with ``rate``, ``confidence`` and ``note``.
    """

    source = RateSource.LLM

    SYSTEM_PROMPT = """You are an expert currency exchange rate assistant. Provide the current exchange rate for the requested currency pair.

Return ONLY a JSON object with this structure:
{
  "rate": <number>,
  "confidence": <0.0-1.0>,
  "note": "<brief explanation>"
}

CRITICAL RULES:
1. Return the CURRENT mid-market exchange rate (not buy/sell)
2. Rate should be accurate to at least 2 decimal places
3. If you're highly confident in the rate (e.g., major currencies like USD/EUR), set confidence to 0.9+
4. If uncertain (e.g., exotic currency pairs), set confidence to 0.5-0.7"""

    def __init__(self, timeout: float = None, ttl: timedelta = None, transport=None):
        super().__init__(
            timeout=timeout or settings.FX_LLM_TIMEOUT,
            ttl=ttl or timedelta(hours=settings.FX_LLM_TTL_HOURS),
            transport=transport
        )

    async def fetch(self, base: str, target: str) -> float:
        api_key = settings.FX_LLM_API_KEY
        if not api_key:
            raise self._unavailable("FX_LLM_API_KEY is not configured")

        logger.info(f"Requesting LLM rate estimate for {base}->{target}")
        try:
            async with self._client() as client:
                response = await client.post(
                    settings.FX_LLM_API_URL,
                    headers={
                        "Authorization": f"Bearer {api_key}",
                        "Content-Type": "application/json"
                    },
                    json={
                        "model": settings.FX_LLM_MODEL,
                        "messages": [
                            {"role": "system", "content": self.SYSTEM_PROMPT},
                            {"role": "user", "content": f"What is the current exchange rate to convert 1 {base} to {target}?"}
                        ],
                        "response_format": {"type": "json_object"},
                        "temperature": 0.1,
                        "max_tokens": 200
                    }
                )
                response.raise_for_status()
                result = response.json()
        except httpx.TimeoutException:
            raise self._unavailable("LLM request timed out")
        except httpx.HTTPStatusError as e:
            raise self._unavailable(f"LLM API error {e.response.status_code}: {e.response.text}")
        except httpx.HTTPError as e:
            raise self._unavailable(f"LLM network error: {e}")
        except ValueError:
            raise self._unavailable("LLM API returned invalid JSON")

        try:
            content = result["choices"][0]["message"]["content"]
        except (AttributeError, TypeError, KeyError, IndexError):
            raise self._unavailable(f"Unexpected LLM API payload: {result!r}")
        if not isinstance(content, str):
            raise self._unavailable(f"LLM response content is not text: {content!r}")

        try:
            parsed = json.loads(content)
        except json.JSONDecodeError:
            raise self._unavailable(f"Could not parse LLM response: {content!r}")
        if not isinstance(parsed, dict):
            raise self._unavailable(f"Unexpected LLM response: {content!r}")

        rate = self._check_rate(parsed.get("rate"), base, target)
        logger.info(f"LLM estimate: 1 {base} = {rate} {target} (confidence: {parsed.get('confidence')})")
        return rate


async def list_supported_currencies(transport: Optional[httpx.AsyncBaseTransport] = None) -> Dict[str, str]:
    """Supported currency codes and names, or a built-in list if the provider is down."""
    try:
        return await ApiRateSource(transport=transport).list_currencies()
    except SourceUnavailable as e:
        logger.warning(f"Could not fetch currency list: {e}. Using built-in list.")
        return dict(FALLBACK_CURRENCIES)


def build_default_sources() -> Dict[RateSource, RateSourceAdapter]:
    """Create one adapter per known rate source."""
    return {
        RateSource.API: ApiRateSource(),
        RateSource.LLM: LlmRateSource(),
    }
