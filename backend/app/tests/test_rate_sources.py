"""
Tests for live rate sources against mocked HTTP providers.
"""
import asyncio
from datetime import date
import json
import httpx
import pytest
from app.core.config import settings
from app.core.exceptions import SourceUnavailable
from app.services.rate_sources import FALLBACK_CURRENCIES, ApiRateSource, LlmRateSource, list_supported_currencies


def run(coro):
    return asyncio.run(coro)


def test_api_source_reads_exchangerate_api(monkeypatch):
    """Test parsing the open ExchangeRate-API payload."""
    monkeypatch.setattr(settings, "FX_API_KEY", "")
    requested = []

    def handler(request: httpx.Request) -> httpx.Response:
        requested.append(str(request.url))
        return httpx.Response(200, json={"base": "USD", "rates": {"USD": 1, "IDR": 16850.5}})

    source = ApiRateSource(transport=httpx.MockTransport(handler))
    assert run(source.fetch("USD", "IDR")) == 16850.5
    assert requested == [f"{settings.FX_OPEN_API_URL}/USD"]


def test_api_source_uses_v6_with_key(monkeypatch):
    monkeypatch.setattr(settings, "FX_API_KEY", "secret")

    def handler(request: httpx.Request) -> httpx.Response:
        assert "/secret/latest/EUR" in request.url.path
        return httpx.Response(200, json={"result": "success", "conversion_rates": {"JPY": 169.2}})

    source = ApiRateSource(transport=httpx.MockTransport(handler))
    assert run(source.fetch("EUR", "JPY")) == 169.2


def test_api_source_falls_back_to_frankfurter(monkeypatch):
    """Test that Frankfurter is tried when ExchangeRate-API fails."""
    monkeypatch.setattr(settings, "FX_API_KEY", "")

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == httpx.URL(settings.FRANKFURTER_API_URL).host:
            assert request.url.params["from"] == "USD"
            assert request.url.params["to"] == "EUR"
            return httpx.Response(200, json={"base": "USD", "rates": {"EUR": 0.93}})
        return httpx.Response(500, text="boom")

    source = ApiRateSource(transport=httpx.MockTransport(handler))
    assert run(source.fetch("USD", "EUR")) == 0.93


def test_api_source_unavailable_when_both_fail(monkeypatch):
    monkeypatch.setattr(settings, "FX_API_KEY", "secret")

    def handler(request: httpx.Request) -> httpx.Response:
        if "exchangerate-api" in request.url.host:
            return httpx.Response(200, json={"result": "error", "error-type": "invalid-key"})
        return httpx.Response(404, json={"message": "not found"})

    source = ApiRateSource(transport=httpx.MockTransport(handler))
    with pytest.raises(SourceUnavailable):
        run(source.fetch("USD", "IDR"))


def test_api_source_timeout_is_unavailable():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    source = ApiRateSource(transport=httpx.MockTransport(handler))
    with pytest.raises(SourceUnavailable):
        run(source.fetch("USD", "IDR"))


def llm_response(content: str) -> httpx.Response:
    return httpx.Response(200, json={"choices": [{"message": {"role": "assistant", "content": content}}]})


def test_llm_source_parses_json_answer(monkeypatch):
    """Test reading the rate from the model's JSON object."""
    monkeypatch.setattr(settings, "FX_LLM_API_KEY", "test-key")
    sent = []

    def handler(request: httpx.Request) -> httpx.Response:
        sent.append(json.loads(request.content))
        assert request.headers["Authorization"] == "Bearer test-key"
        return llm_response('{"rate": 16850, "confidence": 0.9, "note": "mid-market"}')

    source = LlmRateSource(transport=httpx.MockTransport(handler))
    assert run(source.fetch("USD", "IDR")) == 16850.0
    assert sent[0]["response_format"] == {"type": "json_object"}
    assert "1 USD to IDR" in sent[0]["messages"][-1]["content"]


def test_llm_source_requires_api_key(monkeypatch):
    monkeypatch.setattr(settings, "FX_LLM_API_KEY", "")
    source = LlmRateSource(transport=httpx.MockTransport(lambda request: llm_response('{"rate": 1}')))
    with pytest.raises(SourceUnavailable):
        run(source.fetch("USD", "IDR"))


@pytest.mark.parametrize("content", ['{"rate": -3}', '{"rate": "lots"}', "not json", '{"confidence": 0.4}'])
def test_llm_source_rejects_bad_answers(monkeypatch, content):
    monkeypatch.setattr(settings, "FX_LLM_API_KEY", "test-key")
    source = LlmRateSource(transport=httpx.MockTransport(lambda request: llm_response(content)))
    with pytest.raises(SourceUnavailable):
        run(source.fetch("USD", "IDR"))


def test_llm_source_http_error(monkeypatch):
    monkeypatch.setattr(settings, "FX_LLM_API_KEY", "test-key")
    source = LlmRateSource(transport=httpx.MockTransport(lambda request: httpx.Response(429, text="rate limited")))
    with pytest.raises(SourceUnavailable):
        run(source.fetch("USD", "IDR"))


@pytest.mark.parametrize("payload", [
    ["unexpected"],
    {"rates": ["USD", "IDR"]},
    {"rates": {"USD": 1}},
])
def test_api_source_malformed_exchangerate_api_falls_through(monkeypatch, payload):
    """Test that an odd ExchangeRate-API payload still lets Frankfurter answer."""
    monkeypatch.setattr(settings, "FX_API_KEY", "")

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == httpx.URL(settings.FRANKFURTER_API_URL).host:
            return httpx.Response(200, json={"base": "USD", "rates": {"IDR": 16800.0}})
        return httpx.Response(200, json=payload)

    source = ApiRateSource(transport=httpx.MockTransport(handler))
    assert run(source.fetch("USD", "IDR")) == 16800.0


@pytest.mark.parametrize("payload", [["unexpected"], {"rates": None}, {"rates": "IDR"}])
def test_api_source_malformed_payloads_are_unavailable(monkeypatch, payload):
    monkeypatch.setattr(settings, "FX_API_KEY", "")
    source = ApiRateSource(transport=httpx.MockTransport(lambda request: httpx.Response(200, json=payload)))
    with pytest.raises(SourceUnavailable):
        run(source.fetch("USD", "IDR"))


@pytest.mark.parametrize("payload", [
    {"choices": [{"message": None}]},
    {"choices": []},
    {"choices": "none"},
    ["unexpected"],
    {"choices": [{"message": {"content": None}}]},
    {"choices": [{"message": {"content": 16850}}]},
])
def test_llm_source_malformed_payloads_are_unavailable(monkeypatch, payload):
    """Test that unexpected chat completion shapes are reported, not raised raw."""
    monkeypatch.setattr(settings, "FX_LLM_API_KEY", "test-key")
    source = LlmRateSource(transport=httpx.MockTransport(lambda request: httpx.Response(200, json=payload)))
    with pytest.raises(SourceUnavailable):
        run(source.fetch("USD", "IDR"))


def test_llm_source_rejects_non_object_answer(monkeypatch):
    monkeypatch.setattr(settings, "FX_LLM_API_KEY", "test-key")
    source = LlmRateSource(transport=httpx.MockTransport(lambda request: llm_response("[16850]")))
    with pytest.raises(SourceUnavailable):
        run(source.fetch("USD", "IDR"))


def test_api_source_historical_uses_frankfurter_date():
    """Test that past rates are read from Frankfurter's dated endpoint."""
    requested = []

    def handler(request: httpx.Request) -> httpx.Response:
        requested.append(request.url)
        return httpx.Response(200, json={"base": "USD", "date": "2025-03-14", "rates": {"EUR": 0.918}})

    source = ApiRateSource(transport=httpx.MockTransport(handler))
    assert run(source.fetch_historical("USD", "EUR", date(2025, 3, 14))) == 0.918
    assert len(requested) == 1
    assert requested[0].host == httpx.URL(settings.FRANKFURTER_API_URL).host
    assert requested[0].path.endswith("/2025-03-14")
    assert requested[0].params["from"] == "USD"
    assert requested[0].params["to"] == "EUR"


def test_api_source_historical_missing_currency():
    source = ApiRateSource(transport=httpx.MockTransport(
        lambda request: httpx.Response(200, json={"base": "USD", "rates": {"EUR": 0.918}})
    ))
    with pytest.raises(SourceUnavailable):
        run(source.fetch_historical("USD", "IDR", date(2025, 3, 14)))


def test_llm_source_has_no_history(monkeypatch):
    monkeypatch.setattr(settings, "FX_LLM_API_KEY", "test-key")
    source = LlmRateSource(transport=httpx.MockTransport(lambda request: llm_response('{"rate": 1}')))
    assert source.supports_history is False
    with pytest.raises(SourceUnavailable):
        run(source.fetch_historical("USD", "IDR", date(2025, 3, 14)))


def test_list_supported_currencies():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path.endswith("/currencies")
        return httpx.Response(200, json={"EUR": "Euro", "USD": "United States Dollar"})

    currencies = run(list_supported_currencies(transport=httpx.MockTransport(handler)))
    assert currencies == {"EUR": "Euro", "USD": "United States Dollar"}


@pytest.mark.parametrize("response", [
    httpx.Response(503, text="down"),
    httpx.Response(200, json=["EUR", "USD"]),
    httpx.Response(200, json={"EUR": 1}),
])
def test_list_supported_currencies_falls_back(response):
    """Test that the built-in list is returned when the provider can't be used."""
    currencies = run(list_supported_currencies(transport=httpx.MockTransport(lambda request: response)))
    assert currencies == FALLBACK_CURRENCIES
    assert currencies is not FALLBACK_CURRENCIES
