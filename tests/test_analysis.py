"""Tests for the analysis client and completion parsing."""

import asyncio
import json

import httpx
import pytest

from firewall_advisor.analysis import (
    FALLBACK_SUMMARY,
    AnalysisClient,
    build_prompt,
    parse_recommendation,
)
from firewall_advisor.errors import (
    InvalidResponseEnvelope,
    NoCredentialError,
    ProviderHTTPError,
    ProviderNetworkError,
    is_auth_failure,
)
from firewall_advisor.models import ConnectionAlert, Recommendation

ALERT = ConnectionAlert(
    process_name="curl",
    process_path="/usr/bin/curl",
    ip_address="140.82.112.6",
    port="443",
    reverse_dns="github.com",
)

GOOD_COMPLETION = json.dumps(
    {
        "recommendation": "ALLOW",
        "confidence": 0.9,
        "known_service": "GitHub",
        "summary": "GitHub API traffic",
        "details": "curl talking to GitHub.",
        "risks": [],
    }
)


class StaticRing:
    """Credential source with a fixed key list."""

    def __init__(self, keys: list[str]) -> None:
        self.keys = keys

    def credentials(self) -> list[str]:
        return list(self.keys)

    def __len__(self) -> int:
        return len(self.keys)


def _anthropic_ok(text: str = GOOD_COMPLETION) -> httpx.Response:
    return httpx.Response(200, json={"content": [{"type": "text", "text": text}]})


def _client(keys: list[str], handler) -> tuple[AnalysisClient, list[httpx.Request]]:
    calls: list[httpx.Request] = []

    def record(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return handler(request, len(calls))

    client = AnalysisClient(StaticRing(keys), transport=httpx.MockTransport(record))
    return client, calls


# --------------------------------------------------------------------------- #
# Completion parsing
# --------------------------------------------------------------------------- #


class TestParseRecommendation:
    """Tests for parse_recommendation()."""

    def test_embedded_json(self):
        text = 'Sure: {"recommendation":"block","confidence":1.7,"summary":"x"} ok'
        analysis = parse_recommendation(text, ALERT)
        assert analysis.recommendation is Recommendation.BLOCK
        assert analysis.confidence == 1.0
        assert analysis.summary == "x"
        assert analysis.source_alert is ALERT

    def test_no_json_falls_back(self):
        text = "I cannot determine this"
        analysis = parse_recommendation(text)
        assert analysis.recommendation is Recommendation.UNKNOWN
        assert analysis.confidence == 0.5
        assert analysis.summary == FALLBACK_SUMMARY
        assert analysis.details == text

    def test_negative_confidence_clamped(self):
        analysis = parse_recommendation('{"confidence": -3, "summary": "s"}')
        assert analysis.confidence == 0.0

    def test_non_numeric_confidence_defaults(self):
        assert parse_recommendation('{"confidence": "high", "summary": "s"}').confidence == 0.5
        assert parse_recommendation('{"confidence": true, "summary": "s"}').confidence == 0.5

    def test_missing_summary_uses_raw_text(self):
        text = '{"recommendation": "CAUTION"}'
        analysis = parse_recommendation(text)
        assert analysis.recommendation is Recommendation.CAUTION
        assert analysis.summary == FALLBACK_SUMMARY
        assert analysis.details == text

    def test_invalid_json_span(self):
        analysis = parse_recommendation("{not json}")
        assert analysis.recommendation is Recommendation.UNKNOWN
        assert analysis.summary == FALLBACK_SUMMARY

    def test_full_object(self):
        analysis = parse_recommendation(GOOD_COMPLETION)
        assert analysis.recommendation is Recommendation.ALLOW
        assert analysis.known_service == "GitHub"
        assert analysis.details == "curl talking to GitHub."
        assert analysis.risks == []

    def test_non_string_risks_dropped(self):
        analysis = parse_recommendation('{"summary": "s", "risks": ["a", 2, null]}')
        assert analysis.risks == ["a"]


class TestBuildPrompt:
    def test_includes_alert_details(self):
        prompt = build_prompt(ALERT)
        assert "140.82.112.6" in prompt
        assert "/usr/bin/curl" in prompt
        assert '"recommendation": "ALLOW" | "BLOCK" | "CAUTION"' in prompt


# --------------------------------------------------------------------------- #
# Failover
# --------------------------------------------------------------------------- #


class TestAnalyze:
    """Tests for AnalysisClient.analyze()."""

    @pytest.mark.asyncio
    async def test_no_credentials_makes_no_request(self):
        client, calls = _client([], lambda request, n: _anthropic_ok())
        with pytest.raises(NoCredentialError):
            await client.analyze(ALERT)
        assert calls == []
        assert client.is_analyzing is False
        assert client.last_error

    @pytest.mark.asyncio
    async def test_success_with_single_key(self):
        client, calls = _client(["sk-ant-key1"], lambda request, n: _anthropic_ok())
        analysis = await client.analyze(ALERT)
        assert analysis.recommendation is Recommendation.ALLOW
        assert analysis.model == client.last_model
        assert len(calls) == 1
        assert calls[0].headers["x-api-key"] == "sk-ant-key1"

    @pytest.mark.asyncio
    async def test_rate_limit_rotates_to_next_key(self):
        def handler(request, n):
            if n == 1:
                return httpx.Response(429, text="slow down")
            return _anthropic_ok()

        client, calls = _client(["sk-ant-key1", "sk-ant-key2"], handler)
        analysis = await client.analyze(ALERT)
        assert analysis.recommendation is Recommendation.ALLOW
        assert len(calls) == 2
        assert calls[1].headers["x-api-key"] == "sk-ant-key2"

    @pytest.mark.asyncio
    async def test_server_error_rotates(self):
        def handler(request, n):
            return httpx.Response(503, text="down") if n == 1 else _anthropic_ok()

        client, calls = _client(["sk-ant-key1", "sk-ant-key2"], handler)
        await client.analyze(ALERT)
        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_single_forbidden_key_raises_auth_failure(self):
        client, calls = _client(["sk-ant-key1"], lambda request, n: httpx.Response(403, text="no"))
        with pytest.raises(ProviderHTTPError) as exc_info:
            await client.analyze(ALERT)
        assert exc_info.value.status_code == 403
        assert is_auth_failure(exc_info.value)
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_all_keys_exhausted_raises_last_error(self):
        def handler(request, n):
            return httpx.Response(429 if n == 1 else 401, text="bad")

        client, calls = _client(["sk-ant-key1", "sk-ant-key2"], handler)
        with pytest.raises(ProviderHTTPError) as exc_info:
            await client.analyze(ALERT)
        assert exc_info.value.status_code == 401
        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_bad_request_does_not_rotate(self):
        client, calls = _client(
            ["sk-ant-key1", "sk-ant-key2"],
            lambda request, n: httpx.Response(400, text="bad request"),
        )
        with pytest.raises(ProviderHTTPError) as exc_info:
            await client.analyze(ALERT)
        assert exc_info.value.status_code == 400
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_network_error_propagates(self):
        def handler(request, n):
            raise httpx.ConnectError("unreachable", request=request)

        client, calls = _client(["sk-ant-key1", "sk-ant-key2"], handler)
        with pytest.raises(ProviderNetworkError):
            await client.analyze(ALERT)
        assert len(calls) == 1
        assert client.is_analyzing is False

    @pytest.mark.asyncio
    async def test_invalid_envelope_raises(self):
        client, _ = _client(["sk-ant-key1"], lambda request, n: httpx.Response(200, json={}))
        with pytest.raises(InvalidResponseEnvelope):
            await client.analyze(ALERT)

    @pytest.mark.asyncio
    async def test_non_json_body_raises(self):
        client, _ = _client(["sk-ant-key1"], lambda request, n: httpx.Response(200, text="<html>"))
        with pytest.raises(InvalidResponseEnvelope):
            await client.analyze(ALERT)

    @pytest.mark.asyncio
    async def test_mixed_providers_use_their_own_wire_format(self):
        def handler(request, n):
            if n == 1:
                return httpx.Response(429, text="limited")
            content = json.loads(request.content)
            assert "contents" in content
            return httpx.Response(
                200,
                json={"candidates": [{"content": {"parts": [{"text": GOOD_COMPLETION}]}}]},
            )

        client, calls = _client(["sk-ant-key1", "AIzaSyExample"], handler)
        analysis = await client.analyze(ALERT)
        assert analysis.known_service == "GitHub"
        assert calls[0].url.host == "api.anthropic.com"
        assert calls[1].url.host == "generativelanguage.googleapis.com"
        assert calls[1].headers["x-goog-api-key"] == "AIzaSyExample"

    @pytest.mark.asyncio
    async def test_prose_completion_is_not_an_error(self):
        client, _ = _client(
            ["sk-ant-key1"], lambda request, n: _anthropic_ok("I cannot determine this")
        )
        analysis = await client.analyze(ALERT)
        assert analysis.summary == FALLBACK_SUMMARY
        assert client.last_error is None

    @pytest.mark.asyncio
    async def test_in_progress_while_request_pending(self):
        entered = asyncio.Event()
        release = asyncio.Event()

        async def handler(request: httpx.Request) -> httpx.Response:
            entered.set()
            await release.wait()
            return _anthropic_ok()

        client = AnalysisClient(StaticRing(["sk-ant-key1"]), transport=httpx.MockTransport(handler))
        task = asyncio.create_task(client.analyze(ALERT))
        await entered.wait()
        assert client.is_analyzing is True

        release.set()
        await task
        assert client.is_analyzing is False

    @pytest.mark.asyncio
    async def test_overlapping_calls_keep_in_progress(self):
        """The flag stays set until the last concurrent call finishes."""
        gates = [asyncio.Event(), asyncio.Event()]
        entered = [asyncio.Event(), asyncio.Event()]
        calls = 0

        async def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            index = calls
            calls += 1
            entered[index].set()
            await gates[index].wait()
            return _anthropic_ok()

        client = AnalysisClient(StaticRing(["sk-ant-key1"]), transport=httpx.MockTransport(handler))
        first = asyncio.create_task(client.analyze(ALERT))
        await entered[0].wait()
        second = asyncio.create_task(client.analyze(ALERT))
        await entered[1].wait()

        gates[0].set()
        await first
        assert client.is_analyzing is True

        gates[1].set()
        await second
        assert client.is_analyzing is False
