"""Advisory analysis of connection alerts with multi-provider failover."""

import json
import logging
from typing import Any

import httpx

from firewall_advisor.config import AnalysisSettings
from firewall_advisor.credentials import CredentialRing
from firewall_advisor.errors import (
    AnalysisError,
    InvalidResponseEnvelope,
    NoCredentialError,
    ProviderHTTPError,
    ProviderNetworkError,
)
from firewall_advisor.models import AIAnalysis, ConnectionAlert, Recommendation
from firewall_advisor.providers import ProviderRegistry, ProviderSpec, mask

logger = logging.getLogger(__name__)

FALLBACK_SUMMARY = "See details"
DEFAULT_CONFIDENCE = 0.5

PROMPT_TEMPLATE = """\
You are a macOS firewall security advisor. Analyze this outgoing network \
connection and provide a security recommendation.

{description}

Based on this information:
1. Identify what service/application is likely making this connection
2. Assess the security risk (is this expected behavior?)
3. Recommend: ALLOW, BLOCK, or CAUTION
4. Explain your reasoning briefly

Respond in this exact JSON format:
{{
    "recommendation": "ALLOW" | "BLOCK" | "CAUTION",
    "confidence": 0.0-1.0,
    "known_service": "Name of known service if identified, or null",
    "summary": "One-line summary",
    "details": "2-3 sentence explanation",
    "risks": ["risk1", "risk2"]
}}

Common safe connections:
- Apple services (*.apple.com, *.icloud.com)
- Google (*.google.com, *.googleapis.com, *.1e100.net)
- Microsoft (*.microsoft.com)
- CDNs (*.cloudflare.com, *.akamai.com, *.fastly.net)

Be cautious about:
- Unknown IPs without reverse DNS
- Connections to unusual ports
- Processes connecting to unexpected destinations
- Newly installed or unsigned applications
"""


def build_prompt(alert: ConnectionAlert) -> str:
    """Render the advisory prompt for *alert*."""
    return PROMPT_TEMPLATE.format(description=alert.prompt_description())


def _confidence(value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return DEFAULT_CONFIDENCE
    return min(1.0, max(0.0, float(value)))


def parse_recommendation(text: str, alert: ConnectionAlert | None = None) -> AIAnalysis:
    """Pull the recommendation object out of a free-form completion.

    The span from the first ``{`` to the last ``}`` is parsed as JSON.
    When there is no such span, or it does not parse, the analysis falls
    back to an UNKNOWN verdict whose details hold the raw text. This never
    raises: prose from the model is not an error.

    Args:
        text: The completion text.
        alert: The alert the analysis is about.

    Returns:
        An AIAnalysis whose summary is never empty.
    """
    analysis = AIAnalysis(source_alert=alert)

    start = text.find("{")
    end = text.rfind("}")
    parsed: Any = None
    if start != -1 and end > start:
        try:
            parsed = json.loads(text[start : end + 1])
        except ValueError:
            logger.debug("Completion contained no parseable JSON object")

    if isinstance(parsed, dict):
        analysis.recommendation = Recommendation.parse(parsed.get("recommendation"))
        analysis.confidence = _confidence(parsed.get("confidence"))
        summary = parsed.get("summary")
        analysis.summary = summary if isinstance(summary, str) else ""
        details = parsed.get("details")
        analysis.details = details if isinstance(details, str) else ""
        risks = parsed.get("risks")
        if isinstance(risks, list):
            analysis.risks = [risk for risk in risks if isinstance(risk, str)]
        known_service = parsed.get("known_service")
        if isinstance(known_service, str) and known_service:
            analysis.known_service = known_service

    if not analysis.summary:
        analysis.summary = FALLBACK_SUMMARY
        analysis.details = text

    return analysis


class AnalysisClient:
    """Obtains recommendations, failing over across configured credentials.

    Credentials are tried strictly one after another in priority order. A
    rate-limit, server or authentication failure moves on to the next
    credential; any other failure is raised immediately.

    Attributes:
        credentials: Ordered credential source, re-read on every call.
        registry: Provider detection and wire formats.
        timeout: Per-request timeout in seconds.
        max_tokens: Maximum completion tokens per request.
        is_analyzing: True while any :meth:`analyze` call is running.
        last_error: Message of the most recent terminal failure.
        last_model: Model that produced the most recent success.
    """

    def __init__(
        self,
        credentials: CredentialRing,
        registry: ProviderRegistry | None = None,
        settings: AnalysisSettings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            credentials: Ordered credential source.
            registry: Provider registry. Defaults to the built-in providers.
            settings: Timeout and completion limits.
            transport: Optional httpx transport, used by tests.
        """
        settings = settings or AnalysisSettings()
        self.credentials = credentials
        self.registry = registry or ProviderRegistry()
        self.timeout = settings.timeout
        self.max_tokens = settings.max_tokens
        self.last_error: str | None = None
        self.last_model: str | None = None
        self._transport = transport
        self._active = 0

    @property
    def is_analyzing(self) -> bool:
        """True while at least one :meth:`analyze` call is in flight."""
        return self._active > 0

    async def analyze(self, alert: ConnectionAlert) -> AIAnalysis:
        """Analyze *alert* with the first credential that works.

        Args:
            alert: The (possibly enriched) alert.

        Returns:
            The parsed analysis.

        Raises:
            NoCredentialError: If no credential is configured.
            ProviderHTTPError: If every credential failed, carrying the
                last failure; or immediately for non-rotating statuses.
            ProviderNetworkError: On transport failure.
            InvalidResponseEnvelope: If a 200 body has the wrong shape.
        """
        keys = self.credentials.credentials()
        if not keys:
            self.last_error = str(NoCredentialError())
            raise NoCredentialError()

        self._active += 1
        try:
            analysis = await self._try_credentials(keys, build_prompt(alert), alert)
        except AnalysisError as exc:
            self.last_error = str(exc)
            raise
        finally:
            self._active -= 1

        self.last_error = None
        return analysis

    async def _try_credentials(
        self, keys: list[str], prompt: str, alert: ConnectionAlert
    ) -> AIAnalysis:
        last_error: AnalysisError = NoCredentialError()
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            for index, key in enumerate(keys):
                spec = self.registry.spec_for(key)
                try:
                    text = await self._send(client, spec, key, prompt)
                except ProviderHTTPError as exc:
                    if not exc.rotates:
                        raise
                    last_error = exc
                    logger.warning(
                        "Key %d (%s, %s) failed with %d, trying next",
                        index + 1,
                        spec.provider.value,
                        mask(key),
                        exc.status_code,
                    )
                    continue

                if index > 0:
                    logger.info("Key %d succeeded after %d failures", index + 1, index)
                analysis = parse_recommendation(text, alert)
                analysis.model = spec.model
                self.last_model = spec.model
                return analysis

        raise last_error

    async def _send(
        self,
        client: httpx.AsyncClient,
        spec: ProviderSpec,
        key: str,
        prompt: str,
    ) -> str:
        """POST one request and return the completion text."""
        logger.debug("Requesting %s analysis with %s", spec.provider.value, mask(key))
        try:
            response = await client.post(
                spec.url,
                headers=spec.build_headers(key),
                json=spec.build_body(prompt, self.max_tokens),
            )
        except httpx.HTTPError as exc:
            raise ProviderNetworkError(f"{spec.provider.value} request failed: {exc}") from exc

        if response.status_code != 200:
            raise ProviderHTTPError(response.status_code, response.text)

        try:
            envelope = response.json()
        except ValueError as exc:
            raise InvalidResponseEnvelope(
                f"{spec.provider.value} returned a non-JSON body"
            ) from exc
        return spec.extract_text(envelope)
