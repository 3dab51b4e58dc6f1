"""Provider detection and per-provider wire formats.

Every supported text-completion API is described by a ``ProviderSpec``
record; callers look the record up once and never branch on the provider
themselves.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable

from firewall_advisor.config import ProviderSettings
from firewall_advisor.errors import InvalidResponseEnvelope


class Provider(Enum):
    """Text-completion API family. The first member is the fallback."""

    ANTHROPIC = "anthropic"
    OPENAI = "openai"
    GEMINI = "gemini"
    RELAY = "relay"


ANTHROPIC_PREFIX = "sk-ant-"
ANTHROPIC_OAUTH_PREFIX = "sk-ant-oat"
GEMINI_PREFIX = "AIza"
OPENAI_PREFIX = "sk-"
# Shorter "sk-" strings are too generic to be trusted as OpenAI keys.
OPENAI_MIN_LENGTH = 21

ANTHROPIC_VERSION = "2023-06-01"
ANTHROPIC_OAUTH_BETA = "oauth-2025-04-20"

DEFAULT_MODELS = {
    Provider.ANTHROPIC: "claude-sonnet-4-20250514",
    Provider.OPENAI: "gpt-4o-mini",
    Provider.GEMINI: "gemini-2.0-flash",
    Provider.RELAY: "claude-sonnet-4-20250514",
}

DEFAULT_ENDPOINTS = {
    Provider.ANTHROPIC: "https://api.anthropic.com/v1/messages",
    Provider.OPENAI: "https://api.openai.com/v1/chat/completions",
    Provider.GEMINI: (
        "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"
    ),
    Provider.RELAY: "https://relay.example.com/v1/messages",
}


@dataclass(frozen=True)
class ProviderSpec:
    """Strategy record for one provider.

    Attributes:
        provider: The provider this record describes.
        endpoint: Endpoint URL template (``{model}`` is substituted).
        model: Wire model identifier.
        build_headers: Credential -> HTTP headers.
        build_body: (prompt, max_tokens) -> JSON request body.
        extract_text: JSON response envelope -> completion text.
    """

    provider: Provider
    endpoint: str
    model: str
    build_headers: Callable[[str], dict[str, str]]
    build_body: Callable[[str, int], dict[str, Any]]
    extract_text: Callable[[Any], str]

    @property
    def url(self) -> str:
        return self.endpoint.format(model=self.model)


def mask(credential: str) -> str:
    """Return a loggable prefix of a credential."""
    return credential[:12] + "..."


def _text_or_raise(value: Any, provider: Provider) -> str:
    if not isinstance(value, str):
        raise InvalidResponseEnvelope(f"{provider.value} response has no completion text")
    return value


def _anthropic_text(envelope: Any) -> str:
    try:
        return _text_or_raise(envelope["content"][0]["text"], Provider.ANTHROPIC)
    except (KeyError, IndexError, TypeError) as exc:
        raise InvalidResponseEnvelope("Anthropic response has no content[0].text") from exc


def _openai_text(envelope: Any) -> str:
    try:
        return _text_or_raise(envelope["choices"][0]["message"]["content"], Provider.OPENAI)
    except (KeyError, IndexError, TypeError) as exc:
        raise InvalidResponseEnvelope(
            "OpenAI response has no choices[0].message.content"
        ) from exc


def _gemini_text(envelope: Any) -> str:
    try:
        parts = envelope["candidates"][0]["content"]["parts"]
        return _text_or_raise(parts[0]["text"], Provider.GEMINI)
    except (KeyError, IndexError, TypeError) as exc:
        raise InvalidResponseEnvelope(
            "Gemini response has no candidates[0].content.parts[0].text"
        ) from exc


def _messages_body(model: str) -> Callable[[str, int], dict[str, Any]]:
    def build(prompt: str, max_tokens: int) -> dict[str, Any]:
        return {
            "model": model,
            "max_tokens": max_tokens,
            "messages": [{"role": "user", "content": prompt}],
        }

    return build


def _gemini_body(prompt: str, max_tokens: int) -> dict[str, Any]:
    return {
        "contents": [{"role": "user", "parts": [{"text": prompt}]}],
        "generationConfig": {"maxOutputTokens": max_tokens},
    }


class ProviderRegistry:
    """Maps credentials to providers and providers to wire formats.

    Attributes:
        settings: Model, endpoint and identity overrides.
    """

    def __init__(self, settings: ProviderSettings | None = None) -> None:
        self.settings = settings or ProviderSettings()

    def detect(self, credential: str) -> Provider:
        """Classify a credential by its prefix.

        The most specific prefix is checked first. Unrecognised strings
        fall back to the first provider.
        """
        relay_prefix = self.settings.relay_prefix
        if relay_prefix and credential.startswith(relay_prefix):
            return Provider.RELAY
        if credential.startswith(ANTHROPIC_PREFIX):
            return Provider.ANTHROPIC
        if credential.startswith(GEMINI_PREFIX):
            return Provider.GEMINI
        if credential.startswith(OPENAI_PREFIX) and len(credential) >= OPENAI_MIN_LENGTH:
            return Provider.OPENAI
        return list(Provider)[0]

    def is_valid_key(self, candidate: str) -> bool:
        """Whether *candidate* looks like a credential for a known provider."""
        relay_prefix = self.settings.relay_prefix
        return (
            bool(relay_prefix and candidate.startswith(relay_prefix))
            or candidate.startswith(ANTHROPIC_PREFIX)
            or candidate.startswith(GEMINI_PREFIX)
            or (candidate.startswith(OPENAI_PREFIX) and len(candidate) >= OPENAI_MIN_LENGTH)
        )

    def model_for(self, provider: Provider) -> str:
        """Return the configured model for *provider*, or its default."""
        return self.settings.models.get(provider.value, DEFAULT_MODELS[provider])

    def endpoint_for(self, provider: Provider) -> str:
        """Return the configured completion URL for *provider*, or its default."""
        return self.settings.endpoints.get(provider.value, DEFAULT_ENDPOINTS[provider])

    def spec_for(self, credential: str) -> ProviderSpec:
        """Return the strategy record for *credential*'s provider."""
        provider = self.detect(credential)
        model = self.model_for(provider)
        oauth = provider is Provider.ANTHROPIC and credential.startswith(ANTHROPIC_OAUTH_PREFIX)

        wire_formats = {
            Provider.ANTHROPIC: (
                self._anthropic_oauth_headers if oauth else self._anthropic_headers,
                self._oauth_body(model) if oauth else _messages_body(model),
                _anthropic_text,
            ),
            Provider.OPENAI: (self._bearer_headers, _messages_body(model), _openai_text),
            Provider.GEMINI: (self._gemini_headers, _gemini_body, _gemini_text),
            Provider.RELAY: (self._relay_headers, _messages_body(model), _anthropic_text),
        }
        build_headers, build_body, extract_text = wire_formats[provider]
        return ProviderSpec(
            provider=provider,
            endpoint=self.endpoint_for(provider),
            model=model,
            build_headers=build_headers,
            build_body=build_body,
            extract_text=extract_text,
        )

    @staticmethod
    def _bearer_headers(credential: str) -> dict[str, str]:
        return {
            "content-type": "application/json",
            "authorization": f"Bearer {credential}",
        }

    @staticmethod
    def _gemini_headers(credential: str) -> dict[str, str]:
        return {
            "content-type": "application/json",
            "x-goog-api-key": credential,
        }

    @staticmethod
    def _anthropic_headers(credential: str) -> dict[str, str]:
        return {
            "content-type": "application/json",
            "anthropic-version": ANTHROPIC_VERSION,
            "x-api-key": credential,
        }

    @staticmethod
    def _relay_headers(credential: str) -> dict[str, str]:
        return {
            "content-type": "application/json",
            "anthropic-version": ANTHROPIC_VERSION,
            "authorization": f"Bearer {credential}",
        }

    def _anthropic_oauth_headers(self, credential: str) -> dict[str, str]:
        return {
            "content-type": "application/json",
            "anthropic-version": ANTHROPIC_VERSION,
            "anthropic-beta": ANTHROPIC_OAUTH_BETA,
            "authorization": f"Bearer {credential}",
            "user-agent": self.settings.oauth_user_agent,
            "x-app": self.settings.oauth_app,
        }

    def _oauth_body(self, model: str) -> Callable[[str, int], dict[str, Any]]:
        base = _messages_body(model)
        system_prompt = self.settings.oauth_system_prompt

        def build(prompt: str, max_tokens: int) -> dict[str, Any]:
            body = base(prompt, max_tokens)
            # OAuth tokens are rejected unless the identity block comes first.
            body["system"] = [{"type": "text", "text": system_prompt}]
            return body

        return build
