"""LLM completion backends used to classify entry-point members.

Each backend turns one prompt into one completion string. Transport and
decoding failures are logged at debug level and reported as ``None``; the
caller decides how to degrade (see :class:`codeflow_cli.classifier.LLMMemberClassifier`).

Ollama, OpenAI and Anthropic are spoken to over ``urllib``; Groq goes through
``requests``.
"""

from __future__ import annotations

import json
import logging
import urllib.error
import urllib.request
from typing import Any, Dict, Optional

import requests

from . import config
from .config_manager import get_provider_config

logger = logging.getLogger(__name__)

# Classification answers are short CSV tables; this is enough for ~80 rows
MAX_TOKENS = 4096
TEMPERATURE = 0.1
REQUEST_TIMEOUT = 60


def _post_json(url: str, payload: dict, headers: dict, timeout: int = REQUEST_TIMEOUT) -> Optional[dict]:
    req = urllib.request.Request(
        url,
        data=json.dumps(payload).encode("utf-8"),
        headers={"Content-Type": "application/json", **headers},
        method="POST",
    )
    try:
        with urllib.request.urlopen(req, timeout=timeout) as resp:
            return json.loads(resp.read().decode("utf-8"))
    except (urllib.error.URLError, TimeoutError, json.JSONDecodeError) as exc:
        logger.debug("LLM request to %s failed: %s", url, exc)
        return None


class LLMProvider:
    """One HTTP completion backend.

    Subclasses describe the request body, the auth headers and where the text
    sits in the response; :meth:`generate` does the rest.
    """

    name = ""
    default_endpoint = ""
    needs_api_key = True

    def __init__(self, model: str, api_key: str = "", endpoint: str = ""):
        self.model = model
        self.api_key = api_key
        self.endpoint = endpoint or self.default_endpoint

    def build_payload(self, prompt: str) -> Dict[str, Any]:
        raise NotImplementedError

    def auth_headers(self) -> Dict[str, str]:
        return {}

    def extract_text(self, body: Dict[str, Any]) -> Optional[str]:
        raise NotImplementedError

    def send(self, payload: Dict[str, Any]) -> Optional[dict]:
        return _post_json(self.endpoint, payload, self.auth_headers())

    def generate(self, prompt: str) -> Optional[str]:
        """Completion text for ``prompt``, or ``None`` when unavailable."""
        if self.needs_api_key and not self.api_key:
            logger.debug("No API key configured for %s", self.name)
            return None

        body = self.send(self.build_payload(prompt))
        if body is None:
            return None
        try:
            return self.extract_text(body)
        except (KeyError, IndexError, TypeError) as exc:
            logger.debug("Unexpected %s response shape: %s", self.name, exc)
            return None


class OllamaProvider(LLMProvider):
    """Local Ollama server (``/api/generate``)."""

    name = "ollama"
    default_endpoint = "http://127.0.0.1:11434/api/generate"
    needs_api_key = False

    def build_payload(self, prompt: str) -> Dict[str, Any]:
        return {
            "model": self.model,
            "prompt": prompt,
            "stream": False,
            "options": {"temperature": TEMPERATURE},
        }

    def extract_text(self, body: Dict[str, Any]) -> Optional[str]:
        return body.get("response")


class OpenAIProvider(LLMProvider):
    """OpenAI chat completions; any compatible gateway works via ``endpoint``."""

    name = "openai"
    default_endpoint = "https://api.openai.com/v1/chat/completions"

    def build_payload(self, prompt: str) -> Dict[str, Any]:
        return {
            "model": self.model,
            "messages": [{"role": "user", "content": prompt}],
            "temperature": TEMPERATURE,
            "max_tokens": MAX_TOKENS,
        }

    def auth_headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.api_key}"}

    def extract_text(self, body: Dict[str, Any]) -> Optional[str]:
        return body["choices"][0]["message"]["content"]


class GroqProvider(OpenAIProvider):
    """Groq's OpenAI-compatible endpoint."""

    name = "groq"
    default_endpoint = "https://api.groq.com/openai/v1/chat/completions"

    def send(self, payload: Dict[str, Any]) -> Optional[dict]:
        try:
            response = requests.post(
                self.endpoint,
                headers={"Content-Type": "application/json", **self.auth_headers()},
                json=payload,
                timeout=REQUEST_TIMEOUT,
            )
            response.raise_for_status()
            return response.json()
        except (requests.RequestException, ValueError) as exc:
            logger.debug("Groq request failed: %s", exc)
            return None


class AnthropicProvider(LLMProvider):
    """Anthropic messages API."""

    name = "anthropic"
    default_endpoint = "https://api.anthropic.com/v1/messages"

    def build_payload(self, prompt: str) -> Dict[str, Any]:
        return {
            "model": self.model,
            "messages": [{"role": "user", "content": prompt}],
            "max_tokens": MAX_TOKENS,
            "temperature": TEMPERATURE,
        }

    def auth_headers(self) -> Dict[str, str]:
        return {"x-api-key": self.api_key, "anthropic-version": "2023-06-01"}

    def extract_text(self, body: Dict[str, Any]) -> Optional[str]:
        return body["content"][0]["text"]


PROVIDERS = {
    cls.name: cls
    for cls in (OllamaProvider, GroqProvider, OpenAIProvider, AnthropicProvider)
}


class LocalLLM:
    """Completion client for the provider chosen with ``cf set-llm``.

    Explicit arguments win. Otherwise values come from ``config.toml`` when it
    names the same provider, and from the provider defaults when it does not.
    Unknown provider names fall back to Ollama.
    """

    def __init__(
        self,
        model: Optional[str] = None,
        provider: Optional[str] = None,
        api_key: Optional[str] = None,
        endpoint: Optional[str] = None,
    ):
        requested = (provider or config.LLM_PROVIDER).lower().strip()
        if requested not in PROVIDERS:
            logger.warning("Unknown LLM provider '%s'; using ollama", requested)
            requested = "ollama"
        self.provider_name = requested

        configured = config.LLM_PROVIDER.lower() == requested
        defaults = get_provider_config(requested)
        self.model = model or (config.LLM_MODEL if configured else "") or defaults.get("model", "")
        self.api_key = api_key or (config.LLM_API_KEY if configured else "")
        self.endpoint = endpoint or (config.LLM_ENDPOINT if configured else "")

        self.provider = PROVIDERS[requested](self.model, self.api_key, self.endpoint)

    def complete(self, prompt: str) -> Optional[str]:
        """Return the raw completion text, or ``None`` if the provider failed."""
        response = self.provider.generate(prompt)
        if response is None:
            logger.warning("LLM provider '%s' returned no response", self.provider_name)
        return response
