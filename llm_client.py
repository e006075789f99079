#!/usr/bin/env python3
"""
LLM Client Module for Readwise Triage
Sends inbox items to a chat-style LLM API and parses the triage decisions
out of the reply. Two wire formats are supported: OpenAI-style
chat completions and Anthropic-style messages.
"""

import json
import logging
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Callable, Dict, List, Mapping, Optional
from urllib.parse import urlparse

import requests
from requests import Session

from http_retry import NonRetryableError, Outcome, execute_with_retry
from models import TriageResult
from prompts import AUTO_TRIAGE_PROMPT_TEMPLATE, SYSTEM_PROMPT, render_prompt
from triage_parser import parse_triage_response

logger = logging.getLogger(__name__)

DEFAULT_PROVIDER = "openai"
LLM_TIMEOUT = 120
ANTHROPIC_VERSION = "2023-06-01"
MESSAGES_MAX_TOKENS = 4096
ERROR_PREVIEW_LIMIT = 200

CHAT_COMPLETIONS = "openai"
MESSAGES = "anthropic"


class LLMError(Exception):
    """Base error for LLM calls."""


class LLMConfigError(LLMError):
    """Missing or inconsistent client settings."""


class LLMResponseError(LLMError):
    """A reply that cannot be used; never retried."""


@dataclass(frozen=True)
class ProviderPreset:
    base_url: str
    model: str
    wire_format: str
    requires_key: bool = True


DEFAULT_PROVIDERS: Mapping[str, ProviderPreset] = MappingProxyType(
    {
        "perplexity": ProviderPreset(
            "https://api.perplexity.ai/chat/completions", "sonar", CHAT_COMPLETIONS
        ),
        "openai": ProviderPreset(
            "https://api.openai.com/v1/chat/completions", "gpt-4o-mini", CHAT_COMPLETIONS
        ),
        "anthropic": ProviderPreset(
            "https://api.anthropic.com/v1/messages",
            "claude-sonnet-4-5-20250929",
            MESSAGES,
        ),
        "ollama": ProviderPreset(
            "http://localhost:11434/v1/chat/completions",
            "llama3",
            CHAT_COMPLETIONS,
            requires_key=False,
        ),
    }
)


# ---------------------------------------------------------------------------
# Wire formats
# ---------------------------------------------------------------------------


def _chat_request(model: str, system: str, prompt: str) -> Dict[str, Any]:
    return {
        "model": model,
        "messages": [
            {"role": "system", "content": system},
            {"role": "user", "content": prompt},
        ],
    }


def _chat_headers(api_key: str) -> Dict[str, str]:
    headers = {"Content-Type": "application/json"}
    if api_key:
        headers["Authorization"] = f"Bearer {api_key}"
    return headers


def _chat_content(body: Dict[str, Any]) -> str:
    choices = body.get("choices") or []
    if not isinstance(choices, list) or not choices:
        raise LLMResponseError("no choices in response")
    choice = choices[0]
    message = choice.get("message") if isinstance(choice, dict) else None
    if not isinstance(message, dict):
        raise LLMResponseError("unexpected response shape (choice has no message object)")
    return str(message.get("content") or "")


def _messages_request(model: str, system: str, prompt: str) -> Dict[str, Any]:
    request: Dict[str, Any] = {
        "model": model,
        "max_tokens": MESSAGES_MAX_TOKENS,
        "messages": [{"role": "user", "content": prompt}],
    }
    if system:
        request["system"] = system
    return request


def _messages_headers(api_key: str) -> Dict[str, str]:
    return {
        "Content-Type": "application/json",
        "x-api-key": api_key,
        "anthropic-version": ANTHROPIC_VERSION,
    }


def _messages_content(body: Dict[str, Any]) -> str:
    blocks = body.get("content") or []
    if not isinstance(blocks, list):
        raise LLMResponseError("unexpected response shape (content is not a list)")
    for block in blocks:
        if isinstance(block, dict) and block.get("type") == "text":
            return str(block.get("text") or "")
    raise LLMResponseError("no text content in Anthropic response")


@dataclass(frozen=True)
class WireFormat:
    name: str
    default_path: str
    build_request: Callable[[str, str, str], Dict[str, Any]]
    build_headers: Callable[[str], Dict[str, str]]
    extract_content: Callable[[Dict[str, Any]], str]


WIRE_FORMATS: Mapping[str, WireFormat] = MappingProxyType(
    {
        CHAT_COMPLETIONS: WireFormat(
            CHAT_COMPLETIONS,
            "/v1/chat/completions",
            _chat_request,
            _chat_headers,
            _chat_content,
        ),
        MESSAGES: WireFormat(
            MESSAGES,
            "/v1/messages",
            _messages_request,
            _messages_headers,
            _messages_content,
        ),
    }
)


def classify_llm_status(response: requests.Response) -> Outcome:
    """Only 5xx is worth another attempt; every 4xx (429 included) is terminal."""
    status = response.status_code
    if status == 200:
        return Outcome.SUCCESS
    if 400 <= status < 500:
        return Outcome.FATAL
    return Outcome.RETRY


def _api_error_message(status_code: Optional[int], body: str) -> str:
    try:
        parsed = json.loads(body)
    except ValueError:
        parsed = None
    if isinstance(parsed, dict):
        error = parsed.get("error")
        if isinstance(error, dict) and error.get("message"):
            return f"API error (status {status_code}): {error['message']}"
    return f"API error (status {status_code}): {body}"


def _with_default_path(base_url: str, wire: WireFormat) -> str:
    parsed = urlparse(base_url if "://" in base_url else f"//{base_url}")
    if parsed.path.strip("/"):
        return base_url
    return base_url.rstrip("/") + wire.default_path


class LLMClient:
    """Chat-completion client resolved once per construction to a single wire format."""

    def __init__(
        self,
        provider: str = "",
        api_key: str = "",
        model: str = "",
        base_url: str = "",
        wire_format: str = "",
        session: Optional[Session] = None,
        providers: Mapping[str, ProviderPreset] = DEFAULT_PROVIDERS,
        prompt_template: str = AUTO_TRIAGE_PROMPT_TEMPLATE,
    ):
        provider = provider or DEFAULT_PROVIDER
        preset = providers.get(provider)

        self.provider = provider
        self.api_key = api_key
        self.model = model or (preset.model if preset else "")
        base_url = base_url or (preset.base_url if preset else "")
        wire_name = wire_format or (preset.wire_format if preset else "") or CHAT_COMPLETIONS

        if wire_name not in WIRE_FORMATS:
            raise LLMConfigError(
                f"unknown LLM api_format {wire_name!r} (expected one of: "
                f"{', '.join(WIRE_FORMATS)})"
            )
        self.wire = WIRE_FORMATS[wire_name]

        if not base_url:
            raise LLMConfigError(f"LLM base_url is required for provider {provider!r}")
        if not self.model:
            raise LLMConfigError(f"LLM model is required for provider {provider!r}")
        requires_key = preset.requires_key if preset else True
        if requires_key and not api_key:
            raise LLMConfigError(f"LLM api_key is required for provider {provider!r}")

        self.base_url = _with_default_path(base_url, self.wire)
        self.session = session or requests.Session()
        self.timeout = LLM_TIMEOUT
        self.prompt_template = prompt_template

    @property
    def wire_format(self) -> str:
        return self.wire.name

    def complete(self, prompt: str, system: str = SYSTEM_PROMPT) -> str:
        """
        Send one prompt and return the text of the reply.

        Raises:
            NonRetryableError: For any 4xx response.
            RetriesExhaustedError: When transport errors or 5xx used up every attempt.
            LLMResponseError: For bodies that are not JSON, carry an error field
                or hold no text.
        """
        body = self.wire.build_request(self.model, system, prompt)
        headers = self.wire.build_headers(self.api_key)

        def perform() -> requests.Response:
            return self.session.post(
                self.base_url, json=body, headers=headers, timeout=self.timeout
            )

        logger.debug(f"Calling {self.provider} model={self.model} ({self.wire.name})")
        try:
            response = execute_with_retry(
                perform, classify=classify_llm_status, label=f"llm {self.provider}"
            )
        except NonRetryableError as e:
            body_text = e.response.text if e.response is not None else ""
            raise NonRetryableError(
                _api_error_message(e.status_code, body_text),
                status_code=e.status_code,
                response=e.response,
            ) from e

        text = response.text
        try:
            data = response.json()
        except ValueError as e:
            preview = text
            if len(preview) > ERROR_PREVIEW_LIMIT:
                preview = preview[:ERROR_PREVIEW_LIMIT] + "..."
            raise LLMResponseError(f"unexpected response (not JSON): {preview}") from e

        if not isinstance(data, dict):
            raise LLMResponseError("unexpected response shape (not a JSON object)")
        error = data.get("error")
        if error:
            message = error.get("message") if isinstance(error, dict) else str(error)
            raise LLMResponseError(f"API error: {message}")

        return self.wire.extract_content(data)

    def triage_items(self, items_json: str) -> List[TriageResult]:
        """
        Ask the model to triage the serialized items.

        Raises:
            LLMError, HTTPRequestError, TriageParseError: Surfaced as-is.
        """
        prompt = render_prompt(self.prompt_template, items_json)
        content = self.complete(prompt)
        results = parse_triage_response(content)
        logger.info(f"LLM returned {len(results)} triage results")
        return results


def create_llm_client(config, **kwargs) -> LLMClient:
    """
    Build an LLM client from loaded configuration.

    Raises:
        LLMConfigError: If nothing usable is configured.
    """
    if not config.llm_provider and not config.llm_api_key:
        raise LLMConfigError(
            "LLM not configured. Set LLM_PROVIDER and LLM_API_KEY in the "
            "environment or config file."
        )
    return LLMClient(
        provider=config.llm_provider,
        api_key=config.llm_api_key,
        model=config.llm_model,
        base_url=config.llm_base_url,
        wire_format=config.llm_api_format,
        **kwargs,
    )
