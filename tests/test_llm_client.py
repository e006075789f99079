#!/usr/bin/env python3
import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
"""
Unit tests for the LLM client: provider presets, both wire formats and the
retry/terminal split for responses.
"""

import json
import unittest
from unittest.mock import patch, MagicMock

import requests

from config import Config
from http_retry import NonRetryableError, RetriesExhaustedError
from llm_client import (
    ANTHROPIC_VERSION,
    DEFAULT_PROVIDERS,
    LLMClient,
    LLMConfigError,
    LLMResponseError,
    ProviderPreset,
    create_llm_client,
)
from triage_parser import TriageParseError

ELEMENT = {"id": "1", "title": "T", "triage_decision": {"action": "later", "priority": "low"}}


def make_response(status_code, payload=None, text=None):
    response = MagicMock()
    response.status_code = status_code
    response.headers = {}
    if payload is not None:
        response.json.return_value = payload
        response.text = json.dumps(payload)
    else:
        response.json.side_effect = ValueError("Expecting value")
        response.text = text or ""
    return response


def chat_reply(content):
    return make_response(200, {"choices": [{"message": {"role": "assistant", "content": content}}]})


class TestProviderResolution(unittest.TestCase):
    def test_perplexity_preset(self):
        client = LLMClient(provider="perplexity", api_key="k", session=MagicMock())
        self.assertEqual(client.base_url, "https://api.perplexity.ai/chat/completions")
        self.assertEqual(client.model, "sonar")
        self.assertEqual(client.wire_format, "openai")

    def test_anthropic_preset(self):
        client = LLMClient(provider="anthropic", api_key="k", session=MagicMock())
        self.assertEqual(client.wire_format, "anthropic")
        self.assertEqual(client.base_url, "https://api.anthropic.com/v1/messages")

    def test_overrides_win(self):
        client = LLMClient(
            provider="openai", api_key="k", model="gpt-4o",
            base_url="https://proxy.example.com/v1/chat/completions", session=MagicMock(),
        )
        self.assertEqual(client.model, "gpt-4o")
        self.assertEqual(client.base_url, "https://proxy.example.com/v1/chat/completions")

    def test_missing_api_key(self):
        with self.assertRaises(LLMConfigError):
            LLMClient(provider="openai", session=MagicMock())

    def test_ollama_needs_no_key(self):
        client = LLMClient(provider="ollama", session=MagicMock())
        self.assertEqual(client.base_url, "http://localhost:11434/v1/chat/completions")

    def test_unknown_provider_requires_base_url_and_model(self):
        with self.assertRaises(LLMConfigError):
            LLMClient(provider="together", api_key="k", session=MagicMock())
        with self.assertRaises(LLMConfigError):
            LLMClient(provider="together", api_key="k", base_url="https://api.together.xyz",
                      session=MagicMock())

    def test_unknown_provider_defaults_to_chat_completions(self):
        client = LLMClient(
            provider="together", api_key="k", model="m",
            base_url="https://api.together.xyz", session=MagicMock(),
        )
        self.assertEqual(client.wire_format, "openai")
        self.assertEqual(client.base_url, "https://api.together.xyz/v1/chat/completions")

    def test_bare_host_gets_messages_path(self):
        client = LLMClient(
            provider="gateway", api_key="k", model="m", wire_format="anthropic",
            base_url="https://gateway.example.com/", session=MagicMock(),
        )
        self.assertEqual(client.base_url, "https://gateway.example.com/v1/messages")

    def test_unknown_wire_format(self):
        with self.assertRaises(LLMConfigError):
            LLMClient(provider="openai", api_key="k", wire_format="grpc", session=MagicMock())

    def test_custom_provider_table(self):
        providers = {"local": ProviderPreset("http://127.0.0.1:8080", "tiny", "openai", False)}
        client = LLMClient(provider="local", providers=providers, session=MagicMock())
        self.assertEqual(client.model, "tiny")
        self.assertEqual(client.base_url, "http://127.0.0.1:8080/v1/chat/completions")

    def test_default_providers_are_read_only(self):
        with self.assertRaises(TypeError):
            DEFAULT_PROVIDERS["evil"] = ProviderPreset("x", "y", "openai")


class TestChatCompletions(unittest.TestCase):
    def setUp(self):
        self.mock_session = MagicMock()
        self.client = LLMClient(provider="openai", api_key="sk-test", session=self.mock_session)

    def test_request_shape(self):
        self.mock_session.post.return_value = chat_reply("hello")

        content = self.client.complete("prompt text", system="be brief")

        self.assertEqual(content, "hello")
        call_args = self.mock_session.post.call_args
        self.assertEqual(call_args[0][0], "https://api.openai.com/v1/chat/completions")
        body = call_args[1]["json"]
        self.assertEqual(body["model"], "gpt-4o-mini")
        self.assertEqual(
            body["messages"],
            [{"role": "system", "content": "be brief"}, {"role": "user", "content": "prompt text"}],
        )
        self.assertEqual(call_args[1]["headers"]["Authorization"], "Bearer sk-test")

    def test_client_errors_are_not_retried(self):
        for status in (400, 401, 429):
            self.mock_session.post.reset_mock()
            self.mock_session.post.return_value = make_response(
                status, {"error": {"message": "invalid api key"}}
            )
            with self.assertRaises(NonRetryableError) as ctx:
                self.client.complete("p")
            self.assertEqual(self.mock_session.post.call_count, 1)
            self.assertIn("invalid api key", str(ctx.exception))
            self.assertEqual(ctx.exception.status_code, status)

    @patch("http_retry.time.sleep")
    def test_server_errors_are_retried(self, mock_sleep):
        self.mock_session.post.side_effect = [make_response(502, text="bad gateway"), chat_reply("ok")]

        self.assertEqual(self.client.complete("p"), "ok")
        self.assertEqual(self.mock_session.post.call_count, 2)

    @patch("http_retry.time.sleep")
    def test_transport_errors_exhaust(self, mock_sleep):
        self.mock_session.post.side_effect = requests.exceptions.ConnectionError("refused")

        with self.assertRaises(RetriesExhaustedError):
            self.client.complete("p")
        self.assertEqual(self.mock_session.post.call_count, 3)

    @patch("http_retry.time.sleep")
    def test_non_json_body_is_terminal(self, mock_sleep):
        self.mock_session.post.return_value = make_response(200, text="<html>oops</html>")

        with self.assertRaises(LLMResponseError) as ctx:
            self.client.complete("p")
        self.assertIn("<html>oops</html>", str(ctx.exception))
        self.assertEqual(self.mock_session.post.call_count, 1)
        mock_sleep.assert_not_called()

    def test_error_field_is_terminal(self):
        self.mock_session.post.return_value = make_response(200, {"error": {"message": "overloaded"}})
        with self.assertRaises(LLMResponseError) as ctx:
            self.client.complete("p")
        self.assertIn("overloaded", str(ctx.exception))

    def test_no_choices(self):
        self.mock_session.post.return_value = make_response(200, {"choices": []})
        with self.assertRaises(LLMResponseError):
            self.client.complete("p")

    def test_wrong_body_shapes_are_terminal(self):
        for body in ({"choices": ["hello"]}, {"choices": [{"message": "hi"}]},
                     {"choices": "hello"}, ["not", "an", "object"]):
            self.mock_session.post.reset_mock()
            self.mock_session.post.return_value = make_response(200, body)
            with self.assertRaises(LLMResponseError):
                self.client.complete("p")
            self.assertEqual(self.mock_session.post.call_count, 1)

    def test_triage_items(self):
        self.mock_session.post.return_value = chat_reply(
            "Sure!\n```json\n" + json.dumps([ELEMENT]) + "\n```"
        )

        results = self.client.triage_items('[{"id": "1"}]')

        self.assertEqual(len(results), 1)
        self.assertEqual(results[0].triage_decision.action, "later")
        prompt = self.mock_session.post.call_args[1]["json"]["messages"][1]["content"]
        self.assertIn('[{"id": "1"}]', prompt)
        self.assertNotIn("{items_json}", prompt)

    def test_triage_items_invalid_reply(self):
        self.mock_session.post.return_value = chat_reply("I cannot help with that.")
        with self.assertRaises(TriageParseError):
            self.client.triage_items("[]")


class TestMessages(unittest.TestCase):
    def setUp(self):
        self.mock_session = MagicMock()
        self.client = LLMClient(provider="anthropic", api_key="ak-test", session=self.mock_session)

    def test_request_shape(self):
        self.mock_session.post.return_value = make_response(
            200, {"content": [{"type": "text", "text": "answer"}]}
        )

        self.assertEqual(self.client.complete("question", system="sys"), "answer")

        call_args = self.mock_session.post.call_args
        headers = call_args[1]["headers"]
        self.assertEqual(headers["x-api-key"], "ak-test")
        self.assertEqual(headers["anthropic-version"], ANTHROPIC_VERSION)
        self.assertNotIn("Authorization", headers)
        body = call_args[1]["json"]
        self.assertEqual(body["system"], "sys")
        self.assertEqual(body["max_tokens"], 4096)
        self.assertEqual(body["messages"], [{"role": "user", "content": "question"}])

    def test_skips_non_text_blocks(self):
        self.mock_session.post.return_value = make_response(
            200,
            {"content": [{"type": "tool_use", "id": "t"}, {"type": "text", "text": "second"}]},
        )
        self.assertEqual(self.client.complete("q"), "second")

    def test_no_text_block(self):
        self.mock_session.post.return_value = make_response(200, {"content": []})
        with self.assertRaises(LLMResponseError):
            self.client.complete("q")

    def test_content_not_a_list(self):
        for content in ("answer", 42):
            self.mock_session.post.return_value = make_response(200, {"content": content})
            with self.assertRaises(LLMResponseError):
                self.client.complete("q")


class TestCreateLLMClient(unittest.TestCase):
    def test_not_configured(self):
        with self.assertRaises(LLMConfigError):
            create_llm_client(Config())

    def test_from_config(self):
        cfg = Config(llm_provider="perplexity", llm_api_key="pk")
        client = create_llm_client(cfg, session=MagicMock())
        self.assertEqual(client.provider, "perplexity")
        self.assertEqual(client.api_key, "pk")


if __name__ == "__main__":
    unittest.main()
