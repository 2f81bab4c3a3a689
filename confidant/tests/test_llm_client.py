"""Tests for LLMClient provider abstraction."""

import logging
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from confidant.common.config import LLMConfig
from confidant.common.llm_client import LLMClient, TextGenerator


class TestLLMClientInit:
    @pytest.mark.parametrize("provider", ["anthropic", "openai", "google"])
    def test_missing_key_logs_info(self, caplog, provider):
        with caplog.at_level(logging.INFO, logger="confidant.common.llm_client"):
            client = LLMClient(provider=provider)
        assert not client.is_available
        assert "API key not provided" in caplog.text

    def test_unsupported_provider_logs_warning(self, caplog):
        with caplog.at_level(logging.WARNING, logger="confidant.common.llm_client"):
            client = LLMClient(provider="unsupported_xyz")
        assert not client.is_available
        assert "Unsupported" in caplog.text

    def test_from_config_without_key(self):
        client = LLMClient.from_config(LLMConfig(provider="openai"))
        assert client.provider == "openai"
        assert client.model == "gpt-4o-mini"
        assert not client.is_available

    def test_is_a_text_generator(self):
        assert isinstance(LLMClient(provider="anthropic"), TextGenerator)


class TestLLMClientGenerate:
    def test_generate_raises_when_unavailable(self):
        client = LLMClient(provider="anthropic")
        with pytest.raises(RuntimeError, match="not available"):
            client.generate("test")

    def test_anthropic_generate(self):
        client = LLMClient(provider="anthropic", model="claude-test")
        client._client = MagicMock()
        client._client.messages.create.return_value = SimpleNamespace(
            content=[SimpleNamespace(text="  hello  ")]
        )

        result = client.generate("hi", system="be brief", temperature=0.2)

        assert result == "hello"
        kwargs = client._client.messages.create.call_args.kwargs
        assert kwargs["model"] == "claude-test"
        assert kwargs["system"] == "be brief"
        assert kwargs["temperature"] == 0.2
        assert kwargs["messages"] == [{"role": "user", "content": "hi"}]

    def test_openai_generate_prepends_system(self):
        client = LLMClient(provider="openai", model="gpt-test")
        client._client = MagicMock()
        client._client.chat.completions.create.return_value = SimpleNamespace(
            choices=[SimpleNamespace(message=SimpleNamespace(content="answer\n"))]
        )

        result = client.generate("question", system="rules")

        assert result == "answer"
        kwargs = client._client.chat.completions.create.call_args.kwargs
        assert [m["role"] for m in kwargs["messages"]] == ["system", "user"]
        assert "temperature" not in kwargs

    def test_openai_empty_content(self):
        client = LLMClient(provider="openai", model="gpt-test")
        client._client = MagicMock()
        client._client.chat.completions.create.return_value = SimpleNamespace(
            choices=[SimpleNamespace(message=SimpleNamespace(content=None))]
        )

        assert client.generate("question") == ""
