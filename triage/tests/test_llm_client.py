"""Tests for LLMClient provider abstraction and retry."""

import logging
import pytest
from unittest.mock import Mock, patch

from triage.common.llm_client import LLMClient, LLMRequestError, is_transient_error


class FakeStatusError(Exception):
    def __init__(self, status_code):
        super().__init__(f"HTTP {status_code}")
        self.status_code = status_code


class APIConnectionError(Exception):
    pass


def _available_client(**kwargs):
    client = LLMClient(provider="openai", model="gpt-4o-mini", **kwargs)
    client._client = Mock()
    return client


class TestLLMClientInit:
    def test_missing_openai_key_logs_info(self, caplog):
        with caplog.at_level(logging.INFO, logger="triage.common.llm_client"):
            client = LLMClient(provider="openai")
        assert not client.is_available
        assert "API key not provided" in caplog.text

    def test_missing_anthropic_key_logs_info(self, caplog):
        with caplog.at_level(logging.INFO, logger="triage.common.llm_client"):
            client = LLMClient(provider="anthropic")
        assert not client.is_available
        assert "API key not provided" in caplog.text

    def test_unsupported_provider_logs_warning(self, caplog):
        with caplog.at_level(logging.WARNING, logger="triage.common.llm_client"):
            client = LLMClient(provider="unsupported_xyz")
        assert not client.is_available
        assert "Unsupported" in caplog.text

    def test_setup_failure_leaves_client_unavailable(self, caplog):
        with patch.object(LLMClient, "_connect_openai", side_effect=ValueError("bad key")), \
             caplog.at_level(logging.WARNING, logger="triage.common.llm_client"):
            client = LLMClient(provider="openai", openai_api_key="sk-test")
        assert not client.is_available
        assert "bad key" in caplog.text

    def test_missing_sdk_leaves_client_unavailable(self, caplog):
        with patch.object(LLMClient, "_connect_google", side_effect=ImportError("no module")), \
             caplog.at_level(logging.WARNING, logger="triage.common.llm_client"):
            client = LLMClient(provider="google", google_api_key="key")
        assert not client.is_available
        assert "not installed" in caplog.text

    def test_from_config_picks_provider_model(self):
        from triage.common.config import TriageConfig
        cfg = TriageConfig()
        cfg.llm.provider = "anthropic"
        cfg.semantic.max_retries = 5
        cfg.semantic.retry_delay = 0.5
        client = LLMClient.from_config(cfg)
        assert client.provider == "anthropic"
        assert client.model == cfg.llm.anthropic_model
        assert client.max_retries == 5
        assert client.retry_delay == 0.5
        assert not client.is_available


class TestLLMClientGenerate:
    def test_generate_raises_when_unavailable(self):
        client = LLMClient(provider="openai")
        with pytest.raises(RuntimeError, match="not available"):
            client.generate("test")

    def test_openai_generate_passes_system_prompt(self):
        client = _available_client()
        message = Mock()
        message.content = '  {"has_problem": false}  '
        response = Mock()
        response.choices = [Mock(message=message)]
        client._client.chat.completions.create.return_value = response

        result = client.generate("user prompt", system="system prompt", max_tokens=800)

        assert result == '{"has_problem": false}'
        kwargs = client._client.chat.completions.create.call_args.kwargs
        assert kwargs["max_tokens"] == 800
        assert kwargs["messages"][0] == {"role": "system", "content": "system prompt"}
        assert kwargs["messages"][1] == {"role": "user", "content": "user prompt"}

    def test_anthropic_generate_joins_text_blocks(self):
        client = LLMClient(provider="anthropic", model="claude-test")
        client._client = Mock()
        response = Mock()
        response.content = [
            Mock(type="text", text=' {"has_problem": '),
            Mock(type="tool_use", text="ignored"),
            Mock(type="text", text='false} '),
        ]
        client._client.messages.create.return_value = response

        result = client.generate("user prompt", system="system prompt", max_tokens=800, timeout=30.0)

        assert result == '{"has_problem": false}'
        kwargs = client._client.messages.create.call_args.kwargs
        assert kwargs["model"] == "claude-test"
        assert kwargs["system"] == "system prompt"
        assert kwargs["messages"] == [{"role": "user", "content": "user prompt"}]
        assert kwargs["timeout"] == 30.0

    def test_anthropic_omits_empty_system(self):
        client = LLMClient(provider="anthropic", model="claude-test")
        client._client = Mock()
        client._client.messages.create.return_value = Mock(content=[Mock(type="text", text="ok")])

        client.generate("user prompt")

        assert "system" not in client._client.messages.create.call_args.kwargs

    def test_google_generate_caches_model_per_system_prompt(self):
        client = LLMClient(provider="google", model="gemini-test")
        client._client = Mock()
        model = client._client.GenerativeModel.return_value
        model.generate_content.return_value = Mock(text=" ok \n")

        assert client.generate("one", system="system prompt", max_tokens=800) == "ok"
        assert client.generate("two", system="system prompt") == "ok"
        client.generate("three", system="other prompt")

        assert client._client.GenerativeModel.call_count == 2
        first = client._client.GenerativeModel.call_args_list[0].kwargs
        assert first == {"model_name": "gemini-test", "system_instruction": "system prompt"}
        kwargs = model.generate_content.call_args_list[0].kwargs
        assert kwargs["generation_config"]["max_output_tokens"] == 800
        assert kwargs["request_options"] == {"timeout": 60.0}

    def test_provider_errors_propagate(self):
        client = _available_client()
        client._client.chat.completions.create.side_effect = FakeStatusError(429)
        with pytest.raises(FakeStatusError):
            client.generate("p")


class TestTransientErrors:
    @pytest.mark.parametrize("status", [429, 503])
    def test_retryable_statuses(self, status):
        assert is_transient_error(FakeStatusError(status))

    def test_other_status_not_retryable(self):
        assert not is_transient_error(FakeStatusError(400))

    def test_connection_errors_retryable(self):
        assert is_transient_error(ConnectionError("reset"))
        assert is_transient_error(APIConnectionError("reset"))

    def test_value_error_not_retryable(self):
        assert not is_transient_error(ValueError("bad"))


class TestGenerateWithRetry:
    def test_success_first_attempt(self):
        client = _available_client()
        with patch.object(client, "generate", return_value="ok") as gen, \
             patch("triage.common.llm_client.time.sleep") as sleep:
            assert client.generate_with_retry("p") == "ok"
        assert gen.call_count == 1
        sleep.assert_not_called()

    def test_retries_transient_then_succeeds(self):
        client = _available_client(retry_delay=5.0)
        side_effect = [FakeStatusError(429), FakeStatusError(503), "ok"]
        with patch.object(client, "generate", side_effect=side_effect) as gen, \
             patch("triage.common.llm_client.time.sleep") as sleep:
            assert client.generate_with_retry("p") == "ok"
        assert gen.call_count == 3
        assert sleep.call_count == 2
        sleep.assert_called_with(5.0)

    def test_gives_up_after_max_retries(self):
        client = _available_client(max_retries=3)
        with patch.object(client, "generate", side_effect=FakeStatusError(429)) as gen, \
             patch("triage.common.llm_client.time.sleep") as sleep:
            with pytest.raises(LLMRequestError, match="after 3 attempts"):
                client.generate_with_retry("p")
        assert gen.call_count == 3
        assert sleep.call_count == 2

    def test_non_transient_fails_immediately(self):
        client = _available_client()
        with patch.object(client, "generate", side_effect=FakeStatusError(401)) as gen, \
             patch("triage.common.llm_client.time.sleep") as sleep:
            with pytest.raises(LLMRequestError):
                client.generate_with_retry("p")
        assert gen.call_count == 1
        sleep.assert_not_called()
