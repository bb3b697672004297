"""
Provider-agnostic LLM client for the semantic checks.

Supports Anthropic, OpenAI, and Google Gemini with a shared text-generation
interface, plus a bounded retry loop for transient failures.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, Optional

logger = logging.getLogger("triage.common.llm_client")

# HTTP statuses worth another attempt: rate limited, service unavailable
TRANSIENT_STATUS_CODES = frozenset({429, 503})

# Sampling temperature for every provider
TEMPERATURE = 0.3


class LLMRequestError(RuntimeError):
    """A generation request failed for good (retries exhausted or not retryable)"""


def is_transient_error(exc: Exception) -> bool:
    """Rate-limit, service-unavailable and connection failures are transient.

    SDK exceptions expose the HTTP status as ``status_code`` (anthropic,
    openai) or ``code`` (google api_core).
    """
    status = getattr(exc, "status_code", None)
    if status is None:
        status = getattr(exc, "code", None)
    if isinstance(status, int) and status in TRANSIENT_STATUS_CODES:
        return True
    if isinstance(exc, (ConnectionError, TimeoutError)):
        return True
    name = type(exc).__name__
    return name.endswith("ConnectionError") or name.endswith("TimeoutError") or name == "ServiceUnavailable"


class LLMClient:
    """
    Unified text generation client across LLM providers.

    Each provider contributes a ``_connect_<provider>`` that returns the SDK
    handle (or None) and a ``_complete_<provider>`` that turns one prompt
    into text. SDKs are imported lazily, only for the configured provider.
    """

    PROVIDERS = ("anthropic", "openai", "google")

    def __init__(
        self,
        provider: str = "openai",
        model: str = "",
        anthropic_api_key: Optional[str] = None,
        openai_api_key: Optional[str] = None,
        google_api_key: Optional[str] = None,
        max_retries: int = 3,
        retry_delay: float = 5.0,
    ) -> None:
        self.provider = (provider or "openai").lower()
        self.model = model
        self.max_retries = max(1, max_retries)
        self.retry_delay = retry_delay
        self._client = None
        self._gemini_models: Dict[str, Any] = {}  # system prompt -> GenerativeModel

        if self.provider not in self.PROVIDERS:
            logger.warning("Unsupported LLM provider: %s", self.provider)
            return

        api_key = {
            "anthropic": anthropic_api_key,
            "openai": openai_api_key,
            "google": google_api_key,
        }[self.provider]
        if not api_key:
            logger.info("%s API key not provided, LLM client unavailable", self.provider)
            return

        connect = getattr(self, f"_connect_{self.provider}")
        try:
            self._client = connect(api_key)
        except ImportError as e:
            logger.warning("SDK for %s is not installed: %s", self.provider, e)
        except Exception as e:
            logger.warning("Could not set up %s client: %s", self.provider, e)

    @classmethod
    def from_config(cls, config) -> "LLMClient":
        """Build a client from a TriageConfig"""
        llm = config.llm
        model = {
            "anthropic": llm.anthropic_model,
            "openai": llm.openai_model,
            "google": llm.google_model,
        }.get((llm.provider or "").lower(), "")
        return cls(
            provider=llm.provider,
            model=model,
            anthropic_api_key=llm.anthropic_api_key or None,
            openai_api_key=llm.openai_api_key or None,
            google_api_key=llm.google_api_key or None,
            max_retries=config.semantic.max_retries,
            retry_delay=config.semantic.retry_delay,
        )

    @property
    def is_available(self) -> bool:
        return self._client is not None

    # ------------------------------------------------------------------
    # Provider setup
    # ------------------------------------------------------------------

    @staticmethod
    def _connect_anthropic(api_key: str):
        import anthropic

        return anthropic.Anthropic(api_key=api_key)

    @staticmethod
    def _connect_openai(api_key: str):
        from openai import OpenAI

        return OpenAI(api_key=api_key)

    @staticmethod
    def _connect_google(api_key: str):
        import google.generativeai as genai

        genai.configure(api_key=api_key)
        return genai

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    def generate(
        self,
        prompt: str,
        *,
        system: Optional[str] = None,
        max_tokens: int = 512,
        timeout: float = 60.0,
    ) -> str:
        """One completion, stripped. Provider errors propagate unchanged."""
        if not self.is_available:
            raise RuntimeError("LLM client is not available")

        complete = getattr(self, f"_complete_{self.provider}")
        return complete(prompt, system, max_tokens, timeout).strip()

    def _complete_anthropic(self, prompt: str, system: Optional[str], max_tokens: int, timeout: float) -> str:
        request = {
            "model": self.model,
            "max_tokens": max_tokens,
            "messages": [{"role": "user", "content": prompt}],
            "timeout": timeout,
        }
        if system:
            request["system"] = system
        response = self._client.messages.create(**request)
        return "".join(
            block.text for block in response.content if getattr(block, "type", "text") == "text"
        )

    def _complete_openai(self, prompt: str, system: Optional[str], max_tokens: int, timeout: float) -> str:
        messages = [{"role": "system", "content": system}] if system else []
        messages.append({"role": "user", "content": prompt})
        response = self._client.chat.completions.create(
            model=self.model,
            messages=messages,
            max_tokens=max_tokens,
            temperature=TEMPERATURE,
            timeout=timeout,
        )
        return response.choices[0].message.content or ""

    def _complete_google(self, prompt: str, system: Optional[str], max_tokens: int, timeout: float) -> str:
        model = self._gemini_models.get(system or "")
        if model is None:
            model = self._client.GenerativeModel(model_name=self.model, system_instruction=system or None)
            self._gemini_models[system or ""] = model
        response = model.generate_content(
            prompt,
            generation_config={"max_output_tokens": max_tokens, "temperature": TEMPERATURE},
            request_options={"timeout": timeout},
        )
        return response.text

    def generate_with_retry(
        self,
        prompt: str,
        *,
        system: Optional[str] = None,
        max_tokens: int = 512,
        timeout: float = 60.0,
    ) -> str:
        """generate() with a fixed-delay retry on transient failures.

        Raises:
            LLMRequestError: after ``max_retries`` transient failures, or on
                the first non-transient failure.
        """
        last_exception: Optional[Exception] = None

        for attempt in range(1, self.max_retries + 1):
            try:
                return self.generate(prompt, system=system, max_tokens=max_tokens, timeout=timeout)
            except Exception as e:
                if not is_transient_error(e):
                    raise LLMRequestError(f"LLM request failed: {e}") from e
                last_exception = e
                logger.warning(
                    "Transient LLM error (attempt %d/%d): %s", attempt, self.max_retries, e
                )
                if attempt < self.max_retries:
                    time.sleep(self.retry_delay)

        raise LLMRequestError(
            f"LLM request failed after {self.max_retries} attempts: {last_exception}"
        ) from last_exception
