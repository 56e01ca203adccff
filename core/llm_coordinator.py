import hashlib
from typing import Any, Optional, Sequence, Union

import anthropic
import httpx
import openai

from core.errors import UpstreamCompletionError
from utils.logging_config import LoggerMixin, log_upstream_event
from utils.pydantic_models import LLMConfig, LLMProvider

EnvelopeKey = Union[str, int]

GEMINI_TEXT_PATH = ("candidates", 0, "content", "parts", 0, "text")
OPENAI_TEXT_PATH = ("choices", 0, "message", "content")
ANTHROPIC_TEXT_PATH = ("content", 0, "text")


def dig(envelope: Any, path: Sequence[EnvelopeKey]) -> Any:
    """Walk a nested response envelope, raising on the first missing step."""
    node = envelope
    walked = []
    for key in path:
        walked.append(str(key))
        try:
            node = node[key]
        except (KeyError, IndexError, TypeError):
            raise UpstreamCompletionError(
                f"Malformed completion envelope: missing {'.'.join(walked)}"
            ) from None
    return node


def _text_at(envelope: Any, path: Sequence[EnvelopeKey]) -> str:
    text = dig(envelope, path)
    if not isinstance(text, str):
        raise UpstreamCompletionError(
            f"Malformed completion envelope: {'.'.join(str(k) for k in path)} is not text"
        )
    return text


class LLMCoordinator(LoggerMixin):
    """
    Sends one prompt to the configured completion service and returns the raw
    text of the first candidate. Owns transport and envelope errors only.
    """

    def __init__(
        self,
        config: LLMConfig,
        http_client: Optional[httpx.AsyncClient] = None,
        openai_client: Optional[Any] = None,
        anthropic_client: Optional[Any] = None,
    ):
        super().__init__()
        self.config = config
        self.model = config.resolved_model
        self._http_client = http_client
        self._openai_client = openai_client
        self._anthropic_client = anthropic_client

        self.logger.info(
            "LLM coordinator initialized",
            provider=config.provider.value,
            model=self.model,
            api_key_present=bool(config.api_key),
            timeout_sec=config.timeout_sec,
        )

    async def complete(self, prompt: str) -> str:
        """Issue exactly one completion request and return its text."""
        self.logger.info(
            "Dispatching LLM request",
            **log_upstream_event(
                self.config.provider.value,
                model=self.model,
                prompt_chars=len(prompt),
                payload_sha16=hashlib.sha256(prompt.encode("utf-8")).hexdigest()[:16],
            ),
        )

        provider = self.config.provider
        if provider == LLMProvider.GEMINI:
            text = await self._call_gemini(prompt)
        elif provider == LLMProvider.OPENAI:
            text = await self._call_openai(prompt)
        elif provider == LLMProvider.ANTHROPIC:
            text = await self._call_anthropic(prompt)
        else:
            raise UpstreamCompletionError(f"Unsupported LLM provider: {provider}")

        self.logger.info("LLM response received", provider=provider.value, content_length=len(text))
        return text

    async def _post_gemini(self, client: httpx.AsyncClient, url: str, body: dict) -> httpx.Response:
        return await client.post(
            url,
            json=body,
            headers={"x-goog-api-key": self.config.api_key},
            timeout=self.config.timeout_sec,
        )

    async def _call_gemini(self, prompt: str) -> str:
        url = f"{self.config.gemini_base_url.rstrip('/')}/models/{self.model}:generateContent"
        body = {
            "contents": [{"parts": [{"text": prompt}]}],
            "generationConfig": {
                "temperature": self.config.temperature,
                "maxOutputTokens": self.config.max_output_tokens,
            },
        }

        try:
            if self._http_client is not None:
                response = await self._post_gemini(self._http_client, url, body)
            else:
                async with httpx.AsyncClient() as client:
                    response = await self._post_gemini(client, url, body)
        except httpx.TimeoutException as e:
            self.logger.error("Gemini request timed out", timeout_sec=self.config.timeout_sec)
            raise UpstreamCompletionError(
                f"Gemini API request timed out after {self.config.timeout_sec:g}s"
            ) from e
        except httpx.HTTPError as e:
            self.logger.error("Gemini transport error", error_type=type(e).__name__, error=str(e))
            raise UpstreamCompletionError(f"Gemini API request failed: {e}") from e

        if not response.is_success:
            self.logger.error("Gemini API error status", http_status=response.status_code,
                              body_preview=response.text[:300])
            raise UpstreamCompletionError(
                f"Gemini API request failed with status {response.status_code}",
                status_code=response.status_code,
            )

        try:
            envelope = response.json()
        except ValueError as e:
            raise UpstreamCompletionError("Gemini API returned a non-JSON body") from e

        if isinstance(envelope, dict) and not envelope.get("candidates"):
            block_reason = (envelope.get("promptFeedback") or {}).get("blockReason")
            if block_reason:
                raise UpstreamCompletionError(
                    f"Gemini API returned no candidates (blocked: {block_reason})"
                )

        return _text_at(envelope, GEMINI_TEXT_PATH)

    def _get_openai_client(self):
        if self._openai_client is None:
            self._openai_client = openai.AsyncOpenAI(
                api_key=self.config.api_key,
                timeout=self.config.timeout_sec,
                max_retries=0,
            )
        return self._openai_client

    async def _call_openai(self, prompt: str) -> str:
        client = self._get_openai_client()
        try:
            response = await client.chat.completions.create(
                model=self.model,
                messages=[{"role": "user", "content": prompt}],
                max_tokens=self.config.max_output_tokens,
                temperature=self.config.temperature,
            )
        except openai.APITimeoutError as e:
            raise UpstreamCompletionError(
                f"OpenAI API request timed out after {self.config.timeout_sec:g}s"
            ) from e
        except openai.APIStatusError as e:
            self.logger.error("OpenAI API error status", http_status=e.status_code, error=str(e))
            raise UpstreamCompletionError(
                f"OpenAI API request failed with status {e.status_code}",
                status_code=e.status_code,
            ) from e
        except openai.OpenAIError as e:
            self.logger.error("OpenAI API call error", error_type=type(e).__name__, error=str(e))
            raise UpstreamCompletionError(f"OpenAI API request failed: {e}") from e

        envelope = response.model_dump() if hasattr(response, "model_dump") else response
        return _text_at(envelope, OPENAI_TEXT_PATH)

    def _get_anthropic_client(self):
        if self._anthropic_client is None:
            self._anthropic_client = anthropic.AsyncAnthropic(
                api_key=self.config.api_key,
                timeout=self.config.timeout_sec,
                max_retries=0,
            )
        return self._anthropic_client

    async def _call_anthropic(self, prompt: str) -> str:
        client = self._get_anthropic_client()
        try:
            response = await client.messages.create(
                model=self.model,
                max_tokens=self.config.max_output_tokens,
                temperature=self.config.temperature,
                messages=[{"role": "user", "content": prompt}],
            )
        except anthropic.APITimeoutError as e:
            raise UpstreamCompletionError(
                f"Anthropic API request timed out after {self.config.timeout_sec:g}s"
            ) from e
        except anthropic.APIStatusError as e:
            self.logger.error("Anthropic API error status", http_status=e.status_code, error=str(e))
            raise UpstreamCompletionError(
                f"Anthropic API request failed with status {e.status_code}",
                status_code=e.status_code,
            ) from e
        except anthropic.AnthropicError as e:
            self.logger.error("Anthropic API call error", error_type=type(e).__name__, error=str(e))
            raise UpstreamCompletionError(f"Anthropic API request failed: {e}") from e

        envelope = response.model_dump() if hasattr(response, "model_dump") else response
        return _text_at(envelope, ANTHROPIC_TEXT_PATH)
