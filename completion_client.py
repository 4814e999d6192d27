"""
Text-completion client with retry and exponential backoff.

Wraps the OpenAI chat completions API. Failures are sorted into transient
ones (rate limiting, timeouts, dropped connections, server errors, empty
replies), which are retried after 2s, 4s, 8s..., and terminal ones
(authentication, exhausted quota, rejected requests), which are raised
straight away.
"""
import os
import time
from typing import Callable, Optional

import openai
from loguru import logger

DEFAULT_MODEL = "gpt-4o-mini"
DEFAULT_MAX_TOKENS = 4000
DEFAULT_MAX_RETRIES = 3
QUOTA_CODES = {"insufficient_quota", "billing_hard_limit_reached"}
QUOTA_PHRASES = ("credit balance", "purchase credits", "exceeded your current quota")


class CompletionError(RuntimeError):
    """The completion service did not produce a usable reply."""


class TransientCompletionError(CompletionError):
    """A failure worth retrying."""


class TerminalCompletionError(CompletionError):
    """Authentication or quota failure; retrying cannot help."""


def _is_quota_error(error: openai.APIStatusError) -> bool:
    if getattr(error, "code", None) in QUOTA_CODES:
        return True
    message = str(error).lower()
    return any(phrase in message for phrase in QUOTA_PHRASES)


def classify_error(error: Exception) -> CompletionError:
    """Map a client exception onto the transient/terminal taxonomy."""
    if isinstance(error, CompletionError):
        return error
    if isinstance(error, openai.RateLimitError):
        if _is_quota_error(error):
            return TerminalCompletionError(f"API quota exhausted: {error}")
        return TransientCompletionError(f"Rate limited: {error}")
    if isinstance(error, (openai.AuthenticationError, openai.PermissionDeniedError)):
        return TerminalCompletionError(f"Invalid API key or missing permission: {error}")
    if isinstance(error, (openai.APITimeoutError, openai.APIConnectionError, openai.InternalServerError)):
        return TransientCompletionError(f"Service unavailable: {error}")
    if isinstance(error, openai.APIStatusError):
        if _is_quota_error(error):
            return TerminalCompletionError(f"Insufficient API credits: {error}")
        if error.status_code >= 500:
            return TransientCompletionError(f"Server error {error.status_code}: {error}")
        return TerminalCompletionError(f"Request rejected ({error.status_code}): {error}")
    return TransientCompletionError(f"Completion call failed: {error}")


class CompletionService:
    """
    Sends one prompt, returns the completion text.

    Args:
        api_key: OpenAI API key (or uses OPENAI_API_KEY env var)
        model: Chat model name
        client: Pre-built client exposing chat.completions.create
        sleep: Wait function used between attempts
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = DEFAULT_MODEL,
        client=None,
        sleep: Callable[[float], None] = time.sleep
    ):
        if client is None:
            # Retries are handled here, not by the SDK
            client = openai.OpenAI(api_key=api_key or os.environ.get("OPENAI_API_KEY"), max_retries=0)
        self.client = client
        self.model = model
        self.sleep = sleep

    def _request(self, prompt: str, system: Optional[str], max_tokens: int) -> str:
        messages = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})

        response = self.client.chat.completions.create(
            model=self.model,
            messages=messages,
            max_tokens=max_tokens,
            temperature=0
        )
        content = response.choices[0].message.content if response.choices else None
        if not content or not content.strip():
            raise TransientCompletionError("Empty response from completion service")
        return content

    def complete(
        self,
        prompt: str,
        system: Optional[str] = None,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        max_retries: int = DEFAULT_MAX_RETRIES
    ) -> str:
        """
        Request a completion, retrying transient failures.

        Args:
            prompt: User prompt
            system: Optional system instruction
            max_tokens: Output token limit
            max_retries: Total number of attempts

        Returns:
            Completion text

        Raises:
            TerminalCompletionError: On auth/quota failures (no retry)
            CompletionError: When every attempt failed
        """
        last_error: Optional[CompletionError] = None

        for attempt in range(max(1, max_retries)):
            try:
                return self._request(prompt, system, max_tokens)
            except (openai.OpenAIError, CompletionError) as e:
                error = classify_error(e)
                if isinstance(error, TerminalCompletionError):
                    logger.error(f"Completion failed permanently: {error}")
                    raise error from e
                last_error = error
                logger.warning(f"Completion attempt {attempt + 1}/{max_retries} failed: {error}")

            if attempt < max_retries - 1:
                wait_time = 2 ** (attempt + 1)
                logger.info(f"Waiting {wait_time}s before retry...")
                self.sleep(wait_time)

        raise CompletionError(f"Completion failed after {max_retries} attempts: {last_error}")
