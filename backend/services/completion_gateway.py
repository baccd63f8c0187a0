"""Completion gateway for Groq API integration."""
import time
from dataclasses import dataclass
from typing import List, Optional, Dict
from groq import Groq
from groq import RateLimitError, AuthenticationError, APIError, APITimeoutError, APIConnectionError
import logging

from models.conversation import Turn, USER_ROLE, MODEL_ROLE
from services.errors import UpstreamError
from config import (
    GROQ_API_KEY,
    DEFAULT_MODEL,
    MODEL_ALIASES,
    SUPPORTED_MODELS,
    MAX_OUTPUT_TOKENS,
    TEMPERATURE,
)

logger = logging.getLogger(__name__)

# Stored transcripts use "model"; the chat completions API calls it "assistant"
PROVIDER_ROLES = {USER_ROLE: "user", MODEL_ROLE: "assistant"}


@dataclass
class CompletionResult:
    """Response from a completion call."""
    text: str
    model_used: str
    tokens_input: int
    tokens_output: int
    latency_ms: int


class CompletionGateway:
    """Wraps the external text-generation provider behind a single call."""

    def __init__(self, api_key: Optional[str] = None, default_model: str = DEFAULT_MODEL):
        """
        Initialize the gateway with a Groq API key.

        A missing key does not fail construction: the application still
        serves stored transcripts, and every ``complete`` call reports the
        missing configuration as an ``UpstreamError``.

        Args:
            api_key: Groq API key (defaults to GROQ_API_KEY from environment)
            default_model: Model used when a selector is unknown
        """
        self.api_key = api_key or GROQ_API_KEY
        self.default_model = default_model
        self.client = Groq(api_key=self.api_key) if self.api_key else None

        if self.client is None:
            logger.warning("GROQ_API_KEY is not configured; completions will fail")
        else:
            logger.info("CompletionGateway initialized successfully")

    @property
    def configured(self) -> bool:
        return self.client is not None

    def resolve_model(self, selector: Optional[str]) -> str:
        """Map a model selector (alias or model id) to a provider model id."""
        if not selector:
            return self.default_model
        if selector in MODEL_ALIASES:
            return MODEL_ALIASES[selector]
        if selector in SUPPORTED_MODELS:
            return selector

        logger.warning(f"Unknown model selector {selector!r}, using {self.default_model}")
        return self.default_model

    @staticmethod
    def to_provider_messages(prior_turns: List[Turn], input_text: str) -> List[Dict[str, str]]:
        """Convert stored turns plus the new input into chat completion messages, oldest first."""
        messages = [
            {"role": PROVIDER_ROLES[turn.role], "content": turn.content}
            for turn in prior_turns
        ]
        messages.append({"role": "user", "content": input_text})
        return messages

    def complete(
        self,
        prior_turns: List[Turn],
        input_text: str,
        model: Optional[str] = None,
        max_tokens: int = MAX_OUTPUT_TOKENS,
    ) -> CompletionResult:
        """
        Generate the model reply for ``input_text`` given the prior history.

        A single attempt is made; retries are a caller decision.

        Args:
            prior_turns: Conversation history, oldest first
            input_text: The newest user message
            model: Model selector stored on the conversation
            max_tokens: Maximum tokens to generate

        Returns:
            CompletionResult with text, token counts, and latency

        Raises:
            UpstreamError: Structured error with code, message, and details
        """
        model_name = self.resolve_model(model)

        if self.client is None:
            raise UpstreamError(
                "Completion provider is not configured.",
                code="NOT_CONFIGURED",
                details={"model": model_name},
            )

        start_time = time.time()

        try:
            logger.debug(f"Requesting completion: model={model_name}, prior_turns={len(prior_turns)}")

            response = self.client.chat.completions.create(
                model=model_name,
                messages=self.to_provider_messages(prior_turns, input_text),
                max_tokens=max_tokens,
                temperature=TEMPERATURE
            )
        except RateLimitError as e:
            raise self._failure(
                "RATE_LIMIT_ERROR",
                "Rate limit exceeded. Please try again in a few moments.",
                model_name, start_time, e,
                retry_after=60,
            )
        except AuthenticationError as e:
            raise self._failure(
                "AUTHENTICATION_ERROR",
                "Authentication failed. Please check your API key.",
                model_name, start_time, e,
            )
        except APITimeoutError as e:
            raise self._failure(
                "TIMEOUT_ERROR",
                "Request timed out. Please try again.",
                model_name, start_time, e,
            )
        except APIConnectionError as e:
            raise self._failure(
                "CONNECTION_ERROR",
                "Could not reach the completion provider.",
                model_name, start_time, e,
            )
        except APIError as e:
            raise self._failure(
                "API_ERROR",
                f"Groq API error: {str(e)}",
                model_name, start_time, e,
            )
        except Exception as e:
            raise self._failure(
                "UNKNOWN_ERROR",
                f"Unexpected error during completion: {str(e)}",
                model_name, start_time, e,
                error_type=type(e).__name__,
            )

        latency_ms = int((time.time() - start_time) * 1000)
        text = response.choices[0].message.content

        if not text or not text.strip():
            raise UpstreamError(
                "The completion provider returned an empty reply.",
                code="EMPTY_RESPONSE",
                details={"model": model_name, "latency_ms": latency_ms},
            )

        usage = response.usage
        tokens_input = usage.prompt_tokens if usage else 0
        tokens_output = usage.completion_tokens if usage else 0

        logger.info(
            f"Generated completion: model={model_name}, "
            f"input_tokens={tokens_input}, output_tokens={tokens_output}, "
            f"latency={latency_ms}ms"
        )

        return CompletionResult(
            text=text,
            model_used=model_name,
            tokens_input=tokens_input,
            tokens_output=tokens_output,
            latency_ms=latency_ms
        )

    @staticmethod
    def _failure(
        code: str,
        message: str,
        model: str,
        start_time: float,
        error: Exception,
        **extra_details,
    ) -> UpstreamError:
        latency_ms = int((time.time() - start_time) * 1000)
        details = {
            "model": model,
            "latency_ms": latency_ms,
            "original_error": str(error),
            **extra_details,
        }
        logger.error(
            f"Completion failed: code={code}, model={model}, latency={latency_ms}ms, error={error}",
            exc_info=True,
            extra={"error_code": code, "error_details": details}
        )
        return UpstreamError(message, code=code, details=details)
