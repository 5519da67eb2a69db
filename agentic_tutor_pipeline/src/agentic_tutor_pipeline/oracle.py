"""
Generation Oracle

Async wrapper around the OpenAI chat completions API. Every call is bounded
by a timeout and retried with exponential backoff on transient failures
(timeouts, connection errors, rate limits, server errors, empty
completions). Each logical call carries a request key that is logged on
every attempt, so repeated attempts for one stage invocation can be
recognised in the logs.
"""

import asyncio
import logging
import time
import uuid
from typing import Optional

from openai import (
    AsyncOpenAI,
    APIConnectionError,
    APITimeoutError,
    InternalServerError,
    OpenAIError,
    RateLimitError,
)

from agentic_tutor_pipeline.errors import OracleError

logger = logging.getLogger(__name__)

TRANSIENT_ERRORS = (APIConnectionError, APITimeoutError, RateLimitError, InternalServerError)

SYSTEM_PROMPT = "You are an expert educator working inside an adaptive tutoring system."


class OpenAIOracle:
    """Generation oracle backed by an AsyncOpenAI client."""

    def __init__(
        self,
        client: Optional[AsyncOpenAI] = None,
        api_key: Optional[str] = None,
        model: str = "gpt-4o-mini",
        timeout: float = 60.0,
        max_retries: int = 2,
        backoff_seconds: float = 1.0,
        system_prompt: str = SYSTEM_PROMPT,
    ):
        if client is None:
            if not api_key:
                raise ValueError("OPENAI_API_KEY not found")
            # Retries are handled here, not by the client
            client = AsyncOpenAI(api_key=api_key, max_retries=0)
        self.client = client
        self.model = model
        self.timeout = timeout
        self.max_retries = max_retries
        self.backoff_seconds = backoff_seconds
        self.system_prompt = system_prompt

    async def _complete_once(self, prompt: str, temperature: float, max_tokens: int) -> str:
        completion = await self.client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": self.system_prompt},
                {"role": "user", "content": prompt},
            ],
            temperature=temperature,
            max_tokens=max_tokens,
        )
        choices = getattr(completion, "choices", None) or []
        text = choices[0].message.content if choices else None
        if not text or not text.strip():
            raise OracleError("Oracle returned no usable text")
        return text

    async def complete(
        self,
        prompt: str,
        temperature: float,
        max_tokens: int,
        request_key: Optional[str] = None,
    ) -> str:
        """
        Run one completion with timeout and retries.

        Args:
            prompt: User prompt
            temperature: Sampling temperature
            max_tokens: Output length bound
            request_key: Idempotency marker logged on every attempt

        Returns:
            Completion text (never empty)

        Raises:
            OracleError: when every attempt failed or a non-transient error occurred
        """
        request_key = request_key or uuid.uuid4().hex
        attempts = self.max_retries + 1
        last_error: Optional[OracleError] = None

        for attempt in range(1, attempts + 1):
            start_time = time.time()
            logger.info(f"🤖 [Oracle] {request_key} attempt {attempt}/{attempts} (model={self.model})")
            try:
                text = await asyncio.wait_for(
                    self._complete_once(prompt, temperature, max_tokens),
                    timeout=self.timeout,
                )
            except asyncio.TimeoutError:
                last_error = OracleError(f"Oracle timed out after {self.timeout:.0f}s")
            except OracleError as e:
                last_error = e
            except TRANSIENT_ERRORS as e:
                last_error = OracleError(f"Oracle request failed: {e}")
            except OpenAIError as e:
                # Bad request, authentication and the like will not improve on retry
                logger.error(f"❌ [Oracle] {request_key} failed permanently: {e}")
                raise OracleError(f"Oracle request failed: {e}") from e
            else:
                elapsed = time.time() - start_time
                logger.info(f"✅ [Oracle] {request_key} completed in {elapsed:.2f}s ({len(text)} chars)")
                return text

            logger.warning(f"⚠️ [Oracle] {request_key} attempt {attempt} failed: {last_error.message}")
            if attempt < attempts:
                await asyncio.sleep(self.backoff_seconds * (2 ** (attempt - 1)))

        raise last_error
