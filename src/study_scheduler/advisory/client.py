"""
OpenAI client wrapper for the advisory reasoning service
"""

import json
import logging
from typing import Any

from cachetools import TTLCache
from openai import (
    APIConnectionError,
    APIError,
    APITimeoutError,
    AuthenticationError,
    OpenAI,
    RateLimitError,
)

from study_scheduler.cache import advisory_cache, get_cached, prompt_key, set_cached
from study_scheduler.config import settings
from study_scheduler.exceptions import AdvisoryServiceError

logger = logging.getLogger(__name__)

_USE_DEFAULT_CACHE = object()


class AdvisoryClient:
    """Chat-completions client returning validated-as-JSON tool arguments.

    Every failure mode (missing key, timeout, rate limit, transport error,
    missing or malformed tool call) raises ``AdvisoryServiceError``.
    """

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        *,
        client: Any = None,
        cache: Any = _USE_DEFAULT_CACHE,
    ):
        self.model = model or settings.advisory_model
        self.cache: TTLCache | None = advisory_cache if cache is _USE_DEFAULT_CACHE else cache
        if client is not None:
            self.client = client
        elif api_key or settings.openai_api_key:
            self.client = OpenAI(
                api_key=api_key or settings.openai_api_key,
                timeout=settings.advisory_timeout_seconds,
                max_retries=settings.advisory_max_retries,
            )
        else:
            logger.warning(
                "OpenAI API key not configured - advisory scheduling will not be available"
            )
            self.client = None

    def is_available(self) -> bool:
        """Check if OpenAI client is available"""
        return self.client is not None

    def call_tool(
        self, system_prompt: str, user_prompt: str, tool: dict[str, Any]
    ) -> dict[str, Any]:
        """Force a single tool call and return its parsed arguments."""
        if not self.is_available():
            raise AdvisoryServiceError("OpenAI client is not configured")

        tool_name = tool["function"]["name"]
        key = prompt_key(tool_name, self.model, system_prompt, user_prompt)
        cached = get_cached(self.cache, key)
        if cached is not None:
            return cached

        try:
            logger.info(f"Calling OpenAI API with model: {self.model} ({tool_name})")
            response = self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt},
                ],
                tools=[tool],
                tool_choice={"type": "function", "function": {"name": tool_name}},
                temperature=settings.advisory_temperature,
                timeout=settings.advisory_timeout_seconds,
            )
        except RateLimitError as e:
            logger.warning(f"OpenAI rate limit exceeded: {e}")
            raise AdvisoryServiceError(f"rate limit exceeded: {e}") from e
        except AuthenticationError as e:
            logger.error(f"OpenAI authentication failed: {e}")
            raise AdvisoryServiceError(f"authentication failed: {e}") from e
        except APITimeoutError as e:
            logger.warning(f"OpenAI request timed out: {e}")
            raise AdvisoryServiceError(f"request timed out: {e}") from e
        except APIConnectionError as e:
            logger.error(f"OpenAI connection error: {e}")
            raise AdvisoryServiceError(f"connection error: {e}") from e
        except APIError as e:
            logger.error(f"OpenAI API error: {e}")
            raise AdvisoryServiceError(f"API error: {e}") from e

        payload = self._parse_tool_arguments(response, tool_name)
        set_cached(self.cache, key, payload)
        return payload

    def _parse_tool_arguments(self, response: Any, tool_name: str) -> dict[str, Any]:
        try:
            message = response.choices[0].message
        except (AttributeError, IndexError) as e:
            raise AdvisoryServiceError(f"empty response: {e}") from e

        if not message.tool_calls:
            raise AdvisoryServiceError("response contained no tool call")
        tool_call = message.tool_calls[0]
        if tool_call.function.name != tool_name:
            raise AdvisoryServiceError(f"unexpected tool call: {tool_call.function.name}")

        try:
            arguments = json.loads(tool_call.function.arguments)
        except (TypeError, json.JSONDecodeError) as e:
            raise AdvisoryServiceError(f"tool arguments are not valid JSON: {e}") from e
        if not isinstance(arguments, dict):
            raise AdvisoryServiceError("tool arguments are not a JSON object")
        return arguments
