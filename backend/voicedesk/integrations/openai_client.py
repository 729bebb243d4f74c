"""
OpenAI API client integration.

This module handles:
1. Making chat completion requests to OpenAI
2. Retry logic for transient failures
3. Timeout handling
4. Response parsing

Uses a small chat model for fast responses; the voice conversation itself
runs on the Realtime API (see realtime_client).
"""
import asyncio
import json
import re
from typing import Optional

from openai import AsyncOpenAI
from openai import APIError, APIConnectionError, APITimeoutError, RateLimitError as OpenAIRateLimitError

from voicedesk.config import get_settings
from voicedesk.utils.logger import get_logger
from voicedesk.utils.errors import AIError, UpstreamTimeoutError

logger = get_logger(__name__)

_client: Optional[AsyncOpenAI] = None


def get_client() -> AsyncOpenAI:
    """Create the OpenAI client on first use."""
    global _client
    if _client is None:
        settings = get_settings()
        _client = AsyncOpenAI(api_key=settings.openai_api_key, timeout=settings.upstream_timeout_seconds)
    return _client


async def complete(
    messages: list,
    max_tokens: int = 500,
    temperature: float = 0.7,
    response_format: Optional[dict] = None,
) -> str:
    """
    Get a completion from OpenAI.

    Args:
        messages: List of message dicts with role and content
        max_tokens: Maximum response tokens
        temperature: Creativity (0=deterministic, 1=creative)
        response_format: Optional JSON schema for structured output

    Returns:
        Generated text response

    Raises:
        AIError: On API failure after retries
        UpstreamTimeoutError: If OpenAI doesn't answer in time
    """
    settings = get_settings()
    if not settings.openai_api_key:
        raise AIError("OpenAI API key not configured")

    max_retries = 1

    for attempt in range(max_retries + 1):
        try:
            kwargs = {
                "model": settings.openai_chat_model,
                "messages": messages,
                "max_tokens": max_tokens,
                "temperature": temperature,
            }

            # Add JSON response format if specified
            if response_format:
                kwargs["response_format"] = response_format

            response = await get_client().chat.completions.create(**kwargs)

            content = response.choices[0].message.content or ""
            logger.info(f"OpenAI response received, tokens: {response.usage.total_tokens}")

            return content.strip()

        except OpenAIRateLimitError:
            logger.warning(f"OpenAI rate limited (attempt {attempt + 1})")
            if attempt < max_retries:
                await asyncio.sleep(1)
                continue
            raise AIError("AI service is busy. Please try again.")

        except APITimeoutError:
            logger.error("OpenAI request timed out")
            raise UpstreamTimeoutError("OpenAI")

        except APIConnectionError as e:
            logger.error(f"OpenAI connection error: {e}")
            if attempt < max_retries:
                continue
            raise AIError("Couldn't connect to AI service. Please try again.")

        except APIError as e:
            logger.error(f"OpenAI API error: {e}")
            raise AIError("AI service error. Please try again.")

    raise AIError("AI processing failed. Please try again.")


async def complete_json(
    messages: list,
    max_tokens: int = 500,
    temperature: float = 0.3,
) -> dict:
    """
    Get a JSON response from OpenAI.

    Uses lower temperature for more consistent JSON output.

    Raises:
        AIError: On API failure or invalid JSON
    """
    response = await complete(
        messages=messages,
        max_tokens=max_tokens,
        temperature=temperature,
        response_format={"type": "json_object"},
    )

    try:
        return json.loads(response)
    except json.JSONDecodeError as e:
        logger.warning(f"Failed to parse JSON response: {e}")

    # Sometimes the model wraps JSON in markdown
    match = re.search(r'\{.*\}', response, re.DOTALL)
    if match:
        try:
            return json.loads(match.group())
        except json.JSONDecodeError:
            pass
    raise AIError("AI returned invalid response format.")
