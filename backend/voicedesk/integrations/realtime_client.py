"""
OpenAI Realtime session client.

Mints an ephemeral realtime session for the browser. The response carries
the provider session id and a short-lived client secret the browser uses to
open the WebRTC connection directly with OpenAI.

API Reference: https://platform.openai.com/docs/api-reference/realtime-sessions
"""
from typing import List, Optional

import httpx

from voicedesk.config import get_settings
from voicedesk.models.tool import ToolDefinition
from voicedesk.utils.logger import get_logger
from voicedesk.utils.errors import RealtimeProviderError, UpstreamTimeoutError

logger = get_logger(__name__)


class RealtimeClient:
    """
    Conversation provider client.

    Usage:
        client = RealtimeClient()
        session = await client.create_ephemeral_session(
            {"model": "gpt-4o-realtime-preview", "voice": "verse"}, tools
        )
        session["id"], session["client_secret"]["value"]
    """

    def __init__(self, api_key: Optional[str] = None, url: Optional[str] = None):
        settings = get_settings()
        self.api_key = api_key if api_key is not None else settings.openai_api_key
        self.url = url or settings.openai_realtime_url
        self.timeout = settings.upstream_timeout_seconds

    async def create_ephemeral_session(self, model_config: dict, tools: List[ToolDefinition]) -> dict:
        """
        Create a provider session with an initial tool set.

        Args:
            model_config: model, voice and optional instructions
            tools: Tool definitions exposed to the model from the first turn

        Returns:
            Provider payload (id, client_secret, model, voice, tools, ...)

        Raises:
            RealtimeProviderError: Provider missing, rejected or failed the request
            UpstreamTimeoutError: Provider did not answer in time
        """
        if not self.api_key:
            raise RealtimeProviderError("OpenAI API key not configured")

        body = {
            "model": model_config["model"],
            "voice": model_config["voice"],
            "tools": [tool.model_dump() for tool in tools],
            "tool_choice": "auto",
        }
        if model_config.get("instructions"):
            body["instructions"] = model_config["instructions"]

        logger.info(f"Creating realtime session (model={body['model']}, tools={len(tools)})")

        async with httpx.AsyncClient() as client:
            try:
                response = await client.post(
                    self.url,
                    headers={
                        "Authorization": f"Bearer {self.api_key}",
                        "Content-Type": "application/json",
                    },
                    json=body,
                    timeout=self.timeout,
                )
            except httpx.TimeoutException:
                logger.error("Realtime session request timed out")
                raise UpstreamTimeoutError("OpenAI Realtime")
            except httpx.RequestError as e:
                logger.error(f"Realtime session request failed: {e}")
                raise RealtimeProviderError("Failed to reach OpenAI Realtime", str(e))

        if response.status_code >= 300:
            logger.error(f"OpenAI API error: {response.status_code} {response.text}")
            raise RealtimeProviderError("Failed to create OpenAI session", response.text)

        data = response.json()
        if not data.get("id"):
            raise RealtimeProviderError("OpenAI session response has no id")

        logger.info("Successfully created ephemeral session")
        return data
