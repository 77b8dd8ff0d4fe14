"""HTTP client for OpenAI-compatible upstream endpoints."""

import json
from typing import Any, AsyncIterator

import httpx

from harmony_agent.config import UpstreamConfig
from harmony_agent.exceptions import UpstreamAPIError, UpstreamError
from harmony_agent.logging import get_logger

log = get_logger(__name__)


def _mask_key(api_key: str) -> str:
    return f"{api_key[:4]}..." if api_key else "NOT SET"


class UpstreamClient:
    """Direct HTTP calls to the responses and chat-completions endpoints."""

    def __init__(
        self,
        config: UpstreamConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize the upstream client.

        Args:
            config: Upstream section of the configuration
            transport: Optional httpx transport (used by tests)
        """
        self.config = config
        self.base_url = config.endpoint
        headers = {
            "Content-Type": "application/json",
            "User-Agent": config.user_agent,
        }
        if config.api_key:
            headers["Authorization"] = f"Bearer {config.api_key}"

        self.client = httpx.AsyncClient(
            timeout=config.timeout,
            follow_redirects=True,
            headers=headers,
            transport=transport,
        )
        log.info(
            "Upstream client initialized",
            base_url=self.base_url,
            responses_api=config.use_responses_api,
            api_key=_mask_key(config.api_key),
        )

    @staticmethod
    async def _raise_for_status(response: httpx.Response) -> None:
        if response.is_success:
            return
        error_text = (await response.aread()).decode("utf-8", errors="replace")
        raise UpstreamAPIError(
            f"Upstream API error {response.status_code}: {error_text}",
            status_code=response.status_code,
        )

    async def _post_json(self, path: str, body: dict[str, Any]) -> dict[str, Any]:
        url = f"{self.base_url}{path}"
        try:
            log.debug("Calling upstream", url=url, model=body.get("model"))
            response = await self.client.post(url, json=body)
            await self._raise_for_status(response)
            data = response.json()
        except httpx.HTTPError as e:
            raise UpstreamAPIError(f"Upstream HTTP error: {e}")
        except json.JSONDecodeError as e:
            raise UpstreamError(f"Upstream response decode error: {e}")
        if not isinstance(data, dict):
            raise UpstreamError("Upstream response is not a JSON object")
        return data

    async def _stream_sse(self, path: str, body: dict[str, Any]) -> AsyncIterator[dict[str, Any]]:
        """POST a streaming request and yield each decoded ``data:`` payload."""
        url = f"{self.base_url}{path}"
        try:
            async with self.client.stream("POST", url, json=body) as response:
                await self._raise_for_status(response)
                async for line in response.aiter_lines():
                    line = line.strip()
                    if not line.startswith("data:"):
                        continue
                    payload = line[len("data:"):].strip()
                    if not payload:
                        continue
                    if payload == "[DONE]":
                        break
                    try:
                        chunk = json.loads(payload)
                    except json.JSONDecodeError:
                        log.warning("Skipping undecodable stream chunk", preview=payload[:120])
                        continue
                    if isinstance(chunk, dict):
                        yield chunk
        except httpx.HTTPError as e:
            raise UpstreamAPIError(f"Upstream streaming error: {e}")

    async def create_response(self, body: dict[str, Any]) -> dict[str, Any]:
        """Non-streaming responses request."""
        return await self._post_json("/responses", body)

    def stream_response(self, body: dict[str, Any]) -> AsyncIterator[dict[str, Any]]:
        """Streaming responses request yielding typed events."""
        return self._stream_sse("/responses", body)

    def stream_chat_completion(self, body: dict[str, Any]) -> AsyncIterator[dict[str, Any]]:
        """Streaming chat-completions request yielding chunk objects."""
        return self._stream_sse("/chat/completions", body)

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()
