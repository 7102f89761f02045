from __future__ import annotations
import logging
from typing import Any, AsyncIterator, Dict, Optional, Tuple

import httpx

from .errors import UpstreamGenerationFailed
from .settings import settings

logger = logging.getLogger(__name__)


class RealtimeClient:
    """Mints short-lived realtime voice sessions for the browser client."""

    def __init__(self, api_key: Optional[str] = None, *, url: Optional[str] = None) -> None:
        self.api_key = api_key or settings.openai_api_key
        self.url = url or settings.openai_realtime_url
        self._client = httpx.AsyncClient(timeout=30.0)

    async def create_session(self, body: Dict[str, Any]) -> Tuple[int, Dict[str, Any]]:
        """POST the session request; returns the upstream status and decoded body."""
        if not self.api_key:
            raise UpstreamGenerationFailed("OPENAI_API_KEY is not configured")
        headers = {"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"}
        try:
            r = await self._client.post(self.url, headers=headers, json=body)
        except httpx.RequestError as e:
            logger.warning("[VOICE] Realtime session request failed: %s", e)
            raise UpstreamGenerationFailed("failed to mint ephemeral token") from e
        try:
            data = r.json()
        except ValueError:
            data = {"raw": r.text}
        if not isinstance(data, dict):
            data = {"raw": r.text}
        return r.status_code, data

    async def aclose(self) -> None:
        await self._client.aclose()


async def get_realtime_client() -> AsyncIterator[RealtimeClient]:
    client = RealtimeClient()
    try:
        yield client
    finally:
        await client.aclose()
