from __future__ import annotations
import logging
from typing import Any, AsyncIterator, Callable, Dict, List, Optional

import httpx

from .errors import UpstreamGenerationFailed
from .llm_json import ModelResult, Malformed, parse_model_json
from .settings import settings

logger = logging.getLogger(__name__)


class GeminiClient:
    def __init__(self, api_key: Optional[str] = None, *, base_url: Optional[str] = None, model: Optional[str] = None) -> None:
        # A missing key is reported per call so flows with a fallback policy keep working
        self.api_key = api_key or settings.gemini_api_key
        self.model = model or settings.gemini_model
        self.provider = settings.gemini_provider
        if self.provider == "vertex":
            region = settings.vertex_region
            project = settings.vertex_project or "placeholder-project"
            self._base_template = (
                f"https://{region}-aiplatform.googleapis.com/v1/projects/{project}/locations/{region}/publishers/google/models/{{model}}:generateContent"
            )
            self._auth_in_query = False
        else:
            self._base_template = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"
            self._auth_in_query = True
        self._base_url_override = base_url
        self._client = httpx.AsyncClient(timeout=settings.gemini_timeout_seconds)
        self._fallback_client: Optional[httpx.AsyncClient] = None
        self._fallback_enabled = bool(settings.openrouter_api_key)
        self._openrouter_headers = {
            "Authorization": f"Bearer {settings.openrouter_api_key}" if settings.openrouter_api_key else "",
            "Content-Type": "application/json",
            "HTTP-Referer": settings.openrouter_referer,
            "X-Title": settings.openrouter_title,
        }
        if self._fallback_enabled:
            self._fallback_client = httpx.AsyncClient(timeout=settings.gemini_timeout_seconds)

    def _url_for(self, model: Optional[str]) -> str:
        if self._base_url_override:
            return self._base_url_override
        return self._base_template.format(model=model or self.model)

    async def generate(self, prompt: str, *, json_mode: bool = False, max_output_tokens: Optional[int] = None) -> str:
        payload: Dict[str, Any] = {"contents": [{"role": "user", "parts": [{"text": prompt}]}]}
        return await self._post_payload(
            payload,
            json_mode=json_mode,
            max_output_tokens=max_output_tokens,
            fallback_prompt=prompt,
        )

    async def generate_multimodal(
        self,
        parts: List[Dict[str, Any]],
        *,
        model: Optional[str] = None,
        json_mode: bool = False,
    ) -> str:
        payload: Dict[str, Any] = {"contents": [{"role": "user", "parts": parts}]}
        # OpenRouter fallback is text-only, so image prompts never fall back
        return await self._post_payload(payload, model=model, json_mode=json_mode, fallback_prompt=None)

    async def generate_json(
        self,
        prompt: str,
        validate: Optional[Callable[[Any], Any]] = None,
        *,
        max_output_tokens: Optional[int] = None,
    ) -> ModelResult:
        """Ask for JSON and return Success/Malformed; transport failures come back as Malformed too."""
        try:
            raw = await self.generate(prompt, json_mode=True, max_output_tokens=max_output_tokens)
        except UpstreamGenerationFailed as err:
            return Malformed("", err.message)
        return parse_model_json(raw, validate)

    async def _post_payload(
        self,
        payload: Dict[str, Any],
        *,
        model: Optional[str] = None,
        json_mode: bool = False,
        max_output_tokens: Optional[int] = None,
        fallback_prompt: Optional[str],
    ) -> str:
        params: Dict[str, Any] = {}
        headers: Dict[str, str] = {}
        if self._auth_in_query:
            params["key"] = self.api_key
        else:
            headers["x-goog-api-key"] = self.api_key
        generation_config: Dict[str, Any] = {}
        if json_mode:
            generation_config["responseMimeType"] = "application/json"
        if max_output_tokens:
            generation_config["maxOutputTokens"] = int(max_output_tokens)
        if generation_config:
            payload = {**payload, "generationConfig": generation_config}
        last_error: Optional[Exception] = None
        r: Optional[httpx.Response] = None
        if not self.api_key:
            last_error = UpstreamGenerationFailed("GEMINI_API_KEY is not configured")
        else:
            try:
                r = await self._client.post(self._url_for(model), params=params, headers=headers, json=payload)
                r.raise_for_status()
            except httpx.HTTPStatusError as http_err:
                logger.warning("Gemini returned HTTP %s", http_err.response.status_code)
                last_error = http_err
            except httpx.RequestError as net_err:
                logger.warning("Gemini request failed: %s", net_err)
                last_error = net_err
        if last_error is None and r is not None:
            try:
                data = r.json()
                parts = data["candidates"][0]["content"]["parts"]
                return "".join(part.get("text", "") for part in parts)
            except (ValueError, KeyError, IndexError, TypeError):
                last_error = UpstreamGenerationFailed("unexpected Gemini response")
        if not self._fallback_enabled or fallback_prompt is None:
            raise UpstreamGenerationFailed("model call failed") from last_error
        return await self._fallback_generate(fallback_prompt, last_error)

    async def aclose(self) -> None:
        await self._client.aclose()
        if self._fallback_client is not None:
            await self._fallback_client.aclose()

    async def _fallback_generate(self, prompt: str, primary_error: Optional[Exception]) -> str:
        headers = {k: v for k, v in self._openrouter_headers.items() if v}
        payload: Dict[str, Any] = {
            "model": settings.openrouter_model,
            "messages": [{"role": "user", "content": prompt}],
        }
        try:
            r = await self._fallback_client.post(settings.openrouter_base_url, headers=headers, json=payload)
            r.raise_for_status()
            data = r.json()
            return data["choices"][0]["message"]["content"] or ""
        except (httpx.HTTPError, ValueError, KeyError, IndexError, TypeError) as fallback_err:
            logger.warning("OpenRouter fallback failed after Gemini error (%s): %s", primary_error, fallback_err)
            raise UpstreamGenerationFailed("model call failed") from fallback_err


async def get_llm() -> AsyncIterator[GeminiClient]:
    client = GeminiClient()
    try:
        yield client
    finally:
        await client.aclose()
