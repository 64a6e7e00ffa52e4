"""Backend calling the hosted generation functions over HTTP."""

from __future__ import annotations

import time
from typing import Any

import httpx
from pydantic import ValidationError

from photobook_schemas import GeneratedPageSet

from .base import (
    CaptionRequest,
    CaptionResponse,
    GenerationBackend,
    IllustrationRequest,
    IllustrationResponse,
    StoryRequest,
    StoryResponse,
)
from .config import BackendConfig
from .exceptions import (
    BackendError,
    BackendResponseError,
    QuotaExhaustedError,
    RateLimitedError,
)


class HttpFunctionsBackend(GenerationBackend):
    name = "functions"

    def __init__(self, config: BackendConfig, *, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self._config = config
        self._client = httpx.AsyncClient(
            base_url=config.base_url,
            timeout=config.settings.timeout_seconds,
            headers={"Authorization": f"Bearer {config.api_key}"},
            transport=transport,
        )

    async def generate_story(self, request: StoryRequest) -> StoryResponse:
        start = time.perf_counter()
        data = await self._post(
            self._config.settings.story_path,
            {"projectId": str(request.project_id)},
        )
        latency_ms = (time.perf_counter() - start) * 1000
        try:
            page_set = GeneratedPageSet.model_validate({"pages": data.get("pages")})
        except ValidationError as err:
            raise BackendResponseError("Story response missing a valid page list") from err
        if not page_set.pages:
            raise BackendResponseError("Story response contained no pages")
        return StoryResponse(
            pages=page_set.pages,
            model=str(data.get("model") or "unknown"),
            latency_ms=latency_ms,
        )

    async def generate_illustration(self, request: IllustrationRequest) -> IllustrationResponse:
        start = time.perf_counter()
        payload: dict[str, Any] = {
            "pageId": str(request.page_id),
            "projectId": str(request.project_id),
            "variant": request.variant,
        }
        if request.reference_paths:
            payload["referencePaths"] = list(request.reference_paths)
        data = await self._post(self._config.settings.illustration_path, payload)
        storage_path = data.get("storagePath")
        if not isinstance(storage_path, str) or not storage_path:
            raise BackendResponseError("Illustration response missing storagePath")
        return IllustrationResponse(
            storage_path=storage_path,
            generation_prompt=data.get("generationPrompt") or request.prompt,
            model=str(data.get("model") or "unknown"),
            latency_ms=(time.perf_counter() - start) * 1000,
        )

    async def describe_photo(self, request: CaptionRequest) -> CaptionResponse:
        data = await self._post(
            self._config.settings.caption_path,
            {"photoId": str(request.photo_id), "projectId": str(request.project_id)},
        )
        caption = data.get("caption")
        if not isinstance(caption, str) or not caption.strip():
            raise BackendResponseError("Caption response missing caption text")
        return CaptionResponse(caption=caption.strip())

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _post(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        try:
            response = await self._client.post(path, json=payload)
        except httpx.TransportError as err:
            raise BackendError(f"Transport failure calling {path}: {err}") from err

        if response.status_code == 429:
            raise RateLimitedError(f"Rate limited calling {path}")
        if response.status_code == 402:
            raise QuotaExhaustedError(f"Credits exhausted calling {path}")

        body = _safe_json(response)
        if response.is_error:
            message = body.get("error") if isinstance(body, dict) else None
            retryable = body.get("retryable", True) if isinstance(body, dict) else True
            raise BackendError(
                f"{path} failed with {response.status_code}: {message or response.text[:200]}",
                retryable=bool(retryable),
            )
        if not isinstance(body, dict):
            raise BackendResponseError(f"{path} returned a non-object payload")
        return body


def _safe_json(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return None
