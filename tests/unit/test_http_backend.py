"""Tests for the HTTP functions backend using httpx.MockTransport."""

import json
from uuid import uuid4

import httpx
import pytest

from photobook_providers import (
    BackendConfig,
    BackendError,
    BackendResponseError,
    CaptionRequest,
    HttpFunctionsBackend,
    IllustrationRequest,
    QuotaExhaustedError,
    RateLimitedError,
    StoryRequest,
)


pytestmark = pytest.mark.anyio("asyncio")

CONFIG = BackendConfig(name="functions", base_url="https://functions.test", api_key="secret")


def _backend(handler) -> HttpFunctionsBackend:
    return HttpFunctionsBackend(CONFIG, transport=httpx.MockTransport(handler))


async def test_story_request_and_response_mapping() -> None:
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["auth"] = request.headers["Authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(
            200,
            json={
                "model": "story-1",
                "pages": [
                    {"page_number": 2, "page_type": "story", "text_content": "Then"},
                    {"page_number": 1, "page_type": "cover", "text_content": "Title"},
                ],
            },
        )

    project_id = uuid4()
    backend = _backend(handler)
    response = await backend.generate_story(StoryRequest(project_id=project_id))
    await backend.aclose()

    assert seen == {
        "path": "/generate-story",
        "auth": "Bearer secret",
        "body": {"projectId": str(project_id)},
    }
    assert [page.page_number for page in response.pages] == [1, 2]
    assert response.model == "story-1"


async def test_illustration_payload_includes_variant_and_references() -> None:
    bodies = []

    def handler(request: httpx.Request) -> httpx.Response:
        bodies.append(json.loads(request.content))
        return httpx.Response(200, json={"storagePath": "illustrations/p/1.png"})

    backend = _backend(handler)
    request = IllustrationRequest(
        project_id=uuid4(), page_id=uuid4(), variant=True, prompt="lake", reference_paths=("a.jpg",)
    )
    response = await backend.generate_illustration(request)
    await backend.aclose()

    assert bodies[0]["variant"] is True
    assert bodies[0]["referencePaths"] == ["a.jpg"]
    assert response.storage_path == "illustrations/p/1.png"
    assert response.generation_prompt == "lake"


@pytest.mark.parametrize(
    ("status", "body", "error", "retryable"),
    [
        (429, {"error": "slow down"}, RateLimitedError, True),
        (402, {"error": "no credits"}, QuotaExhaustedError, False),
        (500, {"error": "boom"}, BackendError, True),
        (500, {"error": "bad input", "retryable": False}, BackendError, False),
    ],
)
async def test_error_statuses_map_to_taxonomy(status, body, error, retryable) -> None:
    backend = _backend(lambda request: httpx.Response(status, json=body))
    with pytest.raises(error) as excinfo:
        await backend.generate_illustration(IllustrationRequest(project_id=uuid4(), page_id=uuid4()))
    await backend.aclose()
    assert excinfo.value.retryable is retryable


async def test_malformed_payloads_raise_response_error() -> None:
    backend = _backend(lambda request: httpx.Response(200, json={"pages": [{"page_number": 0}]}))
    with pytest.raises(BackendResponseError):
        await backend.generate_story(StoryRequest(project_id=uuid4()))

    backend = _backend(lambda request: httpx.Response(200, text="not json"))
    with pytest.raises(BackendResponseError):
        await backend.describe_photo(CaptionRequest(project_id=uuid4(), photo_id=uuid4(), storage_path="x.jpg"))
    await backend.aclose()


async def test_transport_errors_are_retryable() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    backend = _backend(handler)
    with pytest.raises(BackendError) as excinfo:
        await backend.describe_photo(CaptionRequest(project_id=uuid4(), photo_id=uuid4(), storage_path="x.jpg"))
    await backend.aclose()
    assert excinfo.value.retryable
