import base64
from datetime import datetime, timezone

import httpx
import pytest

from wordparty.domain.illustrations.generator import (
    PROMPT_PREFIX,
    HttpImageGenerator,
    ImageGenerationError,
)
from wordparty.domain.illustrations.service import IllustrationService, IllustrationServiceError
from wordparty.domain.stories.models import CompletedStory
from wordparty.domain.stories.service import StoryRepository, StoryService
from wordparty.infra.object_store import LocalObjectStore, image_key

PNG = b"\x89PNG\r\n\x1a\nfake"


class FakeGenerator:
    def __init__(self, payload: bytes = PNG, error: Exception | None = None):
        self.payload = payload
        self.error = error
        self.prompts = []

    async def generate(self, prompt: str) -> bytes:
        self.prompts.append(prompt)
        if self.error is not None:
            raise self.error
        return self.payload


async def _story(game_id: str = "g1") -> None:
    await StoryRepository().insert(
        CompletedStory(
            game_id=game_id,
            story_text="The brave toaster.",
            title="Two Words",
            created_at=datetime.now(timezone.utc),
        )
    )


def _service(tmp_path, generator: FakeGenerator) -> tuple[IllustrationService, LocalObjectStore]:
    store = LocalObjectStore(tmp_path, bucket="story-images", public_base_url="http://cdn.test/storage")
    return IllustrationService(StoryService(), store, generator), store


@pytest.mark.asyncio
async def test_generates_uploads_and_marks_story(tmp_path):
    await _story()
    generator = FakeGenerator()
    service, store = _service(tmp_path, generator)

    outcome = await service.generate("g1", "The brave toaster.")

    assert outcome.skipped is False
    assert outcome.image_urls == ["http://cdn.test/storage/story-images/g1.png"]
    assert generator.prompts == [PROMPT_PREFIX + "The brave toaster."]
    assert (tmp_path / "story-images" / "g1.png").read_bytes() == PNG
    story = await StoryService().get_completed_story("g1")
    assert story.images_generated is True
    assert story.image_urls == outcome.image_urls
    payload = outcome.to_payload()
    assert payload["success"] is True
    assert payload["image_url"] == outcome.image_urls[0]


@pytest.mark.asyncio
async def test_second_call_is_skipped_without_generation(tmp_path):
    await _story()
    generator = FakeGenerator()
    service, _ = _service(tmp_path, generator)
    first = await service.generate("g1", "The brave toaster.")

    second = await service.generate("g1", "The brave toaster.")
    assert second.skipped is True
    assert second.image_urls == first.image_urls
    assert len(generator.prompts) == 1


@pytest.mark.asyncio
async def test_existing_object_is_reused(tmp_path):
    await _story()
    generator = FakeGenerator()
    service, store = _service(tmp_path, generator)
    await store.upload(image_key("g1"), PNG, content_type="image/png")

    outcome = await service.generate("g1", "The brave toaster.")
    assert outcome.image_urls == [store.public_url("g1.png")]
    assert generator.prompts == []
    assert (await StoryService().get_completed_story("g1")).images_generated is True


@pytest.mark.asyncio
@pytest.mark.parametrize("game_id, text", [("", "story"), ("g1", "")])
async def test_missing_input_is_rejected(tmp_path, game_id, text):
    service, _ = _service(tmp_path, FakeGenerator())
    with pytest.raises(IllustrationServiceError) as excinfo:
        await service.generate(game_id, text)
    assert excinfo.value.status_code == 400


@pytest.mark.asyncio
async def test_unknown_story(tmp_path):
    service, _ = _service(tmp_path, FakeGenerator())
    with pytest.raises(IllustrationServiceError) as excinfo:
        await service.generate("nope", "text")
    assert excinfo.value.code == "story_not_found"
    assert excinfo.value.status_code == 404


@pytest.mark.asyncio
async def test_generator_failure_leaves_story_untouched(tmp_path):
    await _story()
    service, _ = _service(tmp_path, FakeGenerator(error=ImageGenerationError("image_model_timeout", status_code=504)))
    with pytest.raises(ImageGenerationError):
        await service.generate("g1", "The brave toaster.")
    story = await StoryService().get_completed_story("g1")
    assert story.images_generated is False
    assert story.image_urls == []


@pytest.mark.asyncio
async def test_http_generator_accepts_raw_image():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.headers["Authorization"] == "Bearer secret"
        return httpx.Response(200, content=PNG, headers={"content-type": "image/png"})

    generator = HttpImageGenerator("http://model.test/gen", api_key="secret", transport=httpx.MockTransport(handler))
    assert await generator.generate("prompt") == PNG


@pytest.mark.asyncio
async def test_http_generator_decodes_json_images():
    encoded = base64.b64encode(PNG).decode()

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"images": [{"data": encoded}]})

    generator = HttpImageGenerator("http://model.test/gen", api_key="", transport=httpx.MockTransport(handler))
    assert await generator.generate("prompt") == PNG


@pytest.mark.asyncio
async def test_http_generator_errors():
    def empty(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"images": []})

    def broken(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503)

    with pytest.raises(ImageGenerationError) as excinfo:
        await HttpImageGenerator("http://m.test", api_key="", transport=httpx.MockTransport(empty)).generate("p")
    assert excinfo.value.code == "no_images_generated"

    with pytest.raises(ImageGenerationError) as excinfo:
        await HttpImageGenerator("http://m.test", api_key="", transport=httpx.MockTransport(broken)).generate("p")
    assert excinfo.value.code == "image_model_http_503"


@pytest.mark.asyncio
async def test_http_generator_requires_url(monkeypatch):
    from wordparty.settings import settings

    monkeypatch.setattr(settings, "image_model_url", None)
    with pytest.raises(ImageGenerationError) as excinfo:
        await HttpImageGenerator().generate("p")
    assert excinfo.value.code == "image_model_not_configured"
