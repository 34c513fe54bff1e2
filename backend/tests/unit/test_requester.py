import asyncio
import json

import httpx
import pytest

from wordparty.client.local_state import ClientStateStore
from wordparty.client.requester import (
    AUTH,
    GENERIC,
    SERVER,
    TIMEOUT,
    CooldownError,
    IllustrationError,
    IllustrationRequester,
    backoff_seconds,
    classify_status,
)

URL = "http://api.test/functions/generate-story-images"


class FakeStories:
    def __init__(self):
        self.story = {"game_id": "g1", "images_generated": False, "image_urls": []}

    async def get_completed_story(self, game_id):
        return dict(self.story) if game_id == "g1" else None


class FakeFunction:
    """Answers with queued status codes; success marks the story illustrated."""

    def __init__(self, stories: FakeStories, statuses=(200,)):
        self.stories = stories
        self.statuses = list(statuses)
        self.calls = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        status = self.statuses.pop(0) if self.statuses else 200
        if status != 200:
            return httpx.Response(status, json={"error": "nope"})
        url = "http://cdn.test/g1.png"
        self.stories.story.update(images_generated=True, image_urls=[url])
        return httpx.Response(200, json={"success": True, "image_urls": [url]})


async def _token():
    return "token-123"


def _requester(tmp_path, stories, handler, **kwargs):
    delays = []

    async def sleep(seconds):
        delays.append(seconds)

    kwargs.setdefault("token_provider", _token)
    kwargs.setdefault("timeout_seconds", 5)
    requester = IllustrationRequester(
        stories,
        state=ClientStateStore(tmp_path / "state.json"),
        function_url=URL,
        transport=httpx.MockTransport(handler),
        max_attempts=3,
        backoff_base_ms=2000,
        cooldown_seconds=30,
        sleep=sleep,
        **kwargs,
    )
    return requester, delays


@pytest.mark.parametrize(
    "status, category",
    [(401, AUTH), (403, AUTH), (408, TIMEOUT), (504, TIMEOUT), (500, SERVER), (503, SERVER), (400, GENERIC)],
)
def test_classify_status(status, category):
    assert classify_status(status) == category


def test_backoff_doubles():
    assert [backoff_seconds(n, 2000) for n in (1, 2, 3)] == [2.0, 4.0, 8.0]


@pytest.mark.asyncio
async def test_success_first_try_sends_payload(tmp_path):
    stories = FakeStories()
    function = FakeFunction(stories)
    requester, delays = _requester(tmp_path, stories, function)

    result = await requester.ensure_illustration("g1", "A story.")
    await requester.aclose()

    assert result.image_urls == ["http://cdn.test/g1.png"]
    assert result.retry_attempt == 1
    assert delays == []
    request = function.calls[0]
    assert request.headers["Authorization"] == "Bearer token-123"
    assert json.loads(request.content) == {"gameId": "g1", "storyText": "A story."}


@pytest.mark.asyncio
async def test_concurrent_requests_share_one_call(tmp_path):
    stories = FakeStories()
    function = FakeFunction(stories)
    requester, _ = _requester(tmp_path, stories, function)

    first, second = await asyncio.gather(
        requester.ensure_illustration("g1", "A story."),
        requester.ensure_illustration("g1", "A story."),
    )
    await requester.aclose()

    assert len(function.calls) == 1
    assert first.image_urls == second.image_urls


@pytest.mark.asyncio
async def test_already_generated_story_is_not_requested(tmp_path):
    stories = FakeStories()
    function = FakeFunction(stories)
    requester, _ = _requester(tmp_path, stories, function)
    await requester.ensure_illustration("g1", "A story.")

    again = await requester.ensure_illustration("g1", "A story.")
    await requester.aclose()

    assert again.skipped is True
    assert again.image_urls == ["http://cdn.test/g1.png"]
    assert len(function.calls) == 1


@pytest.mark.asyncio
async def test_retries_with_backoff_then_succeeds(tmp_path):
    stories = FakeStories()
    function = FakeFunction(stories, statuses=(500, 503, 200))
    requester, delays = _requester(tmp_path, stories, function)

    result = await requester.ensure_illustration("g1", "A story.")
    await requester.aclose()

    assert result.retry_attempt == 3
    assert delays == [2.0, 4.0]
    assert len(function.calls) == 3


@pytest.mark.asyncio
async def test_exhausted_attempts_raise_and_leave_story_ungenerated(tmp_path):
    stories = FakeStories()
    function = FakeFunction(stories, statuses=(500, 500, 500))
    requester, delays = _requester(tmp_path, stories, function)

    with pytest.raises(IllustrationError) as excinfo:
        await requester.ensure_illustration("g1", "A story.")
    await requester.aclose()

    assert excinfo.value.category == SERVER
    assert excinfo.value.attempts == 3
    assert delays == [2.0, 4.0]
    assert stories.story["images_generated"] is False


@pytest.mark.asyncio
async def test_auth_failure_is_not_retried(tmp_path):
    stories = FakeStories()
    function = FakeFunction(stories, statuses=(401,))
    requester, delays = _requester(tmp_path, stories, function)

    with pytest.raises(IllustrationError) as excinfo:
        await requester.ensure_illustration("g1", "A story.")
    await requester.aclose()

    assert excinfo.value.category == AUTH
    assert excinfo.value.attempts == 1
    assert len(function.calls) == 1
    assert delays == []


@pytest.mark.asyncio
async def test_missing_token_is_auth_failure(tmp_path):
    stories = FakeStories()
    function = FakeFunction(stories)

    async def no_token():
        return None

    requester, _ = _requester(tmp_path, stories, function, token_provider=no_token)
    with pytest.raises(IllustrationError) as excinfo:
        await requester.ensure_illustration("g1", "A story.")
    await requester.aclose()
    assert excinfo.value.category == AUTH
    assert function.calls == []


@pytest.mark.asyncio
async def test_story_illustrated_elsewhere_stops_retrying(tmp_path):
    stories = FakeStories()

    def handler(request):
        # another session finishes while this attempt fails
        stories.story.update(images_generated=True, image_urls=["http://cdn.test/other.png"])
        return httpx.Response(500)

    requester, delays = _requester(tmp_path, stories, handler)
    result = await requester.ensure_illustration("g1", "A story.")
    await requester.aclose()

    assert result.skipped is True
    assert result.image_urls == ["http://cdn.test/other.png"]
    assert delays == [2.0]


@pytest.mark.asyncio
async def test_exhausted_failure_is_reported_after_reopen(tmp_path):
    stories = FakeStories()
    failing = FakeFunction(stories, statuses=(500, 500, 500))
    requester, _ = _requester(tmp_path, stories, failing)
    with pytest.raises(IllustrationError):
        await requester.ensure_illustration("g1", "A story.")
    await requester.aclose()

    fresh_function = FakeFunction(stories)
    reopened, _ = _requester(tmp_path, stories, fresh_function)
    with pytest.raises(IllustrationError) as excinfo:
        await reopened.ensure_illustration("g1", "A story.")
    await reopened.aclose()

    assert excinfo.value.category == SERVER
    assert fresh_function.calls == []


@pytest.mark.asyncio
async def test_attempt_left_running_elsewhere_is_pending(tmp_path):
    stories = FakeStories()
    ClientStateStore(tmp_path / "state.json").mark_attempted("g1")
    function = FakeFunction(stories)
    requester, _ = _requester(tmp_path, stories, function)
    result = await requester.ensure_illustration("g1", "A story.")
    await requester.aclose()

    assert result.pending is True
    assert function.calls == []


@pytest.mark.asyncio
async def test_each_attempt_is_cut_off_at_the_timeout(tmp_path):
    stories = FakeStories()
    calls = []

    async def handler(request):
        calls.append(request)
        await asyncio.sleep(5)
        return httpx.Response(200, json={"success": True, "image_urls": ["x"]})

    requester, delays = _requester(tmp_path, stories, handler, timeout_seconds=0.05)
    with pytest.raises(IllustrationError) as excinfo:
        await asyncio.wait_for(requester.ensure_illustration("g1", "A story."), timeout=2)
    await requester.aclose()

    assert excinfo.value.category == TIMEOUT
    assert excinfo.value.attempts == 3
    assert len(calls) == 3
    assert delays == [2.0, 4.0]


@pytest.mark.asyncio
async def test_transport_timeout_is_classified_as_timeout(tmp_path):
    stories = FakeStories()

    def handler(request):
        raise httpx.ReadTimeout("read timed out", request=request)

    requester, delays = _requester(tmp_path, stories, handler)
    with pytest.raises(IllustrationError) as excinfo:
        await requester.ensure_illustration("g1", "A story.")
    await requester.aclose()

    assert excinfo.value.category == TIMEOUT
    assert delays == [2.0, 4.0]


@pytest.mark.asyncio
async def test_manual_retry_cooldown(tmp_path):
    stories = FakeStories()
    function = FakeFunction(stories, statuses=(500, 500, 500, 500, 500, 500))
    requester, _ = _requester(tmp_path, stories, function)
    with pytest.raises(IllustrationError):
        await requester.ensure_illustration("g1", "A story.")

    with pytest.raises(IllustrationError):
        await requester.retry_manually("g1", "A story.", now=1000.0)

    with pytest.raises(CooldownError) as excinfo:
        await requester.retry_manually("g1", "A story.", now=1010.0)
    assert excinfo.value.remaining_seconds == 20

    result = await requester.retry_manually("g1", "A story.", now=1031.0)
    await requester.aclose()
    assert result.image_urls == ["http://cdn.test/g1.png"]
    assert len(function.calls) == 7


@pytest.mark.asyncio
async def test_cancel_aborts_inflight_request(tmp_path):
    stories = FakeStories()
    started = asyncio.Event()

    async def handler(request):
        started.set()
        await asyncio.sleep(60)
        return httpx.Response(200, json={"success": True, "image_urls": ["x"]})

    requester, _ = _requester(tmp_path, stories, handler)
    pending = asyncio.create_task(requester.ensure_illustration("g1", "A story."))
    await asyncio.wait_for(started.wait(), timeout=1)
    assert requester.in_progress("g1")

    await requester.cancel("g1")
    with pytest.raises(asyncio.CancelledError):
        await pending
    assert not requester.in_progress("g1")
    assert not ClientStateStore(tmp_path / "state.json").was_attempted("g1")
    await requester.aclose()
