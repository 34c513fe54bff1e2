import asyncio

import pytest
from httpx import ASGITransport

from wordparty.client.api import ApiError, WordPartyClient, _normalise_story
from wordparty.client.realtime import SocketChangeSource
from wordparty.client.views import ReadyCheckView
from wordparty.domain.games.models import Placeholder, StoryTemplate
from wordparty.domain.games.repository import memory_store
from wordparty.infra.changefeed import change_feed
from wordparty.main import app


def _client(user_id: str, username: str) -> WordPartyClient:
    return WordPartyClient("http://testserver", user_id=user_id, username=username, transport=ASGITransport(app=app))


@pytest.mark.asyncio
async def test_two_players_complete_a_story():
    await memory_store().add_template(
        StoryTemplate(
            id="tpl-client",
            category="client",
            title="Client Tale",
            body="{0} {1}!",
            placeholders=[Placeholder(0, "name"), Placeholder(1, "verb")],
        )
    )
    async with _client("host-1", "Hana") as host, _client("guest-1", "Gus") as guest:
        room = await host.create_room()
        await guest.join_room(room["room_code"].lower())
        game = await host.create_game(room["id"], "client")

        started = asyncio.Event()
        async with ReadyCheckView(guest, change_feed, game["id"], on_started=started.set, poll_interval=60) as view:
            assert view.state.ready_count == 1
            await guest.mark_ready(game["id"])
            await asyncio.wait_for(started.wait(), timeout=1)

        detail = await guest.get_game(game["id"])
        positions = {p["user_id"]: p["words_assigned"] for p in detail["participants"]}
        assert positions == {"host-1": [0], "guest-1": [1]}

        await host.submit_word(game["id"], 0, "Gertrude")
        await guest.submit_word(game["id"], 1, "danced")
        story = await guest.get_completed_story(game["id"])
        assert story["story_text"] == "Gertrude danced!"
        assert story["image_urls"] == []
        assert [item["game_id"] for item in await host.story_history()] == [game["id"]]
        assert [r["id"] for r in await guest.my_rooms()] == [room["id"]]


@pytest.mark.asyncio
async def test_missing_resources_map_to_none():
    async with _client("u1", "U") as client:
        assert await client.get_game("missing") is None
        assert await client.list_game_participants("missing") == []
        assert await client.get_completed_story("missing") is None
        with pytest.raises(ApiError) as excinfo:
            await client.join_room("ZZZZ9999")
        assert excinfo.value.status_code == 404
        assert excinfo.value.code == "room_not_found"


def test_normalise_story_flattens_nested_game():
    story = _normalise_story(
        {
            "game_id": "g1",
            "story_text": "x",
            "images_generated": None,
            "image_urls": None,
            "game": [{"template": [{"title": "Nested", "category": "silly"}]}],
        }
    )
    assert story["title"] == "Nested"
    assert story["category"] == "silly"
    assert story["image_urls"] == []
    assert story["images_generated"] is False
    assert "game" not in story


@pytest.mark.asyncio
async def test_socket_source_republishes_server_changes():
    source = SocketChangeSource("http://testserver", user_id="u1")
    seen = []

    async def handler(change):
        seen.append((change.event, change.row["user_id"]))

    source.subscribe("game_participants", handler, event="DELETE", filters={"game_id": "g1"})
    await source._on_change({"table": "game_participants", "event": "DELETE", "old": {"game_id": "g1", "user_id": "h"}})
    await source._on_change({"table": "game_participants", "event": "DELETE", "old": {"game_id": "g2", "user_id": "x"}})
    await source._on_change({"event": "DELETE"})
    await source._feed.flush()
    await source._feed.reset()

    assert seen == [("DELETE", "h")]
    assert ("game_join", "g1") in source._joined
