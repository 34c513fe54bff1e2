from datetime import datetime, timezone

import pytest

from wordparty.domain.games.models import Game, GameParticipant, Placeholder, StoryTemplate, WordSubmission
from wordparty.domain.games.repository import GameRepository, memory_store
from wordparty.domain.stories.assembly import assemble_story, excerpt
from wordparty.domain.stories.service import StoryNotFound, StoryService
from wordparty.infra.auth import AuthenticatedUser


def test_assemble_substitutes_every_position():
    body = "{0} saw {1}, then {0} left."
    assert assemble_story(body, {0: "Ann", 1: "a fox"}) == "Ann saw a fox, then Ann left."


def test_assemble_leaves_unknown_slots():
    assert assemble_story("{0} and {7}", {0: "one"}) == "one and {7}"


def test_excerpt_truncates_long_text():
    text = "word " * 60
    short = excerpt(text, limit=20)
    assert len(short) <= 20
    assert short.endswith("…")
    assert excerpt("tiny") == "tiny"


async def _seed_playing_game(game_id: str = "g1") -> GameRepository:
    await memory_store().add_template(
        StoryTemplate(
            id="tpl-two",
            category="test",
            title="Two Words",
            body="The {0} {1}.",
            placeholders=[Placeholder(0, "adjective"), Placeholder(1, "noun")],
        )
    )
    now = datetime.now(timezone.utc)
    repo = GameRepository()
    await repo.create_game(
        Game(id=game_id, room_id="r1", template_id="tpl-two", host_id="u1", status="waiting", created_at=now),
        [GameParticipant(game_id=game_id, user_id="u1", is_ready=True, joined_at=now)],
    )
    await repo.start_game(game_id, {"u1": [0, 1]}, now)
    return repo


def _word(game_id: str, position: int, word: str) -> WordSubmission:
    return WordSubmission(
        game_id=game_id,
        position=position,
        user_id="u1",
        word=word,
        created_at=datetime.now(timezone.utc),
    )


@pytest.mark.asyncio
async def test_incomplete_game_is_not_assembled():
    repo = await _seed_playing_game()
    await repo.insert_submission(_word("g1", 0, "brave"))
    service = StoryService(games=repo)
    assert await service.assemble_if_complete("g1") is None
    with pytest.raises(StoryNotFound):
        await service.get_completed_story("g1")
    assert (await repo.get_game("g1")).status == "playing"


@pytest.mark.asyncio
async def test_assembly_is_idempotent():
    repo = await _seed_playing_game()
    await repo.insert_submission(_word("g1", 0, "brave"))
    await repo.insert_submission(_word("g1", 1, "toaster"))
    service = StoryService(games=repo)

    first = await service.assemble_if_complete("g1")
    second = await service.assemble_if_complete("g1")
    assert first.story_text == "The brave toaster."
    assert second.story_text == first.story_text
    assert second.created_at == first.created_at
    assert (await repo.get_game("g1")).status == "finished"

    story = await service.get_completed_story("g1")
    assert story.category == "test"


@pytest.mark.asyncio
async def test_mark_images_generated_only_once():
    repo = await _seed_playing_game()
    await repo.insert_submission(_word("g1", 0, "brave"))
    await repo.insert_submission(_word("g1", 1, "toaster"))
    service = StoryService(games=repo)
    await service.assemble_if_complete("g1")

    assert await service.mark_images_generated("g1", ["http://img/1.png"]) is True
    assert await service.mark_images_generated("g1", ["http://img/2.png"]) is False
    story = await service.get_completed_story("g1")
    assert story.images_generated is True
    assert story.image_urls == ["http://img/1.png"]


@pytest.mark.asyncio
async def test_history_lists_finished_games_for_participant():
    repo = await _seed_playing_game()
    await repo.insert_submission(_word("g1", 0, "brave"))
    await repo.insert_submission(_word("g1", 1, "toaster"))
    service = StoryService(games=repo)
    await service.assemble_if_complete("g1")

    items = await service.history(AuthenticatedUser(id="u1"))
    assert [item.game_id for item in items] == ["g1"]
    assert items[0].title == "Two Words"
    assert items[0].image_url is None
    assert await service.history(AuthenticatedUser(id="stranger")) == []
