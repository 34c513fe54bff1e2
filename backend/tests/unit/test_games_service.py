from datetime import timedelta

import pytest
import pytest_asyncio

from wordparty.domain.games import policy
from wordparty.domain.games.models import Placeholder, StoryTemplate
from wordparty.domain.games.repository import GameRepository, memory_store
from wordparty.domain.games.service import GameService
from wordparty.domain.rooms.schemas import JoinByCodeRequest
from wordparty.domain.rooms.service import RoomService
from wordparty.domain.stories.service import StoryService
from wordparty.infra.auth import AuthenticatedUser
from wordparty.infra.changefeed import change_feed
from wordparty.settings import settings

HOST = AuthenticatedUser(id="host", username="Host")
ALICE = AuthenticatedUser(id="alice", username="Alice")
BOB = AuthenticatedUser(id="bob", username="Bob")


@pytest_asyncio.fixture
async def template():
    tpl = StoryTemplate(
        id="tpl-test",
        category="test",
        title="Test Tale",
        body="{0} met a {1} {2} near the {3} and said {4}.",
        placeholders=[
            Placeholder(0, "name"),
            Placeholder(1, "adjective"),
            Placeholder(2, "noun"),
            Placeholder(3, "noun"),
            Placeholder(4, "exclamation"),
        ],
    )
    await memory_store().add_template(tpl)
    return tpl


async def _room_with(*guests: AuthenticatedUser) -> str:
    rooms = RoomService()
    summary = await rooms.create_room(HOST)
    for guest in guests:
        await rooms.join_by_code(guest, JoinByCodeRequest(room_code=summary.room_code))
    return summary.id


def _service() -> GameService:
    return GameService()


@pytest.mark.asyncio
async def test_create_game_copies_participants_with_host_ready(template):
    room_id = await _room_with(ALICE, BOB)
    game = await _service().create_game(HOST, room_id, "test")
    assert game.status == "waiting"
    assert game.template_id == template.id
    ready = {p.user_id: p.is_ready for p in game.participants}
    assert ready == {"host": True, "alice": False, "bob": False}
    assert all(p.words_assigned == [] for p in game.participants)


@pytest.mark.asyncio
async def test_only_host_can_create(template):
    room_id = await _room_with(ALICE)
    with pytest.raises(policy.GamePolicyError) as excinfo:
        await _service().create_game(ALICE, room_id, "test")
    assert excinfo.value.status_code == 403


@pytest.mark.asyncio
async def test_create_requires_templates_in_category():
    room_id = await _room_with(ALICE)
    with pytest.raises(policy.GamePolicyError) as excinfo:
        await _service().create_game(HOST, room_id, "no-such-category")
    assert excinfo.value.code == "no_templates"
    assert excinfo.value.status_code == 404


@pytest.mark.asyncio
async def test_create_in_missing_room():
    with pytest.raises(policy.GamePolicyError) as excinfo:
        await _service().create_game(HOST, "missing", "test")
    assert excinfo.value.code == "room_not_found"


@pytest.mark.asyncio
async def test_single_player_game_starts_immediately(template):
    room_id = await _room_with()
    game = await _service().create_game(HOST, room_id, "test")
    assert game.status == "playing"
    assert game.started_at is not None
    assert game.participants[0].words_assigned == [0, 1, 2, 3, 4]


@pytest.mark.asyncio
async def test_all_ready_starts_game_and_allocates(template):
    service = _service()
    room_id = await _room_with(ALICE, BOB)
    game = await service.create_game(HOST, room_id, "test")

    after_alice = await service.mark_ready(ALICE, game.id)
    assert after_alice.status == "waiting"

    started = await service.mark_ready(BOB, game.id)
    assert started.status == "playing"
    assigned = {p.user_id: p.words_assigned for p in started.participants}
    assert assigned == {"host": [0, 1], "alice": [2, 3], "bob": [4]}


@pytest.mark.asyncio
async def test_mark_ready_twice_is_idempotent(template):
    service = _service()
    room_id = await _room_with(ALICE, BOB)
    game = await service.create_game(HOST, room_id, "test")
    updates = []

    async def handler(change):
        updates.append(change.row["user_id"])

    change_feed.subscribe("game_participants", handler, event="UPDATE", filters={"game_id": game.id})
    await service.mark_ready(ALICE, game.id)
    detail = await service.mark_ready(ALICE, game.id)
    await change_feed.flush()

    alice = next(p for p in detail.participants if p.user_id == "alice")
    assert alice.is_ready is True
    assert detail.status == "waiting"
    assert updates == ["alice"]


@pytest.mark.asyncio
async def test_repeated_ready_after_quorum_start_returns_playing_game(template):
    service = _service()
    room_id = await _room_with(ALICE)
    game = await service.create_game(HOST, room_id, "test")

    started = await service.mark_ready(ALICE, game.id)
    assert started.status == "playing"

    again = await service.mark_ready(ALICE, game.id)
    alice = next(p for p in again.participants if p.user_id == "alice")
    assert again.status == "playing"
    assert alice.is_ready is True
    assert alice.words_assigned == next(p for p in started.participants if p.user_id == "alice").words_assigned


@pytest.mark.asyncio
async def test_ready_requires_participant(template):
    service = _service()
    room_id = await _room_with(ALICE)
    game = await service.create_game(HOST, room_id, "test")
    with pytest.raises(policy.GamePolicyError) as excinfo:
        await service.mark_ready(BOB, game.id)
    assert excinfo.value.status_code == 403


@pytest.mark.asyncio
async def test_decline_removes_participant_and_can_trigger_start(template):
    service = _service()
    room_id = await _room_with(ALICE, BOB)
    game = await service.create_game(HOST, room_id, "test")
    await service.mark_ready(ALICE, game.id)
    await service.decline(BOB, game.id)

    detail = await service.get_game(HOST, game.id)
    assert detail.status == "playing"
    assert [p.user_id for p in detail.participants] == ["host", "alice"]


@pytest.mark.asyncio
async def test_host_cannot_decline(template):
    service = _service()
    room_id = await _room_with(ALICE)
    game = await service.create_game(HOST, room_id, "test")
    with pytest.raises(policy.GamePolicyError) as excinfo:
        await service.decline(HOST, game.id)
    assert excinfo.value.code == "forbidden"


@pytest.mark.asyncio
async def test_cancel_waiting_game_removes_everything(template):
    service = _service()
    repo = GameRepository()
    room_id = await _room_with(ALICE, BOB)
    game = await service.create_game(HOST, room_id, "test")

    response = await service.cancel_game(HOST, game.id)
    assert response.room_code is not None
    assert await repo.get_game(game.id) is None
    assert await repo.list_participants(game.id) == []


@pytest.mark.asyncio
async def test_cancel_playing_game_fails_without_changes(template):
    service = _service()
    repo = GameRepository()
    room_id = await _room_with(ALICE)
    game = await service.create_game(HOST, room_id, "test")
    await service.mark_ready(ALICE, game.id)
    before = await repo.list_participants(game.id)

    with pytest.raises(policy.GamePolicyError) as excinfo:
        await service.cancel_game(HOST, game.id)
    assert excinfo.value.code == "invalid_state"
    assert excinfo.value.status_code == 409

    after_game = await repo.get_game(game.id)
    assert after_game.status == "playing"
    assert await repo.list_participants(game.id) == before


@pytest.mark.asyncio
async def test_cancel_by_non_host_forbidden(template):
    service = _service()
    room_id = await _room_with(ALICE)
    game = await service.create_game(HOST, room_id, "test")
    with pytest.raises(policy.GamePolicyError) as excinfo:
        await service.cancel_game(ALICE, game.id)
    assert excinfo.value.status_code == 403
    assert await GameRepository().get_game(game.id) is not None


@pytest.mark.asyncio
async def test_force_start_blocked_during_countdown(template):
    service = _service()
    room_id = await _room_with(ALICE)
    game = await service.create_game(HOST, room_id, "test")
    with pytest.raises(policy.GamePolicyError) as excinfo:
        await service.force_start(HOST, game.id, now=game.created_at + timedelta(seconds=10))
    assert excinfo.value.code == "countdown_active"
    assert excinfo.value.retry_after == settings.force_start_countdown_seconds - 10


@pytest.mark.asyncio
async def test_force_start_removes_exactly_unready(template):
    service = _service()
    repo = GameRepository()
    room_id = await _room_with(ALICE, BOB)
    game = await service.create_game(HOST, room_id, "test")
    await service.mark_ready(ALICE, game.id)

    response = await service.force_start(HOST, game.id, now=game.created_at + timedelta(seconds=31))
    assert response.removed_user_ids == ["bob"]
    remaining = await repo.list_participants(game.id)
    assert [p.user_id for p in remaining] == ["host", "alice"]
    assert all(p.is_ready for p in remaining)
    assert response.game.status == "playing"


@pytest.mark.asyncio
async def test_force_start_host_only(template):
    service = _service()
    room_id = await _room_with(ALICE)
    game = await service.create_game(HOST, room_id, "test")
    with pytest.raises(policy.GamePolicyError) as excinfo:
        await service.force_start(ALICE, game.id, now=game.created_at + timedelta(seconds=60))
    assert excinfo.value.code == "forbidden"


@pytest.mark.asyncio
async def test_host_leaving_publishes_delete_with_old_row(template):
    service = _service()
    room_id = await _room_with(ALICE)
    game = await service.create_game(HOST, room_id, "test")
    deleted = []

    async def handler(change):
        deleted.append(change.old["user_id"])

    change_feed.subscribe("game_participants", handler, event="DELETE", filters={"game_id": game.id})
    await service.leave_game(HOST, game.id)
    await change_feed.flush()
    assert deleted == ["host"]
    detail = await service.get_game(ALICE, game.id)
    assert detail.status == "waiting"


async def _playing_game(template) -> str:
    service = _service()
    room_id = await _room_with(ALICE)
    game = await service.create_game(HOST, room_id, "test")
    await service.mark_ready(ALICE, game.id)
    return game.id


@pytest.mark.asyncio
async def test_submit_words_assembles_story_and_finishes(template):
    service = _service()
    game_id = await _playing_game(template)
    words = {0: "Gertrude", 1: "soggy", 2: "pickle", 3: "volcano", 4: "Yikes"}
    # host owns 0-2, alice owns 3-4
    for position in (0, 1, 2):
        await service.submit_word(HOST, game_id, position, f"  {words[position]} ")
    await service.submit_word(ALICE, game_id, 3, words[3])
    detail = await service.get_game(HOST, game_id)
    assert detail.status == "playing"
    assert detail.submitted_positions == [0, 1, 2, 3]

    await service.submit_word(ALICE, game_id, 4, words[4])
    detail = await service.get_game(HOST, game_id)
    assert detail.status == "finished"

    story = await StoryService().get_completed_story(game_id)
    assert story.story_text == "Gertrude met a soggy pickle near the volcano and said Yikes."
    assert story.title == "Test Tale"
    assert story.images_generated is False
    assert story.image_urls == []


@pytest.mark.asyncio
async def test_submit_rejects_unassigned_position(template):
    game_id = await _playing_game(template)
    with pytest.raises(policy.GamePolicyError) as excinfo:
        await _service().submit_word(ALICE, game_id, 0, "word")
    assert excinfo.value.code == "position_not_assigned"


@pytest.mark.asyncio
async def test_submit_twice_same_position(template):
    service = _service()
    game_id = await _playing_game(template)
    await service.submit_word(HOST, game_id, 0, "first")
    with pytest.raises(policy.GamePolicyError) as excinfo:
        await service.submit_word(HOST, game_id, 0, "second")
    assert excinfo.value.code == "already_submitted"


@pytest.mark.asyncio
@pytest.mark.parametrize("word, code", [("   ", "word_empty"), ("x" * 65, "word_too_long")])
async def test_submit_validates_word(template, word, code):
    game_id = await _playing_game(template)
    with pytest.raises(policy.GamePolicyError) as excinfo:
        await _service().submit_word(HOST, game_id, 0, word)
    assert excinfo.value.code == code


@pytest.mark.asyncio
async def test_custom_words_disabled_requires_bank_word(template, monkeypatch):
    monkeypatch.setattr(settings, "enable_custom_words", False)
    service = _service()
    game_id = await _playing_game(template)
    with pytest.raises(policy.GamePolicyError) as excinfo:
        await service.submit_word(HOST, game_id, 0, "freeform")
    assert excinfo.value.code == "custom_words_disabled"

    summary = await service.submit_word(HOST, game_id, 0, "Gertrude", word_bank_id="wb-name-0")
    assert summary.word_bank_id == "wb-name-0"


@pytest.mark.asyncio
async def test_submit_requires_playing(template):
    service = _service()
    room_id = await _room_with(ALICE)
    game = await service.create_game(HOST, room_id, "test")
    with pytest.raises(policy.GamePolicyError) as excinfo:
        await service.submit_word(HOST, game.id, 0, "early")
    assert excinfo.value.code == "invalid_state"


@pytest.mark.asyncio
async def test_suggest_words_excludes_used_ids():
    service = _service()
    suggestions = await service.suggest_words("noun", exclude_ids=["wb-noun-0", "wb-noun-1"], limit=5)
    assert len(suggestions) == 5
    ids = {s.id for s in suggestions}
    assert "wb-noun-0" not in ids and "wb-noun-1" not in ids
    assert all(s.type == "noun" for s in suggestions)


@pytest.mark.asyncio
async def test_list_categories_includes_builtin():
    categories = await _service().list_categories()
    assert {"adventure", "silly", "spooky"} <= set(categories)
