"""Persistence adapter — filters, uniqueness and monotonic soft deletes."""

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from projectchat.core.errors import Conflict
from projectchat.models.base import utcnow
from projectchat.models.message import Message, MessageRead, MessageType
from projectchat.services import repository
from projectchat.services.repository import ChatFilter, MessageFilter


async def _chat(session: AsyncSession, name="general", project_id=10, created_by=1):
    return await repository.create_chat(
        session, project_id=project_id, name=name, created_by=created_by
    )


async def test_duplicate_active_name_conflicts(session: AsyncSession):
    await _chat(session)

    with pytest.raises(Conflict):
        await _chat(session)


async def test_unique_index_backs_up_the_lookup(session: AsyncSession, monkeypatch):
    await _chat(session)

    async def no_clash(*args, **kwargs):
        return None

    # Simulate losing the race between lookup and insert
    monkeypatch.setattr(repository, "find_active_chat_by_project_and_name", no_clash)
    with pytest.raises(Conflict):
        await _chat(session)

    monkeypatch.undo()
    assert await repository.count_chats(session, ChatFilter(project_ids=[10])) == 1


async def test_deactivation_is_monotonic_and_frees_the_name(session: AsyncSession):
    chat = await _chat(session)
    chat = await repository.soft_deactivate_chat(session, chat)
    assert chat.is_active is False

    assert await repository.get_active_chat(session, chat.id) is None
    assert (await repository.get_chat(session, chat.id)).is_active is False

    replacement = await _chat(session)
    assert replacement.id != chat.id
    assert await repository.count_chats(session, ChatFilter(project_ids=[10])) == 1
    assert await repository.count_chats(
        session, ChatFilter(project_ids=[10], include_inactive=True)
    ) == 2


async def test_soft_delete_keeps_first_timestamp(session: AsyncSession):
    chat = await _chat(session)
    message = await repository.create_message(session, chat_id=chat.id, user_id=1, content="hi")

    message = await repository.soft_delete_message(session, message)
    first = message.deleted_at
    message = await repository.soft_delete_message(session, message)

    assert message.is_deleted is True
    assert message.deleted_at == first
    assert message.content == "hi"


async def test_earliest_active_chat(session: AsyncSession):
    first = await _chat(session, name="first")
    await _chat(session, name="second")

    assert (await repository.find_earliest_active_chat_for_project(session, 10)).id == first.id

    await repository.soft_deactivate_chat(session, first)
    earliest = await repository.find_earliest_active_chat_for_project(session, 10)
    assert earliest.name == "second"
    assert await repository.find_earliest_active_chat_for_project(session, 99) is None


async def test_list_chats_orders_by_activity(session: AsyncSession):
    older = await _chat(session, name="older")
    await _chat(session, name="newer")

    await repository.touch_activity(session, older)

    chats = await repository.list_chats(session, ChatFilter(project_ids=[10]))
    assert [c.name for c in chats] == ["older", "newer"]


async def test_update_chat_applies_only_given_fields(session: AsyncSession):
    chat = await _chat(session)
    chat = await repository.update_chat(session, chat, {"description": "notes"})
    chat = await repository.update_chat(session, chat, {"name": "renamed"})

    assert chat.name == "renamed"
    assert chat.description == "notes"


async def test_message_filters(session: AsyncSession):
    chat = await _chat(session)
    other = await _chat(session, name="other")
    await repository.create_message(session, chat_id=chat.id, user_id=1, content="Deploy today")
    await repository.create_message(session, chat_id=chat.id, user_id=2, content="deploy tomorrow")
    await repository.create_message(
        session, chat_id=chat.id, user_id=2, content="joined", message_type=MessageType.SYSTEM
    )
    await repository.create_message(session, chat_id=other.id, user_id=1, content="deploy elsewhere")

    by_user = await repository.list_messages(session, MessageFilter(chat_id=chat.id, user_id=2))
    assert {m.content for m in by_user} == {"deploy tomorrow", "joined"}

    searched = await repository.list_messages(
        session, MessageFilter(chat_id=chat.id, search="DEPLOY"), newest_first=False
    )
    assert [m.content for m in searched] == ["Deploy today", "deploy tomorrow"]

    across = await repository.count_messages(
        session, MessageFilter(chat_ids=[chat.id, other.id], search="deploy")
    )
    assert across == 3


async def test_message_counts_include_empty_chats(session: AsyncSession):
    busy = await _chat(session, name="busy")
    quiet = await _chat(session, name="quiet")
    await repository.create_message(session, chat_id=busy.id, user_id=1, content="a")
    deleted = await repository.create_message(session, chat_id=busy.id, user_id=1, content="b")
    await repository.soft_delete_message(session, deleted)

    counts = await repository.message_counts(session, [busy.id, quiet.id])

    assert counts == {busy.id: 1, quiet.id: 0}
    assert await repository.message_counts(session, []) == {}


async def test_chat_stats(session: AsyncSession):
    chat = await _chat(session, project_id=10, created_by=1)
    await _chat(session, name="ops", project_id=20, created_by=2)
    await _chat(session, name="mine elsewhere", project_id=30, created_by=1)
    await repository.create_message(session, chat_id=chat.id, user_id=1, content="hi")

    stats = await repository.chat_stats(session, [10, 20], user_id=1)

    assert stats.total_chats == 2
    assert stats.total_messages == 1
    assert stats.chats_created == 2
    assert [(p.project_id, p.chat_count) for p in stats.project_breakdown] == [(10, 1), (20, 1)]

    empty = await repository.chat_stats(session, [], user_id=1)
    assert empty.total_chats == 0
    assert empty.project_breakdown == []


def test_highlight_is_case_insensitive_and_literal():
    assert repository.highlight("a.b A.B ab", "a.b") == "<mark>a.b</mark> <mark>A.B</mark> ab"
    assert repository.highlight("unchanged", "") == "unchanged"


async def test_timestamps_read_back_as_utc(session: AsyncSession, test_session_factory):
    assert utcnow().tzinfo is not None
    chat = await _chat(session)
    message = await repository.create_message(session, chat_id=chat.id, user_id=1, content="hi")
    message = await repository.soft_delete_message(session, message)

    async with test_session_factory() as fresh:
        stored = await fresh.get(Message, message.id)

    wire = MessageRead.model_validate(stored).to_wire()
    assert wire["createdAt"].endswith("Z")
    assert wire["deletedAt"].endswith("Z")
    assert wire["editedAt"] is None
