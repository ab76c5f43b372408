from datetime import datetime, timedelta, timezone

import pytest

from marketchat.domain.chat.models import ConversationKey, Side
from marketchat.domain.chat.read_state import mark_conversation_read
from marketchat.domain.chat.repo import ChatRepository, _affected_rows, _InMemoryStore

BUYER = 1
VENDOR = 10
OTHER_VENDOR = 11
LAMP = 42

T0 = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def store() -> _InMemoryStore:
    return _InMemoryStore()


async def _send(store, key, side, body, at=T0, context_id=LAMP):
    return await store.create_message(key, context_id, side, body, at)


@pytest.mark.asyncio
async def test_create_marks_sender_side_read(store):
    key = ConversationKey(BUYER, VENDOR)

    from_buyer = await _send(store, key, Side.REQUESTER, "Is this in stock?")
    from_vendor = await _send(store, key, Side.COUNTERPARTY, "Yes it is")

    assert from_buyer.id == 1 and from_vendor.id == 2
    assert from_buyer.read_by_requester is True
    assert from_buyer.read_by_counterparty is False
    assert from_vendor.read_by_counterparty is True
    assert from_vendor.read_by_requester is False
    assert not any(
        [from_buyer.deleted_by_requester, from_buyer.deleted_by_counterparty, from_vendor.deleted_by_requester]
    )


@pytest.mark.asyncio
async def test_created_at_never_goes_backwards(store):
    key = ConversationKey(BUYER, VENDOR)

    first = await _send(store, key, Side.REQUESTER, "first", at=T0)
    second = await _send(store, key, Side.REQUESTER, "clock skew", at=T0 - timedelta(seconds=30))
    third = await _send(store, key, Side.REQUESTER, "later", at=T0 + timedelta(seconds=5))

    assert second.created_at == first.created_at
    assert first.id < second.id < third.id
    assert first.created_at <= second.created_at <= third.created_at


@pytest.mark.asyncio
async def test_returned_rows_are_copies(store):
    key = ConversationKey(BUYER, VENDOR)
    message = await _send(store, key, Side.REQUESTER, "hello")

    message.read_by_counterparty = True

    stored = await store.get_message(message.id)
    assert stored is not None
    assert stored.read_by_counterparty is False


@pytest.mark.asyncio
async def test_mark_read_is_idempotent_and_scoped(store):
    key = ConversationKey(BUYER, VENDOR)
    other = ConversationKey(BUYER, OTHER_VENDOR)
    await _send(store, key, Side.REQUESTER, "one")
    await _send(store, key, Side.REQUESTER, "two")
    await _send(store, other, Side.REQUESTER, "elsewhere")

    assert await mark_conversation_read(store, key, Side.COUNTERPARTY) == 2
    assert await mark_conversation_read(store, key, Side.COUNTERPARTY) == 0

    rows = await store.list_pair(key, viewer_side=Side.REQUESTER, before_id=None, limit=None)
    assert all(m.read_by_counterparty for m in rows)
    assert not any(m.deleted_by_counterparty or m.deleted_by_requester for m in rows)
    untouched = await store.list_pair(other, viewer_side=Side.REQUESTER, before_id=None, limit=None)
    assert untouched[0].read_by_counterparty is False


@pytest.mark.asyncio
async def test_mark_read_never_touches_other_side(store):
    key = ConversationKey(BUYER, VENDOR)
    await _send(store, key, Side.COUNTERPARTY, "we ship tomorrow")

    await mark_conversation_read(store, key, Side.COUNTERPARTY)

    rows = await store.list_pair(key, viewer_side=Side.REQUESTER, before_id=None, limit=None)
    assert rows[0].read_by_requester is False


@pytest.mark.asyncio
async def test_soft_delete_hides_only_for_that_side(store):
    key = ConversationKey(BUYER, VENDOR)
    first = await _send(store, key, Side.REQUESTER, "one")
    await _send(store, key, Side.REQUESTER, "two")
    await _send(store, key, Side.REQUESTER, "three")

    deleted = await store.soft_delete(first.id, Side.REQUESTER)
    again = await store.soft_delete(first.id, Side.REQUESTER)

    assert deleted is not None and deleted.deleted_by_requester is True
    assert again is not None and again.deleted_by_counterparty is False
    assert len(await store.list_pair(key, viewer_side=Side.REQUESTER, before_id=None, limit=None)) == 2
    assert len(await store.list_pair(key, viewer_side=Side.COUNTERPARTY, before_id=None, limit=None)) == 3


@pytest.mark.asyncio
async def test_soft_delete_unknown_message(store):
    assert await store.soft_delete(999, Side.REQUESTER) is None


@pytest.mark.asyncio
async def test_distinct_counterparts_in_discovery_order(store):
    await _send(store, ConversationKey(BUYER, OTHER_VENDOR), Side.REQUESTER, "first contact")
    await _send(store, ConversationKey(BUYER, VENDOR), Side.REQUESTER, "second contact")
    await _send(store, ConversationKey(BUYER, OTHER_VENDOR), Side.COUNTERPARTY, "reply")
    await _send(store, ConversationKey(2, VENDOR), Side.REQUESTER, "other buyer")

    assert await store.distinct_counterparts(BUYER, Side.REQUESTER) == [OTHER_VENDOR, VENDOR]
    assert await store.distinct_counterparts(VENDOR, Side.COUNTERPARTY) == [BUYER, 2]


@pytest.mark.asyncio
async def test_distinct_counterparts_skip_fully_deleted_pairs(store):
    hidden = await _send(store, ConversationKey(BUYER, VENDOR), Side.REQUESTER, "gone")
    await _send(store, ConversationKey(BUYER, OTHER_VENDOR), Side.REQUESTER, "kept")
    await store.soft_delete(hidden.id, Side.REQUESTER)

    assert await store.distinct_counterparts(BUYER, Side.REQUESTER) == [OTHER_VENDOR]
    assert await store.distinct_counterparts(VENDOR, Side.COUNTERPARTY) == [BUYER]


@pytest.mark.asyncio
async def test_count_unread_ignores_own_and_deleted(store):
    key = ConversationKey(BUYER, VENDOR)
    await _send(store, key, Side.REQUESTER, "question")
    reply = await _send(store, key, Side.COUNTERPARTY, "answer")
    await _send(store, key, Side.COUNTERPARTY, "follow-up")

    assert await store.count_unread(key, Side.REQUESTER) == 2
    assert await store.count_unread(key, Side.COUNTERPARTY) == 1
    await store.mark_read(key, Side.COUNTERPARTY)
    assert await store.count_unread(key, Side.COUNTERPARTY) == 0

    await store.soft_delete(reply.id, Side.REQUESTER)
    assert await store.count_unread(key, Side.REQUESTER) == 1


@pytest.mark.asyncio
async def test_last_visible_respects_viewer_deletes(store):
    key = ConversationKey(BUYER, VENDOR)
    await _send(store, key, Side.REQUESTER, "older")
    newest = await _send(store, key, Side.COUNTERPARTY, "newest", at=T0 + timedelta(minutes=1))
    await store.soft_delete(newest.id, Side.REQUESTER)

    buyer_view = await store.last_visible(key, Side.REQUESTER)
    vendor_view = await store.last_visible(key, Side.COUNTERPARTY)

    assert buyer_view is not None and buyer_view.body == "older"
    assert vendor_view is not None and vendor_view.body == "newest"


@pytest.mark.asyncio
async def test_repository_falls_back_to_memory_without_pool():
    memory = _InMemoryStore()
    repo = ChatRepository(memory_store=memory)

    message = await repo.create_message(ConversationKey(BUYER, VENDOR), LAMP, Side.REQUESTER, "hi", T0)

    assert await repo.pool_or_none() is None
    assert (await memory.get_message(message.id)).body == "hi"


def test_affected_rows_parses_command_tag():
    assert _affected_rows("UPDATE 3") == 3
    assert _affected_rows("UPDATE 0") == 0
    assert _affected_rows("") == 0
