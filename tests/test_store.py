"""Storage contract tests, run against both backends."""

import uuid

import numpy as np
import pytest

from synx.errors import InvalidInputError, NotFoundError
from synx.models import ImageContent, TextContent
from synx.store import LmdbThreadStore, MemoryThreadStore


@pytest.fixture(params=["lmdb", "memory"])
def store(request, tmp_path):
    if request.param == "lmdb":
        s = LmdbThreadStore(tmp_path / "synx.lmdb", sync=False)
    else:
        s = MemoryThreadStore()
    yield s
    s.close()


async def _thread_with_messages(store, n):
    thread = await store.create_thread()
    messages = []
    for i in range(n):
        messages.append(await store.create_message(thread.id, "user", f"m{i}"))
    return thread, messages


@pytest.mark.asyncio
class TestThreads:
    async def test_create_then_get(self, store):
        thread = await store.create_thread()
        fetched = await store.get_thread(thread.id)
        assert fetched.id == thread.id
        assert fetched.summary is None
        assert fetched.embedding is None

    async def test_create_with_title(self, store):
        thread = await store.create_thread(title="groceries")
        assert (await store.get_thread(thread.id)).title == "groceries"

    async def test_get_missing(self, store):
        with pytest.raises(NotFoundError):
            await store.get_thread(uuid.uuid4())

    async def test_list_threads(self, store):
        created = {(await store.create_thread()).id for _ in range(3)}
        listed = {t.id for t in await store.list_threads()}
        assert listed == created

    async def test_update_title(self, store):
        thread = await store.create_thread()
        updated = await store.update_thread(thread.id, "renamed")
        assert updated.title == "renamed"
        assert (await store.get_thread(thread.id)).title == "renamed"

    @pytest.mark.parametrize("title", [["x"], 42, b"bytes"])
    async def test_non_string_title_rejected(self, store, title):
        with pytest.raises(InvalidInputError):
            await store.create_thread(title=title)
        thread = await store.create_thread(title="kept")
        with pytest.raises(InvalidInputError):
            await store.update_thread(thread.id, title)
        assert (await store.get_thread(thread.id)).title == "kept"
        assert len(await store.list_threads()) == 1

    async def test_update_title_to_none(self, store):
        thread = await store.create_thread(title="temporary")
        updated = await store.update_thread(thread.id, None)
        assert updated.title is None

    async def test_update_title_missing(self, store):
        with pytest.raises(NotFoundError):
            await store.update_thread(uuid.uuid4(), "nope")

    async def test_delete_thread(self, store):
        thread = await store.create_thread()
        await store.delete_thread(thread.id)
        assert thread.id not in {t.id for t in await store.list_threads()}
        with pytest.raises(NotFoundError):
            await store.get_thread(thread.id)

    async def test_delete_missing_thread(self, store):
        with pytest.raises(NotFoundError):
            await store.delete_thread(uuid.uuid4())

    async def test_delete_thread_cascades(self, store):
        thread, messages = await _thread_with_messages(store, 3)
        await store.delete_thread(thread.id)

        with pytest.raises(NotFoundError):
            await store.get_thread_messages(thread.id)
        for message in messages:
            with pytest.raises(NotFoundError):
                await store.delete_message(thread.id, message.id)

    async def test_delete_thread_leaves_no_derived_entries(self, store):
        keep, _ = await _thread_with_messages(store, 2)
        gone, _ = await _thread_with_messages(store, 3)
        await store.update_thread_summary_and_embedding(
            gone.id, "summary", [0.1, 0.2]
        )
        await store.delete_thread(gone.id)

        state = await store.debug_state()
        gone_id = str(gone.id)
        assert list(state["threads"]) == [str(keep.id)]
        assert list(state["thread_messages"]) == [str(keep.id)]
        assert state["embeddings"] == {}
        assert [e[1] for e in state["thread_creation_times"]] == [str(keep.id)]
        assert all(e[0] != gone_id for e in state["message_creation_times"])
        assert all(m[0][0] != gone_id for m in state["messages"])
        assert state["counts"]["messages"] == 2
        assert state["counts"]["message_creation_time"] == 2


@pytest.mark.asyncio
class TestMessages:
    async def test_create_message(self, store):
        thread = await store.create_thread()
        message = await store.create_message(thread.id, "user", "hello")
        assert message.thread_id == thread.id
        assert message.role == "user"
        assert message.content == [TextContent("hello")]
        assert message.created_at > 0

    async def test_create_message_missing_thread(self, store):
        missing = uuid.uuid4()
        with pytest.raises(NotFoundError):
            await store.create_message(missing, "user", "hello")
        state = await store.debug_state()
        assert state["messages"] == []
        assert state["message_creation_times"] == []
        assert state["thread_messages"] == {}

    async def test_create_message_bad_content(self, store):
        thread = await store.create_thread()
        with pytest.raises(InvalidInputError):
            await store.create_message(thread.id, "user", {"type": "nope"})

    async def test_create_message_bad_role(self, store):
        thread = await store.create_thread()
        with pytest.raises(InvalidInputError):
            await store.create_message(thread.id, None, "hello")

    async def test_get_message(self, store):
        thread = await store.create_thread()
        message = await store.create_message(thread.id, "assistant", "yo")
        assert await store.get_message(thread.id, message.id) == message

    async def test_update_message_changes_only_content(self, store):
        thread = await store.create_thread()
        before = await store.create_message(thread.id, "user", "draft")
        after = await store.update_message(
            thread.id,
            before.id,
            [
                {"type": "text", "text": "final"},
                {"type": "image", "image": "i"},
            ],
        )
        assert after.id == before.id
        assert after.thread_id == before.thread_id
        assert after.created_at == before.created_at
        assert after.role == before.role
        assert after.content == [TextContent("final"), ImageContent("i")]
        stored = await store.get_message(thread.id, before.id)
        assert stored == after

    async def test_update_message_missing(self, store):
        thread = await store.create_thread()
        with pytest.raises(NotFoundError):
            await store.update_message(thread.id, uuid.uuid4(), "x")

    async def test_update_message_scoped_by_thread(self, store):
        owner = await store.create_thread()
        other = await store.create_thread()
        message = await store.create_message(owner.id, "user", "mine")
        with pytest.raises(NotFoundError):
            await store.update_message(other.id, message.id, "stolen")
        stored = await store.get_message(owner.id, message.id)
        assert stored.content == [TextContent("mine")]

    async def test_delete_message_twice(self, store):
        thread = await store.create_thread()
        message = await store.create_message(thread.id, "user", "bye")
        await store.delete_message(thread.id, message.id)
        with pytest.raises(NotFoundError):
            await store.delete_message(thread.id, message.id)

    async def test_delete_message_updates_membership(self, store):
        thread, messages = await _thread_with_messages(store, 3)
        await store.delete_message(thread.id, messages[1].id)
        page = await store.get_thread_messages(thread.id)
        assert [m.id for m in page.messages] == [
            messages[0].id,
            messages[2].id,
        ]
        assert page.total == 2
        state = await store.debug_state()
        assert state["counts"]["message_creation_time"] == 2

    async def test_delete_message_wrong_thread(self, store):
        owner = await store.create_thread()
        other = await store.create_thread()
        message = await store.create_message(owner.id, "user", "x")
        with pytest.raises(NotFoundError):
            await store.delete_message(other.id, message.id)
        assert (await store.get_thread_messages(owner.id)).total == 1


@pytest.mark.asyncio
class TestPagination:
    async def test_all_messages_in_creation_order(self, store):
        thread, messages = await _thread_with_messages(store, 6)
        page = await store.get_thread_messages(thread.id)
        assert [m.id for m in page.messages] == [m.id for m in messages]
        assert page.total == 6
        assert page.offset == 0
        assert page.limit == 6

    async def test_limit_and_offset(self, store):
        thread, _ = await _thread_with_messages(store, 5)
        page = await store.get_thread_messages(thread.id, limit=3, offset=1)
        assert [m.text() for m in page.messages] == ["m1", "m2", "m3"]
        assert page.total == 5
        assert page.offset == 1
        assert page.limit == 3

    @pytest.mark.parametrize(
        "limit,offset", [(2, 0), (10, 3), (0, 1), (3, 5), (1, 9), (None, 2)]
    )
    async def test_page_size(self, store, limit, offset):
        thread, _ = await _thread_with_messages(store, 5)
        page = await store.get_thread_messages(
            thread.id, limit=limit, offset=offset
        )
        effective = 5 if limit is None else limit
        assert len(page.messages) == min(effective, max(0, 5 - offset))
        assert page.total == 5

    async def test_empty_thread(self, store):
        thread = await store.create_thread()
        page = await store.get_thread_messages(thread.id)
        assert page.messages == []
        assert page.total == 0
        assert page.limit == 0

    async def test_negative_values_rejected(self, store):
        thread = await store.create_thread()
        with pytest.raises(InvalidInputError):
            await store.get_thread_messages(thread.id, limit=-1)
        with pytest.raises(InvalidInputError):
            await store.get_thread_messages(thread.id, offset=-1)

    async def test_missing_thread(self, store):
        with pytest.raises(NotFoundError):
            await store.get_thread_messages(uuid.uuid4())


@pytest.mark.asyncio
class TestSummaryAndEmbeddings:
    async def test_update_summary_and_embedding(self, store):
        thread = await store.create_thread()
        await store.update_thread_summary_and_embedding(
            thread.id, "I asked about LMDB", np.array([0.1, 0.2, 0.3])
        )
        fetched = await store.get_thread(thread.id)
        assert fetched.summary == "I asked about LMDB"
        # get_thread does not attach embeddings
        assert fetched.embedding is None

        [with_emb] = await store.get_threads_with_embeddings([thread.id])
        np.testing.assert_allclose(with_emb.embedding, [0.1, 0.2, 0.3])
        assert with_emb.embedding.dtype == np.float32

    async def test_update_missing_thread(self, store):
        with pytest.raises(NotFoundError):
            await store.update_thread_summary_and_embedding(
                uuid.uuid4(), "s", [1.0]
            )
        assert (await store.debug_state())["embeddings"] == {}

    async def test_empty_embedding_rejected(self, store):
        thread = await store.create_thread()
        with pytest.raises(InvalidInputError):
            await store.update_thread_summary_and_embedding(thread.id, "s", [])
        assert (await store.get_thread(thread.id)).summary is None

    @pytest.mark.parametrize(
        "bad", ["abc", ["a", "b"], [1.0, None], [float("nan"), 1.0]]
    )
    async def test_non_numeric_embedding_rejected(self, store, bad):
        thread = await store.create_thread()
        with pytest.raises(InvalidInputError):
            await store.update_thread_summary_and_embedding(
                thread.id, "s", bad
            )
        [fetched] = await store.get_threads_with_embeddings([thread.id])
        assert fetched.summary is None
        assert fetched.embedding is None

    async def test_non_string_summary_rejected(self, store):
        thread = await store.create_thread()
        with pytest.raises(InvalidInputError):
            await store.update_thread_summary_and_embedding(
                thread.id, 42, [1.0]
            )
        assert (await store.get_thread(thread.id)).summary is None

    async def test_batch_read_returns_only_existing(self, store):
        a = await store.create_thread()
        b = await store.create_thread()
        missing = uuid.uuid4()
        threads = await store.get_threads_with_embeddings([a.id, missing, b.id])
        assert [t.id for t in threads] == [a.id, b.id]

    async def test_no_default_embedding(self, store):
        plain = await store.create_thread()
        summarised = await store.create_thread()
        await store.update_thread_summary_and_embedding(
            summarised.id, "s", [1.0, 0.0]
        )
        threads = {
            t.id: t
            for t in await store.get_threads_with_embeddings(
                [plain.id, summarised.id]
            )
        }
        assert threads[plain.id].embedding is None
        assert threads[summarised.id].embedding is not None

    async def test_embedding_dimension_enforced(self):
        store = MemoryThreadStore(embedding_dim=3)
        try:
            thread = await store.create_thread()
            with pytest.raises(InvalidInputError):
                await store.update_thread_summary_and_embedding(
                    thread.id, "s", [1.0, 2.0]
                )
            await store.update_thread_summary_and_embedding(
                thread.id, "s", [1.0, 2.0, 3.0]
            )
        finally:
            store.close()


@pytest.mark.asyncio
class TestDebugState:
    async def test_snapshot_shape(self, store):
        thread, messages = await _thread_with_messages(store, 2)
        state = await store.debug_state()
        assert state["backend"] == store.backend
        assert set(state) >= {
            "threads",
            "messages",
            "thread_messages",
            "embeddings",
            "thread_creation_times",
            "message_creation_times",
            "counts",
        }
        tid = str(thread.id)
        assert state["thread_messages"][tid] == [str(m.id) for m in messages]
        assert state["thread_creation_times"][0][1] == tid
        index = state["message_creation_times"]
        assert {e[2] for e in index} == {str(m.id) for m in messages}
        assert all(e[0] == tid for e in index)
        assert [e[1] for e in index] == sorted(e[1] for e in index)


@pytest.mark.asyncio
class TestEvents:
    async def test_listener_called_after_commit(self, store):
        events = []
        store.subscribe(events.append)
        thread = await store.create_thread()
        message = await store.create_message(thread.id, "user", "ping")
        assert len(events) == 1
        assert events[0].thread_id == thread.id
        assert events[0].message == message

    async def test_no_event_for_failed_create(self, store):
        events = []
        store.subscribe(events.append)
        with pytest.raises(NotFoundError):
            await store.create_message(uuid.uuid4(), "user", "ping")
        assert events == []

    async def test_listener_failure_does_not_fail_write(self, store):
        def broken(event):
            raise RuntimeError("listener exploded")

        store.subscribe(broken)
        thread = await store.create_thread()
        message = await store.create_message(thread.id, "user", "ping")
        assert await store.get_message(thread.id, message.id) == message
