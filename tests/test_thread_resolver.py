"""
Tests for conversation thread resolution and reindexing
"""
import itertools

import pytest

from src.core.email.services import ThreadResolver
from src.core.email.services.thread_resolver import fallback_thread_id
from src.core.models import Message


def make_message(account, folder, uid, message_id="", in_reply_to="", references=""):
    return Message(
        account_id=account.id,
        folder_id=folder.id,
        uid=uid,
        message_id=message_id,
        in_reply_to=in_reply_to,
        references_header=references,
    )


async def ingest(resolver, repos, message):
    """Resolve and store a message the way the sync pass does."""
    message.thread_id = await resolver.resolve(message.account_id, message)
    await repos.messages.insert_if_absent(message)
    return message


@pytest.fixture
def resolver(repos):
    return ThreadResolver(repos.messages)


class TestResolve:
    """Tests for ThreadResolver.resolve"""

    @pytest.mark.asyncio
    async def test_standalone_message_uses_own_id(self, resolver, account, inbox):
        message = make_message(account, inbox, 1, message_id="a@x")

        assert await resolver.resolve(account.id, message) == "a@x"

    @pytest.mark.asyncio
    async def test_message_without_any_id(self, resolver, account, inbox):
        message = make_message(account, inbox, 7)

        assert await resolver.resolve(account.id, message) == f"{inbox.id}:7"
        assert fallback_thread_id(message) == f"{inbox.id}:7"

    @pytest.mark.asyncio
    async def test_references_root_known(self, resolver, repos, account, inbox):
        root = make_message(account, inbox, 1, message_id="root@x")
        root.thread_id = "existing-thread"
        await repos.messages.insert_if_absent(root)
        reply = make_message(account, inbox, 2, message_id="r@x", references="root@x mid@x")

        assert await resolver.resolve(account.id, reply) == "existing-thread"

    @pytest.mark.asyncio
    async def test_references_root_unknown(self, resolver, account, inbox):
        reply = make_message(account, inbox, 2, message_id="r@x", references="root@x mid@x")

        assert await resolver.resolve(account.id, reply) == "root@x"

    @pytest.mark.asyncio
    async def test_in_reply_to_known_parent(self, resolver, repos, account, inbox):
        await ingest(resolver, repos, make_message(account, inbox, 1, message_id="p@x"))
        reply = make_message(account, inbox, 2, message_id="c@x", in_reply_to="p@x")

        assert await resolver.resolve(account.id, reply) == "p@x"

    @pytest.mark.asyncio
    async def test_in_reply_to_unknown_parent(self, resolver, account, inbox):
        reply = make_message(account, inbox, 2, message_id="c@x", in_reply_to="p@x")

        assert await resolver.resolve(account.id, reply) == "p@x"

    @pytest.mark.asyncio
    async def test_references_win_over_in_reply_to(self, resolver, account, inbox):
        reply = make_message(account, inbox, 3, message_id="c@x", in_reply_to="p@x", references="root@x p@x")

        assert await resolver.resolve(account.id, reply) == "root@x"

    @pytest.mark.asyncio
    async def test_lookups_are_scoped_to_account(self, resolver, repos, account, inbox):
        root = make_message(account, inbox, 1, message_id="root@x")
        root.thread_id = "thread-1"
        await repos.messages.insert_if_absent(root)
        reply = make_message(account, inbox, 2, references="root@x")

        assert await resolver.resolve("another-account", reply) == "root@x"


class TestReindex:
    """Tests for thread id propagation across out-of-order arrival"""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("order", list(itertools.permutations(range(3))))
    async def test_reply_chain_converges_in_any_order(self, resolver, repos, account, inbox, order):
        chain = [
            make_message(account, inbox, 1, message_id="a@x"),
            make_message(account, inbox, 2, message_id="b@x", in_reply_to="a@x"),
            make_message(account, inbox, 3, message_id="c@x", in_reply_to="b@x"),
        ]
        for index in order:
            await ingest(resolver, repos, chain[index])

        await resolver.reindex(account.id)

        thread_ids = {(await repos.messages.get(m.id)).thread_id for m in chain}
        assert thread_ids == {"a@x"}

    @pytest.mark.asyncio
    async def test_reindex_reports_changes(self, resolver, repos, account, inbox):
        await ingest(resolver, repos, make_message(account, inbox, 3, message_id="c@x", in_reply_to="b@x"))
        await ingest(resolver, repos, make_message(account, inbox, 2, message_id="b@x", in_reply_to="a@x"))
        await ingest(resolver, repos, make_message(account, inbox, 1, message_id="a@x"))

        assert await resolver.reindex(account.id) == 1
        assert await resolver.reindex(account.id) == 0

    @pytest.mark.asyncio
    async def test_unrelated_threads_untouched(self, resolver, repos, account, inbox):
        first = await ingest(resolver, repos, make_message(account, inbox, 1, message_id="a@x"))
        second = await ingest(resolver, repos, make_message(account, inbox, 2, message_id="z@x"))

        assert await resolver.reindex(account.id) == 0
        assert (await repos.messages.get(first.id)).thread_id == "a@x"
        assert (await repos.messages.get(second.id)).thread_id == "z@x"

    @pytest.mark.asyncio
    async def test_self_reference_is_ignored(self, resolver, repos, account, inbox):
        loop = await ingest(resolver, repos, make_message(account, inbox, 1, message_id="a@x", in_reply_to="a@x"))

        await resolver.reindex(account.id)

        assert (await repos.messages.get(loop.id)).thread_id == "a@x"
