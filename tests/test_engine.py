import asyncio

import pytest

from fakes import ALICE, BOB, CAROL
from skillswap.core.context import MessagingContext
from skillswap.core.errors import InvalidInput, TransientIO
from skillswap.delivery.engine import (
    ASSISTANT_CONVERSATION_ID,
    ASSISTANT_USER_ID,
    ConversationFeed,
    ConversationList,
)


def make_feed(message_log, bus, user_id=ALICE, poll_interval=60.0, **kwargs):
    context = MessagingContext(user_id, message_log, bus, poll_interval=poll_interval)
    return ConversationFeed(context, **kwargs)


async def settle():
    # Let call_soon_threadsafe callbacks run
    for _ in range(3):
        await asyncio.sleep(0)


def contents(feed):
    return [row["content"] for row in feed.messages]


def test_push_is_deduplicated_by_id(message_log, directory, bus):
    ab = directory.get_or_create(ALICE, BOB)

    async def scenario():
        feed = make_feed(message_log, bus)
        await feed.start()
        await feed.open(ab)

        sent = message_log.send(ab, BOB, ALICE, "hola")["message"]
        await settle()
        bus.emit("insert", "messages", sent)
        await settle()

        assert contents(feed) == ["hola"]
        await feed.shutdown()

    asyncio.run(scenario())


def test_push_for_other_conversation_is_ignored(message_log, directory, bus):
    ab = directory.get_or_create(ALICE, BOB)
    cb = directory.get_or_create(CAROL, BOB)

    async def scenario():
        feed = make_feed(message_log, bus)
        await feed.open(ab)

        message_log.send(cb, CAROL, BOB, "not for alice")
        await settle()

        assert feed.messages == []
        await feed.shutdown()

    asyncio.run(scenario())


def test_read_updates_are_applied(message_log, directory, bus):
    ab = directory.get_or_create(ALICE, BOB)
    message_log.send(ab, ALICE, BOB, "seen?")

    async def scenario():
        feed = make_feed(message_log, bus)
        await feed.open(ab)

        message_log.mark_read(ab, BOB)
        await settle()

        assert feed.messages[0]["read"] is True
        await feed.shutdown()

    asyncio.run(scenario())


def test_missed_push_is_recovered_by_poll(message_log, directory, bus, db):
    ab = directory.get_or_create(ALICE, BOB)

    async def scenario():
        feed = make_feed(message_log, bus, poll_interval=0.01)
        await feed.open(ab)
        assert feed.polling

        # Written without an event, as if the push had been dropped
        db.seed("messages", conversation_id=ab, sender_id=BOB, receiver_id=ALICE, content="lost push")

        for _ in range(50):
            if feed.messages:
                break
            await asyncio.sleep(0.01)

        assert contents(feed) == ["lost push"]
        await feed.shutdown()

    asyncio.run(scenario())


def test_background_feed_skips_poll_ticks(message_log, directory, bus, db):
    ab = directory.get_or_create(ALICE, BOB)

    async def scenario():
        feed = make_feed(message_log, bus, poll_interval=0.01)
        await feed.open(ab)
        feed.set_foreground(False)

        db.seed("messages", conversation_id=ab, sender_id=BOB, receiver_id=ALICE, content="later")
        await asyncio.sleep(0.05)
        assert feed.messages == []

        feed.set_foreground(True)
        assert await feed.poll_once()
        assert contents(feed) == ["later"]
        await feed.shutdown()

    asyncio.run(scenario())


def test_poll_failure_does_not_stop_polling(message_log, directory, bus, db):
    ab = directory.get_or_create(ALICE, BOB)

    async def scenario():
        feed = make_feed(message_log, bus, poll_interval=0.01)
        await feed.open(ab)

        db.fail("messages", "select")
        await asyncio.sleep(0.05)
        assert feed.polling

        db.heal("messages", "select")
        db.seed("messages", conversation_id=ab, sender_id=BOB, receiver_id=ALICE, content="back")
        for _ in range(50):
            if feed.messages:
                break
            await asyncio.sleep(0.01)

        assert contents(feed) == ["back"]
        await feed.shutdown()

    asyncio.run(scenario())


def test_pending_message_survives_poll(message_log, directory, bus, db):
    ab = directory.get_or_create(ALICE, BOB)

    async def scenario():
        feed = make_feed(message_log, bus)
        await feed.open(ab)
        feed.messages = [
            {
                "id": "local-1",
                "conversation_id": ab,
                "sender_id": ALICE,
                "receiver_id": BOB,
                "content": "typing fast",
                "created_at": "2030-01-01T00:00:00+00:00",
                "pending": True,
            }
        ]

        db.seed("messages", conversation_id=ab, sender_id=BOB, receiver_id=ALICE, content="from bob")
        assert await feed.poll_once()

        assert contents(feed) == ["from bob", "typing fast"]
        assert feed.messages[-1]["pending"]
        await feed.shutdown()

    asyncio.run(scenario())


def test_send_is_optimistic_and_confirmed_once(message_log, directory, bus):
    ab = directory.get_or_create(ALICE, BOB)
    changes = []

    async def scenario():
        feed = make_feed(message_log, bus, on_change=changes.append)
        await feed.open(ab)

        sent = await feed.send("on my way")
        await settle()
        await feed.poll_once()

        assert [row["id"] for row in feed.messages] == [sent["id"]]
        assert not feed.messages[0].get("pending")
        assert "messages" in changes
        await feed.shutdown()

    asyncio.run(scenario())


def test_failed_send_removes_optimistic_copy(message_log, directory, bus, db):
    ab = directory.get_or_create(ALICE, BOB)

    async def scenario():
        feed = make_feed(message_log, bus)
        await feed.open(ab)
        db.fail("messages", "insert")

        with pytest.raises(TransientIO):
            await feed.send("will fail")

        assert feed.messages == []
        await feed.shutdown()

    asyncio.run(scenario())


def test_switching_conversations_tears_down_previous(message_log, directory, bus):
    ab = directory.get_or_create(ALICE, BOB)
    ac = directory.get_or_create(ALICE, CAROL)
    message_log.send(ab, BOB, ALICE, "from bob")

    async def scenario():
        feed = make_feed(message_log, bus)
        await feed.start()
        user_level = bus.subscriber_count

        await feed.open(ab)
        first_poll = feed._poll_task
        assert bus.subscriber_count == user_level + 1

        await feed.open(ac)
        assert bus.subscriber_count == user_level + 1
        assert first_poll.cancelled()
        assert feed.other_user_id == CAROL
        assert feed.messages == []

        message_log.send(ab, BOB, ALICE, "stale conversation")
        await settle()
        assert feed.messages == []

        await feed.close()
        assert bus.subscriber_count == user_level
        assert not feed.polling

        await feed.shutdown()
        assert bus.subscriber_count == 0

    asyncio.run(scenario())


def test_assistant_conversation_is_local_only(message_log, bus, db):
    seen = []

    def responder(question, history):
        seen.append(len(history))
        return f"echo: {question}"

    async def scenario():
        feed = make_feed(message_log, bus, responder=responder)
        await feed.open(ASSISTANT_CONVERSATION_ID)

        assert bus.subscriber_count == 0
        assert not feed.polling
        assert feed.other_user_id == ASSISTANT_USER_ID

        reply = await feed.send("how do swaps work?")

        assert reply["sender_id"] == ASSISTANT_USER_ID
        assert contents(feed) == ["how do swaps work?", "echo: how do swaps work?"]
        assert await feed.poll_once() is False
        assert await feed.mark_read() == 0
        await feed.shutdown()

    asyncio.run(scenario())
    assert db.rows("messages") == []
    assert seen == [1]


def test_assistant_without_responder(message_log, bus):
    async def scenario():
        feed = make_feed(message_log, bus)
        await feed.open(ASSISTANT_CONVERSATION_ID)
        with pytest.raises(InvalidInput):
            await feed.send("anyone?")

    asyncio.run(scenario())


def test_inbox_reorders_on_new_message(message_log, directory, bus):
    ab = directory.get_or_create(ALICE, BOB)
    ac = directory.get_or_create(ALICE, CAROL)
    message_log.send(ab, BOB, ALICE, "old")
    message_log.send(ac, CAROL, ALICE, "new")

    async def scenario():
        feed = make_feed(message_log, bus)
        await feed.start()
        assert feed.conversations.ordered() == [ac, ab]

        message_log.send(ab, BOB, ALICE, "bump")
        await settle()
        assert feed.conversations.ordered() == [ab, ac]
        assert feed.snapshot()["conversations"] == [ab, ac]
        await feed.shutdown()

    asyncio.run(scenario())


def test_offer_events_are_scoped_to_open_conversation(message_log, directory, negotiator, bus):
    from skillswap.offers.schemas import CreateOfferModel

    ab = directory.get_or_create(ALICE, BOB)
    ac = directory.get_or_create(ALICE, CAROL)

    def propose(conversation_id, sender, title):
        negotiator.create(
            sender,
            CreateOfferModel(
                conversation_id=conversation_id,
                receiver_id=ALICE,
                title=title,
                skill_offered="Guitar",
                skill_wanted="Cooking",
                duration="2 weeks",
            ),
        )

    async def scenario():
        alice = make_feed(message_log, bus, user_id=ALICE)
        carol = make_feed(message_log, bus, user_id=CAROL)
        await alice.start()
        await carol.start()
        await alice.open(ab)

        propose(ab, BOB, "Guitar for Cooking")
        propose(ac, CAROL, "Elsewhere")
        await settle()

        assert [o["title"] for o in alice.snapshot()["offers"]] == ["Guitar for Cooking"]
        assert carol.snapshot()["offers"] == []

        await alice.open(ac)
        assert alice.snapshot()["offers"] == []
        await alice.close()
        propose(ab, BOB, "Closed")
        await settle()
        assert alice.offers == {}
        await alice.shutdown()
        await carol.shutdown()

    asyncio.run(scenario())


def test_mark_read_through_feed(message_log, directory, bus):
    ab = directory.get_or_create(ALICE, BOB)
    message_log.send(ab, BOB, ALICE, "one")
    message_log.send(ab, BOB, ALICE, "two")

    async def scenario():
        feed = make_feed(message_log, bus)
        await feed.open(ab)
        assert await feed.mark_read() == 2
        assert await feed.mark_read() == 0
        await settle()
        assert all(row["read"] for row in feed.messages)
        await feed.shutdown()

    asyncio.run(scenario())


def test_conversation_list_ignores_older_activity():
    inbox = ConversationList()
    inbox.load(
        [
            {"id": "a", "created_at": "2026-01-01T00:00:00+00:00", "last_message": None},
            {
                "id": "b",
                "created_at": "2026-01-01T00:00:00+00:00",
                "last_message": {"created_at": "2026-01-02T00:00:00+00:00"},
            },
        ]
    )
    assert inbox.ordered() == ["b", "a"]
    assert not inbox.touch("b", "2026-01-01T12:00:00+00:00")
    assert inbox.touch("a", "2026-01-03T00:00:00+00:00")
    assert inbox.ordered() == ["a", "b"]
