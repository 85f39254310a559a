from fakes import ALICE, BOB


def test_notify_writes_row_and_publishes(notifier, bus, db):
    seen = []
    bus.subscribe("notifications", seen.append)

    row = notifier.notify(
        ALICE, type="new_offer", title="New Swap Offer", body="hi", data={"offer_id": "o1"}, sender_id=BOB
    )

    assert row["user_id"] == ALICE
    assert row["sender_id"] == BOB
    assert row["read"] is False
    assert [e.row["id"] for e in seen] == [row["id"]]
    assert db.find("notifications", type="new_offer")


def test_notify_never_raises(notifier, db, bus):
    seen = []
    bus.subscribe("notifications", seen.append)
    db.fail("notifications", "insert")

    assert notifier.notify(ALICE, type="offer_rejected", title="t", body="b") is None
    assert seen == []
