import logging

import pytest

from postgrest.exceptions import APIError

from fakes import ALICE, BOB, CAROL
from skillswap.core.errors import InvalidInput, NotFound, TransientIO, Unauthorized
from skillswap.pairing.service import canonical_pair


def test_canonical_pair_is_order_independent():
    assert canonical_pair(BOB, ALICE) == (ALICE, BOB)
    assert canonical_pair(ALICE, BOB) == (ALICE, BOB)


def test_get_or_create_returns_same_id_in_both_directions(directory, db):
    first = directory.get_or_create(ALICE, BOB)
    again = directory.get_or_create(ALICE, BOB)
    reverse = directory.get_or_create(BOB, ALICE)

    assert first == again == reverse
    assert len(db.rows("conversations")) == 1


def test_rows_are_stored_canonically(directory, db):
    directory.get_or_create(BOB, ALICE)

    row = db.rows("conversations")[0]
    assert (row["user1_id"], row["user2_id"]) == (ALICE, BOB)


def test_distinct_pairs_get_distinct_conversations(directory):
    assert directory.get_or_create(ALICE, BOB) != directory.get_or_create(ALICE, CAROL)


def test_self_pairing_is_rejected(directory):
    with pytest.raises(InvalidInput):
        directory.get_or_create(ALICE, ALICE)


def test_fallback_path_when_rpc_is_missing(directory, db, caplog):
    db.rpc_available = False

    with caplog.at_level(logging.WARNING):
        first = directory.get_or_create(ALICE, BOB)
        second = directory.get_or_create(BOB, ALICE)

    assert first == second
    assert len(db.rows("conversations")) == 1
    assert "pairing_rpc_unavailable" in caplog.text


def test_fallback_resolves_lost_insert_race_by_rereading(directory, db, client, monkeypatch):
    db.rpc_available = False
    winner = db.seed("conversations", user1_id=ALICE, user2_id=BOB)

    # First read misses (the other client has not committed yet), insert then conflicts
    lookups = iter([None])
    original_find = directory._find

    def racing_find(u1, u2):
        try:
            return next(lookups)
        except StopIteration:
            return original_find(u1, u2)

    monkeypatch.setattr(directory, "_find", racing_find)

    assert directory.get_or_create(BOB, ALICE) == winner["id"]
    assert len(db.rows("conversations")) == 1


def test_fallback_reports_duplicate_rows(directory, db, caplog):
    db.rpc_available = False
    first = db.seed("conversations", user1_id=ALICE, user2_id=BOB)
    # Simulate the historical duplicate a constraint-less table could hold
    db.tables["conversations"].append({**first, "id": "ffffffff-dup", "created_at": db.now()})

    with caplog.at_level(logging.ERROR):
        resolved = directory.get_or_create(ALICE, BOB)

    assert resolved == first["id"]
    assert "duplicate_conversation_rows" in caplog.text


def test_fallback_insert_failure_is_transient(directory, db):
    db.rpc_available = False
    db.fail("conversations", "insert")

    with pytest.raises(TransientIO):
        directory.get_or_create(ALICE, BOB)


def test_require_participant(directory):
    conversation_id = directory.get_or_create(ALICE, BOB)

    assert directory.require_participant(conversation_id, BOB)["id"] == conversation_id
    with pytest.raises(Unauthorized):
        directory.require_participant(conversation_id, CAROL)
    with pytest.raises(NotFound):
        directory.require_participant("00000000-0000-0000-0000-000000000000", ALICE)


def test_list_for_user_covers_both_columns(directory):
    ab = directory.get_or_create(ALICE, BOB)
    bc = directory.get_or_create(BOB, CAROL)
    directory.get_or_create(ALICE, CAROL)

    ids = {row["id"] for row in directory.list_for_user(BOB)}
    assert ids == {ab, bc}


def test_fallback_insert_error_other_than_conflict_is_transient(directory, db):
    db.rpc_available = False
    db.fail(
        "conversations",
        "insert",
        APIError({"message": "permission denied", "code": "42501", "hint": None, "details": None}),
    )

    with pytest.raises(TransientIO):
        directory.get_or_create(ALICE, BOB)
