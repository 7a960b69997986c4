"""
Tests for tag reconciliation.
"""

from datetime import datetime, timezone

import pytest
from sqlalchemy import func, select

from tracker.models import Tag, Transaction
from tracker.tags import TagDiff, current_tags, diff_tags, get_or_create_tag, reconcile_tags


@pytest.fixture
def transaction(db, alice):
    t = Transaction(
        user_id=alice.user_id,
        amount=12.5,
        currency="CAD",
        occurred_at=datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc),
        merchant="PIAST BAKERY",
        card="visa",
        category="food",
    )
    db.add(t)
    db.commit()
    return t.transaction_id


def _tag_count(db):
    return db.execute(select(func.count()).select_from(Tag)).scalar_one()


class TestDiff:
    def test_symmetric_difference(self):
        diff = diff_tags({"a", "b", "c"}, {"b", "c", "d"})
        assert diff == TagDiff(to_create={"d"}, to_delete={"a"})

    def test_empty_names_are_ignored(self):
        diff = diff_tags(set(), ["", "x", ""])
        assert diff.to_create == {"x"}

    def test_same_sets_are_a_no_op(self):
        assert diff_tags(["a", "b"], ["b", "a", "a"]).is_empty

    def test_empty_desired_removes_everything(self):
        assert diff_tags({"a", "b"}, []).to_delete == {"a", "b"}


class TestReconcile:
    def test_moves_to_desired_set(self, db, transaction):
        reconcile_tags(db, transaction, ["a", "b", "c"])

        reconcile_tags(db, transaction, ["b", "c", "d"])

        assert set(current_tags(db, transaction)) == {"b", "c", "d"}

    def test_second_application_changes_nothing(self, db, transaction):
        reconcile_tags(db, transaction, ["a", "b", "c"])
        reconcile_tags(db, transaction, ["b", "c", "d"])

        again = reconcile_tags(db, transaction, ["b", "c", "d"])

        assert again.is_empty

    def test_removed_tags_stay_reusable(self, db, transaction):
        reconcile_tags(db, transaction, ["travel"])
        tag_id = get_or_create_tag(db, "travel")

        reconcile_tags(db, transaction, [])

        assert current_tags(db, transaction) == {}
        assert get_or_create_tag(db, "travel") == tag_id

    def test_get_or_create_is_idempotent(self, db):
        first = get_or_create_tag(db, "groceries")
        second = get_or_create_tag(db, "groceries")
        db.commit()

        assert first == second
        assert _tag_count(db) == 1

    def test_user_scope_separates_owners(self, db, alice, bob):
        global_id = get_or_create_tag(db, "rent")
        alice_id = get_or_create_tag(db, "rent", alice.user_id)
        bob_id = get_or_create_tag(db, "rent", bob.user_id)
        db.commit()

        assert len({global_id, alice_id, bob_id}) == 3
        assert get_or_create_tag(db, "rent", alice.user_id) == alice_id

    def test_failed_reconcile_changes_nothing(self, db, transaction, monkeypatch):
        reconcile_tags(db, transaction, ["a", "b"])

        def explode(*args, **kwargs):
            raise RuntimeError("store went away")

        monkeypatch.setattr("tracker.tags.link_tag", explode)
        with pytest.raises(RuntimeError):
            reconcile_tags(db, transaction, ["c"])

        assert set(current_tags(db, transaction)) == {"a", "b"}
