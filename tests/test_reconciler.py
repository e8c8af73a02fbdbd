"""
Tests for entity reconciliation.

Run with:
    python -m pytest tests/test_reconciler.py -v
"""

import unittest

from geofeed_service.models import Earthquake
from geofeed_service.reconciler import RenderedIdentitySet, dedupe, reconcile


def quake(event_id: str, magnitude: float = 1.0) -> Earthquake:
    return Earthquake(id=event_id, latitude=10.0, longitude=20.0, magnitude=magnitude)


def ids(entities):
    return [entity.id for entity in entities]


class TestReconcile(unittest.TestCase):

    def test_first_snapshot_adds_everything(self):
        diff = reconcile(set(), [quake("b"), quake("a")])
        self.assertEqual(ids(diff.to_add), ["b", "a"])
        self.assertEqual(diff.to_remove, [])

    def test_equal_id_sets_give_empty_diff(self):
        diff = reconcile({"a", "b"}, [quake("b", 5.0), quake("a", 6.0)])
        self.assertTrue(diff.is_empty)

    def test_add_and_remove(self):
        diff = reconcile({"a", "b", "z", "c"}, [quake("d"), quake("b"), quake("e")])
        self.assertEqual(diff.to_remove, ["a", "c", "z"])
        self.assertEqual(ids(diff.to_add), ["d", "e"])

    def test_unchanged_ids_never_reported(self):
        previous = {"a", "b", "c"}
        fresh = [quake("b"), quake("c"), quake("d")]
        diff = reconcile(previous, fresh)

        unchanged = previous & {"b", "c", "d"}
        self.assertFalse(unchanged & set(ids(diff.to_add)))
        self.assertFalse(unchanged & set(diff.to_remove))

    def test_result_matches_fresh_id_set(self):
        previous = {"a", "b", "c"}
        fresh = [quake("c"), quake("x"), quake("y")]
        diff = reconcile(previous, fresh)
        result = (previous - set(diff.to_remove)) | set(ids(diff.to_add))
        self.assertEqual(result, {"c", "x", "y"})

    def test_empty_snapshot_removes_all(self):
        diff = reconcile({"b", "a"}, [])
        self.assertEqual(diff.to_remove, ["a", "b"])
        self.assertEqual(diff.to_add, [])

    def test_duplicate_ids_keep_first(self):
        first, second = quake("a", 1.0), quake("a", 9.0)
        diff = reconcile(set(), [first, quake("b"), second])
        self.assertEqual(ids(diff.to_add), ["a", "b"])
        self.assertIs(diff.to_add[0], first)

    def test_dedupe_preserves_order(self):
        self.assertEqual(ids(dedupe([quake("c"), quake("a"), quake("c"), quake("b")])), ["c", "a", "b"])


class TestRenderedIdentitySet(unittest.TestCase):

    def test_reconcile_applies_diff(self):
        rendered = RenderedIdentitySet()
        rendered.reconcile([quake("a"), quake("b")])
        self.assertEqual(rendered.ids, {"a", "b"})

        diff = rendered.reconcile([quake("b"), quake("c")])
        self.assertEqual(ids(diff.to_add), ["c"])
        self.assertEqual(diff.to_remove, ["a"])
        self.assertEqual(rendered.ids, {"b", "c"})

    def test_reconcile_is_idempotent(self):
        rendered = RenderedIdentitySet()
        snapshot = [quake("a"), quake("b")]
        rendered.reconcile(snapshot)
        self.assertTrue(rendered.reconcile(snapshot).is_empty)

    def test_clear(self):
        rendered = RenderedIdentitySet(["b", "a"])
        self.assertEqual(rendered.clear(), ["a", "b"])
        self.assertEqual(len(rendered), 0)
        self.assertNotIn("a", rendered)


if __name__ == '__main__':
    unittest.main()
