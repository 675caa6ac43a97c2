import tempfile
import unittest
from pathlib import Path

from gridflow.base import BaseAdapter
from gridflow.engine import StorageEngine
from gridflow.errors import IndexNotFound, RecordNotFound, StoreError, UnknownCollection
from gridflow.utils import parse_iso


class BaseAdapterTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.temp_dir = tempfile.TemporaryDirectory()
        self.engine = StorageEngine(str(Path(self.temp_dir.name) / "gridflow.db"))
        self.entities = BaseAdapter(self.engine, "entities")

    async def asyncTearDown(self):
        await self.engine.close()

    def tearDown(self):
        self.temp_dir.cleanup()

    async def test_first_call_opens_the_engine(self):
        self.assertFalse(self.engine.is_ready)

        self.assertEqual(await self.entities.get_all(), [])
        self.assertTrue(self.engine.is_ready)

    async def test_save_round_trip_stamps_timestamps(self):
        record = {
            "id": "t1",
            "type": "task",
            "title": "Buy milk",
            "completed": False,
            "dueDate": None,
            "tags": ["home"],
        }

        saved = await self.entities.save(record)
        fetched = await self.entities.get_by_id("t1")

        self.assertNotIn("createdAt", record)
        self.assertEqual(fetched, saved)
        for key, value in record.items():
            self.assertEqual(fetched[key], value)
        self.assertTrue(fetched["createdAt"])
        self.assertTrue(fetched["updatedAt"])

    async def test_resave_keeps_created_at_and_advances_updated_at(self):
        first = await self.entities.save({"id": "t1", "title": "Draft"})

        second = await self.entities.save({"id": "t1", "title": "Final"})

        self.assertEqual(second["createdAt"], first["createdAt"])
        self.assertGreater(parse_iso(second["updatedAt"]), parse_iso(first["updatedAt"]))
        self.assertEqual((await self.entities.get_by_id("t1"))["title"], "Final")

    async def test_missing_primary_key_is_rejected(self):
        with self.assertRaises(StoreError):
            await self.entities.save({"title": "no id"})

    async def test_get_by_index_returns_exactly_the_matching_records(self):
        await self.entities.save({"id": "a", "priority": "high"})
        await self.entities.save({"id": "b", "priority": "low"})
        await self.entities.save({"id": "c", "priority": "high"})
        await self.entities.save({"id": "d"})

        found = await self.entities.get_by_index("priority", "high")

        self.assertEqual([r["id"] for r in found], ["a", "c"])
        self.assertTrue(all(r["priority"] == "high" for r in found))

    async def test_multi_entry_index_matches_any_array_element(self):
        await self.entities.save({"id": "a", "tags": ["work", "urgent"]})
        await self.entities.save({"id": "b", "tags": ["home"]})
        await self.entities.save({"id": "c", "tags": []})

        self.assertEqual([r["id"] for r in await self.entities.get_by_index("tags", "urgent")], ["a"])
        self.assertEqual(await self.entities.get_by_index("tags", "missing"), [])

    async def test_undeclared_index_raises(self):
        with self.assertRaises(IndexNotFound) as ctx:
            await self.entities.get_by_index("colour", "red")

        self.assertIsInstance(ctx.exception, KeyError)
        self.assertIn("type", ctx.exception.declared)
        self.assertIn("declared: type", str(ctx.exception))

    async def test_unknown_collection_raises(self):
        with self.assertRaises(UnknownCollection):
            BaseAdapter(self.engine, "nope")

    async def test_delete_is_idempotent(self):
        await self.entities.save({"id": "a"})

        self.assertTrue(await self.entities.delete("a"))
        self.assertTrue(await self.entities.delete("a"))
        self.assertIsNone(await self.entities.get_by_id("a"))

    async def test_count_and_clear(self):
        await self.entities.save({"id": "a"})
        await self.entities.save({"id": "b"})

        self.assertEqual(await self.entities.count(), 2)
        self.assertTrue(await self.entities.clear())
        self.assertEqual(await self.entities.count(), 0)

    async def test_update_applies_mutator_atomically(self):
        await self.entities.save({"id": "a", "title": "x"})

        updated = await self.entities.update("a", lambda r: {**r, "title": "y"})

        self.assertEqual(updated["title"], "y")
        self.assertEqual((await self.entities.get_by_id("a"))["title"], "y")

    async def test_update_missing_record_raises(self):
        with self.assertRaises(RecordNotFound):
            await self.entities.update("ghost", lambda r: r)


if __name__ == "__main__":
    unittest.main()
