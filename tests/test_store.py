import asyncio
import csv
import io
import json
import os
import tempfile
import unittest
from pathlib import Path
from unittest import mock

from gridflow import schema
from gridflow.errors import NotInitialized
from gridflow.store import GridFlowStore


class GridFlowStoreSnapshotTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.temp_dir = tempfile.TemporaryDirectory()
        self.store = GridFlowStore(Path(self.temp_dir.name) / "gridflow.db")
        self.other = GridFlowStore(Path(self.temp_dir.name) / "other.db")

    async def asyncTearDown(self):
        await self.store.close()
        await self.other.close()

    def tearDown(self):
        self.temp_dir.cleanup()

    async def _seed_data(self):
        await self.store.entities.save({"id": "t1", "type": "task", "title": "Buy milk", "tags": ["home"]})
        await self.store.boards.save({"id": "b1", "name": "Main"})
        await self.store.positions.set_position("t1", "b1", "board", "r1", "todo")
        await self.store.tags.create_tag({"id": "tag_home", "name": "Home"})
        await self.store.settings.set_setting("language", "en")

    async def test_default_path_comes_from_data_dir(self):
        with mock.patch.dict(os.environ, {"GRIDFLOW_DATA_DIR": self.temp_dir.name}):
            store = GridFlowStore()

        self.assertEqual(store.db_path, str(Path(self.temp_dir.name) / "gridflow.db"))

    async def test_async_context_manager_opens_and_closes(self):
        async with GridFlowStore(Path(self.temp_dir.name) / "ctx.db") as store:
            self.assertTrue(store.engine.is_ready)
        self.assertFalse(store.engine.is_ready)

    async def test_export_snapshot_contains_every_collection(self):
        await self._seed_data()

        snapshot = await self.store.export_snapshot()

        self.assertTrue(snapshot["exportedAt"])
        self.assertEqual(snapshot["schemaVersion"], self.store.engine.version)
        for name in schema.all_collection_names():
            self.assertIsInstance(snapshot[name], list)
        self.assertEqual(snapshot["entities"][0]["id"], "t1")
        self.assertEqual(snapshot["entityPositions"][0]["id"], "t1_b1_board")

    async def test_import_snapshot_into_empty_store(self):
        await self._seed_data()
        snapshot = await self.store.export_snapshot()

        result = await self.other.import_snapshot(snapshot)

        self.assertEqual(result["created"], 5)
        self.assertEqual(result["updated"], 0)
        self.assertEqual(result["errors"], [])
        imported = await self.other.entities.get_by_id("t1")
        self.assertEqual(imported["title"], "Buy milk")
        self.assertEqual(imported["createdAt"], snapshot["entities"][0]["createdAt"])
        self.assertEqual((await self.other.tags.find_by_name("home"))["id"], "tag_home")

    async def test_merge_keeps_local_only_records(self):
        await self._seed_data()
        snapshot = await self.store.export_snapshot()
        await self.other.entities.save({"id": "local", "title": "Only here"})
        await self.other.entities.save({"id": "t1", "title": "Stale"})

        result = await self.other.import_snapshot(snapshot, conflict_strategy="merge")

        self.assertEqual(result["updated"], 1)
        self.assertIsNotNone(await self.other.entities.get_by_id("local"))
        self.assertEqual((await self.other.entities.get_by_id("t1"))["title"], "Buy milk")

    async def test_replace_clears_collections_in_snapshot(self):
        await self._seed_data()
        snapshot = await self.store.export_snapshot()
        await self.other.entities.save({"id": "local", "title": "Only here"})

        await self.other.import_snapshot(snapshot, conflict_strategy="replace")

        self.assertIsNone(await self.other.entities.get_by_id("local"))
        self.assertEqual(await self.other.entities.count(), 1)

    async def test_unknown_collections_and_bad_records_are_reported(self):
        result = await self.other.import_snapshot(
            {
                "exportedAt": "2024-01-01T00:00:00Z",
                "widgets": [{"id": "w1"}],
                "boards": [{"id": "b1", "name": "Main"}, {"name": "no id"}, {"id": ["b2"], "name": "list id"}],
            }
        )

        self.assertEqual(result["created"], 1)
        self.assertEqual(result["skipped"], 1)
        self.assertEqual(result["details"][0], {"collection": "widgets", "key": "", "action": "skipped"})
        self.assertEqual(len(result["errors"]), 2)
        self.assertEqual({error["collection"] for error in result["errors"]}, {"boards"})
        self.assertEqual([b["id"] for b in await self.other.boards.get_all()], ["b1"])

    async def test_import_rejects_bad_input(self):
        with self.assertRaises(ValueError):
            await self.other.import_snapshot({}, conflict_strategy="overwrite")
        with self.assertRaises(ValueError):
            await self.other.import_snapshot([])

    async def test_csv_round_trip(self):
        await self._seed_data()

        csv_text = await self.store.export_snapshot_csv()
        rows = list(csv.DictReader(io.StringIO(csv_text)))
        result = await self.other.import_snapshot_csv(csv_text)

        self.assertEqual(len(rows), 5)
        entity_row = next(row for row in rows if row["collection"] == "entities")
        self.assertEqual(entity_row["key"], "t1")
        self.assertEqual(json.loads(entity_row["doc_json"])["tags"], ["home"])
        self.assertEqual(result["created"], 5)
        self.assertEqual((await self.other.settings.get_setting("language")), "en")

    async def test_close_with_queued_reads_leaves_store_usable(self):
        await self.store.entities.save({"id": "t1", "title": "Buy milk"})
        pending = [asyncio.ensure_future(self.store.entities.get_all()) for _ in range(3)]
        await asyncio.sleep(0)

        await self.store.close()
        results = await asyncio.gather(*pending, return_exceptions=True)

        for result in results:
            self.assertIsInstance(result, (list, NotInitialized))
        self.assertFalse(self.store.engine._tx_lock.locked())

        await self.store.open()
        records = await asyncio.wait_for(self.store.entities.get_all(), 3)

        self.assertEqual([r["id"] for r in records], ["t1"])

    async def test_orphaned_records_are_found_and_purged(self):
        await self._seed_data()
        await self.store.relationships.create_relationship("t1", "p1")
        await self.store.relationships.create_relationship("gone", "p1")
        await self.store.positions.set_position("gone", "b1", "board", "r1", "todo")

        # deleting an entity leaves its dependents in place
        await self.store.entities.delete("t1")
        orphans = await self.store.find_orphaned_records()

        self.assertEqual(sorted(orphans["entityPositions"]), ["gone_b1_board", "t1_b1_board"])
        self.assertEqual(len(orphans["entityRelationships"]), 2)

        removed = await self.store.purge_orphaned_records()

        self.assertEqual(removed, {"entityPositions": 2, "entityRelationships": 2, "total": 4})
        self.assertEqual(await self.store.positions.count(), 0)
        self.assertEqual(await self.store.find_orphaned_records(), {"entityPositions": [], "entityRelationships": []})


if __name__ == "__main__":
    unittest.main()
