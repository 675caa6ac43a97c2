import asyncio
import tempfile
import unittest
from pathlib import Path

from gridflow.errors import RecordNotFound
from gridflow.store import GridFlowStore
from gridflow.templates import LIBRARY_KEY


class TemplateAdapterTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.temp_dir = tempfile.TemporaryDirectory()
        self.store = GridFlowStore(Path(self.temp_dir.name) / "gridflow.db")
        self.templates = self.store.templates

    async def asyncTearDown(self):
        await self.store.close()

    def tearDown(self):
        self.temp_dir.cleanup()

    async def test_create_and_increment_usage(self):
        created = await self.templates.create_template({"name": "Sprint", "columns": [{"key": "todo"}]})

        await asyncio.gather(*(self.templates.increment_usage(created["id"]) for _ in range(3)))

        stored = await self.templates.get_by_id(created["id"])
        self.assertEqual(stored["usageCount"], 3)
        self.assertTrue(stored["lastUsed"])
        self.assertEqual(stored["category"], "General")
        self.assertEqual(stored["columns"], [{"key": "todo"}])

    async def test_filters_popular_and_search(self):
        a = await self.templates.create_template({"name": "Kanban", "category": "Agile", "tags": ["team"]})
        await self.templates.create_template({"name": "Journal", "category": "Personal", "description": "daily kanban-free log"})
        await self.templates.create_template({"name": "Scrum", "category": "Agile", "isPublic": True})
        await self.templates.increment_usage(a["id"])

        self.assertEqual([t["name"] for t in await self.templates.get_filtered({"tags": ["team"]})], ["Kanban"])
        self.assertEqual(
            [t["name"] for t in await self.templates.get_filtered({"category": "Agile", "sortBy": "name"})],
            ["Kanban", "Scrum"],
        )
        self.assertEqual([t["name"] for t in await self.templates.get_filtered({"isPublic": True})], ["Scrum"])
        self.assertEqual(sorted(t["name"] for t in await self.templates.search_by_name("kanban")), ["Journal", "Kanban"])
        self.assertEqual([t["name"] for t in await self.templates.get_popular(1)], ["Kanban"])
        self.assertEqual(len(await self.templates.get_by_category("Agile")), 2)

        stats = await self.templates.get_statistics()
        self.assertEqual(stats["total"], 3)
        self.assertEqual(stats["totalUsage"], 1)

    async def test_update_missing_template_raises(self):
        with self.assertRaises(RecordNotFound):
            await self.templates.update_template("missing", {"name": "x"})


class TemplateLibraryAdapterTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.temp_dir = tempfile.TemporaryDirectory()
        self.store = GridFlowStore(Path(self.temp_dir.name) / "gridflow.db")
        self.library = self.store.template_library

    async def asyncTearDown(self):
        await self.store.close()

    def tearDown(self):
        self.temp_dir.cleanup()

    async def test_default_config_without_stored_record(self):
        config = await self.library.get_library_config()

        self.assertEqual(config["taskSets"], {})
        self.assertEqual(config["nextTaskSetId"], 1)
        self.assertIsNone(await self.store.settings.get_by_id(LIBRARY_KEY))

    async def test_task_sets_get_sequential_ids(self):
        first = await self.library.create_task_set({"name": "Launch", "tasks": ["Write docs", {"text": "Ship", "priority": "high"}]})
        second = await self.library.create_task_set({"name": "Review"})

        self.assertEqual(first["id"], "taskset_1")
        self.assertEqual(second["id"], "taskset_2")
        self.assertEqual(first["tasks"][0], {"text": "Write docs", "priority": "medium", "estimatedTime": None, "dependencies": []})
        self.assertEqual(first["tasks"][1]["priority"], "high")
        self.assertEqual(await self.library.get_task_set("taskset_1"), first)
        self.assertEqual(len(await self.library.get_all_task_sets()), 2)

    async def test_concurrent_creates_keep_every_item(self):
        created = await asyncio.gather(*(self.library.create_checklist({"name": f"List {i}"}) for i in range(5)))

        self.assertEqual(sorted(c["id"] for c in created), [f"checklist_{i}" for i in range(1, 6)])
        self.assertEqual(len(await self.library.get_all_checklists()), 5)
        self.assertEqual((await self.library.get_library_config())["nextChecklistId"], 6)

    async def test_note_templates_and_usage(self):
        note = await self.library.create_note_template({"name": "Standup", "content": "## Yesterday"})

        bumped = await self.library.increment_usage("noteTemplates", note["id"])

        self.assertEqual(bumped["usageCount"], 1)
        self.assertEqual((await self.library.get_note_template(note["id"]))["usageCount"], 1)
        self.assertEqual(note["structure"]["format"], "markdown")
        with self.assertRaises(RecordNotFound):
            await self.library.increment_usage("noteTemplates", "notetemplate_99")

    async def test_featured_statistics_and_import(self):
        await self.library.create_checklist({"name": "Travel", "items": ["Passport", {"text": "Adapter", "required": False}]})
        await self.library.set_featured(["checklist_1"])

        stats = await self.library.get_statistics()
        exported = await self.library.export_library()
        result = await self.library.import_library({"taskSets": {"taskset_9": {"id": "taskset_9", "name": "Imported"}}})

        self.assertEqual(await self.library.get_featured(), ["checklist_1"])
        self.assertEqual(stats["checklists"]["total"], 1)
        self.assertEqual(stats["featured"], 1)
        self.assertFalse(exported["checklists"]["checklist_1"]["items"][1]["required"])
        self.assertEqual(result["imported"]["taskSets"], 1)
        self.assertEqual(result["total"], 1)
        self.assertEqual((await self.library.get_task_set("taskset_9"))["name"], "Imported")


if __name__ == "__main__":
    unittest.main()
