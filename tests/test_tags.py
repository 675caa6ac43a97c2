import asyncio
import tempfile
import unittest
from pathlib import Path

from gridflow.errors import RecordNotFound
from gridflow.store import GridFlowStore
from gridflow.tags import CATEGORY_COLORS, PALETTE, SAMPLE_TAGS, TagsAdapter


class TagsAdapterTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.temp_dir = tempfile.TemporaryDirectory()
        self.store = GridFlowStore(Path(self.temp_dir.name) / "gridflow.db")
        self.tags = self.store.tags

    async def asyncTearDown(self):
        await self.store.close()

    def tearDown(self):
        self.temp_dir.cleanup()

    async def test_names_are_normalized(self):
        created = await self.tags.create_tag({"name": "Work"})

        self.assertEqual(created["name"], "work")
        self.assertEqual((await self.tags.find_by_name("work"))["id"], created["id"])
        self.assertEqual((await self.tags.find_by_name(" WORK "))["id"], created["id"])
        self.assertIsNone(await self.tags.find_by_name("play"))

    async def test_create_tag_returns_existing_tag_for_same_name(self):
        first = await self.tags.create_tag({"name": "Work"})

        second = await self.tags.create_tag({"name": "  work", "color": "#000000"})

        self.assertEqual(second["id"], first["id"])
        self.assertEqual(await self.tags.count(), 1)

    async def test_concurrent_creates_store_one_tag(self):
        results = await asyncio.gather(*(self.tags.create_tag({"name": "Idea"}) for _ in range(5)))

        self.assertEqual(len({tag["id"] for tag in results}), 1)
        self.assertEqual(await self.tags.count(), 1)

    async def test_concurrent_usage_increments_are_not_lost(self):
        tag = await self.tags.create_tag({"name": "work"})

        await asyncio.gather(*(self.tags.increment_usage(tag["id"]) for _ in range(10)))

        self.assertEqual((await self.tags.get_by_id(tag["id"]))["usageCount"], 10)

    async def test_decrement_usage_stops_at_zero(self):
        tag = await self.tags.create_tag({"name": "work"})

        updated = await self.tags.decrement_usage(tag["id"])

        self.assertEqual(updated["usageCount"], 0)

    async def test_increment_unknown_tag_raises(self):
        with self.assertRaises(RecordNotFound):
            await self.tags.increment_usage("missing")

    async def test_update_tag_only_touches_editable_fields(self):
        tag = await self.tags.create_tag({"name": "work"})

        updated = await self.tags.update_tag(tag["id"], {"name": " Office ", "usageCount": 99, "color": "#111111"})

        self.assertEqual(updated["name"], "office")
        self.assertEqual(updated["color"], "#111111")
        self.assertEqual(updated["usageCount"], 0)

    async def test_hierarchy_and_parent_lookup(self):
        root = await self.tags.create_tag({"name": "projects"})
        child = await self.tags.create_tag({"name": "gridflow", "parent": root["id"]})

        hierarchy = await self.tags.get_tag_hierarchy()

        self.assertEqual(list(hierarchy), [root["id"]])
        self.assertEqual([t["id"] for t in hierarchy[root["id"]]["children"]], [child["id"]])
        self.assertEqual([t["id"] for t in await self.tags.get_by_parent(root["id"])], [child["id"]])

    async def test_filtered_and_statistics(self):
        work = await self.tags.create_tag({"name": "work", "category": "work"})
        await self.tags.create_tag({"name": "meeting", "category": "work", "description": "Calls"})
        await self.tags.create_tag({"name": "home", "category": "personal"})
        await self.tags.increment_usage(work["id"])

        filtered = await self.tags.get_filtered({"category": "work", "sortBy": "name"})
        used = await self.tags.get_filtered({"minUsage": 1})
        searched = await self.tags.search_tags("call")
        stats = await self.tags.get_statistics()

        self.assertEqual([t["name"] for t in filtered], ["meeting", "work"])
        self.assertEqual([t["name"] for t in used], ["work"])
        self.assertEqual([t["name"] for t in searched], ["meeting"])
        self.assertEqual(stats["total"], 3)
        self.assertEqual(stats["byCategory"], {"work": 2, "personal": 1})
        self.assertEqual(stats["totalUsage"], 1)
        self.assertEqual(stats["mostUsed"]["id"], work["id"])
        self.assertEqual(stats["recentCount"], 3)
        self.assertEqual([t["name"] for t in await self.tags.get_by_usage(1)], ["work"])

    def test_generate_tag_color(self):
        self.assertEqual(TagsAdapter.generate_tag_color("urgent", "anything"), CATEGORY_COLORS["urgent"])
        color = TagsAdapter.generate_tag_color("custom", "reading")
        self.assertIn(color, PALETTE)
        self.assertEqual(TagsAdapter.generate_tag_color("custom", "reading"), color)

    async def test_sample_tags_only_seed_an_empty_store(self):
        created = await self.tags.create_sample_tags()

        self.assertEqual(len(created), len(SAMPLE_TAGS))
        self.assertEqual(await self.tags.create_sample_tags(), [])


if __name__ == "__main__":
    unittest.main()
