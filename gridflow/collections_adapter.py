import logging
from datetime import datetime, timedelta, timezone

from .base import AdapterFacade
from .errors import InvalidOperation
from .models import SavedCollection
from .utils import contains_text, generate_id, now_iso, parse_iso, sort_records, timestamp_key

logger = logging.getLogger("GridFlow")

COLLECTION_TYPES = ("manual", "saved_search", "smart")


def _default_filters():
    return {"tags": [], "entityTypes": [], "priorities": [], "dateRange": None, "search": ""}


def _matches_search(collection, needle):
    return contains_text(collection.get("name"), needle) or contains_text(collection.get("description"), needle)


_SORTS = {
    "name": (lambda c: str(c.get("name") or "").lower(), False),
    "itemCount": (lambda c: c.get("itemCount") or 0, True),
    "created": (timestamp_key("createdAt"), True),
    "updated": (timestamp_key("lastUpdated", fallback="updatedAt"), True),
}


class CollectionsAdapter(AdapterFacade[SavedCollection]):
    """Saved views: manual item lists, saved searches and smart collections."""

    collection_name = "collections"

    async def create_collection(self, data):
        collection_type = data.get("type") or "saved_search"
        if collection_type not in COLLECTION_TYPES:
            raise InvalidOperation(f"Unknown collection type: {collection_type}")

        items = list(data.get("items") or [])
        now = now_iso()
        collection = {
            "id": data.get("id") or generate_id("collection"),
            "name": data.get("name") or "Untitled Collection",
            "description": data.get("description") or "",
            "type": collection_type,
            "category": data.get("category") or "general",
            "filters": {**_default_filters(), **(data.get("filters") or {})},
            "items": items,
            "isPublic": bool(data.get("isPublic", False)),
            "itemCount": len(items),
            "autoUpdate": data.get("autoUpdate") is not False,
            "createdAt": now,
            "lastUpdated": now,
        }
        saved = await self.save(collection)
        logger.info("Created collection %s (%s)", saved["id"], collection_type)
        return saved

    async def get_by_type(self, collection_type):
        return await self.get_by_index("type", collection_type)

    async def get_by_category(self, category):
        return await self.get_by_index("category", category)

    async def update_collection(self, collection_id, updates):
        def apply(collection):
            collection.update(updates)
            collection["id"] = collection_id
            return collection

        return await self.base.update(collection_id, apply)

    async def add_item(self, collection_id, entity_id):
        def apply(collection):
            if collection.get("type") != "manual":
                raise InvalidOperation("Can only add items to manual collections")
            items = collection.setdefault("items", [])
            if entity_id not in items:
                items.append(entity_id)
                collection["itemCount"] = len(items)
                collection["lastUpdated"] = now_iso()
            return collection

        return await self.base.update(collection_id, apply)

    async def remove_item(self, collection_id, entity_id):
        def apply(collection):
            if collection.get("type") != "manual":
                raise InvalidOperation("Can only remove items from manual collections")
            items = collection.setdefault("items", [])
            if entity_id in items:
                items.remove(entity_id)
                collection["itemCount"] = len(items)
                collection["lastUpdated"] = now_iso()
            return collection

        return await self.base.update(collection_id, apply)

    async def update_items(self, collection_id, items):
        """Overwrite the cached item list (saved-search refresh)."""

        def apply(collection):
            collection["items"] = list(items or [])
            collection["itemCount"] = len(collection["items"])
            collection["lastUpdated"] = now_iso()
            return collection

        return await self.base.update(collection_id, apply)

    async def update_item_count(self, collection_id, item_count):
        def apply(collection):
            collection["itemCount"] = int(item_count)
            collection["lastUpdated"] = now_iso()
            return collection

        return await self.base.update(collection_id, apply)

    async def search_collections(self, term):
        try:
            needle = str(term or "").lower()
            return [c for c in await self.get_all() if _matches_search(c, needle)]
        except Exception:
            logger.exception("Failed to search collections")
            return []

    async def get_filtered(self, filters=None):
        """Type, category, visibility and text filters, then an optional sort."""
        filters = filters or {}
        try:
            collections = await self.get_all()
            if collections and filters.get("type"):
                collections = [c for c in collections if c.get("type") == filters["type"]]
            if collections and filters.get("category"):
                collections = [c for c in collections if c.get("category") == filters["category"]]
            if collections and filters.get("isPublic") is not None:
                collections = [c for c in collections if bool(c.get("isPublic")) == bool(filters["isPublic"])]
            if collections and filters.get("search"):
                needle = str(filters["search"]).lower()
                collections = [c for c in collections if _matches_search(c, needle)]
            if collections and filters.get("sortBy"):
                sort_records(collections, filters["sortBy"], _SORTS)
            return collections
        except Exception:
            logger.exception("Failed to get filtered collections")
            return []

    async def get_statistics(self):
        stats = {
            "total": 0,
            "byType": {},
            "byCategory": {},
            "totalItems": 0,
            "mostPopular": None,
            "recentCount": 0,
        }
        try:
            collections = await self.get_all()
        except Exception:
            logger.exception("Failed to get collection statistics")
            return stats

        cutoff = datetime.now(timezone.utc) - timedelta(days=30)
        stats["total"] = len(collections)
        for collection in collections:
            ctype = collection.get("type") or "unknown"
            stats["byType"][ctype] = stats["byType"].get(ctype, 0) + 1
            category = collection.get("category") or "Uncategorized"
            stats["byCategory"][category] = stats["byCategory"].get(category, 0) + 1

            item_count = collection.get("itemCount") or 0
            stats["totalItems"] += item_count
            popular = stats["mostPopular"]
            if popular is None or item_count > (popular.get("itemCount") or 0):
                stats["mostPopular"] = collection

            created = parse_iso(collection.get("createdAt"))
            if created is not None and created > cutoff:
                stats["recentCount"] += 1
        return stats

    async def create_sample_collections(self):
        """Seed a few saved searches into an empty store; no-op otherwise."""
        if await self.count() > 0:
            return []

        now = datetime.now(timezone.utc)
        start_of_day = now.replace(hour=0, minute=0, second=0, microsecond=0)
        samples = [
            {
                "name": "High Priority Items",
                "description": "All high priority tasks, notes, and checklists across all projects",
                "type": "saved_search",
                "category": "productivity",
                "filters": {"priorities": ["high", "urgent"], "entityTypes": ["task", "note", "checklist"]},
            },
            {
                "name": "This Week's Items",
                "description": "All items created this week",
                "type": "saved_search",
                "category": "time",
                "filters": {
                    "dateRange": {"start": (now - timedelta(days=7)).isoformat(), "end": now.isoformat()},
                    "entityTypes": ["task", "note", "checklist"],
                },
            },
            {
                "name": "Completed Today",
                "description": "All items completed today",
                "type": "saved_search",
                "category": "productivity",
                "filters": {
                    "completed": True,
                    "dateRange": {"start": start_of_day.isoformat(), "end": now.isoformat()},
                    "entityTypes": ["task"],
                },
            },
        ]
        created = []
        for data in samples:
            created.append(await self.create_collection(data))
        return created
