import logging
from datetime import datetime, timedelta, timezone

from .base import AdapterFacade, stamp_record
from .engine import READWRITE
from .models import Tag
from .utils import contains_text, generate_id, normalize_tag_name, parse_iso, sort_records, timestamp_key

logger = logging.getLogger("GridFlow")

DEFAULT_TAG_COLOR = "#0079bf"

CATEGORY_COLORS = {
    "work": "#0079bf",
    "personal": "#d29034",
    "project": "#519839",
    "urgent": "#eb5a46",
    "idea": "#c377e0",
    "meeting": "#ff9f1a",
    "general": "#838c91",
}

PALETTE = ["#0079bf", "#d29034", "#519839", "#eb5a46", "#c377e0", "#ff9f1a", "#838c91"]

UPDATABLE_FIELDS = ("name", "color", "category", "description", "parent")

SAMPLE_TAGS = [
    {"name": "work", "category": "work", "color": "#0079bf", "description": "Work-related items"},
    {"name": "personal", "category": "personal", "color": "#d29034", "description": "Personal tasks and notes"},
    {"name": "urgent", "category": "priority", "color": "#eb5a46", "description": "Urgent items requiring immediate attention"},
    {"name": "meeting", "category": "work", "color": "#ff9f1a", "description": "Meeting-related items"},
    {"name": "idea", "category": "general", "color": "#c377e0", "description": "Ideas and brainstorming"},
    {"name": "project", "category": "work", "color": "#519839", "description": "Project-related items"},
    {"name": "follow-up", "category": "action", "color": "#838c91", "description": "Items requiring follow-up"},
]


def _name_hash(name):
    # 32-bit rolling hash, stable across runs (unlike hash()).
    h = 0
    for ch in name:
        h = ((h << 5) - h + ord(ch)) & 0xFFFFFFFF
    if h >= 0x80000000:
        h -= 0x100000000
    return h


def _matches_search(tag, needle):
    return contains_text(tag.get("name"), needle) or contains_text(tag.get("description"), needle)


_SORTS = {
    "name": (lambda t: str(t.get("name") or ""), False),
    "usage": (lambda t: t.get("usageCount") or 0, True),
    "created": (timestamp_key("createdAt"), True),
    "updated": (timestamp_key("updatedAt"), True),
}


class TagsAdapter(AdapterFacade[Tag]):
    """Tags keyed by generated id; ``name`` is a normalised soft-unique key."""

    collection_name = "tags"

    async def create_tag(self, data):
        """Create a tag, or return the existing one with the same normalised name."""
        name = normalize_tag_name(data.get("name") or "Untitled Tag")
        async with await self.base.transaction(READWRITE) as tx:
            for tag in await tx.get_all(self.collection_name):
                if tag.get("name") == name:
                    logger.debug("Tag %r already exists as %s", name, tag.get("id"))
                    return tag
            tag = stamp_record(
                {
                    "id": data.get("id") or generate_id("tag"),
                    "name": name,
                    "color": data.get("color") or DEFAULT_TAG_COLOR,
                    "category": data.get("category") or "general",
                    "description": data.get("description") or "",
                    "parent": data.get("parent") or None,
                    "usageCount": 0,
                }
            )
            await tx.put(self.collection_name, tag)
        logger.info("Created tag %s (%s)", tag["id"], name)
        return tag

    async def find_by_name(self, name):
        """Exact match on the normalised name; linear scan."""
        wanted = normalize_tag_name(name)
        for tag in await self.get_all():
            if tag.get("name") == wanted:
                return tag
        return None

    async def get_by_category(self, category):
        return await self.get_by_index("category", category)

    async def get_by_parent(self, parent_id):
        return await self.get_by_index("parent", parent_id)

    async def get_by_usage(self, limit=50):
        try:
            tags = await self.get_all()
        except Exception:
            logger.exception("Failed to get tags by usage")
            return []
        tags.sort(key=lambda t: t.get("usageCount") or 0, reverse=True)
        return tags[:limit]

    async def search_tags(self, term):
        try:
            needle = str(term or "").lower()
            return [t for t in await self.get_all() if _matches_search(t, needle)]
        except Exception:
            logger.exception("Failed to search tags")
            return []

    async def update_tag(self, tag_id, updates):
        """Apply ``updates`` restricted to the user-editable tag fields."""

        def apply(tag):
            for key in UPDATABLE_FIELDS:
                if key in updates:
                    tag[key] = normalize_tag_name(updates[key]) if key == "name" else updates[key]
            return tag

        return await self.base.update(tag_id, apply)

    async def increment_usage(self, tag_id):
        def apply(tag):
            tag["usageCount"] = (tag.get("usageCount") or 0) + 1
            return tag

        return await self.base.update(tag_id, apply)

    async def decrement_usage(self, tag_id):
        def apply(tag):
            tag["usageCount"] = max(0, (tag.get("usageCount") or 0) - 1)
            return tag

        return await self.base.update(tag_id, apply)

    async def get_tag_hierarchy(self):
        """Root tags keyed by id, each with its direct ``children``."""
        try:
            tags = await self.get_all()
        except Exception:
            logger.exception("Failed to get tag hierarchy")
            return {}

        hierarchy = {t["id"]: {**t, "children": []} for t in tags if not t.get("parent")}
        for tag in tags:
            parent = hierarchy.get(tag.get("parent"))
            if parent is not None:
                parent["children"].append(tag)
        return hierarchy

    async def get_filtered(self, filters=None):
        filters = filters or {}
        try:
            tags = await self.get_all()
            if tags and filters.get("category"):
                tags = [t for t in tags if t.get("category") == filters["category"]]
            if tags and "parent" in filters:
                tags = [t for t in tags if t.get("parent") == filters["parent"]]
            if tags and filters.get("minUsage") is not None:
                tags = [t for t in tags if (t.get("usageCount") or 0) >= filters["minUsage"]]
            if tags and filters.get("search"):
                needle = str(filters["search"]).lower()
                tags = [t for t in tags if _matches_search(t, needle)]
            if tags and filters.get("sortBy"):
                sort_records(tags, filters["sortBy"], _SORTS)
            return tags
        except Exception:
            logger.exception("Failed to get filtered tags")
            return []

    async def get_statistics(self):
        stats = {
            "total": 0,
            "byCategory": {},
            "totalUsage": 0,
            "mostUsed": None,
            "recentCount": 0,
            "hierarchical": 0,
        }
        try:
            tags = await self.get_all()
        except Exception:
            logger.exception("Failed to get tag statistics")
            return stats

        cutoff = datetime.now(timezone.utc) - timedelta(days=30)
        stats["total"] = len(tags)
        for tag in tags:
            category = tag.get("category") or "Uncategorized"
            stats["byCategory"][category] = stats["byCategory"].get(category, 0) + 1
            usage = tag.get("usageCount") or 0
            stats["totalUsage"] += usage
            if stats["mostUsed"] is None or usage > (stats["mostUsed"].get("usageCount") or 0):
                stats["mostUsed"] = tag
            created = parse_iso(tag.get("createdAt"))
            if created is not None and created > cutoff:
                stats["recentCount"] += 1
            if tag.get("parent"):
                stats["hierarchical"] += 1
        return stats

    @staticmethod
    def generate_tag_color(category, name):
        if category in CATEGORY_COLORS:
            return CATEGORY_COLORS[category]
        return PALETTE[abs(_name_hash(str(name or ""))) % len(PALETTE)]

    async def create_sample_tags(self):
        if await self.count() > 0:
            return []
        return [await self.create_tag(data) for data in SAMPLE_TAGS]
