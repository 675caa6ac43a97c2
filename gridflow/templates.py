import logging
from datetime import datetime, timedelta, timezone

from .base import AdapterFacade
from .errors import RecordNotFound
from .models import MetadataRecord, Template
from .utils import contains_text, generate_id, now_iso, parse_iso, sort_records, timestamp_key

logger = logging.getLogger("GridFlow")

LIBRARY_KEY = "template_library_config"
LIBRARY_CATEGORY = "template_library"

# library section -> (id prefix, next-id counter field)
LIBRARY_SECTIONS = {
    "taskSets": ("taskset", "nextTaskSetId"),
    "checklists": ("checklist", "nextChecklistId"),
    "noteTemplates": ("notetemplate", "nextNoteTemplateId"),
}


def _matches_search(template, needle):
    return contains_text(template.get("name"), needle) or contains_text(template.get("description"), needle)


_SORTS = {
    "name": (lambda t: str(t.get("name") or "").lower(), False),
    "usage": (lambda t: t.get("usageCount") or 0, True),
    "created": (timestamp_key("createdAt"), True),
    "updated": (timestamp_key("updatedAt"), True),
}


def _usage_stats(items):
    stats = {"total": 0, "byCategory": {}, "totalUsage": 0, "mostUsed": None, "recentCount": 0}
    cutoff = datetime.now(timezone.utc) - timedelta(days=30)
    stats["total"] = len(items)
    for item in items:
        category = item.get("category") or "Uncategorized"
        stats["byCategory"][category] = stats["byCategory"].get(category, 0) + 1
        usage = item.get("usageCount") or 0
        stats["totalUsage"] += usage
        if stats["mostUsed"] is None or usage > (stats["mostUsed"].get("usageCount") or 0):
            stats["mostUsed"] = item
        created = parse_iso(item.get("createdAt"))
        if created is not None and created > cutoff:
            stats["recentCount"] += 1
    return stats


class TemplateAdapter(AdapterFacade[Template]):
    """Reusable board structures (groups, rows, columns) with usage counters."""

    collection_name = "templates"

    async def create_template(self, data):
        template = {
            "id": data.get("id") or generate_id("template"),
            "name": data.get("name") or "Untitled Template",
            "description": data.get("description") or "",
            "category": data.get("category") or "General",
            "groups": list(data.get("groups") or []),
            "rows": list(data.get("rows") or []),
            "columns": list(data.get("columns") or []),
            "isPublic": bool(data.get("isPublic", False)),
            "usageCount": 0,
            "tags": list(data.get("tags") or []),
        }
        saved = await self.save(template)
        logger.info("Created template %s", saved["id"])
        return saved

    async def get_by_category(self, category):
        return await self.get_by_index("category", category)

    async def search_by_name(self, term):
        needle = str(term or "").lower()
        return [t for t in await self.get_all() if _matches_search(t, needle)]

    async def get_popular(self, limit=10):
        templates = await self.get_all()
        templates.sort(key=lambda t: t.get("usageCount") or 0, reverse=True)
        return templates[:limit]

    async def get_recent(self, limit=10):
        templates = await self.get_all()
        templates.sort(key=timestamp_key("createdAt"), reverse=True)
        return templates[:limit]

    async def increment_usage(self, template_id):
        def apply(template):
            template["usageCount"] = (template.get("usageCount") or 0) + 1
            template["lastUsed"] = now_iso()
            return template

        return await self.base.update(template_id, apply)

    async def update_template(self, template_id, updates):
        def apply(template):
            template.update(updates)
            template["id"] = template_id
            return template

        return await self.base.update(template_id, apply)

    async def get_filtered(self, filters=None):
        """Category, tag, visibility and text filters, then an optional sort."""
        filters = filters or {}
        try:
            templates = await self.get_all()
            if templates and filters.get("category"):
                templates = [t for t in templates if t.get("category") == filters["category"]]
            if templates and filters.get("tags"):
                wanted = set(filters["tags"])
                templates = [t for t in templates if wanted.intersection(t.get("tags") or [])]
            if templates and filters.get("isPublic") is not None:
                templates = [t for t in templates if bool(t.get("isPublic")) == bool(filters["isPublic"])]
            if templates and filters.get("search"):
                needle = str(filters["search"]).lower()
                templates = [t for t in templates if _matches_search(t, needle)]
            if templates and filters.get("sortBy"):
                sort_records(templates, filters["sortBy"], _SORTS)
            return templates
        except Exception:
            logger.exception("Failed to get filtered templates")
            return []

    async def get_statistics(self):
        try:
            return _usage_stats(await self.get_all())
        except Exception:
            logger.exception("Failed to get template statistics")
            return _usage_stats([])


def default_library_config():
    now = now_iso()
    return {
        "categories": ["Project Management", "Personal", "Business", "Education"],
        "featured": [],
        "taskSets": {},
        "checklists": {},
        "noteTemplates": {},
        "nextTaskSetId": 1,
        "nextChecklistId": 1,
        "nextNoteTemplateId": 1,
        "createdAt": now,
        "lastUpdated": now,
    }


def _text_of(item):
    if isinstance(item, dict):
        return item.get("text") or ""
    return str(item)


def _build_task_set(data):
    tasks = []
    for task in data.get("tasks") or []:
        fields = task if isinstance(task, dict) else {}
        tasks.append(
            {
                "text": _text_of(task),
                "priority": fields.get("priority") or "medium",
                "estimatedTime": fields.get("estimatedTime"),
                "dependencies": list(fields.get("dependencies") or []),
            }
        )
    return {"name": data.get("name") or "Untitled Task Set", "tasks": tasks}


def _build_checklist(data):
    items = []
    for item in data.get("items") or []:
        fields = item if isinstance(item, dict) else {}
        items.append(
            {
                "text": _text_of(item),
                "required": fields.get("required") is not False,
                "category": fields.get("category") or "default",
            }
        )
    return {"name": data.get("name") or "Untitled Checklist", "items": items}


def _build_note_template(data):
    return {
        "name": data.get("name") or "Untitled Note Template",
        "content": data.get("content") or "",
        "structure": data.get("structure") or {"sections": [], "prompts": [], "format": "markdown"},
    }


_BUILDERS = {
    "taskSets": _build_task_set,
    "checklists": _build_checklist,
    "noteTemplates": _build_note_template,
}


class TemplateLibraryAdapter(AdapterFacade[MetadataRecord]):
    """Task sets, checklists and note templates nested in one metadata record.

    Every mutation rewrites the whole ``template_library_config`` record inside
    a single transaction.
    """

    collection_name = "metadata"

    async def get_library_config(self):
        record = await self.get_by_id(LIBRARY_KEY)
        if record is None:
            return default_library_config()
        return record.get("value") or default_library_config()

    async def _mutate(self, mutator):
        """Apply ``mutator(config)`` to the stored config and persist it."""
        result = {}

        def apply(record):
            config = (record or {}).get("value") or default_library_config()
            result["value"] = mutator(config)
            config["lastUpdated"] = now_iso()
            return {"key": LIBRARY_KEY, "category": LIBRARY_CATEGORY, "value": config}

        await self.base.update(LIBRARY_KEY, apply, missing_ok=True)
        return result.get("value")

    async def update_library_config(self, updates):
        def apply(config):
            config.update(updates)
            return config

        return await self._mutate(apply)

    async def _create_item(self, section, data):
        prefix, counter = LIBRARY_SECTIONS[section]

        def apply(config):
            next_id = int(config.get(counter) or 1)
            now = now_iso()
            item = {
                "id": f"{prefix}_{next_id}",
                "description": data.get("description") or "",
                "category": data.get("category") or "general",
                **_BUILDERS[section](data),
                "tags": list(data.get("tags") or []),
                "isPublic": bool(data.get("isPublic", False)),
                "usageCount": 0,
                "createdAt": now,
                "updatedAt": now,
            }
            config.setdefault(section, {})[item["id"]] = item
            config[counter] = next_id + 1
            return item

        item = await self._mutate(apply)
        logger.info("Created %s item %s", section, item["id"])
        return item

    async def _get_item(self, section, item_id):
        config = await self.get_library_config()
        return (config.get(section) or {}).get(item_id)

    async def _list_items(self, section):
        config = await self.get_library_config()
        return list((config.get(section) or {}).values())

    async def create_task_set(self, data):
        return await self._create_item("taskSets", data)

    async def get_task_set(self, task_set_id):
        return await self._get_item("taskSets", task_set_id)

    async def get_all_task_sets(self):
        return await self._list_items("taskSets")

    async def create_checklist(self, data):
        return await self._create_item("checklists", data)

    async def get_checklist(self, checklist_id):
        return await self._get_item("checklists", checklist_id)

    async def get_all_checklists(self):
        return await self._list_items("checklists")

    async def create_note_template(self, data):
        return await self._create_item("noteTemplates", data)

    async def get_note_template(self, note_template_id):
        return await self._get_item("noteTemplates", note_template_id)

    async def get_all_note_templates(self):
        return await self._list_items("noteTemplates")

    async def increment_usage(self, section, item_id):
        """Bump ``usageCount`` of a task set, checklist or note template."""

        def apply(config):
            item = (config.get(section) or {}).get(item_id)
            if item is None:
                raise RecordNotFound(section, item_id)
            item["usageCount"] = (item.get("usageCount") or 0) + 1
            item["lastUsed"] = item["updatedAt"] = now_iso()
            return item

        return await self._mutate(apply)

    async def get_featured(self):
        config = await self.get_library_config()
        return list(config.get("featured") or [])

    async def set_featured(self, featured_ids):
        def apply(config):
            config["featured"] = list(featured_ids)
            return config["featured"]

        return await self._mutate(apply)

    async def get_statistics(self):
        try:
            config = await self.get_library_config()
        except Exception:
            logger.exception("Failed to get library statistics")
            config = default_library_config()

        stats = {}
        for section in LIBRARY_SECTIONS:
            items = list((config.get(section) or {}).values())
            by_category = {}
            for item in items:
                category = item.get("category") or "Uncategorized"
                by_category[category] = by_category.get(category, 0) + 1
            stats[section] = {
                "total": len(items),
                "totalUsage": sum(item.get("usageCount") or 0 for item in items),
                "byCategory": by_category,
            }
        stats["featured"] = len(config.get("featured") or [])
        return stats

    async def export_library(self):
        return await self.get_library_config()

    async def import_library(self, library_data):
        """Shallow-merge ``library_data`` over the stored library."""
        await self.update_library_config(dict(library_data))
        imported = {section: len(library_data.get(section) or {}) for section in LIBRARY_SECTIONS}
        return {"success": True, "imported": imported, "total": sum(imported.values())}
