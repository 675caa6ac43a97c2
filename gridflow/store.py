import csv
import io
import logging

from . import schema
from .adapters import (
    BoardAdapter,
    BoardStructureAdapter,
    EntityAdapter,
    PeopleAdapter,
    RelationshipAdapter,
    WeeklyItemAdapter,
    WeeklyPlanAdapter,
)
from .base import stamp_record
from .collections_adapter import CollectionsAdapter
from .constants import SCHEMA_VERSION
from .engine import READONLY, READWRITE, StorageEngine
from .errors import StoreError
from .paths import get_db_path
from .positions import EntityPositionsAdapter
from .settings import AppMetadataAdapter, SettingsAdapter
from .tags import TagsAdapter
from .templates import TemplateAdapter, TemplateLibraryAdapter
from .utils import json_dumps, json_loads, now_iso
from .validator import ConsistencyValidator

logger = logging.getLogger("GridFlow")

CONFLICT_STRATEGIES = ("merge", "replace")

CSV_FIELDS = ["collection", "key", "doc_json"]

SNAPSHOT_META_KEYS = ("schemaVersion", "exportedAt")

# collections whose records point at an entity through ``entityId``
ENTITY_DEPENDENTS = ("entityPositions", "entityRelationships")


class GridFlowStore:
    """Handle owning one storage engine and every adapter built on it.

    Construct once and pass it to whatever needs persistence::

        async with GridFlowStore(path) as store:
            await store.entities.save({"id": "t1", "type": "task"})
    """

    def __init__(self, db_path=None, version=SCHEMA_VERSION, on_blocked=None):
        self.db_path = str(db_path or get_db_path())
        self.engine = StorageEngine(self.db_path, version=version, on_blocked=on_blocked)

        self.entities = EntityAdapter(self.engine)
        self.boards = BoardAdapter(self.engine)
        self.structure = BoardStructureAdapter(self.engine)
        self.people = PeopleAdapter(self.engine)
        self.relationships = RelationshipAdapter(self.engine)
        self.positions = EntityPositionsAdapter(self.engine)
        self.collections = CollectionsAdapter(self.engine)
        self.tags = TagsAdapter(self.engine)
        self.templates = TemplateAdapter(self.engine)
        self.template_library = TemplateLibraryAdapter(self.engine)
        self.settings = SettingsAdapter(self.engine)
        self.app_metadata = AppMetadataAdapter(self.engine)
        self.weekly_plans = WeeklyPlanAdapter(self.engine)
        self.weekly_items = WeeklyItemAdapter(self.engine)

    async def open(self):
        await self.engine.open()
        return self

    async def close(self):
        await self.engine.close()

    async def __aenter__(self):
        return await self.open()

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()
        return False

    def validator(self, legacy_data_provider):
        return ConsistencyValidator(self.entities, self.boards, legacy_data_provider)

    async def transaction(self, names, mode=READONLY):
        if not self.engine.is_ready:
            await self.engine.open()
        return self.engine.transaction(names, mode)

    # ── snapshot export / import ──

    async def export_snapshot(self):
        names = schema.all_collection_names()
        snapshot = {"schemaVersion": self.engine.version, "exportedAt": now_iso()}
        async with await self.transaction(names, READONLY) as tx:
            for name in names:
                snapshot[name] = await tx.get_all(name)
        return snapshot

    async def import_snapshot(self, snapshot, conflict_strategy="merge"):
        """Load a snapshot produced by ``export_snapshot``.

        ``merge`` upserts every record; ``replace`` first empties each
        collection present in the snapshot. Runs in one transaction.
        """
        if conflict_strategy not in CONFLICT_STRATEGIES:
            raise ValueError(f"Unsupported conflict strategy: {conflict_strategy}")
        if not isinstance(snapshot, dict):
            raise ValueError("Import snapshot must be a JSON object")

        result = {
            "created": 0,
            "updated": 0,
            "skipped": 0,
            "errors": [],
            "details": [],
        }
        known = set(schema.all_collection_names())
        incoming = {}
        for name, records in snapshot.items():
            if name in SNAPSHOT_META_KEYS:
                continue
            if name not in known or not isinstance(records, list):
                logger.warning("Skipping unknown collection in snapshot: %s", name)
                result["skipped"] += 1
                result["details"].append({"collection": name, "key": "", "action": "skipped"})
                continue
            incoming[name] = records

        async with await self.transaction(list(incoming) or schema.all_collection_names(), READWRITE) as tx:
            for name, records in incoming.items():
                if conflict_strategy == "replace":
                    await tx.clear(name)
                primary_key = schema.describe(name).primary_key
                for record in records:
                    key = (record or {}).get(primary_key) if isinstance(record, dict) else None
                    try:
                        if key is None:
                            raise StoreError(f"{name} record is missing primary key field {primary_key!r}")
                        if not isinstance(key, (str, int, float)):
                            raise StoreError(f"{name} primary key {primary_key!r} must be a string or number")
                        existing = await tx.get(name, key)
                        await tx.put(name, stamp_record(record, existing))
                    except StoreError as exc:
                        result["errors"].append({"collection": name, "key": "" if key is None else str(key), "error": str(exc)})
                        continue
                    action = "updated" if existing is not None else "created"
                    result[action] += 1
                    result["details"].append({"collection": name, "key": str(key), "action": action})

        logger.info(
            "Imported snapshot (%s): %d created, %d updated, %d skipped, %d errors",
            conflict_strategy,
            result["created"],
            result["updated"],
            result["skipped"],
            len(result["errors"]),
        )
        return result

    async def export_snapshot_csv(self):
        snapshot = await self.export_snapshot()
        buf = io.StringIO()
        writer = csv.DictWriter(buf, fieldnames=CSV_FIELDS)
        writer.writeheader()
        for name in schema.all_collection_names():
            primary_key = schema.describe(name).primary_key
            for record in snapshot[name]:
                writer.writerow({"collection": name, "key": record.get(primary_key), "doc_json": json_dumps(record)})
        return buf.getvalue()

    async def import_snapshot_csv(self, csv_text, conflict_strategy="merge"):
        reader = csv.DictReader(io.StringIO(csv_text or ""))
        snapshot = {}
        for row in reader:
            name = (row.get("collection") or "").strip()
            if not name:
                continue
            try:
                record = json_loads(row.get("doc_json") or None, default={})
            except ValueError as exc:
                raise ValueError(f"Invalid doc_json for {name} record {row.get('key')!r}: {exc}") from exc
            snapshot.setdefault(name, []).append(record)
        return await self.import_snapshot(snapshot, conflict_strategy=conflict_strategy)

    # ── repair ──

    async def find_orphaned_records(self):
        """Ids of position and relationship records whose entity no longer exists."""
        names = ["entities", *ENTITY_DEPENDENTS]
        orphans = {}
        async with await self.transaction(names, READONLY) as tx:
            entity_ids = {entity["id"] for entity in await tx.get_all("entities")}
            for name in ENTITY_DEPENDENTS:
                records = await tx.get_all(name)
                orphans[name] = [r["id"] for r in records if r.get("entityId") not in entity_ids]
        return orphans

    async def purge_orphaned_records(self):
        names = ["entities", *ENTITY_DEPENDENTS]
        removed = {}
        async with await self.transaction(names, READWRITE) as tx:
            entity_ids = {entity["id"] for entity in await tx.get_all("entities")}
            for name in ENTITY_DEPENDENTS:
                ids = [r["id"] for r in await tx.get_all(name) if r.get("entityId") not in entity_ids]
                for key in ids:
                    await tx.delete(name, key)
                removed[name] = len(ids)
        removed["total"] = sum(removed.values())
        if removed["total"]:
            logger.info("Purged %d orphaned records", removed["total"])
        return removed
