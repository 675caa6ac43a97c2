"""Audit that diffs the store against an independently kept in-memory copy.

The validator never writes. It loads every record of a kind from the
adapters and from the legacy snapshot and reports what is missing, extra or
different on a fixed list of comparison fields.
"""

import asyncio
import inspect
import logging
import time
from collections import Counter

from .utils import json_dumps, now_iso

logger = logging.getLogger("GridFlow")

ENTITY_FIELDS = ("id", "type", "title", "content", "completed", "priority", "dueDate")
ENTITY_ARRAY_FIELDS = ("tags",)
BOARD_FIELDS = ("id", "name")


def _multiset(values):
    return Counter(json_dumps(v) for v in values or [])


def find_differences(legacy, stored, fields, array_fields=()):
    differences = []
    for field in fields:
        if legacy.get(field) != stored.get(field):
            differences.append({"field": field, "legacy": legacy.get(field), "store": stored.get(field)})
    for field in array_fields:
        if _multiset(legacy.get(field)) != _multiset(stored.get(field)):
            differences.append({"field": field, "legacy": legacy.get(field) or [], "store": stored.get(field) or []})
    return differences


def compare_sets(legacy_records, stored_records, fields, array_fields=()):
    """Diff two ``{id: record}`` maps."""
    missing = [{"id": key, "record": legacy_records[key]} for key in legacy_records if key not in stored_records]
    extra = [{"id": key, "record": stored_records[key]} for key in stored_records if key not in legacy_records]
    different = []
    matching = 0
    for key, legacy in legacy_records.items():
        stored = stored_records.get(key)
        if stored is None:
            continue
        differences = find_differences(legacy, stored, fields, array_fields)
        if differences:
            different.append({"id": key, "legacy": legacy, "store": stored, "differences": differences})
        else:
            matching += 1

    return {
        "valid": not missing and not extra and not different,
        "legacy_count": len(legacy_records),
        "store_count": len(stored_records),
        "matching": matching,
        "missing": missing,
        "extra": extra,
        "different": different,
    }


def _failed_result(exc):
    return {
        "valid": False,
        "error": str(exc),
        "legacy_count": 0,
        "store_count": 0,
        "matching": 0,
        "missing": [],
        "extra": [],
        "different": [],
    }


class ConsistencyValidator:
    """Compares adapter-backed entities and boards against legacy data.

    ``legacy_data_provider`` is a callable (plain or async) returning a mapping
    with ``entities`` and ``boards`` keys, each an ``{id: record}`` map.
    """

    def __init__(self, entities, boards, legacy_data_provider):
        self.entities = entities
        self.boards = boards
        self.legacy_data_provider = legacy_data_provider

    async def _legacy(self, kind):
        data = self.legacy_data_provider()
        if inspect.isawaitable(data):
            data = await data
        return dict((data or {}).get(kind) or {})

    async def _validate(self, kind, adapter, fields, array_fields=()):
        try:
            legacy = await self._legacy(kind)
            stored = {record["id"]: record for record in await adapter.get_all()}
        except Exception as exc:
            logger.exception("%s validation failed", kind.capitalize())
            return _failed_result(exc)
        return compare_sets(legacy, stored, fields, array_fields)

    async def validate_entities(self):
        return await self._validate("entities", self.entities, ENTITY_FIELDS, ENTITY_ARRAY_FIELDS)

    async def validate_boards(self):
        return await self._validate("boards", self.boards, BOARD_FIELDS)

    async def validate_consistency(self):
        started = time.perf_counter()
        timestamp = now_iso()
        entities, boards = await asyncio.gather(self.validate_entities(), self.validate_boards())
        results = {
            "timestamp": timestamp,
            "entities": entities,
            "boards": boards,
            "duration": (time.perf_counter() - started) * 1000.0,
        }
        results["overall_valid"] = entities["valid"] and boards["valid"]
        logger.info("Validation completed in %.2fms (valid=%s)", results["duration"], results["overall_valid"])
        return results


def summarize(results):
    """Counts-only view of a ``validate_consistency`` result."""
    summary = {
        "timestamp": results.get("timestamp"),
        "duration": results.get("duration"),
        "overall_valid": results.get("overall_valid"),
    }
    for kind in ("entities", "boards"):
        part = results.get(kind) or {}
        summary[kind] = {
            "valid": part.get("valid", False),
            "legacy_count": part.get("legacy_count", 0),
            "store_count": part.get("store_count", 0),
            "issues": len(part.get("missing", [])) + len(part.get("extra", [])) + len(part.get("different", [])),
        }
    return summary
