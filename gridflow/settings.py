import copy
import logging

from .base import AdapterFacade, stamp_record
from .engine import READWRITE
from .models import MetadataRecord
from .utils import now_iso

logger = logging.getLogger("GridFlow")

DEFAULT_CATEGORY = "general"

APP_CONFIG_KEY = "app_config"
APP_CATEGORY = "app"
DEFAULT_APP_VERSION = "6.0"

_ID_COUNTER_TYPES = (
    "task",
    "note",
    "checklist",
    "project",
    "person",
    "board",
    "group",
    "row",
    "column",
    "template",
    "collection",
    "tag",
    "weeklyItem",
)


def _counter_field(id_type):
    return f"next{id_type[:1].upper()}{id_type[1:]}Id"


def default_app_config():
    now = now_iso()
    config = {"currentBoardId": "default", "version": DEFAULT_APP_VERSION}
    config.update({_counter_field(t): 1 for t in _ID_COUNTER_TYPES})
    config.update(
        {
            "userPreferences": {
                "theme": "auto",
                "defaultView": "board",
                "showCheckboxes": True,
                "showSubtaskProgress": True,
            },
            "featureFlags": {
                "peopleSystem": True,
                "weeklyPlanning": True,
                "templates": True,
                "collections": True,
                "tags": True,
            },
            "createdAt": now,
            "lastUpdated": now,
        }
    )
    return config


class SettingsAdapter(AdapterFacade[MetadataRecord]):
    """One metadata record per setting key, grouped by ``category``."""

    collection_name = "metadata"

    async def get_setting(self, key, default=None):
        record = await self.get_by_id(key)
        return record.get("value") if record is not None else default

    async def set_setting(self, key, value, category=DEFAULT_CATEGORY):
        return await self.save({"key": key, "value": value, "category": category})

    async def delete_setting(self, key):
        return await self.delete(key)

    async def get_settings_by_category(self, category):
        try:
            records = await self.get_by_index("category", category)
        except Exception:
            logger.exception("Failed to get settings for category %s", category)
            return {}
        return {record["key"]: record.get("value") for record in records}

    async def set_multiple_settings(self, settings, category=DEFAULT_CATEGORY):
        saved = []
        async with await self.base.transaction(READWRITE) as tx:
            for key, value in settings.items():
                existing = await tx.get(self.collection_name, key)
                record = stamp_record({"key": key, "value": value, "category": category}, existing)
                await tx.put(self.collection_name, record)
                saved.append(record)
        return saved

    async def clear_category(self, category):
        """Delete every setting in ``category``; returns how many were removed."""
        async with await self.base.transaction(READWRITE) as tx:
            records = await tx.get_by_index(self.collection_name, "category", category)
            for record in records:
                await tx.delete(self.collection_name, record["key"])
        return len(records)

    async def get_all_settings(self):
        try:
            records = await self.get_all()
        except Exception:
            logger.exception("Failed to get all settings")
            return {}
        grouped = {}
        for record in records:
            grouped.setdefault(record.get("category") or DEFAULT_CATEGORY, {})[record["key"]] = record.get("value")
        return grouped

    async def get_cloud_sync_settings(self):
        return await self.get_settings_by_category("cloud_sync")

    async def set_cloud_sync_settings(self, settings):
        return await self.set_multiple_settings(settings, "cloud_sync")

    async def get_cloud_sync_usage_stats(self):
        return await self.get_setting("cloud_sync_usage_stats")

    async def set_cloud_sync_usage_stats(self, stats):
        return await self.set_setting("cloud_sync_usage_stats", stats, "cloud_sync")

    async def get_last_export_timestamp(self):
        return await self.get_setting("last_export_timestamp")

    async def set_last_export_timestamp(self, timestamp):
        return await self.set_setting("last_export_timestamp", timestamp, "import_export")

    async def get_user_preferences(self):
        return await self.get_settings_by_category("user_preferences")

    async def set_user_preferences(self, preferences):
        return await self.set_multiple_settings(preferences, "user_preferences")

    async def get_user_preference(self, key):
        return await self.get_setting(f"user_pref_{key}")

    async def set_user_preference(self, key, value):
        return await self.set_setting(f"user_pref_{key}", value, "user_preferences")

    async def get_feature_flags(self):
        return await self.get_settings_by_category("feature_flags")

    async def set_feature_flags(self, flags):
        return await self.set_multiple_settings(flags, "feature_flags")

    async def get_feature_flag(self, flag):
        return await self.get_setting(f"feature_{flag}")

    async def set_feature_flag(self, flag, enabled):
        return await self.set_setting(f"feature_{flag}", enabled, "feature_flags")

    async def export_settings(self):
        return await self.get_all_settings()

    async def import_settings(self, settings_data):
        """Import ``{category: {key: value}}``; a failing category is counted, not fatal."""
        imported = 0
        errors = 0
        for category, settings in settings_data.items():
            try:
                await self.set_multiple_settings(settings, category)
                imported += len(settings)
            except Exception:
                logger.exception("Failed to import settings category %s", category)
                errors += 1
        return {"imported": imported, "errors": errors, "categories": len(settings_data)}


class AppMetadataAdapter(AdapterFacade[MetadataRecord]):
    """App-level configuration held in the ``app_config`` metadata record."""

    collection_name = "metadata"

    async def get_app_config(self):
        record = await self.get_by_id(APP_CONFIG_KEY)
        if record is None or not record.get("value"):
            return default_app_config()
        return record["value"]

    async def _mutate(self, mutator):
        result = {}

        def apply(record):
            config = (record or {}).get("value") or default_app_config()
            result["value"] = mutator(config)
            config["lastUpdated"] = now_iso()
            return {"key": APP_CONFIG_KEY, "category": APP_CATEGORY, "value": config}

        await self.base.update(APP_CONFIG_KEY, apply, missing_ok=True)
        return result.get("value")

    async def update_app_config(self, updates):
        def apply(config):
            config.update(updates)
            return copy.deepcopy(config)

        return await self._mutate(apply)

    async def get_current_board_id(self):
        config = await self.get_app_config()
        return config.get("currentBoardId") or "default"

    async def set_current_board_id(self, board_id):
        await self.update_app_config({"currentBoardId": board_id})

    async def get_next_id(self, id_type):
        config = await self.get_app_config()
        return config.get(_counter_field(id_type)) or 1

    async def increment_next_id(self, id_type):
        """Reserve the next id number for ``id_type`` and return it."""
        field = _counter_field(id_type)

        def apply(config):
            current = config.get(field) or 1
            config[field] = current + 1
            return current

        return await self._mutate(apply)

    async def get_version(self):
        config = await self.get_app_config()
        return config.get("version") or DEFAULT_APP_VERSION

    async def set_version(self, version):
        await self.update_app_config({"version": version})

    async def get_user_preferences(self):
        config = await self.get_app_config()
        return config.get("userPreferences") or {}

    async def update_user_preferences(self, preferences):
        def apply(config):
            config["userPreferences"] = {**(config.get("userPreferences") or {}), **preferences}
            return config["userPreferences"]

        return await self._mutate(apply)

    async def get_feature_flags(self):
        config = await self.get_app_config()
        return config.get("featureFlags") or {}

    async def update_feature_flags(self, flags):
        def apply(config):
            config["featureFlags"] = {**(config.get("featureFlags") or {}), **flags}
            return config["featureFlags"]

        return await self._mutate(apply)

    async def reset_config(self):
        config = default_app_config()
        await self.save({"key": APP_CONFIG_KEY, "category": APP_CATEGORY, "value": config})
        return config

    async def export_metadata(self):
        try:
            records = await self.get_all()
        except Exception:
            logger.exception("Failed to export metadata")
            return {}
        return {record["key"]: record.get("value") for record in records}

    async def import_metadata(self, metadata):
        async with await self.base.transaction(READWRITE) as tx:
            for key, value in metadata.items():
                existing = await tx.get(self.collection_name, key)
                category = (existing or {}).get("category") or APP_CATEGORY
                await tx.put(self.collection_name, stamp_record({"key": key, "category": category, "value": value}, existing))
        return len(metadata)
