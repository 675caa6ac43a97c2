import json
import logging
from datetime import datetime, timezone

from aiohttp import web

from . import schema
from .errors import StoreError, UnknownCollection

logger = logging.getLogger("GridFlow")

STORE_KEY = web.AppKey("gridflow_store", object)


def _json_response(obj, status=200):
    return web.Response(
        status=status,
        text=json.dumps(obj, ensure_ascii=False),
        content_type="application/json",
    )


def _bad_request(msg):
    return _json_response({"error": msg}, status=400)


def _not_found(msg):
    return _json_response({"error": msg}, status=404)


def _download_name(ext):
    stamp = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
    return f"gridflow-export-{stamp}.{ext}"


async def health(request):
    store = request.app[STORE_KEY]
    info = await store.engine.info()
    return _json_response({"ok": True, "db_path": store.db_path, "info": info})


async def export_snapshot(request):
    store = request.app[STORE_KEY]
    fmt = str(request.query.get("format", "json") or "json").strip().lower()
    if fmt == "json":
        text = json.dumps(await store.export_snapshot(), ensure_ascii=False, indent=2)
        return web.Response(
            text=text,
            content_type="application/json",
            headers={"Content-Disposition": f'attachment; filename="{_download_name("json")}"'},
        )
    if fmt == "csv":
        text = await store.export_snapshot_csv()
        return web.Response(
            text=text,
            content_type="text/csv",
            headers={"Content-Disposition": f'attachment; filename="{_download_name("csv")}"'},
        )
    return _bad_request("Only json or csv export is supported")


async def import_snapshot(request):
    store = request.app[STORE_KEY]
    content_type = (request.content_type or "").lower()

    if content_type.startswith("multipart/"):
        form = await request.post()
        upload = form.get("file")
        conflict_strategy = str(form.get("conflict_strategy", "merge") or "merge").strip().lower()
        fmt = str(form.get("format", "") or "").strip().lower()
        if not upload or not getattr(upload, "file", None):
            return _bad_request("Missing import file")
        raw_bytes = upload.file.read()
        if not fmt:
            filename = str(getattr(upload, "filename", "") or "").lower()
            fmt = "csv" if filename.endswith(".csv") else "json"
    else:
        try:
            payload = await request.json()
        except Exception:
            return _bad_request("Could not parse import request")
        if not isinstance(payload, dict):
            return _bad_request("Request body must be a JSON object")
        fmt = str(payload.get("format", "json") or "json").strip().lower()
        conflict_strategy = str(payload.get("conflict_strategy", "merge") or "merge").strip().lower()
        content = payload.get("content", "")
        if isinstance(content, dict):
            content = json.dumps(content, ensure_ascii=False)
        raw_bytes = str(content or "").encode("utf-8")

    try:
        text = raw_bytes.decode("utf-8-sig")
    except UnicodeDecodeError:
        return _bad_request("Import file must be UTF-8 encoded")

    try:
        if fmt == "csv":
            result = await store.import_snapshot_csv(text, conflict_strategy=conflict_strategy)
        else:
            snapshot = json.loads(text or "{}")
            result = await store.import_snapshot(snapshot, conflict_strategy=conflict_strategy)
    except (ValueError, StoreError) as exc:
        return _bad_request(str(exc))
    return _json_response(result)


async def list_collection(request):
    store = request.app[STORE_KEY]
    name = request.match_info["name"]
    try:
        schema.describe(name)
    except UnknownCollection as exc:
        return _not_found(str(exc))
    async with await store.transaction([name]) as tx:
        items = await tx.get_all(name)
    return _json_response({"collection": name, "items": items, "total": len(items)})


def _numeric_key(key):
    try:
        return int(key)
    except ValueError:
        pass
    try:
        return float(key)
    except ValueError:
        return None


async def get_record(request):
    """Fetch one record by primary key.

    Path keys arrive as strings; when no record matches, a numeric key such as
    ``5`` from an imported ``{"id": 5}`` record is tried as a number.
    """
    store = request.app[STORE_KEY]
    name = request.match_info["name"]
    key = request.match_info["key"]
    try:
        schema.describe(name)
    except UnknownCollection as exc:
        return _not_found(str(exc))
    async with await store.transaction([name]) as tx:
        record = await tx.get(name, key)
        numeric = _numeric_key(key) if record is None else None
        if numeric is not None:
            record = await tx.get(name, numeric)
    if record is None:
        return _not_found(f"{name} record {key!r} not found")
    return _json_response(record)


async def find_orphans(request):
    store = request.app[STORE_KEY]
    return _json_response(await store.find_orphaned_records())


async def purge_orphans(request):
    store = request.app[STORE_KEY]
    return _json_response(await store.purge_orphaned_records())


async def _close_store(app):
    await app[STORE_KEY].close()


def create_app(store):
    app = web.Application()
    app[STORE_KEY] = store
    app.router.add_get("/gridflow/health", health)
    app.router.add_get("/gridflow/export", export_snapshot)
    app.router.add_post("/gridflow/import", import_snapshot)
    app.router.add_get("/gridflow/collections/{name}", list_collection)
    app.router.add_get("/gridflow/collections/{name}/{key}", get_record)
    app.router.add_get("/gridflow/repair/orphans", find_orphans)
    app.router.add_post("/gridflow/repair/orphans", purge_orphans)
    app.on_cleanup.append(_close_store)
    return app
