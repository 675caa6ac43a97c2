import asyncio
import logging
import os
import sqlite3

import aiosqlite

from . import schema
from .constants import BUSY_TIMEOUT_MS, SCHEMA_VERSION
from .errors import (
    InvalidOperation,
    NotInitialized,
    NotSupported,
    StoreError,
    TransactionAborted,
    UpgradeBlocked,
)
from .utils import json_dumps, json_loads

logger = logging.getLogger("GridFlow")

READONLY = "readonly"
READWRITE = "readwrite"

CLOSED = "closed"
OPENING = "opening"
UPGRADING = "upgrading"
OPENED = "opened"


def _is_lock_error(exc):
    msg = str(exc).lower()
    return "locked" in msg or "busy" in msg


class Transaction:
    """Scoped access to a set of collections, committed on clean exit.

    Use as ``async with engine.transaction(["tags"], "readwrite") as tx``.
    Any exception inside the block rolls the transaction back; engine
    failures surface as ``TransactionAborted``.
    """

    def __init__(self, engine, collection_names, mode):
        if mode not in (READONLY, READWRITE):
            raise InvalidOperation(f"Unknown transaction mode: {mode}")
        if isinstance(collection_names, str):
            collection_names = [collection_names]
        self._engine = engine
        self._conn = None
        self.mode = mode
        self.scope = {name: schema.describe(name) for name in collection_names}
        self._active = False

    async def __aenter__(self):
        await self._engine._tx_lock.acquire()
        try:
            # the engine may have been closed while this transaction was queued
            self._conn = self._engine.connection
            await self._conn.execute("BEGIN IMMEDIATE" if self.mode == READWRITE else "BEGIN")
        except sqlite3.Error as exc:
            self._engine._tx_lock.release()
            raise TransactionAborted(f"Could not begin transaction: {exc}") from exc
        except BaseException:
            self._engine._tx_lock.release()
            raise
        self._active = True
        return self

    async def __aexit__(self, exc_type, exc, tb):
        self._active = False
        try:
            if exc_type is None:
                try:
                    await self._conn.execute("COMMIT")
                except sqlite3.Error as commit_exc:
                    await self._rollback()
                    raise TransactionAborted(f"Commit failed: {commit_exc}") from commit_exc
                return False
            await self._rollback()
        finally:
            self._engine._tx_lock.release()
        if isinstance(exc, sqlite3.Error):
            raise TransactionAborted(str(exc)) from exc
        return False

    async def _rollback(self):
        try:
            await self._conn.execute("ROLLBACK")
        except sqlite3.Error:
            logger.warning("Rollback failed", exc_info=True)

    def _descriptor(self, collection, write=False):
        if not self._active:
            raise TransactionAborted("Transaction is not active")
        if collection not in self.scope:
            schema.describe(collection)
            raise TransactionAborted(f"Collection {collection!r} is not in the transaction scope")
        if write and self.mode != READWRITE:
            raise TransactionAborted(f"Cannot write to {collection!r} in a readonly transaction")
        return self.scope[collection]

    async def _fetch_docs(self, sql, params=()):
        cursor = await self._conn.execute(sql, params)
        rows = await cursor.fetchall()
        await cursor.close()
        return [json_loads(row["doc"]) for row in rows]

    async def get(self, collection, key):
        self._descriptor(collection)
        table = schema.quote_ident(collection)
        docs = await self._fetch_docs(f"SELECT doc FROM {table} WHERE key = ?", (key,))
        return docs[0] if docs else None

    async def put(self, collection, record):
        descriptor = self._descriptor(collection, write=True)
        key = record.get(descriptor.primary_key)
        if key is None:
            raise StoreError(f"{collection} record is missing primary key field {descriptor.primary_key!r}")
        table = schema.quote_ident(collection)
        await self._conn.execute(
            f"""
            INSERT INTO {table}(key, doc) VALUES(?, ?)
            ON CONFLICT(key) DO UPDATE SET doc=excluded.doc
            """,
            (key, json_dumps(record)),
        )
        return record

    async def delete(self, collection, key):
        self._descriptor(collection, write=True)
        await self._conn.execute(f"DELETE FROM {schema.quote_ident(collection)} WHERE key = ?", (key,))

    async def get_all(self, collection):
        self._descriptor(collection)
        return await self._fetch_docs(f"SELECT doc FROM {schema.quote_ident(collection)} ORDER BY key")

    async def get_by_index(self, collection, index_name, value):
        descriptor = self._descriptor(collection)
        idx = descriptor.index(index_name)
        table = schema.quote_ident(collection)
        if idx.multi_entry:
            path = schema.json_path(idx.fields[0])
            sql = f"""
            SELECT t.doc FROM {table} t
            WHERE EXISTS (
              SELECT 1 FROM json_each(t.doc, '{path}') j WHERE j.value = ?
            )
            ORDER BY t.key
            """
            return await self._fetch_docs(sql, (value,))

        values = tuple(value) if len(idx.fields) > 1 else (value,)
        if len(values) != len(idx.fields):
            raise InvalidOperation(f"Index {index_name!r} expects {len(idx.fields)} values")
        where = " AND ".join(f"json_extract(doc, '{schema.json_path(f)}') = ?" for f in idx.fields)
        return await self._fetch_docs(f"SELECT doc FROM {table} WHERE {where} ORDER BY key", values)

    async def count(self, collection):
        self._descriptor(collection)
        cursor = await self._conn.execute(f"SELECT COUNT(*) AS total FROM {schema.quote_ident(collection)}")
        row = await cursor.fetchone()
        await cursor.close()
        return int(row["total"] if row else 0)

    async def clear(self, collection):
        self._descriptor(collection, write=True)
        await self._conn.execute(f"DELETE FROM {schema.quote_ident(collection)}")


class StorageEngine:
    """Owns the single connection to the versioned SQLite store.

    ``open()`` is idempotent and single-flight: concurrent callers share one
    attempt. Opening creates any collection declared in the schema registry
    that the file does not have yet (additive upgrade only).
    """

    def __init__(self, db_path, version=SCHEMA_VERSION, on_blocked=None, busy_timeout_ms=BUSY_TIMEOUT_MS):
        self.db_path = str(db_path)
        self.version = int(version)
        self.on_blocked = on_blocked
        self.busy_timeout_ms = int(busy_timeout_ms)
        self.state = CLOSED
        self._conn = None
        self._opening = None
        self._tx_lock = asyncio.Lock()

    @property
    def is_ready(self):
        return self._conn is not None and self.state == OPENED

    @property
    def connection(self):
        if not self.is_ready:
            raise NotInitialized("Database not initialized. Call open() first.")
        return self._conn

    async def open(self):
        if self.is_ready:
            return self._conn

        if self._opening is None or self._opening.done():
            self._opening = asyncio.ensure_future(self._open_with_repair())
        opening = self._opening
        try:
            return await asyncio.shield(opening)
        finally:
            if self._opening is opening and opening.done():
                self._opening = None

    def transaction(self, collection_names, mode=READONLY):
        if not self.is_ready:
            raise NotInitialized("Database not initialized. Call open() first.")
        return Transaction(self, collection_names, mode)

    async def close(self):
        """Close the connection once every queued transaction has finished.

        Must not be awaited from inside a transaction.
        """
        async with self._tx_lock:
            if self._conn is not None:
                conn, self._conn = self._conn, None
                await conn.close()
                logger.info("Database connection closed: %s", self.db_path)
            self.state = CLOSED

    async def destroy(self):
        """Close the connection and delete the database file (reset helper)."""
        await self.close()
        for suffix in ("", "-wal", "-shm"):
            path = self.db_path + suffix
            if os.path.exists(path):
                os.remove(path)
        logger.info("Database deleted: %s", self.db_path)

    async def info(self):
        if not self.is_ready:
            return None
        return {
            "path": self.db_path,
            "version": self.version,
            "collections": sorted(await self._existing_collections(self._conn)),
        }

    async def _open_with_repair(self):
        conn = await self._open_connection()
        missing = await self._missing_collections(conn)
        if missing:
            # The file claims the current version but lacks collections;
            # reopen one version higher to force a fresh upgrade pass.
            logger.warning("Collections missing after open (%s); reopening at version %d", ", ".join(missing), self.version + 1)
            await conn.close()
            self.state = CLOSED
            self.version += 1
            conn = await self._open_connection()
            missing = await self._missing_collections(conn)
            if missing:
                await conn.close()
                self.state = CLOSED
                raise StoreError(f"Collections still missing after upgrade: {', '.join(missing)}")

        self._conn = conn
        self.state = OPENED
        logger.info("Database opened: %s (version %d)", self.db_path, self.version)
        return conn

    async def _open_connection(self):
        self.state = OPENING
        directory = os.path.dirname(self.db_path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        try:
            conn = await aiosqlite.connect(self.db_path, isolation_level=None)
        except sqlite3.Error as exc:
            self.state = CLOSED
            raise StoreError(f"Failed to open database {self.db_path}: {exc}") from exc

        try:
            conn.row_factory = sqlite3.Row
            await self._check_supported(conn)
            await conn.execute(f"PRAGMA busy_timeout = {self.busy_timeout_ms}")
            try:
                await conn.execute("PRAGMA journal_mode = WAL")
            except sqlite3.OperationalError as exc:
                if not _is_lock_error(exc):
                    raise
                logger.debug("journal_mode unchanged, database busy: %s", exc)

            stored = await self._user_version(conn)
            if stored > self.version:
                logger.info("Stored schema version %d is newer than %d; adopting it", stored, self.version)
                self.version = stored
            if stored < self.version:
                await self._upgrade(conn, stored)
        except BaseException:
            await conn.close()
            self.state = CLOSED
            raise
        return conn

    async def _check_supported(self, conn):
        try:
            cursor = await conn.execute("SELECT json_extract('{\"a\":1}', '$.a') AS v")
            await cursor.fetchone()
            await cursor.close()
        except sqlite3.OperationalError as exc:
            raise NotSupported(f"SQLite build has no JSON support: {exc}") from exc

    async def _upgrade(self, conn, old_version):
        self.state = UPGRADING
        logger.info("Schema upgrade needed: %d -> %d", old_version, self.version)
        try:
            await conn.execute("BEGIN IMMEDIATE")
        except sqlite3.OperationalError as exc:
            if _is_lock_error(exc):
                self._report_blocked(old_version)
                raise UpgradeBlocked(
                    "Database upgrade blocked. Close other sessions using this database and retry.",
                    old_version=old_version,
                    new_version=self.version,
                ) from exc
            raise TransactionAborted(f"Upgrade failed: {exc}") from exc

        try:
            existing = await self._existing_collections(conn)
            for name in schema.all_collection_names():
                if name in existing:
                    logger.debug("Collection %s already exists, skipping", name)
                    continue
                await self._create_collection(conn, schema.describe(name))
            await conn.execute(f"PRAGMA user_version = {int(self.version)}")
            await conn.execute("COMMIT")
        except sqlite3.Error as exc:
            await conn.execute("ROLLBACK")
            raise TransactionAborted(f"Upgrade failed: {exc}") from exc

    async def _create_collection(self, conn, descriptor):
        for statement in schema.create_collection_sql(descriptor):
            await conn.execute(statement)
        logger.info("Created collection %s (%d indexes)", descriptor.name, len(descriptor.indexes))

    def _report_blocked(self, old_version):
        logger.warning("Database upgrade %d -> %d blocked by another connection", old_version, self.version)
        if self.on_blocked is not None:
            try:
                self.on_blocked(old_version, self.version)
            except Exception:
                logger.exception("on_blocked callback failed")

    @staticmethod
    async def _user_version(conn):
        cursor = await conn.execute("PRAGMA user_version")
        row = await cursor.fetchone()
        await cursor.close()
        return int(row[0] if row else 0)

    @staticmethod
    async def _existing_collections(conn):
        cursor = await conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'")
        rows = await cursor.fetchall()
        await cursor.close()
        return {row["name"] for row in rows}

    async def _missing_collections(self, conn):
        existing = await self._existing_collections(conn)
        return [name for name in schema.all_collection_names() if name not in existing]
