import copy
import logging
from typing import Any, Callable, Generic, TypeVar

from . import schema
from .engine import READONLY, READWRITE
from .errors import RecordNotFound
from .utils import next_timestamp

logger = logging.getLogger("GridFlow")

RecordT = TypeVar("RecordT", bound=dict)


def stamp_record(record, existing=None):
    """Copy of ``record`` with ``createdAt``/``updatedAt`` filled in.

    ``createdAt`` is kept when present, otherwise carried over from the
    stored record, otherwise set to now. ``updatedAt`` always moves forward.
    """
    stamped = dict(record)
    existing = existing or {}
    now = next_timestamp(stamped.get("updatedAt"), existing.get("updatedAt"))
    if not stamped.get("createdAt"):
        stamped["createdAt"] = existing.get("createdAt") or now
    stamped["updatedAt"] = now
    return stamped


class BaseAdapter(Generic[RecordT]):
    """Generic CRUD and index queries over one collection.

    Every call opens the engine first when needed, so callers never manage
    the connection lifecycle themselves.
    """

    def __init__(self, engine, collection_name):
        self.engine = engine
        self.descriptor = schema.describe(collection_name)
        self.collection_name = collection_name

    @property
    def primary_key(self):
        return self.descriptor.primary_key

    async def ensure_ready(self):
        if not self.engine.is_ready:
            logger.debug("Database not ready for %s, opening", self.collection_name)
            await self.engine.open()

    async def transaction(self, mode=READONLY):
        await self.ensure_ready()
        return self.engine.transaction([self.collection_name], mode)

    async def get_by_id(self, key) -> RecordT | None:
        async with await self.transaction() as tx:
            return await tx.get(self.collection_name, key)

    async def save(self, record: RecordT) -> RecordT:
        async with await self.transaction(READWRITE) as tx:
            existing = None
            if not record.get("createdAt") and record.get(self.primary_key) is not None:
                existing = await tx.get(self.collection_name, record[self.primary_key])
            stamped = stamp_record(record, existing)
            await tx.put(self.collection_name, stamped)
        return stamped

    async def delete(self, key) -> bool:
        async with await self.transaction(READWRITE) as tx:
            await tx.delete(self.collection_name, key)
        return True

    async def get_all(self) -> list[RecordT]:
        async with await self.transaction() as tx:
            return await tx.get_all(self.collection_name)

    async def get_by_index(self, index_name, value) -> list[RecordT]:
        self.descriptor.index(index_name)
        async with await self.transaction() as tx:
            return await tx.get_by_index(self.collection_name, index_name, value)

    async def count(self) -> int:
        async with await self.transaction() as tx:
            return await tx.count(self.collection_name)

    async def clear(self) -> bool:
        async with await self.transaction(READWRITE) as tx:
            await tx.clear(self.collection_name)
        return True

    async def update(self, key, mutator: Callable[[Any], Any], missing_ok=False) -> RecordT:
        """Read, mutate and write one record inside a single transaction.

        ``mutator`` receives a deep copy of the stored record (or ``None``
        when absent and ``missing_ok``) and returns the record to store.
        """
        async with await self.transaction(READWRITE) as tx:
            current = await tx.get(self.collection_name, key)
            if current is None and not missing_ok:
                raise RecordNotFound(self.collection_name, key)
            updated = mutator(copy.deepcopy(current))
            stamped = stamp_record(updated, current)
            await tx.put(self.collection_name, stamped)
        return stamped


class AdapterFacade(Generic[RecordT]):
    """Exposes the CRUD surface of a composed ``BaseAdapter``."""

    collection_name = None

    def __init__(self, engine):
        self.base: BaseAdapter[RecordT] = BaseAdapter(engine, self.collection_name)

    async def get_by_id(self, key) -> RecordT | None:
        return await self.base.get_by_id(key)

    async def save(self, record: RecordT) -> RecordT:
        return await self.base.save(record)

    async def delete(self, key) -> bool:
        return await self.base.delete(key)

    async def get_all(self) -> list[RecordT]:
        return await self.base.get_all()

    async def get_by_index(self, index_name, value) -> list[RecordT]:
        return await self.base.get_by_index(index_name, value)

    async def count(self) -> int:
        return await self.base.count()

    async def clear(self) -> bool:
        return await self.base.clear()
