import logging

from .base import AdapterFacade, stamp_record
from .engine import READWRITE
from .models import EntityPosition

logger = logging.getLogger("GridFlow")

DEFAULT_CONTEXT = "board"


def position_key(entity_id, board_id, context=DEFAULT_CONTEXT):
    """Composite primary key of a position: one record per (entity, board, context).

    Ids containing ``_`` can collide across different triples; existing data
    already uses this format so it is kept as is.
    """
    return f"{entity_id}_{board_id}_{context}"


def _build_position(entity_id, board_id, context, row_id, column_key, order):
    return {
        "id": position_key(entity_id, board_id, context),
        "entityId": entity_id,
        "boardId": board_id,
        "context": context,
        "rowId": row_id,
        "columnKey": column_key,
        "order": order,
    }


class EntityPositionsAdapter(AdapterFacade[EntityPosition]):
    """Placement of entities within board/context/row/column coordinates."""

    collection_name = "entityPositions"

    async def set_position(self, entity_id, board_id, context, row_id, column_key, order=0):
        """Upsert the position for (entity, board, context); also used to move."""
        context = context or DEFAULT_CONTEXT
        position = _build_position(entity_id, board_id, context, row_id, column_key, order)
        return await self.save(position)

    async def move_entity(self, entity_id, board_id, context, new_row_id, new_column_key, new_order=0):
        return await self.set_position(entity_id, board_id, context, new_row_id, new_column_key, new_order)

    async def get_position(self, entity_id, board_id, context=DEFAULT_CONTEXT):
        return await self.get_by_id(position_key(entity_id, board_id, context))

    async def remove_position(self, entity_id, board_id, context=DEFAULT_CONTEXT):
        return await self.delete(position_key(entity_id, board_id, context))

    async def get_entities_in_position(self, board_id, context, row_id, column_key):
        """Positions in one cell, ordered by ``order``."""
        positions = [
            pos
            for pos in await self.get_all()
            if pos.get("boardId") == board_id
            and pos.get("context") == context
            and pos.get("rowId") == row_id
            and pos.get("columnKey") == column_key
        ]
        positions.sort(key=lambda pos: pos.get("order") or 0)
        return positions

    async def get_entities_on_board(self, board_id, context=DEFAULT_CONTEXT):
        positions = await self.get_by_index("boardId", board_id)
        return [pos for pos in positions if pos.get("context") == context]

    async def get_orphaned_entities(self, all_entity_ids, board_id, context=DEFAULT_CONTEXT):
        """Entity ids from ``all_entity_ids`` with no position on the board."""
        positioned = {pos.get("entityId") for pos in await self.get_entities_on_board(board_id, context)}
        return [entity_id for entity_id in all_entity_ids if entity_id not in positioned]

    async def batch_set_positions(self, positions):
        """Set many positions in a single transaction; all or nothing."""
        results = []
        async with await self.base.transaction(READWRITE) as tx:
            for pos in positions:
                record = _build_position(
                    pos["entityId"],
                    pos["boardId"],
                    pos.get("context") or DEFAULT_CONTEXT,
                    pos.get("rowId"),
                    pos.get("columnKey"),
                    pos.get("order", 0),
                )
                existing = await tx.get(self.collection_name, record["id"])
                stamped = stamp_record(record, existing)
                await tx.put(self.collection_name, stamped)
                results.append(stamped)
        logger.debug("Set %d positions", len(results))
        return results
