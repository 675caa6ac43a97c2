import logging
from datetime import date, datetime, timedelta, timezone

from .base import AdapterFacade, BaseAdapter
from .errors import InvalidOperation
from .models import Board, Column, Entity, Group, Person, Relationship, Row, WeeklyItem, WeeklyPlan
from .utils import contains_text, generate_id, now_iso, parse_iso

logger = logging.getLogger("GridFlow")


class EntityAdapter(AdapterFacade[Entity]):
    collection_name = "entities"

    async def get_by_type(self, entity_type):
        return await self.get_by_index("type", entity_type)

    async def get_by_board(self, board_id):
        return await self.get_by_index("boardId", board_id)

    async def get_by_completion(self, completed):
        return await self.get_by_index("completed", bool(completed))

    async def get_by_priority(self, priority):
        return await self.get_by_index("priority", priority)

    async def get_by_tag(self, tag):
        return await self.get_by_index("tags", tag)

    async def get_by_person(self, person_id):
        return await self.get_by_index("people", person_id)

    async def search(self, term):
        """Case-insensitive substring match over title and content."""
        needle = str(term or "").lower()
        entities = await self.get_all()
        return [e for e in entities if contains_text(e.get("title"), needle) or contains_text(e.get("content"), needle)]


class BoardAdapter(AdapterFacade[Board]):
    collection_name = "boards"

    async def get_by_name(self, name):
        return await self.get_by_index("name", name)


class BoardStructureAdapter:
    """Groups, rows and columns of boards (Board -> Groups -> Rows x Columns)."""

    def __init__(self, engine):
        self.groups: BaseAdapter[Group] = BaseAdapter(engine, "groups")
        self.rows: BaseAdapter[Row] = BaseAdapter(engine, "rows")
        self.columns: BaseAdapter[Column] = BaseAdapter(engine, "columns")

    async def get_groups(self, board_id):
        return await self.groups.get_by_index("boardId", board_id)

    async def get_rows(self, board_id):
        return await self.rows.get_by_index("boardId", board_id)

    async def get_rows_in_group(self, group_id):
        return await self.rows.get_by_index("groupId", group_id)

    async def get_columns(self, board_id):
        return await self.columns.get_by_index("boardId", board_id)

    async def get_column_by_key(self, board_id, key):
        columns = await self.columns.get_by_index("key", key)
        for column in columns:
            if column.get("boardId") == board_id:
                return column
        return None

    async def save_group(self, group):
        if not group.get("boardId"):
            raise InvalidOperation("Group requires a boardId")
        return await self.groups.save(group)

    async def save_row(self, row):
        if not row.get("boardId"):
            raise InvalidOperation("Row requires a boardId")
        group_id = row.get("groupId")
        if group_id is not None:
            group = await self.groups.get_by_id(group_id)
            if group is None:
                raise InvalidOperation(f"Row {row.get('id')!r} references unknown group {group_id!r}")
            if group.get("boardId") != row["boardId"]:
                raise InvalidOperation(
                    f"Row {row.get('id')!r} references group {group_id!r} from board {group.get('boardId')!r}"
                )
        return await self.rows.save(row)

    async def save_column(self, column):
        if not column.get("boardId") or not column.get("key"):
            raise InvalidOperation("Column requires a boardId and a key")
        return await self.columns.save(column)

    async def delete_group(self, group_id):
        return await self.groups.delete(group_id)

    async def delete_row(self, row_id):
        return await self.rows.delete(row_id)

    async def delete_column(self, column_id):
        return await self.columns.delete(column_id)

    async def get_structure(self, board_id):
        groups = await self.get_groups(board_id)
        rows = await self.get_rows(board_id)
        columns = await self.get_columns(board_id)

        tree = [{**group, "rows": []} for group in groups]
        by_id = {group["id"]: group for group in tree}
        ungrouped = []
        for row in rows:
            parent = by_id.get(row.get("groupId"))
            if parent is not None:
                parent["rows"].append(row)
            else:
                ungrouped.append(row)
        return {"boardId": board_id, "groups": tree, "ungroupedRows": ungrouped, "columns": columns}


class PeopleAdapter(AdapterFacade[Person]):
    collection_name = "people"

    async def search_by_name(self, term):
        needle = str(term or "").lower()
        people = await self.get_all()
        return [p for p in people if contains_text(p.get("name"), needle)]

    async def get_by_relationship_type(self, relationship_type):
        return await self.get_by_index("relationshipType", relationship_type)

    async def get_by_tag(self, tag):
        return await self.get_by_index("tags", tag)

    async def get_people_needing_follow_up(self, cutoff):
        """People whose last interaction is older than ``cutoff``.

        People without a parseable ``lastInteraction`` are not reported.
        """
        cutoff_dt = parse_iso(cutoff)
        if cutoff_dt is None:
            raise InvalidOperation(f"Invalid cutoff date: {cutoff!r}")
        people = await self.get_all()
        result = []
        for person in people:
            last = parse_iso(person.get("lastInteraction"))
            if last is not None and last < cutoff_dt:
                result.append(person)
        return result


class RelationshipAdapter(AdapterFacade[Relationship]):
    collection_name = "entityRelationships"

    async def get_by_entity(self, entity_id):
        return await self.get_by_index("entityId", entity_id)

    async def get_by_related(self, related_id):
        return await self.get_by_index("relatedId", related_id)

    async def get_by_type(self, relationship_type):
        return await self.get_by_index("relationshipType", relationship_type)

    async def create_relationship(self, entity_id, person_id, relationship_type="mentions", context=""):
        # Duplicate edges are allowed; callers de-duplicate when they care.
        relationship = {
            "id": generate_id("rel"),
            "entityId": entity_id,
            "relatedId": person_id,
            "relationshipType": relationship_type,
            "context": context,
            "createdAt": now_iso(),
        }
        return await self.save(relationship)

    async def remove_relationship(self, entity_id, person_id):
        relationships = await self.get_by_entity(entity_id)
        to_remove = [rel for rel in relationships if rel.get("relatedId") == person_id]
        for rel in to_remove:
            await self.delete(rel["id"])
        return len(to_remove) > 0


def week_key(day=None):
    """ISO week key, e.g. ``2024-W07``."""
    day = day or datetime.now(timezone.utc).date()
    if isinstance(day, datetime):
        day = day.date()
    year, week, _weekday = day.isocalendar()
    return f"{year}-W{week:02d}"


def week_start(day=None):
    day = day or datetime.now(timezone.utc).date()
    if isinstance(day, datetime):
        day = day.date()
    return day - timedelta(days=day.weekday())


class WeeklyPlanAdapter(AdapterFacade[WeeklyPlan]):
    collection_name = "weeklyPlans"

    async def get_current_week(self, today: date | None = None):
        return await self.get_by_id(week_key(today))

    async def get_or_create_week(self, day: date | None = None):
        key = week_key(day)
        plan = await self.get_by_id(key)
        if plan is not None:
            return plan
        return await self.save({"weekKey": key, "weekStart": week_start(day).isoformat(), "goal": "", "notes": ""})

    async def get_by_week_start(self, start):
        if isinstance(start, date):
            start = start.isoformat()
        return await self.get_by_index("weekStart", start)


class WeeklyItemAdapter(AdapterFacade[WeeklyItem]):
    collection_name = "weeklyItems"

    async def get_by_week(self, key):
        return await self.get_by_index("weekKey", key)

    async def get_by_entity(self, entity_id):
        return await self.get_by_index("entityId", entity_id)

    async def get_by_day(self, key, day):
        items = await self.get_by_week(key)
        return [item for item in items if item.get("day") == day]

    async def add_item(self, key, entity_id, day=None):
        item = {
            "id": generate_id("weekly"),
            "weekKey": key,
            "entityId": entity_id,
            "day": day,
            "addedAt": now_iso(),
        }
        return await self.save(item)
