"""Record shapes stored in each collection.

Records travel as plain dicts; these TypedDicts document the fields the
adapters read and write. Field names are the stored (camelCase) names.
"""

from typing import Any, TypedDict


class Entity(TypedDict, total=False):
    id: str
    type: str
    title: str
    content: str
    boardId: str
    completed: bool
    priority: str
    dueDate: str | None
    tags: list[str]
    people: list[str]
    createdAt: str
    updatedAt: str


class Board(TypedDict, total=False):
    id: str
    name: str
    createdAt: str
    updatedAt: str


class Group(TypedDict, total=False):
    id: str
    boardId: str
    name: str
    color: str
    collapsed: bool


class Row(TypedDict, total=False):
    id: str
    boardId: str
    groupId: str | None
    name: str
    description: str


class Column(TypedDict, total=False):
    id: str
    boardId: str
    key: str
    name: str


class EntityPosition(TypedDict, total=False):
    id: str
    entityId: str
    boardId: str
    context: str
    rowId: str
    columnKey: str
    order: float
    createdAt: str
    updatedAt: str


class Relationship(TypedDict, total=False):
    id: str
    entityId: str
    relatedId: str
    relationshipType: str
    context: str
    createdAt: str


class Person(TypedDict, total=False):
    id: str
    name: str
    email: str
    company: str
    tags: list[str]
    relationshipType: str
    lastInteraction: str
    interactionFrequency: str


class SavedCollection(TypedDict, total=False):
    id: str
    name: str
    description: str
    type: str
    category: str
    filters: dict[str, Any]
    items: list[str]
    isPublic: bool
    itemCount: int
    autoUpdate: bool
    createdAt: str
    updatedAt: str
    lastUpdated: str


class Tag(TypedDict, total=False):
    id: str
    name: str
    color: str
    category: str
    description: str
    parent: str | None
    usageCount: int
    createdAt: str
    updatedAt: str


class Template(TypedDict, total=False):
    id: str
    name: str
    description: str
    category: str
    groups: list[dict[str, Any]]
    rows: list[dict[str, Any]]
    columns: list[dict[str, Any]]
    isPublic: bool
    usageCount: int
    tags: list[str]
    lastUsed: str
    createdAt: str
    updatedAt: str


class WeeklyPlan(TypedDict, total=False):
    weekKey: str
    weekStart: str
    goal: str
    notes: str


class WeeklyItem(TypedDict, total=False):
    id: str
    weekKey: str
    entityId: str
    day: str
    addedAt: str


class MetadataRecord(TypedDict, total=False):
    key: str
    category: str
    value: Any
    updatedAt: str
