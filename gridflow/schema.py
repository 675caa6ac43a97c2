"""Collection registry: primary keys and secondary indexes for every collection.

Pure data. The storage engine reads it when upgrading the database and the
base adapter reads it to validate index lookups.
"""

from dataclasses import dataclass, field

from .errors import IndexNotFound, UnknownCollection


@dataclass(frozen=True)
class IndexDescriptor:
    name: str
    key_path: str | tuple[str, ...]
    unique: bool = False
    multi_entry: bool = False

    @property
    def fields(self) -> tuple[str, ...]:
        if isinstance(self.key_path, tuple):
            return self.key_path
        return (self.key_path,)


@dataclass(frozen=True)
class CollectionDescriptor:
    name: str
    primary_key: str
    indexes: tuple[IndexDescriptor, ...] = field(default_factory=tuple)

    def index(self, index_name) -> IndexDescriptor:
        for idx in self.indexes:
            if idx.name == index_name:
                return idx
        raise IndexNotFound(self.name, index_name, self.index_names)

    @property
    def index_names(self) -> list[str]:
        return [idx.name for idx in self.indexes]


def _idx(name, key_path=None, unique=False, multi_entry=False):
    return IndexDescriptor(name=name, key_path=key_path or name, unique=unique, multi_entry=multi_entry)


def _collection(name, primary_key, *indexes):
    return CollectionDescriptor(name=name, primary_key=primary_key, indexes=tuple(indexes))


# Order matters: upgrades create collections in this order.
COLLECTIONS = {
    c.name: c
    for c in (
        _collection(
            "entities",
            "id",
            _idx("type"),
            _idx("boardId"),
            _idx("completed"),
            _idx("priority"),
            _idx("dueDate"),
            _idx("tags", multi_entry=True),
            _idx("people", multi_entry=True),
            _idx("createdAt"),
            _idx("updatedAt"),
        ),
        _collection("boards", "id", _idx("name"), _idx("createdAt")),
        _collection("groups", "id", _idx("boardId"), _idx("name")),
        _collection("rows", "id", _idx("boardId"), _idx("groupId"), _idx("name")),
        _collection("columns", "id", _idx("boardId"), _idx("key"), _idx("name")),
        _collection(
            "entityPositions",
            "id",
            _idx("entityId"),
            _idx("boardId"),
            _idx("context"),
            _idx("rowId"),
            _idx("columnKey"),
        ),
        _collection(
            "people",
            "id",
            _idx("name"),
            _idx("email"),
            _idx("company"),
            _idx("tags", multi_entry=True),
            _idx("relationshipType"),
            _idx("lastInteraction"),
            _idx("interactionFrequency"),
        ),
        _collection(
            "entityRelationships",
            "id",
            _idx("entityId"),
            _idx("relatedId"),
            _idx("relationshipType"),
            _idx("createdAt"),
        ),
        _collection("collections", "id", _idx("name"), _idx("type"), _idx("category"), _idx("createdAt")),
        _collection(
            "tags",
            "id",
            _idx("name"),
            _idx("category"),
            _idx("parent"),
            _idx("usageCount"),
            _idx("createdAt"),
        ),
        _collection("weeklyPlans", "weekKey", _idx("weekStart"), _idx("createdAt")),
        _collection("weeklyItems", "id", _idx("weekKey"), _idx("entityId"), _idx("day"), _idx("addedAt")),
        _collection("templates", "id", _idx("name"), _idx("category"), _idx("createdAt")),
        _collection("metadata", "key", _idx("category"), _idx("updatedAt")),
    )
}


def describe(collection_name) -> CollectionDescriptor:
    try:
        return COLLECTIONS[collection_name]
    except KeyError:
        raise UnknownCollection(collection_name) from None


def all_collection_names() -> list[str]:
    return list(COLLECTIONS)


def quote_ident(name):
    return '"' + str(name).replace('"', '""') + '"'


def json_path(field_name):
    return "$." + '"' + str(field_name).replace('"', '\\"') + '"'


def create_collection_sql(descriptor: CollectionDescriptor) -> list[str]:
    """DDL statements creating one collection table and its expression indexes.

    Multi-entry indexes have no physical SQLite index; they are answered by
    scanning ``json_each`` over the array field.
    """
    table = quote_ident(descriptor.name)
    statements = [f"CREATE TABLE IF NOT EXISTS {table} (key PRIMARY KEY NOT NULL, doc TEXT NOT NULL)"]
    for idx in descriptor.indexes:
        if idx.multi_entry:
            continue
        exprs = ", ".join(f"json_extract(doc, '{json_path(f)}')" for f in idx.fields)
        unique = "UNIQUE " if idx.unique else ""
        index_name = quote_ident(f"idx_{descriptor.name}_{idx.name}")
        statements.append(f"CREATE {unique}INDEX IF NOT EXISTS {index_name} ON {table}({exprs})")
    return statements
