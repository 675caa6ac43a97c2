class StoreError(Exception):
    """Base class for every failure raised by the persistence layer."""


class NotSupported(StoreError):
    """The host has no usable transactional engine (no SQLite JSON support)."""


class NotInitialized(StoreError):
    """A transaction was requested before the engine finished opening."""


class UpgradeBlocked(StoreError):
    """Another connection holds the database while a schema upgrade is pending.

    Raised from ``open()`` once the busy timeout runs out, after the warning
    is logged and ``on_blocked`` has been called. The open fails instead of
    staying pending; the engine stays usable and a later ``open()`` retries.
    """

    def __init__(self, message, old_version=None, new_version=None):
        super().__init__(message)
        self.old_version = old_version
        self.new_version = new_version


class TransactionAborted(StoreError):
    """The engine reported a failure and the transaction was rolled back."""


class UnknownCollection(StoreError, KeyError):
    def __init__(self, name):
        super().__init__(f"Unknown collection: {name}")
        self.name = name

    def __str__(self):
        return self.args[0]


class IndexNotFound(StoreError, KeyError):
    def __init__(self, collection, index_name, declared=()):
        msg = f"Index {index_name!r} is not declared on collection {collection!r}"
        if declared:
            msg += f" (declared: {', '.join(declared)})"
        super().__init__(msg)
        self.collection = collection
        self.index_name = index_name
        self.declared = list(declared)

    def __str__(self):
        return self.args[0]


class InvalidOperation(StoreError):
    pass


class RecordNotFound(StoreError, KeyError):
    def __init__(self, collection, key):
        super().__init__(f"{collection} record {key!r} not found")
        self.collection = collection
        self.key = key

    def __str__(self):
        return self.args[0]
