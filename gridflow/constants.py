APP_NAME = "GridFlow"

# Bump when a collection or index is added to the schema registry.
SCHEMA_VERSION = 1

DB_FILENAME = "gridflow.db"

BUSY_TIMEOUT_MS = 5000
