import argparse
import logging

from aiohttp import web

from . import VERSION
from .api import create_app
from .constants import APP_NAME, SCHEMA_VERSION
from .store import GridFlowStore

logger = logging.getLogger(APP_NAME)


def main(argv=None):
    parser = argparse.ArgumentParser(prog="gridflow", description="Serve the GridFlow snapshot API.")
    parser.add_argument("--db", default=None, help="database file (default: $GRIDFLOW_DATA_DIR/gridflow.db)")
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=8765)
    parser.add_argument("--log-level", default="INFO")
    args = parser.parse_args(argv)

    logging.basicConfig(level=args.log_level.upper(), format="%(asctime)s %(name)s %(levelname)s %(message)s")
    store = GridFlowStore(args.db)

    _banner = f" {APP_NAME} "
    logger.info("=" * 40 + _banner + "=" * 40)
    logger.info(f"Version: {VERSION}")
    logger.info(f"Schema version: {SCHEMA_VERSION}")
    logger.info(f"Database: {store.db_path}")

    web.run_app(create_app(store), host=args.host, port=args.port)


if __name__ == "__main__":
    main()
