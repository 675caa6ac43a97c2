import os


def get_data_dir():
    # GRIDFLOW_DATA_DIR wins so tests and multiple profiles can point elsewhere.
    base = os.environ.get("GRIDFLOW_DATA_DIR")
    if not base:
        base = os.path.join(os.path.expanduser("~"), ".gridflow")

    os.makedirs(base, exist_ok=True)
    return base


def get_db_path():
    from .constants import DB_FILENAME

    return os.path.join(get_data_dir(), DB_FILENAME)
