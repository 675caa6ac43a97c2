import json
import time
import uuid
from datetime import datetime, timedelta, timezone


def now_iso():
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


def parse_iso(value):
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def next_timestamp(*previous):
    """Current time, nudged forward so it sorts strictly after every ``previous``."""
    now = datetime.now(timezone.utc)
    for value in previous:
        prev = parse_iso(value)
        if prev is not None and now <= prev:
            now = prev + timedelta(microseconds=1)
    return now.isoformat(timespec="microseconds")


def generate_id(prefix):
    # timestamp + random suffix, e.g. rel_1718000000000_3f9a1c2b7
    return f"{prefix}_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


def normalize_tag_name(name):
    return str(name or "").lower().strip()


def contains_text(haystack, needle):
    return bool(haystack) and needle in str(haystack).lower()


def json_dumps(obj):
    return json.dumps(obj, ensure_ascii=False, separators=(",", ":"), sort_keys=True)


def json_loads(raw, default=None):
    if raw is None:
        return default
    return json.loads(raw)


def sort_records(records, sort_by, key_map):
    """Sort ``records`` in place by one of the named orderings in ``key_map``.

    ``key_map`` maps a sort name to ``(key_func, reverse)``; unknown names
    leave the order untouched.
    """
    if sort_by in key_map:
        key_func, reverse = key_map[sort_by]
        records.sort(key=key_func, reverse=reverse)
    return records


def timestamp_key(field, fallback=None):
    epoch = datetime.min.replace(tzinfo=timezone.utc)

    def _key(record):
        value = record.get(field)
        if not value and fallback:
            value = record.get(fallback)
        return parse_iso(value) or epoch

    return _key
