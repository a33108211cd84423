import json
import math
from datetime import date, datetime, timezone
from typing import Any, Dict

from bson import ObjectId, json_util
from bson.json_util import RELAXED_JSON_OPTIONS


def format_datetime(value: datetime) -> str:
    """ISO-8601 in UTC with millisecond precision, e.g. ``2024-01-02T03:04:05.000Z``.

    pymongo hands back naive datetimes that are already UTC.
    """
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    return value.strftime('%Y-%m-%dT%H:%M:%S.') + f'{value.microsecond // 1000:03d}Z'


def serialize_value(value: Any) -> Any:
    if value is None or isinstance(value, (str, bool, int)):
        return value
    if isinstance(value, float):
        # JSON has no NaN/Infinity
        return value if math.isfinite(value) else None
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        return format_datetime(value)
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, dict):
        return serialize_document(value)
    if isinstance(value, (list, tuple)):
        return [serialize_value(item) for item in value]

    # Decimal128, Binary, Timestamp, Regex, Code, ... as relaxed Extended JSON
    try:
        return json.loads(json_util.dumps(value, json_options=RELAXED_JSON_OPTIONS))
    except TypeError:
        return str(value)


def serialize_document(doc: Dict[str, Any]) -> Dict[str, Any]:
    """Convert a stored document into plain JSON-safe values."""
    if not doc:
        return doc
    return {key: serialize_value(value) for key, value in doc.items()}
