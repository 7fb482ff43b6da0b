# nsefetch/utils/json.py

from typing import Any
import json


def safe_loads(v: Any) -> Any:
    """
    Decode a response body. Already-decoded values pass through, anything
    else must be a JSON document (json.JSONDecodeError otherwise).
    """
    if v is None:
        return None
    if isinstance(v, (dict, list)):
        return v
    if isinstance(v, bytes):
        v = v.decode("utf-8")
    return json.loads(v)


def preview(v: Any, limit: int = 120) -> str:
    text = v if isinstance(v, str) else repr(v)
    text = " ".join(text.split())
    if len(text) <= limit:
        return text
    return text[:limit] + "..."
